from __future__ import annotations

import math
import random
from datetime import timedelta
from statistics import mean

import pytest

from app.schemas import ReadingStatus
from models.records import MotorState, split_operating_time
from services.errors import SynthesisError
from services.synthesizer import (
    MAX_BEARING_WEAR,
    MAX_OIL_DEGRADATION,
    PHYSICAL_RANGES,
    ReadingSynthesizer,
    classify_status,
    efficiency_for,
    heat_rise,
    maintenance_code,
    speed_setpoint,
    vibration_for,
)
from tests.factories import BASE_TIME


def _run(state: MotorState, steps: int, dt: float, seed: int = 11):
    synthesizer = ReadingSynthesizer()
    rng = random.Random(seed)
    drafts = []
    for index in range(steps):
        result = synthesizer.synthesize(
            state,
            dt,
            rng,
            timestamp=BASE_TIME + timedelta(seconds=dt * (index + 1)),
            machine_id="MOTOR-T",
        )
        drafts.append(result.draft)
        state = result.state
    return drafts, state


def test_every_field_stays_within_physical_range() -> None:
    drafts, _ = _run(MotorState(), steps=500, dt=1.0)

    for draft in drafts:
        assert PHYSICAL_RANGES["temperature"][0] <= draft.temperature <= PHYSICAL_RANGES["temperature"][1]
        assert 0 <= draft.speed <= PHYSICAL_RANGES["speed"][1]
        assert 0.0 <= draft.efficiency <= 100.0
        assert 0.0 <= draft.power_factor <= 1.0
        assert 0.0 <= draft.shaft_position <= 360.0
        assert draft.rpm == draft.speed
        assert draft.timestamp.utcoffset() == timedelta(0)


def test_temperature_reverts_toward_equilibrium_from_either_side() -> None:
    hot, _ = _run(MotorState(temperature=120.0), steps=200, dt=10.0)
    cold, _ = _run(MotorState(temperature=20.0), steps=200, dt=10.0)

    hot_tail = mean(draft.temperature for draft in hot[-50:])
    cold_tail = mean(draft.temperature for draft in cold[-50:])

    assert hot[0].temperature > 100
    assert cold[0].temperature < 30
    assert 45 <= hot_tail <= 70
    assert 45 <= cold_tail <= 70
    assert abs(hot_tail - cold_tail) < 5


def test_operating_time_accumulates_and_wear_never_decreases() -> None:
    drafts, state = _run(MotorState(), steps=120, dt=30.0)

    assert state.operating_seconds == pytest.approx(3600.0)
    assert drafts[-1].operating_hours == 1
    assert drafts[-1].operating_minutes == 0
    wear = [draft.bearing_wear for draft in drafts]
    oil = [draft.oil_degradation for draft in drafts]
    assert wear == sorted(wear)
    assert oil == sorted(oil)
    assert state.last_sample_at == drafts[-1].timestamp


def test_efficiency_drops_as_wear_and_oil_degrade() -> None:
    baseline = efficiency_for(0.0, 0.0, 60.0, 0.8)

    assert efficiency_for(0.05, 0.0, 60.0, 0.8) < baseline
    assert efficiency_for(0.0, 0.05, 60.0, 0.8) < baseline
    assert efficiency_for(0.05, 0.05, 60.0, 0.8) < efficiency_for(0.05, 0.0, 60.0, 0.8)
    assert efficiency_for(5.0, 5.0, 150.0, 0.2) == 0.0


def test_vibration_rises_with_speed_and_wear() -> None:
    assert vibration_for(2800.0, 0.0) > vibration_for(2000.0, 0.0)
    assert vibration_for(2500.0, 0.05) > vibration_for(2500.0, 0.0)

    synthesizer = ReadingSynthesizer()
    fresh = synthesizer.synthesize(
        MotorState(), 1.0, random.Random(3), timestamp=BASE_TIME, machine_id="MOTOR-T"
    ).draft
    worn = synthesizer.synthesize(
        MotorState(bearing_wear=0.1), 1.0, random.Random(3), timestamp=BASE_TIME, machine_id="MOTOR-T"
    ).draft

    assert worn.vibration > fresh.vibration
    assert worn.efficiency < fresh.efficiency
    assert worn.bearing_health < fresh.bearing_health


def test_vibration_magnitude_is_rms_of_axes() -> None:
    drafts, _ = _run(MotorState(), steps=5, dt=1.0)

    for draft in drafts:
        expected = math.sqrt((draft.vibration_x ** 2 + draft.vibration_y ** 2 + draft.vibration_z ** 2) / 3)
        assert draft.vibration == pytest.approx(expected, abs=0.02)


def test_same_seed_same_output() -> None:
    first, _ = _run(MotorState(), steps=20, dt=1.0, seed=99)
    second, _ = _run(MotorState(), steps=20, dt=1.0, seed=99)

    assert [draft.model_dump() for draft in first] == [draft.model_dump() for draft in second]


def test_non_finite_state_raises_synthesis_error() -> None:
    synthesizer = ReadingSynthesizer()

    with pytest.raises(SynthesisError) as excinfo:
        synthesizer.synthesize(
            MotorState(temperature=float("nan")),
            1.0,
            random.Random(1),
            timestamp=BASE_TIME,
            machine_id="MOTOR-T",
        )

    assert excinfo.value.field == "temperature"


def test_negative_elapsed_is_rejected() -> None:
    with pytest.raises(ValueError):
        ReadingSynthesizer().synthesize(
            MotorState(), -1.0, random.Random(1), timestamp=BASE_TIME, machine_id="MOTOR-T"
        )


@pytest.mark.parametrize(
    ("temperature", "expected"),
    [
        (90, ReadingStatus.critical),
        (86, ReadingStatus.critical),
        (85, ReadingStatus.warning),
        (78, ReadingStatus.warning),
        (75, ReadingStatus.normal),
        (60, ReadingStatus.normal),
    ],
)
def test_status_bands_by_temperature(temperature: int, expected: ReadingStatus) -> None:
    assert classify_status(temperature) is expected


def test_status_escalates_on_other_sensors() -> None:
    assert classify_status(60, vibration=4.6) is ReadingStatus.critical
    assert classify_status(60, oil_pressure=2.3) is ReadingStatus.warning
    assert classify_status(60, bearing_health=65.0) is ReadingStatus.critical
    assert classify_status(60, maintenance_status=3) is ReadingStatus.maintenance
    assert classify_status(60, system_health=80) is ReadingStatus.maintenance
    assert classify_status(80, maintenance_status=3) is ReadingStatus.warning


def test_maintenance_due_on_each_hundredth_hour() -> None:
    assert maintenance_code(0.0, 0.0, 60.0, 1.0, 93.0, 200.4) == 3
    assert maintenance_code(0.0, 0.0, 60.0, 1.0, 93.0, 150.0) == 0
    assert maintenance_code(0.0, 0.0, 60.0, 1.0, 93.0, 99.9) == 0
    assert maintenance_code(0.2, 0.0, 60.0, 1.0, 93.0, 200.0) == 2


def test_split_operating_time() -> None:
    assert split_operating_time(3725.5) == (1, 2, 5.5)
    assert split_operating_time(-4.0) == (0, 0, 0.0)
    assert split_operating_time(59.999) == (0, 1, 0.0)
    assert split_operating_time(3599.996) == (1, 0, 0.0)
    assert split_operating_time(59.994) == (0, 0, 59.99)


def test_fields_stay_in_range_over_years_of_hourly_samples() -> None:
    drafts, state = _run(MotorState(), steps=5000, dt=3600.0, seed=1)

    assert state.bearing_wear == MAX_BEARING_WEAR
    assert 0.0 < state.oil_degradation <= MAX_OIL_DEGRADATION
    for draft in drafts:
        assert draft.power_consumption <= PHYSICAL_RANGES["power_consumption"][1]
        assert draft.displacement <= PHYSICAL_RANGES["displacement"][1]
        assert draft.vibration <= PHYSICAL_RANGES["vibration"][1]
    assert drafts[-1].operating_hours == 5000
    assert drafts[-1].status is ReadingStatus.critical


def test_worn_state_from_older_store_is_saturated() -> None:
    result = ReadingSynthesizer().synthesize(
        MotorState(bearing_wear=3.0, oil_degradation=2.0),
        1.0,
        random.Random(4),
        timestamp=BASE_TIME,
        machine_id="MOTOR-T",
    )

    assert result.state.bearing_wear == MAX_BEARING_WEAR
    assert result.state.oil_degradation == MAX_OIL_DEGRADATION


def test_serviced_state_restarts_wear_but_keeps_running_time() -> None:
    worn = MotorState(operating_seconds=7200.0, bearing_wear=0.8, oil_degradation=0.3, temperature=80.0)

    serviced = worn.serviced()

    assert (serviced.bearing_wear, serviced.oil_degradation) == (0.0, 0.0)
    assert serviced.operating_seconds == 7200.0
    assert serviced.temperature == 80.0


def test_speed_setpoint_rises_with_load_and_falls_with_heat() -> None:
    loads = [0.2, 0.5, 0.8, 1.0]
    by_load = [speed_setpoint(load, 60.0) for load in loads]
    temperatures = [60.0, 66.0, 75.0, 90.0]
    by_heat = [speed_setpoint(0.8, temperature) for temperature in temperatures]

    assert by_load == sorted(by_load) and len(set(by_load)) == len(loads)
    assert by_heat[0] == speed_setpoint(0.8, 65.0)
    assert by_heat[1:] == sorted(by_heat[1:], reverse=True)
    assert by_heat[-1] < by_heat[1] < by_heat[0]


def test_heat_rise_grows_with_load_and_efficiency_loss() -> None:
    assert heat_rise(0.9, 2500.0, 90.0) > heat_rise(0.5, 2500.0, 90.0)
    assert heat_rise(0.7, 2500.0, 70.0) > heat_rise(0.7, 2500.0, 90.0)
    assert heat_rise(0.7, 2800.0, 90.0) > heat_rise(0.7, 2000.0, 90.0)
