from __future__ import annotations

from typing import Iterator

import pytest

from settings import get_settings


@pytest.fixture
def clean_settings() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
