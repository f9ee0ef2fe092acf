from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the telemetry service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def sample(self) -> Dict[str, Any]:
        try:
            response = self._client.post("/api/motor/sample")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def list_readings(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        params = {"limit": limit} if limit is not None else None
        try:
            response = self._client.get("/api/motor", params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        payload = response.json()
        if not isinstance(payload, list):
            raise typer.BadParameter("Unexpected response payload when listing readings.")
        return payload

    def delete_all(self, passkey: str) -> int:
        try:
            response = self._client.delete("/api/motor", headers={"X-Passkey": passkey})
            if response.status_code == 403:
                raise typer.BadParameter("The passkey was rejected.")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        deleted = response.json().get("deleted")
        if not isinstance(deleted, int):
            raise typer.BadParameter("Unexpected response payload when deleting readings.")
        return deleted

    def service(self, passkey: str) -> Dict[str, Any]:
        try:
            response = self._client.post("/api/motor/maintenance", headers={"X-Passkey": passkey})
            if response.status_code == 403:
                raise typer.BadParameter("The passkey was rejected.")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


async def fetch_recent(config: CLIConfig, limit: int) -> List[Dict[str, Any]]:
    """Bulk read used to seed a live view; transport errors propagate to the caller."""

    async with httpx.AsyncClient(base_url=config.base_url, timeout=config.timeout) as client:
        response = await client.get("/api/motor", params={"limit": limit})
        response.raise_for_status()
        try:
            payload = response.json()
        except ValueError as exc:
            raise httpx.DecodingError(f"Readings response is not JSON: {exc}", request=response.request) from exc
    if not isinstance(payload, list):
        raise httpx.DecodingError("Expected a JSON list of readings.")
    return payload
