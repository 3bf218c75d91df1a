from __future__ import annotations

import time
from typing import Any, Dict, Iterator, List, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the readings query interface."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.request_timeout)

    def close(self) -> None:
        self._client.close()

    def get_recent(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        params = {"limit": limit} if limit is not None else None
        try:
            response = self._client.get("/api/readings/recent", params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            self._handle_transport_error(exc)
        payload = response.json()
        if not isinstance(payload, list):
            raise typer.BadParameter("Unexpected response payload for recent readings.")
        return payload

    def get_latest(self) -> Optional[Dict[str, Any]]:
        """Return the latest reading, or ``None`` when the service has none yet."""
        try:
            response = self._client.get("/api/readings/latest")
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            self._handle_transport_error(exc)
        return response.json()

    def iter_new_readings(self, interval: float, count: Optional[int] = None) -> Iterator[Dict[str, Any]]:
        """Poll the latest reading and yield each one not seen before."""
        seen_id: Any = None
        emitted = 0
        while count is None or emitted < count:
            latest = self.get_latest()
            if latest is not None and latest.get("id") != seen_id:
                seen_id = latest.get("id")
                emitted += 1
                yield latest
                if count is not None and emitted >= count:
                    return
            time.sleep(interval)

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("error") or data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    @staticmethod
    def _handle_transport_error(exc: httpx.TransportError) -> None:
        typer.secho(f"Could not reach the service: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
