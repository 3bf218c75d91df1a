from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

import typer

_LED_DESCRIPTIONS = (
    "All LEDs off (< 20°C)",
    "1 LED active (20-24°C)",
    "2 LEDs active (25-29°C)",
    "3 LEDs active (>= 30°C)",
)


def temperature_band(value: Optional[float]) -> str:
    if value is None:
        return "No data"
    if value > 30:
        return "High"
    if value >= 25:
        return "Warm"
    if value >= 20:
        return "Normal"
    return "Cool"


def led_description(level: Any) -> str:
    if isinstance(level, int) and not isinstance(level, bool) and 0 <= level < len(_LED_DESCRIPTIONS):
        return _LED_DESCRIPTIONS[level]
    return "Unknown state"


def _format_temperature(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:.1f}°C"


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_reading(payload: Dict[str, Any]) -> None:
    dht = payload.get("dhtTemperature")
    lm35 = payload.get("lm35Temperature")
    echo_heading("Latest Reading")
    echo_key_values(
        [
            ("id", payload.get("id")),
            ("timestamp", payload.get("timestamp")),
            ("dhtTemperature", f"{_format_temperature(dht)} ({temperature_band(dht)})"),
            ("lm35Temperature", f"{_format_temperature(lm35)} ({temperature_band(lm35)})"),
            ("ledLevel", f"{payload.get('ledLevel')} ({led_description(payload.get('ledLevel'))})"),
        ]
    )


def render_readings(readings: Iterable[Dict[str, Any]]) -> None:
    rows = list(readings)
    echo_heading("Recent Readings")
    if not rows:
        typer.echo("No readings recorded.")
        return
    typer.echo(f"{'id':>6}  {'timestamp':<32}  {'DHT11':>8}  {'LM35':>8}  {'LED':>3}")
    for row in rows:
        typer.echo(
            f"{row.get('id')!s:>6}  {row.get('timestamp')!s:<32}  "
            f"{_format_temperature(row.get('dhtTemperature')):>8}  "
            f"{_format_temperature(row.get('lm35Temperature')):>8}  "
            f"{row.get('ledLevel')!s:>3}"
        )
