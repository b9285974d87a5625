from __future__ import annotations

# Raw LOOP values are imperial: °F, inHg, mph, rain collector clicks.

_INHG_TO_HPA = 33.8639
_MPH_TO_MS = 0.44704
_MM_PER_INCH = 25.4

# Upper bounds (m/s) of Beaufort forces 0..11; anything above is force 12.
_BEAUFORT_LIMITS_MS = (0.5, 1.6, 3.4, 5.5, 8.0, 10.8, 13.9, 17.2, 20.8, 24.5, 28.5, 32.7)

_CLICK_SIZES = {
    "0.01in": ("in", 0.01),
    "0.2mm": ("mm", 0.2),
    "0.1mm": ("mm", 0.1),
}


def fahrenheit_to(value_f: float, unit: str) -> float:
    if unit == "°F":
        return value_f
    if unit == "°C":
        return (value_f - 32.0) * 5.0 / 9.0
    raise ValueError(f"unsupported temperature unit: {unit}")


def inhg_to(value_inhg: float, unit: str) -> float:
    if unit == "inHg":
        return value_inhg
    if unit in {"hPa", "mb"}:
        return value_inhg * _INHG_TO_HPA
    if unit == "bar":
        return value_inhg * _INHG_TO_HPA / 1000.0
    if unit == "mmHg":
        return value_inhg * _MM_PER_INCH
    raise ValueError(f"unsupported pressure unit: {unit}")


def beaufort(speed_ms: float) -> int:
    for force, limit in enumerate(_BEAUFORT_LIMITS_MS):
        if speed_ms < limit:
            return force
    return 12


def mph_to(value_mph: float, unit: str) -> float:
    if unit == "mph":
        return value_mph
    if unit == "km/h":
        return value_mph * 1.609344
    if unit == "m/s":
        return value_mph * _MPH_TO_MS
    if unit == "ft/s":
        return value_mph * 5280.0 / 3600.0
    if unit == "knots":
        return value_mph * 0.868976
    if unit == "Beaufort":
        return float(beaufort(value_mph * _MPH_TO_MS))
    raise ValueError(f"unsupported wind unit: {unit}")


def inches_to(value_in: float, unit: str) -> float:
    if unit == "in":
        return value_in
    if unit == "mm":
        return value_in * _MM_PER_INCH
    raise ValueError(f"unsupported rain unit: {unit}")


def clicks_to(clicks: int, *, rain_collector_size: str, unit: str) -> float:
    """Convert rain collector clicks into `unit` ("mm" or "in")."""

    try:
        base_unit, per_click = _CLICK_SIZES[rain_collector_size]
    except KeyError as exc:
        raise ValueError(f"unsupported rain collector size: {rain_collector_size}") from exc

    amount = clicks * per_click
    if base_unit == unit:
        return amount
    if base_unit == "in":
        return inches_to(amount, unit)
    if unit == "in":
        return amount / _MM_PER_INCH
    raise ValueError(f"unsupported rain unit: {unit}")
