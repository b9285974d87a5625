from __future__ import annotations

import pytest

from recorder.device import units


def test_temperature() -> None:
    assert units.fahrenheit_to(212.0, "°C") == pytest.approx(100.0)
    assert units.fahrenheit_to(-40.0, "°C") == pytest.approx(-40.0)
    assert units.fahrenheit_to(50.0, "°F") == 50.0


@pytest.mark.parametrize(
    ("unit", "expected"),
    [
        ("hPa", 1013.21),
        ("mb", 1013.21),
        ("bar", 1.01321),
        ("mmHg", 759.97),
        ("inHg", 29.92),
    ],
)
def test_pressure(unit: str, expected: float) -> None:
    assert units.inhg_to(29.92, unit) == pytest.approx(expected, rel=1e-4)


@pytest.mark.parametrize(
    ("unit", "expected"),
    [
        ("km/h", 16.09344),
        ("m/s", 4.4704),
        ("ft/s", 14.6667),
        ("knots", 8.68976),
        ("mph", 10.0),
        ("Beaufort", 3.0),
    ],
)
def test_wind(unit: str, expected: float) -> None:
    assert units.mph_to(10.0, unit) == pytest.approx(expected, rel=1e-4)


def test_beaufort_scale_edges() -> None:
    assert units.beaufort(0.0) == 0
    assert units.beaufort(0.5) == 1
    assert units.beaufort(32.6) == 11
    assert units.beaufort(40.0) == 12


def test_rain_clicks() -> None:
    assert units.clicks_to(10, rain_collector_size="0.2mm", unit="mm") == pytest.approx(2.0)
    assert units.clicks_to(10, rain_collector_size="0.01in", unit="in") == pytest.approx(0.1)
    assert units.clicks_to(10, rain_collector_size="0.01in", unit="mm") == pytest.approx(2.54)
    assert units.clicks_to(254, rain_collector_size="0.1mm", unit="in") == pytest.approx(1.0)


def test_unsupported_units_raise() -> None:
    with pytest.raises(ValueError):
        units.fahrenheit_to(1.0, "K")
    with pytest.raises(ValueError):
        units.mph_to(1.0, "mach")
    with pytest.raises(ValueError):
        units.clicks_to(1, rain_collector_size="1in", unit="mm")
