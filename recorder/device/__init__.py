from __future__ import annotations

from ..settings import RecorderSettings
from .base import DeviceConnectionError, DeviceHandle, Reading, ReadError
from .mock import MockVantageInterface
from .vantage import VantageInterface, connect_vantage

_VALID_BACKENDS = {"serial", "mock"}


def connect_device(settings: RecorderSettings, *, backend: str = "serial") -> DeviceHandle:
    """Connect to the configured weather station.

    Raises DeviceConnectionError if the station cannot be reached.
    """

    if backend not in _VALID_BACKENDS:
        allowed = ", ".join(sorted(_VALID_BACKENDS))
        raise DeviceConnectionError(f"unsupported device backend '{backend}' (allowed: {allowed})")

    if backend == "mock":
        return MockVantageInterface(
            path=settings.path,
            model=settings.model,
            rain_collector_size=settings.rain_collector_size or "0.01in",
            unit_settings=settings.units,
        )

    return connect_vantage(
        path=settings.path,
        baud_rate=int(settings.baud_rate or 19200),
        model=settings.model,
        rain_collector_size=settings.rain_collector_size or "0.01in",
        unit_settings=settings.units,
    )


__all__ = [
    "DeviceConnectionError",
    "DeviceHandle",
    "MockVantageInterface",
    "ReadError",
    "Reading",
    "VantageInterface",
    "connect_device",
    "connect_vantage",
]
