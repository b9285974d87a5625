from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Protocol


class DeviceConnectionError(ConnectionError):
    """The weather station could not be reached while connecting."""


class ReadError(RuntimeError):
    """A single reading could not be taken from the weather station."""


@dataclass(frozen=True)
class Reading:
    """One snapshot of the station's measurements."""

    time: datetime
    payload: Mapping[str, Any] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        body = dict(self.payload)
        body["time"] = self.time.isoformat()
        return body


class DeviceHandle(Protocol):
    """Small internal device interface used by the scheduler."""

    def read_once(self) -> Reading: ...

    def close(self) -> None: ...
