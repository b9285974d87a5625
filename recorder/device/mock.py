from __future__ import annotations

import hashlib
import math
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from ..settings import UnitSettings
from .base import Reading
from .vantage import build_loop_packet, parse_loop_packet, to_payload


def _rng_for(path: str) -> random.Random:
    seed_bytes = hashlib.sha256(path.encode("utf-8")).digest()[:8]
    return random.Random(int.from_bytes(seed_bytes, "big", signed=False))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MockVantageInterface:
    """Simulated console for local runs without hardware.

    Readings go through the same LOOP encode/decode path as the serial driver.
    """

    path: str
    model: str
    rain_collector_size: str
    unit_settings: UnitSettings = field(default_factory=UnitSettings)
    now_fn: Callable[[], datetime] = _utcnow
    _rng: random.Random = field(init=False, repr=False)
    _day_rain_clicks: int = field(default=0, init=False, repr=False)

    def __post_init__(self) -> None:
        self._rng = _rng_for(self.path)

    def read_once(self) -> Reading:
        now = self.now_fn()
        # Diurnal temperature swing around 60°F.
        phase = 2.0 * math.pi * ((time.time() % 86400.0) / 86400.0)
        outside_temp = 60.0 + 12.0 * math.sin(phase - math.pi / 2) + self._rng.uniform(-0.5, 0.5)

        if self._rng.random() < 0.02:
            self._day_rain_clicks += 1

        wind = max(0, int(round(self._rng.gauss(6.0, 3.0))))
        packet = build_loop_packet(
            barometer_inhg=29.92 + self._rng.uniform(-0.05, 0.05),
            inside_temp_f=70.0 + self._rng.uniform(-0.3, 0.3),
            inside_humidity=40,
            outside_temp_f=outside_temp,
            wind_speed_mph=wind,
            wind_avg_10m_mph=max(0, wind - 1),
            wind_direction_deg=self._rng.randint(1, 360),
            outside_humidity=int(self._rng.uniform(45, 75)),
            rain_rate_clicks=0,
            uv_index=round(self._rng.uniform(0.0, 6.0), 1),
            solar_radiation=int(self._rng.uniform(0, 800)),
            day_rain_clicks=self._day_rain_clicks,
            month_rain_clicks=self._day_rain_clicks,
            year_rain_clicks=self._day_rain_clicks,
        )
        record = parse_loop_packet(packet)
        return Reading(
            time=now,
            payload=to_payload(
                record,
                model=self.model,
                rain_collector_size=self.rain_collector_size,
                unit_settings=self.unit_settings,
            ),
        )

    def close(self) -> None:
        return None
