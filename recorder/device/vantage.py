from __future__ import annotations

import logging
import struct
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Protocol, runtime_checkable

from ..settings import UnitSettings
from . import units
from .base import DeviceConnectionError, Reading, ReadError

LOOP_PACKET_SIZE = 99
ACK = b"\x06"
_WAKE_ATTEMPTS = 3

# Sentinels the console uses for "no sensor / no data".
_DASHED_TEMP = 32767
_DASHED_BYTE = 255
_DASHED_SOLAR = 32767

logger = logging.getLogger("vant_recorder.device")


@runtime_checkable
class SerialPort(Protocol):
    def write(self, data: bytes, /) -> int | None: ...

    def read(self, size: int = 1, /) -> bytes: ...

    def reset_input_buffer(self) -> None: ...

    def close(self) -> None: ...


def open_serial(path: str, baud_rate: int, *, timeout_s: float = 1.2) -> SerialPort:
    try:
        import serial  # type: ignore[import-not-found]
    except ImportError as exc:
        raise RuntimeError("the serial backend requires pyserial (pip install pyserial)") from exc
    return serial.Serial(port=path, baudrate=baud_rate, timeout=timeout_s)


def crc16_ccitt(data: bytes) -> int:
    """CRC-CCITT (XModem) as used by the Vantage console; a valid packet incl. CRC yields 0."""

    crc = 0
    for byte in data:
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return crc


@dataclass(frozen=True)
class LoopRecord:
    """Raw (imperial) values of a LOOP packet; None where the console reports dashes."""

    barometer_inhg: float | None
    inside_temp_f: float | None
    inside_humidity: int | None
    outside_temp_f: float | None
    wind_speed_mph: int
    wind_avg_10m_mph: int
    wind_direction_deg: int | None
    outside_humidity: int | None
    rain_rate_clicks: int
    uv_index: float | None
    solar_radiation: int | None
    storm_rain_clicks: int
    day_rain_clicks: int
    month_rain_clicks: int
    year_rain_clicks: int
    day_et_in: float
    console_battery_v: float


def parse_loop_packet(packet: bytes) -> LoopRecord:
    if len(packet) != LOOP_PACKET_SIZE:
        raise ReadError(f"LOOP packet has {len(packet)} bytes (expected {LOOP_PACKET_SIZE})")
    if packet[:3] != b"LOO":
        raise ReadError(f"LOOP packet has invalid header {packet[:3]!r}")
    if crc16_ccitt(packet) != 0:
        raise ReadError("LOOP packet failed CRC check")

    def u8(offset: int) -> int:
        return packet[offset]

    def u16(offset: int) -> int:
        return struct.unpack_from("<H", packet, offset)[0]

    def i16(offset: int) -> int:
        return struct.unpack_from("<h", packet, offset)[0]

    def temp(offset: int) -> float | None:
        raw = i16(offset)
        return None if raw == _DASHED_TEMP else raw / 10.0

    def humidity(offset: int) -> int | None:
        raw = u8(offset)
        return None if raw == _DASHED_BYTE else raw

    barometer = u16(7)
    wind_dir = u16(16)
    uv = u8(43)
    solar = u16(44)

    return LoopRecord(
        barometer_inhg=barometer / 1000.0 if barometer else None,
        inside_temp_f=temp(9),
        inside_humidity=humidity(11),
        outside_temp_f=temp(12),
        wind_speed_mph=u8(14),
        wind_avg_10m_mph=u8(15),
        wind_direction_deg=wind_dir if 0 < wind_dir <= 360 else None,
        outside_humidity=humidity(33),
        rain_rate_clicks=u16(41),
        uv_index=None if uv == _DASHED_BYTE else uv / 10.0,
        solar_radiation=None if solar == _DASHED_SOLAR else solar,
        storm_rain_clicks=u16(46),
        day_rain_clicks=u16(50),
        month_rain_clicks=u16(52),
        year_rain_clicks=u16(54),
        day_et_in=u16(56) / 1000.0,
        console_battery_v=(u16(87) * 300 / 512) / 100.0,
    )


def build_loop_packet(
    *,
    barometer_inhg: float = 29.92,
    inside_temp_f: float = 70.0,
    inside_humidity: int = 40,
    outside_temp_f: float = 60.0,
    wind_speed_mph: int = 0,
    wind_avg_10m_mph: int = 0,
    wind_direction_deg: int = 0,
    outside_humidity: int = 50,
    rain_rate_clicks: int = 0,
    uv_index: float | None = None,
    solar_radiation: int | None = None,
    storm_rain_clicks: int = 0,
    day_rain_clicks: int = 0,
    month_rain_clicks: int = 0,
    year_rain_clicks: int = 0,
    day_et_in: float = 0.0,
    console_battery_raw: int = 768,
) -> bytes:
    """Encode a LOOP packet (used by the mock console and tests)."""

    body = bytearray(LOOP_PACKET_SIZE - 2)
    body[0:3] = b"LOO"
    body[3] = 0  # steady bar trend
    body[4] = 0  # LOOP packet type
    struct.pack_into("<H", body, 7, int(round(barometer_inhg * 1000)))
    struct.pack_into("<h", body, 9, int(round(inside_temp_f * 10)))
    body[11] = inside_humidity
    struct.pack_into("<h", body, 12, int(round(outside_temp_f * 10)))
    body[14] = wind_speed_mph
    body[15] = wind_avg_10m_mph
    struct.pack_into("<H", body, 16, wind_direction_deg)
    body[33] = outside_humidity
    struct.pack_into("<H", body, 41, rain_rate_clicks)
    body[43] = _DASHED_BYTE if uv_index is None else int(round(uv_index * 10))
    struct.pack_into("<H", body, 44, _DASHED_SOLAR if solar_radiation is None else solar_radiation)
    struct.pack_into("<H", body, 46, storm_rain_clicks)
    struct.pack_into("<H", body, 50, day_rain_clicks)
    struct.pack_into("<H", body, 52, month_rain_clicks)
    struct.pack_into("<H", body, 54, year_rain_clicks)
    struct.pack_into("<H", body, 56, int(round(day_et_in * 1000)))
    struct.pack_into("<H", body, 87, console_battery_raw)
    body[95] = 0x0A
    body[96] = 0x0D
    return bytes(body) + struct.pack(">H", crc16_ccitt(bytes(body)))


def _round(value: float | None, digits: int = 1) -> float | None:
    if value is None:
        return None
    return round(value, digits)


def to_payload(record: LoopRecord, *, model: str, rain_collector_size: str, unit_settings: UnitSettings) -> dict[str, Any]:
    """Render a LOOP record in the configured units (the collector's realtime schema)."""

    def temp(value: float | None) -> float | None:
        return None if value is None else _round(units.fahrenheit_to(value, unit_settings.temperature))

    def wind(value: int) -> float | None:
        return _round(units.mph_to(float(value), unit_settings.wind))

    def rain(clicks: int) -> float | None:
        return _round(
            units.clicks_to(clicks, rain_collector_size=rain_collector_size, unit=unit_settings.rain),
            2,
        )

    # The Vue has no UV / solar radiation sensors.
    has_solar_sensors = model == "Pro2"

    return {
        "press": None
        if record.barometer_inhg is None
        else _round(units.inhg_to(record.barometer_inhg, unit_settings.pressure), 2),
        "tempIn": temp(record.inside_temp_f),
        "tempOut": temp(record.outside_temp_f),
        "humIn": record.inside_humidity,
        "humOut": record.outside_humidity,
        "wind": wind(record.wind_speed_mph),
        "windAvg10m": wind(record.wind_avg_10m_mph),
        "windDir": record.wind_direction_deg,
        "rainRate": rain(record.rain_rate_clicks),
        "stormRain": rain(record.storm_rain_clicks),
        "rainDay": rain(record.day_rain_clicks),
        "rainMonth": rain(record.month_rain_clicks),
        "rainYear": rain(record.year_rain_clicks),
        "etDay": _round(units.inches_to(record.day_et_in, unit_settings.rain), 2),
        "uv": record.uv_index if has_solar_sensors else None,
        "solarRadiation": record.solar_radiation if has_solar_sensors else None,
        "batteryVoltage": _round(record.console_battery_v, 2),
    }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class VantageInterface:
    """Davis Vantage Pro 2 / Vue console attached to a serial line."""

    port: SerialPort
    model: str
    rain_collector_size: str
    unit_settings: UnitSettings = field(default_factory=UnitSettings)
    now_fn: Callable[[], datetime] = _utcnow
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def wake_up(self) -> None:
        for _ in range(_WAKE_ATTEMPTS):
            self.port.write(b"\n")
            if self.port.read(2) == b"\n\r":
                return
        raise ReadError("console did not wake up")

    def read_loop_packet(self) -> bytes:
        with self._lock:
            try:
                self.port.reset_input_buffer()
                self.wake_up()
                self.port.write(b"LOOP 1\n")
                ack = self.port.read(1)
                if ack != ACK:
                    raise ReadError(f"console did not acknowledge LOOP command (got {ack!r})")
                return self.port.read(LOOP_PACKET_SIZE)
            except OSError as exc:
                raise ReadError(f"serial i/o failed: {exc}") from exc

    def read_once(self) -> Reading:
        packet = self.read_loop_packet()
        record = parse_loop_packet(packet)
        return Reading(
            time=self.now_fn(),
            payload=to_payload(
                record,
                model=self.model,
                rain_collector_size=self.rain_collector_size,
                unit_settings=self.unit_settings,
            ),
        )

    def close(self) -> None:
        with self._lock:
            self.port.close()


def connect_vantage(
    *,
    path: str,
    baud_rate: int,
    model: str,
    rain_collector_size: str,
    unit_settings: UnitSettings,
    port_factory: Callable[[str, int], SerialPort] = open_serial,
) -> VantageInterface:
    try:
        port = port_factory(path, baud_rate)
    except OSError as exc:
        raise DeviceConnectionError(f"failed to open serial port {path}: {exc}") from exc

    device = VantageInterface(
        port=port,
        model=model,
        rain_collector_size=rain_collector_size,
        unit_settings=unit_settings,
    )
    try:
        device.wake_up()
    except (ReadError, OSError) as exc:
        port.close()
        raise DeviceConnectionError(f"weather station on {path} did not respond: {exc}") from exc
    logger.debug("Woke up console on %s", path)
    return device
