from __future__ import annotations

import copy
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlsplit

import yaml
from dotenv import load_dotenv

MODELS = ("Pro2", "Vue")
BAUD_RATES = (1200, 2400, 4800, 9600, 14400, 19200)
RAIN_COLLECTOR_SIZES = ("0.01in", "0.2mm", "0.1mm")

TEMPERATURE_UNITS = ("°C", "°F")
PRESSURE_UNITS = ("hPa", "bar", "inHg", "mmHg", "mb")
RAIN_UNITS = ("mm", "in")
WIND_UNITS = ("km/h", "mph", "ft/s", "m/s", "knots", "Beaufort")
SOLAR_RADIATION_UNITS = ("W/m²",)

LOG_LEVELS = ("debug", "info", "warn", "error")
LOG_FORMATS = ("text", "json")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class InvalidRecorderConfigurationError(ValueError):
    """Raised when the recorder (or one of its tasks) is configured incompletely or invalidly."""


@dataclass(frozen=True)
class UnitSettings:
    temperature: str = "°C"
    pressure: str = "hPa"
    rain: str = "mm"
    wind: str = "km/h"
    solar_radiation: str = "W/m²"


@dataclass(frozen=True)
class LogSettings:
    log_level: str = "info"
    console_log: bool = True
    file_log: bool = False
    log_error_information: bool = False
    log_format: str = "text"
    log_dir: str = "./logs"


@dataclass(frozen=True)
class RecorderSettings:
    """General recorder settings.

    `api` is the URL of the running vant-api instance (e.g. `http://localhost:8000/api`),
    `path` the serial path of the weather station (e.g. `COM3` or `/dev/ttyUSB0`).
    The units have to match the units configured on the api side.
    """

    api: str = ""
    key: str = ""
    model: str = "Pro2"
    path: str = ""
    baud_rate: Optional[int] = 19200
    rain_collector_size: Optional[str] = None
    units: UnitSettings = field(default_factory=UnitSettings)
    log_options: LogSettings = field(default_factory=LogSettings)
    prefer_environment_variables: bool = False


@dataclass(frozen=True)
class CurrentConditionsTaskSettings:
    """Settings of the current conditions task (`api/v1/current`).

    Changing them on a running recorder requires `restart()`.
    """

    interval: int = 1
    prefer_environment_variables: bool = False


DEFAULT_RECORDER_SETTINGS = RecorderSettings()
DEFAULT_CURRENT_CONDITIONS_TASK_SETTINGS = CurrentConditionsTaskSettings()


# -----------------------------
# Environment overlay
# -----------------------------


def normalize_api_url(raw: str) -> str:
    """Default scheme-less hosts such as `localhost:8000/api` to http."""
    candidate = raw.strip()
    if candidate and "://" not in candidate:
        candidate = f"http://{candidate}"
    return candidate


def _parse_url(raw: str) -> str | None:
    candidate = normalize_api_url(raw)
    if any(ch.isspace() for ch in candidate):
        return None
    parsed = urlsplit(candidate)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        return None
    return candidate


def _parse_non_empty(raw: str) -> str | None:
    candidate = raw.strip()
    return candidate or None


def parse_bool(raw: str) -> bool | None:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return None


def _parse_int_at_least(raw: str, minimum: int) -> int | None:
    try:
        value = int(raw.strip())
    except ValueError:
        return None
    return value if value >= minimum else None


def _choice(allowed: tuple[str, ...]) -> Callable[[str], str | None]:
    def _parse(raw: str) -> str | None:
        candidate = raw.strip()
        return candidate if candidate in allowed else None

    return _parse


def _parse_baud_rate(raw: str) -> int | None:
    value = _parse_int_at_least(raw, 1)
    return value if value in BAUD_RATES else None


# (env variable, key path into the merged settings mapping, parser)
_ENVIRONMENT_OVERLAY: tuple[tuple[str, tuple[str, ...], Callable[[str], Any]], ...] = (
    ("API", ("api",), _parse_url),
    ("API_KEY", ("key",), _parse_non_empty),
    ("BAUD_RATE", ("baud_rate",), _parse_baud_rate),
    ("MODEL", ("model",), _choice(MODELS)),
    ("SERIAL_PATH", ("path",), _parse_non_empty),
    ("LOG_LEVEL", ("log_options", "log_level"), _choice(LOG_LEVELS)),
    ("RAIN_COLLECTOR_SIZE", ("rain_collector_size",), _choice(RAIN_COLLECTOR_SIZES)),
    ("CONSOLE_LOG", ("log_options", "console_log"), parse_bool),
    ("FILE_LOG", ("log_options", "file_log"), parse_bool),
    ("LOG_ERROR_INFORMATION", ("log_options", "log_error_information"), parse_bool),
    ("LOG_FORMAT", ("log_options", "log_format"), _choice(LOG_FORMATS)),
    ("LOG_DIR", ("log_options", "log_dir"), _parse_non_empty),
    ("RAIN_UNIT", ("units", "rain"), _choice(RAIN_UNITS)),
    ("TEMPERATURE_UNIT", ("units", "temperature"), _choice(TEMPERATURE_UNITS)),
    ("PRESSURE_UNIT", ("units", "pressure"), _choice(PRESSURE_UNITS)),
    ("SOLAR_RADIATION_UNIT", ("units", "solar_radiation"), _choice(SOLAR_RADIATION_UNITS)),
    ("WIND_UNIT", ("units", "wind"), _choice(WIND_UNITS)),
)


def _environment(environ: Mapping[str, str] | None) -> Mapping[str, str]:
    if environ is not None:
        return environ
    # Process variables win over the .env file.
    load_dotenv(override=False)
    return os.environ


def apply_environment_overlay(raw: dict[str, Any], environ: Mapping[str, str]) -> list[str]:
    """Overlay environment variables onto `raw` in place.

    Returns the names of variables that were missing or invalid; their fields
    keep the previous value.
    """

    invalid: list[str] = []
    for name, key_path, parser in _ENVIRONMENT_OVERLAY:
        value = environ.get(name)
        parsed = parser(value) if value is not None else None
        if parsed is None:
            invalid.append(name)
            continue
        target = raw
        for key in key_path[:-1]:
            target = target[key]
        target[key_path[-1]] = parsed
    return invalid


# -----------------------------
# Recorder settings
# -----------------------------


def _deep_merge(base: dict[str, Any], overrides: Mapping[str, Any], *, origin: str) -> dict[str, Any]:
    for key, value in overrides.items():
        if key not in base:
            raise InvalidRecorderConfigurationError(f"Unknown setting '{origin}{key}'!")
        if isinstance(base[key], dict):
            if value is None:
                continue
            if not isinstance(value, Mapping):
                raise InvalidRecorderConfigurationError(f"Setting '{origin}{key}' has to be a mapping!")
            _deep_merge(base[key], value, origin=f"{origin}{key}.")
        else:
            base[key] = value
    return base


def _build_settings(raw: Mapping[str, Any]) -> RecorderSettings:
    return RecorderSettings(
        api=normalize_api_url(raw["api"]) if isinstance(raw["api"], str) else raw["api"],
        key=raw["key"],
        model=raw["model"],
        path=raw["path"],
        baud_rate=raw["baud_rate"],
        rain_collector_size=raw["rain_collector_size"],
        units=UnitSettings(**raw["units"]),
        log_options=LogSettings(**raw["log_options"]),
        prefer_environment_variables=bool(raw["prefer_environment_variables"]),
    )


def merge_recorder_settings(
    overrides: Mapping[str, Any] | None = None,
    *,
    prefer_environment_variables: bool | None = None,
    environ: Mapping[str, str] | None = None,
) -> tuple[RecorderSettings, list[str]]:
    """Merge defaults, overrides and (optionally) the environment overlay.

    Does not validate; see `validate_recorder_settings`.
    """

    raw = _deep_merge(copy.deepcopy(asdict(DEFAULT_RECORDER_SETTINGS)), overrides or {}, origin="")
    if prefer_environment_variables is None:
        prefer_environment_variables = bool(raw["prefer_environment_variables"])
    raw["prefer_environment_variables"] = prefer_environment_variables

    invalid: list[str] = []
    if prefer_environment_variables:
        invalid = apply_environment_overlay(raw, _environment(environ))

    return _build_settings(raw), invalid


def _require_member(name: str, value: Any, allowed: tuple[Any, ...]) -> None:
    if value not in allowed or isinstance(value, bool):
        choices = ", ".join(str(a) for a in allowed)
        raise InvalidRecorderConfigurationError(f"Invalid {name} '{value}' (allowed: {choices})!")


def validate_recorder_settings(settings: RecorderSettings) -> RecorderSettings:
    if not settings.path:
        raise InvalidRecorderConfigurationError("No serial path specified!")
    if not settings.rain_collector_size:
        raise InvalidRecorderConfigurationError("No rain collector size specified!")
    if not settings.api:
        raise InvalidRecorderConfigurationError("No api url specified!")
    if not settings.baud_rate:
        raise InvalidRecorderConfigurationError("No baud rate specified!")
    if not settings.model:
        raise InvalidRecorderConfigurationError("No weather station model specified!")

    if not isinstance(settings.api, str) or _parse_url(settings.api) is None:
        raise InvalidRecorderConfigurationError(f"Invalid api url '{settings.api}' (expected an http(s) URL or host)!")
    _require_member("weather station model", settings.model, MODELS)
    _require_member("baud rate", settings.baud_rate, BAUD_RATES)
    _require_member("rain collector size", settings.rain_collector_size, RAIN_COLLECTOR_SIZES)
    _require_member("temperature unit", settings.units.temperature, TEMPERATURE_UNITS)
    _require_member("pressure unit", settings.units.pressure, PRESSURE_UNITS)
    _require_member("rain unit", settings.units.rain, RAIN_UNITS)
    _require_member("wind unit", settings.units.wind, WIND_UNITS)
    _require_member("solar radiation unit", settings.units.solar_radiation, SOLAR_RADIATION_UNITS)
    _require_member("log level", settings.log_options.log_level, LOG_LEVELS)
    _require_member("log format", settings.log_options.log_format, LOG_FORMATS)
    return settings


def resolve_recorder_settings(
    overrides: Mapping[str, Any] | None = None,
    *,
    prefer_environment_variables: bool | None = None,
    environ: Mapping[str, str] | None = None,
    on_invalid_variable: Callable[[str], None] | None = None,
) -> RecorderSettings:
    """Return fully resolved, validated settings.

    Raises InvalidRecorderConfigurationError for the first missing required
    field (serial path, rain collector size, api url, baud rate, model).
    """

    settings, invalid = merge_recorder_settings(
        overrides,
        prefer_environment_variables=prefer_environment_variables,
        environ=environ,
    )
    if on_invalid_variable is not None:
        for name in invalid:
            on_invalid_variable(name)
    return validate_recorder_settings(settings)


def load_overrides_from_file(path: str | Path) -> dict[str, Any]:
    """Read recorder overrides from a YAML document."""

    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise InvalidRecorderConfigurationError(f"Recorder config file does not exist: {config_path}")
    try:
        loaded = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise InvalidRecorderConfigurationError(f"Failed to parse recorder config at {config_path}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise InvalidRecorderConfigurationError(f"Recorder config at {config_path} must be a YAML mapping")
    return dict(loaded)


# -----------------------------
# Current conditions task
# -----------------------------


def resolve_current_conditions_task(
    overrides: Mapping[str, Any] | CurrentConditionsTaskSettings | bool | None,
    *,
    environ: Mapping[str, str] | None = None,
    on_invalid_variable: Callable[[str], None] | None = None,
) -> CurrentConditionsTaskSettings | None:
    """Resolve the current conditions task settings.

    `False`/`None` disables the task and returns None without validating.
    """

    if overrides is None or overrides is False:
        return None
    if overrides is True:
        overrides = {}
    if isinstance(overrides, CurrentConditionsTaskSettings):
        overrides = asdict(overrides)

    raw = _deep_merge(asdict(DEFAULT_CURRENT_CONDITIONS_TASK_SETTINGS), overrides, origin="")

    if raw["prefer_environment_variables"]:
        env = _environment(environ)
        raw_interval = env.get("CURRENT_CONDITIONS_INTERVAL")
        interval = _parse_int_at_least(raw_interval, 1) if raw_interval is not None else None
        if interval is None:
            if on_invalid_variable is not None:
                on_invalid_variable("CURRENT_CONDITIONS_INTERVAL")
        else:
            raw["interval"] = interval

    interval = raw["interval"]
    if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
        raise InvalidRecorderConfigurationError("The current conditions interval has to be greater or equal to 1.")

    return CurrentConditionsTaskSettings(
        interval=interval,
        prefer_environment_variables=bool(raw["prefer_environment_variables"]),
    )
