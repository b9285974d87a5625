from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Any

import pytest

from recorder.settings import (
    DEFAULT_RECORDER_SETTINGS,
    CurrentConditionsTaskSettings,
    InvalidRecorderConfigurationError,
    load_overrides_from_file,
    merge_recorder_settings,
    resolve_current_conditions_task,
    resolve_recorder_settings,
)


def _valid_overrides(**changes: Any) -> dict[str, Any]:
    overrides: dict[str, Any] = {
        "path": "COM5",
        "rain_collector_size": "0.2mm",
        "api": "http://host/api",
        "baud_rate": 19200,
        "model": "Pro2",
    }
    overrides.update(changes)
    return overrides


def test_resolve_keeps_defaults_for_absent_fields() -> None:
    settings = resolve_recorder_settings(_valid_overrides(units={"temperature": "°F"}))

    assert settings.path == "COM5"
    assert settings.rain_collector_size == "0.2mm"
    assert settings.api == "http://host/api"
    assert settings.key == ""
    assert settings.units.temperature == "°F"
    # Sibling unit fields keep their defaults.
    assert settings.units.pressure == DEFAULT_RECORDER_SETTINGS.units.pressure
    assert settings.units.wind == "km/h"
    assert settings.log_options == DEFAULT_RECORDER_SETTINGS.log_options


def test_resolve_does_not_mutate_defaults() -> None:
    resolve_recorder_settings(_valid_overrides(log_options={"log_level": "debug"}))
    assert DEFAULT_RECORDER_SETTINGS.log_options.log_level == "info"
    assert DEFAULT_RECORDER_SETTINGS.path == ""


@pytest.mark.parametrize(
    ("changes", "message"),
    [
        ({"path": ""}, "No serial path specified!"),
        ({"rain_collector_size": None}, "No rain collector size specified!"),
        ({"api": ""}, "No api url specified!"),
        ({"baud_rate": None}, "No baud rate specified!"),
        ({"model": ""}, "No weather station model specified!"),
    ],
)
def test_resolve_rejects_missing_required_field(changes: dict[str, Any], message: str) -> None:
    with pytest.raises(InvalidRecorderConfigurationError) as excinfo:
        resolve_recorder_settings(_valid_overrides(**changes))
    assert str(excinfo.value) == message


def test_resolve_reports_first_missing_field_in_fixed_order() -> None:
    with pytest.raises(InvalidRecorderConfigurationError, match="No serial path specified!"):
        resolve_recorder_settings({"api": "", "model": ""})

    with pytest.raises(InvalidRecorderConfigurationError, match="No rain collector size specified!"):
        resolve_recorder_settings({"path": "COM5", "api": ""})


def test_resolve_rejects_unknown_setting() -> None:
    with pytest.raises(InvalidRecorderConfigurationError, match="Unknown setting 'units.humidity'"):
        resolve_recorder_settings(_valid_overrides(units={"humidity": "%"}))


@pytest.mark.parametrize(
    "changes",
    [
        {"model": "Pro3"},
        {"baud_rate": 12345},
        {"rain_collector_size": "1in"},
        {"api": "ftp://host/api"},
        {"api": "http://:8000/api"},
        {"units": {"wind": "furlongs/fortnight"}},
        {"log_options": {"log_level": "verbose"}},
    ],
)
def test_resolve_rejects_values_outside_their_enumeration(changes: dict[str, Any]) -> None:
    with pytest.raises(InvalidRecorderConfigurationError):
        resolve_recorder_settings(_valid_overrides(**changes))


@pytest.mark.parametrize(
    ("api", "expected"),
    [
        ("localhost:8000/api", "http://localhost:8000/api"),
        ("  10.0.0.2:8000/api ", "http://10.0.0.2:8000/api"),
        ("https://weather.example.org/api", "https://weather.example.org/api"),
    ],
)
def test_resolve_defaults_scheme_less_api_to_http(api: str, expected: str) -> None:
    assert resolve_recorder_settings(_valid_overrides(api=api)).api == expected


def test_environment_api_without_scheme_defaults_to_http() -> None:
    settings, invalid = merge_recorder_settings(
        _valid_overrides(), prefer_environment_variables=True, environ={"API": "localhost:8000/api"}
    )
    assert settings.api == "http://localhost:8000/api"
    assert "API" not in invalid


def test_environment_overlay_applies_valid_variables() -> None:
    environ = {
        "API": "http://localhost:8000/api",
        "API_KEY": "secret",
        "BAUD_RATE": "9600",
        "MODEL": "Vue",
        "SERIAL_PATH": "/dev/ttyUSB0",
        "RAIN_COLLECTOR_SIZE": "0.01in",
        "LOG_LEVEL": "debug",
        "CONSOLE_LOG": "false",
        "FILE_LOG": "true",
        "RAIN_UNIT": "in",
        "TEMPERATURE_UNIT": "°F",
        "WIND_UNIT": "mph",
    }

    settings, invalid = merge_recorder_settings({}, prefer_environment_variables=True, environ=environ)

    assert settings.api == "http://localhost:8000/api"
    assert settings.key == "secret"
    assert settings.baud_rate == 9600
    assert settings.model == "Vue"
    assert settings.path == "/dev/ttyUSB0"
    assert settings.rain_collector_size == "0.01in"
    assert settings.log_options.log_level == "debug"
    assert settings.log_options.console_log is False
    assert settings.log_options.file_log is True
    assert settings.units.rain == "in"
    assert settings.units.temperature == "°F"
    assert settings.units.wind == "mph"
    assert "API" not in invalid
    assert "PRESSURE_UNIT" in invalid
    assert "LOG_ERROR_INFORMATION" in invalid


def test_environment_overlay_skips_invalid_variables_and_keeps_old_values() -> None:
    environ = {
        "API": "not a url",
        "BAUD_RATE": "12345",
        "MODEL": "Pro3",
        "CONSOLE_LOG": "maybe",
        "PRESSURE_UNIT": "atm",
    }
    warned: list[str] = []

    settings = resolve_recorder_settings(
        _valid_overrides(),
        prefer_environment_variables=True,
        environ=environ,
        on_invalid_variable=warned.append,
    )

    assert settings.api == "http://host/api"
    assert settings.baud_rate == 19200
    assert settings.model == "Pro2"
    assert settings.log_options.console_log is True
    assert settings.units.pressure == "hPa"
    for name in ("API", "BAUD_RATE", "MODEL", "CONSOLE_LOG", "PRESSURE_UNIT", "API_KEY"):
        assert name in warned


def test_environment_overlay_can_supply_required_fields() -> None:
    environ = {
        "API": "http://10.0.0.2:8000/api",
        "SERIAL_PATH": "COM3",
        "RAIN_COLLECTOR_SIZE": "0.1mm",
    }
    settings = resolve_recorder_settings({"prefer_environment_variables": True}, environ=environ)

    assert settings.prefer_environment_variables is True
    assert settings.path == "COM3"
    assert settings.rain_collector_size == "0.1mm"
    assert settings.api == "http://10.0.0.2:8000/api"


def test_environment_is_ignored_without_overlay() -> None:
    settings, invalid = merge_recorder_settings(_valid_overrides(), environ={"SERIAL_PATH": "COM9"})
    assert settings.path == "COM5"
    assert invalid == []


def test_missing_path_is_still_fatal_after_overlay() -> None:
    with pytest.raises(InvalidRecorderConfigurationError, match="No serial path specified!"):
        resolve_recorder_settings(
            {"api": "http://host/api", "rain_collector_size": "0.2mm"},
            prefer_environment_variables=True,
            environ={"SERIAL_PATH": "   "},
        )


# -----------------------------
# Current conditions task
# -----------------------------


@pytest.mark.parametrize("interval", [0, -1, 1.5, "2", True, None])
def test_task_rejects_invalid_interval(interval: Any) -> None:
    with pytest.raises(InvalidRecorderConfigurationError, match="greater or equal to 1"):
        resolve_current_conditions_task({"interval": interval})


def test_task_accepts_minimum_interval() -> None:
    task = resolve_current_conditions_task({"interval": 1})
    assert task == CurrentConditionsTaskSettings(interval=1, prefer_environment_variables=False)


def test_task_defaults_interval_to_one() -> None:
    task = resolve_current_conditions_task({})
    assert task is not None
    assert task.interval == 1


@pytest.mark.parametrize("disabled", [False, None])
def test_task_disable_signal_returns_none(disabled: Any) -> None:
    assert resolve_current_conditions_task(disabled) is None


def test_task_interval_from_environment() -> None:
    task = resolve_current_conditions_task(
        {"interval": 1, "prefer_environment_variables": True},
        environ={"CURRENT_CONDITIONS_INTERVAL": "15"},
    )
    assert task is not None
    assert task.interval == 15


@pytest.mark.parametrize("raw", ["0", "-3", "1.5", "soon"])
def test_task_invalid_environment_interval_is_warned_and_skipped(raw: str) -> None:
    warned: list[str] = []
    task = resolve_current_conditions_task(
        {"interval": 4, "prefer_environment_variables": True},
        environ={"CURRENT_CONDITIONS_INTERVAL": raw},
        on_invalid_variable=warned.append,
    )
    assert task is not None
    assert task.interval == 4
    assert warned == ["CURRENT_CONDITIONS_INTERVAL"]


# -----------------------------
# YAML overrides
# -----------------------------


def test_load_overrides_from_yaml_file(tmp_path: Path) -> None:
    config_path = tmp_path / "recorder.yaml"
    config_path.write_text(
        textwrap.dedent(
            """
            path: /dev/ttyUSB0
            api: http://localhost:8000/api
            rain_collector_size: 0.2mm
            units:
              temperature: °F
            """
        ).strip()
        + "\n",
        encoding="utf-8",
    )

    overrides = load_overrides_from_file(config_path)
    settings = resolve_recorder_settings(overrides)

    assert settings.path == "/dev/ttyUSB0"
    assert settings.units.temperature == "°F"


def test_load_overrides_rejects_missing_or_malformed_files(tmp_path: Path) -> None:
    with pytest.raises(InvalidRecorderConfigurationError, match="does not exist"):
        load_overrides_from_file(tmp_path / "missing.yaml")

    listing = tmp_path / "list.yaml"
    listing.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(InvalidRecorderConfigurationError, match="must be a YAML mapping"):
        load_overrides_from_file(listing)

    broken = tmp_path / "broken.yaml"
    broken.write_text("path: [unterminated\n", encoding="utf-8")
    with pytest.raises(InvalidRecorderConfigurationError, match="Failed to parse"):
        load_overrides_from_file(broken)
