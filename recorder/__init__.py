from .delivery import DeliveryGateway, DeliveryResult, RequestsTransport, TransportResponse
from .device import DeviceConnectionError, Reading, ReadError
from .recorder import Recorder
from .retry import RetryPolicy
from .scheduler import SampleScheduler, compute_next_fire
from .settings import (
    DEFAULT_CURRENT_CONDITIONS_TASK_SETTINGS,
    DEFAULT_RECORDER_SETTINGS,
    CurrentConditionsTaskSettings,
    InvalidRecorderConfigurationError,
    LogSettings,
    RecorderSettings,
    UnitSettings,
    resolve_current_conditions_task,
    resolve_recorder_settings,
)

__version__ = "0.1.0"

__all__ = [
    "CurrentConditionsTaskSettings",
    "DEFAULT_CURRENT_CONDITIONS_TASK_SETTINGS",
    "DEFAULT_RECORDER_SETTINGS",
    "DeliveryGateway",
    "DeliveryResult",
    "DeviceConnectionError",
    "InvalidRecorderConfigurationError",
    "LogSettings",
    "ReadError",
    "Reading",
    "Recorder",
    "RecorderSettings",
    "RequestsTransport",
    "RetryPolicy",
    "SampleScheduler",
    "TransportResponse",
    "UnitSettings",
    "compute_next_fire",
    "resolve_current_conditions_task",
    "resolve_recorder_settings",
]
