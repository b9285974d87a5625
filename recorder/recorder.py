from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from apscheduler.schedulers.base import BaseScheduler

from .delivery import DeliveryGateway, RequestsTransport, Transport
from .device import DeviceHandle, connect_device
from .observability import configure_logging
from .retry import RetryPolicy
from .scheduler import SampleScheduler
from .settings import (
    CurrentConditionsTaskSettings,
    RecorderSettings,
    merge_recorder_settings,
    resolve_current_conditions_task,
    validate_recorder_settings,
)

logger = logging.getLogger("vant_recorder")

DeviceFactory = Callable[[RecorderSettings], DeviceHandle]


def _warn_invalid_variable(name: str) -> None:
    logger.warning("Invalid or missing environment variable '%s'!", name)


class Recorder:
    """Repeatedly sends weather data to a running vant-api instance.

    Work is split into tasks; currently there is one:

    - current conditions: uploads a realtime record every `interval` seconds
      (default 1) to `api/v1/current`.

    Usage::

        recorder = Recorder.create({
            "path": "COM5",
            "api": "http://localhost:8000/api",
            "rain_collector_size": "0.2mm",
            "model": "Pro2",
        })
        recorder.configure_current_conditions_task({"interval": 10})
        recorder.start()
    """

    def __init__(
        self,
        settings: RecorderSettings,
        device: DeviceHandle,
        *,
        transport: Transport | None = None,
        retry_policy: RetryPolicy | None = None,
        scheduler: BaseScheduler | None = None,
        delivery_workers: int = 4,
    ) -> None:
        self.settings = settings
        self.device = device
        self.transport = transport or RequestsTransport()
        self.gateway = DeliveryGateway(settings, self.transport, max_workers=delivery_workers)
        self.scheduler = SampleScheduler(
            device=device,
            gateway=self.gateway,
            retry_policy=retry_policy,
            scheduler=scheduler,
        )

    @classmethod
    def create(
        cls,
        overrides: Mapping[str, Any] | None = None,
        *,
        environ: Mapping[str, str] | None = None,
        backend: str = "serial",
        device_factory: DeviceFactory | None = None,
        **kwargs: Any,
    ) -> "Recorder":
        """Create a recorder from `overrides` (and the environment when
        `prefer_environment_variables` is set).

        Raises InvalidRecorderConfigurationError for invalid settings (before
        any connection attempt) and DeviceConnectionError if the station
        cannot be reached.
        """

        settings, invalid = merge_recorder_settings(overrides, environ=environ)
        configure_logging(settings.log_options)
        for name in invalid:
            _warn_invalid_variable(name)
        if settings.prefer_environment_variables:
            logger.debug("Loaded environment variables!")

        try:
            validate_recorder_settings(settings)
        except ValueError as exc:
            logger.error("%s", exc)
            raise

        logger.info("Connecting to device %s (%s)...", settings.path, settings.model)
        if device_factory is not None:
            device = device_factory(settings)
        else:
            device = connect_device(settings, backend=backend)
        logger.info("Connected!")

        return cls(settings, device, **kwargs)

    # -----------------------------
    # Tasks
    # -----------------------------

    def configure_current_conditions_task(
        self,
        task: Mapping[str, Any] | CurrentConditionsTaskSettings | bool | None,
        *,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """Configure (or with `False` disable) the current conditions task.

        Takes effect on the next `start()`; call `restart()` on a running recorder.
        """

        self.scheduler.task = resolve_current_conditions_task(
            task,
            environ=environ,
            on_invalid_variable=_warn_invalid_variable,
        )

    def current_conditions_configured(self) -> bool:
        return self.scheduler.task is not None

    def current_conditions_interval(self) -> int | None:
        task = self.scheduler.task
        return task.interval if task is not None else None

    # -----------------------------
    # Lifecycle
    # -----------------------------

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        """Start all configured tasks. Does nothing if already started."""
        self.scheduler.start()

    def stop(self) -> None:
        """Stop all tasks. Does nothing if already stopped."""
        self.scheduler.stop()

    def restart(self) -> None:
        self.scheduler.restart()

    def close(self) -> None:
        self.scheduler.shutdown()
        self.gateway.shutdown(wait=False)
        self.device.close()
        close_transport = getattr(self.transport, "close", None)
        if callable(close_transport):
            close_transport()
