from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from pathlib import Path
from types import FrameType
from typing import Any

from dotenv import load_dotenv

from .device import DeviceConnectionError
from .recorder import Recorder
from .settings import InvalidRecorderConfigurationError, load_overrides_from_file, parse_bool

logger = logging.getLogger("vant_recorder")

SHUTDOWN_SIGNALS = ("SIGINT", "SIGTERM", "SIGUSR1", "SIGUSR2")


def _parse_bool_env(name: str, *, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = parse_bool(raw)
    if value is not None:
        return value
    logger.warning("Invalid environment variable %s=%r; using %s", name, raw, default)
    return default


class GracefulShutdown:
    """Signal and uncaught-fault handling bound to one recorder instance."""

    def __init__(self, recorder: Recorder) -> None:
        self.recorder = recorder
        self.exit_status = 0
        self._requested = threading.Event()

    @property
    def requested(self) -> bool:
        return self._requested.is_set()

    def request(self, status: int = 0) -> None:
        if not self._requested.is_set():
            logger.info("Shutting down gracefully...")
            self.exit_status = status
        self.recorder.stop()
        self._requested.set()

    def handle_signal(self, signum: int, _frame: FrameType | None) -> None:
        logger.warning("Received %s signal!", signal.Signals(signum).name)
        self.request(0)

    def handle_exception(self, exc_type, exc, tb) -> None:
        logger.error("Uncaught exception!", exc_info=(exc_type, exc, tb))
        self.request(1)
        self.recorder.close()

    def handle_thread_exception(self, args: threading.ExceptHookArgs) -> None:
        if args.exc_type is SystemExit:
            return
        logger.error(
            "Uncaught exception in thread %s!",
            args.thread.name if args.thread is not None else "?",
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )
        self.request(1)

    def handle_job_fault(self, exc: BaseException) -> None:
        logger.error("Recording cycle failed!", exc_info=(type(exc), exc, exc.__traceback__))
        self.request(1)

    def install(self) -> None:
        for name in SHUTDOWN_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is not None:
                signal.signal(signum, self.handle_signal)
        sys.excepthook = self.handle_exception
        threading.excepthook = self.handle_thread_exception
        self.recorder.scheduler.add_fault_listener(self.handle_job_fault)

    def wait(self, poll_s: float = 1.0) -> int:
        """Block until shutdown is requested, release resources, return the exit status."""
        while not self._requested.wait(timeout=poll_s):
            pass
        self.recorder.close()
        logger.info("Exiting!")
        return self.exit_status


def create_recorder_from_env() -> Recorder:
    overrides: dict[str, Any] = {}
    config_path = os.getenv("RECORDER_CONFIG_PATH")
    if config_path:
        overrides = load_overrides_from_file(config_path)
    overrides["prefer_environment_variables"] = True

    recorder = Recorder.create(overrides, backend=os.getenv("DEVICE_BACKEND", "serial").strip() or "serial")

    if _parse_bool_env("CURRENT_CONDITIONS_ENABLED", default=True):
        recorder.configure_current_conditions_task(
            {
                "interval": 1,
                "prefer_environment_variables": _parse_bool_env(
                    "CURRENT_CONDITIONS_PREFER_ENVIRONMENT_VARIABLES", default=True
                ),
            }
        )
    else:
        recorder.configure_current_conditions_task(False)
    return recorder


def main() -> None:
    # Repo-level .env (if present), then one next to the package.
    load_dotenv()
    load_dotenv(Path(__file__).resolve().parent / ".env")

    try:
        recorder = create_recorder_from_env()
    except InvalidRecorderConfigurationError as exc:
        raise SystemExit(f"[vant-recorder] invalid configuration: {exc}") from exc
    except DeviceConnectionError as exc:
        raise SystemExit(f"[vant-recorder] could not connect to weather station: {exc}") from exc

    shutdown = GracefulShutdown(recorder)
    shutdown.install()
    recorder.start()
    sys.exit(shutdown.wait())


if __name__ == "__main__":
    main()
