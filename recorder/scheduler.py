from __future__ import annotations

import itertools
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from apscheduler.events import EVENT_JOB_ERROR, JobExecutionEvent
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler

from .delivery import DeliveryGateway
from .device.base import DeviceHandle, Reading
from .retry import RetryAborted, RetryExhausted, RetryPolicy
from .settings import CurrentConditionsTaskSettings

logger = logging.getLogger("vant_recorder.scheduler")

NowFn = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.astimezone()


def truncate_to_second(ts: datetime) -> datetime:
    return ts.replace(microsecond=0)


def compute_next_fire(reading_time: datetime, interval_s: int) -> tuple[datetime, int]:
    """Return (next_instant, delay_ms) for a reading taken at `reading_time`.

    The cadence is anchored to the reading's own (second-truncated) timestamp,
    so read/dispatch overhead does not accumulate from cycle to cycle.
    """

    ts = _aware(reading_time)
    next_instant = truncate_to_second(ts) + timedelta(seconds=interval_s)
    delay_ms = int((next_instant - ts) / timedelta(milliseconds=1))
    return next_instant, delay_ms


class SampleScheduler:
    """Stopped/Running state machine driving the sample-and-deliver loop.

    While running there is exactly one pending one-shot job; a cycle arms its
    successor only after it has read and dispatched. `stop()` may be called
    from any thread and cancels the pending job; a cycle still in flight will
    not re-arm.
    """

    def __init__(
        self,
        *,
        device: DeviceHandle,
        gateway: DeliveryGateway,
        retry_policy: RetryPolicy | None = None,
        scheduler: BaseScheduler | None = None,
        now_fn: NowFn | None = None,
        job_name: str = "current_conditions",
    ) -> None:
        self.device = device
        self.gateway = gateway
        self.retry_policy = retry_policy or RetryPolicy()
        self._scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self._now_fn = now_fn or _utcnow
        self._job_name = job_name
        self._job_seq = itertools.count(1)

        self._lock = threading.RLock()
        self._running = False
        self._generation = 0
        self._pending_job: Any | None = None
        self._stop_event = threading.Event()
        self._task: CurrentConditionsTaskSettings | None = None
        self._active_task: CurrentConditionsTaskSettings | None = None

    # -----------------------------
    # Configuration
    # -----------------------------

    @property
    def task(self) -> CurrentConditionsTaskSettings | None:
        return self._task

    @task.setter
    def task(self, value: CurrentConditionsTaskSettings | None) -> None:
        # Picked up by the next start().
        with self._lock:
            self._task = value

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending_job(self) -> Any | None:
        return self._pending_job

    # -----------------------------
    # State machine
    # -----------------------------

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._generation += 1
            self._stop_event = threading.Event()
            self._active_task = self._task

            if not self._scheduler.running:
                self._scheduler.start()

            logger.info("Started recorder!")
            if self._active_task is not None:
                self._arm(self._generation, self._now_fn())

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            logger.info("Stopped recorder!")
            self._running = False
            self._generation += 1
            self._stop_event.set()
            self._cancel_pending()

    def restart(self) -> None:
        logger.info("Restarting recorder!")
        with self._lock:
            self.stop()
            self.start()

    def add_fault_listener(self, callback: Callable[[BaseException], None]) -> None:
        """Call `callback` with the exception of any cycle that raised."""

        def _on_error(event: JobExecutionEvent) -> None:
            if event.exception is not None:
                callback(event.exception)

        self._scheduler.add_listener(_on_error, EVENT_JOB_ERROR)

    def shutdown(self) -> None:
        self.stop()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    # -----------------------------
    # Cycle
    # -----------------------------

    def _is_current(self, generation: int) -> bool:
        return self._running and self._generation == generation

    def _cancel_pending(self) -> None:
        job = self._pending_job
        self._pending_job = None
        if job is None:
            return
        try:
            job.remove()
        except JobLookupError:
            # Already fired.
            pass

    def _arm(self, generation: int, fire_at: datetime) -> None:
        self._pending_job = self._scheduler.add_job(
            self._run_cycle,
            trigger="date",
            run_date=fire_at,
            args=[generation],
            id=f"{self._job_name}-{generation}-{next(self._job_seq)}",
            name=self._job_name,
            misfire_grace_time=None,
        )

    def _read(self, generation: int) -> Optional[Reading]:
        stop_event = self._stop_event
        try:
            return self.retry_policy.call(
                self.device.read_once,
                description="get realtime record from interface",
                should_continue=lambda: self._is_current(generation),
                wait=stop_event.wait,
            )
        except RetryExhausted:
            raise
        except RetryAborted as exc:
            logger.info("Abandoned realtime record: %s", exc)
            return None

    def _run_cycle(self, generation: int) -> None:
        with self._lock:
            if not self._is_current(generation):
                return
            self._pending_job = None
            task = self._active_task

        if task is None:
            return

        try:
            reading = self._read(generation)
        except RetryExhausted as exc:
            # Try again one interval from now.
            logger.error("Skipped realtime record: %s", exc)
            self._rearm(generation, _aware(self._now_fn()) + timedelta(seconds=task.interval))
            return
        if reading is None:
            return

        logger.info("New realtime record (%s)", reading.time.isoformat())
        self.gateway.submit(reading)

        next_instant, delay_ms = compute_next_fire(reading.time, task.interval)
        logger.debug("Next realtime record in %sms", delay_ms)
        self._rearm(generation, next_instant)

    def _rearm(self, generation: int, next_instant: datetime) -> None:
        with self._lock:
            if not self._is_current(generation):
                return
            now = _aware(self._now_fn())
            # Non-positive delay (clock jump, slow read) fires as soon as possible.
            fire_at = next_instant if next_instant > now else now
            self._arm(generation, fire_at)
