from __future__ import annotations

import functools
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import requests

from .device.base import Reading
from .settings import RecorderSettings

CURRENT_CONDITIONS_ROUTE = "/v1/current"

logger = logging.getLogger("vant_recorder.delivery")


@dataclass(frozen=True)
class TransportResponse:
    ok: bool
    status_code: int | None = None
    body: Any = None
    error: Exception | None = None


class Transport(Protocol):
    def post(self, url: str, payload: Mapping[str, Any], headers: Mapping[str, str]) -> TransportResponse: ...


class RequestsTransport:
    """HTTP transport on a shared requests.Session. Never raises; failures are in the response."""

    def __init__(self, *, timeout_s: float = 5.0, session: requests.Session | None = None) -> None:
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def post(self, url: str, payload: Mapping[str, Any], headers: Mapping[str, str]) -> TransportResponse:
        try:
            resp = self.session.post(url, json=dict(payload), headers=dict(headers), timeout=self.timeout_s)
        except requests.RequestException as exc:
            return TransportResponse(ok=False, error=exc)

        try:
            body: Any = resp.json()
        except ValueError:
            body = resp.text[:1000] if resp.text else None

        return TransportResponse(ok=200 <= resp.status_code < 300, status_code=resp.status_code, body=body)

    def close(self) -> None:
        self.session.close()


@dataclass(frozen=True)
class DeliveryResult:
    delivered: bool
    decision: str
    reason: str
    status_code: int | None = None
    error_class: str | None = None


def current_conditions_url(api_url: str) -> str:
    return f"{api_url.rstrip('/')}{CURRENT_CONDITIONS_ROUTE}"


def _server_message(body: Any) -> str | None:
    if isinstance(body, Mapping):
        message = body.get("message")
        if message:
            return str(message)
    return None


class DeliveryGateway:
    """Fire-and-forget delivery of readings to the collector.

    Each reading gets exactly one attempt; failures are logged and the reading
    is dropped. `submit` hands the work to a bounded worker pool and returns
    immediately.
    """

    def __init__(self, settings: RecorderSettings, transport: Transport, *, max_workers: int = 4) -> None:
        self.settings = settings
        self.transport = transport
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="vant-delivery")

    def headers(self) -> dict[str, str]:
        return {
            "accept": "application/json",
            "content-type": "application/json",
            "x-api-key": self.settings.key,
        }

    def submit(self, reading: Reading) -> Future[DeliveryResult]:
        future = self._executor.submit(self.deliver, reading)
        future.add_done_callback(functools.partial(self._log_crashed_delivery, reading))
        return future

    def _log_crashed_delivery(self, reading: Reading, future: Future[DeliveryResult]) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error(
                "Failed to send realtime record (%s) to '%s'!",
                reading.time.isoformat(),
                self.settings.api,
                exc_info=exc,
            )

    def deliver(self, reading: Reading) -> DeliveryResult:
        url = current_conditions_url(self.settings.api)
        response = self.transport.post(url, reading.to_json(), self.headers())

        if response.ok:
            logger.debug("Sent realtime record (%s) successfully!", reading.time.isoformat())
            return DeliveryResult(
                delivered=True,
                decision="delivered",
                reason="collector accepted record",
                status_code=response.status_code,
            )

        logger.error("Failed to send realtime record to '%s'!", self.settings.api)
        message = _server_message(response.body)
        if message:
            logger.error("Server message: '%s'", message)
        else:
            logger.error("Is your api running?")
            if response.error is not None:
                logger.error("%s", response.error)

        if response.status_code is None:
            return DeliveryResult(
                delivered=False,
                decision="delivery_failed",
                reason="no response from collector",
                error_class=type(response.error).__name__ if response.error is not None else "NO_RESPONSE",
            )
        return DeliveryResult(
            delivered=False,
            decision="delivery_failed",
            reason=message or "collector non-success response",
            status_code=response.status_code,
            error_class=f"HTTP_{response.status_code}",
        )

    def shutdown(self, *, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait)
