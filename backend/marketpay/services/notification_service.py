# Overview: Best-effort push notifications triggered by payment workflow transitions.

"""
Notification Dispatcher

Fire-and-forget side channel. Callers hand a payload over AFTER their
database transaction has committed; delivery runs on a worker pool and
every failure (submission, HTTP, sender bug) is logged and swallowed.
Nothing here can make a verify/reject/submit call fail.

USAGE:
    from marketpay.extensions import notifications

    notifications.notify_payment_verified(tenant_id, 2500, "PAYAB12CD34EF")
"""

from __future__ import annotations

import atexit
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx
from flask import Flask, current_app


NOTIFICATION_TYPE_PAYMENT = "payment"
NOTIFICATION_TYPE_ORDER = "order"

VERIFY_PAYMENTS_URL = "/verify-payments"

DISPATCH_MODE_THREAD = "thread"
DISPATCH_MODE_INLINE = "inline"


class Sender(Protocol):
    def send(self, tenant_id: int, payload: dict) -> None: ...


class PushSender:
    """Delivers a notification through the push service's send endpoint."""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    def send(self, tenant_id: int, payload: dict) -> None:
        response = httpx.post(
            self.url,
            json={"userId": str(tenant_id), "notification": payload},
            timeout=self.timeout,
        )
        response.raise_for_status()


@dataclass
class _DispatcherState:
    sender: Optional[Sender]
    executor: ThreadPoolExecutor
    mode: str
    currency: str


class NotificationDispatcher:
    """
    Flask extension holding one worker pool and sender per application.
    """

    def __init__(self, app: Flask | None = None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        url = app.config.get("PUSH_SEND_URL")
        sender = PushSender(url, timeout=app.config.get("PUSH_TIMEOUT_SECONDS", 10.0)) if url else None
        executor = ThreadPoolExecutor(
            max_workers=app.config.get("NOTIFICATION_WORKERS", 4),
            thread_name_prefix="notify",
        )
        # Queued deliveries drain at process exit; each is bounded by PUSH_TIMEOUT_SECONDS
        atexit.register(executor.shutdown, wait=True)
        app.extensions["marketpay_notifications"] = _DispatcherState(
            sender=sender,
            executor=executor,
            mode=app.config.get("NOTIFICATION_DISPATCH_MODE", DISPATCH_MODE_THREAD),
            currency=app.config.get("CURRENCY", "RWF"),
        )

    @staticmethod
    def _state(app: Flask) -> _DispatcherState:
        return app.extensions["marketpay_notifications"]

    def set_sender(self, sender: Optional[Sender]) -> None:
        """Swap the sender for the current application (tests, alternate channels)."""
        self._state(current_app._get_current_object()).sender = sender

    def shutdown(self, wait: bool = True) -> None:
        self._state(current_app._get_current_object()).executor.shutdown(wait=wait)

    # -------------------------------------------------------------------------

    def notify_payment_verified(self, tenant_id: int, amount: int, reference: str) -> Optional[Future]:
        state = self._state(current_app._get_current_object())
        return self.dispatch(tenant_id, {
            "title": "Payment received",
            "body": f"You received a payment of {amount:,} {state.currency} (Ref: {reference})",
            "url": VERIFY_PAYMENTS_URL,
            "type": NOTIFICATION_TYPE_PAYMENT,
            "data": {"amount": amount, "reference": reference},
        })

    def notify_awaiting_verification(self, tenant_id: int, reference: str, instrument_id: str) -> Optional[Future]:
        return self.dispatch(tenant_id, {
            "title": "Payment awaiting verification",
            "body": f"Payment {reference} needs review (Mobile Money TX: {instrument_id})",
            "url": VERIFY_PAYMENTS_URL,
            "type": NOTIFICATION_TYPE_PAYMENT,
            "data": {"reference": reference, "instrument_id": instrument_id},
        })

    def dispatch(self, tenant_id: int, payload: dict[str, Any]) -> Optional[Future]:
        """
        Hand a payload to the delivery channel. Never raises.

        Returns the worker Future in thread mode (callers must not wait on it
        for correctness), None otherwise.
        """
        app = current_app._get_current_object()
        try:
            state = self._state(app)
            if state.mode == DISPATCH_MODE_INLINE:
                _deliver(app, state.sender, tenant_id, payload)
                return None
            return state.executor.submit(_deliver, app, state.sender, tenant_id, payload)
        except Exception:
            app.logger.exception("Failed to dispatch notification to tenant %s", tenant_id)
            return None


def _deliver(app: Flask, sender: Optional[Sender], tenant_id: int, payload: dict) -> bool:
    if sender is None:
        app.logger.info(
            "Push delivery disabled; dropped notification for tenant %s: %s",
            tenant_id, payload.get("body"),
        )
        return False
    try:
        sender.send(tenant_id, payload)
    except Exception:
        app.logger.exception("Failed to deliver notification to tenant %s", tenant_id)
        return False
    return True
