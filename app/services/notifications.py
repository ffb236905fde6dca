from __future__ import annotations

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

EVENT_PAYMENT_SETTLED = "pharmacy.payment.settled"
EVENT_PAYMENT_FAILED = "pharmacy.payment.failed"


class Notifier:
    """Receives order events after they are committed (toasts, push, ...)."""

    def notify(self, event: str, doctor_id: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):

    def notify(self, event: str, doctor_id: str, payload: Dict[str, Any]) -> None:
        logger.info("event=%s doctor=%s payload=%s", event, doctor_id, payload)


default_notifier = LoggingNotifier()


def notify_safely(
    notifier: Optional[Notifier],
    event: str,
    doctor_id: str,
    payload: Dict[str, Any],
) -> None:
    """
    Fire-and-forget: the order is already committed, so a failing notifier
    is logged and never reaches the caller.
    """
    target = notifier or default_notifier
    try:
        target.notify(event, doctor_id, payload)
    except Exception:
        logger.exception("Notifier failed for event=%s doctor=%s", event, doctor_id)
