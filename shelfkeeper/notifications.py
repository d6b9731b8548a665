from __future__ import annotations
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol

logger = logging.getLogger(__name__)

RESERVATION_FULFILLED = "reservation_fulfilled"
RESERVATION_EXPIRED = "reservation_expired"
CLAIM_LAPSED = "claim_lapsed"
FINE_ISSUED = "fine_issued"


@dataclass(frozen=True)
class Notification:
    kind: str
    member_id: int
    payload: Dict[str, Any] = field(default_factory=dict)


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None: ...


class LoggingNotifier:
    """Default delivery: write the notification to the log."""

    def notify(self, notification: Notification) -> None:
        logger.info(
            "[notify] member=%s kind=%s payload=%s",
            notification.member_id,
            notification.kind,
            notification.payload,
        )


class NotificationOutbox:
    """
    Holds notifications until their transaction has committed.

    ``dispatch`` delivers everything queued; a delivery that raises stays
    queued for the next ``dispatch`` call, so receivers must tolerate
    duplicates.
    """

    def __init__(self, notifier: Notifier) -> None:
        self.notifier = notifier
        self._pending: List[Notification] = []
        self._lock = threading.Lock()

    def enqueue(self, batch: List[Notification]) -> None:
        with self._lock:
            self._pending.extend(batch)

    @property
    def pending(self) -> List[Notification]:
        with self._lock:
            return list(self._pending)

    def dispatch(self) -> int:
        with self._lock:
            batch, self._pending = self._pending, []

        delivered = 0
        failed: List[Notification] = []
        for n in batch:
            try:
                self.notifier.notify(n)
                delivered += 1
            except Exception:
                logger.exception("[notify] delivery failed, will retry: %s", n)
                failed.append(n)

        if failed:
            with self._lock:
                self._pending = failed + self._pending
        return delivered
