from __future__ import annotations
import logging
import threading
from datetime import timedelta
from typing import Optional

from .api import LibrarySystem, SweepReport
from .errors import ValidationError

logger = logging.getLogger(__name__)


class SweepScheduler:
    """
    Runs ``LibrarySystem.run_daily_sweep`` on a background thread.

    The first sweep runs as soon as the thread starts, then once per
    ``interval``. A sweep that raises has already rolled back; the error
    is logged and the next tick tries again. Pending notifications are
    flushed after each run, so deliveries that failed earlier are retried
    even when the sweep itself raised nothing new.

        with SweepScheduler(system, timedelta(hours=1)):
            serve_requests()
    """

    def __init__(self, system: LibrarySystem, interval: timedelta = timedelta(hours=1)) -> None:
        if interval <= timedelta(0):
            raise ValidationError("sweep interval must be positive")
        self.system = system
        self.interval = interval
        self.runs = 0
        self.last_report: Optional[SweepReport] = None
        self.ran = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> Optional[SweepReport]:
        try:
            report = self.system.run_daily_sweep()
        except Exception:
            logger.exception("[sweep] scheduled sweep failed, retrying next tick")
            return None
        finally:
            self.system.flush_notifications()
        self.runs += 1
        self.last_report = report
        self.ran.set()
        return report

    def start(self) -> "SweepScheduler":
        if self._thread is not None and self._thread.is_alive():
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="shelfkeeper-sweep", daemon=True)
        self._thread.start()
        logger.info("[sweep] scheduler started, every %s", self.interval)
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("[sweep] scheduler stopped after %d run(s)", self.runs)

    def _loop(self) -> None:
        seconds = self.interval.total_seconds()
        while True:
            self.run_once()
            if self._stop.wait(seconds):
                break

    def __enter__(self) -> "SweepScheduler":
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.stop()
