"""Background thread that rebuilds daily plans once a day."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

_LOGGER = logging.getLogger("woodpecker.scheduler")


def utc_wall_clock() -> datetime:
    """Naive UTC now, the same clock the plan day is computed from."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def next_run_after(now: datetime, hour: int, minute: int) -> datetime:
    """The first `hour:minute` strictly after `now` (same tz semantics as `now`)."""
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


class DailyPlanTimer:
    """Runs `job` every day at a fixed UTC time on a daemon thread.

    `job` exceptions are logged and never stop the loop. `clock` returns
    naive UTC wall time so the run lands on the plan day it rebuilds; it
    is injectable for tests.
    """

    def __init__(
        self,
        job: Callable[[], object],
        hour: int,
        minute: int,
        clock: Callable[[], datetime] = utc_wall_clock,
    ):
        self._job = job
        self._hour = hour
        self._minute = minute
        self._clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="daily-plan-timer", daemon=True)
        self._thread.start()
        _LOGGER.info("daily plan timer started for %02d:%02d UTC", self._hour, self._minute)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None

    def seconds_until_next_run(self) -> float:
        now = self._clock()
        return max(0.0, (next_run_after(now, self._hour, self._minute) - now).total_seconds())

    def run_once(self) -> None:
        """Execute the job now, logging instead of raising on failure."""
        try:
            self._job()
        except Exception:
            _LOGGER.exception("daily plan sweep failed")
        finally:
            self.runs += 1

    def _loop(self) -> None:
        while not self._stop.wait(self.seconds_until_next_run()):
            self.run_once()
