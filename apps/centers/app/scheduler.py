import logging
import threading
from typing import Callable

logger = logging.getLogger("centers.scheduler")


class IntervalScheduler:
    """Run ``job`` on a daemon thread every ``interval_secs``.

    ``stop()`` prevents further cycles; a cycle already running is left to finish.
    """

    def __init__(self, name: str, job: Callable[[], object], interval_secs: float, run_immediately: bool = False):
        self.name = name
        self.job = job
        self.interval_secs = interval_secs
        self.run_immediately = run_immediately
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def run_once(self) -> None:
        try:
            self.job()
        except Exception:
            logger.exception("%s cycle failed", self.name)

    def _loop(self) -> None:
        if not self.run_immediately and self._stop.wait(self.interval_secs):
            return
        while not self._stop.is_set():
            self.run_once()
            if self._stop.wait(self.interval_secs):
                break
        logger.info("%s scheduler stopped", self.name)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._loop, name=f"scheduler-{self.name}", daemon=True)
        self._thread.start()
        logger.info("%s scheduler started, interval %ss", self.name, self.interval_secs)

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None and timeout:
            self._thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
