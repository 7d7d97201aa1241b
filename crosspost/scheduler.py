from __future__ import annotations

import logging
import os
import threading

from crosspost.publisher import publish_due_posts

logger = logging.getLogger("crosspost")

SCHEDULER_INTERVAL_SECONDS = float(os.getenv("SCHEDULER_INTERVAL_SECONDS", "60"))


class ScheduledPostRunner:
    def __init__(self, interval: float = SCHEDULER_INTERVAL_SECONDS) -> None:
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="scheduled-posts", daemon=True)
        self._thread.start()
        logger.info("scheduler_started interval=%s", self.interval)

    def stop(self) -> None:
        self._stop.set()

    def tick(self) -> int:
        return len(publish_due_posts())

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                processed = self.tick()
                if processed:
                    logger.info("scheduler_tick processed=%s", processed)
            except Exception:  # noqa: BLE001
                logger.exception("scheduler_tick_failed")
            self._stop.wait(self.interval)


scheduled_runner = ScheduledPostRunner()
