"""Background tasks owned by one ``SessionContext``.

Three daemon threads, all stopped by ``stop()``:

- poller: requests a recompute every poll interval (1s while a quiz is
  running, 3s otherwise)
- ticker: decrements the cached timers once per second
- recompute: waits for requests, debounces them, then re-reads the store
"""

import logging
import threading

from quizparty.errors import GameError, NotFound

logger = logging.getLogger(__name__)


class ReconciliationRunner:

    def __init__(self, context, tick_sec: float = 1.0):
        self.context = context
        self.tick_sec = tick_sec
        self._stop = threading.Event()
        self._threads = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        if self._threads:
            return
        for name, target in (('poller', self._poll), ('ticker', self._tick), ('recompute', self._recompute)):
            thread = threading.Thread(
                target=target, name=f"quizparty-{name}-{self.context.game_code}", daemon=True
            )
            self._threads.append(thread)
            thread.start()
        logger.info("[runner-start] game=%s", self.context.game_code)

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        # Wake the recompute thread if it is waiting for a request
        self.context._recompute.set()
        current = threading.current_thread()
        for thread in self._threads:
            if thread is not current:
                thread.join(timeout)
        logger.info("[runner-stop] game=%s", self.context.game_code)

    def _poll(self) -> None:
        while not self._stop.wait(self.context.poll_interval()):
            self.context.request_recompute('poll')

    def _tick(self) -> None:
        while not self._stop.wait(self.tick_sec):
            try:
                self.context.tick()
            except GameError as exc:
                logger.warning("[tick-failed] game=%s: %s", self.context.game_code, exc)

    def _recompute(self) -> None:
        debounce = self.context.config.debounce_ms / 1000.0
        while not self._stop.is_set():
            self.context._recompute.wait()
            if self._stop.is_set():
                return
            # Coalesce a burst of notifications into one re-read
            if debounce and self._stop.wait(debounce):
                return
            try:
                self.context.flush()
            except NotFound as exc:
                # Session deleted underneath us; the view has nothing left to show
                logger.warning("[session-gone] game=%s: %s", self.context.game_code, exc)
                self.context.report_error(exc)
                self._stop.set()
                return
            except GameError as exc:
                logger.warning("[recompute-failed] game=%s: %s", self.context.game_code, exc)
                self.context.report_error(exc)
