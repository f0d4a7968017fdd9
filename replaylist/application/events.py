import logging
import queue
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Callable, Optional, Set, Tuple

logger = logging.getLogger(__name__)


def _noop(*_args) -> None:
    pass


class EventLoop:
    """Single-consumer event queue for a migration session.

    Blocking I/O runs on worker threads; its completion, like every timer
    firing, is posted back here and applied by ``run_pending`` on the owning
    thread, strictly in arrival order. Session state is never touched from a
    worker thread.
    """

    def __init__(self, executor: Optional[Executor] = None, max_workers: int = 8):
        self._queue: "queue.Queue[Tuple[Callable[..., Any], tuple]]" = queue.Queue()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix='replaylist-io'
        )
        self._lock = threading.Lock()
        self._in_flight: Set[Future] = set()
        self._timers: Set[threading.Timer] = set()

    def post(self, handler: Callable[..., Any], *args) -> None:
        """Queue ``handler(*args)``. Safe to call from any thread."""
        self._queue.put((handler, args))

    def submit(self, fn: Callable[[], Any],
               on_done: Optional[Callable[[Future], Any]] = None,
               executor: Optional[Executor] = None) -> Future:
        """Run ``fn`` on a worker and post ``on_done(future)`` when it finishes."""
        future = (executor or self._executor).submit(fn)
        with self._lock:
            self._in_flight.add(future)

        def _complete(f: Future) -> None:
            # Post before discarding so settle() never sees an idle loop with a result in transit
            self.post(on_done or _noop, f)
            with self._lock:
                self._in_flight.discard(f)

        future.add_done_callback(_complete)
        return future

    def call_later(self, delay_sec: float, handler: Callable[..., Any], *args) -> threading.Timer:
        """Post ``handler(*args)`` after ``delay_sec`` seconds."""
        timer: Optional[threading.Timer] = None

        def _fire() -> None:
            self.post(handler, *args)
            with self._lock:
                self._timers.discard(timer)

        timer = threading.Timer(delay_sec, _fire)
        timer.daemon = True
        with self._lock:
            self._timers.add(timer)
        timer.start()
        return timer

    def _apply(self, handler: Callable[..., Any], args: tuple) -> None:
        try:
            handler(*args)
        except Exception:
            logger.exception(f"Event handler {getattr(handler, '__name__', handler)!r} failed")

    def run_pending(self) -> int:
        """Apply every queued event, including ones queued by handlers. Returns the count."""
        applied = 0
        while True:
            try:
                handler, args = self._queue.get_nowait()
            except queue.Empty:
                return applied
            self._apply(handler, args)
            applied += 1

    def is_idle(self) -> bool:
        with self._lock:
            busy = bool(self._in_flight or self._timers)
        return not busy and self._queue.empty()

    def settle(self, timeout: Optional[float] = None) -> bool:
        """Apply events until no work, timer or event is outstanding.

        Returns False if ``timeout`` elapsed first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            self.run_pending()
            if self.is_idle():
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            try:
                handler, args = self._queue.get(timeout=0.05 if remaining is None else min(0.05, remaining))
            except queue.Empty:
                continue
            self._apply(handler, args)

    def close(self) -> None:
        with self._lock:
            timers = list(self._timers)
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        if self._owns_executor:
            self._executor.shutdown(wait=False)
