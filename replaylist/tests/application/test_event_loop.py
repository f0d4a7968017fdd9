import threading
from concurrent.futures import Future, ThreadPoolExecutor

import pytest

from replaylist.application.events import EventLoop


class TestEventLoop:
    """Tests for the single-consumer event loop."""

    def setup_method(self):
        self.loop = EventLoop(max_workers=2)
        self.applied = []

    def teardown_method(self):
        self.loop.close()

    def test_posted_events_applied_in_order(self):
        for n in range(5):
            self.loop.post(self.applied.append, n)

        assert self.applied == []
        assert self.loop.run_pending() == 5
        assert self.applied == [0, 1, 2, 3, 4]

    def test_events_posted_by_handlers_run_in_same_pass(self):
        self.loop.post(lambda: self.loop.post(self.applied.append, "nested"))
        self.loop.run_pending()
        assert self.applied == ["nested"]

    def test_completion_applied_on_owner_thread_only(self):
        owner = threading.current_thread()
        seen = []
        gate = threading.Event()

        def work():
            gate.wait(1)
            return threading.current_thread()

        def on_done(future: Future):
            seen.append((future.result(), threading.current_thread()))

        self.loop.submit(work, on_done)
        assert self.loop.run_pending() == 0
        gate.set()

        assert self.loop.settle(timeout=2)
        worker, applier = seen[0]
        assert worker is not owner
        assert applier is owner

    def test_handler_exception_does_not_stop_loop(self):
        def boom():
            raise RuntimeError("boom")

        self.loop.post(boom)
        self.loop.post(self.applied.append, "after")
        self.loop.run_pending()

        assert self.applied == ["after"]

    def test_call_later_fires_through_queue(self):
        self.loop.call_later(0.01, self.applied.append, "tick")
        assert not self.loop.is_idle()

        assert self.loop.settle(timeout=2)
        assert self.applied == ["tick"]
        assert self.loop.is_idle()

    def test_close_cancels_pending_timers(self):
        self.loop.call_later(5, self.applied.append, "never")
        self.loop.close()

        assert self.loop.is_idle()
        assert self.loop.run_pending() == 0
        assert self.applied == []

    def test_settle_times_out_with_outstanding_work(self):
        release = threading.Event()
        self.loop.submit(lambda: release.wait(2))

        assert self.loop.settle(timeout=0.1) is False
        release.set()
        assert self.loop.settle(timeout=2) is True

    def test_failed_work_still_completes(self):
        def fail():
            raise ValueError("bad")

        self.loop.submit(fail, lambda f: self.applied.append(type(f.exception()).__name__))
        assert self.loop.settle(timeout=2)
        assert self.applied == ["ValueError"]


def test_submit_with_explicit_executor(inline_loop):
    results = []
    with ThreadPoolExecutor(max_workers=1) as pool:
        inline_loop.submit(lambda: 21 * 2, lambda f: results.append(f.result()), executor=pool)
        assert inline_loop.settle(timeout=2)

    assert results == [42]


@pytest.mark.parametrize("count", [1, 10])
def test_inline_executor_completion_waits_for_pump(inline_loop, count):
    results = []
    for n in range(count):
        inline_loop.submit(lambda n=n: n, lambda f: results.append(f.result()))

    assert results == []
    inline_loop.run_pending()
    assert results == list(range(count))
