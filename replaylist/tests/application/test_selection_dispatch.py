import io
import json
import logging
import threading
from unittest.mock import Mock

import pytest

from replaylist.application.playlists import PlaylistStore
from replaylist.application.selection import SelectionDispatcher, send_transfer
from replaylist.crosscutting.logging import StructuredFormatter
from replaylist.crosscutting.metrics import DispatchMetrics
from replaylist.domain.entities import PlaylistItem, Session, Track
from replaylist.domain.errors import PermanentFailure, UnsupportedProvider
from replaylist.domain.ports import Backend
from replaylist.domain.providers import Provider

A, S, Y, Z = Provider.APPLE, Provider.SPOTIFY, Provider.YOUTUBE, Provider.AMAZON


def _item(playlist_id: str) -> PlaylistItem:
    return PlaylistItem(id=playlist_id, name=playlist_id.upper(), cover_url="c", track_count=1,
                        tracks=(Track("T", "A"),))


class TestSendTransfer:
    """Tests for a single transfer request."""

    def test_success_sends_wire_payload(self):
        backend = Mock(spec=Backend)
        outcome = send_transfer(backend, S, _item("p1"))

        assert outcome.ok
        destination, payload = backend.transfer.call_args[0]
        assert destination is S
        assert payload["id"] == "p1"
        assert payload["cover"] == "c"
        assert "selected" not in payload

    def test_failure_becomes_outcome(self):
        backend = Mock(spec=Backend)
        backend.transfer.side_effect = PermanentFailure("HTTP 500", status_code=500)

        outcome = send_transfer(backend, S, _item("p1"))

        assert not outcome.ok
        assert outcome.error == "PermanentFailure: HTTP 500"

    def test_unsupported_destination_becomes_outcome(self):
        backend = Mock(spec=Backend)
        backend.transfer.side_effect = UnsupportedProvider("No transfer endpoint for amazon")

        outcome = send_transfer(backend, Z, _item("p1"))

        assert not outcome.ok
        assert outcome.destination is Z

    def test_unexpected_error_becomes_outcome(self):
        backend = Mock(spec=Backend)
        backend.transfer.side_effect = OSError("socket closed")

        outcome = send_transfer(backend, S, _item("p1"))

        assert not outcome.ok
        assert outcome.error == "OSError: socket closed"


class TestSelectionDispatcher:
    """Tests for selection scoping and the transfer fan-out."""

    @pytest.fixture(autouse=True)
    def _setup(self, inline_loop, inline_executor):
        self.loop = inline_loop
        self.executor_cls = inline_executor
        self.backend = Mock(spec=Backend)
        self.metrics = DispatchMetrics()
        self.store = PlaylistStore(self.backend, self.loop, metrics=self.metrics)
        self.pool_sizes = []
        self.dispatcher = SelectionDispatcher(
            self.backend, self.loop, self.store,
            metrics=self.metrics, executor_factory=self._factory,
        )
        self.session = Session((Y, A), (S,), 1)
        self._load(A, [_item("p1"), _item("p2"), _item("p3")])
        self._load(Y, [_item("y1")])

    def _factory(self, workers):
        self.pool_sizes.append(workers)
        return self.executor_cls()

    def _load(self, provider, items):
        self.store.collection(provider).items = tuple(items)

    def test_toggle_all_is_scoped_to_active_source(self):
        self.dispatcher.toggle_all(self.session, True)

        assert [i.id for i in self.dispatcher.selected_items(self.session)] == ["p1", "p2", "p3"]
        assert self.store.selected(Y) == ()

    def test_toggle_one(self):
        self.dispatcher.toggle_one(self.session, "p2", True)
        self.dispatcher.toggle_one(self.session, "y1", True)

        assert [i.id for i in self.dispatcher.selected_items(self.session)] == ["p2"]
        assert self.store.selected(Y) == ()

    def test_dispatch_sends_one_request_per_selected_item(self):
        self.dispatcher.toggle_one(self.session, "p1", True)
        self.dispatcher.toggle_one(self.session, "p3", True)

        batch = self.dispatcher.dispatch_transfer(self.session)

        assert len(batch) == 2
        assert batch.destination is S
        sent = [call[0][1]["id"] for call in self.backend.transfer.call_args_list]
        assert sent == ["p1", "p3"]
        assert all(call[0][0] is S for call in self.backend.transfer.call_args_list)
        assert self.pool_sizes == [2]

    def test_dispatch_with_empty_selection_issues_nothing(self):
        batch = self.dispatcher.dispatch_transfer(self.session)

        assert len(batch) == 0
        self.backend.transfer.assert_not_called()
        assert self.pool_sizes == []

    def test_selection_is_snapshotted_at_dispatch(self):
        self.dispatcher.toggle_one(self.session, "p1", True)
        batch = self.dispatcher.dispatch_transfer(self.session)

        self.dispatcher.toggle_all(self.session, True)
        self.loop.run_pending()

        assert [i.id for i in batch.items] == ["p1"]
        assert self.backend.transfer.call_count == 1

    def test_failures_are_counted_not_raised(self):
        self.backend.transfer.side_effect = [None, PermanentFailure("HTTP 502", status_code=502), None]
        self.dispatcher.toggle_all(self.session, True)

        batch = self.dispatcher.dispatch_transfer(self.session)
        self.loop.run_pending()

        outcomes = batch.wait(timeout=1)
        assert [o.ok for o in outcomes] == [True, False, True]
        counters = self.metrics.counters("spotify")
        assert counters.issued == 3
        assert counters.succeeded == 2
        assert counters.failed == 1

    def test_concurrency_cap_limits_pool_size(self):
        dispatcher = SelectionDispatcher(self.backend, self.loop, self.store,
                                         max_concurrency=2, executor_factory=self._factory)
        dispatcher.toggle_all(self.session, True)

        dispatcher.dispatch_transfer(self.session)

        assert self.pool_sizes == [2]
        assert self.backend.transfer.call_count == 3

    def test_transfer_log_records_carry_playlist_id(self):
        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(StructuredFormatter())
        selection_logger = logging.getLogger("replaylist.application.selection")
        selection_logger.addHandler(handler)
        try:
            self.backend.transfer.side_effect = PermanentFailure("HTTP 502", status_code=502)
            self.dispatcher.toggle_one(self.session, "p2", True)
            self.dispatcher.dispatch_transfer(self.session)
            self.loop.run_pending()
        finally:
            selection_logger.removeHandler(handler)

        records = [json.loads(line) for line in stream.getvalue().splitlines()]
        failures = [r for r in records if r["level"] == "WARNING"]
        assert len(failures) == 1
        assert failures[0]["playlistId"] == "p2"
        assert failures[0]["destination"] == "spotify"


def test_dispatch_returns_before_any_response(inline_loop):
    release = threading.Event()
    backend = Mock(spec=Backend)
    backend.transfer.side_effect = lambda destination, playlist: release.wait(5)
    store = PlaylistStore(backend, inline_loop)
    store.collection(A).items = (_item("p1"), _item("p2"))
    dispatcher = SelectionDispatcher(backend, inline_loop, store)
    session = Session((A,), (S,), 0)
    dispatcher.toggle_all(session, True)

    try:
        batch = dispatcher.dispatch_transfer(session)

        assert len(batch.futures) == 2
        assert not any(f.done() for f in batch.futures)
    finally:
        release.set()

    outcomes = batch.wait(timeout=5)
    assert [o.ok for o in outcomes] == [True, True]
