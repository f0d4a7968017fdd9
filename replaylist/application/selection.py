import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from replaylist.application.events import EventLoop
from replaylist.application.playlists import PlaylistStore
from replaylist.crosscutting.logging import CorrelationContext, log_with_fields
from replaylist.crosscutting.metrics import DispatchMetrics
from replaylist.domain.entities import PlaylistItem, Session, TransferOutcome
from replaylist.domain.errors import DecodeFailure, PermanentFailure, TemporaryFailure, UnsupportedProvider
from replaylist.domain.normalization import playlist_to_wire
from replaylist.domain.ports import Backend
from replaylist.domain.providers import Provider

logger = logging.getLogger(__name__)


def _transfer_pool(workers: int) -> Executor:
    return ThreadPoolExecutor(max_workers=workers, thread_name_prefix='replaylist-transfer')


@dataclass(frozen=True)
class TransferBatch:
    """Playlists handed to the backend in one submit, with a future per item.

    Futures resolve to ``TransferOutcome`` and never raise. Nothing in the
    session waits on them.
    """

    destination: Provider
    items: Tuple[PlaylistItem, ...]
    futures: Tuple[Future, ...]

    def __len__(self) -> int:
        return len(self.items)

    def wait(self, timeout: Optional[float] = None) -> List[TransferOutcome]:
        """Block until every request finished (or timeout); return the finished outcomes."""
        done, _ = wait(self.futures, timeout=timeout)
        return [f.result() for f in self.futures if f in done]


def send_transfer(backend: Backend, destination: Provider, item: PlaylistItem) -> TransferOutcome:
    payload = playlist_to_wire(item)
    try:
        backend.transfer(destination, payload)
    except (TemporaryFailure, PermanentFailure, DecodeFailure, UnsupportedProvider) as e:
        return TransferOutcome(playlist_id=item.id, destination=destination, ok=False, error=f"{type(e).__name__}: {e}")
    except Exception as e:
        logger.exception(f"Unexpected error transferring {item.id} to {destination.value}")
        return TransferOutcome(playlist_id=item.id, destination=destination, ok=False, error=f"{type(e).__name__}: {e}")
    return TransferOutcome(playlist_id=item.id, destination=destination, ok=True)


class SelectionDispatcher:
    """Checkbox state for the active source and the transfer fan-out."""

    def __init__(self, backend: Backend, loop: EventLoop, store: PlaylistStore,
                 max_concurrency: Optional[int] = None,
                 metrics: Optional[DispatchMetrics] = None,
                 executor_factory: Optional[Callable[[int], Executor]] = None):
        self._backend = backend
        self._loop = loop
        self._store = store
        self._max_concurrency = max_concurrency
        self._metrics = metrics
        self._executor_factory = executor_factory or _transfer_pool

    def toggle_all(self, session: Session, active: bool) -> None:
        """Select or clear every playlist of the active source; other providers are untouched."""
        self._store.set_all_selected(session.active_source, active)

    def toggle_one(self, session: Session, playlist_id: str, active: bool) -> None:
        if not self._store.set_selected(session.active_source, playlist_id, active):
            logger.debug(f"No playlist {playlist_id!r} in {session.active_source.value} collection")

    def selected_items(self, session: Session) -> Tuple[PlaylistItem, ...]:
        return self._store.selected(session.active_source)

    def dispatch_transfer(self, session: Session) -> TransferBatch:
        """Fire one transfer request per selected playlist and return at once.

        The selection is snapshotted here; later toggles do not affect
        requests already issued. Without a concurrency cap every request
        starts immediately.
        """
        destination = session.active_destination
        items = self.selected_items(session)
        if not items:
            logger.info("Nothing selected, no transfer requests issued")
            return TransferBatch(destination=destination, items=(), futures=())

        workers = len(items) if self._max_concurrency is None else min(self._max_concurrency, len(items))
        executor = self._executor_factory(workers)
        futures = []
        try:
            for item in items:
                futures.append(self._loop.submit(
                    lambda item=item: send_transfer(self._backend, destination, item),
                    self._on_transfer_done,
                    executor=executor,
                ))
        finally:
            # Already-submitted work still runs; the pool just stops accepting more
            executor.shutdown(wait=False)

        if self._metrics is not None:
            self._metrics.record_batch(destination.value, len(items))
        log_with_fields(logger, "info", "Dispatched transfer requests",
                        source=session.active_source.value, destination=destination.value,
                        playlist_ids=[item.id for item in items])
        return TransferBatch(destination=destination, items=items, futures=tuple(futures))

    def _on_transfer_done(self, future: Future) -> None:
        outcome: TransferOutcome = future.result()
        with CorrelationContext(destination=outcome.destination.value, playlist_id=outcome.playlist_id):
            if outcome.ok:
                if self._metrics is not None:
                    self._metrics.record_transfer_success(outcome.destination.value)
                logger.debug(f"Transfer of {outcome.playlist_id} to {outcome.destination.value} accepted")
            else:
                if self._metrics is not None:
                    self._metrics.record_transfer_failure(outcome.destination.value, outcome.error)
                logger.warning(f"Transfer of {outcome.playlist_id} to {outcome.destination.value} failed: {outcome.error}")
