import logging
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from replaylist.application.events import EventLoop
from replaylist.crosscutting.metrics import DispatchMetrics
from replaylist.domain.entities import FetchResult, PlaylistItem
from replaylist.domain.errors import DecodeFailure, PermanentFailure, TemporaryFailure, UnsupportedProvider
from replaylist.domain.normalization import parse_playlist_items
from replaylist.domain.ports import Backend
from replaylist.domain.providers import Provider

logger = logging.getLogger(__name__)


@dataclass
class ProviderPlaylists:
    """Playlist collection owned by one source provider."""

    items: Tuple[PlaylistItem, ...] = ()
    loading: bool = False
    last_error: Optional[str] = None
    latest_request: int = 0


@dataclass
class PendingFetch:
    provider: Provider
    request_id: int
    generation: int


def fetch_playlists(backend: Backend, provider: Provider, artwork_size: int = 300) -> FetchResult:
    """Fetch and normalize one provider's playlists. Never raises for backend trouble."""
    try:
        payload = backend.fetch_playlists(provider)
        items = parse_playlist_items(provider, payload, artwork_size=artwork_size)
    except (TemporaryFailure, PermanentFailure, DecodeFailure, UnsupportedProvider) as e:
        return FetchResult(provider=provider, error=f"{type(e).__name__}: {e}")
    except Exception as e:
        logger.exception(f"Unexpected error fetching playlists from {provider.value}")
        return FetchResult(provider=provider, error=f"{type(e).__name__}: {e}")
    return FetchResult(provider=provider, items=tuple(items))


class PlaylistStore:
    """Independent playlist collections, one per provider.

    A fetch result only commits if ``is_current(provider, generation)`` still
    holds when it is applied, i.e. no navigation happened since it was issued
    and the provider is still the active source.
    """

    def __init__(self, backend: Backend, loop: EventLoop,
                 artwork_size: int = 300, metrics: Optional[DispatchMetrics] = None):
        self._backend = backend
        self._loop = loop
        self._artwork_size = artwork_size
        self._metrics = metrics
        self._collections: Dict[Provider, ProviderPlaylists] = {p: ProviderPlaylists() for p in Provider}

    def collection(self, provider: Provider) -> ProviderPlaylists:
        return self._collections[provider]

    def items(self, provider: Provider) -> Tuple[PlaylistItem, ...]:
        return self._collections[provider].items

    def fetch(self, provider: Provider, generation: int,
              is_current: Callable[[Provider, int], bool]) -> Future:
        coll = self._collections[provider]
        coll.latest_request += 1
        coll.loading = True
        pending = PendingFetch(provider=provider, request_id=coll.latest_request, generation=generation)
        logger.info(f"Fetching playlists from {provider.value}")
        return self._loop.submit(
            lambda: fetch_playlists(self._backend, provider, self._artwork_size),
            lambda future: self._on_fetched(pending, future, is_current),
        )

    def _on_fetched(self, pending: PendingFetch, future: Future,
                    is_current: Callable[[Provider, int], bool]) -> None:
        result: FetchResult = future.result()
        coll = self._collections[pending.provider]
        latest = pending.request_id == coll.latest_request

        if not is_current(pending.provider, pending.generation):
            logger.debug(f"Dropping stale playlist fetch for {pending.provider.value}")
            if latest:
                coll.loading = False
            return

        coll.loading = False
        if result.ok:
            coll.items = result.items
            coll.last_error = None
            logger.info(f"Loaded {len(result.items)} playlists from {pending.provider.value}")
        else:
            coll.items = ()
            coll.last_error = result.error
            if self._metrics is not None:
                self._metrics.record_fetch_failure(result.error)
            logger.warning(f"Playlist fetch from {pending.provider.value} failed: {result.error}")

    def set_all_selected(self, provider: Provider, selected: bool) -> None:
        coll = self._collections[provider]
        coll.items = tuple(item.with_selected(selected) for item in coll.items)

    def set_selected(self, provider: Provider, playlist_id: str, selected: bool) -> bool:
        coll = self._collections[provider]
        found = False
        updated: List[PlaylistItem] = []
        for item in coll.items:
            if item.id == playlist_id:
                found = True
                item = item.with_selected(selected)
            updated.append(item)
        if found:
            coll.items = tuple(updated)
        return found

    def selected(self, provider: Provider) -> Tuple[PlaylistItem, ...]:
        return tuple(item for item in self._collections[provider].items if item.selected)
