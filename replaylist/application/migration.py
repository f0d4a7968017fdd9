import logging
from concurrent.futures import Executor
from typing import Any, Callable, Dict, List, Optional

from replaylist.application.apple_handshake import AppleTokenHandshake
from replaylist.application.auth_gate import AuthenticationGate
from replaylist.application.events import EventLoop
from replaylist.application.playlists import PlaylistStore
from replaylist.application.selection import SelectionDispatcher, TransferBatch
from replaylist.application.session_codec import build_login_url, decode, default_session, location_of, path_of
from replaylist.crosscutting.config import Settings
from replaylist.crosscutting.logging import CorrelationContext
from replaylist.crosscutting.metrics import DispatchMetrics
from replaylist.domain.entities import PlaylistItem, Session, Stage
from replaylist.domain.ports import Backend, NativeBridge
from replaylist.domain.providers import Provider, metadata_of
from replaylist.infrastructure.native_bridge import PollingBridge

logger = logging.getLogger(__name__)


class MigrationSession:
    """One user's migration session: provider pair, logins, playlists, selection.

    The address bar location is the serialized form of the session; every
    navigation replaces the session wholesale from the URL. All state changes
    happen on the thread that calls these methods and ``pump``/``settle``.
    """

    def __init__(self, backend: Backend,
                 bridge: Optional[NativeBridge] = None,
                 settings: Optional[Settings] = None,
                 loop: Optional[EventLoop] = None,
                 metrics: Optional[DispatchMetrics] = None,
                 transfer_executor_factory: Optional[Callable[[int], Executor]] = None):
        self._backend = backend
        self.settings = settings or Settings()
        self.loop = loop or EventLoop()
        self.metrics = metrics or DispatchMetrics()
        self.bridge = bridge or PollingBridge()

        self.gate = AuthenticationGate(backend, self.loop)
        self.playlists = PlaylistStore(backend, self.loop,
                                       artwork_size=self.settings.apple_artwork_size,
                                       metrics=self.metrics)
        self.selection = SelectionDispatcher(backend, self.loop, self.playlists,
                                             max_concurrency=self.settings.transfer_concurrency,
                                             metrics=self.metrics,
                                             executor_factory=transfer_executor_factory)
        self.apple = AppleTokenHandshake(backend, self.bridge, self.loop, self.gate,
                                         retry_delay_ms=self.settings.apple_retry_ms)

        self.session: Session = default_session()
        self.stage: Stage = Stage.HOME
        self.generation = 0
        self.last_batch: Optional[TransferBatch] = None

    # Navigation

    def navigate(self, url: str) -> None:
        """Load the session and stage from a location and refresh what depends on them."""
        self.session = decode(url)
        self.stage = Stage.from_path(path_of(url))
        self.generation += 1
        with CorrelationContext(source=self.session.active_source.value,
                                destination=self.session.active_destination.value,
                                stage=self.stage.value):
            logger.info(f"Navigated to {self.location()}")
            self.gate.refresh()
            if self.stage is Stage.LIST:
                self.playlists.fetch(self.session.active_source, self.generation, self.is_current)

    def location(self) -> str:
        return location_of(self.session, self.stage)

    def previous(self) -> str:
        return self._go(self.session.previous(), self.stage)

    def next(self) -> str:
        return self._go(self.session.next(), self.stage)

    def swap(self) -> str:
        return self._go(self.session.swap(), self.stage)

    def back_home(self) -> str:
        return self._go(self.session, Stage.HOME)

    def _go(self, session: Session, stage: Stage) -> str:
        url = location_of(session, stage)
        self.navigate(url)
        return url

    def is_current(self, provider: Provider, generation: int) -> bool:
        return generation == self.generation and provider is self.session.active_source

    # Authentication

    def can_proceed(self) -> bool:
        return self.gate.both_authenticated(self.session)

    def proceed(self) -> bool:
        """Go from Home to List; only allowed once both providers are logged in."""
        if not self.can_proceed():
            logger.info(f"Cannot proceed: {self.session.active_source.value} and "
                        f"{self.session.active_destination.value} must both be logged in")
            return False
        self._go(self.session, Stage.LIST)
        return True

    def login_url(self, provider: Provider) -> Optional[str]:
        return build_login_url(provider, self.session, self.settings)

    def start_apple_login(self) -> None:
        self.apple.start_login()

    def apple_developer_token(self) -> str:
        """Blocking fetch for the native wrapper; raises the backend's errors."""
        return self._backend.apple_developer_token()

    def deliver_apple_token(self, token: str) -> None:
        """Inbound native bridge message. Safe to call from any thread."""
        self.loop.post(self.apple.on_token, token)

    def logout_all(self) -> None:
        self.apple.forget()
        self.gate.logout_all()

    def logout(self, provider: Provider) -> None:
        if provider is Provider.APPLE:
            self.apple.forget()
        self.gate.logout(provider)

    # Selection and transfer

    def toggle_all(self, active: bool) -> None:
        self.selection.toggle_all(self.session, active)

    def toggle_one(self, playlist_id: str, active: bool) -> None:
        self.selection.toggle_one(self.session, playlist_id, active)

    def selected_items(self) -> List[PlaylistItem]:
        return list(self.selection.selected_items(self.session))

    def submit(self) -> TransferBatch:
        """Fire the transfer fan-out and move to Done without waiting for responses."""
        with CorrelationContext(source=self.session.active_source.value,
                                destination=self.session.active_destination.value,
                                stage=Stage.DONE.value):
            self.last_batch = self.selection.dispatch_transfer(self.session)
        self._go(self.session, Stage.DONE)
        return self.last_batch

    # Event loop

    def pump(self) -> int:
        return self.loop.run_pending()

    def settle(self, timeout: Optional[float] = None) -> bool:
        return self.loop.settle(timeout)

    def close(self) -> None:
        self.loop.close()

    # View model

    def view(self) -> Dict[str, Any]:
        """JSON-serializable state for the current stage."""
        session = self.session
        view: Dict[str, Any] = {
            'stage': self.stage.value,
            'location': self.location(),
            'source_candidates': [self._provider_view(p) for p in session.source_candidates],
            'destination_candidates': [self._provider_view(p) for p in session.destination_candidates],
            'active_source': session.active_source.value,
            'active_destination': session.active_destination.value,
            'active_source_index': session.active_source_index,
            'can_previous': session.active_source_index > 0,
            'can_next': session.active_source_index < len(session.source_candidates) - 1,
            'can_proceed': self.can_proceed(),
            'apple_login': self.apple.state.value,
        }
        if self.stage is Stage.LIST:
            coll = self.playlists.collection(session.active_source)
            view['loading'] = coll.loading
            view['error'] = coll.last_error
            view['playlists'] = [
                {
                    'id': item.id,
                    'name': item.name,
                    'cover_url': item.cover_url,
                    'track_count': item.track_count,
                    'selected': item.selected,
                }
                for item in coll.items
            ]
        elif self.stage is Stage.DONE:
            batch = self.last_batch
            view['transferred'] = [item.id for item in batch.items] if batch else []
            view['metrics'] = self.metrics.summary()
        return view

    def _provider_view(self, provider: Provider) -> Dict[str, Any]:
        meta = metadata_of(provider)
        return {
            'key': meta.wire_key,
            'name': meta.name,
            'icon': meta.icon,
            'login_label': meta.login_label,
            'authenticated': self.gate.is_authenticated(provider),
        }
