import logging
from concurrent.futures import Future
from enum import Enum
from typing import Optional

from replaylist.application.auth_gate import AuthenticationGate
from replaylist.application.events import EventLoop
from replaylist.domain.errors import DecodeFailure, PermanentFailure, TemporaryFailure, UnsupportedProvider
from replaylist.domain.ports import Backend, NativeBridge

logger = logging.getLogger(__name__)


class HandshakeState(str, Enum):
    IDLE = "idle"
    AWAITING_TOKEN = "awaiting_token"
    REGISTERING = "registering"


class AppleTokenHandshake:
    """Apple Music login through the native bridge.

    The first trigger sometimes fails to surface the native prompt, so a
    retry timer triggers it once more if no token has arrived by then.
    Tokens may therefore be delivered twice; a token that is already
    registered (or being registered) is ignored.
    """

    def __init__(self, backend: Backend, bridge: NativeBridge, loop: EventLoop,
                 gate: AuthenticationGate, retry_delay_ms: int = 100):
        self._backend = backend
        self._bridge = bridge
        self._loop = loop
        self._gate = gate
        self._retry_delay_sec = retry_delay_ms / 1000.0
        self.state = HandshakeState.IDLE
        self._attempt = 0
        self._registered_token: Optional[str] = None
        self._inflight_token: Optional[str] = None

    def start_login(self) -> None:
        self._attempt += 1
        self.state = HandshakeState.AWAITING_TOKEN
        logger.info("Triggering native Apple Music login")
        self._bridge.trigger_login()
        self._loop.call_later(self._retry_delay_sec, self._retry_trigger, self._attempt)

    def _retry_trigger(self, attempt: int) -> None:
        if attempt != self._attempt or self.state is not HandshakeState.AWAITING_TOKEN:
            return
        logger.debug("No Apple token yet, triggering native login again")
        self._bridge.trigger_login()

    def on_token(self, token: str) -> Optional[Future]:
        """Register a token delivered by the native layer. Returns None when ignored."""
        if not token:
            logger.warning("Ignoring empty Apple user token")
            return None
        if token == self._registered_token or token == self._inflight_token:
            logger.debug("Apple user token already registered, ignoring duplicate delivery")
            return None

        self.state = HandshakeState.REGISTERING
        self._inflight_token = token
        return self._loop.submit(lambda: self._backend.register_apple_token(token),
                                 lambda future: self._on_registered(token, future))

    def _on_registered(self, token: str, future: Future) -> None:
        try:
            future.result()
            self._registered_token = token
        except (TemporaryFailure, PermanentFailure, DecodeFailure, UnsupportedProvider) as e:
            # Status refresh is the only feedback; let a later delivery try again
            logger.warning(f"Apple user token registration failed: {e}")
        except Exception:
            logger.exception("Unexpected error registering Apple user token")
        finally:
            if self._inflight_token == token:
                self._inflight_token = None
            if self._inflight_token is None:
                self.state = HandshakeState.IDLE
            self._gate.refresh()

    def forget(self) -> None:
        """Drop the remembered token, e.g. after a logout."""
        self._registered_token = None
