import logging
from concurrent.futures import Future
from typing import Dict, Optional

from replaylist.application.events import EventLoop
from replaylist.domain.entities import Session
from replaylist.domain.errors import BACKEND_ERRORS
from replaylist.domain.ports import Backend
from replaylist.domain.providers import Provider

logger = logging.getLogger(__name__)


class AuthenticationGate:
    """Per-provider login status as last reported by the backend.

    Refreshes replace the whole map. A failed refresh keeps the previous map,
    so a transient backend error never locks the user out of the UI.
    """

    def __init__(self, backend: Backend, loop: EventLoop):
        self._backend = backend
        self._loop = loop
        self._status: Dict[str, bool] = {}
        self.last_error: Optional[str] = None

    @property
    def status(self) -> Dict[str, bool]:
        return dict(self._status)

    def refresh(self) -> Future:
        """Request fresh login status; applied when the response is processed."""
        return self._loop.submit(self._backend.login_status, self._on_status)

    def _on_status(self, future: Future) -> None:
        try:
            status = future.result()
        except BACKEND_ERRORS as e:
            self.last_error = str(e)
            logger.warning(f"Login status refresh failed, keeping previous status: {e}")
            return
        except Exception as e:
            self.last_error = f"{type(e).__name__}: {e}"
            logger.exception("Unexpected error refreshing login status, keeping previous status")
            return
        self._status = dict(status)
        self.last_error = None
        logger.debug(f"Login status: {self._status}")

    def logout_all(self) -> Future:
        """Forget every login locally, then tell the backend without waiting."""
        self._status = {}
        return self._loop.submit(self._backend.logout_all, self._on_logout_sent)

    def logout(self, provider: Provider) -> Future:
        self._status.pop(provider.value, None)
        return self._loop.submit(lambda: self._backend.logout(provider), self._on_logout_sent)

    def _on_logout_sent(self, future: Future) -> None:
        try:
            future.result()
        except BACKEND_ERRORS as e:
            logger.warning(f"Logout request failed: {e}")
        except Exception:
            logger.exception("Unexpected error sending logout request")
        finally:
            self.refresh()

    def is_authenticated(self, provider: Provider) -> bool:
        return self._status.get(provider.value, False) is True

    def both_authenticated(self, session: Session) -> bool:
        """True when the active source and the active destination are both logged in."""
        return self.is_authenticated(session.active_source) and self.is_authenticated(session.active_destination)
