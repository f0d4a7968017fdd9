import logging
import threading
from typing import Callable, Optional

from replaylist.domain.ports import NativeBridge

logger = logging.getLogger(__name__)


class PollingBridge(NativeBridge):
    """Native bridge for a wrapper app that polls for login requests.

    ``trigger_login`` only records the request; the native side collects
    pending requests with ``take_requests`` and later delivers the token
    through the session.
    """

    def __init__(self, on_trigger: Optional[Callable[[], None]] = None):
        self._lock = threading.Lock()
        self._requested = 0
        self._on_trigger = on_trigger

    def trigger_login(self) -> None:
        with self._lock:
            self._requested += 1
        logger.debug("Native Apple Music login requested")
        if self._on_trigger is not None:
            self._on_trigger()

    def take_requests(self) -> int:
        """Return and reset the number of login requests since the last poll."""
        with self._lock:
            requested, self._requested = self._requested, 0
        return requested
