from __future__ import annotations

from typing import Any, Dict, List, Protocol

from .providers import Provider


class Backend(Protocol):
    """Port for the migration backend HTTP surface.

    Implementations raise ``TemporaryFailure``, ``PermanentFailure`` or
    ``DecodeFailure`` from ``replaylist.domain.errors``; callers decide how to degrade.
    """

    def login_status(self) -> Dict[str, bool]:
        """Return wire-key -> authenticated for every provider the backend knows."""

    def logout_all(self) -> None:
        """Drop every provider login held by the backend session."""

    def logout(self, provider: Provider) -> None:
        """Drop a single provider login."""

    def fetch_playlists(self, provider: Provider) -> List[Dict[str, Any]]:
        """Return the raw JSON array of playlists for a source provider."""

    def apple_developer_token(self) -> str:
        """Return the signed developer token the native MusicKit login needs."""

    def register_apple_token(self, token: str) -> None:
        """Hand an Apple Music user token to the backend."""

    def transfer(self, destination: Provider, playlist: Dict[str, Any]) -> None:
        """Request one playlist to be copied into the destination provider."""


class NativeBridge(Protocol):
    """Outbound half of the native login bridge.

    The inbound half (token delivery) is a plain callback owned by the session.
    """

    def trigger_login(self) -> None:
        """Ask the native layer to show its Apple Music login surface."""
