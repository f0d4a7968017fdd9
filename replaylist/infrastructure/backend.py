import logging
from typing import Any, Dict, List, Optional

import requests

from replaylist.domain.errors import DecodeFailure, PermanentFailure, TemporaryFailure, UnsupportedProvider
from replaylist.domain.ports import Backend
from replaylist.domain.providers import Provider

logger = logging.getLogger(__name__)

# Providers the backend can list playlists from / write playlists into
PLAYLIST_SOURCES = (Provider.APPLE, Provider.SPOTIFY, Provider.YOUTUBE)
TRANSFER_DESTINATIONS = (Provider.APPLE, Provider.SPOTIFY, Provider.YOUTUBE)


class HttpBackend(Backend):
    """Backend port over HTTP using requests.

    The backend keeps provider logins in a cookie session, so a single
    ``requests.Session`` is shared by every call.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        """Initialize the client.

        Args:
            base_url: Backend origin, e.g. ``http://localhost:8080``
            timeout: Per-request timeout in seconds
            session: Optional pre-configured requests session (cookies, adapters)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self._http = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = self._url(path)
        try:
            response = self._http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TemporaryFailure(f"{method} {path} failed: {e}")

        if response.status_code >= 500:
            raise TemporaryFailure(f"{method} {path} returned {response.status_code}: {response.text[:200]}")
        if response.status_code >= 400:
            raise PermanentFailure(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        logger.debug(f"{method} {path} -> {response.status_code}")
        return response

    def _json(self, response: requests.Response, path: str) -> Any:
        try:
            return response.json()
        except (ValueError, RecursionError) as e:
            # RecursionError: nesting too deep for the json module
            raise DecodeFailure(f"Invalid JSON from {path}: {e}")

    def login_status(self) -> Dict[str, bool]:
        path = '/api/login/status'
        payload = self._json(self._request('GET', path), path)
        if not isinstance(payload, dict):
            raise DecodeFailure(f"Expected an object from {path}, got {type(payload).__name__}")
        return {str(k): v is True for k, v in payload.items()}

    def logout_all(self) -> None:
        self._request('POST', '/api/logout_all')

    def logout(self, provider: Provider) -> None:
        self._request('POST', f'/api/logout/{provider.value}')

    def fetch_playlists(self, provider: Provider) -> List[Dict[str, Any]]:
        if provider not in PLAYLIST_SOURCES:
            raise UnsupportedProvider(f"No playlist endpoint for {provider.value}")
        path = f'/api/{provider.value}/playlists'
        return self._json(self._request('GET', path), path)

    def apple_developer_token(self) -> str:
        path = '/api/apple/devtoken'
        payload = self._json(self._request('GET', path), path)
        token = payload.get('token') if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise DecodeFailure(f"Expected an object with a token from {path}")
        return token

    def register_apple_token(self, token: str) -> None:
        self._request('POST', '/api/apple/usertoken', json={'token': token})

    def transfer(self, destination: Provider, playlist: Dict[str, Any]) -> None:
        if destination not in TRANSFER_DESTINATIONS:
            raise UnsupportedProvider(f"No transfer endpoint for {destination.value}")
        self._request('POST', f'/api/transfer/to/{destination.value}', json={'playlist': playlist})

    def close(self) -> None:
        self._http.close()


SESSION_COOKIE_NAME = 'replaylist.sid'


def create_backend(settings) -> HttpBackend:
    """Backend client for the configured origin, reusing a login cookie if one is configured."""
    http = requests.Session()
    if settings.session_cookie:
        http.cookies.set(SESSION_COOKIE_NAME, settings.session_cookie)
    return HttpBackend(settings.base_url, timeout=settings.request_timeout, session=http)
