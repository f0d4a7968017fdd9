import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from dotenv import dotenv_values

from replaylist.domain.providers import Provider


class ConfigError(Exception):
    """Configuration error."""
    pass


@dataclass(frozen=True)
class OAuthClient:
    """OAuth client registration for one provider.

    ``redirect_uri`` must point at the backend's ``/api/login/{service}/callback``.
    That endpoint records the login in the backend session before redirecting
    to ``/?<query>``; the web shell's own callback only restores the session.
    """

    authorize_url: str
    client_id: str
    redirect_uri: str
    scopes: List[str] = field(default_factory=list)
    extra_params: Dict[str, str] = field(default_factory=dict)

    @property
    def scope_string(self) -> str:
        return ' '.join(self.scopes)


# Scopes needed to read playlists from and write playlists into each provider
_DEFAULT_SCOPES: Dict[Provider, List[str]] = {
    Provider.SPOTIFY: [
        'playlist-read-private',
        'playlist-modify-public',
        'playlist-modify-private',
    ],
    Provider.YOUTUBE: [
        'https://www.googleapis.com/auth/youtube',
    ],
    Provider.AMAZON: [
        'profile',
    ],
}

_AUTHORIZE_URLS: Dict[Provider, str] = {
    Provider.SPOTIFY: 'https://accounts.spotify.com/authorize',
    Provider.YOUTUBE: 'https://accounts.google.com/o/oauth2/v2/auth',
    Provider.AMAZON: 'https://www.amazon.com/ap/oa',
}

_EXTRA_PARAMS: Dict[Provider, Dict[str, str]] = {
    Provider.SPOTIFY: {'show_dialog': 'true'},
    Provider.YOUTUBE: {'access_type': 'offline', 'prompt': 'consent'},
    Provider.AMAZON: {},
}


@dataclass(frozen=True)
class Settings:
    """Runtime settings for a migration session."""

    base_url: str = 'http://localhost:8080'
    request_timeout: float = 10.0
    transfer_concurrency: Optional[int] = None
    apple_retry_ms: int = 100
    apple_artwork_size: int = 300
    start_url: str = '/'
    session_cookie: Optional[str] = None
    oauth_clients: Dict[Provider, OAuthClient] = field(default_factory=dict)

    def oauth_client(self, provider: Provider) -> Optional[OAuthClient]:
        return self.oauth_clients.get(provider)

    def summary(self) -> Dict[str, object]:
        """Settings without client ids, safe to log."""
        return {
            'base_url': self.base_url,
            'request_timeout': self.request_timeout,
            'transfer_concurrency': self.transfer_concurrency,
            'apple_retry_ms': self.apple_retry_ms,
            'oauth_providers': sorted(p.value for p in self.oauth_clients),
        }


def _parse_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{key} must be positive, got {raw!r}")
    return value


def _parse_int(env: Mapping[str, str], key: str, default: Optional[int]) -> Optional[int]:
    raw = env.get(key)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{key} must be positive, got {raw!r}")
    return value


def _load_oauth_clients(env: Mapping[str, str]) -> Dict[Provider, OAuthClient]:
    clients = {}
    for provider, authorize_url in _AUTHORIZE_URLS.items():
        prefix = provider.value.upper()
        client_id = env.get(f'{prefix}_CLIENT_ID')
        if not client_id:
            continue
        redirect_uri = env.get(f'{prefix}_REDIRECT_URI')
        if not redirect_uri:
            raise ConfigError(f"{prefix}_REDIRECT_URI is required when {prefix}_CLIENT_ID is set")
        clients[provider] = OAuthClient(
            authorize_url=authorize_url,
            client_id=client_id,
            redirect_uri=redirect_uri,
            scopes=list(_DEFAULT_SCOPES[provider]),
            extra_params=dict(_EXTRA_PARAMS[provider]),
        )
    return clients


def load_settings(env: Optional[Mapping[str, str]] = None, env_file: Optional[str] = None) -> Settings:
    """Build settings from the environment, overlaid on an optional .env file.

    Process environment wins over the file.
    """
    values: Dict[str, str] = {}
    if env_file and os.path.exists(env_file):
        values.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    values.update(os.environ if env is None else env)

    base_url = values.get('REPLAYLIST_BASE_URL', 'http://localhost:8080').rstrip('/')
    if not base_url.startswith(('http://', 'https://')):
        raise ConfigError(f"REPLAYLIST_BASE_URL must be an http(s) URL, got {base_url!r}")

    return Settings(
        base_url=base_url,
        request_timeout=_parse_float(values, 'REPLAYLIST_TIMEOUT', 10.0),
        transfer_concurrency=_parse_int(values, 'REPLAYLIST_TRANSFER_CONCURRENCY', None),
        apple_retry_ms=_parse_int(values, 'REPLAYLIST_APPLE_RETRY_MS', 100),
        apple_artwork_size=_parse_int(values, 'REPLAYLIST_APPLE_ARTWORK_SIZE', 300),
        start_url=values.get('REPLAYLIST_URL', '/') or '/',
        session_cookie=values.get('REPLAYLIST_SESSION_COOKIE') or None,
        oauth_clients=_load_oauth_clients(values),
    )


# Global instance, created lazily
settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get global settings, loading them from the environment on first use."""
    global settings
    if settings is None:
        settings = load_settings(env_file='.env')
    return settings


def setup_config(env: Optional[Mapping[str, str]] = None, env_file: Optional[str] = None) -> Settings:
    """Replace global settings."""
    global settings
    settings = load_settings(env=env, env_file=env_file)
    return settings
