"""Session <-> address bar query string.

The query carries three parameters: ``left`` (source candidates, comma
separated wire keys), ``right`` (destination candidates) and ``li`` (index of
the active source). The same triple is round-tripped through the OAuth
``state`` parameter so that a login redirect lands back on the same session.
"""
from typing import List, Optional, Sequence, Tuple
from urllib.parse import parse_qs, unquote, urlencode, urlsplit

from replaylist.crosscutting.config import Settings
from replaylist.domain.entities import Session, Stage, clamp_index
from replaylist.domain.providers import Provider, provider_of

DEFAULT_SOURCE_CANDIDATES: Tuple[Provider, ...] = (Provider.YOUTUBE, Provider.APPLE, Provider.AMAZON)
DEFAULT_DESTINATION_CANDIDATES: Tuple[Provider, ...] = (Provider.SPOTIFY,)
DEFAULT_ACTIVE_INDEX = 1


def default_session() -> Session:
    return Session(DEFAULT_SOURCE_CANDIDATES, DEFAULT_DESTINATION_CANDIDATES, DEFAULT_ACTIVE_INDEX)


def _join(providers: Sequence[Provider]) -> str:
    return ','.join(p.value for p in providers)


def _parse_csv(raw: str) -> List[Provider]:
    providers: List[Provider] = []
    for token in raw.split(','):
        provider = provider_of(token)
        if provider is not None and provider not in providers:
            providers.append(provider)
    return providers


def _parse_index(raw: Optional[str]) -> int:
    if raw is None:
        return DEFAULT_ACTIVE_INDEX
    try:
        return int(raw.strip())
    except ValueError:
        return DEFAULT_ACTIVE_INDEX


def _query_of(url_or_query: str) -> str:
    text = url_or_query or ''
    if '?' in text or text.startswith(('http://', 'https://', '/')):
        return urlsplit(text).query
    return text


def path_of(url: str) -> str:
    """Path component of a URL or ``path?query`` string; '/' when absent."""
    text = url or ''
    if text.startswith(('http://', 'https://', '/')) or '?' in text:
        return urlsplit(text).path or '/'
    return '/'


def encode(session: Session) -> str:
    """Render a session as ``left=..&right=..&li=..``. Commas stay literal."""
    return f"left={_join(session.source_candidates)}&right={_join(session.destination_candidates)}&li={session.active_source_index}"


def decode(url_or_query: str) -> Session:
    """Rebuild a session from a URL, a ``path?query`` string or a bare query.

    Unknown wire keys and duplicates are dropped. A provider listed on both
    sides stays a destination. Missing lists fall back to the defaults and the
    index is clamped into range.
    """
    params = parse_qs(_query_of(url_or_query), keep_blank_values=True)

    if 'right' in params:
        destinations = _parse_csv(params['right'][0])
    else:
        destinations = list(DEFAULT_DESTINATION_CANDIDATES)

    if 'left' in params:
        sources = _parse_csv(params['left'][0])
    else:
        sources = list(DEFAULT_SOURCE_CANDIDATES)
    sources = [p for p in sources if p not in destinations]

    if not destinations:
        destinations = [p for p in DEFAULT_DESTINATION_CANDIDATES if p not in sources]
        if not destinations:
            destinations = [next(p for p in Provider if p not in sources)]

    if not sources:
        sources = [p for p in DEFAULT_SOURCE_CANDIDATES if p not in destinations]
        if not sources:
            sources = [p for p in Provider if p not in destinations]
        if not sources:
            # Every provider was listed as a destination; keep only the first one there
            destinations = destinations[:1]
            sources = [p for p in Provider if p not in destinations]

    index = params['li'][0] if 'li' in params else None
    return Session(tuple(sources), tuple(destinations), clamp_index(_parse_index(index), len(sources)))


def location_of(session: Session, stage: Stage = Stage.HOME) -> str:
    """Address bar location for a stage: ``<path>?<query>``."""
    return f"{stage.path}?{encode(session)}"


def build_oauth_state(session: Session) -> str:
    """OAuth ``state`` value carrying the session, before percent-encoding."""
    return encode(session)


def build_login_url(provider: Provider, session: Session, settings: Settings) -> Optional[str]:
    """Authorize URL for a provider with the session in ``state``.

    Every provider gets the state percent-encoded exactly once. Returns None
    for providers without a configured OAuth client; Apple logs in through
    the native bridge and never has one.
    """
    if provider is Provider.APPLE:
        return None
    client = settings.oauth_client(provider)
    if client is None:
        return None

    params = {
        'client_id': client.client_id,
        'response_type': 'code',
        'redirect_uri': client.redirect_uri,
        'scope': client.scope_string,
        'state': build_oauth_state(session),
    }
    params.update(client.extra_params)
    return f"{client.authorize_url}?{urlencode(params)}"


def restore_query_from_state(raw_state: Optional[str]) -> str:
    """Recover the session query from an OAuth callback ``state``.

    Accepts the value percent-encoded or not, with or without a leading
    ``state=`` or ``?``.
    """
    decoded = unquote(raw_state or '')
    if decoded.startswith('state='):
        decoded = decoded[len('state='):]
    if decoded.startswith('?'):
        decoded = decoded[1:]
    return decoded


def redirect_location_from_state(raw_state: Optional[str]) -> str:
    """Location the OAuth callback should redirect to: ``/?<query>`` or ``/``."""
    query = restore_query_from_state(raw_state)
    return f"/?{query}" if query else '/'
