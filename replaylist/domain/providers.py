from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class Provider(str, Enum):
    """Supported music services. The value is the wire key used in URLs and payloads."""

    APPLE = "apple"
    SPOTIFY = "spotify"
    YOUTUBE = "youtube"
    AMAZON = "amazon"

    @property
    def wire_key(self) -> str:
        return self.value


@dataclass(frozen=True)
class ProviderMetadata:
    """Display metadata derived from a provider."""

    name: str
    icon: str
    login_label: str
    wire_key: str


_DISPLAY_NAMES: Dict[Provider, str] = {
    Provider.APPLE: "Apple Music",
    Provider.SPOTIFY: "Spotify",
    Provider.YOUTUBE: "YouTube Music",
    Provider.AMAZON: "Amazon Music",
}

_METADATA: Dict[Provider, ProviderMetadata] = {
    p: ProviderMetadata(
        name=name,
        icon=f"/assets/{p.value}.svg",
        login_label=f"Login with {name}",
        wire_key=p.value,
    )
    for p, name in _DISPLAY_NAMES.items()
}

_BY_WIRE_KEY: Dict[str, Provider] = {p.value: p for p in Provider}


def metadata_of(provider: Provider) -> ProviderMetadata:
    """Return display metadata for a provider."""
    return _METADATA[provider]


def provider_of(wire_key: Optional[str]) -> Optional[Provider]:
    """Return the provider for a wire key, or None when the key is not recognised."""
    if not wire_key:
        return None
    return _BY_WIRE_KEY.get(wire_key.strip())


def all_providers() -> List[Provider]:
    return list(Provider)
