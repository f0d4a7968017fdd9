from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from .providers import Provider


@dataclass(frozen=True)
class Track:
    """Provider-normalized track."""

    title: str
    artist: str
    isrc: Optional[str] = None


@dataclass(frozen=True)
class PlaylistItem:
    """Playlist as listed by a source provider.

    ``track_count`` is what the provider reports. It may differ from
    ``len(tracks)`` when the provider omits full track detail.
    """

    id: str
    name: str
    cover_url: str
    track_count: int
    tracks: Tuple[Track, ...] = ()
    selected: bool = False

    def with_selected(self, selected: bool) -> "PlaylistItem":
        if self.selected == selected:
            return self
        return replace(self, selected=selected)


class Stage(str, Enum):
    """UI stage, routed 1:1 to a path."""

    HOME = "home"
    LIST = "list"
    DONE = "done"

    @property
    def path(self) -> str:
        return _STAGE_PATHS[self]

    @classmethod
    def from_path(cls, path: Optional[str]) -> "Stage":
        normalized = (path or "/").rstrip("/") or "/"
        for stage, stage_path in _STAGE_PATHS.items():
            if stage_path == normalized:
                return stage
        return cls.HOME


_STAGE_PATHS = {
    Stage.HOME: "/",
    Stage.LIST: "/list",
    Stage.DONE: "/done",
}


@dataclass(frozen=True)
class Session:
    """Which providers are in play.

    Source and destination candidates are disjoint. ``active_source_index``
    is always a valid index into ``source_candidates``.
    """

    source_candidates: Tuple[Provider, ...]
    destination_candidates: Tuple[Provider, ...]
    active_source_index: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'source_candidates', tuple(self.source_candidates))
        object.__setattr__(self, 'destination_candidates', tuple(self.destination_candidates))
        if not self.source_candidates:
            raise ValueError("Session requires at least one source candidate")
        if not self.destination_candidates:
            raise ValueError("Session requires at least one destination candidate")
        if set(self.source_candidates) & set(self.destination_candidates):
            raise ValueError("Source and destination candidates must be disjoint")
        object.__setattr__(self, 'active_source_index', clamp_index(self.active_source_index, len(self.source_candidates)))

    @property
    def active_source(self) -> Provider:
        return self.source_candidates[self.active_source_index]

    @property
    def active_destination(self) -> Provider:
        return self.destination_candidates[0]

    def previous(self) -> "Session":
        """Move to the previous source candidate; no-op at the first one."""
        return replace(self, active_source_index=self.active_source_index - 1)

    def next(self) -> "Session":
        """Move to the next source candidate; no-op at the last one."""
        return replace(self, active_source_index=self.active_source_index + 1)

    def swap(self) -> "Session":
        """Exchange the active source with the active destination in place."""
        sources = list(self.source_candidates)
        destinations = list(self.destination_candidates)
        sources[self.active_source_index], destinations[0] = destinations[0], sources[self.active_source_index]
        return Session(tuple(sources), tuple(destinations), self.active_source_index)


def clamp_index(index: int, length: int) -> int:
    if length <= 0:
        return 0
    return max(0, min(index, length - 1))


@dataclass(frozen=True)
class FetchResult:
    """Outcome of a playlist fetch. ``error`` holds the raw diagnostic on failure."""

    provider: Provider
    items: Tuple[PlaylistItem, ...] = ()
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class TransferOutcome:
    """Per-item result of a transfer request."""

    playlist_id: str
    destination: Provider
    ok: bool
    error: Optional[str] = None
