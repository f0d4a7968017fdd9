import pytest

from replaylist.domain.entities import PlaylistItem, Track
from replaylist.domain.errors import DecodeFailure
from replaylist.domain.normalization import (
    expand_artwork_template, parse_playlist_items, playlist_to_wire
)
from replaylist.domain.providers import Provider


def test_parse_maps_wire_fields(playlist_payload):
    items = parse_playlist_items(Provider.SPOTIFY, playlist_payload)

    assert len(items) == 2
    chill = items[0]
    assert chill.id == "p1"
    assert chill.name == "Chill"
    assert chill.cover_url == "u"
    assert chill.track_count == 2
    assert chill.selected is False
    assert chill.tracks == (
        Track(title="A", artist="X", isrc=None),
        Track(title="B", artist="Y", isrc="US123"),
    )


def test_track_count_not_checked_against_tracks(playlist_payload):
    items = parse_playlist_items(Provider.YOUTUBE, playlist_payload)
    assert items[1].track_count == 40
    assert items[1].tracks == ()


def test_missing_playlist_field_fails_whole_payload(playlist_payload):
    del playlist_payload[1]["cover"]
    with pytest.raises(DecodeFailure, match="cover"):
        parse_playlist_items(Provider.SPOTIFY, playlist_payload)


def test_missing_track_field_fails_whole_payload(playlist_payload):
    del playlist_payload[0]["tracks"][1]["artist"]
    with pytest.raises(DecodeFailure, match="artist"):
        parse_playlist_items(Provider.SPOTIFY, playlist_payload)


@pytest.mark.parametrize("payload", [
    {"id": "p1"},
    "not a list",
    None,
    [["nested"]],
])
def test_non_array_payload_rejected(payload):
    with pytest.raises(DecodeFailure):
        parse_playlist_items(Provider.APPLE, payload)


def test_wrong_field_types_rejected(playlist_payload):
    playlist_payload[0]["track_count"] = "2"
    with pytest.raises(DecodeFailure, match="track_count"):
        parse_playlist_items(Provider.SPOTIFY, playlist_payload)


def test_numeric_ids_are_stringified():
    payload = [{"id": 42, "name": "N", "cover": "c", "track_count": 0, "tracks": []}]
    assert parse_playlist_items(Provider.YOUTUBE, payload)[0].id == "42"


def test_empty_isrc_normalized_to_none():
    payload = [{"id": "p", "name": "N", "cover": "c", "track_count": 1,
                "tracks": [{"title": "T", "artist": "A", "isrc": ""}]}]
    assert parse_playlist_items(Provider.SPOTIFY, payload)[0].tracks[0].isrc is None


def test_apple_artwork_template_expanded():
    payload = [{"id": "p.abc", "name": "N", "cover": "https://is1.mzstatic.com/x/{w}x{h}bb.jpg",
                "track_count": 0, "tracks": []}]
    item = parse_playlist_items(Provider.APPLE, payload, artwork_size=600)[0]
    assert item.cover_url == "https://is1.mzstatic.com/x/600x600bb.jpg"


def test_artwork_template_untouched_for_other_providers():
    payload = [{"id": "p", "name": "N", "cover": "https://x/{w}x{h}.jpg", "track_count": 0, "tracks": []}]
    assert parse_playlist_items(Provider.SPOTIFY, payload)[0].cover_url == "https://x/{w}x{h}.jpg"


def test_expand_artwork_template_without_placeholder():
    assert expand_artwork_template("https://x/cover.jpg") == "https://x/cover.jpg"


def test_playlist_to_wire_uses_wire_names_and_drops_selection():
    item = PlaylistItem(id="p1", name="Chill", cover_url="u", track_count=2,
                        tracks=(Track("A", "X"), Track("B", "Y", "US123")), selected=True)
    assert playlist_to_wire(item) == {
        "id": "p1",
        "name": "Chill",
        "cover": "u",
        "track_count": 2,
        "tracks": [
            {"title": "A", "artist": "X", "isrc": None},
            {"title": "B", "artist": "Y", "isrc": "US123"},
        ],
    }
