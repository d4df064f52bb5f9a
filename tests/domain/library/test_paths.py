"""Tests for MPD path normalization and its inverse."""

import pytest

from sonic_minion.core.exceptions import PathNormalizationError
from sonic_minion.domain.library.models import CacheEntry, SongMetadata
from sonic_minion.domain.library.paths import (
    NormalizedPath,
    is_cue_key,
    normalize,
    parse_track_number,
    to_cache_key,
    to_local_path,
    to_remote_path,
    with_cue_track_number,
)


class TestNormalize:
    """Tests for normalize and to_cache_key."""

    def test_plain_path_unchanged(self):
        assert normalize("Artist/Album/01 Song.flac") == NormalizedPath("Artist/Album/01 Song.flac")
        assert to_cache_key("Artist/Album/01 Song.flac") == "Artist/Album/01 Song.flac"

    def test_cue_track(self):
        normalized = normalize("Artist/Album/album.cue/track0003")
        assert normalized.container == "Artist/Album/album.cue"
        assert normalized.track == 3
        assert normalized.key == "Artist/Album/album.cue/CUE_TRACK003"

    def test_marker_is_case_insensitive(self):
        assert normalize("a/album.flac/TRACK0012").track == 12

    def test_track_word_in_file_name_is_not_a_marker(self):
        assert normalize("a/track01.flac").track is None
        assert normalize("a/soundtrack/song.mp3").track is None


class TestRemotePath:
    """Tests for to_remote_path, the queue-write direction."""

    def test_plain_entry(self):
        assert to_remote_path(CacheEntry(path="a/song.flac")) == "a/song.flac"

    def test_cue_entry_round_trip(self):
        key = to_cache_key("a/album.cue/track0007")
        metadata = with_cue_track_number(key, SongMetadata(title="Seven"))
        entry = CacheEntry(path=key, metadata=metadata)

        assert metadata.track_number == "7"
        assert to_remote_path(entry) == "a/album.cue/track0007"

    def test_missing_track_number_fails(self):
        entry = CacheEntry(path="a/album.cue/CUE_TRACK007")
        with pytest.raises(PathNormalizationError, match="missing"):
            to_remote_path(entry)

    def test_mismatched_track_number_fails(self):
        entry = CacheEntry(
            path="a/album.cue/CUE_TRACK007", metadata=SongMetadata(track_number="8")
        )
        with pytest.raises(PathNormalizationError):
            to_remote_path(entry)


class TestHelpers:
    """Tests for the smaller path helpers."""

    @pytest.mark.parametrize(
        "value,expected",
        [("3", 3), ("03", 3), ("3/12", 3), (" 4", 4), ("A1", None), ("", None), (None, None)],
    )
    def test_parse_track_number(self, value, expected):
        assert parse_track_number(value) == expected

    def test_is_cue_key(self):
        assert is_cue_key("a/album.cue/CUE_TRACK001")
        assert not is_cue_key("a/album.cue/track0001")

    def test_to_local_path(self):
        assert to_local_path("a/song.flac", "/srv/music") == "/srv/music/a/song.flac"
        assert to_local_path("a/song.flac", None) == "a/song.flac"
