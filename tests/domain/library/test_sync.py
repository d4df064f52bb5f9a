"""Tests for library synchronization."""

from unittest.mock import patch

import pytest

from sonic_minion.core.exceptions import AnalysisError, StorageError
from sonic_minion.domain.library.models import AnalysisResult, CacheEntry, SongMetadata
from sonic_minion.domain.library.sync import diff_library, full_rescan, sync_library

from conftest import NUMBER_FEATURES, make_entry

FORMAT_VERSION = 2


class FakeAnalyzer:
    """Analyzer returning one constant vector per path, failing on request."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    def __call__(self, path):
        self.calls.append(path)
        if path in self.failing:
            raise AnalysisError(path, f"Cannot decode {path}")
        return AnalysisResult(
            features=(float(len(self.calls)),) * NUMBER_FEATURES,
            metadata=SongMetadata(title=path.rsplit("/", 1)[-1]),
        )


def run_sync(cache, remote_paths, analyzer, **kwargs):
    return sync_library(
        remote_paths, cache, analyzer, FORMAT_VERSION, show_progress=False, **kwargs
    )


class TestDiffLibrary:
    """Tests for diff_library."""

    def test_diff_correctness(self, cache):
        """Remote {a,b,c} against cache {b,c,d}: analyze a, remove d."""
        for path in ("b", "c", "d"):
            cache.upsert(make_entry(path, 1.0))

        plan = diff_library(["a", "b", "c"], cache, FORMAT_VERSION)

        assert plan.to_analyze == ["a"]
        assert plan.to_remove == ["d"]
        assert plan.stale == []

    def test_stale_format_is_reanalyzed_not_removed(self, cache):
        cache.upsert(make_entry("a", 1.0, format_version=FORMAT_VERSION - 1))
        cache.upsert(make_entry("b", 1.0))

        plan = diff_library(["a", "b"], cache, FORMAT_VERSION)

        assert plan.to_analyze == ["a"]
        assert plan.stale == ["a"]
        assert plan.to_remove == []

    def test_stale_and_missing_remotely_is_removed(self, cache):
        cache.upsert(make_entry("old", 1.0, format_version=FORMAT_VERSION - 1))

        plan = diff_library([], cache, FORMAT_VERSION)

        assert plan.to_analyze == []
        assert plan.to_remove == ["old"]

    def test_failed_entries_are_not_retried(self, cache):
        """A recorded failure of the current format counts as present."""
        cache.upsert(CacheEntry(path="bad", format_version=FORMAT_VERSION, error="boom"))

        plan = diff_library(["bad"], cache, FORMAT_VERSION)

        assert plan.to_analyze == []
        assert plan.to_remove == []

    def test_cue_tracks_use_cache_keys(self, cache):
        cache.upsert(make_entry("a/album.cue/CUE_TRACK001", 1.0, track_number="1"))

        plan = diff_library(
            ["a/album.cue/track0001", "a/album.cue/track0002"], cache, FORMAT_VERSION
        )

        assert plan.to_analyze == ["a/album.cue/CUE_TRACK002"]
        assert plan.to_remove == []


class TestSyncLibrary:
    """Tests for sync_library and full_rescan."""

    def test_sync_is_idempotent(self, cache):
        analyzer = FakeAnalyzer(failing={"b"})
        run_sync(cache, ["a", "b", "c"], analyzer)

        second = run_sync(cache, ["a", "b", "c"], analyzer)

        assert second.plan.to_analyze == []
        assert second.plan.to_remove == []
        assert analyzer.calls == ["a", "b", "c"]

    def test_failed_reanalysis_of_stale_entry_is_idempotent(self, cache):
        cache.upsert(make_entry("a", 1.0, format_version=FORMAT_VERSION - 1))
        analyzer = FakeAnalyzer(failing={"a"})

        first = run_sync(cache, ["a"], analyzer)
        second = run_sync(cache, ["a"], analyzer)

        assert first.plan.to_analyze == ["a"]
        assert second.plan.to_analyze == []
        assert analyzer.calls == ["a"]
        assert [entry.path for entry in cache.failed_entries()] == ["a"]

    def test_failure_does_not_stop_batch(self, cache):
        report = run_sync(cache, ["a", "b", "c"], FakeAnalyzer(failing={"b"}))

        assert report.analyzed == 2
        assert [path for path, _ in report.failed] == ["b"]
        assert [entry.path for entry in cache.analyzed()] == ["a", "c"]
        failed = cache.failed_entries()
        assert [entry.path for entry in failed] == ["b"]
        assert "Cannot decode b" in failed[0].error

    def test_removed_songs_are_pruned(self, cache):
        cache.upsert(make_entry("gone", 1.0))

        report = run_sync(cache, ["a"], FakeAnalyzer())

        assert report.removed == 1
        assert cache.paths() == {"a"}

    def test_analyzer_receives_local_path(self, cache):
        analyzer = FakeAnalyzer()
        run_sync(cache, ["a/song.flac"], analyzer, base_path="/srv/music")

        assert analyzer.calls == ["/srv/music/a/song.flac"]
        assert cache.get("a/song.flac").analyzed

    def test_cue_track_number_is_stored(self, cache):
        run_sync(cache, ["a/album.cue/track0002"], FakeAnalyzer())

        entry = cache.get("a/album.cue/CUE_TRACK002")
        assert entry.analyzed
        assert entry.metadata.track_number == "2"

    def test_wrong_vector_length_is_recorded(self, cache):
        def short_analyzer(path):
            return AnalysisResult(features=(1.0,))

        report = run_sync(cache, ["a"], short_analyzer)

        assert report.analyzed == 0
        assert "expected 4" in report.failed[0][1]
        assert not cache.get("a").analyzed

    def test_threads(self, cache):
        report = run_sync(cache, [f"song{i}" for i in range(10)], FakeAnalyzer(), threads=4)

        assert report.analyzed == 10
        assert len(cache.analyzed()) == 10

    def test_storage_failure_is_fatal(self, cache):
        with patch.object(cache, "upsert", side_effect=StorageError("disk full")):
            with pytest.raises(StorageError):
                run_sync(cache, ["a", "b"], FakeAnalyzer())

    def test_removal_failure_is_collected(self, cache):
        cache.upsert(make_entry("x", 1.0))
        cache.upsert(make_entry("y", 1.0))

        def delete(path):
            if path == "x":
                raise StorageError("locked")
            return True

        with patch.object(cache, "delete", side_effect=delete):
            report = run_sync(cache, [], FakeAnalyzer())

        assert report.removed == 1
        assert report.removal_failures == [("x", "locked")]

    def test_full_rescan_reanalyzes_everything(self, cache):
        analyzer = FakeAnalyzer()
        run_sync(cache, ["a", "b"], analyzer)
        cache.upsert(make_entry("stray", 1.0))

        report = full_rescan(["a", "b"], cache, analyzer, FORMAT_VERSION, show_progress=False)

        assert report.plan.to_analyze == ["a", "b"]
        assert analyzer.calls == ["a", "b", "a", "b"]
        assert cache.paths() == {"a", "b"}
