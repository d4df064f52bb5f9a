"""Tests for queue reconciliation."""

import pytest

from sonic_minion.core.exceptions import NoAnchorError, PathNormalizationError, RemoteMutationError
from sonic_minion.domain.library.models import CacheEntry
from sonic_minion.domain.playback.client import QueueItem
from sonic_minion.domain.playback.reconciler import (
    DeleteRange,
    InsertAt,
    MoveRange,
    PositionTracker,
    ReconcileMode,
    client_lock,
    leftover_length,
    plan,
    reconcile,
    simulate,
)

from conftest import FakeQueueClient, make_entry


def entries(*names):
    return [make_entry(name) for name in names]


def snapshot(*names):
    return [QueueItem(i, name) for i, name in enumerate(names)]


ALBUMS = {"anchor": "A", "l1": "A", "l2": "A", "r1": "B"}


def album_of(path):
    return ALBUMS.get(path)


class TestReplace:
    """Tests for replace mode."""

    def test_final_queue_is_target(self):
        client = FakeQueueClient(["x", "y", "z"], current=1)

        result = reconcile(client, entries("y", "n1", "n2"), ReconcileMode.REPLACE)

        assert client.queue == ["y", "n1", "n2"]
        assert client.calls == [
            ("delete", 0, 1),
            ("delete", 1, 2),
            ("insert", "n1", 1),
            ("insert", "n2", 2),
        ]
        assert [e.path for e in result.added] == ["n1", "n2"]
        assert result.applied == 4

    def test_anchor_alone(self):
        client = FakeQueueClient(["y"], current=0)

        reconcile(client, entries("y", "n1"), ReconcileMode.REPLACE)

        assert client.queue == ["y", "n1"]
        assert client.calls == [("insert", "n1", 1)]

    def test_anchor_first(self):
        client = FakeQueueClient(["y", "z"], current=0)

        reconcile(client, entries("y", "n1"), ReconcileMode.REPLACE)

        assert client.calls[0] == ("delete", 1, 2)
        assert client.queue == ["y", "n1"]

    def test_anchor_is_never_duplicated(self):
        client = FakeQueueClient(["x", "y"], current=1)

        reconcile(client, entries("y", "n1", "y"), ReconcileMode.REPLACE)

        assert client.queue == ["y", "n1"]


class TestPreserve:
    """Tests for preserve mode."""

    def test_single_following_song_stays_next(self):
        client = FakeQueueClient(["anchor", "next", "r"], current=0)

        result = reconcile(client, entries("anchor", "n1", "n2"), ReconcileMode.PRESERVE)

        assert client.queue == ["anchor", "next", "n1", "n2", "r"]
        assert len(result.mutations) == 3
        assert result.mutations[-1] == MoveRange(3, 4, 1)

    def test_album_leftover_block(self):
        client = FakeQueueClient(["a", "anchor", "l1", "l2", "r1"], current=1)

        result = reconcile(
            client,
            entries("anchor", "n1", "l1", "n2"),
            ReconcileMode.PRESERVE,
            group_key=album_of,
        )

        assert client.queue == ["a", "anchor", "l1", "l2", "n1", "n2", "r1"]
        # l1 already follows the anchor and is not inserted again
        assert [e.path for e in result.added] == ["n1", "n2"]
        assert result.mutations == [
            InsertAt("n1", 2),
            InsertAt("n2", 3),
            MoveRange(4, 6, 2),
        ]

    def test_anchor_last_appends(self):
        client = FakeQueueClient(["a", "anchor"], current=1)

        reconcile(client, entries("anchor", "n1", "n2"), ReconcileMode.PRESERVE)

        assert client.queue == ["a", "anchor", "n1", "n2"]
        assert all(call[0] == "insert" for call in client.calls)

    def test_explicit_anchor_position(self):
        client = FakeQueueClient(["q1", "q2", "q3"], current=0)

        reconcile(client, entries("q3", "n1"), ReconcileMode.PRESERVE, anchor_pos=2)

        assert client.queue == ["q1", "q2", "q3", "n1"]

    def test_no_group_for_anchor(self):
        assert leftover_length(snapshot("anchor", "x"), 0, lambda path: None) == 0

    def test_leftover_length(self):
        queue = snapshot("a", "anchor", "l1", "l2", "r1")
        assert leftover_length(queue, 1, album_of) == 2
        assert leftover_length(queue, 1) == 1
        assert leftover_length(queue, 4) == 0


class TestDryRun:
    """Tests for dry runs."""

    @pytest.mark.parametrize("mode", list(ReconcileMode))
    def test_dry_run_issues_nothing(self, mode):
        target = entries("y", "n1", "n2")
        dry_client = FakeQueueClient(["x", "y", "z"], current=1)
        live_client = FakeQueueClient(["x", "y", "z"], current=1)

        dry = reconcile(dry_client, target, mode, dry_run=True)
        live = reconcile(live_client, target, mode)

        assert dry_client.calls == []
        assert dry_client.queue == ["x", "y", "z"]
        assert dry.applied == 0
        assert dry.added == live.added
        assert dry.mutations == live.mutations


class TestFailures:
    """Tests for missing anchors and failed edits."""

    def test_no_current_song(self):
        client = FakeQueueClient(["x", "y"], current=None)

        with pytest.raises(NoAnchorError):
            reconcile(client, entries("y", "n1"))

        assert client.calls == []
        assert client.queue == ["x", "y"]

    def test_empty_target(self):
        with pytest.raises(NoAnchorError):
            reconcile(FakeQueueClient(["x"], current=0), [])

    @pytest.mark.parametrize("mode", list(ReconcileMode))
    def test_target_must_start_with_anchor(self, mode):
        client = FakeQueueClient(["x", "y", "z"], current=1)

        with pytest.raises(NoAnchorError):
            reconcile(client, entries("s", "n1", "n2"), mode)

        assert client.calls == []
        assert client.queue == ["x", "y", "z"]

    def test_anchor_outside_queue(self):
        with pytest.raises(NoAnchorError):
            reconcile(FakeQueueClient(["x"], current=0), entries("x", "n1"), anchor_pos=3)

    def test_failed_edit_aborts_without_rollback(self):
        client = FakeQueueClient(["x", "y", "z"], current=1, fail_at=1)

        with pytest.raises(RemoteMutationError) as exc_info:
            reconcile(client, entries("y", "n1", "n2"), ReconcileMode.REPLACE)

        error = exc_info.value
        assert error.step == 1
        assert error.stage == "DeleteRange"
        assert error.applied == [DeleteRange(0, 1)]
        assert client.queue == ["y", "z"]

    def test_rerun_after_failure(self):
        """A second run starts from the partially edited queue."""
        client = FakeQueueClient(["x", "y", "z"], current=1, fail_at=1)
        target = entries("y", "n1", "n2")
        with pytest.raises(RemoteMutationError):
            reconcile(client, target, ReconcileMode.REPLACE)

        client.fail_at = None
        client.current = 0
        reconcile(client, target, ReconcileMode.REPLACE)

        assert client.queue == ["y", "n1", "n2"]

    def test_unaddressable_song_fails_before_any_edit(self):
        client = FakeQueueClient(["x", "y"], current=1)
        cue_without_track = CacheEntry(path="a/album.cue/CUE_TRACK002", features=(0.0,) * 4, analyzed=True)

        with pytest.raises(PathNormalizationError):
            reconcile(client, [make_entry("y"), cue_without_track])

        assert client.calls == []


class TestIndexValidity:
    """Every planned index is valid against the queue right before it."""

    @pytest.mark.parametrize("mode", list(ReconcileMode))
    def test_all_anchor_positions(self, mode):
        for length in range(1, 7):
            for anchor_pos in range(length):
                for added in range(4):
                    queue = [f"q{i}" for i in range(length)]
                    additions = [f"n{i}" for i in range(added)]
                    client = FakeQueueClient(queue, current=anchor_pos)

                    result = reconcile(client, entries(queue[anchor_pos], *additions), mode)

                    if mode is ReconcileMode.REPLACE:
                        assert client.queue == [queue[anchor_pos]] + additions
                        assert len(result.mutations) <= added + 2
                    else:
                        follower = queue[anchor_pos + 1 : anchor_pos + 2]
                        expected = (
                            queue[: anchor_pos + 1]
                            + follower
                            + additions
                            + queue[anchor_pos + 1 + len(follower) :]
                        )
                        assert client.queue == expected
                        assert len(result.mutations) <= added + 1
                    assert simulate(queue, result.mutations) == client.queue


class TestPositionTracker:
    """Tests for the position shift tracker."""

    def test_insert_shifts_following_items(self):
        tracker = PositionTracker(3)
        tracker.apply(InsertAt("n", 1))

        assert [tracker.position(i) for i in range(3)] == [0, 2, 3]
        assert tracker.length == 4

    def test_deleted_item_has_no_position(self):
        tracker = PositionTracker(3)
        tracker.apply(DeleteRange(0, 2))

        assert tracker.position(2) == 0
        with pytest.raises(ValueError):
            tracker.position(0)

    def test_move(self):
        tracker = PositionTracker(5)
        tracker.apply(MoveRange(3, 5, 1))

        assert [tracker.position(i) for i in range(5)] == [0, 3, 4, 1, 2]

    @pytest.mark.parametrize(
        "mutation",
        [DeleteRange(2, 2), DeleteRange(0, 4), InsertAt("n", 4), MoveRange(0, 2, 2), MoveRange(2, 1, 0)],
    )
    def test_out_of_range(self, mutation):
        with pytest.raises(ValueError):
            PositionTracker(3).apply(mutation)

    def test_simulate_matches_plan(self):
        queue = snapshot("a", "anchor", "l1", "l2", "r1")
        mutations = plan(queue, 1, ["n1"], ReconcileMode.PRESERVE, album_of)

        assert simulate([item.path for item in queue], mutations) == [
            "a",
            "anchor",
            "l1",
            "l2",
            "n1",
            "r1",
        ]


def test_client_lock_is_per_client():
    first, second = FakeQueueClient(), FakeQueueClient()
    assert client_lock(first) is client_lock(first)
    assert client_lock(first) is not client_lock(second)
