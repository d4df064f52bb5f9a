"""
Queue reconciliation.

Turns a target sequence (anchor first, then the songs to play after it) into
a short list of positional edits against the live MPD queue, and applies
them.

Two modes:
- replace:  the queue ends up being exactly the target sequence.
- preserve: the rest of the queue is kept. New songs go right after the
            anchor, after the "leftover" block that used to follow it (the
            rest of the anchor's album, or the single next song).

Every index is computed against the queue as it is right before the edit,
by replaying the planned edits on a PositionTracker. Applying a plan is not
atomic: if an edit fails, the edits before it stay applied.
"""

import threading
import weakref
from enum import Enum
from typing import Callable, Hashable, NamedTuple, Optional, Sequence, Union

from loguru import logger

from sonic_minion.core.exceptions import NoAnchorError, RemoteError, RemoteMutationError

from ..library.models import CacheEntry
from ..library.paths import to_remote_path
from .client import QueueItem, RemoteQueueClient

GroupKey = Callable[[str], Optional[Hashable]]


class DeleteRange(NamedTuple):
    """Remove items [start, end)."""

    start: int
    end: int


class InsertAt(NamedTuple):
    """Insert path at position."""

    path: str
    position: int


class MoveRange(NamedTuple):
    """Move items [src_start, src_end) so that the first one lands at dest."""

    src_start: int
    src_end: int
    dest: int


Mutation = Union[DeleteRange, InsertAt, MoveRange]


class ReconcileMode(Enum):
    REPLACE = "replace"
    PRESERVE = "preserve"


class ReconcileResult(NamedTuple):
    """Outcome of a reconciliation."""

    added: list[CacheEntry]  # Songs inserted (or that would be, on a dry run)
    mutations: list[Mutation]  # Planned edits, in order
    applied: int  # Edits sent to the server
    dry_run: bool


class PositionTracker:
    """Follows where items of a queue snapshot sit while edits are applied.

    Original positions are those of the snapshot; current positions are
    those of the live queue after the edits seen so far.
    """

    def __init__(self, length: int):
        self.length = length
        self._positions: list[Optional[int]] = list(range(length))

    def position(self, original: int) -> int:
        """Current position of the item that was at original in the snapshot."""
        current = self._positions[original]
        if current is None:
            raise ValueError(f"Item at original position {original} was deleted")
        return current

    def check(self, mutation: Mutation) -> None:
        """Raise ValueError if mutation is not valid against the current queue."""
        if isinstance(mutation, DeleteRange):
            valid = 0 <= mutation.start < mutation.end <= self.length
        elif isinstance(mutation, InsertAt):
            valid = 0 <= mutation.position <= self.length
        else:
            size = mutation.src_end - mutation.src_start
            valid = (
                0 <= mutation.src_start < mutation.src_end <= self.length
                and 0 <= mutation.dest <= self.length - size
            )
        if not valid:
            raise ValueError(f"{mutation} is out of range for a queue of {self.length} items")

    def apply(self, mutation: Mutation) -> None:
        """Record mutation, shifting the positions of every tracked item."""
        self.check(mutation)
        if isinstance(mutation, DeleteRange):
            size = mutation.end - mutation.start
            self._positions = [
                None if p is None or mutation.start <= p < mutation.end
                else p - size if p >= mutation.end
                else p
                for p in self._positions
            ]
            self.length -= size
        elif isinstance(mutation, InsertAt):
            self._positions = [
                p + 1 if p is not None and p >= mutation.position else p
                for p in self._positions
            ]
            self.length += 1
        else:
            self._positions = [
                None if p is None else _moved_position(p, mutation)
                for p in self._positions
            ]


def _moved_position(position: int, move: MoveRange) -> int:
    size = move.src_end - move.src_start
    if move.src_start <= position < move.src_end:
        return move.dest + (position - move.src_start)
    # Position within the queue with the block taken out
    rest = position if position < move.src_start else position - size
    return rest if rest < move.dest else rest + size


def simulate(queue: Sequence[str], mutations: Sequence[Mutation]) -> list[str]:
    """Apply mutations to a list of paths, as the server would.

    Raises:
        ValueError: If a mutation is out of range
    """
    result = list(queue)
    tracker = PositionTracker(len(result))
    for mutation in mutations:
        tracker.apply(mutation)
        if isinstance(mutation, DeleteRange):
            del result[mutation.start : mutation.end]
        elif isinstance(mutation, InsertAt):
            result.insert(mutation.position, mutation.path)
        else:
            block = result[mutation.src_start : mutation.src_end]
            rest = result[: mutation.src_start] + result[mutation.src_end :]
            result = rest[: mutation.dest] + block + rest[mutation.dest :]
    return result


def leftover_length(
    snapshot: Sequence[QueueItem], anchor_pos: int, group_key: Optional[GroupKey] = None
) -> int:
    """Size of the block right after the anchor that stays next to it.

    With a group key, it is the run of items sharing the anchor's (non-None)
    key. Without one, it is the single item after the anchor, if any.
    """
    following = snapshot[anchor_pos + 1 :]
    if group_key is None:
        return 1 if following else 0

    anchor_key = group_key(snapshot[anchor_pos].path)
    if anchor_key is None:
        return 0
    length = 0
    for item in following:
        if group_key(item.path) != anchor_key:
            break
        length += 1
    return length


def plan_replace(snapshot: Sequence[QueueItem], anchor_pos: int, additions: Sequence[str]) -> list[Mutation]:
    """Edits turning the queue into [anchor] + additions."""
    tracker = PositionTracker(len(snapshot))
    mutations: list[Mutation] = []

    def emit(mutation: Mutation) -> None:
        tracker.apply(mutation)
        mutations.append(mutation)

    if anchor_pos > 0:
        emit(DeleteRange(0, anchor_pos))
    anchor_now = tracker.position(anchor_pos)
    if tracker.length > anchor_now + 1:
        emit(DeleteRange(anchor_now + 1, tracker.length))
    for i, path in enumerate(additions):
        emit(InsertAt(path, tracker.position(anchor_pos) + 1 + i))
    return mutations


def plan_preserve(
    snapshot: Sequence[QueueItem], anchor_pos: int, additions: Sequence[str], leftover: int
) -> list[Mutation]:
    """Edits inserting additions after the anchor, keeping the leftover block next to it.

    Final queue: items before the anchor, anchor, leftover block, additions,
    rest of the original continuation.
    """
    tracker = PositionTracker(len(snapshot))
    mutations: list[Mutation] = []

    def emit(mutation: Mutation) -> None:
        tracker.apply(mutation)
        mutations.append(mutation)

    for i, path in enumerate(additions):
        emit(InsertAt(path, tracker.position(anchor_pos) + 1 + i))

    if additions and leftover:
        start = tracker.position(anchor_pos + 1)
        emit(MoveRange(start, start + leftover, tracker.position(anchor_pos) + 1))
    return mutations


def plan(
    snapshot: Sequence[QueueItem],
    anchor_pos: int,
    additions: Sequence[str],
    mode: ReconcileMode,
    group_key: Optional[GroupKey] = None,
) -> list[Mutation]:
    """Plan the edits realizing [anchor] + additions in the given mode.

    In preserve mode, additions already in the leftover block are not
    inserted again.
    """
    if mode is ReconcileMode.REPLACE:
        return plan_replace(snapshot, anchor_pos, additions)
    leftover = leftover_length(snapshot, anchor_pos, group_key)
    kept = {item.path for item in snapshot[anchor_pos + 1 : anchor_pos + 1 + leftover]}
    return plan_preserve(
        snapshot, anchor_pos, [path for path in additions if path not in kept], leftover
    )


def apply_mutation(client: RemoteQueueClient, mutation: Mutation) -> None:
    if isinstance(mutation, DeleteRange):
        client.delete_range(mutation.start, mutation.end)
    elif isinstance(mutation, InsertAt):
        client.insert_at(mutation.path, mutation.position)
    else:
        client.move_range(mutation.src_start, mutation.src_end, mutation.dest)


_client_locks: "weakref.WeakKeyDictionary[object, threading.Lock]" = weakref.WeakKeyDictionary()
_client_locks_guard = threading.Lock()


def client_lock(client: RemoteQueueClient) -> threading.Lock:
    """Lock serializing queue edits on one client."""
    with _client_locks_guard:
        lock = _client_locks.get(client)
        if lock is None:
            lock = threading.Lock()
            _client_locks[client] = lock
        return lock


def reconcile(
    client: RemoteQueueClient,
    target: Sequence[CacheEntry],
    mode: ReconcileMode = ReconcileMode.REPLACE,
    anchor_pos: Optional[int] = None,
    group_key: Optional[GroupKey] = None,
    dry_run: bool = False,
) -> ReconcileResult:
    """Realize a target sequence in the remote queue.

    The queue is read fresh, so a reconciliation that failed half way can
    simply be run again.

    Args:
        client: Queue to edit
        target: Anchor first, then the songs to queue after it
        mode: ReconcileMode.REPLACE or ReconcileMode.PRESERVE
        anchor_pos: Queue position of the anchor (default: the current song)
        group_key: Maps a queue path to its group (e.g. album), for preserve mode
        dry_run: Plan only, send nothing

    Raises:
        NoAnchorError: If there is no current song, the target is empty, or
            the target does not start with the song at the anchor position
        PathNormalizationError: If a target song cannot be addressed remotely
        RemoteError: If the queue cannot be read
        RemoteMutationError: If an edit fails; earlier edits stay applied
    """
    if not target:
        raise NoAnchorError()

    with client_lock(client):
        snapshot = client.queue_snapshot()
        if anchor_pos is None:
            current = client.current_song()
            if current is None:
                raise NoAnchorError()
            anchor_pos = current.position
        if not 0 <= anchor_pos < len(snapshot):
            raise NoAnchorError(
                f"Anchor position {anchor_pos} is not in the queue ({len(snapshot)} songs)."
            )

        anchor_path = snapshot[anchor_pos].path
        target_anchor = to_remote_path(target[0])
        if target_anchor != anchor_path:
            raise NoAnchorError(
                f"The playlist starts with '{target_anchor}' but the song at queue "
                f"position {anchor_pos} is '{anchor_path}'."
            )

        candidates = [(entry, to_remote_path(entry)) for entry in target[1:]]
        candidates = [(entry, path) for entry, path in candidates if path != anchor_path]
        mutations = plan(snapshot, anchor_pos, [path for _, path in candidates], mode, group_key)
        inserted = {m.path for m in mutations if isinstance(m, InsertAt)}
        added = [entry for entry, path in candidates if path in inserted]

        if dry_run:
            logger.info(f"Dry run: {len(mutations)} queue edits planned, none sent")
            return ReconcileResult(added=added, mutations=mutations, applied=0, dry_run=True)

        for step, mutation in enumerate(mutations):
            try:
                apply_mutation(client, mutation)
            except RemoteError as e:
                logger.error(f"Queue edit {step} ({mutation}) failed, {step} edits were applied")
                raise RemoteMutationError(
                    stage=type(mutation).__name__,
                    step=step,
                    applied=mutations[:step],
                    cause=e,
                ) from e

        logger.info(f"Queued {len(added)} songs with {len(mutations)} edits ({mode.value})")
        return ReconcileResult(added=added, mutations=mutations, applied=len(mutations), dry_run=False)


def append(client: RemoteQueueClient, entry: CacheEntry) -> None:
    """Add one song at the end of the queue.

    Raises:
        RemoteMutationError: If the insert fails
    """
    path = to_remote_path(entry)
    with client_lock(client):
        length = len(client.queue_snapshot())
        try:
            client.insert_at(path, length)
        except RemoteError as e:
            raise RemoteMutationError(stage="InsertAt", step=0, cause=e) from e
