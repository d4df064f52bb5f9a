"""Playback domain - MPD queue integration.

This domain handles:
- MPD protocol client (library listing, queue reads and edits)
- Queue reconciliation (replace or preserve the current queue)
- Interactive playlist sessions
"""

from .client import LIST_PAGE_SIZE, MPDClient, QueueItem, RemoteQueueClient
from .interactive import CANCEL_KEYS, InteractiveSession, SessionState, show_choices
from .reconciler import (
    DeleteRange,
    InsertAt,
    MoveRange,
    Mutation,
    PositionTracker,
    ReconcileMode,
    ReconcileResult,
    append,
    client_lock,
    leftover_length,
    plan,
    plan_preserve,
    plan_replace,
    reconcile,
    simulate,
)

__all__ = [
    # Client
    "LIST_PAGE_SIZE",
    "MPDClient",
    "QueueItem",
    "RemoteQueueClient",
    # Reconciler
    "DeleteRange",
    "InsertAt",
    "MoveRange",
    "Mutation",
    "PositionTracker",
    "ReconcileMode",
    "ReconcileResult",
    "append",
    "client_lock",
    "leftover_length",
    "plan",
    "plan_preserve",
    "plan_replace",
    "reconcile",
    "simulate",
    # Interactive
    "CANCEL_KEYS",
    "InteractiveSession",
    "SessionState",
    "show_choices",
]
