"""
Interactive playlist session.

Builds a playlist one song at a time: the closest songs to the current anchor
are shown, the user picks one with a digit key, it is appended to the queue
and becomes the new anchor.
"""

from enum import Enum
from typing import Callable, Optional, Sequence

from loguru import logger
from rich.table import Table

from sonic_minion.core.exceptions import NoAnchorError, NotAnalyzedError
from sonic_minion.core.output import get_console

from ..library.models import CacheEntry, display_name
from ..library.paths import to_cache_key
from ..playlists.builder import dedup_playlist, is_duplicate
from ..playlists.distance import DistanceMetric
from ..playlists.ranking import closest_to_seed
from .client import RemoteQueueClient
from .reconciler import append

# Keys that end the session
CANCEL_KEYS = frozenset({"q", "Q", "escape", "\x03"})

KeyReader = Callable[[], str]
ChoicePresenter = Callable[[CacheEntry, Sequence[CacheEntry]], None]


class SessionState(Enum):
    SEEDING = "seeding"
    PRESENTING = "presenting"
    AWAITING_CHOICE = "awaiting_choice"
    DONE = "done"


def show_choices(anchor: CacheEntry, choices: Sequence[CacheEntry]) -> None:
    """Print the songs to choose from."""
    table = Table(title=f"After: {display_name(anchor)}", show_header=True)
    table.add_column("Key", style="bold cyan", width=3)
    table.add_column("Song")
    table.add_column("Album", style="dim")
    for i, entry in enumerate(choices, start=1):
        table.add_row(str(i), display_name(entry), entry.album or "")
    get_console().print(table)
    get_console().print("[dim]Press 1-{} to queue a song, q to quit[/dim]".format(len(choices)))


class InteractiveSession:
    """Key driven playlist builder.

    SEEDING -> PRESENTING -> AWAITING_CHOICE -> PRESENTING ... -> DONE

    The session ends when the user cancels, or when no more than
    number_choices songs are left to choose from.
    """

    def __init__(
        self,
        client: RemoteQueueClient,
        pool: Sequence[CacheEntry],
        metric: DistanceMetric,
        read_key: KeyReader,
        number_choices: int = 3,
        dedup: bool = True,
        present: ChoicePresenter = show_choices,
    ):
        self.client = client
        self.metric = metric
        self.read_key = read_key
        self.number_choices = number_choices
        self.dedup = dedup
        self.present_choices = present

        self.state = SessionState.SEEDING
        self.anchor: Optional[CacheEntry] = None
        self.pool: list[CacheEntry] = [entry for entry in pool if entry.analyzed]
        self.choices: list[CacheEntry] = []
        self.history: list[CacheEntry] = []  # Anchor and every committed song
        self._by_key = {entry.path: entry for entry in self.pool}

    def seed(self, continue_queue: bool = False) -> CacheEntry:
        """Pick the anchor: the current song, or the last queued song.

        Raises:
            NoAnchorError: If there is no current song (or the queue is empty)
            NotAnalyzedError: If the anchor has not been analyzed
        """
        if continue_queue:
            queue = self.client.queue_snapshot()
            item = queue[-1] if queue else None
        else:
            item = self.client.current_song()
        if item is None:
            raise NoAnchorError()

        key = to_cache_key(item.path)
        anchor = self._by_key.get(key)
        if anchor is None:
            raise NotAnalyzedError(key)

        self.anchor = anchor
        self.history.append(anchor)
        self.pool = [entry for entry in self.pool if entry.path != key]
        self.state = SessionState.PRESENTING
        return anchor

    def present(self) -> list[CacheEntry]:
        """Rank the remaining pool against the anchor and keep the top choices."""
        if len(self.pool) <= self.number_choices:
            self.state = SessionState.DONE
            self.choices = []
            return []

        ranked = closest_to_seed([self.anchor], self.pool, self.metric)
        if self.dedup:
            ranked = [entry for entry in ranked if not is_duplicate(entry, self.history, self.metric)]
            ranked = dedup_playlist(ranked, self.metric)

        self.choices = ranked[: self.number_choices]
        if not self.choices:
            self.state = SessionState.DONE
            return []
        self.state = SessionState.AWAITING_CHOICE
        return self.choices

    def choose(self, key: str) -> Optional[CacheEntry]:
        """Handle one key press while awaiting a choice.

        Returns the committed song, or None if the key cancelled the session
        or was not a valid choice.
        """
        if key in CANCEL_KEYS:
            self.state = SessionState.DONE
            return None
        if not key.isdigit() or not 1 <= int(key) <= len(self.choices):
            return None

        chosen = self.choices[int(key) - 1]
        append(self.client, chosen)
        logger.info(f"Queued '{chosen.path}'")

        self.anchor = chosen
        self.history.append(chosen)
        self.pool = [entry for entry in self.pool if entry.path != chosen.path]
        self.state = SessionState.PRESENTING
        return chosen

    def run(self, continue_queue: bool = False) -> list[CacheEntry]:
        """Run the session until it is done. Returns the queued songs."""
        self.seed(continue_queue)
        queued: list[CacheEntry] = []
        while self.state is not SessionState.DONE:
            if self.state is SessionState.PRESENTING:
                if self.present():
                    self.present_choices(self.anchor, self.choices)
                continue
            chosen = self.choose(self.read_key())
            if chosen is not None:
                queued.append(chosen)
        return queued
