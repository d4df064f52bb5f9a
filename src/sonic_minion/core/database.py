"""
SQLite feature cache for Sonic Minion.

Schema:
    song:     One row per cache key (metadata, analysis state, format version)
    feature:  One row per feature value, ordered by feature_index

Version 1 is the layout written by older releases (no format version, no
recorded errors). Songs migrated from it get format version 1 and are
re-analyzed by the next update.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from loguru import logger

from sonic_minion.domain.library.models import CacheEntry, FailedEntry, SongMetadata

from .config import get_data_dir
from .exceptions import StorageError

# Database schema version for migrations
SCHEMA_VERSION = 2

# Format version given to songs analyzed before format versions were recorded
LEGACY_FORMAT_VERSION = 1


def get_database_path() -> Path:
    """Get the path to the SQLite database file."""
    return get_data_dir() / "songs.db"


_SONG_COLUMNS = """
    song.id, song.path, song.title, song.artist, song.album, song.album_artist,
    song.track_number, song.disc_number, song.genre, song.duration,
    song.analyzed, song.version, song.error
"""


def migrate_database(conn: sqlite3.Connection, current_version: int) -> None:
    """Migrate database from current_version to latest schema."""
    if current_version < 1:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS song (
                id INTEGER PRIMARY KEY,
                path TEXT NOT NULL UNIQUE,
                artist TEXT,
                title TEXT,
                album TEXT,
                track_number TEXT,
                genre TEXT,
                stamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                analyzed BOOLEAN DEFAULT FALSE
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS feature (
                id INTEGER PRIMARY KEY,
                song_id INTEGER NOT NULL,
                feature REAL NOT NULL,
                feature_index INTEGER NOT NULL,
                UNIQUE (id, feature_index),
                FOREIGN KEY (song_id) REFERENCES song (id)
            )
        """)

    if current_version < 2:
        # Migration from v1 to v2: format versions, recorded errors, extra tags
        for column, definition in (
            ("album_artist", "TEXT"),
            ("disc_number", "TEXT"),
            ("duration", "REAL"),
            ("version", f"INTEGER NOT NULL DEFAULT {LEGACY_FORMAT_VERSION}"),
            ("error", "TEXT"),
        ):
            try:
                conn.execute(f"ALTER TABLE song ADD COLUMN {column} {definition}")
            except sqlite3.OperationalError as e:
                if "duplicate column name" not in str(e).lower():
                    raise

        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_feature_song_id ON feature (song_id, feature_index)"
        )

    conn.execute("DELETE FROM schema_version")
    conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))


def _parse_optional_float(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class FeatureCache:
    """
    Durable mapping from cache key to analysis result and metadata.

    A new SQLite connection is opened per operation; writes are serialized by
    self._lock so analysis threads can store results as they complete.
    """

    def __init__(self, db_path: Path, number_features: int) -> None:
        self.db_path = db_path
        self.number_features = number_features
        self._lock = threading.Lock()
        self.init_database()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with proper cleanup.

        Raises:
            StorageError: If the database cannot be opened or a query fails
        """
        try:
            conn = sqlite3.connect(self.db_path, timeout=30.0)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open feature cache {self.db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
        except sqlite3.Error as e:
            raise StorageError(f"Feature cache error ({self.db_path}): {e}") from e
        finally:
            conn.close()

    def init_database(self) -> None:
        """Create the schema, or migrate an existing database to the latest version."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create {self.db_path.parent}: {e}") from e

        with self._lock, self.connection() as conn:
            with conn:
                conn.execute(
                    "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY)"
                )
                row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
                current_version = row[0] if row and row[0] is not None else 0

                if current_version == 0:
                    # Older releases wrote the song table without a schema_version table
                    legacy = conn.execute(
                        "SELECT name FROM sqlite_master WHERE type='table' AND name='song'"
                    ).fetchone()
                    if legacy:
                        current_version = 1
                        logger.info(f"Migrating legacy feature cache at {self.db_path}")

                if current_version < SCHEMA_VERSION:
                    migrate_database(conn, current_version)
                elif current_version > SCHEMA_VERSION:
                    raise StorageError(
                        f"Feature cache {self.db_path} has schema version {current_version}, "
                        f"newer than supported version {SCHEMA_VERSION}"
                    )

    def _row_to_entry(self, row: sqlite3.Row, features: list[float]) -> CacheEntry:
        metadata = SongMetadata(
            title=row["title"],
            artist=row["artist"],
            album=row["album"],
            album_artist=row["album_artist"],
            track_number=row["track_number"],
            disc_number=row["disc_number"],
            genre=row["genre"],
            duration=_parse_optional_float(row["duration"]),
        )
        analyzed = bool(row["analyzed"])
        format_version = row["version"]

        if not analyzed:
            # Placeholders never carry features, even if stray rows were left behind
            features = []
        elif len(features) != self.number_features:
            logger.warning(
                f"Song '{row['path']}' has {len(features)} features instead of "
                f"{self.number_features}, treating it as not analyzed"
            )
            analyzed = False
            features = []
            format_version = 0

        return CacheEntry(
            path=row["path"],
            features=tuple(features),
            metadata=metadata,
            analyzed=analyzed,
            format_version=format_version,
            error=row["error"],
        )

    def all(self) -> list[CacheEntry]:
        """Get every cache entry, analyzed or not, ordered by path."""
        with self.connection() as conn:
            songs = conn.execute(
                f"SELECT {_SONG_COLUMNS} FROM song ORDER BY song.path"
            ).fetchall()
            features: dict[int, list[float]] = {}
            for row in conn.execute(
                "SELECT song_id, feature FROM feature ORDER BY song_id, feature_index"
            ):
                features.setdefault(row["song_id"], []).append(row["feature"])

        return [self._row_to_entry(song, features.get(song["id"], [])) for song in songs]

    def analyzed(self) -> list[CacheEntry]:
        """Get entries that can be fed into ranking."""
        return [entry for entry in self.all() if entry.analyzed]

    def get(self, path: str) -> Optional[CacheEntry]:
        """Get a single entry by cache key."""
        with self.connection() as conn:
            song = conn.execute(
                f"SELECT {_SONG_COLUMNS} FROM song WHERE song.path = ?", (path,)
            ).fetchone()
            if song is None:
                return None
            features = [
                row["feature"]
                for row in conn.execute(
                    "SELECT feature FROM feature WHERE song_id = ? ORDER BY feature_index",
                    (song["id"],),
                )
            ]
        return self._row_to_entry(song, features)

    def paths(self) -> set[str]:
        """Get all cache keys, regardless of analysis state or format version."""
        with self.connection() as conn:
            return {row["path"] for row in conn.execute("SELECT path FROM song")}

    def upsert(self, entry: CacheEntry) -> None:
        """Insert or update an entry.

        For analyzed entries, metadata and the whole feature vector are
        replaced in one transaction. For placeholders (analyzed=False) the
        row is marked unanalyzed at the entry's format version and any stored
        features are dropped.

        Raises:
            ValueError: If the entry breaks the feature count invariant
            StorageError: If the write fails
        """
        if entry.analyzed and len(entry.features) != self.number_features:
            raise ValueError(
                f"Expected {self.number_features} features for '{entry.path}', "
                f"got {len(entry.features)}"
            )
        if not entry.analyzed and entry.features:
            raise ValueError(f"Placeholder entry '{entry.path}' cannot carry features")

        with self._lock, self.connection() as conn:
            with conn:
                if entry.analyzed:
                    self._upsert_analyzed(conn, entry)
                else:
                    self._upsert_placeholder(conn, entry)

    def _upsert_analyzed(self, conn: sqlite3.Connection, entry: CacheEntry) -> None:
        m = entry.metadata
        conn.execute(
            """
            INSERT INTO song (
                path, title, artist, album, album_artist, track_number,
                disc_number, genre, duration, analyzed, version, error, stamp
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, TRUE, ?, NULL, CURRENT_TIMESTAMP)
            ON CONFLICT(path) DO UPDATE SET
                title=excluded.title,
                artist=excluded.artist,
                album=excluded.album,
                album_artist=excluded.album_artist,
                track_number=excluded.track_number,
                disc_number=excluded.disc_number,
                genre=excluded.genre,
                duration=excluded.duration,
                analyzed=TRUE,
                version=excluded.version,
                error=NULL,
                stamp=CURRENT_TIMESTAMP
            """,
            (
                entry.path,
                m.title,
                m.artist,
                m.album,
                m.album_artist,
                m.track_number,
                m.disc_number,
                m.genre,
                m.duration,
                entry.format_version,
            ),
        )
        song_id = conn.execute(
            "SELECT id FROM song WHERE path = ?", (entry.path,)
        ).fetchone()["id"]
        conn.execute("DELETE FROM feature WHERE song_id = ?", (song_id,))
        conn.executemany(
            "INSERT INTO feature (song_id, feature, feature_index) VALUES (?, ?, ?)",
            [(song_id, float(value), index) for index, value in enumerate(entry.features)],
        )

    def _upsert_placeholder(self, conn: sqlite3.Connection, entry: CacheEntry) -> None:
        conn.execute(
            """
            INSERT INTO song (path, title, artist, album, analyzed, version, error)
            VALUES (?, ?, ?, ?, FALSE, ?, ?)
            ON CONFLICT(path) DO UPDATE SET
                title=COALESCE(excluded.title, song.title),
                artist=COALESCE(excluded.artist, song.artist),
                album=COALESCE(excluded.album, song.album),
                analyzed=FALSE,
                version=excluded.version,
                error=excluded.error,
                stamp=CURRENT_TIMESTAMP
            """,
            (
                entry.path,
                entry.metadata.title,
                entry.metadata.artist,
                entry.metadata.album,
                entry.format_version,
                entry.error,
            ),
        )
        conn.execute(
            "DELETE FROM feature WHERE song_id IN (SELECT id FROM song WHERE path = ?)",
            (entry.path,),
        )

    def delete(self, path: str) -> bool:
        """Delete an entry and its features in one transaction.

        Returns:
            True if an entry was deleted
        """
        with self._lock, self.connection() as conn:
            with conn:
                conn.execute(
                    "DELETE FROM feature WHERE song_id IN (SELECT id FROM song WHERE path = ?)",
                    (path,),
                )
                cursor = conn.execute("DELETE FROM song WHERE path = ?", (path,))
                return cursor.rowcount > 0

    def clear(self) -> None:
        """Remove every entry (used by full rescans)."""
        with self._lock, self.connection() as conn:
            with conn:
                conn.execute("DELETE FROM feature")
                conn.execute("DELETE FROM song")

    def failed_entries(self) -> list[FailedEntry]:
        """Get songs whose analysis failed, with their recorded error."""
        with self.connection() as conn:
            cursor = conn.execute(
                "SELECT path, error FROM song WHERE analyzed = FALSE ORDER BY path"
            )
            return [FailedEntry(row["path"], row["error"]) for row in cursor.fetchall()]


def open_cache(number_features: int, db_path: Optional[Path] = None) -> FeatureCache:
    """Open the feature cache at db_path (default: data directory)."""
    return FeatureCache(db_path or get_database_path(), number_features)
