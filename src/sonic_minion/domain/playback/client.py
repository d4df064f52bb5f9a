"""
MPD client.

Speaks just enough of the MPD text protocol to read the library and the
queue, and to edit the queue. Connects over TCP, or over a Unix socket when
the host is a path.
"""

import socket
from typing import NamedTuple, Optional, Protocol

from loguru import logger

from sonic_minion.core.exceptions import RemoteError

# Songs fetched per library listing request
LIST_PAGE_SIZE = 1000


class QueueItem(NamedTuple):
    """A song in the MPD queue. Positions shift on every edit."""

    position: int
    path: str


class RemoteQueueClient(Protocol):
    """Interface the synchronizer and the reconciler need from a player queue.

    Positions are 0-based. Ranges are half-open: [start, end).
    """

    def list_files(self) -> list[str]:
        """Paths of every song in the remote library."""
        ...

    def current_song(self) -> Optional[QueueItem]:
        """Song currently playing (or paused), None if there is none."""
        ...

    def queue_snapshot(self) -> list[QueueItem]:
        """Whole queue, in order."""
        ...

    def delete_range(self, start: int, end: int) -> None:
        """Remove items [start, end); later items shift left."""
        ...

    def insert_at(self, path: str, position: int) -> None:
        """Insert one song at position; items from position on shift right."""
        ...

    def move_range(self, src_start: int, src_end: int, dest: int) -> None:
        """Move items [src_start, src_end) so the first one ends up at dest."""
        ...


def quote(argument: str) -> str:
    """Quote a command argument for the MPD protocol."""
    escaped = argument.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def parse_pairs(lines: list[str]) -> list[tuple[str, str]]:
    """Split 'key: value' response lines."""
    pairs = []
    for line in lines:
        key, sep, value = line.partition(": ")
        if sep:
            pairs.append((key, value))
    return pairs


def parse_songs(lines: list[str]) -> list[dict[str, str]]:
    """Group response lines into songs; each song starts with a 'file' key."""
    songs: list[dict[str, str]] = []
    for key, value in parse_pairs(lines):
        if key == "file":
            songs.append({})
        if songs:
            songs[-1][key] = value
    return songs


def _queue_item(song: dict[str, str]) -> QueueItem:
    return QueueItem(position=int(song["Pos"]), path=song["file"])


class MPDClient:
    """Minimal synchronous MPD client.

    Usage:
        with MPDClient(host, port) as client:
            client.queue_snapshot()
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 6600,
        password: Optional[str] = None,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.password = password
        self.timeout = timeout
        self._sock: Optional[socket.socket] = None
        self._reader = None

    def __enter__(self) -> "MPDClient":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def connect(self) -> None:
        """Open the connection and authenticate if a password is set.

        Raises:
            RemoteError: If the server cannot be reached or rejects the password
        """
        try:
            if self.host.startswith("/"):
                sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
                sock.settimeout(self.timeout)
                sock.connect(self.host)
            else:
                sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        except OSError as e:
            raise RemoteError(f"Cannot connect to MPD at {self.host}:{self.port}: {e}") from e

        self._sock = sock
        self._reader = sock.makefile("r", encoding="utf-8", newline="\n")

        greeting = self._read_line()
        if not greeting.startswith("OK MPD "):
            self.close()
            raise RemoteError(f"Unexpected MPD greeting: {greeting!r}")
        logger.debug(f"Connected to {greeting[3:]} at {self.host}:{self.port}")

        if self.password:
            self.command("password", self.password)

    def close(self) -> None:
        if self._sock is None:
            return
        try:
            self._sock.sendall(b"close\n")
        except OSError:
            pass
        finally:
            if self._reader is not None:
                self._reader.close()
            self._sock.close()
            self._sock = None
            self._reader = None

    def _read_line(self) -> str:
        try:
            line = self._reader.readline()
        except (OSError, UnicodeDecodeError) as e:
            raise RemoteError(f"Lost connection to MPD: {e}") from e
        if not line:
            raise RemoteError("MPD closed the connection")
        return line.rstrip("\n")

    def command(self, name: str, *args: str) -> list[str]:
        """Send one command and return its response lines.

        Raises:
            RemoteError: On connection failure or an ACK from the server
        """
        if self._sock is None:
            raise RemoteError("Not connected to MPD")

        line = " ".join([name] + [quote(str(arg)) for arg in args])
        logger.debug(f"MPD > {line}")
        try:
            self._sock.sendall((line + "\n").encode("utf-8"))
        except OSError as e:
            raise RemoteError(f"Lost connection to MPD: {e}") from e

        lines = []
        while True:
            response = self._read_line()
            if response == "OK":
                return lines
            if response.startswith("ACK "):
                raise RemoteError(f"MPD refused '{name}': {response[4:]}")
            lines.append(response)

    # Library

    def list_files(self) -> list[str]:
        paths: list[str] = []
        start = 0
        while True:
            lines = self.command(
                "search", '(file != "")', "window", f"{start}:{start + LIST_PAGE_SIZE}"
            )
            page = [value for key, value in parse_pairs(lines) if key == "file"]
            paths.extend(page)
            if len(page) < LIST_PAGE_SIZE:
                return paths
            start += LIST_PAGE_SIZE

    # Queue

    def current_song(self) -> Optional[QueueItem]:
        songs = parse_songs(self.command("currentsong"))
        if not songs or "Pos" not in songs[0]:
            return None
        return _queue_item(songs[0])

    def queue_snapshot(self) -> list[QueueItem]:
        return [_queue_item(song) for song in parse_songs(self.command("playlistinfo"))]

    def delete_range(self, start: int, end: int) -> None:
        self.command("delete", f"{start}:{end}")

    def insert_at(self, path: str, position: int) -> None:
        self.command("addid", path, str(position))

    def move_range(self, src_start: int, src_end: int, dest: int) -> None:
        self.command("move", f"{src_start}:{src_end}", str(dest))
