"""Library context for explicit state passing.

Commands receive the configuration, the feature cache and the MPD connection
through a LibraryContext instead of module-level singletons. open_library()
acquires them and guarantees the connection is closed afterwards.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from loguru import logger

from sonic_minion.core.config import Config
from sonic_minion.core.database import FeatureCache, open_cache
from sonic_minion.core.exceptions import RemoteError
from sonic_minion.domain.playback.client import MPDClient, RemoteQueueClient


@dataclass
class LibraryContext:
    """Handles shared by one command invocation.

    Attributes:
        config: Application configuration
        cache: Feature cache
        client: MPD queue client (None for commands that only read the cache)
    """

    config: Config
    cache: FeatureCache
    client: Optional[RemoteQueueClient] = None

    def require_client(self) -> RemoteQueueClient:
        if self.client is None:
            raise RemoteError("This command needs an MPD connection")
        return self.client


def make_client(config: Config) -> MPDClient:
    return MPDClient(
        host=config.mpd.host,
        port=config.mpd.port,
        password=config.mpd.password,
        timeout=config.mpd.timeout,
    )


@contextmanager
def open_library(
    config: Config,
    connect: bool = True,
    db_path: Optional[Path] = None,
    client: Optional[RemoteQueueClient] = None,
) -> Iterator[LibraryContext]:
    """Open the feature cache and, if asked, connect to MPD.

    Args:
        config: Application configuration
        connect: Connect to MPD (ignored when client is given)
        db_path: Feature cache location (default: data directory)
        client: Already connected client to use instead of a new connection

    Raises:
        StorageError: If the feature cache cannot be opened
        RemoteError: If MPD cannot be reached
    """
    cache = open_cache(config.analysis.number_features, db_path)

    if client is not None or not connect:
        yield LibraryContext(config=config, cache=cache, client=client)
        return

    mpd = make_client(config)
    mpd.connect()
    try:
        yield LibraryContext(config=config, cache=cache, client=mpd)
    finally:
        logger.debug("Closing MPD connection")
        mpd.close()
