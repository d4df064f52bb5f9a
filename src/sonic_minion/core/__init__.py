"""Core infrastructure layer - no playlist or queue logic.

This module provides foundation-level services:
- Configuration management (TOML)
- Feature cache (SQLite)
- Logging and console output (Loguru, Rich)
- Shared exceptions
"""

# Configuration
from .config import (
    Config,
    create_default_config,
    get_config_dir,
    get_config_path,
    get_data_dir,
    load_config,
    parse_config,
    save_config,
)

# Feature cache
from .database import (
    SCHEMA_VERSION,
    FeatureCache,
    get_database_path,
    migrate_database,
    open_cache,
)

# Exceptions
from .exceptions import (
    AnalysisError,
    ConfigError,
    NoAnchorError,
    NotAnalyzedError,
    PathNormalizationError,
    PlaylistError,
    RemoteError,
    RemoteMutationError,
    SonicMinionError,
    StorageError,
)

# Output
from .output import get_console, log, setup_loguru

__all__ = [
    # Configuration
    "Config",
    "create_default_config",
    "get_config_dir",
    "get_config_path",
    "get_data_dir",
    "load_config",
    "parse_config",
    "save_config",
    # Feature cache
    "SCHEMA_VERSION",
    "FeatureCache",
    "get_database_path",
    "migrate_database",
    "open_cache",
    # Exceptions
    "AnalysisError",
    "ConfigError",
    "NoAnchorError",
    "NotAnalyzedError",
    "PathNormalizationError",
    "PlaylistError",
    "RemoteError",
    "RemoteMutationError",
    "SonicMinionError",
    "StorageError",
    # Output
    "get_console",
    "log",
    "setup_loguru",
]
