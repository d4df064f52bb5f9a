"""
Configuration management for Sonic Minion
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .exceptions import ConfigError

# Distances accepted by the playlist commands
VALID_DISTANCES = ("euclidean", "cosine", "mahalanobis", "forest")


@dataclass
class MPDConfig:
    """Configuration for the MPD server connection."""

    host: str = "127.0.0.1"
    port: int = 6600
    password: Optional[str] = None
    # Value of `music_directory` in mpd.conf
    base_path: Optional[str] = None
    timeout: float = 10.0


@dataclass
class AnalysisConfig:
    """Configuration for song analysis and the feature cache."""

    analyzer: Optional[str] = None  # "module:function"
    format_version: int = 2
    number_features: int = 23
    threads: int = 4

    def validate(self) -> None:
        """Validate analysis configuration values.

        Raises:
            ConfigError: If configuration values are invalid
        """
        if self.analyzer is not None and ":" not in self.analyzer:
            raise ConfigError(
                f"Invalid analyzer reference '{self.analyzer}', expected 'module:function'"
            )
        if self.number_features <= 0:
            raise ConfigError("number_features must be positive")
        if self.threads <= 0:
            raise ConfigError("threads must be positive")


@dataclass
class PlaylistConfig:
    """Defaults for the playlist commands."""

    length: int = 20
    distance: str = "euclidean"
    seed_song: bool = False
    dedup: bool = False
    keep_current_queue: bool = False
    album_playlist: bool = False
    dry_run: bool = False
    number_choices: int = 3

    def validate(self) -> None:
        """Validate playlist configuration values.

        Raises:
            ConfigError: If configuration values are invalid
        """
        if self.distance not in VALID_DISTANCES:
            raise ConfigError(
                f"Invalid distance: {self.distance}. "
                f"Valid distances are: {', '.join(VALID_DISTANCES)}"
            )
        if self.length < 1:
            raise ConfigError("Playlist length must be at least 1")
        if not 1 <= self.number_choices <= 9:
            raise ConfigError("number_choices must be between 1 and 9")


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: Optional[str] = (
        None  # Custom log file path (default: ~/.local/share/sonic-minion/sonic-minion.log)
    )
    console_output: bool = False  # Also output to stderr


@dataclass
class Config:
    """Main configuration object."""

    mpd: MPDConfig = field(default_factory=MPDConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    playlist: PlaylistConfig = field(default_factory=PlaylistConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        self.analysis.validate()
        self.playlist.validate()


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_home = os.environ.get("XDG_CONFIG_HOME")
    if config_home:
        return Path(config_home) / "sonic-minion"
    return Path.home() / ".config" / "sonic-minion"


def _find_project_config() -> Optional[Path]:
    """Find config.toml in project root by looking for pyproject.toml.

    Returns:
        Path to config.toml in project root, or None if not found
    """
    current = Path(__file__).resolve().parent
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            config_path = parent / "config.toml"
            if config_path.exists():
                return config_path
            return None
    return None


def get_config_path() -> Path:
    """Get the main configuration file path.

    Checks for config.toml in the following order:
    1. Project root (detected via pyproject.toml) - for development
    2. Current working directory
    3. XDG_CONFIG_HOME/sonic-minion (or ~/.config/sonic-minion)
    """
    project_config = _find_project_config()
    if project_config:
        return project_config

    local_config = Path.cwd() / "config.toml"
    if local_config.exists():
        return local_config

    return get_config_dir() / "config.toml"


def get_data_dir() -> Path:
    """Get the data directory path."""
    data_home = os.environ.get("XDG_DATA_HOME")
    if data_home:
        return Path(data_home) / "sonic-minion"
    return Path.home() / ".local" / "share" / "sonic-minion"


def create_default_config() -> str:
    """Create a default configuration TOML content."""
    return """
# Sonic Minion Configuration

[mpd]
# MPD server address (MPD_HOST / MPD_PORT override these)
host = "127.0.0.1"
port = 6600

# Value of `music_directory` in your mpd.conf
# base_path = "/home/user/Music"

# Socket timeout in seconds
timeout = 10.0

[analysis]
# Analysis function, as "module:function" (required by update and rescan)
# analyzer = "mypackage.features:analyze"

# Bump when the analyzer changes, to re-analyze the whole library
format_version = 2

# Length of the feature vector produced by the analyzer
number_features = 23

# Songs analyzed in parallel
threads = 4

[playlist]
# Default playlist length, including the current song
length = 20

# Distance metric (euclidean, cosine, mahalanobis, forest)
distance = "euclidean"

# Chain songs (closest to the previous song) instead of closest to the first
seed_song = false

# Drop songs with the same title/artist or nearly identical features
dedup = false

# Insert the playlist after the current song instead of replacing the queue
keep_current_queue = false

# Queue whole albums instead of songs
album_playlist = false

# Print the playlist without touching the queue
dry_run = false

# Candidates shown per round in interactive mode
number_choices = 3

[logging]
# Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
level = "INFO"

# Custom log file path (default: ~/.local/share/sonic-minion/sonic-minion.log)
# log_file = "/path/to/custom/sonic-minion.log"

# Also output logs to stderr (useful for debugging)
console_output = false
""".strip()


def _apply_env_overrides(config: Config) -> None:
    mpd_host = os.environ.get("MPD_HOST")
    if mpd_host:
        # MPD_HOST may carry a password as "password@host"
        if "@" in mpd_host:
            password, mpd_host = mpd_host.split("@", 1)
            config.mpd.password = password
        config.mpd.host = mpd_host

    mpd_port = os.environ.get("MPD_PORT")
    if mpd_port:
        try:
            config.mpd.port = int(mpd_port)
        except ValueError as e:
            raise ConfigError(f"MPD_PORT must be an integer, got '{mpd_port}'") from e

    mpd_password = os.environ.get("MPD_PASSWORD")
    if mpd_password:
        config.mpd.password = mpd_password

    base_path = os.environ.get("SONIC_MINION_BASE_PATH")
    if base_path:
        config.mpd.base_path = str(Path(base_path).expanduser())


def parse_config(toml_data: dict) -> Config:
    """Build a Config from parsed TOML data, keeping defaults for missing keys."""
    config = Config()

    if "mpd" in toml_data:
        mpd_data = toml_data["mpd"]
        base_path = mpd_data.get("base_path", config.mpd.base_path)
        config.mpd = MPDConfig(
            host=mpd_data.get("host", config.mpd.host),
            port=int(mpd_data.get("port", config.mpd.port)),
            password=mpd_data.get("password", config.mpd.password),
            base_path=str(Path(base_path).expanduser()) if base_path else None,
            timeout=float(mpd_data.get("timeout", config.mpd.timeout)),
        )

    if "analysis" in toml_data:
        analysis_data = toml_data["analysis"]
        config.analysis = AnalysisConfig(
            analyzer=analysis_data.get("analyzer", config.analysis.analyzer),
            format_version=analysis_data.get(
                "format_version", config.analysis.format_version
            ),
            number_features=analysis_data.get(
                "number_features", config.analysis.number_features
            ),
            threads=analysis_data.get("threads", config.analysis.threads),
        )

    if "playlist" in toml_data:
        playlist_data = toml_data["playlist"]
        config.playlist = PlaylistConfig(
            length=playlist_data.get("length", config.playlist.length),
            distance=playlist_data.get("distance", config.playlist.distance),
            seed_song=playlist_data.get("seed_song", config.playlist.seed_song),
            dedup=playlist_data.get("dedup", config.playlist.dedup),
            keep_current_queue=playlist_data.get(
                "keep_current_queue", config.playlist.keep_current_queue
            ),
            album_playlist=playlist_data.get(
                "album_playlist", config.playlist.album_playlist
            ),
            dry_run=playlist_data.get("dry_run", config.playlist.dry_run),
            number_choices=playlist_data.get(
                "number_choices", config.playlist.number_choices
            ),
        )

    if "logging" in toml_data:
        logging_data = toml_data["logging"]
        config.logging = LoggingConfig(
            level=logging_data.get("level", config.logging.level),
            log_file=logging_data.get("log_file"),
            console_output=logging_data.get(
                "console_output", config.logging.console_output
            ),
        )

    return config


def load_config() -> Config:
    """Load configuration from file or create default.

    Environment variables override TOML values:
    - MPD_HOST (optionally "password@host")
    - MPD_PORT
    - MPD_PASSWORD
    - SONIC_MINION_BASE_PATH

    Raises:
        ConfigError: If the file cannot be parsed or holds invalid values
    """
    from dotenv import load_dotenv

    env_path = get_config_dir() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    config_path = get_config_path()

    if not config_path.exists():
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_default_config())
        print(f"Created default configuration at: {config_path}")
        config = Config()
    else:
        try:
            with open(config_path, "rb") as f:
                toml_data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Error parsing {config_path}: {e}") from e
        try:
            config = parse_config(toml_data)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value in {config_path}: {e}") from e

    _apply_env_overrides(config)
    config.validate()
    return config


def toml_string(value: str) -> str:
    """Quote a value as a TOML basic string."""
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def save_config(config: Config) -> bool:
    """Save configuration to file."""
    config_path = get_config_path()

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        toml_content = f"""# Sonic Minion Configuration

[mpd]
host = {toml_string(config.mpd.host)}
port = {config.mpd.port}
timeout = {config.mpd.timeout}"""

        if config.mpd.base_path:
            toml_content += f'\nbase_path = {toml_string(config.mpd.base_path)}'
        if config.mpd.password:
            toml_content += f'\npassword = {toml_string(config.mpd.password)}'

        toml_content += f"""

[analysis]
format_version = {config.analysis.format_version}
number_features = {config.analysis.number_features}
threads = {config.analysis.threads}"""

        if config.analysis.analyzer:
            toml_content += f'\nanalyzer = {toml_string(config.analysis.analyzer)}'

        toml_content += f"""

[playlist]
length = {config.playlist.length}
distance = {toml_string(config.playlist.distance)}
seed_song = {str(config.playlist.seed_song).lower()}
dedup = {str(config.playlist.dedup).lower()}
keep_current_queue = {str(config.playlist.keep_current_queue).lower()}
album_playlist = {str(config.playlist.album_playlist).lower()}
dry_run = {str(config.playlist.dry_run).lower()}
number_choices = {config.playlist.number_choices}

[logging]
level = {toml_string(config.logging.level)}
console_output = {str(config.logging.console_output).lower()}"""

        if config.logging.log_file:
            toml_content += f'\nlog_file = {toml_string(config.logging.log_file)}'

        toml_content += "\n"

        with open(config_path, "w", encoding="utf-8") as f:
            f.write(toml_content)

        return True

    except OSError as e:
        print(f"Error saving configuration to {config_path}: {e}")
        return False
