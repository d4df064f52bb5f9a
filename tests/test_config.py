"""Tests for configuration loading and validation."""

import tomllib
from unittest.mock import patch

import pytest

from sonic_minion.core.config import (
    Config,
    create_default_config,
    load_config,
    parse_config,
    save_config,
)
from sonic_minion.core.exceptions import ConfigError


@pytest.fixture
def config_paths(tmp_path, monkeypatch):
    """Point the config file and the .env lookup at a temporary directory."""
    for name in ("MPD_HOST", "MPD_PORT", "MPD_PASSWORD", "SONIC_MINION_BASE_PATH"):
        monkeypatch.delenv(name, raising=False)
    config_path = tmp_path / "config.toml"
    with patch("sonic_minion.core.config.get_config_path", return_value=config_path), patch(
        "sonic_minion.core.config.get_config_dir", return_value=tmp_path
    ):
        yield config_path


class TestParseConfig:
    """Tests for parse_config."""

    def test_default_config_parses_to_defaults(self):
        config = parse_config(tomllib.loads(create_default_config()))
        assert config == Config()

    def test_missing_sections_keep_defaults(self):
        config = parse_config({"mpd": {"host": "music.local"}})
        assert config.mpd.host == "music.local"
        assert config.mpd.port == 6600
        assert config.playlist.length == 20
        assert config.analysis.number_features == 23

    def test_base_path_is_expanded(self):
        config = parse_config({"mpd": {"base_path": "~/Music"}})
        assert not config.mpd.base_path.startswith("~")

    def test_invalid_distance_rejected(self):
        config = parse_config({"playlist": {"distance": "manhattan"}})
        with pytest.raises(ConfigError, match="Invalid distance"):
            config.validate()

    def test_invalid_analyzer_reference_rejected(self):
        config = parse_config({"analysis": {"analyzer": "no_colon"}})
        with pytest.raises(ConfigError):
            config.validate()

    @pytest.mark.parametrize("choices", [0, 10])
    def test_number_choices_bounds(self, choices):
        config = parse_config({"playlist": {"number_choices": choices}})
        with pytest.raises(ConfigError):
            config.validate()


class TestLoadConfig:
    """Tests for load_config with files and environment overrides."""

    def test_creates_default_file(self, config_paths):
        config = load_config()
        assert config_paths.exists()
        assert config == Config()

    def test_environment_overrides_file(self, config_paths, monkeypatch):
        config_paths.write_text('[mpd]\nhost = "file-host"\nport = 6601\n')
        monkeypatch.setenv("MPD_HOST", "secret@env-host")
        monkeypatch.setenv("MPD_PORT", "6602")

        config = load_config()

        assert config.mpd.host == "env-host"
        assert config.mpd.password == "secret"
        assert config.mpd.port == 6602

    def test_bad_port_in_environment(self, config_paths, monkeypatch):
        monkeypatch.setenv("MPD_PORT", "not-a-port")
        with pytest.raises(ConfigError, match="MPD_PORT"):
            load_config()

    def test_invalid_toml(self, config_paths):
        config_paths.write_text("[mpd\nhost = ")
        with pytest.raises(ConfigError, match="Error parsing"):
            load_config()

    def test_save_then_load(self, config_paths):
        config = Config()
        config.mpd.base_path = "/srv/music"
        config.analysis.analyzer = "features:analyze"
        config.playlist.dedup = True
        config.playlist.number_choices = 5

        assert save_config(config)
        loaded = load_config()

        assert loaded.mpd.base_path == "/srv/music"
        assert loaded.analysis.analyzer == "features:analyze"
        assert loaded.playlist.dedup is True
        assert loaded.playlist.number_choices == 5

    def test_save_escapes_strings(self, config_paths):
        config = Config()
        config.mpd.base_path = '/srv/My "Best" Music\\Rock'
        config.mpd.password = 'pa"ss\\word'

        assert save_config(config)
        loaded = load_config()

        assert loaded.mpd.base_path == '/srv/My "Best" Music\\Rock'
        assert loaded.mpd.password == 'pa"ss\\word'
