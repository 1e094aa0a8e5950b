"""Test configuration loading and validation"""

from pathlib import Path

import pytest

from spotify_sync.core.config import (
    DEFAULT_REDIRECT_URI,
    DEFAULT_SCOPES,
    load_config,
)
from spotify_sync.core.exceptions import ConfigError

ENV = {"SPOTIFY_CLIENT_ID": "env-id", "SPOTIFY_CLIENT_SECRET": "env-secret"}


def write_config(directory: Path, text: str) -> Path:
    path = directory / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    """Test load_config sources and precedence"""

    def test_defaults_from_environment_only(self, temp_dir, monkeypatch):
        """Test environment credentials with no file give the defaults"""
        monkeypatch.chdir(temp_dir)
        config = load_config(environ={**ENV, "SPOTIFY_SYNC_DATA_DIR": str(temp_dir / "data")})

        assert config.spotify.client_id == "env-id"
        assert config.spotify.redirect_uri == DEFAULT_REDIRECT_URI
        assert config.spotify.scopes == DEFAULT_SCOPES
        assert config.storage.credentials_path == temp_dir / "data" / "credentials.db"
        assert config.storage.log_dir == temp_dir / "data" / "logs"
        assert config.transfer.playlist_batch_size == 100
        assert config.transfer.liked_batch_size == 50
        assert config.transfer.confirm_merge is False

    def test_file_values(self, temp_dir):
        """Test values are read from an explicit YAML file"""
        path = write_config(temp_dir, """
spotify:
  client_id: file-id
  client_secret: file-secret
  redirect_uri: http://localhost:9999/cb
  scopes: user-library-read playlist-read-private
storage:
  data_dir: /tmp/spotify-sync-test
transfer:
  playlist_batch_size: 20
  backoff_base: 2
  confirm_merge: true
""")
        config = load_config(path, environ={})

        assert config.spotify.client_id == "file-id"
        assert config.spotify.redirect_uri == "http://localhost:9999/cb"
        assert config.spotify.scopes == ("user-library-read", "playlist-read-private")
        assert config.storage.data_dir == Path("/tmp/spotify-sync-test")
        assert config.transfer.playlist_batch_size == 20
        assert config.transfer.backoff_base == 2.0
        assert config.transfer.confirm_merge is True

    def test_environment_overrides_file(self, temp_dir):
        """Test environment variables take precedence over the file"""
        path = write_config(temp_dir, """
spotify:
  client_id: file-id
  client_secret: file-secret
""")
        config = load_config(path, environ={**ENV, "SPOTIFY_REDIRECT_URI": "http://127.0.0.1:1234/x"})

        assert config.spotify.client_id == "env-id"
        assert config.spotify.client_secret == "env-secret"
        assert config.spotify.redirect_uri == "http://127.0.0.1:1234/x"

    def test_config_in_working_directory(self, temp_dir, monkeypatch):
        """Test ./config.yaml is found without an explicit path"""
        write_config(temp_dir, "transfer:\n  max_retries: 2\n")
        monkeypatch.chdir(temp_dir)

        config = load_config(environ={**ENV, "SPOTIFY_SYNC_DATA_DIR": str(temp_dir)})

        assert config.transfer.max_retries == 2

    def test_config_is_frozen(self, temp_dir, monkeypatch):
        """Test configuration cannot be modified after loading"""
        monkeypatch.chdir(temp_dir)
        config = load_config(environ={**ENV, "SPOTIFY_SYNC_DATA_DIR": str(temp_dir)})

        with pytest.raises(AttributeError):
            config.transfer.max_retries = 10


class TestConfigValidation:
    """Test invalid configurations raise ConfigError"""

    def test_missing_credentials(self, temp_dir, monkeypatch):
        """Test missing client credentials are rejected"""
        monkeypatch.chdir(temp_dir)
        with pytest.raises(ConfigError):
            load_config(environ={"SPOTIFY_SYNC_DATA_DIR": str(temp_dir)})

    def test_explicit_file_missing(self, temp_dir):
        """Test an explicit path must exist"""
        with pytest.raises(ConfigError):
            load_config(temp_dir / "missing.yaml", environ=ENV)

    def test_invalid_yaml(self, temp_dir):
        """Test YAML syntax errors are reported"""
        path = write_config(temp_dir, "spotify: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(path, environ=ENV)

    @pytest.mark.parametrize("transfer_yaml", [
        "playlist_batch_size: 101",
        "playlist_batch_size: 0",
        "liked_batch_size: 51",
        "max_retries: -1",
        "max_retries: five",
        "max_retries: true",
        "backoff_base: -1.0",
        "request_timeout: 0",
        "unknown_setting: 1",
    ])
    def test_invalid_transfer_settings(self, temp_dir, transfer_yaml):
        """Test out-of-range, mistyped and unknown transfer settings"""
        path = write_config(temp_dir, f"transfer:\n  {transfer_yaml}\n")
        with pytest.raises(ConfigError):
            load_config(path, environ=ENV)

    def test_section_must_be_mapping(self, temp_dir):
        """Test a section that is not a dictionary is rejected"""
        path = write_config(temp_dir, "transfer: 5\n")
        with pytest.raises(ConfigError):
            load_config(path, environ=ENV)
