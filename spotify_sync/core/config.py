"""
Configuration management for spotify-sync.

This module handles loading, validating, and providing access to the
application configuration. Settings come from three sources, in
increasing order of precedence:

    1. Built-in defaults
    2. A YAML file (explicit --config path, ./config.yaml, or
       <data_dir>/config.yaml)
    3. Environment variables (a .env file is loaded by the CLI at startup)

Environment Variables:
    SPOTIFY_CLIENT_ID       Spotify application client ID
    SPOTIFY_CLIENT_SECRET   Spotify application client secret
    SPOTIFY_REDIRECT_URI    OAuth callback URL registered for the app
    SPOTIFY_SYNC_DATA_DIR   Where credentials and logs are stored

Example config.yaml:
    spotify:
      redirect_uri: "http://127.0.0.1:8888/callback"

    storage:
      data_dir: "~/.spotify-sync"

    transfer:
      playlist_batch_size: 100
      liked_batch_size: 50
      max_retries: 5
      confirm_merge: false

The configuration is loaded once at process start and is immutable
afterwards (all dataclasses are frozen).
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from spotify_sync.core.exceptions import ConfigError


CONFIG_FILENAME = "config.yaml"
DEFAULT_DATA_DIR = "~/.spotify-sync"
DEFAULT_REDIRECT_URI = "http://127.0.0.1:8888/callback"
DEFAULT_SCOPES = (
    "user-library-read",
    "user-library-modify",
    "playlist-read-private",
    "playlist-read-collaborative",
    "playlist-modify-private",
    "playlist-modify-public",
)

# Spotify API limits for write calls
MAX_PLAYLIST_BATCH_SIZE = 100
MAX_LIKED_BATCH_SIZE = 50


@dataclass(frozen=True)
class SpotifyConfig:
    """
    Spotify application credentials and OAuth settings.

    The client credentials are obtained from the Spotify Developer Dashboard:
    https://developer.spotify.com/dashboard

    Attributes:
        client_id: The Spotify application client ID.
        client_secret: The Spotify application client secret.
        redirect_uri: Callback URL registered for the application. It must
                      point to this machine (localhost or 127.0.0.1) so the
                      login flow can receive the authorization code.
        scopes: OAuth scopes requested at login. Reading the source and
                writing the target both need to be granted.
    """
    client_id: str
    client_secret: str
    redirect_uri: str = DEFAULT_REDIRECT_URI
    scopes: tuple[str, ...] = DEFAULT_SCOPES

    @property
    def scope_string(self) -> str:
        """Scopes joined the way the authorize endpoint expects them."""
        return " ".join(self.scopes)


@dataclass(frozen=True)
class StorageConfig:
    """
    Local storage locations.

    Attributes:
        data_dir: Directory holding the credential database and logs.
                  Path expansion is performed (~ is expanded to home directory).
    """
    data_dir: Path

    @property
    def credentials_path(self) -> Path:
        return self.data_dir / "credentials.db"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"


@dataclass(frozen=True)
class TransferConfig:
    """
    Transfer engine and service client behavior.

    Attributes:
        playlist_batch_size: Tracks per add-to-playlist call (Spotify max: 100).
        liked_batch_size: Tracks per save-to-library call (Spotify max: 50).
        max_retries: Retries for a rate-limited or transiently failing call.
        backoff_base: Base delay in seconds for exponential backoff when
                      Spotify does not send Retry-After.
        max_backoff: Upper bound in seconds for any single wait.
        refresh_margin: Refresh the access token when it expires within
                        this many seconds.
        auth_timeout: Seconds to wait for the login callback.
        request_timeout: HTTP timeout for Spotify API calls.
        confirm_merge: Ask before merging into an existing target playlist
                       with the same name.
    """
    playlist_batch_size: int = MAX_PLAYLIST_BATCH_SIZE
    liked_batch_size: int = MAX_LIKED_BATCH_SIZE
    max_retries: int = 5
    backoff_base: float = 1.0
    max_backoff: float = 60.0
    refresh_margin: int = 60
    auth_timeout: int = 300
    request_timeout: int = 30
    confirm_merge: bool = False


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    Created by load_config() and treated as immutable.

    Attributes:
        spotify: Spotify application credentials and OAuth settings.
        storage: Local storage locations.
        transfer: Transfer engine tuning.
    """
    spotify: SpotifyConfig
    storage: StorageConfig
    transfer: TransferConfig


def load_config(
    config_path: Path | None = None,
    environ: dict[str, str] | None = None
) -> Config:
    """
    Load and validate configuration from YAML and environment variables.

    Args:
        config_path: Optional explicit path to a config file. When given,
                     the file must exist.
        environ: Environment mapping to read overrides from.
                 Defaults to os.environ.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigError: If the config file is missing (explicit path only),
                     has invalid YAML syntax, contains invalid values, or
                     the client credentials are not configured anywhere.

    Behavior:
        1. Locate and parse the YAML file (optional unless explicit)
        2. Apply environment variable overrides
        3. Validate spotify credentials
        4. Validate transfer settings against Spotify limits
        5. Expand the data directory path
    """
    env = os.environ if environ is None else environ
    raw_config = _read_config_file(config_path, env)

    spotify_section = _section(raw_config, "spotify")
    storage_section = _section(raw_config, "storage")
    transfer_section = _section(raw_config, "transfer")

    # Environment variables take precedence over the file
    client_id = env.get("SPOTIFY_CLIENT_ID") or spotify_section.get("client_id") or ""
    client_secret = env.get("SPOTIFY_CLIENT_SECRET") or spotify_section.get("client_secret") or ""
    redirect_uri = (
        env.get("SPOTIFY_REDIRECT_URI")
        or spotify_section.get("redirect_uri")
        or DEFAULT_REDIRECT_URI
    )

    if not client_id or not client_secret:
        raise ConfigError(
            "Spotify client credentials are not configured. "
            "Set SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET (or add them to config.yaml).",
            details={"missing": [n for n, v in (("client_id", client_id), ("client_secret", client_secret)) if not v]}
        )

    scopes = spotify_section.get("scopes", DEFAULT_SCOPES)
    if isinstance(scopes, str):
        scopes = scopes.split()
    if not isinstance(scopes, (list, tuple)) or not all(isinstance(s, str) for s in scopes):
        raise ConfigError(
            "'spotify.scopes' must be a list of strings",
            details={"value": scopes}
        )

    spotify = SpotifyConfig(
        client_id=str(client_id),
        client_secret=str(client_secret),
        redirect_uri=str(redirect_uri),
        scopes=tuple(scopes),
    )

    data_dir = env.get("SPOTIFY_SYNC_DATA_DIR") or storage_section.get("data_dir") or DEFAULT_DATA_DIR
    storage = StorageConfig(data_dir=Path(str(data_dir)).expanduser())

    transfer = _build_transfer_config(transfer_section)

    return Config(spotify=spotify, storage=storage, transfer=transfer)


def _read_config_file(config_path: Path | None, env: Any) -> dict[str, Any]:
    """Locate and parse the YAML config file. Returns {} when there is none."""
    if config_path is not None:
        if not config_path.exists():
            raise ConfigError(
                f"Configuration file not found: {config_path}",
                details={"file_path": str(config_path)}
            )
        candidates = [config_path]
    else:
        data_dir = Path(env.get("SPOTIFY_SYNC_DATA_DIR") or DEFAULT_DATA_DIR).expanduser()
        candidates = [Path.cwd() / CONFIG_FILENAME, data_dir / CONFIG_FILENAME]

    for path in candidates:
        if not path.exists():
            continue
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(
                f"Invalid YAML syntax in configuration file: {e}",
                details={"file_path": str(path), "original_error": str(e)}
            ) from e
        except OSError as e:
            raise ConfigError(
                f"Failed to read configuration file: {e}",
                details={"file_path": str(path), "original_error": str(e)}
            ) from e

        if raw_config is None:
            return {}
        if not isinstance(raw_config, dict):
            raise ConfigError(
                "Configuration file must contain a YAML dictionary",
                details={"file_path": str(path)}
            )
        return raw_config

    return {}


def _section(raw_config: dict[str, Any], name: str) -> dict[str, Any]:
    section = raw_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(
            f"'{name}' section must be a dictionary",
            details={"section": name}
        )
    return section


def _build_transfer_config(section: dict[str, Any]) -> TransferConfig:
    """Build TransferConfig from the YAML section, validating types and limits."""
    known = {f.name: f for f in fields(TransferConfig)}
    unknown = set(section) - set(known)
    if unknown:
        raise ConfigError(
            f"Unknown transfer settings: {', '.join(sorted(unknown))}",
            details={"unknown": sorted(unknown)}
        )

    values: dict[str, Any] = {}
    for name, value in section.items():
        default = known[name].default
        expected = type(default)
        if expected is float and isinstance(value, int) and not isinstance(value, bool):
            value = float(value)
        if type(value) is not expected:
            raise ConfigError(
                f"'transfer.{name}' must be of type {expected.__name__}",
                details={"field": name, "value": value}
            )
        values[name] = value

    transfer = TransferConfig(**values)

    if not 1 <= transfer.playlist_batch_size <= MAX_PLAYLIST_BATCH_SIZE:
        raise ConfigError(
            f"'transfer.playlist_batch_size' must be between 1 and {MAX_PLAYLIST_BATCH_SIZE}",
            details={"value": transfer.playlist_batch_size}
        )
    if not 1 <= transfer.liked_batch_size <= MAX_LIKED_BATCH_SIZE:
        raise ConfigError(
            f"'transfer.liked_batch_size' must be between 1 and {MAX_LIKED_BATCH_SIZE}",
            details={"value": transfer.liked_batch_size}
        )
    if transfer.max_retries < 0:
        raise ConfigError(
            "'transfer.max_retries' cannot be negative",
            details={"value": transfer.max_retries}
        )
    if transfer.backoff_base < 0 or transfer.max_backoff < 0:
        raise ConfigError(
            "Backoff settings cannot be negative",
            details={"backoff_base": transfer.backoff_base, "max_backoff": transfer.max_backoff}
        )
    if transfer.auth_timeout <= 0 or transfer.request_timeout <= 0:
        raise ConfigError(
            "Timeouts must be positive",
            details={"auth_timeout": transfer.auth_timeout, "request_timeout": transfer.request_timeout}
        )

    return transfer
