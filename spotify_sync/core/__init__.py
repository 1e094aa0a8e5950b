"""
Core module for spotify-sync.

This module provides the foundational components used throughout the application:
    - exceptions: Custom exception classes for error handling
    - config: Configuration loading and validation
    - credentials: Credential dataclass and the SQLite credential store
    - logger: Logging system with multiple outputs

Usage:
    from spotify_sync.core import (
        Config, load_config,
        Credential, CredentialStore,
        setup_logging, get_logger,
        SpotifySyncError, ConfigError, StorageIOError
    )
"""

from spotify_sync.core.config import (
    Config,
    SpotifyConfig,
    StorageConfig,
    TransferConfig,
    load_config,
)
from spotify_sync.core.credentials import Credential, CredentialStore
from spotify_sync.core.exceptions import (
    AccountNotFoundError,
    AuthDeniedError,
    AuthError,
    AuthProtocolError,
    AuthTimeoutError,
    ConfigError,
    RateLimitExceededError,
    ReauthRequiredError,
    SpotifyError,
    SpotifySyncError,
    StorageIOError,
    TransferAbortedError,
)
from spotify_sync.core.logger import (
    get_logger,
    log_transfer_failure,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    # Config
    "Config",
    "SpotifyConfig",
    "StorageConfig",
    "TransferConfig",
    "load_config",
    # Credentials
    "Credential",
    "CredentialStore",
    # Exceptions
    "SpotifySyncError",
    "ConfigError",
    "StorageIOError",
    "AccountNotFoundError",
    "AuthError",
    "AuthDeniedError",
    "AuthTimeoutError",
    "AuthProtocolError",
    "ReauthRequiredError",
    "SpotifyError",
    "RateLimitExceededError",
    "TransferAbortedError",
    # Logger
    "setup_logging",
    "get_logger",
    "log_transfer_failure",
    "shutdown_logging",
]
