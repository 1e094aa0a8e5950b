"""
Exception classes for spotify-sync.

This module defines all custom exceptions used throughout the application.
Each exception carries a human-readable message plus an optional details
dictionary, and the hierarchy separates failures that abort an operation
from failures that only affect a single item.

Exception Hierarchy:
    SpotifySyncError (base)
        ConfigError - Configuration file or environment issues
        StorageIOError - Credential database cannot be read or written
        AccountNotFoundError - Account name has no stored credential
        AuthError - OAuth problems
            AuthDeniedError - User rejected consent
            AuthTimeoutError - No callback within the wait window
            AuthProtocolError - Malformed provider response or callback
            ReauthRequiredError - Refresh grant revoked or expired
        SpotifyError - Remote API call failed
            RateLimitExceededError - Rate-limit retries exhausted
        TransferAbortedError - Transfer stopped on a fatal error
"""

from typing import Any


class SpotifySyncError(Exception):
    """
    Base exception for all spotify-sync errors.

    All custom exceptions in this project inherit from this class,
    allowing callers to catch all spotify-sync errors with a single
    except clause if desired.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (account, playlist, status).
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description that will be shown to the user.
            details: Optional dictionary containing additional context about the error.
                     Common keys include:
                     - 'account': Account name involved in the error
                     - 'http_status': HTTP status returned by Spotify
                     - 'original_error': The underlying exception if wrapping another error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(SpotifySyncError):
    """
    Raised when there's an issue with the configuration.

    This is a CRITICAL error that should stop program execution.

    Common causes:
        - config.yaml has invalid YAML syntax
        - SPOTIFY_CLIENT_ID / SPOTIFY_CLIENT_SECRET not set
        - Batch sizes outside the limits Spotify accepts
        - Redirect URI that cannot be served locally
    """
    pass


class StorageIOError(SpotifySyncError):
    """
    Raised when the credential database cannot be read or written.

    This is a CRITICAL error. Writes are synchronous, so when this is
    raised from put() the previous credential for that account is still
    the one on disk.

    Common causes:
        - Data directory missing or not writable
        - Disk full
        - Database file corrupted or from an incompatible version
    """
    pass


class AccountNotFoundError(SpotifySyncError):
    """
    Raised when an account name has no stored credential.

    The account was never logged in (or was logged out). The fix is
    always the same: run `spotify-sync login <name>`.
    """

    def __init__(self, account_name: str) -> None:
        super().__init__(
            f"Account '{account_name}' is not logged in. "
            f"Run: spotify-sync login {account_name}",
            details={"account": account_name}
        )
        self.account_name = account_name


class AuthError(SpotifySyncError):
    """
    Base class for OAuth failures.

    Login errors require retrying `login`; the flow is single-shot and
    cannot be resumed.
    """
    pass


class AuthDeniedError(AuthError):
    """Raised when the user rejects the consent screen."""
    pass


class AuthTimeoutError(AuthError):
    """Raised when no authorization callback arrives within the wait window."""
    pass


class AuthProtocolError(AuthError):
    """
    Raised for malformed callbacks or token responses.

    Covers a missing code, a state mismatch, a non-2xx token endpoint
    answer and payloads without the expected token fields.
    """
    pass


class ReauthRequiredError(AuthError):
    """
    Raised when the refresh token was revoked or has expired.

    This is fatal for the current transfer: no retry is attempted and
    the user must run `login` again for the account.
    """

    def __init__(self, account_name: str, details: dict | None = None) -> None:
        super().__init__(
            f"Authorization for account '{account_name}' is no longer valid. "
            f"Run: spotify-sync login {account_name}",
            details={"account": account_name, **(details or {})}
        )
        self.account_name = account_name


class SpotifyError(SpotifySyncError):
    """
    Raised when a Spotify Web API call fails.

    On its own this is a NON-CRITICAL error for the transfer engine:
    it is recorded against the playlist or tracks involved and the run
    continues with the next item.

    Attributes:
        http_status: HTTP status code when the failure came from the API,
                     None for network errors.
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        http_status: int | None = None
    ) -> None:
        super().__init__(message, details)
        self.http_status = http_status


class RateLimitExceededError(SpotifyError):
    """
    Raised when a call is still rate limited after all retries.

    Fatal to an in-progress transfer, but safe to re-run later: work
    already written to the target is kept and skipped on the next run.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message, details, http_status=429)


class TransferAbortedError(SpotifySyncError):
    """
    Raised when a transfer stops before finishing its plan.

    Attributes:
        result: The partial TransferResult accumulated before the abort.
        cause: The fatal exception (ReauthRequiredError or RateLimitExceededError).
    """

    def __init__(self, message: str, result: Any, cause: SpotifySyncError) -> None:
        super().__init__(message, details={"cause": cause.message})
        self.result = result
        self.cause = cause
