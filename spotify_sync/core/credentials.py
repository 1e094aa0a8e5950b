"""
Credential persistence for spotify-sync.

One OAuth credential set is stored per named account (e.g. "source",
"target") in a small SQLite database. The store is pure data access: no
network, no token validation.

Schema:
    schema_version:  Single row with the database version
    credentials:     One row per account name (primary key)

Durability:
    Every write is a single transaction committed with
    PRAGMA synchronous = FULL before put() returns, so an overwrite is
    atomic (the old or the new record, never a mix) and survives a crash
    immediately after a successful put().

Usage:
    store = CredentialStore(config.storage.credentials_path)

    store.put("source", credential)
    credential = store.get("source")      # AccountNotFoundError if missing
    names = store.list()
"""

import sqlite3
import threading
import time
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from spotify_sync.core.exceptions import (
    AccountNotFoundError,
    AuthProtocolError,
    StorageIOError,
)


DATABASE_VERSION = 1


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS credentials (
    name TEXT PRIMARY KEY,
    access_token TEXT NOT NULL,
    refresh_token TEXT NOT NULL,
    token_type TEXT NOT NULL,
    expires_at INTEGER NOT NULL,
    scopes TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


@dataclass(frozen=True)
class Credential:
    """
    OAuth credential set for one account.

    Attributes:
        access_token: Bearer token sent with every API call.
        refresh_token: Long-lived token used to obtain new access tokens.
        expires_at: Unix timestamp (seconds) when the access token expires.
        scopes: Scopes granted by the user at login.
        token_type: Token type reported by Spotify, always "Bearer" in practice.
    """
    access_token: str
    refresh_token: str
    expires_at: int
    scopes: frozenset[str] = frozenset()
    token_type: str = "Bearer"

    def expires_within(self, margin: float, now: float | None = None) -> bool:
        """True if the access token expires within `margin` seconds of now."""
        current = time.time() if now is None else now
        return current + margin >= self.expires_at

    def __repr__(self) -> str:
        # Tokens never end up in logs or tracebacks
        return (
            f"Credential(expires_at={self.expires_at}, "
            f"scopes={sorted(self.scopes)}, token_type={self.token_type!r})"
        )

    @classmethod
    def from_token_response(
        cls,
        payload: dict[str, Any],
        previous: "Credential | None" = None,
        now: float | None = None
    ) -> "Credential":
        """
        Build a Credential from a token endpoint JSON payload.

        Args:
            payload: Parsed JSON from https://accounts.spotify.com/api/token.
            previous: The credential being refreshed. Spotify does not always
                      rotate the refresh token; when the payload omits it the
                      previous one is kept, and likewise for the scopes.
            now: Current time, for tests.

        Raises:
            AuthProtocolError: If access_token is missing, or there is no
                               refresh token in the payload nor in `previous`.
        """
        if not isinstance(payload, dict):
            raise AuthProtocolError(
                "Token endpoint returned a non-object payload",
                details={"payload_type": type(payload).__name__}
            )

        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token") or (previous.refresh_token if previous else None)
        if not access_token or not refresh_token:
            raise AuthProtocolError(
                "Token endpoint response is missing required fields",
                details={"fields": sorted(payload.keys())}
            )

        try:
            expires_in = int(payload.get("expires_in", 3600))
        except (TypeError, ValueError) as e:
            raise AuthProtocolError(
                f"Invalid expires_in in token response: {payload.get('expires_in')!r}",
            ) from e

        scope = payload.get("scope")
        if scope:
            scopes = frozenset(scope.split())
        else:
            scopes = previous.scopes if previous else frozenset()

        current = time.time() if now is None else now
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=int(current) + expires_in,
            scopes=scopes,
            token_type=payload.get("token_type", "Bearer"),
        )


class CredentialStore:
    """
    Thread-safe SQLite store with one credential record per account name.

    Uses a single persistent connection with thread locking for safety.
    All public methods acquire self._lock before executing.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None

        if not db_path.parent.exists():
            try:
                db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageIOError(
                    f"Cannot create credential directory: {db_path.parent}",
                    details={"path": str(db_path.parent), "original_error": str(e)}
                ) from e

        try:
            self._init_database()
        except sqlite3.Error as e:
            raise StorageIOError(
                f"Failed to open credential database: {e}",
                details={"path": str(db_path)}
            ) from e

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get the persistent database connection as a context manager.

        The connection is created once and reused for all operations.
        """
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=30.0,
                check_same_thread=False  # We handle thread safety with _lock
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA synchronous = FULL")
        yield self._conn

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _init_database(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(_SCHEMA_SQL)

            cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
            row = cursor.fetchone()

            if row is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (DATABASE_VERSION,))
            elif row[0] != DATABASE_VERSION:
                raise StorageIOError(
                    f"Credential database version mismatch: expected {DATABASE_VERSION}, got {row[0]}",
                    details={"expected": DATABASE_VERSION, "actual": row[0]}
                )
            conn.commit()

    def put(self, account_name: str, credential: Credential) -> None:
        """
        Store the credential for an account, replacing any existing record.

        Raises:
            StorageIOError: If the database cannot be written. The previous
                            record (if any) is left untouched.
        """
        try:
            with self._lock:
                with self._get_connection() as conn:
                    with conn:  # one transaction: commit on success, rollback on error
                        conn.execute("""
                            INSERT INTO credentials
                                (name, access_token, refresh_token, token_type,
                                 expires_at, scopes, updated_at)
                            VALUES (?, ?, ?, ?, ?, ?, ?)
                            ON CONFLICT(name) DO UPDATE SET
                                access_token = excluded.access_token,
                                refresh_token = excluded.refresh_token,
                                token_type = excluded.token_type,
                                expires_at = excluded.expires_at,
                                scopes = excluded.scopes,
                                updated_at = excluded.updated_at
                        """, (
                            account_name,
                            credential.access_token,
                            credential.refresh_token,
                            credential.token_type,
                            credential.expires_at,
                            " ".join(sorted(credential.scopes)),
                            datetime.now(timezone.utc).isoformat(),
                        ))
        except sqlite3.Error as e:
            raise StorageIOError(
                f"Failed to save credential for '{account_name}': {e}",
                details={"account": account_name, "path": str(self.db_path)}
            ) from e

    def get(self, account_name: str) -> Credential:
        """
        Load the credential for an account.

        Raises:
            AccountNotFoundError: If the account was never logged in.
            StorageIOError: If the database cannot be read.
        """
        try:
            with self._lock:
                with self._get_connection() as conn:
                    cursor = conn.execute(
                        "SELECT access_token, refresh_token, token_type, expires_at, scopes "
                        "FROM credentials WHERE name = ?",
                        (account_name,)
                    )
                    row = cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageIOError(
                f"Failed to read credential for '{account_name}': {e}",
                details={"account": account_name, "path": str(self.db_path)}
            ) from e

        if row is None:
            raise AccountNotFoundError(account_name)

        return Credential(
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expires_at=int(row["expires_at"]),
            scopes=frozenset(row["scopes"].split()),
            token_type=row["token_type"],
        )

    def list(self) -> set[str]:
        """Return the names of all accounts with a stored credential."""
        try:
            with self._lock:
                with self._get_connection() as conn:
                    cursor = conn.execute("SELECT name FROM credentials ORDER BY name")
                    return {row["name"] for row in cursor.fetchall()}
        except sqlite3.Error as e:
            raise StorageIOError(
                f"Failed to list accounts: {e}",
                details={"path": str(self.db_path)}
            ) from e

    def delete(self, account_name: str) -> bool:
        """
        Remove the credential for an account.

        Returns:
            True if a record was removed, False if the account was unknown.
        """
        try:
            with self._lock:
                with self._get_connection() as conn:
                    with conn:
                        cursor = conn.execute(
                            "DELETE FROM credentials WHERE name = ?", (account_name,)
                        )
                        return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StorageIOError(
                f"Failed to delete credential for '{account_name}': {e}",
                details={"account": account_name, "path": str(self.db_path)}
            ) from e
