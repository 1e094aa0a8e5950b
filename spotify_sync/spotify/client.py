"""
Spotify Web API client bound to one logged-in account.

SpotifyClient wraps spotipy and adds the two behaviors every remote call
needs during a transfer:

Token freshness:
    Before each call, if the account's access token expires within the
    configured margin, it is refreshed through the TokenRefresher (which
    persists the rotated token). A 401 from the API triggers one forced
    refresh and one retry. A revoked refresh grant raises
    ReauthRequiredError and is never retried.

Rate-limit backoff:
    A 429 suspends only the calling thread for the Retry-After duration
    (or an exponential default when Spotify sends none), capped at
    max_backoff, then retries the same call. After max_retries the call
    fails with RateLimitExceededError. Server errors (5xx) and connection
    failures are retried on the same schedule and raise SpotifyError when
    exhausted.

Pagination:
    The iter_* methods are generators: each page is requested only when
    the caller has consumed the previous one, and every call starts a new
    enumeration from offset 0.

Usage:
    client = SpotifyClient.for_account("source", config, store)

    for summary in client.iter_playlists():
        tracks = list(client.iter_playlist_tracks(summary.spotify_id))
"""

import time
from collections.abc import Callable, Iterator
from typing import Any

import requests
import spotipy
from spotipy.exceptions import SpotifyException

from spotify_sync.core.config import Config, TransferConfig
from spotify_sync.core.credentials import Credential, CredentialStore
from spotify_sync.core.exceptions import RateLimitExceededError, SpotifyError
from spotify_sync.core.logger import get_logger
from spotify_sync.spotify.auth import TokenRefresher
from spotify_sync.spotify.models import LibraryStats, PlaylistSummary, Track

logger = get_logger(__name__)


# Page sizes accepted by the Spotify Web API
PLAYLISTS_PAGE_SIZE = 50
PLAYLIST_ITEMS_PAGE_SIZE = 100
SAVED_TRACKS_PAGE_SIZE = 50

RETRYABLE_STATUSES = (500, 502, 503, 504)


class SpotifyClient:
    """
    Capability handle for one account's Spotify library.

    Attributes:
        account_name: Name of the account in the credential store.
        store: Credential store the bound credential is read from.
        refresher: Refresh exchange; share one between the clients of a process.
        settings: Retry, backoff and refresh margin settings.
    """

    def __init__(
        self,
        account_name: str,
        store: CredentialStore,
        refresher: TokenRefresher,
        settings: TransferConfig,
        spotify_factory: Callable[..., spotipy.Spotify] = spotipy.Spotify,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time
    ) -> None:
        """
        Bind a client to an account.

        Raises:
            AccountNotFoundError: If the account was never logged in.
            StorageIOError: If the credential store cannot be read.
        """
        self.account_name = account_name
        self.store = store
        self.refresher = refresher
        self.settings = settings
        self._sleep = sleep
        self._clock = clock
        self._credential: Credential = store.get(account_name)
        # Plain session: spotipy's urllib3 retry adapter would swallow 429 responses
        self._spotify = spotify_factory(
            auth=self._credential.access_token,
            requests_session=requests.Session(),
            requests_timeout=settings.request_timeout,
            retries=0,
        )
        self._user_id: str | None = None

    @classmethod
    def for_account(
        cls,
        account_name: str,
        config: Config,
        store: CredentialStore,
        refresher: TokenRefresher | None = None
    ) -> "SpotifyClient":
        """
        Production constructor: real spotipy client.

        Pass the same refresher to every client of a process so refreshes
        of one account are serialized across clients.
        """
        if refresher is None:
            refresher = TokenRefresher(config.spotify, store)
        return cls(account_name, store, refresher, config.transfer)

    # =========================================================================
    # Request plumbing
    # =========================================================================

    def _ensure_fresh_token(self, force: bool = False) -> None:
        if force or self._credential.expires_within(self.settings.refresh_margin, now=self._clock()):
            self._credential = self.refresher.refresh(self.account_name, self._credential)
            # Update token in the existing spotipy instance
            self._spotify.auth = self._credential.access_token

    def _backoff_delay(self, attempt: int, retry_after: Any = None) -> float:
        delay = self.settings.backoff_base * (2 ** attempt)
        if retry_after is not None:
            try:
                delay = float(retry_after)
            except (TypeError, ValueError):
                pass
        return min(max(delay, 0.0), self.settings.max_backoff)

    def _make_request(self, method: str, *args, **kwargs) -> Any:
        """
        Call a spotipy method with token refresh and backoff.

        Args:
            method: Name of the spotipy.Spotify method to call.
            *args, **kwargs: Passed through to the method.

        Returns:
            The decoded JSON response.

        Raises:
            ReauthRequiredError: Refresh grant revoked (no retry).
            RateLimitExceededError: Still rate limited after max_retries.
            SpotifyError: Any other API failure, or transient failures that
                          outlasted the retries.
        """
        attempt = 0
        reauthorized = False

        while True:
            self._ensure_fresh_token()
            try:
                return getattr(self._spotify, method)(*args, **kwargs)

            except SpotifyException as e:
                if e.http_status == 401 and not reauthorized:
                    logger.debug(f"[{self.account_name}] 401 from {method}, forcing token refresh")
                    reauthorized = True
                    self._ensure_fresh_token(force=True)
                    continue

                if e.http_status == 429:
                    if attempt >= self.settings.max_retries:
                        raise RateLimitExceededError(
                            f"Rate limit still active after {attempt} retries ({method})",
                            details={"account": self.account_name, "method": method}
                        ) from e
                    headers = e.headers or {}
                    delay = self._backoff_delay(attempt, headers.get("Retry-After"))
                    logger.warning(f"[{self.account_name}] Rate limited, waiting {delay:.1f} seconds...")
                    self._sleep(delay)
                    attempt += 1
                    continue

                if e.http_status in RETRYABLE_STATUSES and attempt < self.settings.max_retries:
                    delay = self._backoff_delay(attempt)
                    logger.warning(
                        f"[{self.account_name}] Spotify returned {e.http_status} for {method}, "
                        f"retrying in {delay:.1f} seconds..."
                    )
                    self._sleep(delay)
                    attempt += 1
                    continue

                raise SpotifyError(
                    f"Spotify API error ({e.http_status}) in {method}: {e.msg}",
                    details={"account": self.account_name, "method": method, "reason": e.reason},
                    http_status=e.http_status
                ) from e

            except requests.RequestException as e:
                if attempt < self.settings.max_retries:
                    delay = self._backoff_delay(attempt)
                    logger.warning(
                        f"[{self.account_name}] Network error in {method}: {e}; "
                        f"retrying in {delay:.1f} seconds..."
                    )
                    self._sleep(delay)
                    attempt += 1
                    continue
                raise SpotifyError(
                    f"Network error in {method}: {e}",
                    details={"account": self.account_name, "method": method, "original_error": str(e)}
                ) from e

    def _paginate(self, method: str, page_size: int, *args, **kwargs) -> Iterator[dict[str, Any]]:
        """Yield items of an offset-paginated endpoint, one page request at a time."""
        offset = 0
        while True:
            page = self._make_request(method, *args, limit=page_size, offset=offset, **kwargs)
            items = (page or {}).get("items") or []
            yield from items
            if not items or page.get("next") is None:
                return
            offset += len(items)

    # =========================================================================
    # Reads
    # =========================================================================

    def current_user_id(self) -> str:
        """Spotify user ID of the bound account (cached after the first call)."""
        if self._user_id is None:
            profile = self._make_request("current_user")
            self._user_id = profile["id"]
        return self._user_id

    def iter_playlists(self) -> Iterator[PlaylistSummary]:
        """Playlists the account owns or follows, in the order Spotify lists them."""
        for item in self._paginate("current_user_playlists", PLAYLISTS_PAGE_SIZE):
            if item and item.get("id"):
                yield PlaylistSummary.from_spotify_api(item)

    def iter_playlist_tracks(self, playlist_id: str) -> Iterator[Track]:
        """Tracks of a playlist in playlist order. Episodes and empty slots are skipped."""
        for item in self._paginate(
            "playlist_items",
            PLAYLIST_ITEMS_PAGE_SIZE,
            playlist_id,
            additional_types=("track",),
        ):
            track = Track.from_spotify_api(item.get("track") or item.get("item"))
            if track is not None:
                yield track

    def iter_liked_tracks(self) -> Iterator[Track]:
        """Saved tracks ("Liked Songs"), most recently added first."""
        for item in self._paginate("current_user_saved_tracks", SAVED_TRACKS_PAGE_SIZE):
            track = Track.from_spotify_api(item.get("track"))
            if track is not None:
                yield track

    def get_library_stats(self) -> LibraryStats:
        """
        Count liked songs, playlists and songs without enumerating tracks.

        total_songs is the number of liked songs plus the track count of
        every listed playlist.
        """
        liked_page = self._make_request("current_user_saved_tracks", limit=1, offset=0)
        liked_songs = int(liked_page.get("total") or 0)

        playlists = 0
        playlist_songs = 0
        for summary in self.iter_playlists():
            playlists += 1
            playlist_songs += summary.total_tracks

        return LibraryStats(
            liked_songs=liked_songs,
            playlists=playlists,
            total_songs=liked_songs + playlist_songs,
        )

    # =========================================================================
    # Writes
    # =========================================================================

    def create_playlist(
        self,
        name: str,
        description: str = "",
        public: bool = False,
        collaborative: bool = False
    ) -> str:
        """
        Create a playlist owned by the bound account.

        Returns:
            The new playlist's Spotify ID.

        Note:
            Spotify rejects public collaborative playlists, so collaborative
            playlists are always created private.
        """
        result = self._make_request(
            "user_playlist_create",
            self.current_user_id(),
            name,
            public=public and not collaborative,
            collaborative=collaborative,
            description=description,
        )
        return result["id"]

    def add_tracks_to_playlist(self, playlist_id: str, uris: list[str]) -> None:
        """Append up to one batch of tracks (Spotify max: 100) to a playlist."""
        if not uris:
            return
        if len(uris) > PLAYLIST_ITEMS_PAGE_SIZE:
            raise ValueError(f"At most {PLAYLIST_ITEMS_PAGE_SIZE} tracks per call, got {len(uris)}")
        self._make_request("playlist_add_items", playlist_id, uris)

    def add_liked_tracks(self, track_ids: list[str]) -> None:
        """Save up to one batch of tracks (Spotify max: 50) to Liked Songs."""
        if not track_ids:
            return
        if len(track_ids) > SAVED_TRACKS_PAGE_SIZE:
            raise ValueError(f"At most {SAVED_TRACKS_PAGE_SIZE} tracks per call, got {len(track_ids)}")
        self._make_request("current_user_saved_tracks_add", track_ids)
