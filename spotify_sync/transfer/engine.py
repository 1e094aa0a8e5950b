"""
Sync engine: copy one account's library into another.

A run is one sequential pipeline:

    1. snapshot   enumerate the source library (playlists with tracks, liked
                  songs) and the target's writable playlists and liked IDs
    2. plan       build_plan() decides create/merge per playlist and
                  present/add per liked song
    3. execute    playlists in source order, then liked songs

Failure handling:
    - A SpotifyError on one write marks only the items of that batch as
      failed; the rest of the plan is still attempted.
    - Auth failures (including ReauthRequiredError), RateLimitExceededError
      and StorageIOError during execution stop the run: every later write
      would fail the same way. The engine raises TransferAbortedError with
      the partial result.
    - Any error during the snapshot propagates before a single write.

Cancellation:
    The cancel event is checked before every remote call: each write, and
    each item (so each page) read while taking the snapshot or reading a
    merge target. A cancelled run returns the partial result with
    cancelled=True; cancelled during the snapshot, that result is empty.
    Nothing already written is rolled back.

Re-running after a partial failure re-plans against the partially
populated target, so completed work is skipped without a checkpoint file.
"""

import threading
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from typing import Protocol, TypeVar

from spotify_sync.core.exceptions import (
    AuthError,
    RateLimitExceededError,
    SpotifyError,
    StorageIOError,
    TransferAbortedError,
)
from spotify_sync.core.logger import get_logger, log_transfer_failure
from spotify_sync.spotify.models import LibraryStats, Playlist, PlaylistSummary, Track
from spotify_sync.transfer.models import (
    LibrarySnapshot,
    Outcome,
    PlaylistAction,
    PlaylistActionType,
    PlaylistResult,
    TargetSnapshot,
    TrackResult,
    TransferLog,
    TransferPlan,
    TransferResult,
)
from spotify_sync.transfer.plan import TrackIndex, build_plan, chunked

logger = get_logger(__name__)


LIKED_SONGS_LABEL = "Liked Songs"
LOCAL_FILE_REASON = "local file cannot be transferred"

# Errors after which no further write can succeed
FATAL_ERRORS = (AuthError, RateLimitExceededError, StorageIOError)

StatusCallback = Callable[[str], None]
MergeConfirmation = Callable[[PlaylistAction], bool]
T = TypeVar("T")


class MusicService(Protocol):
    """Operations the engine needs from an account (SpotifyClient in production)."""

    def current_user_id(self) -> str: ...

    def iter_playlists(self) -> Iterator[PlaylistSummary]: ...

    def iter_playlist_tracks(self, playlist_id: str) -> Iterator[Track]: ...

    def iter_liked_tracks(self) -> Iterator[Track]: ...

    def create_playlist(
        self,
        name: str,
        description: str = "",
        public: bool = False,
        collaborative: bool = False
    ) -> str: ...

    def add_tracks_to_playlist(self, playlist_id: str, uris: list[str]) -> None: ...

    def add_liked_tracks(self, track_ids: list[str]) -> None: ...

    def get_library_stats(self) -> LibraryStats: ...


class _CancelRequested(Exception):
    """Raised inside the engine to unwind to the run loop on cancellation."""


@dataclass
class _PlaylistRun:
    """Mutable progress of the playlist currently being written."""
    name: str
    outcome: Outcome | None = None
    target_playlist_id: str | None = None
    tracks_added: int = 0
    failed_tracks: list[TrackResult] = field(default_factory=list)
    reason: str = ""

    @property
    def wrote_anything(self) -> bool:
        return self.outcome is Outcome.CREATED or self.tracks_added > 0

    def freeze(self) -> PlaylistResult:
        return PlaylistResult(
            name=self.name,
            outcome=self.outcome or Outcome.FAILED,
            target_playlist_id=self.target_playlist_id,
            tracks_added=self.tracks_added,
            failed_tracks=tuple(self.failed_tracks),
            reason=self.reason,
        )


class SyncEngine:
    """
    Orchestrates snapshot, plan and execution of a library transfer.

    Attributes:
        playlist_batch_size: Tracks per playlist add call (Spotify max 100).
        liked_batch_size: Tracks per save-to-library call (Spotify max 50).
        confirm_merge: Optional callback asked before merging into an existing
                       target playlist. Returning False records the playlist
                       as DECLINED and leaves the target untouched.
    """

    def __init__(
        self,
        playlist_batch_size: int = 100,
        liked_batch_size: int = 50,
        confirm_merge: MergeConfirmation | None = None
    ) -> None:
        if playlist_batch_size < 1 or liked_batch_size < 1:
            raise ValueError("Batch sizes must be positive")
        self.playlist_batch_size = playlist_batch_size
        self.liked_batch_size = liked_batch_size
        self.confirm_merge = confirm_merge

    # =========================================================================
    # Public operations
    # =========================================================================

    def snapshot(
        self,
        source: MusicService,
        target: MusicService,
        on_status: StatusCallback | None = None
    ) -> tuple[LibrarySnapshot, TargetSnapshot]:
        """
        Read both libraries.

        Errors propagate unchanged; no write has been issued at this point.
        """
        return self._read_snapshot(source, target, on_status, threading.Event())

    def _read_snapshot(
        self,
        source: MusicService,
        target: MusicService,
        on_status: StatusCallback | None,
        cancel: threading.Event
    ) -> tuple[LibrarySnapshot, TargetSnapshot]:
        self._emit(on_status, "Reading source playlists...")
        playlists = []
        for summary in self._drain(source.iter_playlists(), cancel):
            self._check_cancel(cancel)
            self._emit(on_status, f"Reading playlist '{summary.name}' ({summary.total_tracks} tracks)...")
            tracks = tuple(self._drain(source.iter_playlist_tracks(summary.spotify_id), cancel))
            playlists.append(Playlist.from_summary(summary, tracks))

        self._check_cancel(cancel)
        self._emit(on_status, "Reading source liked songs...")
        liked = tuple(self._drain(source.iter_liked_tracks(), cancel))

        self._check_cancel(cancel)
        self._emit(on_status, "Reading target library...")
        user_id = target.current_user_id()
        writable = tuple(
            summary for summary in self._drain(target.iter_playlists(), cancel)
            if summary.owner_id == user_id or summary.collaborative
        )
        liked_keys = frozenset(track.key for track in self._drain(target.iter_liked_tracks(), cancel))

        logger.info(
            f"Snapshot: source has {len(playlists)} playlists and {len(liked)} liked songs; "
            f"target has {len(writable)} writable playlists and {len(liked_keys)} liked songs"
        )
        return (
            LibrarySnapshot(playlists=tuple(playlists), liked_tracks=liked),
            TargetSnapshot(user_id=user_id, playlists=writable, liked_keys=liked_keys),
        )

    def plan(
        self,
        source: MusicService,
        target: MusicService,
        on_status: StatusCallback | None = None
    ) -> TransferPlan:
        """Snapshot both accounts and compute the plan without writing anything."""
        source_snapshot, target_snapshot = self.snapshot(source, target, on_status)
        return build_plan(source_snapshot, target_snapshot)

    def transfer(
        self,
        source: MusicService,
        target: MusicService,
        on_status: StatusCallback | None = None,
        cancel_event: threading.Event | None = None
    ) -> TransferResult:
        """
        Copy the source library into the target.

        Args:
            source: Account read from.
            target: Account written to.
            on_status: Receives one human-readable line per step.
            cancel_event: When set, the run stops before its next write.

        Returns:
            The frozen TransferResult (cancelled=True if stopped early).

        Raises:
            TransferAbortedError: A fatal target error stopped the run. The
                                  partial result is attached.
            SpotifySyncError: Any error while reading the snapshot.
        """
        cancel = cancel_event or threading.Event()
        try:
            plan = build_plan(*self._read_snapshot(source, target, on_status, cancel))
        except _CancelRequested:
            self._emit(on_status, "Transfer cancelled")
            return TransferResult(cancelled=True)
        self._emit(
            on_status,
            f"Plan: {plan.playlists_to_create} playlists to create, "
            f"{plan.playlists_to_merge} to merge, "
            f"{len(plan.liked_to_add)} liked songs to add "
            f"({len(plan.liked_present)} already present)"
        )
        return self.execute(plan, target, on_status, cancel)

    def execute(
        self,
        plan: TransferPlan,
        target: MusicService,
        on_status: StatusCallback | None = None,
        cancel_event: threading.Event | None = None
    ) -> TransferResult:
        """Write a computed plan to the target. See transfer() for errors."""
        cancel = cancel_event or threading.Event()
        log = TransferLog()
        created: dict[str, tuple[str, TrackIndex]] = {}
        current: _PlaylistRun | None = None

        try:
            for action in plan.playlist_actions:
                self._check_cancel(cancel)
                current = _PlaylistRun(action.playlist.name)
                self._execute_playlist(action, target, current, created, on_status, cancel)
                log.playlists.append(current.freeze())
                current = None

            self._execute_liked(plan, target, log, on_status, cancel)

        except _CancelRequested:
            if current is not None and current.wrote_anything:
                log.playlists.append(current.freeze())
            log.cancelled = True
            self._emit(on_status, "Transfer cancelled")

        except FATAL_ERRORS as e:
            if current is not None:
                if not current.wrote_anything:
                    current.reason = e.message
                log.playlists.append(current.freeze())
            log.aborted = True
            log.abort_reason = e.message
            logger.error(f"Transfer aborted: {e.message}")
            raise TransferAbortedError(f"Transfer aborted: {e.message}", log.freeze(), e) from e

        result = log.freeze()
        if not result.cancelled:
            self._emit(
                on_status,
                f"Done: {result.playlists_created} playlists created, "
                f"{result.playlists_merged} merged, {result.tracks_added} tracks added, "
                f"{result.liked_added} liked songs added"
            )
        return result

    # =========================================================================
    # Execution steps
    # =========================================================================

    def _execute_playlist(
        self,
        action: PlaylistAction,
        target: MusicService,
        run: _PlaylistRun,
        created: dict[str, tuple[str, TrackIndex]],
        on_status: StatusCallback | None,
        cancel: threading.Event
    ) -> None:
        playlist = action.playlist

        if action.action is PlaylistActionType.CREATE:
            self._check_cancel(cancel)
            self._emit(on_status, f"Creating playlist '{playlist.name}'...")
            try:
                playlist_id = target.create_playlist(
                    playlist.name,
                    description=playlist.description,
                    public=playlist.public,
                    collaborative=playlist.collaborative,
                )
            except RateLimitExceededError:
                raise
            except SpotifyError as e:
                run.reason = e.message
                log_transfer_failure(logger, container=playlist.name, name=playlist.name, reason=e.message)
                return

            run.outcome = Outcome.CREATED
            run.target_playlist_id = playlist_id

            # Source duplicates are kept on create
            index = TrackIndex()
            to_add = []
            for track in playlist.tracks:
                index.add(track)
                if track.is_transferable:
                    to_add.append(track)
                else:
                    self._fail_tracks(run, [track], LOCAL_FILE_REASON)
            created[playlist.name] = (playlist_id, index)

        else:
            if action.merges_into_created:
                if playlist.name not in created:
                    run.reason = "target playlist was not created earlier in this run"
                    log_transfer_failure(logger, container=playlist.name, name=playlist.name, reason=run.reason)
                    return
                playlist_id, index = created[playlist.name]
            else:
                if self.confirm_merge is not None and not self.confirm_merge(action):
                    run.outcome = Outcome.DECLINED
                    run.reason = "merge into existing playlist declined"
                    self._emit(on_status, f"Skipping '{playlist.name}': merge declined")
                    return
                playlist_id = action.target_playlist_id
                self._emit(on_status, f"Reading existing playlist '{playlist.name}' on target...")
                try:
                    index = TrackIndex(self._drain(target.iter_playlist_tracks(playlist_id), cancel))
                except RateLimitExceededError:
                    raise
                except SpotifyError as e:
                    run.reason = f"could not read target playlist: {e.message}"
                    log_transfer_failure(logger, container=playlist.name, name=playlist.name, reason=run.reason)
                    return

            run.target_playlist_id = playlist_id

            # Append each missing track once, in source order
            to_add = []
            for track in playlist.tracks:
                if track in index:
                    continue
                index.add(track)
                if track.is_transferable:
                    to_add.append(track)
                else:
                    self._fail_tracks(run, [track], LOCAL_FILE_REASON)

            if not to_add:
                run.outcome = Outcome.SKIPPED_DUPLICATE
                self._emit(on_status, f"'{playlist.name}' is already up to date")
                return
            run.outcome = Outcome.MERGED

        self._add_playlist_tracks(target, run, to_add, on_status, cancel)

        if run.outcome is Outcome.MERGED and run.tracks_added == 0:
            run.outcome = Outcome.FAILED
            run.reason = "no missing track could be added"

    def _add_playlist_tracks(
        self,
        target: MusicService,
        run: _PlaylistRun,
        tracks: list[Track],
        on_status: StatusCallback | None,
        cancel: threading.Event
    ) -> None:
        total = len(tracks)
        for batch in chunked(tracks, self.playlist_batch_size):
            self._check_cancel(cancel)
            try:
                target.add_tracks_to_playlist(run.target_playlist_id, [track.uri for track in batch])
            except RateLimitExceededError:
                raise
            except SpotifyError as e:
                self._fail_tracks(run, batch, e.message)
                continue
            run.tracks_added += len(batch)
            self._emit(on_status, f"'{run.name}': {run.tracks_added}/{total} tracks added")

    def _execute_liked(
        self,
        plan: TransferPlan,
        target: MusicService,
        log: TransferLog,
        on_status: StatusCallback | None,
        cancel: threading.Event
    ) -> None:
        log.liked.extend(TrackResult(track, Outcome.SKIPPED_DUPLICATE) for track in plan.liked_present)
        if not plan.liked_to_add:
            return

        # Oldest first, so the target's "recently added" order mirrors the source
        pending = []
        for track in reversed(plan.liked_to_add):
            if track.is_transferable:
                pending.append(track)
            else:
                log.liked.append(TrackResult(track, Outcome.FAILED, LOCAL_FILE_REASON))
                self._log_track_failure(LIKED_SONGS_LABEL, track, LOCAL_FILE_REASON)

        added = 0
        for batch in chunked(pending, self.liked_batch_size):
            self._check_cancel(cancel)
            try:
                target.add_liked_tracks([track.spotify_id for track in batch])
            except RateLimitExceededError:
                raise
            except SpotifyError as e:
                for track in batch:
                    log.liked.append(TrackResult(track, Outcome.FAILED, e.message))
                    self._log_track_failure(LIKED_SONGS_LABEL, track, e.message)
                continue
            log.liked.extend(TrackResult(track, Outcome.CREATED) for track in batch)
            added += len(batch)
            self._emit(on_status, f"Liked songs: {added}/{len(pending)} added")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _fail_tracks(self, run: _PlaylistRun, tracks: Iterable[Track], reason: str) -> None:
        for track in tracks:
            run.failed_tracks.append(TrackResult(track, Outcome.FAILED, reason))
            self._log_track_failure(run.name, track, reason)

    @staticmethod
    def _log_track_failure(container: str, track: Track, reason: str) -> None:
        log_transfer_failure(
            logger,
            container=container,
            name=track.name,
            artist=track.artist,
            uri=track.uri,
            reason=reason,
        )

    @staticmethod
    def _check_cancel(cancel: threading.Event) -> None:
        if cancel.is_set():
            raise _CancelRequested()

    @classmethod
    def _drain(cls, items: Iterable[T], cancel: threading.Event) -> list[T]:
        """Collect a lazy enumeration, checking for cancellation before every next item (and page)."""
        collected = []
        cls._check_cancel(cancel)
        for item in items:
            collected.append(item)
            cls._check_cancel(cancel)
        return collected

    @staticmethod
    def _emit(on_status: StatusCallback | None, message: str) -> None:
        logger.debug(message)
        if on_status is not None:
            on_status(message)
