"""
Data models for a library transfer.

A transfer moves through three stages, each with its own model:

    LibrarySnapshot / TargetSnapshot   what each account holds right now
    TransferPlan                       what will be written, computed once
    TransferResult                     what actually happened, per item

Snapshots and plans are frozen. Results are accumulated by a mutable
TransferLog while the engine runs and frozen into a TransferResult when the
run ends (normally, by cancellation, or by abort).
"""

from dataclasses import dataclass, field
from enum import Enum

from spotify_sync.spotify.models import Playlist, PlaylistSummary, Track


# =============================================================================
# Snapshots
# =============================================================================

@dataclass(frozen=True)
class LibrarySnapshot:
    """
    Source library at the start of a run.

    Attributes:
        playlists: Playlists with their tracks, in the order the source lists them.
        liked_tracks: Liked songs as Spotify returns them (most recent first).
    """
    playlists: tuple[Playlist, ...] = ()
    liked_tracks: tuple[Track, ...] = ()


@dataclass(frozen=True)
class TargetSnapshot:
    """
    Target library at the start of a run.

    Attributes:
        user_id: Spotify user ID of the target account.
        playlists: Playlists the target account can write to (owned or
                   collaborative). Other followed playlists are never merged into.
        liked_keys: Content identifiers of the target's liked songs.
    """
    user_id: str
    playlists: tuple[PlaylistSummary, ...] = ()
    liked_keys: frozenset[str] = frozenset()


# =============================================================================
# Plan
# =============================================================================

class PlaylistActionType(Enum):
    CREATE = "create"
    MERGE = "merge"


@dataclass(frozen=True)
class PlaylistAction:
    """
    What to do with one source playlist.

    Attributes:
        playlist: The source playlist.
        action: CREATE a new target playlist or MERGE into an existing one.
        target_playlist_id: Existing target playlist for a MERGE. None for a
                            CREATE, and None for a MERGE into a playlist that
                            an earlier CREATE of the same run produces.
    """
    playlist: Playlist
    action: PlaylistActionType
    target_playlist_id: str | None = None

    @property
    def merges_into_created(self) -> bool:
        return self.action is PlaylistActionType.MERGE and self.target_playlist_id is None


@dataclass(frozen=True)
class TransferPlan:
    """
    Immutable description of every write a run intends to make.

    Attributes:
        playlist_actions: One action per source playlist, in source order.
        liked_to_add: Liked songs missing on the target, in source order
                      (most recent first), deduplicated.
        liked_present: Liked songs the target already has.
    """
    playlist_actions: tuple[PlaylistAction, ...] = ()
    liked_to_add: tuple[Track, ...] = ()
    liked_present: tuple[Track, ...] = ()

    @property
    def playlists_to_create(self) -> int:
        return sum(1 for a in self.playlist_actions if a.action is PlaylistActionType.CREATE)

    @property
    def playlists_to_merge(self) -> int:
        return sum(1 for a in self.playlist_actions if a.action is PlaylistActionType.MERGE)


# =============================================================================
# Results
# =============================================================================

class Outcome(Enum):
    """Per-item result of a transfer."""
    CREATED = "created"
    MERGED = "merged"
    SKIPPED_DUPLICATE = "skipped-duplicate"
    FAILED = "failed"
    DECLINED = "declined"


@dataclass(frozen=True)
class TrackResult:
    track: Track
    outcome: Outcome
    reason: str = ""


@dataclass(frozen=True)
class PlaylistResult:
    """
    Result for one source playlist.

    Attributes:
        name: Playlist name.
        outcome: CREATED, MERGED, SKIPPED_DUPLICATE (nothing was missing),
                 FAILED (the playlist could not be created) or DECLINED.
        target_playlist_id: Playlist written to, if any.
        tracks_added: Number of tracks written.
        failed_tracks: Tracks that could not be written, with reasons.
        reason: Failure or skip reason for the playlist as a whole.
    """
    name: str
    outcome: Outcome
    target_playlist_id: str | None = None
    tracks_added: int = 0
    failed_tracks: tuple[TrackResult, ...] = ()
    reason: str = ""


@dataclass(frozen=True)
class TransferResult:
    """
    Frozen summary of a run.

    Attributes:
        playlists: One result per playlist processed, in source order.
        liked: One result per liked song considered: songs already present
               first, then songs written (oldest first).
        cancelled: The run was stopped by a cancel request.
        aborted: The run was stopped by a fatal target error.
        abort_reason: Message of the error that stopped the run.
    """
    playlists: tuple[PlaylistResult, ...] = ()
    liked: tuple[TrackResult, ...] = ()
    cancelled: bool = False
    aborted: bool = False
    abort_reason: str = ""

    @property
    def playlists_created(self) -> int:
        return sum(1 for p in self.playlists if p.outcome is Outcome.CREATED)

    @property
    def playlists_merged(self) -> int:
        return sum(1 for p in self.playlists if p.outcome is Outcome.MERGED)

    @property
    def tracks_added(self) -> int:
        return sum(p.tracks_added for p in self.playlists)

    @property
    def liked_added(self) -> int:
        return sum(1 for r in self.liked if r.outcome is Outcome.CREATED)

    @property
    def liked_skipped(self) -> int:
        return sum(1 for r in self.liked if r.outcome is Outcome.SKIPPED_DUPLICATE)

    @property
    def failures(self) -> list[str]:
        """Human-readable lines for every failed playlist and track."""
        lines = []
        for playlist in self.playlists:
            if playlist.outcome is Outcome.FAILED:
                lines.append(f"Playlist '{playlist.name}': {playlist.reason}")
            for failed in playlist.failed_tracks:
                lines.append(f"[{playlist.name}] {failed.track.display_name}: {failed.reason}")
        for result in self.liked:
            if result.outcome is Outcome.FAILED:
                lines.append(f"[Liked Songs] {result.track.display_name}: {result.reason}")
        return lines

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


@dataclass
class TransferLog:
    """Mutable accumulator the engine appends to while a run executes."""
    playlists: list[PlaylistResult] = field(default_factory=list)
    liked: list[TrackResult] = field(default_factory=list)
    cancelled: bool = False
    aborted: bool = False
    abort_reason: str = ""

    def freeze(self) -> TransferResult:
        return TransferResult(
            playlists=tuple(self.playlists),
            liked=tuple(self.liked),
            cancelled=self.cancelled,
            aborted=self.aborted,
            abort_reason=self.abort_reason,
        )
