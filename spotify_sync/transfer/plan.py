"""
Transfer planning.

build_plan() maps a source snapshot onto a target snapshot:

    Playlists:  exact, case-sensitive name match on a writable target
                playlist -> MERGE into it, otherwise CREATE. A second
                source playlist with a name already planned for CREATE
                becomes a MERGE into the playlist that CREATE produces, so
                a run never creates two target playlists with one name.
    Liked:      content identifier already liked on the target -> present,
                otherwise -> to add (each identifier at most once).

The plan is pure data; nothing here talks to Spotify.
"""

from collections.abc import Iterable, Iterator, Sequence
from typing import TypeVar

from spotify_sync.spotify.models import Track
from spotify_sync.transfer.models import (
    LibrarySnapshot,
    PlaylistAction,
    PlaylistActionType,
    TargetSnapshot,
    TransferPlan,
)

T = TypeVar("T")


class TrackIndex:
    """
    Membership test for "is this track already there?".

    Tracks with a Spotify ID are matched by ID. Tracks without one (local
    files) fall back to their normalized title/artist pair.
    """

    def __init__(self, tracks: Iterable[Track] = ()) -> None:
        self._ids: set[str] = set()
        self._fallbacks: set[str] = set()
        for track in tracks:
            self.add(track)

    def add(self, track: Track) -> None:
        if track.is_transferable:
            self._ids.add(track.spotify_id)
        self._fallbacks.add(track.fallback_key)

    def __contains__(self, track: Track) -> bool:
        if track.is_transferable:
            return track.spotify_id in self._ids
        return track.fallback_key in self._fallbacks

    def __len__(self) -> int:
        return len(self._fallbacks)


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Split a sequence into consecutive lists of at most `size` items."""
    if size < 1:
        raise ValueError(f"Batch size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def build_plan(source: LibrarySnapshot, target: TargetSnapshot) -> TransferPlan:
    """
    Compute the create/merge/skip decisions for one run.

    Args:
        source: Source playlists (with tracks) and liked songs.
        target: Target's writable playlists and liked-song identifiers.

    Returns:
        A TransferPlan with one action per source playlist, in source order.
    """
    # First writable target playlist wins when the target itself has duplicates
    target_ids: dict[str, str] = {}
    for summary in target.playlists:
        target_ids.setdefault(summary.name, summary.spotify_id)

    planned_creates: set[str] = set()
    actions = []
    for playlist in source.playlists:
        if playlist.name in target_ids:
            actions.append(PlaylistAction(playlist, PlaylistActionType.MERGE, target_ids[playlist.name]))
        elif playlist.name in planned_creates:
            actions.append(PlaylistAction(playlist, PlaylistActionType.MERGE, None))
        else:
            planned_creates.add(playlist.name)
            actions.append(PlaylistAction(playlist, PlaylistActionType.CREATE, None))

    seen: set[str] = set()
    to_add = []
    present = []
    for track in source.liked_tracks:
        if track.key in seen:
            continue
        seen.add(track.key)
        if track.key in target.liked_keys:
            present.append(track)
        else:
            to_add.append(track)

    return TransferPlan(
        playlist_actions=tuple(actions),
        liked_to_add=tuple(to_add),
        liked_present=tuple(present),
    )
