"""
Data models for Spotify entities.

This module defines immutable dataclasses representing the parts of the
Spotify library that a transfer reads and writes: tracks, playlists and
the library statistics shown by `preview`.

Design Decisions:
    - All dataclasses are frozen (immutable) so snapshots cannot be
      modified while a transfer executes
    - Factory methods accept raw Spotify Web API dictionaries and tolerate
      missing optional fields
    - A track's `key` is its content identifier: the Spotify track id,
      or a normalized title/artist pair when the track has no id
      (local files)
"""

import html
from dataclasses import dataclass
from typing import Any


def normalize_text(value: str) -> str:
    """Lowercase and collapse whitespace for title/artist comparisons."""
    return " ".join(value.casefold().split())


@dataclass(frozen=True)
class Track:
    """
    Immutable representation of a track in a playlist or liked songs.

    Attributes:
        spotify_id: Spotify track ID. None for local files, which have no
                    portable identifier.
        uri: Spotify URI ("spotify:track:<id>", or "spotify:local:..." for
             local files). Used for playlist add calls.
        name: Track title.
        artist: Primary artist name (first artist in the list).
        album: Album name.
        duration_ms: Track duration in milliseconds.
        is_local: True for files the owner uploaded from their computer.
                  These cannot be added to another account's library.
    """
    spotify_id: str | None
    uri: str
    name: str
    artist: str
    album: str = ""
    duration_ms: int = 0
    is_local: bool = False

    @property
    def fallback_key(self) -> str:
        """Normalized "title|artist" used when there is no track id."""
        return f"{normalize_text(self.name)}|{normalize_text(self.artist)}"

    @property
    def key(self) -> str:
        """Content identifier used to recognize the same track on two accounts."""
        if self.spotify_id and not self.is_local:
            return self.spotify_id
        return self.fallback_key

    @property
    def is_transferable(self) -> bool:
        """True if the track can be written to another account."""
        return bool(self.spotify_id) and not self.is_local

    @property
    def display_name(self) -> str:
        return f"{self.name} - {self.artist}" if self.artist else self.name

    @classmethod
    def from_spotify_api(cls, track_data: dict[str, Any] | None) -> "Track | None":
        """
        Create a Track from a Spotify track object.

        Args:
            track_data: The 'track' (or 'item') field of a playlist item or
                        saved-track item.

        Returns:
            A Track, or None for empty slots and podcast episodes, which
            are not part of a music library transfer.
        """
        if not track_data:
            return None
        if track_data.get("type", "track") != "track":
            return None

        artists = track_data.get("artists") or []
        artist = artists[0].get("name", "") if artists else ""
        album = (track_data.get("album") or {}).get("name", "")
        is_local = bool(track_data.get("is_local", False))
        spotify_id = None if is_local else track_data.get("id")

        return cls(
            spotify_id=spotify_id,
            uri=track_data.get("uri") or (f"spotify:track:{spotify_id}" if spotify_id else ""),
            name=track_data.get("name") or "",
            artist=artist or "",
            album=album or "",
            duration_ms=int(track_data.get("duration_ms") or 0),
            is_local=is_local,
        )


@dataclass(frozen=True)
class PlaylistSummary:
    """
    A playlist as listed by /me/playlists, without its tracks.

    Attributes:
        spotify_id: Spotify playlist ID.
        name: Display name.
        owner_id: Spotify user ID of the owner.
        description: Plain-text description (HTML entities decoded).
        public: Whether the playlist is public. Spotify reports None for
                some playlists; that is treated as private.
        collaborative: Whether other users can edit it.
        total_tracks: Number of items reported by the listing.
    """
    spotify_id: str
    name: str
    owner_id: str
    description: str = ""
    public: bool = False
    collaborative: bool = False
    total_tracks: int = 0

    @classmethod
    def from_spotify_api(cls, item: dict[str, Any]) -> "PlaylistSummary":
        # Newer API responses report the count under 'items' instead of 'tracks'
        tracks_ref = item.get("tracks") or item.get("items") or {}
        return cls(
            spotify_id=item["id"],
            name=item.get("name") or "",
            owner_id=(item.get("owner") or {}).get("id", ""),
            description=html.unescape(item.get("description") or ""),
            public=bool(item.get("public")),
            collaborative=bool(item.get("collaborative")),
            total_tracks=int(tracks_ref.get("total") or 0),
        )


@dataclass(frozen=True)
class Playlist:
    """
    A source playlist with its tracks, in playlist order.

    Attributes:
        spotify_id: Spotify playlist ID on the source account.
        name: Display name. Used for matching against target playlists.
        description: Plain-text description copied to created playlists.
        public: Public flag copied to created playlists.
        collaborative: Collaborative flag copied to created playlists.
        owner_id: Spotify user ID of the owner on the source side.
        tracks: Tracks in source order (duplicates preserved).
    """
    spotify_id: str
    name: str
    description: str = ""
    public: bool = False
    collaborative: bool = False
    owner_id: str = ""
    tracks: tuple[Track, ...] = ()

    @classmethod
    def from_summary(cls, summary: PlaylistSummary, tracks: tuple[Track, ...]) -> "Playlist":
        return cls(
            spotify_id=summary.spotify_id,
            name=summary.name,
            description=summary.description,
            public=summary.public,
            collaborative=summary.collaborative,
            owner_id=summary.owner_id,
            tracks=tracks,
        )


@dataclass(frozen=True)
class LibraryStats:
    """Library counts shown by `preview`."""
    liked_songs: int
    playlists: int
    total_songs: int
