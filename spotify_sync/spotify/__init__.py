"""
Spotify Web API access.

    auth     LoginFlow (authorization code login) and TokenRefresher
    client   SpotifyClient, bound to one stored account
    models   Track, Playlist, PlaylistSummary, LibraryStats
"""

from spotify_sync.spotify.auth import LoginFlow, TokenRefresher
from spotify_sync.spotify.client import SpotifyClient
from spotify_sync.spotify.models import (
    LibraryStats,
    Playlist,
    PlaylistSummary,
    Track,
    normalize_text,
)

__all__ = [
    "LoginFlow",
    "TokenRefresher",
    "SpotifyClient",
    "Track",
    "Playlist",
    "PlaylistSummary",
    "LibraryStats",
    "normalize_text",
]
