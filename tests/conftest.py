"""Test configuration and fixtures"""

import socket
import tempfile
import time
from pathlib import Path

import pytest

from spotify_sync.core.config import SpotifyConfig, TransferConfig
from spotify_sync.core.credentials import Credential, CredentialStore
from spotify_sync.core.exceptions import SpotifyError
from spotify_sync.spotify.models import LibraryStats, PlaylistSummary, Track


def build_track(track_id: str, local: bool = False) -> Track:
    """Deterministic track: the same id always gives the same title and artist"""
    if local:
        return Track(
            spotify_id=None,
            uri=f"spotify:local:Artist+{track_id}::Song+{track_id}:200",
            name=f"Song {track_id}",
            artist=f"Artist {track_id}",
            is_local=True,
        )
    return Track(
        spotify_id=track_id,
        uri=f"spotify:track:{track_id}",
        name=f"Song {track_id}",
        artist=f"Artist {track_id}",
        album="Album",
        duration_ms=200000,
    )


class FakeMusicService:
    """
    In-memory account implementing the operations SyncEngine uses.

    Liked songs are stored newest first, like Spotify returns them.
    Every write is recorded in `writes`; `before_write` is called with the
    operation name before each write and may raise or set a cancel event.
    Batches containing a URI from `rejected_uris` fail with SpotifyError.
    """

    def __init__(self, user_id: str = "user"):
        self.user_id = user_id
        self.playlists: dict[str, dict] = {}
        self.liked: list[Track] = []
        self.writes: list[tuple] = []
        self.rejected_uris: set[str] = set()
        self.failing_creates: set[str] = set()
        self.unreadable_playlists: set[str] = set()
        self.before_write = None
        self._next_id = 0

    # Test setup helpers

    def add_playlist(self, name, tracks, owner_id=None, collaborative=False, public=False, description=""):
        self._next_id += 1
        playlist_id = f"{self.user_id}-pl{self._next_id}"
        self.playlists[playlist_id] = {
            "name": name,
            "owner_id": owner_id or self.user_id,
            "collaborative": collaborative,
            "public": public,
            "description": description,
            "tracks": list(tracks),
        }
        return playlist_id

    def playlist_ids_named(self, name):
        return [pid for pid, p in self.playlists.items() if p["name"] == name]

    def tracks_of(self, name):
        (playlist_id,) = self.playlist_ids_named(name)
        return [t.spotify_id or t.fallback_key for t in self.playlists[playlist_id]["tracks"]]

    def liked_ids(self):
        return [t.spotify_id for t in self.liked]

    def write_count(self):
        return len(self.writes)

    def _write(self, operation):
        if self.before_write is not None:
            self.before_write(operation)

    # MusicService

    def current_user_id(self):
        return self.user_id

    def iter_playlists(self):
        for playlist_id, p in self.playlists.items():
            yield PlaylistSummary(
                spotify_id=playlist_id,
                name=p["name"],
                owner_id=p["owner_id"],
                description=p["description"],
                public=p["public"],
                collaborative=p["collaborative"],
                total_tracks=len(p["tracks"]),
            )

    def iter_playlist_tracks(self, playlist_id):
        if playlist_id in self.unreadable_playlists:
            raise SpotifyError("Playlist not found", http_status=404)
        yield from list(self.playlists[playlist_id]["tracks"])

    def iter_liked_tracks(self):
        yield from list(self.liked)

    def create_playlist(self, name, description="", public=False, collaborative=False):
        self._write("create")
        if name in self.failing_creates:
            raise SpotifyError("Playlist creation rejected", http_status=400)
        playlist_id = self.add_playlist(
            name, [], collaborative=collaborative, public=public, description=description
        )
        self.writes.append(("create", name))
        return playlist_id

    def add_tracks_to_playlist(self, playlist_id, uris):
        self._write("add")
        if self.rejected_uris.intersection(uris):
            raise SpotifyError("Track unavailable", http_status=400)
        tracks = [build_track(uri.rsplit(":", 1)[-1]) for uri in uris]
        self.playlists[playlist_id]["tracks"].extend(tracks)
        self.writes.append(("add", playlist_id, list(uris)))

    def add_liked_tracks(self, track_ids):
        self._write("like")
        if self.rejected_uris.intersection(f"spotify:track:{i}" for i in track_ids):
            raise SpotifyError("Track unavailable", http_status=400)
        for track_id in track_ids:
            self.liked.insert(0, build_track(track_id))
        self.writes.append(("like", list(track_ids)))

    def get_library_stats(self):
        songs = sum(len(p["tracks"]) for p in self.playlists.values())
        return LibraryStats(
            liked_songs=len(self.liked),
            playlists=len(self.playlists),
            total_songs=len(self.liked) + songs,
        )


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def store(temp_dir):
    """Credential store in a temporary directory"""
    credential_store = CredentialStore(temp_dir / "credentials.db")
    yield credential_store
    credential_store.close()


@pytest.fixture
def spotify_config():
    """Application credentials pointing the redirect at a free local port"""
    return SpotifyConfig(
        client_id="test-client-id",
        client_secret="test-client-secret",
        redirect_uri=f"http://127.0.0.1:{free_port()}/callback",
    )


@pytest.fixture
def transfer_config():
    """Transfer settings with short backoff"""
    return TransferConfig(max_retries=3, backoff_base=1.0, max_backoff=10.0, refresh_margin=60)


@pytest.fixture
def fresh_credential():
    """Credential valid for another hour"""
    return Credential(
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=int(time.time()) + 3600,
        scopes=frozenset({"user-library-read"}),
    )


@pytest.fixture
def expired_credential():
    """Credential that expired a minute ago"""
    return Credential(
        access_token="access-old",
        refresh_token="refresh-1",
        expires_at=int(time.time()) - 60,
        scopes=frozenset({"user-library-read"}),
    )


@pytest.fixture
def make_track():
    return build_track


@pytest.fixture
def fake_service():
    """Factory for in-memory accounts"""
    return FakeMusicService


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
