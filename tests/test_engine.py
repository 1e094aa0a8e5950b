"""Test the sync engine against in-memory accounts"""

import threading
from unittest.mock import Mock

import pytest

from spotify_sync.core.exceptions import (
    RateLimitExceededError,
    ReauthRequiredError,
    SpotifyError,
    TransferAbortedError,
)
from spotify_sync.transfer.engine import LOCAL_FILE_REASON, SyncEngine
from spotify_sync.transfer.models import Outcome


@pytest.fixture
def source(fake_service):
    return fake_service("source-user")


@pytest.fixture
def target(fake_service):
    return fake_service("target-user")


def tracks(make_track, *ids):
    return [make_track(i) for i in ids]


class TestRoadTrip:
    """The documented example scenario"""

    def test_road_trip(self, source, target, make_track):
        """Test merge appends missing tracks in source order and liked songs are deduplicated"""
        source.add_playlist("Road Trip", tracks(make_track, "T1", "T2", "T3"))
        source.liked = tracks(make_track, "T1", "T4")
        target.add_playlist("Road Trip", tracks(make_track, "T2"))
        target.liked = tracks(make_track, "T1")

        result = SyncEngine().transfer(source, target)

        assert target.tracks_of("Road Trip") == ["T2", "T1", "T3"]
        assert sorted(target.liked_ids()) == ["T1", "T4"]
        assert result.playlists[0].outcome is Outcome.MERGED
        assert result.playlists[0].tracks_added == 2
        assert result.liked_added == 1
        assert result.liked_skipped == 1
        assert not result.has_failures


class TestProperties:
    """Test transfer guarantees"""

    def test_idempotence(self, source, target, make_track):
        """Test a second run with an unchanged source writes nothing"""
        source.add_playlist("Road Trip", tracks(make_track, "T1", "T2", "T1"))
        source.add_playlist("Chill", tracks(make_track, "T5"))
        source.liked = tracks(make_track, "T1", "T4")
        engine = SyncEngine()

        engine.transfer(source, target)
        writes_after_first_run = target.write_count()
        second = engine.transfer(source, target)

        assert target.write_count() == writes_after_first_run
        assert second.playlists_created == 0
        assert second.tracks_added == 0
        assert second.liked_added == 0
        assert all(p.outcome is Outcome.SKIPPED_DUPLICATE for p in second.playlists)

    def test_no_duplicate_liked_songs(self, source, target, make_track):
        """Test every source liked id is present exactly once on the target"""
        source.liked = tracks(make_track, "T1", "T2", "T3", "T2")
        target.liked = tracks(make_track, "T2")

        SyncEngine().transfer(source, target)

        liked = target.liked_ids()
        assert sorted(liked) == ["T1", "T2", "T3"]
        assert len(liked) == len(set(liked))

    def test_order_preserved_on_create(self, source, target, make_track):
        """Test a created playlist has exactly the source order, duplicates included"""
        order = ["T3", "T1", "T2", "T1", "T5"]
        source.add_playlist("Mix", tracks(make_track, *order), description="My mix", public=True)

        result = SyncEngine(playlist_batch_size=2).transfer(source, target)

        assert target.tracks_of("Mix") == order
        assert result.playlists[0].outcome is Outcome.CREATED
        assert result.playlists[0].tracks_added == 5
        (playlist_id,) = target.playlist_ids_named("Mix")
        assert target.playlists[playlist_id]["description"] == "My mix"
        assert target.playlists[playlist_id]["public"] is True

    def test_merge_is_additive(self, source, target, make_track):
        """Test merging never removes or reorders existing tracks"""
        source.add_playlist("Mix", tracks(make_track, "T1", "T2", "T3", "T1"))
        target.add_playlist("Mix", tracks(make_track, "X", "T2", "Y"))

        SyncEngine().transfer(source, target)

        assert target.tracks_of("Mix") == ["X", "T2", "Y", "T1", "T3"]

    def test_batches_respect_limits(self, source, target, make_track):
        """Test writes are split into provider-sized batches"""
        source.add_playlist("Big", tracks(make_track, *[f"T{i}" for i in range(250)]))
        source.liked = tracks(make_track, *[f"L{i}" for i in range(120)])

        SyncEngine().transfer(source, target)

        add_sizes = [len(w[2]) for w in target.writes if w[0] == "add"]
        like_sizes = [len(w[1]) for w in target.writes if w[0] == "like"]
        assert add_sizes == [100, 100, 50]
        assert like_sizes == [50, 50, 20]

    def test_liked_added_oldest_first(self, source, target, make_track):
        """Test the target's recently-added order mirrors the source"""
        source.liked = tracks(make_track, "newest", "middle", "oldest")

        SyncEngine(liked_batch_size=1).transfer(source, target)

        assert [w[1] for w in target.writes] == [["oldest"], ["middle"], ["newest"]]
        assert target.liked_ids() == ["newest", "middle", "oldest"]


class TestPlaylistMatching:
    """Test which target playlists are merged into"""

    def test_duplicate_source_names_create_one_playlist(self, source, target, make_track):
        """Test two source playlists with one name produce a single target playlist"""
        source.add_playlist("Mix", tracks(make_track, "T1", "T2"))
        source.add_playlist("Mix", tracks(make_track, "T2", "T3"))

        result = SyncEngine().transfer(source, target)

        assert len(target.playlist_ids_named("Mix")) == 1
        assert target.tracks_of("Mix") == ["T1", "T2", "T3"]
        assert [p.outcome for p in result.playlists] == [Outcome.CREATED, Outcome.MERGED]

    def test_followed_playlists_are_not_merged_into(self, source, target, make_track):
        """Test a same-named playlist the target only follows gets a new owned copy"""
        source.add_playlist("Hits", tracks(make_track, "T1"))
        followed = target.add_playlist("Hits", tracks(make_track, "Z"), owner_id="someone-else")

        SyncEngine().transfer(source, target)

        assert target.playlists[followed]["tracks"][0].spotify_id == "Z"
        assert len(target.playlists[followed]["tracks"]) == 1
        assert ("create", "Hits") in target.writes

    def test_collaborative_playlists_are_merged_into(self, source, target, make_track):
        """Test a collaborative playlist owned by someone else is writable"""
        source.add_playlist("Shared", tracks(make_track, "T1"))
        target.add_playlist("Shared", [], owner_id="friend", collaborative=True)

        SyncEngine().transfer(source, target)

        assert target.tracks_of("Shared") == ["T1"]
        assert not any(w[0] == "create" for w in target.writes)

    def test_declined_merge(self, source, target, make_track):
        """Test a declined confirmation leaves the target untouched and creates nothing"""
        source.add_playlist("Road Trip", tracks(make_track, "T1"))
        target.add_playlist("Road Trip", tracks(make_track, "T2"))
        confirm = Mock(return_value=False)

        result = SyncEngine(confirm_merge=confirm).transfer(source, target)

        confirm.assert_called_once()
        assert result.playlists[0].outcome is Outcome.DECLINED
        assert target.tracks_of("Road Trip") == ["T2"]
        assert target.writes == []

    def test_confirmation_only_for_existing_playlists(self, source, target, make_track):
        """Test merges into playlists created in the same run are not confirmed"""
        source.add_playlist("Mix", tracks(make_track, "T1"))
        source.add_playlist("Mix", tracks(make_track, "T2"))
        confirm = Mock(return_value=False)

        SyncEngine(confirm_merge=confirm).transfer(source, target)

        confirm.assert_not_called()
        assert target.tracks_of("Mix") == ["T1", "T2"]


class TestFailureIsolation:
    """Test per-item failures do not stop the run"""

    def test_rejected_batch_only_fails_its_tracks(self, source, target, make_track):
        """Test a rejected batch is recorded and everything else is still attempted"""
        source.add_playlist("Mix", tracks(make_track, "T1", "T2", "T3"))
        source.add_playlist("Other", tracks(make_track, "T4"))
        source.liked = tracks(make_track, "T5")
        target.rejected_uris = {"spotify:track:T2"}

        result = SyncEngine(playlist_batch_size=1).transfer(source, target)

        assert target.tracks_of("Mix") == ["T1", "T3"]
        assert target.tracks_of("Other") == ["T4"]
        assert target.liked_ids() == ["T5"]
        mix = result.playlists[0]
        assert mix.outcome is Outcome.CREATED
        assert mix.tracks_added == 2
        assert [(f.track.spotify_id, f.reason) for f in mix.failed_tracks] == [("T2", "Track unavailable")]
        assert result.has_failures
        assert not result.aborted

    def test_failed_create_continues(self, source, target, make_track):
        """Test a playlist that cannot be created fails alone"""
        source.add_playlist("Bad", tracks(make_track, "T1"))
        source.add_playlist("Good", tracks(make_track, "T2"))
        target.failing_creates = {"Bad"}

        result = SyncEngine().transfer(source, target)

        assert [p.outcome for p in result.playlists] == [Outcome.FAILED, Outcome.CREATED]
        assert result.playlists[0].reason == "Playlist creation rejected"
        assert target.tracks_of("Good") == ["T2"]

    def test_unreadable_target_playlist_fails_alone(self, source, target, make_track):
        """Test a merge target that cannot be read is a per-playlist failure"""
        source.add_playlist("Mix", tracks(make_track, "T1"))
        source.liked = tracks(make_track, "T2")
        broken = target.add_playlist("Mix", [])
        target.unreadable_playlists = {broken}

        result = SyncEngine().transfer(source, target)

        assert result.playlists[0].outcome is Outcome.FAILED
        assert result.liked_added == 1

    def test_local_files_are_reported(self, source, target, make_track):
        """Test local files cannot be written and are recorded as failures"""
        source.add_playlist("Mix", [make_track("T1"), make_track("home-demo", local=True)])

        result = SyncEngine().transfer(source, target)

        assert target.tracks_of("Mix") == ["T1"]
        failed = result.playlists[0].failed_tracks
        assert [f.reason for f in failed] == [LOCAL_FILE_REASON]
        assert "home-demo" in result.failures[0]


class TestAbort:
    """Test fatal target errors stop the run"""

    def test_rate_limit_exhaustion_aborts(self, source, target, make_track):
        """Test RateLimitExceededError stops all further writes and carries the partial result"""
        source.add_playlist("First", tracks(make_track, "T1"))
        source.add_playlist("Second", tracks(make_track, "T2"))
        source.liked = tracks(make_track, "T3")
        writes = []

        def limit_after_two(operation):
            writes.append(operation)
            if len(writes) > 2:
                raise RateLimitExceededError("Rate limit still active")

        target.before_write = limit_after_two

        with pytest.raises(TransferAbortedError) as exc_info:
            SyncEngine().transfer(source, target)

        result = exc_info.value.result
        assert result.aborted
        assert result.abort_reason == "Rate limit still active"
        assert result.playlists[0].outcome is Outcome.CREATED
        assert result.playlists[1].outcome is Outcome.FAILED
        assert result.liked == ()
        assert len(writes) == 3
        assert isinstance(exc_info.value.cause, RateLimitExceededError)

    def test_reauth_required_aborts(self, source, target, make_track):
        """Test a revoked target grant aborts before anything is written"""
        source.add_playlist("Mix", tracks(make_track, "T1"))

        def revoked(operation):
            raise ReauthRequiredError("target")

        target.before_write = revoked

        with pytest.raises(TransferAbortedError) as exc_info:
            SyncEngine().transfer(source, target)

        assert exc_info.value.result.aborted
        assert target.writes == []

    def test_source_read_failure_aborts_before_writes(self, source, target, make_track):
        """Test a snapshot failure propagates before any write"""
        source.add_playlist("Mix", tracks(make_track, "T1"))
        source.iter_liked_tracks = Mock(side_effect=SpotifyError("Service unavailable", http_status=503))

        with pytest.raises(SpotifyError):
            SyncEngine().transfer(source, target)

        assert target.writes == []


class TestCancellation:
    """Test cooperative cancellation"""

    def test_cancel_before_start(self, source, target, make_track):
        """Test a pre-set cancel event stops before the first write"""
        source.add_playlist("Mix", tracks(make_track, "T1"))
        cancel = threading.Event()
        cancel.set()

        result = SyncEngine().transfer(source, target, cancel_event=cancel)

        assert result.cancelled
        assert target.writes == []

    def test_cancel_during_snapshot_stops_reading(self, source, target, make_track):
        """Test a cancel request while reading the source issues no further reads"""
        for i in range(20):
            source.add_playlist(f"List {i}", tracks(make_track, f"T{i}"))
        cancel = threading.Event()
        read_playlist_tracks = source.iter_playlist_tracks

        def read_and_cancel(playlist_id):
            cancel.set()
            return read_playlist_tracks(playlist_id)

        source.iter_playlist_tracks = Mock(side_effect=read_and_cancel)
        source.iter_liked_tracks = Mock()
        target.current_user_id = Mock()
        target.iter_playlists = Mock()

        result = SyncEngine().transfer(source, target, cancel_event=cancel)

        assert result.cancelled
        assert result.playlists == ()
        assert source.iter_playlist_tracks.call_count == 1
        source.iter_liked_tracks.assert_not_called()
        target.current_user_id.assert_not_called()
        target.iter_playlists.assert_not_called()
        assert target.writes == []

    def test_cancel_while_reading_merge_target(self, source, target, make_track):
        """Test a cancel request while reading an existing target playlist stops before writing"""
        source.add_playlist("Mix", tracks(make_track, "T1"))
        existing = target.add_playlist("Mix", tracks(make_track, "X", "Y"))
        cancel = threading.Event()
        engine = SyncEngine()
        plan = engine.plan(source, target)

        def read_and_cancel(playlist_id):
            for track in target.playlists[playlist_id]["tracks"]:
                cancel.set()
                yield track

        target.iter_playlist_tracks = read_and_cancel

        result = engine.execute(plan, target, cancel_event=cancel)

        assert result.cancelled
        assert target.writes == []
        assert len(target.playlists[existing]["tracks"]) == 2

    def test_cancel_mid_run_keeps_written_work(self, source, target, make_track):
        """Test cancellation stops at the next write and keeps partial results"""
        source.add_playlist("Mix", tracks(make_track, "T1", "T2", "T3"))
        source.add_playlist("Later", tracks(make_track, "T4"))
        cancel = threading.Event()
        target.before_write = lambda operation: cancel.set() if operation == "add" else None

        result = SyncEngine(playlist_batch_size=1).transfer(source, target, cancel_event=cancel)

        assert result.cancelled
        assert target.tracks_of("Mix") == ["T1"]
        assert target.playlist_ids_named("Later") == []
        assert result.playlists[0].tracks_added == 1

    def test_status_updates(self, source, target, make_track):
        """Test status lines are emitted while running"""
        source.add_playlist("Mix", tracks(make_track, "T1"))
        lines = []

        SyncEngine().transfer(source, target, on_status=lines.append)

        assert any("Creating playlist 'Mix'" in line for line in lines)
        assert lines[-1].startswith("Done:")
