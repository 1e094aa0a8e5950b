"""
Library transfer between two Spotify accounts.

    models   snapshots, plan and result types
    plan     build_plan() and TrackIndex
    engine   SyncEngine and the MusicService interface it drives
    task     TransferTask, a cancellable background run
"""

from spotify_sync.transfer.engine import MusicService, SyncEngine
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
from spotify_sync.transfer.task import TransferTask

__all__ = [
    "MusicService",
    "SyncEngine",
    "LibrarySnapshot",
    "TargetSnapshot",
    "PlaylistAction",
    "PlaylistActionType",
    "TransferPlan",
    "Outcome",
    "TrackResult",
    "PlaylistResult",
    "TransferResult",
    "TransferLog",
    "TrackIndex",
    "build_plan",
    "chunked",
    "TransferTask",
]
