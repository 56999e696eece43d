"""Tests for the state store, snapshot persistence and startup recovery."""
import copy

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from highlighter.db.database import init_db
from highlighter.models.clip import Clip, ClipSource, StreamAssociation
from highlighter.models.state import SCHEMA_VERSION
from highlighter.models.stream import DetectionState
from highlighter.services.commands import AddClip, SetExportInfo, UpdateClip
from highlighter.services.highlighter_service import Collaborators, HighlighterService
from highlighter.services.persistence import LoadedSnapshot, SnapshotRepository, migrate_snapshot
from highlighter.services.state_store import StateStore


class _MemoryRepository:
    def __init__(self, payload=None, schema_version=SCHEMA_VERSION):
        self.payload = payload
        self.schema_version = schema_version
        self.saves = 0

    async def load(self, namespace):
        if self.payload is None:
            return None
        return LoadedSnapshot(schema_version=self.schema_version, payload=copy.deepcopy(self.payload))

    async def save(self, namespace, payload, schema_version=SCHEMA_VERSION):
        self.payload = copy.deepcopy(payload)
        self.schema_version = schema_version
        self.saves += 1


def _legacy_v0_payload():
    return {
        "clips": {
            "/v/h.mp4": {
                "path": "/v/h.mp4",
                "source": "AiClip",
                "global_order_position": 0,
                "stream_info": {"s1": {"order_position": 0, "initial_start_time": 12.0}},
                "ai_info": {"moments": [{"type": "kill"}], "score": 0.8, "metadata": {"round": 1}},
            },
        },
        "highlighted_streams": [
            {
                "id": "s1",
                "title": "Friday",
                "game": "fortnite",
                "date": "2024-05-01T10:00:00",
                "path": "/rec.mp4",
                "state": {"type": "detection-finished", "progress": 100},
            },
        ],
        "export": {"file": "/out.mp4"},
    }


# =============================================================================
# Commands
# =============================================================================

def test_apply_rejects_unknown_command(store):
    with pytest.raises(TypeError):
        store.apply(object())


def test_update_clip_rejects_unknown_field(store):
    store.apply(AddClip(Clip(path="/v/a.mp4", source=ClipSource.MANUAL)))
    with pytest.raises(ValueError):
        store.apply(UpdateClip("/v/a.mp4", {"bogus": 1}))


def test_clip_changes_reset_exported(store):
    store.state.export.exported = True
    store.apply(AddClip(Clip(path="/v/a.mp4", source=ClipSource.MANUAL)))
    assert store.state.export.exported is False


def test_set_export_info_clears_exported_unless_given(store):
    store.apply(SetExportInfo({"exported": True}))
    assert store.state.export.exported is True
    store.apply(SetExportInfo({"fps": 60}))
    assert store.state.export.exported is False
    assert store.state.export.fps == 60


# =============================================================================
# Migrations
# =============================================================================

def test_migrate_v0_snapshot():
    payload = migrate_snapshot(_legacy_v0_payload(), 0)

    assert "highlighted_streams" not in payload
    assert payload["streams"]["s1"]["title"] == "Friday"
    ai_info = payload["clips"]["/v/h.mp4"]["ai_info"]
    assert ai_info["inputs"] == [{"type": "kill"}]
    assert "moments" not in ai_info


def test_migrate_v1_keeps_existing_streams():
    payload = {"streams": {"s1": {"id": "s1"}}, "clips": {}}
    migrated = migrate_snapshot(payload, 1)
    assert migrated["streams"] == {"s1": {"id": "s1"}}


def test_migrate_rejects_newer_version():
    with pytest.raises(ValueError):
        migrate_snapshot({}, SCHEMA_VERSION + 1)


@pytest.mark.asyncio
async def test_load_migrates_and_rewrites_old_snapshot():
    repository = _MemoryRepository(_legacy_v0_payload(), schema_version=0)
    store = StateStore(repository=repository)

    assert await store.load()

    clip = store.state.clips["/v/h.mp4"]
    assert clip.ai_info.inputs[0].type == "kill"
    assert clip.ai_info.round == 1
    assert store.state.streams["s1"].state == DetectionState.FINISHED
    assert repository.schema_version == SCHEMA_VERSION


# =============================================================================
# SQLite round trip
# =============================================================================

@pytest.mark.asyncio
async def test_snapshot_round_trip_through_sqlite(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'state.db'}")
    await init_db(engine)
    repository = SnapshotRepository(async_sessionmaker(engine, expire_on_commit=False))

    try:
        store = StateStore(repository=repository, namespace="test")
        store.apply(AddClip(Clip(
            path="/v/a.mp4",
            source=ClipSource.REPLAY_BUFFER,
            start_trim=1.5,
            stream_info={"s1": StreamAssociation(order_position=0, initial_start_time=4.0)},
        )))
        store.apply(SetExportInfo({"file": "/out.mp4", "resolution": 720}))
        await store.flush()

        restored = StateStore(repository=repository, namespace="test")
        assert await restored.load()
        clip = restored.state.clips["/v/a.mp4"]
        assert clip.source == ClipSource.REPLAY_BUFFER
        assert clip.start_trim == 1.5
        assert clip.stream_info["s1"].initial_start_time == 4.0
        assert restored.state.export.resolution == 720

        other = StateStore(repository=repository, namespace="other")
        assert not await other.load()
    finally:
        await engine.dispose()


# =============================================================================
# Startup recovery
# =============================================================================

def _interrupted_payload():
    return {
        "clips": {
            "/v/a.mp4": {
                "path": "/v/a.mp4", "source": "Manual", "global_order_position": 0, "loaded": True,
                "stream_info": {"s1": {"order_position": 0}},
            },
            "/v/gone.mp4": {
                "path": "/v/gone.mp4", "source": "Manual", "global_order_position": 1, "loaded": True,
                "stream_info": {"s1": {"order_position": 1}},
            },
        },
        "streams": {
            "s1": {
                "id": "s1", "title": "t", "game": "fortnite", "date": "2024-05-01", "path": "/rec.mp4",
                "state": {"type": "detection-in-progress", "progress": 40},
            },
        },
        "export": {"exporting": True, "cancel_requested": True, "file": ""},
    }


def _service(repository, fs, probe, analytics):
    return HighlighterService(Collaborators(
        repository=repository,
        fs=fs,
        probe=probe,
        engine=None,
        renderer=None,
        uploaders={},
        analytics=analytics,
    ))


@pytest.mark.asyncio
async def test_startup_recovery_is_idempotent(fs, probe, analytics):
    fs.add("/v/a.mp4")
    repository = _MemoryRepository(_interrupted_payload())

    service = _service(repository, fs, probe, analytics)
    await service.init()

    state = service.state
    assert list(state.clips) == ["/v/a.mp4"]
    assert state.clips["/v/a.mp4"].loaded is False
    assert state.clips["/v/a.mp4"].global_order_position == 0
    assert state.streams["s1"].state == DetectionState.CANCELED_BY_USER
    assert state.streams["s1"].progress == 0
    assert state.export.exporting is False
    assert state.export.cancel_requested is False
    assert state.export.file

    first = copy.deepcopy(repository.payload)

    again = _service(repository, fs, probe, analytics)
    await again.init()

    assert repository.payload == first
