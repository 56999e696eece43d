"""Tests for the streaming session hooks of the highlighter facade."""
import pytest

from highlighter.models.clip import ClipSource
from highlighter.services.events import HighlighterEvent
from highlighter.services.highlighter_service import (
    REPLAY_NOTIFICATION_MESSAGE,
    Collaborators,
    HighlighterService,
    StreamingStatus,
)


@pytest.fixture
def service(fs, probe, analytics):
    return HighlighterService(Collaborators(
        repository=None,
        fs=fs,
        probe=probe,
        engine=None,
        renderer=None,
        uploaders={},
        analytics=analytics,
    ))


@pytest.mark.asyncio
async def test_ai_recording_session(service, fs, recorder, analytics):
    navigate = recorder(service.events, HighlighterEvent.NAVIGATE)
    service.detection.set_ai_highlighter(True)

    assert await service.on_streaming_status(StreamingStatus.LIVE, game="Fortnite", title="Friday")
    stream_id = service._session.stream_info.id
    assert service._session.stream_info.game == "fortnite"

    fs.add("/replays/r1.mp4")
    service.on_replay_buffer_saved("/replays/r1.mp4")
    clip = service.ledger.get("/replays/r1.mp4")
    assert clip.source == ClipSource.REPLAY_BUFFER
    assert stream_id in clip.stream_info
    assert clip.stream_info[stream_id].initial_start_time == 0.0

    assert await service.on_streaming_status(StreamingStatus.ENDING)
    assert service.ledger.get("/replays/r1.mp4").loaded

    await service.on_recording_saved("/rec/full.mp4")
    info = service.state.temp_recording_info
    assert info.recording_path == "/rec/full.mp4"
    assert info.stream_info["id"] == stream_id
    assert info.source == "after-stream"
    assert navigate.payloads == [{"view": "stream"}]
    assert "AiRecordingExists" in analytics.types()


@pytest.mark.asyncio
async def test_unsupported_game_does_not_record(service):
    service.detection.set_ai_highlighter(True)

    assert not await service.on_streaming_status(StreamingStatus.LIVE, game="Chess")
    assert not await service.on_streaming_status(StreamingStatus.ENDING)


@pytest.mark.asyncio
async def test_ai_disabled_does_not_record(service, analytics):
    assert not await service.on_streaming_status(StreamingStatus.LIVE, game="fortnite")
    assert "AiRecordingStarted" not in analytics.types()


@pytest.mark.asyncio
async def test_offline_notification_until_acknowledged(service, recorder):
    notifications = recorder(service.events, HighlighterEvent.NOTIFICATION)
    service.on_replay_buffer_saved("/replays/r1.mp4")

    await service.on_streaming_status(StreamingStatus.LIVE, game="fortnite")
    await service.on_streaming_status(StreamingStatus.OFFLINE)
    service.notification_action()
    await service.on_streaming_status(StreamingStatus.LIVE, game="fortnite")
    await service.on_streaming_status(StreamingStatus.OFFLINE)

    assert notifications.payloads == [{"message": REPLAY_NOTIFICATION_MESSAGE}]


def test_replay_buffer_without_session_is_global(service):
    service.on_replay_buffer_saved("/replays/r1.mp4")

    clip = service.ledger.get("/replays/r1.mp4")
    assert clip.stream_info == {}
    assert clip.global_order_position == 0


def test_settings_toggles(service):
    service.toggle_ai_highlighter()
    assert service.state.use_ai_highlighter
    service.dismiss_tutorial()
    assert service.state.dismissed_tutorial
