"""Tests for stream records and their clips."""
import pytest

from highlighter.models.clip import NewClip
from highlighter.models.stream import DetectionState, HighlightedStream
from highlighter.services.stream_registry import StreamRegistry
from highlighter.utils.cancellation import CancellationToken


@pytest.fixture
def registry(store, ledger):
    return StreamRegistry(store, ledger)


def _stream(stream_id, state=DetectionState.FINISHED, token=None):
    return HighlightedStream(
        id=stream_id,
        title=stream_id,
        game="fortnite",
        date="2024-05-01T10:00:00",
        path="/rec.mp4",
        state=state,
        cancellation_token=token,
    )


@pytest.mark.asyncio
async def test_removing_stream_keeps_clip_shared_with_another(registry, ledger, fs):
    fs.add("/v/shared.mp4", "/v/only_a.mp4")
    registry.add(_stream("a"))
    registry.add(_stream("b"))
    ledger.insert([NewClip("/v/shared.mp4"), NewClip("/v/only_a.mp4")], "a")
    ledger.insert([NewClip("/v/shared.mp4")], "b")

    await registry.remove_stream("a")

    assert registry.get("a") is None
    assert [c.path for c in await ledger.query("b")] == ["/v/shared.mp4"]
    assert set(ledger.get("/v/shared.mp4").stream_info) == {"b"}
    assert ledger.get("/v/only_a.mp4") is None
    assert "/v/only_a.mp4" in fs.removed
    assert "/v/shared.mp4" not in fs.removed


@pytest.mark.asyncio
async def test_removing_running_stream_cancels_it(registry):
    token = CancellationToken()
    registry.add(_stream("a", DetectionState.IN_PROGRESS, token))

    await registry.remove_stream("a", delete_clips=False)

    assert token.cancelled
    assert registry.get("a") is None


def test_recover_interrupted_is_idempotent(registry):
    registry.add(_stream("a", DetectionState.IN_PROGRESS))
    registry.add(_stream("b"))

    assert registry.recover_interrupted() == ["a"]
    assert registry.get("a").state == DetectionState.CANCELED_BY_USER
    assert registry.get("b").state == DetectionState.FINISHED
    assert registry.recover_interrupted() == []
