"""Tests for AI detection runs and their resulting streams."""
import asyncio
import json

import pytest

from highlighter.errors import DetectionCanceledError, DetectionError
from highlighter.models.clip import AiClipInfo, Clip, ClipSource, InputEvent
from highlighter.models.stream import DetectionState, Highlight, HighlightedStream, StreamInfoForDetection
from highlighter.services.clip_loader import ClipLoader
from highlighter.services.detection_service import (
    FALLBACK_TITLE,
    DetectionOrchestrator,
    extract_date_time_from_path,
    round_details,
    sanitize_title,
)
from highlighter.services.events import HighlighterEvent
from highlighter.services.stream_registry import StreamRegistry

RECORDING = "/rec/2024-05-01 20-15-00.mp4"


class _FakeEngine:
    def __init__(self, highlights=None, error=None, wait_for_cancel=False, milestones=None):
        self.highlights = highlights or []
        self.error = error
        self.wait_for_cancel = wait_for_cancel
        self.milestones = milestones or []
        self.version = "2.0.0"
        self.update_error = None
        self.calls = []

    async def is_update_available(self):
        return False

    def update(self, progress_callback=None):
        async def _update():
            if progress_callback:
                progress_callback(0.5)
            if self.update_error:
                raise self.update_error
        return asyncio.ensure_future(_update())

    async def uninstall(self):
        self.version = None

    async def detect(
        self,
        file_path,
        user_id,
        on_highlights,
        cancel_token,
        on_progress,
        milestones_path=None,
        on_milestone=None,
        game=None,
    ):
        self.calls.append({"file_path": file_path, "milestones_path": milestones_path, "game": game})
        on_progress(0.5)
        for milestone in self.milestones:
            on_milestone(milestone)
        if self.wait_for_cancel:
            await cancel_token.wait()
            raise DetectionCanceledError()
        if self.error:
            raise self.error
        await on_highlights(self.highlights)
        return self.highlights


@pytest.fixture
def registry(store, ledger):
    return StreamRegistry(store, ledger)


@pytest.fixture
def make_orchestrator(registry, ledger, fs, probe, analytics, tmp_path):
    def _make(engine):
        return DetectionOrchestrator(
            registry=registry,
            ledger=ledger,
            loader=ClipLoader(ledger, probe, analytics, concurrency=2),
            engine=engine,
            probe=probe,
            fs=fs,
            analytics=analytics,
            user_id="user-1",
            milestones_dir=tmp_path / "milestones",
            clips_dir="/clips",
        )
    return _make


def _highlights():
    return [
        Highlight(start_time=6, end_time=8, inputs=[InputEvent("kill")], score=0.9, metadata={"round": 1}),
        Highlight(start_time=1, end_time=3, inputs=[InputEvent("knocked")], score=0.4, metadata={"round": 1}),
    ]


# =============================================================================
# Helpers
# =============================================================================

def test_extract_date_time_from_path():
    assert extract_date_time_from_path(RECORDING) == "2024-05-01 20:15:00"
    assert extract_date_time_from_path("/rec/stream.mp4") is None


def test_sanitize_title():
    assert sanitize_title("clutch/win", RECORDING) == "clutch win"
    assert sanitize_title('a::"b"', RECORDING) == "a b "
    assert sanitize_title(None, RECORDING) == "2024-05-01 20:15:00"
    assert sanitize_title("", "/rec/stream.mp4") == FALLBACK_TITLE


def test_round_details_groups_ai_clips():
    def ai_clip(path, round_number, score, inputs):
        return Clip(
            path=path,
            source=ClipSource.AI_CLIP,
            duration=10.0,
            start_trim=1.0,
            end_trim=1.0,
            ai_info=AiClipInfo(
                inputs=[InputEvent(t) for t in inputs], score=score, metadata={"round": round_number}
            ),
        )

    clips = [
        ai_clip("/c/1.mp4", 1, 0.5, ["kill"]),
        ai_clip("/c/2.mp4", 2, 1.0, ["victory"]),
        ai_clip("/c/3.mp4", 1, 0.9, ["kill", "kill"]),
        Clip(path="/c/manual.mp4", source=ClipSource.MANUAL, duration=5.0),
    ]

    details = round_details(clips)

    assert [d["round"] for d in details] == [1, 2]
    assert details[0]["duration"] == 16.0
    assert [i.type for i in details[0]["inputs"]] == ["kill", "kill", "kill"]
    assert details[0]["hype_score"] == 4
    assert details[1]["hype_score"] == 5


# =============================================================================
# Detection
# =============================================================================

@pytest.mark.asyncio
async def test_detect_success_creates_ai_clips(make_orchestrator, registry, ledger, store, fs, probe, analytics, recorder):
    finished = recorder(store.events, HighlighterEvent.STREAM_FINISHED)
    fs.add(RECORDING)
    engine = _FakeEngine(highlights=_highlights(), milestones=[{"name": "round_start"}])
    orchestrator = make_orchestrator(engine)

    stream_id = await orchestrator.detect(RECORDING, StreamInfoForDetection(id="s1", game="fortnite"))

    assert stream_id == "s1"
    stream = registry.get("s1")
    assert stream.state == DetectionState.FINISHED
    assert stream.progress == 100
    assert stream.title == "2024-05-01 20:15:00"
    assert stream.cancellation_token is None
    assert finished.payloads == [{"stream_id": "s1"}]
    assert engine.calls[0]["game"] == "fortnite"

    clips = ledger.ordered("s1")
    assert [c.stream_info["s1"].initial_start_time for c in clips] == [0.0, 4.0]
    assert clips[0].path == "/clips/s1/2024-05-01 20-15-00_1000_1.mp4"
    assert clips[0].start_trim == 1.0
    assert clips[0].end_trim == 2.0
    assert all(c.loaded for c in clips)
    assert len(probe.cuts) == 2

    saved = json.loads(fs.texts[str(orchestrator.milestones_path("s1"))])
    assert saved == [{"name": "round_start"}]
    assert "Detection" in analytics.types()
    assert "DetectionMilestone" in analytics.types()


@pytest.mark.asyncio
async def test_detect_cancel(make_orchestrator, registry, fs, analytics):
    fs.add(RECORDING)
    orchestrator = make_orchestrator(_FakeEngine(wait_for_cancel=True))

    task = asyncio.create_task(orchestrator.detect(RECORDING, StreamInfoForDetection(id="s1")))
    for _ in range(10):
        await asyncio.sleep(0)
        if registry.get("s1") is not None:
            break

    assert registry.get("s1").state == DetectionState.IN_PROGRESS
    assert orchestrator.cancel("s1")
    await task

    stream = registry.get("s1")
    assert stream.state == DetectionState.CANCELED_BY_USER
    assert stream.cancellation_token is None
    assert not orchestrator.cancel("s1")
    assert "DetectionCanceled" in analytics.types()


@pytest.mark.asyncio
async def test_detect_error_keeps_engine_code(make_orchestrator, registry, fs):
    fs.add(RECORDING)
    orchestrator = make_orchestrator(_FakeEngine(error=DetectionError("engine crashed", code=3)))

    await orchestrator.detect(RECORDING, StreamInfoForDetection(id="s1"))

    stream = registry.get("s1")
    assert stream.state == DetectionState.ERROR
    assert stream.error_code == 3


@pytest.mark.asyncio
async def test_detect_unexpected_error_uses_code_one(make_orchestrator, registry, fs):
    fs.add(RECORDING)
    orchestrator = make_orchestrator(_FakeEngine(error=RuntimeError("boom")))

    await orchestrator.detect(RECORDING, StreamInfoForDetection(id="s1"))

    assert registry.get("s1").error_code == 1


@pytest.mark.asyncio
async def test_detect_rejects_stream_in_progress(make_orchestrator, registry):
    registry.add(HighlightedStream(
        id="s1", title="t", game="unset", date="2024-05-01", path=RECORDING
    ))
    engine = _FakeEngine()
    orchestrator = make_orchestrator(engine)

    assert await orchestrator.detect(RECORDING, StreamInfoForDetection(id="s1")) is None
    assert engine.calls == []


class _SlowCheckEngine(_FakeEngine):
    async def is_update_available(self):
        await asyncio.sleep(0.01)
        return False


async def _wait_for(condition):
    for _ in range(100):
        if condition():
            return
        await asyncio.sleep(0.001)
    raise AssertionError("condition not reached")


@pytest.mark.asyncio
async def test_concurrent_detect_on_same_stream_runs_once(make_orchestrator, registry, fs):
    fs.add(RECORDING)
    engine = _SlowCheckEngine(wait_for_cancel=True)
    orchestrator = make_orchestrator(engine)
    info = StreamInfoForDetection(id="s1")

    first = asyncio.create_task(orchestrator.detect(RECORDING, info))
    second = asyncio.create_task(orchestrator.detect(RECORDING, info))
    await _wait_for(lambda: len(engine.calls) == 1)

    assert await second is None
    assert orchestrator.cancel("s1")
    assert await first == "s1"
    assert len(engine.calls) == 1
    assert registry.get("s1").state == DetectionState.CANCELED_BY_USER


@pytest.mark.asyncio
async def test_cancel_before_engine_ready_skips_run(make_orchestrator, registry, fs):
    fs.add(RECORDING)
    engine = _SlowCheckEngine()
    orchestrator = make_orchestrator(engine)

    task = asyncio.create_task(orchestrator.detect(RECORDING, StreamInfoForDetection(id="s1")))
    await asyncio.sleep(0)
    assert orchestrator.cancel("s1")

    assert await task is None
    assert engine.calls == []
    assert registry.get("s1") is None


@pytest.mark.asyncio
async def test_restart_while_running_keeps_new_run_cancellable(make_orchestrator, registry, fs, analytics):
    fs.add(RECORDING)
    engine = _FakeEngine(wait_for_cancel=True)
    orchestrator = make_orchestrator(engine)
    first = asyncio.create_task(orchestrator.detect(RECORDING, StreamInfoForDetection(id="s1")))
    await _wait_for(lambda: len(engine.calls) == 1)

    restarted = asyncio.create_task(orchestrator.restart("s1"))
    await _wait_for(lambda: len(engine.calls) == 2)

    assert first.done()
    stream = registry.get("s1")
    assert stream.state == DetectionState.IN_PROGRESS
    assert stream.cancellation_token is not None
    assert analytics.types().count("DetectionCanceled") == 1

    assert orchestrator.cancel("s1")
    assert await restarted == "s1"
    assert registry.get("s1").state == DetectionState.CANCELED_BY_USER
    assert registry.get("s1").cancellation_token is None


@pytest.mark.asyncio
async def test_removed_stream_is_not_revived_by_its_run(make_orchestrator, registry, fs):
    fs.add(RECORDING)
    engine = _FakeEngine(wait_for_cancel=True)
    orchestrator = make_orchestrator(engine)
    task = asyncio.create_task(orchestrator.detect(RECORDING, StreamInfoForDetection(id="s1")))
    await _wait_for(lambda: len(engine.calls) == 1)

    await registry.remove_stream("s1")
    await task

    assert registry.get("s1") is None


@pytest.mark.asyncio
async def test_restart_reuses_milestones(make_orchestrator, registry, ledger, fs):
    fs.add(RECORDING)
    engine = _FakeEngine(highlights=_highlights(), milestones=[{"name": "round_start"}])
    orchestrator = make_orchestrator(engine)
    await orchestrator.detect(RECORDING, StreamInfoForDetection(id="s1", title="Friday", game="fortnite"))
    first_clips = [c.path for c in ledger.ordered("s1")]

    await orchestrator.restart("s1")

    assert engine.calls[-1]["milestones_path"] == str(orchestrator.milestones_path("s1"))
    assert registry.get("s1").title == "Friday"
    assert registry.get("s1").state == DetectionState.FINISHED
    assert [c.path for c in ledger.ordered("s1")] == first_clips
    assert set(first_clips) <= set(fs.removed)


# =============================================================================
# Engine lifecycle
# =============================================================================

@pytest.mark.asyncio
async def test_install_and_download_engine(make_orchestrator, store, analytics):
    orchestrator = make_orchestrator(_FakeEngine())

    await orchestrator.install_engine(download_now=True)

    assert store.state.use_ai_highlighter
    assert store.state.highlighter_version == "2.0.0"
    assert store.state.updater_progress == 50
    assert not store.state.is_updater_running
    assert "Installation" in analytics.types()


@pytest.mark.asyncio
async def test_failed_update_records_error(make_orchestrator, store, analytics):
    engine = _FakeEngine()
    engine.update_error = RuntimeError("download failed")
    orchestrator = make_orchestrator(engine)

    await orchestrator.start_updater()

    assert not store.state.is_updater_running
    assert "UpdateError" in analytics.types()


@pytest.mark.asyncio
async def test_uninstall_engine(make_orchestrator, store):
    orchestrator = make_orchestrator(_FakeEngine())
    await orchestrator.install_engine()
    assert store.state.highlighter_version == "0.0.0"

    await orchestrator.uninstall_engine()

    assert not store.state.use_ai_highlighter
    assert store.state.highlighter_version == ""
