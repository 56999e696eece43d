"""API routes."""
import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from highlighter.api.schemas import (
    AddClipsRequest,
    AudioUpdate,
    ClipResponse,
    ClipUpdate,
    DetectRequest,
    EnableOnlyRequest,
    ExportRequest,
    ExportSettingsUpdate,
    HealthResponse,
    InstallEngineRequest,
    RecordingSavedRequest,
    RemoveClipRequest,
    RoundDetailsResponse,
    StreamingStatusRequest,
    StreamResponse,
    TaskStartedResponse,
    TransitionUpdate,
    UploadInfoResponse,
    UploadRequest,
    VideoUpdate,
)
from highlighter.errors import UploadError, UploadInProgressError
from highlighter.models.clip import NewClip
from highlighter.models.export import IntroOutro, VideoInfo
from highlighter.models.stream import StreamInfoForDetection
from highlighter.models.upload import UploadPlatform
from highlighter.services.highlighter_service import HighlighterService, StreamingStatus
from highlighter.utils.ffmpeg import check_ffmpeg_available, check_ffprobe_available
from highlighter.workers.task_runner import TaskRunner

logger = logging.getLogger(__name__)

router = APIRouter()


def get_service(request: Request) -> HighlighterService:
    return request.app.state.highlighter


def get_runner(request: Request) -> TaskRunner:
    return request.app.state.task_runner


def _started(runner: TaskRunner, key: str, factory) -> TaskStartedResponse:
    if not runner.start(key, factory):
        raise HTTPException(status_code=409, detail=f"{key} is already running")
    return TaskStartedResponse(started=True, task=key)


# =============================================================================
# Health & State
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check(service: HighlighterService = Depends(get_service)):
    """Check system health and dependencies."""
    ffmpeg_ok = check_ffmpeg_available()
    ffprobe_ok = check_ffprobe_available()

    all_ok = ffmpeg_ok and ffprobe_ok
    message = None
    if not all_ok:
        missing = []
        if not ffmpeg_ok:
            missing.append("ffmpeg")
        if not ffprobe_ok:
            missing.append("ffprobe")
        message = f"Missing dependencies: {', '.join(missing)}"

    return HealthResponse(
        status="ok" if all_ok else "degraded",
        ffmpeg_available=ffmpeg_ok,
        ffprobe_available=ffprobe_ok,
        highlighter_version=service.state.highlighter_version or None,
        message=message,
    )


@router.get("/state")
async def get_state(service: HighlighterService = Depends(get_service)) -> Dict[str, Any]:
    """Full persisted state plus the transient updater status."""
    state = service.state
    return {
        **state.to_snapshot(),
        "error": state.error,
        "updater_progress": state.updater_progress,
        "is_updater_running": state.is_updater_running,
    }


@router.post("/error/dismiss")
async def dismiss_error(service: HighlighterService = Depends(get_service)):
    service.dismiss_error()
    return {"message": "Error dismissed"}


@router.post("/tutorial/dismiss")
async def dismiss_tutorial(service: HighlighterService = Depends(get_service)):
    service.dismiss_tutorial()
    return {"message": "Tutorial dismissed"}


# =============================================================================
# Clips
# =============================================================================

@router.get("/clips", response_model=List[ClipResponse])
async def list_clips(
    stream_id: Optional[str] = Query(None),
    service: HighlighterService = Depends(get_service),
):
    """List clips in stream order, or global order without a stream."""
    clips = await service.ledger.query(stream_id)
    return [clip.to_dict() for clip in clips]


@router.post("/clips", response_model=List[str])
async def add_clips(
    request: AddClipsRequest,
    service: HighlighterService = Depends(get_service),
    runner: TaskRunner = Depends(get_runner),
):
    """Add clip files and start loading them in the background."""
    created = service.ledger.insert(
        [NewClip(path=c.path, start_time=c.start_time, end_time=c.end_time) for c in request.clips],
        request.stream_id,
        request.source,
    )
    runner.start(f"load:{request.stream_id or 'all'}", lambda: service.loader.load(request.stream_id))
    return created


@router.post("/clips/load", response_model=TaskStartedResponse)
async def load_clips(
    stream_id: Optional[str] = Query(None),
    service: HighlighterService = Depends(get_service),
    runner: TaskRunner = Depends(get_runner),
):
    return _started(runner, f"load:{stream_id or 'all'}", lambda: service.loader.load(stream_id))


@router.patch("/clips/{path:path}", response_model=ClipResponse)
async def update_clip(
    path: str,
    update: ClipUpdate,
    service: HighlighterService = Depends(get_service),
):
    """Update enabled state or trims of a clip."""
    if service.ledger.get(path) is None:
        raise HTTPException(status_code=404, detail="Clip not found")

    if update.enabled is not None:
        service.ledger.manually_enable(path, update.enabled, update.stream_id)
    if update.start_trim is not None:
        service.ledger.set_start_trim(path, update.start_trim)
    if update.end_trim is not None:
        service.ledger.set_end_trim(path, update.end_trim)

    return service.ledger.get(path).to_dict()


@router.post("/clips/enable-only")
async def enable_only(request: EnableOnlyRequest, service: HighlighterService = Depends(get_service)):
    """Enable exactly the given clips of a stream."""
    await service.ledger.enable_only(request.paths, request.stream_id)
    return {"message": "Clips updated"}


@router.post("/clips/remove")
async def remove_clip(request: RemoveClipRequest, service: HighlighterService = Depends(get_service)):
    """Remove a clip from a stream, or from the ledger when it has no other stream."""
    if service.ledger.get(request.path) is None:
        raise HTTPException(status_code=404, detail="Clip not found")
    await service.ledger.remove(request.path, request.stream_id, request.delete_from_disk)
    return {"message": "Clip removed"}


# =============================================================================
# Streams & Detection
# =============================================================================

@router.get("/streams", response_model=List[StreamResponse])
async def list_streams(service: HighlighterService = Depends(get_service)):
    """List highlighted streams, newest first."""
    return [stream.to_dict() for stream in service.registry.list()]


@router.post("/streams/detect", response_model=TaskStartedResponse)
async def detect_highlights(
    request: DetectRequest,
    service: HighlighterService = Depends(get_service),
    runner: TaskRunner = Depends(get_runner),
):
    """Start AI detection on a recording."""
    stream_id = request.stream_id or f"{uuid.uuid4()}"
    stream_info = StreamInfoForDetection(id=stream_id, title=request.title, game=request.game)
    return _started(
        runner,
        f"detect:{stream_id}",
        lambda: service.detection.detect(request.file_path, stream_info, request.delay_start),
    )


@router.post("/streams/{stream_id}/cancel")
async def cancel_detection(stream_id: str, service: HighlighterService = Depends(get_service)):
    if not service.detection.cancel(stream_id):
        raise HTTPException(status_code=400, detail="No detection running for this stream")
    return {"message": "Detection cancel requested"}


@router.post("/streams/{stream_id}/restart", response_model=TaskStartedResponse)
async def restart_detection(
    stream_id: str,
    service: HighlighterService = Depends(get_service),
    runner: TaskRunner = Depends(get_runner),
):
    if service.registry.get(stream_id) is None:
        raise HTTPException(status_code=404, detail="Stream not found")
    return _started(runner, f"detect:{stream_id}", lambda: service.detection.restart(stream_id))


@router.delete("/streams/{stream_id}")
async def delete_stream(
    stream_id: str,
    delete_clips: bool = Query(True),
    service: HighlighterService = Depends(get_service),
):
    """Delete a stream. Clips shared with other streams are kept."""
    if service.registry.get(stream_id) is None:
        raise HTTPException(status_code=404, detail="Stream not found")
    await service.registry.remove_stream(stream_id, delete_clips)
    return {"message": "Stream deleted"}


@router.get("/streams/{stream_id}/rounds", response_model=List[RoundDetailsResponse])
async def get_round_details(stream_id: str, service: HighlighterService = Depends(get_service)):
    return service.round_details(stream_id)


# =============================================================================
# AI Highlighter
# =============================================================================

@router.post("/ai-highlighter/install")
async def install_highlighter(
    request: InstallEngineRequest,
    service: HighlighterService = Depends(get_service),
    runner: TaskRunner = Depends(get_runner),
):
    if request.download_now:
        return _started(
            runner,
            "engine:install",
            lambda: service.detection.install_engine(True, request.location, request.game),
        )
    await service.detection.install_engine(False, request.location, request.game)
    return {"message": "AI highlighter enabled"}


@router.post("/ai-highlighter/uninstall")
async def uninstall_highlighter(service: HighlighterService = Depends(get_service)):
    await service.detection.uninstall_engine()
    return {"message": "AI highlighter uninstalled"}


@router.post("/ai-highlighter/toggle")
async def toggle_highlighter(service: HighlighterService = Depends(get_service)):
    service.toggle_ai_highlighter()
    return {"use_ai_highlighter": service.state.use_ai_highlighter}


# =============================================================================
# Export
# =============================================================================

@router.post("/export", response_model=TaskStartedResponse)
async def start_export(
    request: ExportRequest,
    service: HighlighterService = Depends(get_service),
    runner: TaskRunner = Depends(get_runner),
):
    """Render enabled clips to the export (or preview) file."""
    if service.state.export.exporting:
        raise HTTPException(status_code=409, detail="An export is already running")
    return _started(
        runner,
        "export",
        lambda: service.exports.export(request.preview, request.stream_id, request.orientation),
    )


@router.post("/export/cancel")
async def cancel_export(service: HighlighterService = Depends(get_service)):
    service.exports.cancel()
    return {"message": "Export cancel requested"}


@router.patch("/export/settings")
async def update_export_settings(
    update: ExportSettingsUpdate,
    service: HighlighterService = Depends(get_service),
):
    if update.resolution is not None and update.resolution not in (720, 1080):
        raise HTTPException(status_code=400, detail="Resolution must be 720 or 1080")

    if update.file is not None:
        service.exports.set_export_file(update.file)
    if update.fps is not None:
        service.exports.set_fps(update.fps)
    if update.resolution is not None:
        service.exports.set_resolution(update.resolution)
    if update.preset is not None:
        service.exports.set_preset(update.preset)
    return service.state.export.to_dict()


@router.patch("/settings/transition")
async def update_transition(update: TransitionUpdate, service: HighlighterService = Depends(get_service)):
    service.exports.set_transition(update.model_dump(exclude_none=True))
    return {"message": "Transition updated"}


@router.patch("/settings/audio")
async def update_audio(update: AudioUpdate, service: HighlighterService = Depends(get_service)):
    service.exports.set_audio(update.model_dump(exclude_none=True))
    return {"message": "Audio updated"}


@router.put("/settings/video")
async def update_video(update: VideoUpdate, service: HighlighterService = Depends(get_service)):
    service.exports.set_video(VideoInfo(
        intro=IntroOutro(path=update.intro.path, duration=update.intro.duration),
        outro=IntroOutro(path=update.outro.path, duration=update.outro.duration),
    ))
    return {"message": "Video updated"}


# =============================================================================
# Uploads
# =============================================================================

@router.get("/uploads", response_model=List[UploadInfoResponse])
async def list_uploads(
    platform: Optional[UploadPlatform] = Query(None),
    service: HighlighterService = Depends(get_service),
):
    return [info.to_dict() for info in service.uploads.get_upload_info(platform)]


@router.post("/uploads", response_model=TaskStartedResponse)
async def start_upload(
    request: UploadRequest,
    service: HighlighterService = Depends(get_service),
    runner: TaskRunner = Depends(get_runner),
):
    """Upload the exported video to a platform."""
    platform = request.platform
    if service.uploads.is_uploading(platform):
        raise HTTPException(status_code=409, detail=f"Upload to {platform.value} already in progress")

    export = service.state.export
    if not export.exported or not export.file:
        raise HTTPException(status_code=400, detail="Export the video before uploading it")

    options = request.model_dump(exclude={"platform"}, exclude_none=True)

    async def run_upload():
        try:
            await service.uploads.upload(platform, options)
        except UploadInProgressError as e:
            logger.warning(str(e))
        except UploadError as e:
            logger.error(f"Upload to {platform.value} not started: {e}")

    return _started(runner, f"upload:{platform.value}", run_upload)


@router.post("/uploads/{platform}/cancel")
async def cancel_upload(platform: UploadPlatform, service: HighlighterService = Depends(get_service)):
    if not service.uploads.cancel(platform):
        raise HTTPException(status_code=400, detail="No upload running for this platform")
    return {"message": "Upload cancel requested"}


@router.delete("/uploads")
async def clear_uploads(service: HighlighterService = Depends(get_service)):
    service.uploads.clear()
    return {"message": "Uploads cleared"}


# =============================================================================
# Streaming integration
# =============================================================================

@router.post("/streaming/status")
async def streaming_status(request: StreamingStatusRequest, service: HighlighterService = Depends(get_service)):
    """Report a streaming status change. Tells the caller whether to toggle recording."""
    try:
        status = StreamingStatus(request.status)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    toggle = await service.on_streaming_status(status, request.game, request.title)
    return {"toggle_recording": toggle}


@router.post("/streaming/replay-buffer")
async def replay_buffer_saved(request: RecordingSavedRequest, service: HighlighterService = Depends(get_service)):
    service.on_replay_buffer_saved(request.path)
    return {"message": "Replay added"}


@router.post("/streaming/recording")
async def recording_saved(request: RecordingSavedRequest, service: HighlighterService = Depends(get_service)):
    await service.on_recording_saved(request.path)
    return {"recording_path": service.state.temp_recording_info.recording_path}


@router.post("/streaming/notification/action")
async def notification_action(service: HighlighterService = Depends(get_service)):
    service.notification_action()
    return {"message": "Notification acknowledged"}
