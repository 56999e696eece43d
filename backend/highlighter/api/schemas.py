"""Pydantic schemas for API requests and responses."""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from highlighter.models.clip import ClipSource
from highlighter.models.export import Orientation
from highlighter.models.upload import UploadPlatform


# =============================================================================
# Health
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    ffmpeg_available: bool
    ffprobe_available: bool
    highlighter_version: Optional[str] = None
    message: Optional[str] = None


class TaskStartedResponse(BaseModel):
    """A background operation was accepted."""
    started: bool
    task: str


# =============================================================================
# Clip Schemas
# =============================================================================

class NewClipRequest(BaseModel):
    path: str = Field(..., description="Path to the clip file")
    start_time: Optional[float] = None
    end_time: Optional[float] = None


class AddClipsRequest(BaseModel):
    """Request to add clip files."""
    clips: List[NewClipRequest] = Field(..., min_length=1)
    stream_id: Optional[str] = None
    source: ClipSource = ClipSource.MANUAL


class ClipUpdate(BaseModel):
    """Partial update of a clip. Only provided fields change."""
    enabled: Optional[bool] = None
    start_trim: Optional[float] = Field(None, ge=0)
    end_trim: Optional[float] = Field(None, ge=0)
    stream_id: Optional[str] = Field(None, description="Stream the user toggled the clip in")


class EnableOnlyRequest(BaseModel):
    paths: List[str]
    stream_id: Optional[str] = None


class RemoveClipRequest(BaseModel):
    path: str
    stream_id: Optional[str] = None
    delete_from_disk: bool = True


class ClipResponse(BaseModel):
    """Clip response."""
    path: str
    source: str
    global_order_position: int
    enabled: bool
    start_trim: float
    end_trim: float
    loaded: bool
    duration: Optional[float]
    scrub_sprite: Optional[str]
    deleted: bool
    stream_info: Dict[str, Dict[str, Any]]
    ai_info: Optional[Dict[str, Any]]


# =============================================================================
# Stream Schemas
# =============================================================================

class DetectRequest(BaseModel):
    """Request to run AI detection on a recording."""
    file_path: str
    stream_id: Optional[str] = None
    title: Optional[str] = None
    game: str = "unset"
    delay_start: bool = False


class StreamResponse(BaseModel):
    id: str
    title: str
    game: str
    date: str
    path: str
    state: Dict[str, Any]
    error_code: Optional[int] = None


class RoundDetailsResponse(BaseModel):
    round: int
    inputs: List[Dict[str, Any]]
    duration: float
    hype_score: int


class InstallEngineRequest(BaseModel):
    download_now: bool = False
    location: str = "Highlighter-tab"
    game: Optional[str] = None


# =============================================================================
# Export Schemas
# =============================================================================

class ExportRequest(BaseModel):
    preview: bool = False
    stream_id: Optional[str] = None
    orientation: Orientation = Orientation.HORIZONTAL


class ExportSettingsUpdate(BaseModel):
    file: Optional[str] = None
    fps: Optional[int] = Field(None, gt=0, le=120)
    resolution: Optional[int] = Field(None, description="720 or 1080")
    preset: Optional[str] = None


class TransitionUpdate(BaseModel):
    type: Optional[str] = None
    duration: Optional[float] = Field(None, ge=0)


class AudioUpdate(BaseModel):
    music_enabled: Optional[bool] = None
    music_path: Optional[str] = None
    music_volume: Optional[int] = Field(None, ge=0, le=100)


class IntroOutroRequest(BaseModel):
    path: str = ""
    duration: Optional[float] = None


class VideoUpdate(BaseModel):
    intro: IntroOutroRequest = Field(default_factory=IntroOutroRequest)
    outro: IntroOutroRequest = Field(default_factory=IntroOutroRequest)


# =============================================================================
# Upload Schemas
# =============================================================================

class UploadRequest(BaseModel):
    """Request to upload the exported video."""
    platform: UploadPlatform
    title: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    privacy_status: str = Field("private", description="private, public or unlisted")


class UploadInfoResponse(BaseModel):
    platform: str
    uploading: bool
    uploaded_bytes: int
    total_bytes: int
    cancel_requested: bool
    video_id: Optional[str]
    error: bool


# =============================================================================
# Streaming session
# =============================================================================

class StreamingStatusRequest(BaseModel):
    status: str = Field(..., description="live, ending or offline")
    game: Optional[str] = None
    title: Optional[str] = None


class RecordingSavedRequest(BaseModel):
    path: str
