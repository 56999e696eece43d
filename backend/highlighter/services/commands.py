"""State mutations. Every change to HighlighterState is one of these commands."""
from dataclasses import dataclass, field
from typing import Any, Dict, Union

from highlighter.models.clip import Clip
from highlighter.models.export import VideoInfo
from highlighter.models.state import TempRecordingInfo
from highlighter.models.stream import HighlightedStream
from highlighter.models.upload import UploadPlatform


# =============================================================================
# Clips
# =============================================================================

@dataclass(frozen=True)
class AddClip:
    clip: Clip


@dataclass(frozen=True)
class UpdateClip:
    path: str
    changes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RemoveClip:
    path: str


# =============================================================================
# Streams
# =============================================================================

@dataclass(frozen=True)
class AddStream:
    stream: HighlightedStream


@dataclass(frozen=True)
class UpdateStream:
    stream_id: str
    changes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RemoveStream:
    stream_id: str


# =============================================================================
# Export, upload and settings
# =============================================================================

@dataclass(frozen=True)
class SetExportInfo:
    changes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SetUploadInfo:
    platform: UploadPlatform
    changes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ClearUploads:
    pass


@dataclass(frozen=True)
class SetTransition:
    changes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SetAudio:
    changes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SetVideo:
    video: VideoInfo


@dataclass(frozen=True)
class SetError:
    message: str


@dataclass(frozen=True)
class DismissTutorial:
    pass


# =============================================================================
# AI highlighter
# =============================================================================

@dataclass(frozen=True)
class SetUseAiHighlighter:
    enabled: bool


@dataclass(frozen=True)
class SetUpdaterProgress:
    progress: float


@dataclass(frozen=True)
class SetUpdaterState:
    running: bool


@dataclass(frozen=True)
class SetHighlighterVersion:
    version: str


@dataclass(frozen=True)
class SetTempRecordingInfo:
    info: TempRecordingInfo


Command = Union[
    AddClip,
    UpdateClip,
    RemoveClip,
    AddStream,
    UpdateStream,
    RemoveStream,
    SetExportInfo,
    SetUploadInfo,
    ClearUploads,
    SetTransition,
    SetAudio,
    SetVideo,
    SetError,
    DismissTutorial,
    SetUseAiHighlighter,
    SetUpdaterProgress,
    SetUpdaterState,
    SetHighlighterVersion,
    SetTempRecordingInfo,
]
