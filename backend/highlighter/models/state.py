"""Aggregate highlighter state and its persisted snapshot shape."""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from highlighter.models.clip import Clip
from highlighter.models.export import AudioInfo, ExportInfo, TransitionInfo, VideoInfo
from highlighter.models.stream import HighlightedStream
from highlighter.models.upload import UploadInfo, UploadPlatform

# Bump together with a new step in services.persistence.MIGRATIONS
SCHEMA_VERSION = 2


@dataclass
class TempRecordingInfo:
    """Recording waiting for the user to start detection on it."""
    recording_path: Optional[str] = None
    stream_info: Optional[Dict[str, Any]] = None
    source: Optional[str] = None


@dataclass
class HighlighterState:
    """Everything the highlighter owns. Mutated only through StateStore.apply."""
    clips: Dict[str, Clip] = field(default_factory=dict)
    streams: Dict[str, HighlightedStream] = field(default_factory=dict)
    export: ExportInfo = field(default_factory=ExportInfo)
    uploads: Dict[UploadPlatform, UploadInfo] = field(default_factory=dict)
    transition: TransitionInfo = field(default_factory=TransitionInfo)
    video: VideoInfo = field(default_factory=VideoInfo)
    audio: AudioInfo = field(default_factory=AudioInfo)
    use_ai_highlighter: bool = False
    highlighter_version: str = ""
    temp_recording_info: TempRecordingInfo = field(default_factory=TempRecordingInfo)
    dismissed_tutorial: bool = False
    error: str = ""
    # Transient, not persisted
    updater_progress: float = 0.0
    is_updater_running: bool = False

    @property
    def clip_list(self) -> List[Clip]:
        return list(self.clips.values())

    def to_snapshot(self) -> Dict[str, Any]:
        """Serialize the persisted subset of the state."""
        return {
            "clips": {path: clip.to_dict() for path, clip in self.clips.items()},
            "streams": {sid: stream.to_dict() for sid, stream in self.streams.items()},
            "export": self.export.to_dict(),
            "uploads": [info.to_dict() for info in self.uploads.values()],
            "transition": asdict(self.transition),
            "video": self.video.to_dict(),
            "audio": asdict(self.audio),
            "use_ai_highlighter": self.use_ai_highlighter,
            "highlighter_version": self.highlighter_version,
            "temp_recording_info": asdict(self.temp_recording_info),
            "dismissed_tutorial": self.dismissed_tutorial,
        }

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "HighlighterState":
        """Build state from a snapshot already migrated to SCHEMA_VERSION."""
        uploads = [UploadInfo.from_dict(u) for u in data.get("uploads") or []]
        return cls(
            clips={path: Clip.from_dict(c) for path, c in (data.get("clips") or {}).items()},
            streams={
                sid: HighlightedStream.from_dict(s)
                for sid, s in (data.get("streams") or {}).items()
            },
            export=ExportInfo.from_dict(data.get("export") or {}),
            uploads={u.platform: u for u in uploads},
            transition=TransitionInfo(**(data.get("transition") or {})),
            video=VideoInfo.from_dict(data.get("video") or {}),
            audio=AudioInfo(**(data.get("audio") or {})),
            use_ai_highlighter=bool(data.get("use_ai_highlighter", False)),
            highlighter_version=data.get("highlighter_version") or "",
            temp_recording_info=TempRecordingInfo(**(data.get("temp_recording_info") or {})),
            dismissed_tutorial=bool(data.get("dismissed_tutorial", False)),
        )
