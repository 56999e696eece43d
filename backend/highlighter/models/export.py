"""Export and render settings."""
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class ExportStep(str, enum.Enum):
    """Render stage reported by the renderer."""
    AUDIO_MIX = "audio"
    FRAME_RENDER = "frames"


class Orientation(str, enum.Enum):
    """Output orientation."""
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"


@dataclass
class ExportInfo:
    """Process-wide export status and settings."""
    exporting: bool = False
    current_frame: int = 0
    total_frames: int = 0
    step: ExportStep = ExportStep.AUDIO_MIX
    cancel_requested: bool = False
    file: str = ""
    preview_file: str = ""
    exported: bool = False
    error: Optional[str] = None
    fps: int = 30
    resolution: int = 1080
    preset: str = "medium"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exporting": self.exporting,
            "current_frame": self.current_frame,
            "total_frames": self.total_frames,
            "step": self.step.value,
            "cancel_requested": self.cancel_requested,
            "file": self.file,
            "preview_file": self.preview_file,
            "exported": self.exported,
            "error": self.error,
            "fps": self.fps,
            "resolution": self.resolution,
            "preset": self.preset,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExportInfo":
        info = cls()
        for key, value in data.items():
            if key == "step":
                value = ExportStep(value)
            if hasattr(info, key):
                setattr(info, key, value)
        return info


@dataclass
class ExportOptions:
    """Resolved output geometry handed to the renderer."""
    width: int
    height: int
    fps: int
    preset: str
    complex_filter: Optional[str] = None


@dataclass
class TransitionInfo:
    type: str = "fade"
    duration: float = 1.0


@dataclass
class IntroOutro:
    path: str = ""
    duration: Optional[float] = None


@dataclass
class VideoInfo:
    """Intro and outro clips wrapped around horizontal exports."""
    intro: IntroOutro = field(default_factory=IntroOutro)
    outro: IntroOutro = field(default_factory=IntroOutro)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intro": {"path": self.intro.path, "duration": self.intro.duration},
            "outro": {"path": self.outro.path, "duration": self.outro.duration},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VideoInfo":
        return cls(
            intro=IntroOutro(**(data.get("intro") or {})),
            outro=IntroOutro(**(data.get("outro") or {})),
        )


@dataclass
class AudioInfo:
    music_enabled: bool = False
    music_path: str = ""
    music_volume: int = 50
