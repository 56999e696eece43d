"""Clip records kept in the highlighter state."""
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class ClipSource(str, enum.Enum):
    """Where a clip came from."""
    MANUAL = "Manual"
    REPLAY_BUFFER = "ReplayBuffer"
    AI_CLIP = "AiClip"


@dataclass
class StreamAssociation:
    """Position and timing of a clip inside one stream."""
    order_position: int
    initial_start_time: Optional[float] = None
    initial_end_time: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_position": self.order_position,
            "initial_start_time": self.initial_start_time,
            "initial_end_time": self.initial_end_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StreamAssociation":
        return cls(
            order_position=int(data.get("order_position", 0)),
            initial_start_time=data.get("initial_start_time"),
            initial_end_time=data.get("initial_end_time"),
        )


@dataclass
class InputEvent:
    """A single detector input (kill, victory, ...) inside a highlight."""
    type: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "metadata": dict(self.metadata)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InputEvent":
        return cls(type=data.get("type", "unknown"), metadata=dict(data.get("metadata") or {}))


@dataclass
class AiClipInfo:
    """Detection details attached to AI generated clips."""
    inputs: List[InputEvent] = field(default_factory=list)
    score: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def round(self) -> Optional[int]:
        value = self.metadata.get("round")
        return int(value) if value is not None else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inputs": [i.to_dict() for i in self.inputs],
            "score": self.score,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AiClipInfo":
        return cls(
            inputs=[InputEvent.from_dict(i) for i in data.get("inputs") or []],
            score=float(data.get("score") or 0.0),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class Clip:
    """A video file on disk plus its trim, order and stream membership."""
    path: str
    source: ClipSource
    global_order_position: int = 0
    enabled: bool = True
    start_trim: float = 0.0
    end_trim: float = 0.0
    loaded: bool = False
    duration: Optional[float] = None
    scrub_sprite: Optional[str] = None
    deleted: bool = False
    stream_info: Dict[str, StreamAssociation] = field(default_factory=dict)
    ai_info: Optional[AiClipInfo] = None

    @property
    def is_ai_clip(self) -> bool:
        return self.source == ClipSource.AI_CLIP and self.ai_info is not None

    def in_stream(self, stream_id: Optional[str]) -> bool:
        """True when no stream filter is given or the clip belongs to the stream."""
        if stream_id is None:
            return True
        return stream_id in self.stream_info

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "path": self.path,
            "source": self.source.value,
            "global_order_position": self.global_order_position,
            "enabled": self.enabled,
            "start_trim": self.start_trim,
            "end_trim": self.end_trim,
            "loaded": self.loaded,
            "duration": self.duration,
            "scrub_sprite": self.scrub_sprite,
            "deleted": self.deleted,
            "stream_info": {sid: a.to_dict() for sid, a in self.stream_info.items()},
            "ai_info": self.ai_info.to_dict() if self.ai_info else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Clip":
        ai_info = data.get("ai_info")
        return cls(
            path=data["path"],
            source=ClipSource(data.get("source", ClipSource.MANUAL.value)),
            global_order_position=int(data.get("global_order_position", 0)),
            enabled=bool(data.get("enabled", True)),
            start_trim=float(data.get("start_trim") or 0.0),
            end_trim=float(data.get("end_trim") or 0.0),
            loaded=bool(data.get("loaded", False)),
            duration=data.get("duration"),
            scrub_sprite=data.get("scrub_sprite"),
            deleted=bool(data.get("deleted", False)),
            stream_info={
                sid: StreamAssociation.from_dict(a)
                for sid, a in (data.get("stream_info") or {}).items()
            },
            ai_info=AiClipInfo.from_dict(ai_info) if ai_info else None,
        )


@dataclass
class NewClip:
    """A file handed to the ledger by the user or the replay buffer."""
    path: str
    start_time: Optional[float] = None
    end_time: Optional[float] = None


@dataclass
class NewAiClip:
    """A clip file cut from a detected highlight."""
    path: str
    start_time: float
    end_time: float
    start_trim: float
    end_trim: float
    ai_info: AiClipInfo
