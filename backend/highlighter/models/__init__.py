# Models module
from highlighter.models.snapshot import StateSnapshot
from highlighter.models.clip import Clip, ClipSource, StreamAssociation, AiClipInfo, InputEvent
from highlighter.models.stream import HighlightedStream, DetectionState, Game
from highlighter.models.export import ExportInfo, ExportStep, Orientation
from highlighter.models.upload import UploadInfo, UploadPlatform
from highlighter.models.state import HighlighterState

__all__ = [
    "StateSnapshot",
    "Clip",
    "ClipSource",
    "StreamAssociation",
    "AiClipInfo",
    "InputEvent",
    "HighlightedStream",
    "DetectionState",
    "Game",
    "ExportInfo",
    "ExportStep",
    "Orientation",
    "UploadInfo",
    "UploadPlatform",
    "HighlighterState",
]
