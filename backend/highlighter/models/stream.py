"""Highlighted stream records and detection data."""
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from highlighter.models.clip import InputEvent
from highlighter.utils.cancellation import CancellationToken


class DetectionState(str, enum.Enum):
    """AI detection state of a stream."""
    IN_PROGRESS = "detection-in-progress"
    FINISHED = "detection-finished"
    CANCELED_BY_USER = "detection-canceled-by-user"
    ERROR = "error"


class Game(str, enum.Enum):
    """Games the detection engine has models for."""
    FORTNITE = "fortnite"
    WARZONE = "warzone"
    BLACK_OPS_6 = "black_ops_6"
    APEX_LEGENDS = "apex_legends"
    MARVEL_RIVALS = "marvel_rivals"
    WAR_THUNDER = "war_thunder"
    COUNTER_STRIKE_2 = "counter_strike_2"
    PUBG = "pubg"
    VALORANT = "valorant"
    LEAGUE_OF_LEGENDS = "league_of_legends"
    UNSET = "unset"


_GAME_ALIASES = {
    "call of duty: warzone": Game.WARZONE,
    "call of duty: black ops 6": Game.BLACK_OPS_6,
    "apex legends": Game.APEX_LEGENDS,
    "marvel rivals": Game.MARVEL_RIVALS,
    "war thunder": Game.WAR_THUNDER,
    "counter-strike 2": Game.COUNTER_STRIKE_2,
    "pubg: battlegrounds": Game.PUBG,
    "league of legends": Game.LEAGUE_OF_LEGENDS,
}


def normalize_game(name: Optional[str]) -> Optional[Game]:
    """Map a platform game title or stored value to a supported game, if any."""
    if not name:
        return None
    lowered = name.strip().lower()
    if lowered in _GAME_ALIASES:
        return _GAME_ALIASES[lowered]
    for game in Game:
        if game != Game.UNSET and lowered == game.value:
            return game
    return None


@dataclass
class HighlightedStream:
    """A detection session over one recording."""
    id: str
    title: str
    game: str
    date: str
    path: str
    state: DetectionState = DetectionState.IN_PROGRESS
    progress: float = 0.0
    error_code: Optional[int] = None
    # Only set while the detection is running, never persisted
    cancellation_token: Optional[CancellationToken] = field(default=None, compare=False, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "game": self.game,
            "date": self.date,
            "path": self.path,
            "state": {"type": self.state.value, "progress": self.progress},
            "error_code": self.error_code,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HighlightedStream":
        state = data.get("state") or {}
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            game=data.get("game") or Game.UNSET.value,
            date=data.get("date") or "",
            path=data.get("path") or "",
            state=DetectionState(state.get("type", DetectionState.FINISHED.value)),
            progress=float(state.get("progress") or 0.0),
            error_code=data.get("error_code"),
        )


@dataclass
class StreamInfoForDetection:
    """What the caller knows about a stream before detection starts."""
    id: str
    title: Optional[str] = None
    game: str = Game.UNSET.value
    milestones_path: Optional[str] = None


@dataclass
class Highlight:
    """A segment reported by the detection engine."""
    start_time: float
    end_time: float
    inputs: List[InputEvent] = field(default_factory=list)
    score: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Highlight":
        return cls(
            start_time=float(data["start_time"]),
            end_time=float(data["end_time"]),
            inputs=[InputEvent.from_dict(i) for i in data.get("inputs") or []],
            score=float(data.get("score") or 0.0),
            metadata=dict(data.get("metadata") or {}),
        )
