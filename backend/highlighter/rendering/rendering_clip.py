"""In-memory handle for a clip while it is being loaded or rendered."""
import logging
import math
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from highlighter.config import settings
from highlighter.models.export import ExportOptions

logger = logging.getLogger(__name__)


class RenderingClip:
    """
    Ephemeral view of a clip file used by the loader and the renderer.

    Never persisted. The ledger keeps one per clip path and discards it when
    the clip is removed.
    """

    def __init__(self, path: str, probe, fs, sprite_dir: Optional[Path] = None):
        self.path = path
        self._probe = probe
        self._fs = fs
        self._sprite_dir = Path(sprite_dir or settings.scrub_sprite_dir)

        self.start_trim: float = 0.0
        self.end_trim: float = 0.0
        self.duration: Optional[float] = None
        self.scrub_sprite: Optional[str] = None
        self.deleted = False
        # Unknown until the first export; silence is generated for clips without audio
        self.has_audio: Optional[bool] = None
        self.options: Optional[ExportOptions] = None
        # Vertical exports only: {"x", "y", "width", "height"} in source pixels
        self.crop: Optional[Dict[str, Any]] = None
        self.metadata: Dict[str, Any] = {}

    async def init(self):
        """Probe the duration and build the scrub sprite."""
        if not self._fs.exists(self.path):
            self.deleted = True
            return

        self.duration = await self._probe.get_duration(self.path)
        sprite_path = self._sprite_dir / f"{uuid.uuid4().hex}.jpg"
        self.scrub_sprite = await self._probe.create_scrub_sprite(
            self.path, str(sprite_path), self.duration
        )

    async def reset(self, options: ExportOptions):
        """Prepare for a new render pass with the given output options."""
        self.options = options
        if not self._fs.exists(self.path):
            self.deleted = True
            return
        self.deleted = False
        if self.duration is None:
            self.duration = await self._probe.get_duration(self.path)
        if self.has_audio is None:
            self.has_audio = await self._probe.has_audio(self.path)

    @property
    def trimmed_duration(self) -> float:
        if self.duration is None:
            return 0.0
        return max(0.0, self.duration - self.start_trim - self.end_trim)

    def frame_count(self, fps: int) -> int:
        return int(math.ceil(self.trimmed_duration * fps))
