"""Bounded-concurrency hydration of clip metadata."""
import asyncio
import logging
import os
from typing import List, Optional

from highlighter.config import settings
from highlighter.errors import FFmpegError
from highlighter.models.clip import Clip
from highlighter.services.clip_ledger import ClipLedger
from highlighter.services.commands import SetError, UpdateClip

logger = logging.getLogger(__name__)

UNSUPPORTED_FORMAT_MESSAGE = (
    "One or more clips could not be imported because they were not recorded "
    "in a supported file format."
)


def is_supported_file(path: str, supported_types: Optional[List[str]] = None) -> bool:
    """Check the file extension against the supported container formats."""
    supported_types = supported_types or settings.supported_file_types
    extension = os.path.splitext(path)[1].lstrip(".").lower()
    return extension in supported_types


class ClipLoader:
    """Probes duration and builds scrub sprites for clips that are not loaded yet."""

    def __init__(self, ledger: ClipLedger, probe, analytics=None, concurrency: Optional[int] = None):
        self.ledger = ledger
        self.store = ledger.store
        self.probe = probe
        self.analytics = analytics
        self.concurrency = concurrency or settings.load_concurrency

    async def load(self, stream_id: Optional[str] = None):
        """
        Load every clip of the stream (or all clips).

        Clips with an unsupported extension are removed and an error is shown.
        If a file disappears while the batch runs, that clip is removed and
        units that have not started yet are left for the next call.
        """
        clips = await self.ledger.query(stream_id)

        to_load: List[Clip] = []
        for clip in clips:
            if not is_supported_file(clip.path):
                logger.warning(f"Unsupported clip format: {clip.path}")
                await self.ledger.remove(clip.path, stream_id, delete_from_disk=False)
                self.store.apply(SetError(UNSUPPORTED_FORMAT_MESSAGE))
                continue
            self.ledger.rendering_clip(clip.path, self.probe)
            if not clip.loaded:
                to_load.append(clip)

        if not to_load:
            return

        semaphore = asyncio.Semaphore(self.concurrency)
        aborted = asyncio.Event()

        async def hydrate(clip: Clip):
            async with semaphore:
                if aborted.is_set() or clip.path not in self.ledger.clips:
                    return
                await self._load_one(clip, aborted)

        logger.info(f"Loading {len(to_load)} clips with concurrency {self.concurrency}")
        await asyncio.gather(*(hydrate(c) for c in to_load))

    async def _load_one(self, clip: Clip, aborted: asyncio.Event):
        rendering_clip = self.ledger.rendering_clip(clip.path, self.probe)
        try:
            await rendering_clip.init()
        except FFmpegError as e:
            logger.error(f"Failed to load clip {clip.path}: {e}")
            if not self.ledger.fs.exists(clip.path):
                rendering_clip.deleted = True
            else:
                return

        if rendering_clip.deleted:
            logger.info(f"Clip vanished while loading, removing {clip.path}")
            aborted.set()
            await self.ledger.remove(clip.path, delete_from_disk=False)
            return

        self.store.apply(UpdateClip(clip.path, {
            "loaded": True,
            "duration": rendering_clip.duration,
            "scrub_sprite": rendering_clip.scrub_sprite,
            "deleted": rendering_clip.deleted,
        }))

        if self.analytics is not None:
            category = "AIHighlighter" if self.store.state.use_ai_highlighter else "Highlighter"
            self.analytics.record(category, {"type": "ClipImport", "source": clip.source.value})
