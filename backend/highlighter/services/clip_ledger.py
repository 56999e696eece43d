"""Clip ledger: the clip records and their global and per-stream orderings."""
import errno
import logging
import os
from dataclasses import replace
from typing import Dict, List, Optional

from highlighter.models.clip import Clip, ClipSource, NewAiClip, NewClip, StreamAssociation
from highlighter.rendering.rendering_clip import RenderingClip
from highlighter.services.commands import AddClip, RemoveClip, RemoveStream, UpdateClip
from highlighter.services.events import HighlighterEvent
from highlighter.services.state_store import StateStore

logger = logging.getLogger(__name__)

DELETE_FAILED_MESSAGE = (
    "At least one clip could not be deleted from your system. Please delete it manually."
)

# errno values that mean "someone else is holding the file"
_LOCKED_ERRNOS = {errno.EBUSY, errno.EACCES, errno.EPERM}


class ClipLedger:
    """
    Owns every clip record and keeps both orderings dense.

    Global positions form 0..N-1 over all clips. For each stream the
    positions of its associated clips form 0..M-1. Every operation that
    changes membership re-establishes both before returning control to the
    event loop.
    """

    def __init__(self, store: StateStore, fs, analytics=None):
        self.store = store
        self.fs = fs
        self.analytics = analytics

    @property
    def clips(self) -> Dict[str, Clip]:
        return self.store.state.clips

    def get(self, path: str) -> Optional[Clip]:
        return self.clips.get(path)

    # =========================================================================
    # Ordering
    # =========================================================================

    def ordered(self, stream_id: Optional[str] = None) -> List[Clip]:
        """Clips in global order, or in the stream's order when a stream is given."""
        if stream_id is None:
            return sorted(self.clips.values(), key=lambda c: c.global_order_position)
        members = [c for c in self.clips.values() if stream_id in c.stream_info]
        return sorted(members, key=lambda c: c.stream_info[stream_id].order_position)

    def _stream_ids(self) -> List[str]:
        ids = []
        for clip in self.clips.values():
            for stream_id in clip.stream_info:
                if stream_id not in ids:
                    ids.append(stream_id)
        return ids

    def _set_stream_position(self, clip: Clip, stream_id: str, position: int):
        association = clip.stream_info[stream_id]
        if association.order_position == position:
            return
        stream_info = dict(clip.stream_info)
        stream_info[stream_id] = replace(association, order_position=position)
        self.store.apply(UpdateClip(clip.path, {"stream_info": stream_info}))

    def _compact(self):
        """Renumber both orderings to dense ranges, preserving relative order."""
        for position, clip in enumerate(self.ordered()):
            if clip.global_order_position != position:
                self.store.apply(UpdateClip(clip.path, {"global_order_position": position}))
        for stream_id in self._stream_ids():
            for position, clip in enumerate(self.ordered(stream_id)):
                self._set_stream_position(clip, stream_id, position)

    def reorder_by_start_time(self, stream_id: str):
        """
        Rank a stream's clips by their start time in the recording.

        Clips without a start time sort as 0. Ties keep their current order.
        """
        members = self.ordered(stream_id)
        members.sort(key=lambda c: c.stream_info[stream_id].initial_start_time or 0)
        for position, clip in enumerate(members):
            self._set_stream_position(clip, stream_id, position)

    # =========================================================================
    # Insert
    # =========================================================================

    def insert(
        self,
        new_clips: List[NewClip],
        stream_id: Optional[str] = None,
        source: ClipSource = ClipSource.MANUAL,
    ) -> List[str]:
        """
        Add clip files to the ledger.

        Manual clips are placed in front of everything already present, in
        batch order. Replay buffer clips are appended. A path that is already
        known only gains the stream association.

        Args:
            new_clips: Files to add
            stream_id: Stream the clips belong to, if any
            source: Manual or ReplayBuffer

        Returns:
            Paths of the records that were created
        """
        created: List[NewClip] = []
        joined: List[NewClip] = []
        seen = set()
        for new_clip in new_clips:
            if new_clip.path in seen:
                continue
            seen.add(new_clip.path)
            existing = self.clips.get(new_clip.path)
            if existing is None:
                created.append(new_clip)
                if stream_id is not None:
                    joined.append(new_clip)
            elif stream_id is not None and stream_id not in existing.stream_info:
                joined.append(new_clip)

        prepend = source == ClipSource.MANUAL
        clip_count = len(self.clips)
        stream_members = self.ordered(stream_id) if stream_id is not None else []

        if prepend and created:
            for clip in self.ordered():
                self.store.apply(UpdateClip(
                    clip.path, {"global_order_position": clip.global_order_position + len(created)}
                ))
        if prepend and joined:
            for clip in stream_members:
                self._set_stream_position(
                    clip, stream_id, clip.stream_info[stream_id].order_position + len(joined)
                )

        stream_offset = 0 if prepend else len(stream_members)
        stream_positions = {c.path: stream_offset + i for i, c in enumerate(joined)}

        for i, new_clip in enumerate(created):
            stream_info = {}
            if stream_id is not None:
                stream_info[stream_id] = StreamAssociation(
                    order_position=stream_positions[new_clip.path],
                    initial_start_time=new_clip.start_time,
                    initial_end_time=new_clip.end_time,
                )
            self.store.apply(AddClip(Clip(
                path=new_clip.path,
                source=source,
                global_order_position=i if prepend else clip_count + i,
                stream_info=stream_info,
            )))

        for new_clip in joined:
            existing = self.clips[new_clip.path]
            if stream_id in existing.stream_info:
                continue
            stream_info = dict(existing.stream_info)
            stream_info[stream_id] = StreamAssociation(
                order_position=stream_positions[new_clip.path],
                initial_start_time=new_clip.start_time,
                initial_end_time=new_clip.end_time,
            )
            self.store.apply(UpdateClip(existing.path, {"stream_info": stream_info}))

        if created or joined:
            logger.info(
                f"Inserted {len(created)} new {source.value} clips"
                + (f" into stream {stream_id}" if stream_id else "")
            )
        return [c.path for c in created]

    def insert_ai_clips(self, new_clips: List[NewAiClip], stream_id: str) -> List[str]:
        """Append detected clips to both orderings, then sort the stream by start time."""
        clip_count = len(self.clips)
        stream_count = len(self.ordered(stream_id))
        created = []
        for new_clip in new_clips:
            if new_clip.path in self.clips:
                logger.debug(f"Skipping known AI clip {new_clip.path}")
                continue
            offset = len(created)
            self.store.apply(AddClip(Clip(
                path=new_clip.path,
                source=ClipSource.AI_CLIP,
                global_order_position=clip_count + offset,
                start_trim=new_clip.start_trim,
                end_trim=new_clip.end_trim,
                stream_info={
                    stream_id: StreamAssociation(
                        order_position=stream_count + offset,
                        initial_start_time=new_clip.start_time,
                        initial_end_time=new_clip.end_time,
                    )
                },
                ai_info=new_clip.ai_info,
            )))
            created.append(new_clip.path)

        self.reorder_by_start_time(stream_id)
        logger.info(f"Inserted {len(created)} AI clips into stream {stream_id}")
        return created

    # =========================================================================
    # Remove
    # =========================================================================

    async def remove(
        self,
        path: str,
        stream_id: Optional[str] = None,
        delete_from_disk: bool = True,
    ):
        """
        Remove a clip, or only its association with one stream.

        The state is fully updated before any file is touched, so readers
        never observe a half removed clip. Disk cleanup is best effort.
        """
        clip = self.clips.get(path)
        if clip is None:
            logger.debug(f"Clip not found for path: {path}")
            return

        detach_only = (
            stream_id is not None
            and len(clip.stream_info) > 1
            and self.fs.exists(path)
        )

        if detach_only:
            stream_info = dict(clip.stream_info)
            stream_info.pop(stream_id, None)
            self.store.apply(UpdateClip(path, {"stream_info": stream_info}))
        else:
            self.store.apply(RemoveClip(path))
            self.store.rendering_clips.pop(path, None)

        affected = [stream_id] if stream_id is not None else list(clip.stream_info)
        self._prune_streams(affected)
        self._compact()

        if detach_only:
            return

        if clip.scrub_sprite:
            await self._remove_scrub_sprite(clip.scrub_sprite)

        if delete_from_disk:
            await self._delete_file(path, stream_id)

    def _prune_streams(self, stream_ids: List[str]):
        for sid in stream_ids:
            if sid not in self.store.state.streams:
                continue
            if not any(sid in c.stream_info for c in self.clips.values()):
                logger.info(f"Removing stream {sid}, no clips left")
                self.store.apply(RemoveStream(sid))

    async def _remove_scrub_sprite(self, sprite_path: str):
        try:
            await self.fs.remove(sprite_path)
        except OSError as e:
            logger.warning(f"Could not remove scrub sprite {sprite_path}: {e}")

    async def _delete_file(self, path: str, stream_id: Optional[str]):
        try:
            await self.fs.unlink(path)
            folder = os.path.dirname(path)
            if folder and not await self.fs.listdir(folder):
                await self.fs.rmdir(folder)
        except OSError as e:
            logger.error(f"Error deleting clip or folder {path}: {e}")
            if e.errno in _LOCKED_ERRNOS:
                self.store.events.emit(
                    HighlighterEvent.DELETE_FAILED, path=path, message=DELETE_FAILED_MESSAGE
                )
            return

        if not self.ordered(stream_id):
            view = "stream" if stream_id else "settings"
            self.store.events.emit(HighlighterEvent.NAVIGATE, view=view)

    # =========================================================================
    # Query
    # =========================================================================

    async def query(self, stream_id: Optional[str] = None) -> List[Clip]:
        """
        Ordered clips whose files exist on disk.

        Clips whose file vanished are removed from the ledger as a side
        effect. Safe to call concurrently, a clip is only removed once.
        """
        result = []
        for clip in self.ordered(stream_id):
            if self.fs.exists(clip.path):
                result.append(clip)
                continue
            logger.info(f"Clip file missing, removing {clip.path}")
            await self.remove(clip.path, delete_from_disk=False)
        # Removals above may have renumbered positions
        if stream_id is None:
            result.sort(key=lambda c: c.global_order_position)
        else:
            result = [c for c in result if stream_id in c.stream_info]
            result.sort(key=lambda c: c.stream_info[stream_id].order_position)
        return [c for c in result if c.path in self.clips]

    def all_loaded(self, stream_id: Optional[str] = None) -> bool:
        return all(c.loaded for c in self.ordered(stream_id) if self.fs.exists(c.path))

    def has_unloaded_enabled(self, stream_id: Optional[str] = None) -> bool:
        return any(c.enabled and not c.loaded for c in self.ordered(stream_id))

    # =========================================================================
    # Field updates
    # =========================================================================

    def set_enabled(self, path: str, enabled: bool):
        self.store.apply(UpdateClip(path, {"enabled": enabled}))

    def set_start_trim(self, path: str, trim: float):
        self.store.apply(UpdateClip(path, {"start_trim": max(0.0, trim)}))

    def set_end_trim(self, path: str, trim: float):
        self.store.apply(UpdateClip(path, {"end_trim": max(0.0, trim)}))

    def manually_enable(self, path: str, enabled: bool, stream_id: Optional[str] = None):
        """Toggle a clip on behalf of the user and record the choice."""
        clip = self.clips.get(path)
        inputs = None
        score = None
        if clip is not None and clip.is_ai_clip:
            inputs = [i.type for i in clip.ai_info.inputs]
            score = clip.ai_info.score

        if self.analytics is not None:
            category = "AIHighlighter" if self.store.state.use_ai_highlighter else "Highlighter"
            self.analytics.record(category, {
                "type": "ManualSelectUnselect",
                "selected": enabled,
                "events": inputs,
                "score": score,
                "streamId": stream_id,
            })

        self.set_enabled(path, enabled)

    async def enable_only(self, paths: List[str], stream_id: Optional[str] = None):
        """Disable the given clips, then re-enable those that still exist."""
        for path in paths:
            self.set_enabled(path, False)
        existing = {c.path for c in await self.query(stream_id)}
        for path in paths:
            if path in existing:
                self.set_enabled(path, True)

    def rendering_clip(self, path: str, probe) -> RenderingClip:
        """Get or create the in-memory rendering handle for a clip."""
        rendering_clip = self.store.rendering_clips.get(path)
        if rendering_clip is None:
            rendering_clip = RenderingClip(path, probe, self.fs)
            self.store.rendering_clips[path] = rendering_clip
        return rendering_clip
