"""Owner of the highlighter state.

All mutations go through `StateStore.apply`, which runs synchronously (it never
awaits) and schedules a persistence write afterwards. Because everything runs
on one event loop, a command is never interleaved with another command.
"""
import asyncio
import logging
from dataclasses import fields, replace
from typing import Callable, Dict, Optional

from highlighter.config import settings
from highlighter.models.state import SCHEMA_VERSION, HighlighterState
from highlighter.models.upload import UploadInfo
from highlighter.rendering.rendering_clip import RenderingClip
from highlighter.services.commands import (
    AddClip,
    AddStream,
    ClearUploads,
    Command,
    DismissTutorial,
    RemoveClip,
    RemoveStream,
    SetAudio,
    SetError,
    SetExportInfo,
    SetHighlighterVersion,
    SetTempRecordingInfo,
    SetTransition,
    SetUpdaterProgress,
    SetUpdaterState,
    SetUploadInfo,
    SetUseAiHighlighter,
    SetVideo,
    UpdateClip,
    UpdateStream,
)
from highlighter.services.events import EventBus
from highlighter.services.persistence import SnapshotRepository, migrate_snapshot

logger = logging.getLogger(__name__)


def _set_fields(target, changes: dict):
    """Assign known dataclass fields, rejecting unknown keys."""
    known = {f.name for f in fields(target)}
    unknown = set(changes) - known
    if unknown:
        raise ValueError(f"Unknown fields for {type(target).__name__}: {sorted(unknown)}")
    for key, value in changes.items():
        setattr(target, key, value)


class StateStore:
    """Holds HighlighterState, applies commands and persists snapshots."""

    def __init__(
        self,
        repository: Optional[SnapshotRepository] = None,
        namespace: Optional[str] = None,
        state: Optional[HighlighterState] = None,
    ):
        self.state = state or HighlighterState()
        self.events = EventBus()
        # Not serializable, so kept out of state
        self.rendering_clips: Dict[str, RenderingClip] = {}

        self._repository = repository
        self._namespace = namespace or settings.state_namespace
        self._dirty = False
        self._save_task: Optional[asyncio.Task] = None
        self._handlers: Dict[type, Callable] = {
            AddClip: self._add_clip,
            UpdateClip: self._update_clip,
            RemoveClip: self._remove_clip,
            AddStream: self._add_stream,
            UpdateStream: self._update_stream,
            RemoveStream: self._remove_stream,
            SetExportInfo: self._set_export_info,
            SetUploadInfo: self._set_upload_info,
            ClearUploads: self._clear_uploads,
            SetTransition: self._set_transition,
            SetAudio: self._set_audio,
            SetVideo: self._set_video,
            SetError: self._set_error,
            DismissTutorial: self._dismiss_tutorial,
            SetUseAiHighlighter: self._set_use_ai_highlighter,
            SetUpdaterProgress: self._set_updater_progress,
            SetUpdaterState: self._set_updater_state,
            SetHighlighterVersion: self._set_highlighter_version,
            SetTempRecordingInfo: self._set_temp_recording_info,
        }

    # =========================================================================
    # Persistence
    # =========================================================================

    async def load(self) -> bool:
        """
        Load and migrate the persisted snapshot.

        Returns:
            True if a snapshot was found
        """
        if self._repository is None:
            return False

        stored = await self._repository.load(self._namespace)
        if stored is None:
            logger.info("No persisted highlighter state, starting fresh")
            return False

        payload = migrate_snapshot(stored.payload, stored.schema_version)
        self.state = HighlighterState.from_snapshot(payload)
        if stored.schema_version != SCHEMA_VERSION:
            self._dirty = True
            await self.flush()
        logger.info(
            f"Loaded highlighter state: {len(self.state.clips)} clips, "
            f"{len(self.state.streams)} streams"
        )
        return True

    def _schedule_save(self):
        if self._repository is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet, flush() picks the change up later
            return
        if self._save_task is None or self._save_task.done():
            self._save_task = loop.create_task(self._save_pending())

    async def _save_pending(self):
        # Yield once so a burst of commands results in a single write
        await asyncio.sleep(0)
        while self._dirty:
            self._dirty = False
            try:
                await self._repository.save(self._namespace, self.state.to_snapshot())
            except Exception:
                logger.exception("Failed to persist highlighter state")
                self._dirty = True
                return

    async def flush(self):
        """Wait until all applied commands are persisted."""
        if self._save_task is not None and not self._save_task.done():
            await self._save_task
        if self._dirty and self._repository is not None:
            await self._save_pending()

    # =========================================================================
    # Commands
    # =========================================================================

    def apply(self, command: Command):
        """Apply one command to the state and schedule a persistence write."""
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"Unknown command: {type(command).__name__}")
        handler(command)
        self._dirty = True
        self._schedule_save()

    def _add_clip(self, command: AddClip):
        self.state.clips[command.clip.path] = command.clip
        self.state.export.exported = False

    def _update_clip(self, command: UpdateClip):
        clip = self.state.clips.get(command.path)
        if clip is None:
            logger.debug(f"Ignoring update for removed clip {command.path}")
            return
        _set_fields(clip, command.changes)
        self.state.export.exported = False

    def _remove_clip(self, command: RemoveClip):
        self.state.clips.pop(command.path, None)
        self.state.export.exported = False

    def _add_stream(self, command: AddStream):
        self.state.streams[command.stream.id] = command.stream

    def _update_stream(self, command: UpdateStream):
        stream = self.state.streams.get(command.stream_id)
        if stream is None:
            logger.debug(f"Ignoring update for removed stream {command.stream_id}")
            return
        _set_fields(stream, command.changes)

    def _remove_stream(self, command: RemoveStream):
        self.state.streams.pop(command.stream_id, None)

    def _set_export_info(self, command: SetExportInfo):
        _set_fields(self.state.export, {"exported": False, **command.changes})

    def _set_upload_info(self, command: SetUploadInfo):
        info = self.state.uploads.get(command.platform)
        if info is None:
            info = UploadInfo(platform=command.platform)
            self.state.uploads[command.platform] = info
        _set_fields(info, command.changes)

    def _clear_uploads(self, command: ClearUploads):
        self.state.uploads = {}

    def _set_transition(self, command: SetTransition):
        self.state.transition = replace(self.state.transition, **command.changes)
        self.state.export.exported = False

    def _set_audio(self, command: SetAudio):
        self.state.audio = replace(self.state.audio, **command.changes)
        self.state.export.exported = False

    def _set_video(self, command: SetVideo):
        self.state.video = command.video
        self.state.export.exported = False

    def _set_error(self, command: SetError):
        self.state.error = command.message

    def _dismiss_tutorial(self, command: DismissTutorial):
        self.state.dismissed_tutorial = True

    def _set_use_ai_highlighter(self, command: SetUseAiHighlighter):
        self.state.use_ai_highlighter = command.enabled

    def _set_updater_progress(self, command: SetUpdaterProgress):
        self.state.updater_progress = command.progress

    def _set_updater_state(self, command: SetUpdaterState):
        self.state.is_updater_running = command.running

    def _set_highlighter_version(self, command: SetHighlighterVersion):
        self.state.highlighter_version = command.version

    def _set_temp_recording_info(self, command: SetTempRecordingInfo):
        self.state.temp_recording_info = command.info
