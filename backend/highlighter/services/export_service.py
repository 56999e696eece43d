"""Export pipeline: render list, geometry and single-flight rendering."""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from highlighter.config import settings
from highlighter.models.export import ExportOptions, ExportStep, Orientation, VideoInfo
from highlighter.rendering.renderer import EXPORT_ERROR_MESSAGE, RenderJob
from highlighter.rendering.rendering_clip import RenderingClip
from highlighter.services.clip_ledger import ClipLedger
from highlighter.services.clip_loader import ClipLoader
from highlighter.services.commands import (
    SetAudio,
    SetExportInfo,
    SetTransition,
    SetVideo,
    UpdateClip,
)
from highlighter.utils.progress import Throttle
from highlighter.utils.vertical import add_vertical_filter

logger = logging.getLogger(__name__)

NO_CLIPS_MESSAGE = "Please select at least one clip to export a video"

PREVIEW_OPTIONS = {"width": 1280 // 4, "height": 720 // 4, "fps": 30, "preset": "ultrafast"}


class ExportPipeline:
    """Builds the ordered render list and hands it to the renderer."""

    def __init__(
        self,
        ledger: ClipLedger,
        loader: ClipLoader,
        renderer,
        probe,
        analytics,
    ):
        self.ledger = ledger
        self.store = ledger.store
        self.loader = loader
        self.renderer = renderer
        self.probe = probe
        self.analytics = analytics
        self._frame_throttle = Throttle(settings.frame_update_interval)

    @property
    def info(self):
        return self.store.state.export

    # =========================================================================
    # Export
    # =========================================================================

    async def export(
        self,
        preview: bool = False,
        stream_id: Optional[str] = None,
        orientation: Orientation = Orientation.HORIZONTAL,
    ) -> bool:
        """
        Render the enabled clips of a stream (or all clips) to the export file.

        Does nothing while another export runs or while clips are still
        loading.

        Returns:
            True if the render job was dispatched
        """
        if self.info.exporting:
            logger.error("Cannot export until current export operation is finished")
            return False

        await self.loader.load(stream_id)

        if self.ledger.has_unloaded_enabled(stream_id):
            logger.error("Export called while clips are not fully loaded")
            return False

        # Another export may have started while clips were loading
        if self.info.exporting:
            logger.error("Cannot export until current export operation is finished")
            return False

        self.store.apply(SetExportInfo({
            "exporting": True,
            "current_frame": 0,
            "step": ExportStep.AUDIO_MIX,
            "cancel_requested": False,
            "error": None,
        }))

        try:
            rendering_clips = self.build_render_list(stream_id, orientation)
            options = self.resolve_export_options(rendering_clips, preview, orientation)

            await asyncio.gather(*(c.reset(options) for c in rendering_clips))
            for rendering_clip in rendering_clips:
                if rendering_clip.deleted and rendering_clip.path in self.ledger.clips:
                    self.store.apply(UpdateClip(rendering_clip.path, {"deleted": True}))
            rendering_clips = [c for c in rendering_clips if not c.deleted]

            if not any(c.path in self.ledger.clips for c in rendering_clips):
                logger.error("Export called without any clips")
                self.store.apply(SetExportInfo({
                    "exporting": False,
                    "exported": False,
                    "error": NO_CLIPS_MESSAGE,
                }))
                return False

            job = RenderJob(
                rendering_clips=rendering_clips,
                options=options,
                export_info=self.info,
                audio=self.store.state.audio,
                transition=self.store.state.transition,
                output_path=self.info.preview_file if preview else self.info.file,
                preview=preview,
                orientation=orientation,
                use_ai_highlighter=self.store.state.use_ai_highlighter,
                stream_id=stream_id,
            )
            await self.renderer.render(
                job, self._handle_frame, self._set_export_info, self.analytics.record
            )
        except Exception:
            logger.exception("Export failed")
            self.store.apply(SetExportInfo({"exporting": False, "error": EXPORT_ERROR_MESSAGE}))
            return False

        return True

    def build_render_list(
        self,
        stream_id: Optional[str] = None,
        orientation: Orientation = Orientation.HORIZONTAL,
    ) -> List[RenderingClip]:
        """Enabled clips in stream or global order, wrapped by intro and outro."""
        rendering_clips = []
        for clip in self.ledger.ordered(stream_id):
            if not clip.enabled:
                continue
            rendering_clip = self.ledger.rendering_clip(clip.path, self.probe)
            rendering_clip.start_trim = clip.start_trim
            rendering_clip.end_trim = clip.end_trim
            rendering_clips.append(rendering_clip)

        if orientation != Orientation.VERTICAL:
            video = self.store.state.video
            if video.intro.path:
                rendering_clips.insert(0, self._bumper(video.intro.path, video.intro.duration))
            if video.outro.path:
                rendering_clips.append(self._bumper(video.outro.path, video.outro.duration))
        return rendering_clips

    def _bumper(self, path: str, duration: Optional[float]) -> RenderingClip:
        rendering_clip = RenderingClip(path, self.probe, self.ledger.fs)
        rendering_clip.duration = duration
        return rendering_clip

    def resolve_export_options(
        self,
        rendering_clips: List[RenderingClip],
        preview: bool,
        orientation: Orientation,
    ) -> ExportOptions:
        if preview:
            options = ExportOptions(**PREVIEW_OPTIONS)
        else:
            hd = self.info.resolution == 720
            options = ExportOptions(
                width=1280 if hd else 1920,
                height=720 if hd else 1080,
                fps=self.info.fps,
                preset=self.info.preset,
            )

        if orientation == Orientation.VERTICAL:
            add_vertical_filter(self.ledger.clips, rendering_clips, options)
        return options

    def _handle_frame(self, current_frame: int):
        # A late callback must not revive progress of a finished export
        if self.info.exported:
            return
        if not self._frame_throttle.ready():
            return
        self.store.apply(SetExportInfo({"current_frame": current_frame}))

    def _set_export_info(self, changes: Dict[str, Any]):
        self.store.apply(SetExportInfo(changes))

    def cancel(self):
        if not self.info.exporting:
            return
        logger.info("Export cancel requested")
        self.store.apply(SetExportInfo({"cancel_requested": True}))

    # =========================================================================
    # Settings
    # =========================================================================

    def set_export_file(self, file: str):
        self.store.apply(SetExportInfo({"file": file}))

    def set_fps(self, fps: int):
        self.store.apply(SetExportInfo({"fps": fps}))

    def set_resolution(self, resolution: int):
        self.store.apply(SetExportInfo({"resolution": resolution}))

    def set_preset(self, preset: str):
        self.store.apply(SetExportInfo({"preset": preset}))

    def reset_exported(self):
        self.store.apply(SetExportInfo({}))

    def set_transition(self, changes: Dict[str, Any]):
        self.store.apply(SetTransition(changes))

    def set_audio(self, changes: Dict[str, Any]):
        self.store.apply(SetAudio(changes))

    def set_video(self, video: VideoInfo):
        self.store.apply(SetVideo(video))
