"""Highlighter facade: wires the components together and runs startup recovery."""
import enum
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from highlighter.config import settings
from highlighter.errors import FFmpegError
from highlighter.models.clip import ClipSource, NewClip
from highlighter.models.state import HighlighterState, TempRecordingInfo
from highlighter.models.stream import StreamInfoForDetection, normalize_game
from highlighter.models.upload import UploadPlatform
from highlighter.rendering.renderer import FFmpegRenderer
from highlighter.services.analytics import HttpAnalytics, LoggingAnalytics
from highlighter.services.clip_ledger import ClipLedger
from highlighter.services.clip_loader import ClipLoader
from highlighter.services.commands import (
    DismissTutorial,
    SetError,
    SetExportInfo,
    SetTempRecordingInfo,
    UpdateClip,
)
from highlighter.services.detection_service import DetectionOrchestrator, round_details
from highlighter.services.events import EventBus, HighlighterEvent
from highlighter.services.export_service import ExportPipeline
from highlighter.services.persistence import SnapshotRepository
from highlighter.services.state_store import StateStore
from highlighter.services.stream_registry import StreamRegistry
from highlighter.services.upload_service import UploadManager
from highlighter.services.uploaders import StorageUploader, YouTubeUploader
from highlighter.utils.ffmpeg import FFmpegMediaProbe
from highlighter.utils.filesystem import LocalFileSystem
from highlighter.utils.highlighter_engine import BinaryHighlighterEngine

logger = logging.getLogger(__name__)

REPLAY_NOTIFICATION_MESSAGE = (
    "Edit your replays with Highlighter, a free editor built in to your streaming app."
)


class StreamingStatus(str, enum.Enum):
    """Streaming states reported by the broadcasting side."""
    LIVE = "live"
    ENDING = "ending"
    OFFLINE = "offline"


@dataclass
class Collaborators:
    """External systems the highlighter talks to."""
    repository: Optional[SnapshotRepository]
    fs: Any
    probe: Any
    engine: Any
    renderer: Any
    uploaders: Dict[UploadPlatform, Any]
    analytics: Any
    user_id: str = "local"

    @classmethod
    def default(
        cls,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        user_id: str = "local",
    ) -> "Collaborators":
        """Production adapters: SQLite, local disk, ffmpeg, the engine binary and HTTP uploads."""
        repository = SnapshotRepository(session_maker) if session_maker is not None else None
        storage = StorageUploader()
        analytics = HttpAnalytics(user_id=user_id) if settings.analytics_url else LoggingAnalytics()
        return cls(
            repository=repository,
            fs=LocalFileSystem(),
            probe=FFmpegMediaProbe(),
            engine=BinaryHighlighterEngine(),
            renderer=FFmpegRenderer(),
            uploaders={
                UploadPlatform.YOUTUBE: YouTubeUploader(),
                UploadPlatform.CROSSCLIP: storage,
                UploadPlatform.TYPESTUDIO: storage,
                UploadPlatform.CLIPCHAMP: storage,
            },
            analytics=analytics,
            user_id=user_id,
        )


@dataclass
class _RecordingSession:
    """What is known about the stream currently being recorded for detection."""
    stream_info: Optional[StreamInfoForDetection] = None
    started_at: float = field(default_factory=time.monotonic)
    stream_started: bool = False
    recording_in_progress: bool = False


class HighlighterService:
    """Entry point used by the API and by the streaming integration."""

    def __init__(self, collaborators: Collaborators):
        self.collaborators = collaborators
        self.fs = collaborators.fs
        self.probe = collaborators.probe
        self.analytics = collaborators.analytics

        self.store = StateStore(repository=collaborators.repository)
        self.ledger = ClipLedger(self.store, self.fs, self.analytics)
        self.registry = StreamRegistry(self.store, self.ledger)
        self.loader = ClipLoader(self.ledger, self.probe, self.analytics)
        self.detection = DetectionOrchestrator(
            registry=self.registry,
            ledger=self.ledger,
            loader=self.loader,
            engine=collaborators.engine,
            probe=self.probe,
            fs=self.fs,
            analytics=self.analytics,
            user_id=collaborators.user_id,
        )
        self.exports = ExportPipeline(
            self.ledger, self.loader, collaborators.renderer, self.probe, self.analytics
        )
        self.uploads = UploadManager(self.store, collaborators.uploaders, self.analytics)

        self._session = _RecordingSession()
        self._notification_dismissed = False

    @property
    def state(self) -> HighlighterState:
        return self.store.state

    @property
    def events(self) -> EventBus:
        return self.store.events

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def init(self):
        """
        Load persisted state and repair what the previous run left behind.

        Clips whose files are gone are dropped, an interrupted export is
        reset, interrupted detections become canceled and every clip is
        marked for reloading. Running this twice has the same result as once.
        """
        await self.store.load()

        for clip in list(self.state.clips.values()):
            if not self.fs.exists(clip.path):
                await self.ledger.remove(clip.path, delete_from_disk=False)

        if self.state.export.exporting:
            self.store.apply(SetExportInfo({
                "exporting": False,
                "error": None,
                "cancel_requested": False,
            }))

        self.registry.recover_interrupted()

        for clip in list(self.state.clips.values()):
            if clip.loaded:
                self.store.apply(UpdateClip(clip.path, {"loaded": False}))

        if not self.state.export.file:
            self.exports.set_export_file(str(settings.export_file))
        if not self.state.export.preview_file:
            self.store.apply(SetExportInfo({"preview_file": str(settings.preview_file)}))

        await self.store.flush()
        logger.info("Highlighter initialized")

    async def shutdown(self):
        for stream in self.registry.list():
            if stream.cancellation_token is not None:
                stream.cancellation_token.cancel()
        await self.store.flush()
        close = getattr(self.analytics, "close", None)
        if close is not None:
            await close()

    # =========================================================================
    # Settings
    # =========================================================================

    def dismiss_error(self):
        self.store.apply(SetError(""))

    def dismiss_tutorial(self):
        self.store.apply(DismissTutorial())

    def toggle_ai_highlighter(self):
        self.detection.set_ai_highlighter(not self.state.use_ai_highlighter)

    def set_temp_recording_info(self, info: TempRecordingInfo):
        self.store.apply(SetTempRecordingInfo(info))

    def round_details(self, stream_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return round_details(self.ledger.ordered(stream_id))

    def _analytics_category(self) -> str:
        return "AIHighlighter" if self.state.use_ai_highlighter else "Highlighter"

    # =========================================================================
    # Streaming session hooks
    # =========================================================================

    def on_replay_buffer_saved(self, path: str):
        """Add a replay buffer file, timed relative to the running AI recording."""
        stream_info = self._session.stream_info
        stream_id = stream_info.id if stream_info else None

        end_time = None
        start_time = 0.0
        if stream_id:
            end_time = float(int(time.monotonic() - self._session.started_at))
            start_time = max(0.0, end_time - settings.replay_buffer_duration)

        self.ledger.insert(
            [NewClip(path=path, start_time=start_time, end_time=end_time)],
            stream_id,
            ClipSource.REPLAY_BUFFER,
        )

    async def on_streaming_status(
        self,
        status: StreamingStatus,
        game: Optional[str] = None,
        title: Optional[str] = None,
    ) -> bool:
        """
        React to the stream going live, ending or offline.

        Returns:
            True when the recording should be toggled for AI detection
        """
        if status == StreamingStatus.LIVE:
            return self._on_live(game, title)

        if status == StreamingStatus.OFFLINE:
            if self._session.stream_started and self.state.clips and not self._notification_dismissed:
                self.events.emit(HighlighterEvent.NOTIFICATION, message=REPLAY_NOTIFICATION_MESSAGE)
                self.analytics.record(self._analytics_category(), {"type": "NotificationShow"})
            self._session.stream_started = False
            return False

        if status == StreamingStatus.ENDING:
            if not self._session.recording_in_progress:
                return False
            stream_id = self._session.stream_info.id if self._session.stream_info else None
            self.analytics.record("AIHighlighter", {
                "type": "AiRecordingFinished",
                "streamId": stream_id,
                "game": game,
            })
            # Replay buffer clips saved during the stream
            await self.loader.load(stream_id)
            return True

        return False

    def _on_live(self, game: Optional[str], title: Optional[str]) -> bool:
        self._session.stream_started = True
        stream_id = f"fromStreamRecording{uuid.uuid4()}"
        self.analytics.record("AIHighlighter", {
            "type": "AiRecordingGoinglive",
            "streamId": stream_id,
            "game": game,
        })

        if not settings.ai_highlighter_enabled:
            self.analytics.record("AIHighlighter", {
                "type": "AiHighlighterFeatureNotEnabled",
                "streamId": stream_id,
                "game": game,
            })
            return False

        if not self.state.use_ai_highlighter:
            return False

        self.analytics.record("AIHighlighter", {
            "type": "AiRecordingHighlighterIsActive",
            "streamId": stream_id,
            "game": game,
        })

        normalized = normalize_game(game)
        if normalized is None:
            logger.info(f"Game {game!r} is not supported by the AI highlighter")
            return False

        self._session.stream_info = StreamInfoForDetection(
            id=stream_id, title=title, game=normalized.value
        )
        self.analytics.record("AIHighlighter", {"type": "AiRecordingStarted", "streamId": stream_id})
        self._session.recording_in_progress = True
        self._session.started_at = time.monotonic()
        return True

    async def on_recording_saved(self, path: str):
        """Keep the finished AI recording so the user can start detection on it."""
        if not self._session.recording_in_progress:
            return
        stream_info = self._session.stream_info

        try:
            duration = await self.probe.get_duration(path)
        except FFmpegError as e:
            logger.error(f"Failed getting duration right after the recording: {e}")
            duration = -1
        self.analytics.record("AIHighlighter", {
            "type": "AiRecordingExists",
            "duration": duration,
            "streamId": stream_info.id if stream_info else None,
        })

        self._session.recording_in_progress = False
        self.set_temp_recording_info(TempRecordingInfo(
            recording_path=path,
            stream_info=asdict(stream_info) if stream_info else None,
            source="after-stream",
        ))
        self.events.emit(HighlighterEvent.NAVIGATE, view="stream")

    def notification_action(self):
        self._notification_dismissed = True
        self.events.emit(HighlighterEvent.NAVIGATE, view=None)
        self.analytics.record(self._analytics_category(), {"type": "NotificationClick"})
