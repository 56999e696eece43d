"""AI highlight detection per stream."""
import asyncio
import json
import logging
import math
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from highlighter.config import settings
from highlighter.errors import DetectionCanceledError
from highlighter.models.clip import AiClipInfo, Clip, NewAiClip
from highlighter.models.stream import (
    DetectionState,
    Game,
    Highlight,
    HighlightedStream,
    StreamInfoForDetection,
)
from highlighter.services.clip_ledger import ClipLedger
from highlighter.services.clip_loader import ClipLoader
from highlighter.services.commands import (
    SetHighlighterVersion,
    SetUpdaterProgress,
    SetUpdaterState,
    SetUseAiHighlighter,
)
from highlighter.services.events import HighlighterEvent
from highlighter.services.stream_registry import StreamRegistry
from highlighter.utils.cancellation import CancellationToken
from highlighter.utils.progress import ProgressTracker

logger = logging.getLogger(__name__)

FALLBACK_TITLE = "awesome-stream"
_TITLE_FORBIDDEN = re.compile(r'[\\/:"*?<>|]+')
_PATH_DATE_TIME = re.compile(r"(\d{4}-\d{2}-\d{2})[ _T](\d{2})-(\d{2})-(\d{2})")


def extract_date_time_from_path(file_path: str) -> Optional[str]:
    """Recordings are named like `2024-05-01 20-15-00.mp4`."""
    match = _PATH_DATE_TIME.search(os.path.basename(file_path))
    if not match:
        return None
    date, hours, minutes, seconds = match.groups()
    return f"{date} {hours}:{minutes}:{seconds}"


def sanitize_title(title: Optional[str], file_path: str) -> str:
    if title:
        return _TITLE_FORBIDDEN.sub(" ", title)
    return extract_date_time_from_path(file_path) or FALLBACK_TITLE


def round_details(clips: List[Clip]) -> List[Dict[str, Any]]:
    """
    Summarize AI clips per game round.

    Returns:
        One entry per round with the combined inputs, the trimmed duration
        and a hype score from 1 to 5 based on the average clip score
    """
    rounds: Dict[int, Dict[str, Any]] = {}
    for clip in clips:
        if not clip.is_ai_clip or not clip.ai_info.round:
            continue
        entry = rounds.setdefault(
            clip.ai_info.round, {"inputs": [], "duration": 0.0, "score": 0.0, "count": 0}
        )
        entry["inputs"].extend(clip.ai_info.inputs)
        if clip.duration:
            entry["duration"] += clip.duration - clip.start_trim - clip.end_trim
        entry["score"] += clip.ai_info.score
        entry["count"] += 1

    details = []
    for round_number, entry in sorted(rounds.items()):
        average = entry["score"] / entry["count"]
        details.append({
            "round": round_number,
            "inputs": entry["inputs"],
            "duration": entry["duration"],
            "hype_score": math.ceil(min(1.0, max(0.0, average)) * 5),
        })
    return details


class _DetectionRun:
    """A detection from its first check until its terminal state is applied."""

    def __init__(self):
        self.token = CancellationToken()
        self.done = asyncio.Event()


class DetectionOrchestrator:
    """Drives the detection engine and turns its results into clips."""

    def __init__(
        self,
        registry: StreamRegistry,
        ledger: ClipLedger,
        loader: ClipLoader,
        engine,
        probe,
        fs,
        analytics,
        user_id: str,
        milestones_dir: Optional[Path] = None,
        clips_dir: Optional[Path] = None,
    ):
        self.registry = registry
        self.ledger = ledger
        self.loader = loader
        self.store = ledger.store
        self.engine = engine
        self.probe = probe
        self.fs = fs
        self.analytics = analytics
        self.user_id = user_id
        self.milestones_dir = Path(milestones_dir or settings.milestones_dir)
        self.clips_dir = Path(clips_dir or settings.clips_dir)
        self._milestones: Dict[str, List[Dict[str, Any]]] = {}
        self._updater_task: Optional[asyncio.Task] = None
        self._runs: Dict[str, _DetectionRun] = {}

    # =========================================================================
    # Engine lifecycle
    # =========================================================================

    async def start_updater(self):
        """Run the engine update. Concurrent callers share one download."""
        if self._updater_task is None or self._updater_task.done():
            self._updater_task = asyncio.create_task(self._run_updater())
        await asyncio.shield(self._updater_task)

    async def _run_updater(self):
        try:
            self.store.apply(SetUpdaterState(True))
            self.store.apply(SetHighlighterVersion(self.engine.version or ""))
            await self.engine.update(self._on_updater_progress)
        except Exception:
            logger.exception("Error updating AI Highlighter")
            self.analytics.record("Highlighter", {
                "type": "UpdateError",
                "newVersion": self.engine.version,
            })
        finally:
            self.store.apply(SetUpdaterState(False))

    def _on_updater_progress(self, fraction: float):
        self.store.apply(SetUpdaterProgress(fraction * 100))

    async def ensure_engine_ready(self, stream_id: Optional[str] = None):
        if self._updater_task is not None and not self._updater_task.done():
            await asyncio.shield(self._updater_task)
            return
        if await self.engine.is_update_available():
            self.analytics.record("AIHighlighter", {
                "type": "DetectionFlowHighlighterUpdateStart",
                "streamId": stream_id,
            })
            await self.start_updater()
            self.analytics.record("AIHighlighter", {
                "type": "DetectionFlowHighlighterUpdateFinished",
                "streamId": stream_id,
            })

    def set_ai_highlighter(self, enabled: bool):
        self.store.apply(SetUseAiHighlighter(enabled))
        self.analytics.record("AIHighlighter", {"type": "Toggled", "value": enabled})

    async def install_engine(
        self,
        download_now: bool = False,
        location: str = "Highlighter-tab",
        game: Optional[str] = None,
    ):
        self.analytics.record("AIHighlighter", {
            "type": "Installation",
            "location": location,
            "game": game,
        })
        self.set_ai_highlighter(True)
        if download_now:
            await self.engine.is_update_available()
            await self.start_updater()
        else:
            # Lets the UI show the toggle before the first download
            self.store.apply(SetHighlighterVersion("0.0.0"))

    async def uninstall_engine(self):
        self.analytics.record("AIHighlighter", {"type": "Uninstallation"})
        self.set_ai_highlighter(False)
        self.store.apply(SetHighlighterVersion(""))
        await self.engine.uninstall()

    # =========================================================================
    # Detection
    # =========================================================================

    async def detect(
        self,
        file_path: str,
        stream_info: StreamInfoForDetection,
        delay_start: bool = False,
    ) -> Optional[str]:
        """
        Detect highlights in a recording and add them as clips of a new stream.

        Failures end in a terminal stream state and never propagate.

        Args:
            file_path: Path to the recording
            stream_info: Id, title, game and milestones of the stream
            delay_start: Wait before starting, used right after a recording stops

        Returns:
            The stream id, or None if detection did not start
        """
        if not settings.ai_highlighter_enabled:
            logger.info("AI highlighter is not enabled")
            return None

        stream_id = stream_info.id or "noId"
        existing = self.registry.get(stream_id)
        if stream_id in self._runs or (existing is not None and existing.state == DetectionState.IN_PROGRESS):
            logger.warning(f"Detection already running for stream {stream_id}")
            return None

        # Reserved before the first await so a concurrent call sees it
        run = _DetectionRun()
        self._runs[stream_id] = run
        try:
            return await self._run_detection(file_path, stream_id, stream_info, delay_start, run.token)
        finally:
            del self._runs[stream_id]
            run.done.set()

    def _owns(self, stream_id: str, token: CancellationToken) -> bool:
        stream = self.registry.get(stream_id)
        return stream is not None and stream.cancellation_token is token

    async def _run_detection(
        self,
        file_path: str,
        stream_id: str,
        stream_info: StreamInfoForDetection,
        delay_start: bool,
        token: CancellationToken,
    ) -> Optional[str]:
        await self.ensure_engine_ready(stream_id)
        if token.cancelled:
            logger.info(f"Detection for stream {stream_id} canceled before it started")
            return None

        game = stream_info.game or Game.UNSET.value
        self.registry.add(HighlightedStream(
            id=stream_id,
            title=sanitize_title(stream_info.title, file_path),
            game=game,
            date=datetime.utcnow().isoformat(),
            path=file_path,
            cancellation_token=token,
        ))
        self._milestones[stream_id] = []

        tracker = ProgressTracker(
            lambda progress: self.registry.update_progress(stream_id, progress),
            interval=settings.progress_update_interval,
        )

        async def on_highlights(highlights: List[Highlight]):
            new_clips = await self.cut_highlight_clips(file_path, highlights, stream_id)
            if token.cancelled or not self._owns(stream_id, token):
                return
            tracker.destroy()
            self.ledger.insert_ai_clips(new_clips, stream_id)
            # Clips are in the ledger before anyone sees the stream finished
            self.registry.set_state(stream_id, DetectionState.FINISHED)
            self.store.events.emit(HighlighterEvent.STREAM_FINISHED, stream_id=stream_id)
            await self.loader.load(stream_id)

        def on_milestone(milestone: Dict[str, Any]):
            self._milestones.setdefault(stream_id, []).append(milestone)
            self.analytics.record("AIHighlighter", {
                "type": "DetectionMilestone",
                "milestone": milestone.get("name"),
                "streamId": stream_id,
                "game": game,
            })

        try:
            if delay_start:
                await asyncio.sleep(settings.detection_delay_seconds)
            self.analytics.record("AIHighlighter", {
                "type": "StartDetection",
                "streamId": stream_id,
                "game": game,
            })
            highlights = await self.engine.detect(
                file_path,
                self.user_id,
                on_highlights,
                token,
                tracker.update_from_highlighter,
                stream_info.milestones_path,
                on_milestone,
                None if game == Game.UNSET.value else game,
            )
            self.analytics.record("AIHighlighter", {
                "type": "Detection",
                "clips": len(highlights),
                "game": game,
                "streamId": stream_id,
            })

            if self._owns(stream_id, token):
                if self.registry.get(stream_id).state == DetectionState.IN_PROGRESS:
                    self.registry.set_state(stream_id, DetectionState.FINISHED)
                await self._save_milestones(stream_id)

        except DetectionCanceledError:
            logger.info(f"Detection canceled for stream {stream_id}")
            if self._owns(stream_id, token):
                self.registry.set_state(stream_id, DetectionState.CANCELED_BY_USER)
            self.analytics.record("AIHighlighter", {
                "type": "DetectionCanceled",
                "reason": DetectionState.CANCELED_BY_USER.value,
                "game": game,
                "streamId": stream_id,
            })

        except Exception as e:
            logger.exception(f"Error in highlight generation for stream {stream_id}")
            error_code = getattr(e, "code", None) or 1
            if self._owns(stream_id, token):
                self.registry.set_state(stream_id, DetectionState.ERROR, error_code=error_code)
            self.analytics.record("AIHighlighter", {
                "type": "DetectionFailed",
                "reason": DetectionState.ERROR.value,
                "game": game,
                "error_code": error_code,
                "streamId": stream_id,
            })

        finally:
            tracker.destroy()
            self._milestones.pop(stream_id, None)
            if self._owns(stream_id, token):
                self.registry.finalize(stream_id)

        return stream_id

    def cancel(self, stream_id: str) -> bool:
        """Ask a running detection to stop."""
        run = self._runs.get(stream_id)
        if run is not None:
            run.token.cancel()
            return True
        stream = self.registry.get(stream_id)
        if stream is None or stream.cancellation_token is None:
            return False
        stream.cancellation_token.cancel()
        return True

    async def restart(self, stream_id: str) -> Optional[str]:
        """
        Drop a stream with its clips and detect again on the same recording.

        Milestones saved by the previous run are handed to the engine. A run
        still going on the stream is canceled and awaited first.
        """
        stream = self.registry.get(stream_id)
        if stream is None:
            logger.warning(f"Cannot restart unknown stream {stream_id}")
            return None

        file_path, title, game = stream.path, stream.title, stream.game
        run = self._runs.get(stream_id)
        if run is not None:
            run.token.cancel()
            await run.done.wait()
        await self.registry.remove_stream(stream_id)

        milestones_path = self.milestones_path(stream_id)
        return await self.detect(file_path, StreamInfoForDetection(
            id=stream_id,
            title=title,
            game=game,
            milestones_path=str(milestones_path) if self.fs.exists(milestones_path) else None,
        ))

    # =========================================================================
    # Milestones and clip files
    # =========================================================================

    def milestones_path(self, stream_id: str) -> Path:
        return self.milestones_dir / f"{stream_id}.json"

    async def _save_milestones(self, stream_id: str):
        milestones = self._milestones.pop(stream_id, [])
        if not milestones:
            return
        path = self.milestones_path(stream_id)
        try:
            await self.fs.write_text(path, json.dumps(milestones))
            logger.info(f"Saved {len(milestones)} milestones to {path}")
        except OSError as e:
            logger.error(f"Could not write milestones file {path}: {e}")

    async def cut_highlight_clips(
        self,
        file_path: str,
        highlights: List[Highlight],
        stream_id: str,
    ) -> List[NewAiClip]:
        """
        Cut padded segments of the recording into separate clip files.

        The padding around each highlight becomes the clip's start and end
        trim, so the user can extend a clip in the editor.
        """
        duration = await self.probe.get_duration(file_path)
        padding = settings.highlight_padding_seconds
        output_dir = self.clips_dir / stream_id
        await self.fs.ensure_dir(output_dir)
        stem = Path(file_path).stem

        new_clips = []
        for index, highlight in enumerate(highlights):
            start_time = max(0.0, highlight.start_time - padding)
            end_time = min(duration, highlight.end_time + padding) if duration else highlight.end_time + padding
            output_path = output_dir / f"{stem}_{int(highlight.start_time * 1000)}_{index}.mp4"

            await self.probe.cut_segment(file_path, str(output_path), start_time, end_time)
            new_clips.append(NewAiClip(
                path=str(output_path),
                start_time=start_time,
                end_time=end_time,
                start_trim=highlight.start_time - start_time,
                end_trim=max(0.0, end_time - highlight.end_time),
                ai_info=AiClipInfo(
                    inputs=highlight.inputs,
                    score=highlight.score,
                    metadata=highlight.metadata,
                ),
            ))
        logger.info(f"Cut {len(new_clips)} highlight clips for stream {stream_id}")
        return new_clips
