"""FFmpeg based rendering of the final highlight reel."""
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from highlighter.config import settings
from highlighter.models.export import (
    AudioInfo,
    ExportInfo,
    ExportOptions,
    ExportStep,
    Orientation,
    TransitionInfo,
)
from highlighter.rendering.rendering_clip import RenderingClip
from highlighter.utils.vertical import clip_filter

logger = logging.getLogger(__name__)

EXPORT_ERROR_MESSAGE = "An error occurred while exporting the video"
SILENCE_SAMPLE_RATE = 48000


@dataclass
class RenderJob:
    """Everything the renderer needs for one export."""
    rendering_clips: List[RenderingClip]
    options: ExportOptions
    export_info: ExportInfo
    audio: AudioInfo
    transition: TransitionInfo
    output_path: str
    preview: bool = False
    orientation: Orientation = Orientation.HORIZONTAL
    use_ai_highlighter: bool = False
    stream_id: Optional[str] = None

    @property
    def total_frames(self) -> int:
        return sum(c.frame_count(self.options.fps) for c in self.rendering_clips)

    @property
    def duration(self) -> float:
        return sum(c.trimmed_duration for c in self.rendering_clips)


def _fade_duration(clip: RenderingClip, transition: TransitionInfo) -> float:
    if not transition.duration or transition.duration <= 0:
        return 0.0
    return min(transition.duration, clip.trimmed_duration / 2)


def build_filter_graph(job: RenderJob) -> str:
    """
    Build the filter_complex for trimming, scaling, fading and concatenating.

    Outputs are labelled [outv] and [outa]. With music enabled the mixed
    audio is labelled [mixa] instead of [outa].
    """
    options = job.options
    parts = []
    concat_inputs = []

    for i, clip in enumerate(job.rendering_clips):
        start = clip.start_trim
        duration = clip.trimmed_duration
        fade = _fade_duration(clip, job.transition)

        if job.orientation == Orientation.VERTICAL:
            parts.append(clip_filter(f"{i}:v", f"g{i}", options, clip.crop))
            video_in = f"[g{i}]"
        else:
            parts.append(
                f"[{i}:v]scale={options.width}:{options.height}:force_original_aspect_ratio=decrease,"
                f"pad={options.width}:{options.height}:(ow-iw)/2:(oh-ih)/2,setsar=1[g{i}]"
            )
            video_in = f"[g{i}]"

        video = (
            f"{video_in}trim=start={start}:duration={duration},setpts=PTS-STARTPTS,"
            f"fps={options.fps},format=yuv420p"
        )
        if clip.has_audio is False:
            audio = f"anullsrc=r={SILENCE_SAMPLE_RATE}:cl=stereo,atrim=duration={duration},asetpts=PTS-STARTPTS"
        else:
            audio = f"[{i}:a]atrim=start={start}:duration={duration},asetpts=PTS-STARTPTS"
        if fade:
            video += f",fade=t=in:st=0:d={fade},fade=t=out:st={duration - fade}:d={fade}"
            audio += f",afade=t=in:st=0:d={fade},afade=t=out:st={duration - fade}:d={fade}"
        parts.append(f"{video}[v{i}]")
        parts.append(f"{audio}[a{i}]")
        concat_inputs.append(f"[v{i}][a{i}]")

    count = len(job.rendering_clips)
    parts.append(f"{''.join(concat_inputs)}concat=n={count}:v=1:a=1[outv][outa]")

    if job.audio.music_enabled and job.audio.music_path:
        volume = max(0, min(100, job.audio.music_volume)) / 100
        parts.append(
            f"[{count}:a]volume={volume},atrim=duration={job.duration},asetpts=PTS-STARTPTS[music]"
        )
        parts.append("[outa][music]amix=inputs=2:duration=first:dropout_transition=0[mixa]")

    return ";".join(parts)


def build_command(job: RenderJob) -> List[str]:
    cmd = [settings.ffmpeg_path, "-y"]
    for clip in job.rendering_clips:
        cmd += ["-i", clip.path]

    music = job.audio.music_enabled and job.audio.music_path
    if music:
        cmd += ["-stream_loop", "-1", "-i", job.audio.music_path]

    cmd += [
        "-filter_complex", build_filter_graph(job),
        "-map", "[outv]",
        "-map", "[mixa]" if music else "[outa]",
        "-c:v", settings.export_video_codec,
        "-preset", job.options.preset,
        "-r", str(job.options.fps),
        "-c:a", settings.export_audio_codec,
        "-b:a", settings.export_audio_bitrate,
        "-movflags", "+faststart",
        "-progress", "pipe:1",
        "-nostats",
        str(job.output_path),
    ]
    return cmd


def parse_frame(line: str) -> Optional[int]:
    """Frame number from a `-progress` line, if it is a frame line."""
    if not line.startswith("frame="):
        return None
    try:
        return int(line.split("=", 1)[1])
    except ValueError:
        return None


class FFmpegRenderer:
    """Renders a RenderJob with a single ffmpeg invocation."""

    CANCEL_POLL_INTERVAL = 0.25

    async def render(
        self,
        job: RenderJob,
        on_frame: Callable[[int], None],
        set_export_info: Callable[[Dict[str, Any]], None],
        record_event: Callable[[str, Dict[str, Any]], None],
    ):
        """
        Encode the clips into `job.output_path`.

        Cancellation is cooperative: `job.export_info.cancel_requested` is
        checked while ffmpeg runs and the process is terminated when set.
        Never raises, the outcome is reported through `set_export_info`.
        """
        output_path = Path(job.output_path)
        await asyncio.to_thread(output_path.parent.mkdir, parents=True, exist_ok=True)

        set_export_info({"step": ExportStep.FRAME_RENDER, "total_frames": job.total_frames})
        cmd = build_command(job)
        logger.info(f"Rendering {len(job.rendering_clips)} clips to {output_path}")
        logger.debug(f"ffmpeg command: {' '.join(cmd)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"Could not start ffmpeg: {e}")
            set_export_info({"exporting": False, "error": EXPORT_ERROR_MESSAGE})
            return

        stderr_task = asyncio.create_task(proc.stderr.read())
        canceled = False
        while True:
            try:
                line = await asyncio.wait_for(proc.stdout.readline(), self.CANCEL_POLL_INTERVAL)
            except asyncio.TimeoutError:
                line = None
            if job.export_info.cancel_requested:
                canceled = True
                proc.terminate()
                break
            if line is None:
                continue
            if not line:
                break
            frame = parse_frame(line.decode("utf-8", errors="ignore").strip())
            if frame is not None:
                on_frame(frame)

        await proc.wait()
        stderr = await stderr_task

        if canceled:
            logger.info("Export canceled")
            await asyncio.to_thread(output_path.unlink, missing_ok=True)
            set_export_info({"exporting": False, "cancel_requested": False, "current_frame": 0})
            return

        if proc.returncode != 0:
            logger.error(f"Export failed: {stderr.decode(errors='ignore')[-2000:]}")
            set_export_info({"exporting": False, "error": EXPORT_ERROR_MESSAGE})
            record_event("Highlighter", {"type": "ExportError", "preview": job.preview})
            return

        set_export_info({
            "exporting": False,
            "exported": not job.preview,
            "current_frame": job.total_frames,
        })
        category = "AIHighlighter" if job.use_ai_highlighter else "Highlighter"
        record_event(category, {
            "type": "ExportComplete" if not job.preview else "PreviewComplete",
            "clips": len(job.rendering_clips),
            "duration": job.duration,
            "resolution": job.options.height,
            "fps": job.options.fps,
            "orientation": job.orientation.value,
            "streamId": job.stream_id,
        })
