"""FFmpeg and ffprobe utilities."""
import asyncio
import json
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from highlighter.config import settings
from highlighter.errors import FFmpegError


@dataclass
class MediaInfo:
    """Media metadata container."""
    duration: float
    has_audio: bool


def check_ffmpeg_available() -> bool:
    """Check if ffmpeg is available."""
    return shutil.which(settings.ffmpeg_path) is not None


def check_ffprobe_available() -> bool:
    """Check if ffprobe is available."""
    return shutil.which(settings.ffprobe_path) is not None


async def get_media_info(video_path: str | Path) -> MediaInfo:
    """
    Get media metadata using ffprobe.

    Args:
        video_path: Path to video file

    Returns:
        MediaInfo with duration and whether an audio track exists

    Raises:
        FFmpegError: If ffprobe fails
    """
    video_path = Path(video_path)
    if not video_path.exists():
        raise FFmpegError(f"Video file not found: {video_path}")

    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(video_path)
    ]

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
        stdout, stderr = await proc.communicate()
    except OSError as e:
        raise FFmpegError(f"ffprobe error: {e}")

    if proc.returncode != 0:
        raise FFmpegError(f"ffprobe failed: {stderr.decode(errors='ignore')}")

    try:
        data = json.loads(stdout.decode())
    except json.JSONDecodeError as e:
        raise FFmpegError(f"Failed to parse ffprobe output: {e}")

    video_stream = None
    has_audio = False
    for stream in data.get("streams", []):
        if stream.get("codec_type") == "video" and video_stream is None:
            video_stream = stream
        elif stream.get("codec_type") == "audio":
            has_audio = True

    if not video_stream:
        raise FFmpegError("No video stream found")

    duration = float(data.get("format", {}).get("duration", 0) or 0)
    if duration == 0:
        duration = float(video_stream.get("duration", 0) or 0)

    return MediaInfo(duration=duration, has_audio=has_audio)


async def get_video_duration(video_path: str | Path) -> float:
    """Get the duration of a video in seconds."""
    info = await get_media_info(video_path)
    return info.duration


async def generate_scrub_sprite(
    video_path: str | Path,
    output_path: str | Path,
    duration: float,
    frames: Optional[int] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> Path:
    """
    Generate a horizontal strip of evenly spaced frames used for scrubbing.

    Args:
        video_path: Path to video file
        output_path: Path to save the sprite
        duration: Video duration in seconds
        frames: Number of frames in the strip
        width: Width of a single frame
        height: Height of a single frame

    Returns:
        Path to generated sprite
    """
    video_path = Path(video_path)
    output_path = Path(output_path)

    frames = frames or settings.scrub_frames
    width = width or settings.scrub_width
    height = height or settings.scrub_height
    sample_rate = frames / duration if duration > 0 else 1

    await asyncio.to_thread(output_path.parent.mkdir, parents=True, exist_ok=True)

    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-i", str(video_path),
        "-vf", (
            f"fps={sample_rate:.6f},"
            f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,"
            f"tile={frames}x1"
        ),
        "-frames:v", "1",
        "-q:v", "5",
        str(output_path)
    ]

    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE
    )

    _, stderr = await proc.communicate()

    if proc.returncode != 0:
        raise FFmpegError(f"Scrub sprite generation failed: {stderr.decode(errors='ignore')}")

    return output_path


async def cut_segment(
    source_path: str | Path,
    output_path: str | Path,
    start_time: float,
    end_time: float,
) -> Path:
    """
    Cut a segment out of a recording without re-encoding.

    Args:
        source_path: Path to source video
        output_path: Path for output file
        start_time: Start time in seconds
        end_time: End time in seconds

    Returns:
        Path to the cut clip
    """
    source_path = Path(source_path)
    output_path = Path(output_path)

    await asyncio.to_thread(output_path.parent.mkdir, parents=True, exist_ok=True)

    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-ss", str(start_time),
        "-i", str(source_path),
        "-t", str(end_time - start_time),
        "-c", "copy",
        "-avoid_negative_ts", "make_zero",
        "-movflags", "+faststart",
        str(output_path)
    ]

    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE
    )

    _, stderr = await proc.communicate()

    if proc.returncode != 0:
        raise FFmpegError(f"Cutting segment failed: {stderr.decode(errors='ignore')}")

    return output_path


class FFmpegMediaProbe:
    """Media probe collaborator backed by ffprobe and ffmpeg."""

    async def get_duration(self, video_path: str) -> float:
        return await get_video_duration(video_path)

    async def has_audio(self, video_path: str) -> bool:
        info = await get_media_info(video_path)
        return info.has_audio

    async def create_scrub_sprite(self, video_path: str, output_path: str, duration: float) -> str:
        path = await generate_scrub_sprite(video_path, output_path, duration)
        return str(path)

    async def cut_segment(self, source_path: str, output_path: str, start_time: float, end_time: float) -> str:
        path = await cut_segment(source_path, output_path, start_time, end_time)
        return str(path)
