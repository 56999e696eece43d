"""Tests for ffmpeg render command construction."""
import pytest

from highlighter.models.export import (
    AudioInfo,
    ExportInfo,
    ExportOptions,
    Orientation,
    TransitionInfo,
)
from highlighter.rendering.renderer import RenderJob, build_command, build_filter_graph, parse_frame
from highlighter.rendering.rendering_clip import RenderingClip


def _clip(path, fs, probe, duration=10.0, start_trim=0.0, end_trim=0.0):
    clip = RenderingClip(path, probe, fs)
    clip.duration = duration
    clip.start_trim = start_trim
    clip.end_trim = end_trim
    return clip


def _job(clips, audio=None, transition=None, orientation=Orientation.HORIZONTAL, options=None):
    return RenderJob(
        rendering_clips=clips,
        options=options or ExportOptions(width=1920, height=1080, fps=30, preset="medium"),
        export_info=ExportInfo(),
        audio=audio or AudioInfo(),
        transition=transition or TransitionInfo(duration=0),
        output_path="/out/video.mp4",
        orientation=orientation,
    )


def test_job_totals(fs, probe):
    job = _job([
        _clip("/c/a.mp4", fs, probe, duration=10, start_trim=1, end_trim=1),
        _clip("/c/b.mp4", fs, probe, duration=5),
    ])
    assert job.duration == 13.0
    assert job.total_frames == 390


def test_filter_graph_trims_and_concatenates(fs, probe):
    job = _job([
        _clip("/c/a.mp4", fs, probe, start_trim=2, end_trim=1),
        _clip("/c/b.mp4", fs, probe),
    ])

    graph = build_filter_graph(job)

    assert "[0:v]scale=1920:1080:force_original_aspect_ratio=decrease" in graph
    assert "trim=start=2:duration=7.0" in graph
    assert "[v0][a0][v1][a1]concat=n=2:v=1:a=1[outv][outa]" in graph
    assert "fade" not in graph
    assert "amix" not in graph


def test_filter_graph_fades_are_capped_by_clip_length(fs, probe):
    job = _job([_clip("/c/a.mp4", fs, probe, duration=1.0)], transition=TransitionInfo(duration=2.0))

    graph = build_filter_graph(job)

    assert "fade=t=in:st=0:d=0.5" in graph
    assert "afade=t=out:st=0.5:d=0.5" in graph


def test_music_is_mixed_in(fs, probe):
    audio = AudioInfo(music_enabled=True, music_path="/music/track.mp3", music_volume=40)
    job = _job([_clip("/c/a.mp4", fs, probe)], audio=audio)

    graph = build_filter_graph(job)
    cmd = build_command(job)

    assert "[1:a]volume=0.4" in graph
    assert graph.endswith("amix=inputs=2:duration=first:dropout_transition=0[mixa]")
    assert cmd[cmd.index("-stream_loop") + 3] == "/music/track.mp3"
    assert cmd[cmd.index("-map") + 3] == "[mixa]"
    assert cmd[-1] == "/out/video.mp4"


def test_vertical_graph_uses_clip_crop(fs, probe):
    options = ExportOptions(width=1080, height=1920, fps=30, preset="medium",
                            complex_filter="[in]scale=-2:1920,crop=1080:1920,setsar=1[out]")
    clip = _clip("/c/a.mp4", fs, probe)
    clip.crop = {"x": 0, "y": 0, "width": 320, "height": 180}
    plain = _clip("/c/b.mp4", fs, probe)

    graph = build_filter_graph(_job([clip, plain], orientation=Orientation.VERTICAL, options=options))

    assert "[0:v]split=2[g0cam][g0game]" in graph
    assert "[1:v]scale=-2:1920,crop=1080:1920,setsar=1[g1]" in graph


@pytest.mark.asyncio
async def test_clip_without_audio_gets_silence(fs, probe):
    fs.add("/c/a.mp4", "/c/mute.mp4")
    probe.silent.add("/c/mute.mp4")
    clips = [_clip("/c/a.mp4", fs, probe), _clip("/c/mute.mp4", fs, probe, start_trim=1, duration=5.0)]
    options = ExportOptions(width=1920, height=1080, fps=30, preset="medium")
    for clip in clips:
        await clip.reset(options)

    graph = build_filter_graph(_job(clips, transition=TransitionInfo(duration=1.0)))

    assert clips[0].has_audio
    assert not clips[1].has_audio
    assert "[0:a]atrim=start=0.0:duration=10.0" in graph
    assert "[1:a]" not in graph
    assert "anullsrc=r=48000:cl=stereo,atrim=duration=4.0,asetpts=PTS-STARTPTS,afade=t=in" in graph
    assert "[v0][a0][v1][a1]concat=n=2:v=1:a=1[outv][outa]" in graph


def test_parse_frame():
    assert parse_frame("frame=120") == 120
    assert parse_frame("fps=30.0") is None
    assert parse_frame("frame=N/A") is None
