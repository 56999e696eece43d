"""Tests for the detection binary adapter."""
import io
import json
import sys
import zipfile

import httpx
import pytest

from highlighter.errors import DetectionError
from highlighter.utils import highlighter_engine
from highlighter.utils.cancellation import CancellationToken
from highlighter.utils.highlighter_engine import BinaryHighlighterEngine

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="uses a shell script as binary")

SUCCESS_SCRIPT = """#!/bin/sh
echo '{"type": "progress", "progress": 0.5}'
echo 'loading model'
echo '{"type": "milestone", "milestone": {"name": "round_start"}}'
echo '{"type": "highlights", "highlights": [{"start_time": 1, "end_time": 3, "score": 0.7}]}'
exit 0
"""

FAILING_SCRIPT = """#!/bin/sh
echo 'model crashed'
exit 3
"""


def _install(base_dir, script, version="1.0.0"):
    binary = base_dir / "bin" / version / "highlighter"
    binary.parent.mkdir(parents=True)
    binary.write_text(script)
    binary.chmod(0o755)
    (base_dir / "version.json").write_text(json.dumps({"version": version}))
    return BinaryHighlighterEngine(base_dir=base_dir, binary_name="highlighter")


def test_parse_line():
    parse = BinaryHighlighterEngine._parse_line
    assert parse(b'{"type": "progress", "progress": 0.1}\n') == {"type": "progress", "progress": 0.1}
    assert parse(b"plain output\n") is None
    assert parse(b"{not json\n") is None


def test_versions_and_binary_path(tmp_path):
    engine = BinaryHighlighterEngine(base_dir=tmp_path, binary_name="highlighter")
    assert engine.installed_version is None

    engine = _install(tmp_path, SUCCESS_SCRIPT)

    assert engine.installed_version == "1.0.0"
    assert engine.version == "1.0.0"
    assert engine.binary_path() == tmp_path / "bin" / "1.0.0" / "highlighter"


@pytest.mark.asyncio
async def test_detect_parses_protocol(tmp_path):
    engine = _install(tmp_path, SUCCESS_SCRIPT)
    progress, milestones, batches = [], [], []

    async def on_highlights(highlights):
        batches.append(highlights)

    highlights = await engine.detect(
        "/rec/stream.mp4",
        "user-1",
        on_highlights,
        CancellationToken(),
        progress.append,
        on_milestone=milestones.append,
    )

    assert progress == [0.5]
    assert milestones == [{"name": "round_start"}]
    assert len(batches) == 1
    assert [(h.start_time, h.end_time, h.score) for h in highlights] == [(1.0, 3.0, 0.7)]


@pytest.mark.asyncio
async def test_detect_failure_carries_exit_code(tmp_path):
    engine = _install(tmp_path, FAILING_SCRIPT)

    async def on_highlights(highlights):
        raise AssertionError("no highlights expected")

    with pytest.raises(DetectionError) as exc_info:
        await engine.detect("/rec/stream.mp4", "user-1", on_highlights, CancellationToken(), lambda p: None)

    assert exc_info.value.code == 3


@pytest.mark.asyncio
async def test_detect_without_binary(tmp_path):
    engine = BinaryHighlighterEngine(base_dir=tmp_path)

    async def on_highlights(highlights):
        return None

    with pytest.raises(DetectionError):
        await engine.detect("/rec/stream.mp4", "user-1", on_highlights, CancellationToken(), lambda p: None)


@pytest.mark.asyncio
async def test_update_downloads_and_installs(tmp_path, monkeypatch):
    archive = io.BytesIO()
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("highlighter", SUCCESS_SCRIPT)
    archive_bytes = archive.getvalue()

    def handler(request: httpx.Request):
        if request.url.path.endswith("manifest.json"):
            return httpx.Response(200, json={"version": "2.0.0", "url": "https://cdn.example/hl.zip"})
        return httpx.Response(200, content=archive_bytes)

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        highlighter_engine.httpx,
        "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )
    engine = BinaryHighlighterEngine(
        base_dir=tmp_path,
        manifest_url="https://cdn.example/manifest.json",
        binary_name="highlighter",
    )
    progress = []

    assert await engine.is_update_available()
    await engine.update(progress.append)

    assert engine.installed_version == "2.0.0"
    assert engine.binary_path().exists()
    assert progress[-1] == 1.0
    assert not await engine.is_update_available()

    await engine.uninstall()
    assert engine.installed_version is None


@pytest.mark.asyncio
async def test_update_check_failure_is_not_an_update(tmp_path, monkeypatch):
    def handler(request: httpx.Request):
        return httpx.Response(500)

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        highlighter_engine.httpx,
        "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )
    engine = BinaryHighlighterEngine(base_dir=tmp_path, manifest_url="https://cdn.example/manifest.json")

    assert not await engine.is_update_available()
