"""Shared fakes for the highlighter tests."""
import errno
import os
from typing import Any, Dict, List

import pytest

from highlighter.errors import FFmpegError
from highlighter.services.clip_ledger import ClipLedger
from highlighter.services.state_store import StateStore


class FakeFileSystem:
    """In-memory stand-in for LocalFileSystem."""

    def __init__(self, files=None):
        self.files = set(files or [])
        self.texts: Dict[str, str] = {}
        self.locked = set()
        self.removed: List[str] = []
        self.removed_dirs: List[str] = []

    def add(self, *paths):
        self.files.update(str(p) for p in paths)

    def exists(self, path) -> bool:
        path = str(path)
        return path in self.files or path in self.texts

    async def unlink(self, path):
        path = str(path)
        if path in self.locked:
            raise OSError(errno.EBUSY, "Device or resource busy", path)
        if path not in self.files:
            raise FileNotFoundError(errno.ENOENT, "No such file", path)
        self.files.discard(path)
        self.removed.append(path)

    async def listdir(self, path):
        path = str(path)
        return [os.path.basename(f) for f in self.files if os.path.dirname(f) == path]

    async def rmdir(self, path):
        self.removed_dirs.append(str(path))

    async def remove(self, path):
        self.files.discard(str(path))
        self.removed.append(str(path))

    async def ensure_dir(self, path):
        return None

    async def write_text(self, path, content: str):
        self.texts[str(path)] = content

    async def read_text(self, path) -> str:
        return self.texts[str(path)]


class FakeProbe:
    """Media probe that reports fixed durations and creates outputs in the fake fs."""

    def __init__(self, fs: FakeFileSystem, duration: float = 10.0):
        self.fs = fs
        self.duration = duration
        self.durations: Dict[str, float] = {}
        self.failing = set()
        self.cuts: List[tuple] = []
        self.sprites: List[str] = []
        self.silent = set()

    async def get_duration(self, path: str) -> float:
        if path in self.failing:
            raise FFmpegError(f"ffprobe failed for {path}")
        return self.durations.get(path, self.duration)

    async def has_audio(self, path: str) -> bool:
        if path in self.failing:
            raise FFmpegError(f"ffprobe failed for {path}")
        return path not in self.silent

    async def create_scrub_sprite(self, video_path: str, output_path: str, duration: float) -> str:
        self.sprites.append(output_path)
        self.fs.add(output_path)
        return output_path

    async def cut_segment(self, source_path: str, output_path: str, start_time: float, end_time: float) -> str:
        self.cuts.append((source_path, output_path, start_time, end_time))
        self.fs.add(output_path)
        return output_path


class RecordingAnalytics:
    """Collects analytics events."""

    def __init__(self):
        self.events: List[tuple] = []

    def record(self, category: str, data: Dict[str, Any]):
        self.events.append((category, data))

    def types(self) -> List[str]:
        return [data.get("type") for _, data in self.events]


class EventRecorder:
    """Subscribes to one bus event and keeps the payloads."""

    def __init__(self, bus, event):
        self.payloads: List[Dict[str, Any]] = []
        bus.subscribe(event, lambda **payload: self.payloads.append(payload))


@pytest.fixture
def fs():
    return FakeFileSystem()


@pytest.fixture
def probe(fs):
    return FakeProbe(fs)


@pytest.fixture
def analytics():
    return RecordingAnalytics()


@pytest.fixture
def store():
    return StateStore()


@pytest.fixture
def ledger(store, fs, analytics):
    return ClipLedger(store, fs, analytics)


@pytest.fixture
def recorder():
    """Factory: recorder(bus, event) collects the payloads of one event."""
    return EventRecorder
