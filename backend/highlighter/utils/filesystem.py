"""Filesystem access used by the highlighter core."""
import asyncio
import os
import shutil
from pathlib import Path
from typing import List


class LocalFileSystem:
    """
    Thin async wrapper around the local filesystem.

    `exists` stays synchronous so state queries can filter without suspending.
    Every other operation runs in a worker thread and raises OSError on
    failure, leaving the decision to the caller.
    """

    def exists(self, path: str | Path) -> bool:
        return os.path.exists(path)

    async def unlink(self, path: str | Path):
        await asyncio.to_thread(os.unlink, path)

    async def listdir(self, path: str | Path) -> List[str]:
        return await asyncio.to_thread(os.listdir, path)

    async def rmdir(self, path: str | Path):
        await asyncio.to_thread(os.rmdir, path)

    async def remove(self, path: str | Path):
        """Remove a file or directory tree."""
        def _remove():
            if os.path.isdir(path):
                shutil.rmtree(path)
            else:
                os.unlink(path)
        await asyncio.to_thread(_remove)

    async def ensure_dir(self, path: str | Path):
        await asyncio.to_thread(Path(path).mkdir, parents=True, exist_ok=True)

    async def write_text(self, path: str | Path, content: str):
        path = Path(path)

        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        await asyncio.to_thread(_write)

    async def read_text(self, path: str | Path) -> str:
        return await asyncio.to_thread(Path(path).read_text, encoding="utf-8")
