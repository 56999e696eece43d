"""AI highlighter binary: versioned install and JSON-lines detection protocol."""
import asyncio
import json
import logging
import platform
import shutil
import zipfile
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from highlighter.config import settings
from highlighter.errors import DetectionCanceledError, DetectionError, EngineUpdateError
from highlighter.models.stream import Highlight
from highlighter.utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)

MANIFEST_HTTP_TIMEOUT_SECONDS = 15.0
DOWNLOAD_CHUNK_SIZE = 1024 * 1024
VERSION_FILE = "version.json"


class BinaryHighlighterEngine:
    """
    Manages the detection binary under `settings.highlighter_dir`.

    Layout:
        <dir>/version.json     installed version
        <dir>/bin/<version>/   unpacked binary

    The binary prints one JSON object per line on stdout:
        {"type": "progress", "progress": 0.42}
        {"type": "highlights", "highlights": [{start_time, end_time, inputs, score, metadata}]}
        {"type": "milestone", "milestone": {"name": ..., ...}}
    """

    def __init__(
        self,
        base_dir: Optional[Path] = None,
        manifest_url: Optional[str] = None,
        binary_name: Optional[str] = None,
    ):
        self.base_dir = Path(base_dir or settings.highlighter_dir)
        self.manifest_url = manifest_url or settings.highlighter_manifest_url
        self.binary_name = binary_name or settings.highlighter_binary_name
        self._manifest: Optional[Dict[str, Any]] = None
        self.current_update: Optional[asyncio.Task] = None

    # =========================================================================
    # Versioning
    # =========================================================================

    @property
    def installed_version(self) -> Optional[str]:
        version_file = self.base_dir / VERSION_FILE
        if not version_file.exists():
            return None
        try:
            return json.loads(version_file.read_text()).get("version")
        except (OSError, ValueError):
            logger.warning(f"Unreadable highlighter version file {version_file}")
            return None

    @property
    def version(self) -> Optional[str]:
        """Version the next update installs, or the installed one."""
        if self._manifest:
            return self._manifest.get("version")
        return self.installed_version

    @property
    def update_in_progress(self) -> bool:
        return self.current_update is not None and not self.current_update.done()

    def binary_path(self, version: Optional[str] = None) -> Path:
        version = version or self.installed_version or "missing"
        suffix = ".exe" if platform.system() == "Windows" else ""
        return self.base_dir / "bin" / version / f"{self.binary_name}{suffix}"

    async def _fetch_manifest(self) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=MANIFEST_HTTP_TIMEOUT_SECONDS) as client:
                response = await client.get(self.manifest_url)
        except httpx.RequestError as exc:
            raise EngineUpdateError(f"Unable to reach highlighter manifest: {exc}") from exc

        if response.status_code != 200:
            raise EngineUpdateError(f"Highlighter manifest request failed: HTTP {response.status_code}")
        try:
            manifest = response.json()
        except ValueError as exc:
            raise EngineUpdateError("Highlighter manifest is not valid JSON") from exc
        if not manifest.get("version") or not manifest.get("url"):
            raise EngineUpdateError("Highlighter manifest is missing version or url")
        self._manifest = manifest
        return manifest

    async def is_update_available(self) -> bool:
        """Check the manifest for a version other than the installed one."""
        try:
            manifest = await self._fetch_manifest()
        except EngineUpdateError as e:
            logger.warning(f"Highlighter update check failed: {e}")
            return False
        installed = self.installed_version
        if installed != manifest["version"] or not self.binary_path(installed).exists():
            logger.info(f"Highlighter update available: {installed} -> {manifest['version']}")
            return True
        return False

    def update(self, progress_callback: Optional[Callable[[float], None]] = None) -> asyncio.Task:
        """
        Start downloading the latest version, or join the running download.

        Returns:
            The task performing the update
        """
        if self.update_in_progress:
            return self.current_update
        self.current_update = asyncio.create_task(self._update(progress_callback))
        return self.current_update

    async def _update(self, progress_callback: Optional[Callable[[float], None]]):
        manifest = self._manifest or await self._fetch_manifest()
        version = manifest["version"]
        archive_path = self.base_dir / f"highlighter-{version}.zip"
        target_dir = self.base_dir / "bin" / version
        await asyncio.to_thread(self.base_dir.mkdir, parents=True, exist_ok=True)

        logger.info(f"Downloading highlighter {version} from {manifest['url']}")
        try:
            timeout = httpx.Timeout(settings.upload_http_timeout, connect=settings.upload_connect_timeout)
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
                async with client.stream("GET", manifest["url"]) as response:
                    if response.status_code != 200:
                        raise EngineUpdateError(f"Highlighter download failed: HTTP {response.status_code}")
                    total = int(response.headers.get("Content-Length") or 0)
                    received = 0
                    archive = await asyncio.to_thread(open, archive_path, "wb")
                    try:
                        async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                            await asyncio.to_thread(archive.write, chunk)
                            received += len(chunk)
                            if progress_callback and total:
                                progress_callback(min(1.0, received / total))
                    finally:
                        await asyncio.to_thread(archive.close)
        except httpx.RequestError as exc:
            raise EngineUpdateError(f"Highlighter download failed: {exc}") from exc

        def _install():
            if target_dir.exists():
                shutil.rmtree(target_dir)
            try:
                with zipfile.ZipFile(archive_path) as archive:
                    archive.extractall(target_dir)
            except zipfile.BadZipFile as exc:
                raise EngineUpdateError(f"Highlighter archive is corrupt: {exc}") from exc
            finally:
                archive_path.unlink(missing_ok=True)
            binary = self.binary_path(version)
            if binary.exists():
                binary.chmod(0o755)
            (self.base_dir / VERSION_FILE).write_text(json.dumps({"version": version}))

        await asyncio.to_thread(_install)
        if progress_callback:
            progress_callback(1.0)
        logger.info(f"Highlighter {version} installed")

    async def uninstall(self):
        """Remove every installed version."""
        if self.update_in_progress:
            self.current_update.cancel()
        await asyncio.to_thread(shutil.rmtree, self.base_dir, True)
        self._manifest = None
        logger.info("Highlighter uninstalled")

    # =========================================================================
    # Detection
    # =========================================================================

    async def detect(
        self,
        file_path: str,
        user_id: str,
        on_highlights: Callable[[List[Highlight]], Awaitable[None]],
        cancel_token: CancellationToken,
        on_progress: Callable[[float], None],
        milestones_path: Optional[str] = None,
        on_milestone: Optional[Callable[[Dict[str, Any]], None]] = None,
        game: Optional[str] = None,
    ) -> List[Highlight]:
        """
        Run the detection binary over a recording.

        Returns:
            Every highlight reported during the run

        Raises:
            DetectionCanceledError: If the token was cancelled
            DetectionError: If the binary exits with a non-zero code
        """
        binary = self.binary_path()
        if not binary.exists():
            raise DetectionError(f"Highlighter binary not installed: {binary}")

        cmd = [str(binary), file_path, "--user_id", user_id]
        if milestones_path:
            cmd += ["--milestones_file", milestones_path]
        if game:
            cmd += ["--game", game]

        logger.info(f"Running highlighter: {' '.join(cmd)}")
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )

        async def _terminate_on_cancel():
            await cancel_token.wait()
            if proc.returncode is None:
                logger.info(f"Terminating highlighter for {file_path}")
                proc.terminate()

        watcher = asyncio.create_task(_terminate_on_cancel())
        highlights: List[Highlight] = []
        output_lines: List[str] = []
        try:
            while True:
                line = await proc.stdout.readline()
                if not line:
                    break
                message = self._parse_line(line)
                if message is None:
                    output_lines.append(line.decode("utf-8", errors="ignore").rstrip())
                    continue

                kind = message.get("type")
                if kind == "progress":
                    on_progress(float(message.get("progress") or 0))
                elif kind == "highlights":
                    partial = [Highlight.from_dict(h) for h in message.get("highlights") or []]
                    highlights.extend(partial)
                    if not cancel_token.cancelled:
                        await on_highlights(partial)
                elif kind == "milestone" and on_milestone:
                    on_milestone(message.get("milestone") or {})

            await proc.wait()
        finally:
            watcher.cancel()
            if proc.returncode is None:
                proc.kill()
                await proc.wait()

        if cancel_token.cancelled:
            raise DetectionCanceledError()

        if proc.returncode != 0:
            logger.error("Highlighter failed with output:\n" + "\n".join(output_lines[-20:]))
            raise DetectionError(f"Highlighter exited with code {proc.returncode}", code=proc.returncode)

        return highlights

    @staticmethod
    def _parse_line(line: bytes) -> Optional[Dict[str, Any]]:
        line_str = line.decode("utf-8", errors="ignore").strip()
        if not line_str.startswith("{"):
            if line_str:
                logger.debug(f"highlighter: {line_str}")
            return None
        try:
            return json.loads(line_str)
        except json.JSONDecodeError:
            logger.debug(f"Ignoring malformed highlighter output: {line_str}")
            return None
