"""Upload providers for the exported video."""
import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx

from highlighter.config import settings
from highlighter.errors import UploadCanceledError, UploadError
from highlighter.models.upload import UploadProgress

logger = logging.getLogger(__name__)

YOUTUBE_UPLOAD_URL = (
    "https://www.googleapis.com/upload/youtube/v3/videos"
    "?uploadType=resumable&part=snippet,status"
)

ProgressCallback = Callable[[UploadProgress], None]


def _extract_error_detail(response: httpx.Response) -> str:
    """Extract concise error detail from provider response."""
    try:
        payload = response.json()
    except ValueError:
        text = response.text.strip()
        return text or f"HTTP {response.status_code}"

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            if message:
                return str(message)
        elif error:
            return str(error)

    return f"HTTP {response.status_code}"


@dataclass
class UploadHandle:
    """A running upload: cancel it, or await `complete` for the remote id."""
    cancel: Callable[[], None]
    complete: "asyncio.Task[str]"
    size: int


def _http_timeout() -> httpx.Timeout:
    return httpx.Timeout(settings.upload_http_timeout, connect=settings.upload_connect_timeout)


class YouTubeUploader:
    """
    Uploads to YouTube using the Data API resumable protocol.

    The session is created with a metadata POST, then the file is sent in
    chunks with Content-Range headers. Cancel is checked between chunks.
    """

    def __init__(self, access_token: Optional[str] = None, chunk_size: Optional[int] = None):
        self.access_token = access_token or settings.youtube_access_token
        self.chunk_size = chunk_size or settings.upload_chunk_size

    def upload(
        self,
        file_path: str,
        options: Dict[str, Any],
        on_progress: ProgressCallback,
    ) -> UploadHandle:
        size = os.path.getsize(file_path)
        canceled = asyncio.Event()
        task = asyncio.create_task(self._upload(file_path, size, options, on_progress, canceled))
        return UploadHandle(cancel=canceled.set, complete=task, size=size)

    def _metadata(self, options: Dict[str, Any]) -> Dict[str, Any]:
        tags: List[str] = options.get("tags") or []
        return {
            "snippet": {
                "title": (options.get("title") or "Highlights")[:100],
                "description": (options.get("description") or "")[:5000],
                "tags": tags[:500],
                "categoryId": options.get("category_id", "20"),  # Gaming
            },
            "status": {
                "privacyStatus": options.get("privacy_status", "private"),
                "selfDeclaredMadeForKids": False,
            },
        }

    async def _upload(
        self,
        file_path: str,
        size: int,
        options: Dict[str, Any],
        on_progress: ProgressCallback,
        canceled: asyncio.Event,
    ) -> str:
        try:
            return await self._send(file_path, size, options, on_progress, canceled)
        except httpx.RequestError as exc:
            raise UploadError(f"Unable to reach YouTube: {exc}") from exc

    async def _send(
        self,
        file_path: str,
        size: int,
        options: Dict[str, Any],
        on_progress: ProgressCallback,
        canceled: asyncio.Event,
    ) -> str:
        if not self.access_token:
            raise UploadError("YouTube account is not connected")

        async with httpx.AsyncClient(timeout=_http_timeout()) as client:
            response = await client.post(
                YOUTUBE_UPLOAD_URL,
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Content-Type": "application/json",
                    "X-Upload-Content-Length": str(size),
                    "X-Upload-Content-Type": "video/mp4",
                },
                json=self._metadata(options),
            )
            if response.status_code != 200:
                raise UploadError(f"Failed to initiate upload: {_extract_error_detail(response)}")

            upload_url = response.headers.get("Location")
            if not upload_url:
                raise UploadError("No upload URL received")

            offset = 0
            with open(file_path, "rb") as video_file:
                while True:
                    if canceled.is_set():
                        raise UploadCanceledError("Upload canceled")

                    chunk = video_file.read(self.chunk_size)
                    end = offset + len(chunk) - 1
                    response = await client.put(
                        upload_url,
                        headers={
                            "Content-Type": "video/mp4",
                            "Content-Length": str(len(chunk)),
                            "Content-Range": f"bytes {offset}-{end}/{size}",
                        },
                        content=chunk,
                    )
                    offset += len(chunk)
                    on_progress(UploadProgress(uploaded_bytes=offset, total_bytes=size))

                    if response.status_code == 308:
                        continue
                    if response.status_code not in (200, 201):
                        raise UploadError(f"Failed to upload video: {_extract_error_detail(response)}")
                    break

        try:
            result = response.json()
        except ValueError as exc:
            raise UploadError("Failed to upload video: invalid provider response") from exc

        video_id = result.get("id")
        if not video_id:
            raise UploadError("Failed to upload video: no video id returned")
        logger.info(f"Uploaded {file_path} to YouTube as {video_id}")
        return video_id


class StorageUploader:
    """Streams the file to shared storage, used by the clip editing platforms."""

    def __init__(
        self,
        upload_url: Optional[str] = None,
        api_token: Optional[str] = None,
        chunk_size: Optional[int] = None,
    ):
        self.upload_url = upload_url or settings.storage_upload_url
        self.api_token = api_token or settings.storage_api_token
        self.chunk_size = chunk_size or settings.upload_chunk_size

    def upload(
        self,
        file_path: str,
        options: Dict[str, Any],
        on_progress: ProgressCallback,
    ) -> UploadHandle:
        size = os.path.getsize(file_path)
        canceled = asyncio.Event()
        task = asyncio.create_task(self._upload(file_path, size, options, on_progress, canceled))
        return UploadHandle(cancel=canceled.set, complete=task, size=size)

    async def _read_chunks(
        self,
        file_path: str,
        size: int,
        on_progress: ProgressCallback,
        canceled: asyncio.Event,
    ) -> AsyncIterator[bytes]:
        sent = 0
        with open(file_path, "rb") as video_file:
            while True:
                if canceled.is_set():
                    raise UploadCanceledError("Upload canceled")
                chunk = video_file.read(self.chunk_size)
                if not chunk:
                    break
                sent += len(chunk)
                yield chunk
                on_progress(UploadProgress(uploaded_bytes=sent, total_bytes=size))

    async def _upload(
        self,
        file_path: str,
        size: int,
        options: Dict[str, Any],
        on_progress: ProgressCallback,
        canceled: asyncio.Event,
    ) -> str:
        headers = {
            "Content-Type": "video/mp4",
            "Content-Length": str(size),
            "X-File-Name": Path(file_path).name,
        }
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        params = {"platform": options.get("platform", "")}

        try:
            async with httpx.AsyncClient(timeout=_http_timeout()) as client:
                response = await client.post(
                    self.upload_url,
                    params=params,
                    headers=headers,
                    content=self._read_chunks(file_path, size, on_progress, canceled),
                )
        except httpx.RequestError as exc:
            if canceled.is_set():
                raise UploadCanceledError("Upload canceled") from exc
            raise UploadError(f"Unable to reach storage: {exc}") from exc

        if response.status_code not in (200, 201):
            raise UploadError(f"Storage upload failed: {_extract_error_detail(response)}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise UploadError("Storage upload failed: invalid provider response") from exc

        file_id = payload.get("id")
        if not file_id:
            raise UploadError("Storage upload failed: no id returned")
        logger.info(f"Uploaded {file_path} to shared storage as {file_id}")
        return str(file_id)
