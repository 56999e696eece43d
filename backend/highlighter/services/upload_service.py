"""Upload manager: one upload per platform with progress and cancel."""
import logging
from typing import Any, Callable, Dict, List, Optional

from highlighter.errors import UploadCanceledError, UploadError, UploadInProgressError
from highlighter.models.upload import UploadInfo, UploadPlatform, UploadProgress
from highlighter.services.commands import ClearUploads, SetUploadInfo
from highlighter.services.state_store import StateStore

logger = logging.getLogger(__name__)

# Analytics names per platform
_ANALYTICS_NAMES = {
    UploadPlatform.YOUTUBE: "YouTube",
    UploadPlatform.CROSSCLIP: "Storage",
    UploadPlatform.TYPESTUDIO: "Storage",
    UploadPlatform.CLIPCHAMP: "Storage",
}


class UploadManager:
    """
    Tracks uploads of the exported video.

    Uploaders are looked up by platform and must return an UploadHandle.
    The storage-backed platforms may share one uploader instance.
    """

    def __init__(self, store: StateStore, uploaders: Dict[UploadPlatform, Any], analytics):
        self.store = store
        self.uploaders = uploaders
        self.analytics = analytics
        # Always the most recently started upload
        self._cancel_current: Optional[Callable[[], None]] = None

    def get_upload_info(self, platform: Optional[UploadPlatform] = None) -> List[UploadInfo]:
        uploads = self.store.state.uploads
        if platform is not None:
            return [uploads[platform]] if platform in uploads else []
        return list(uploads.values())

    def is_uploading(self, platform: UploadPlatform) -> bool:
        info = self.store.state.uploads.get(platform)
        return info is not None and info.uploading

    async def upload(
        self,
        platform: UploadPlatform,
        options: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """
        Upload the exported file to a platform.

        Args:
            platform: Destination platform
            options: Provider options such as title and description

        Returns:
            The remote id, or None if the upload failed or was canceled

        Raises:
            UploadInProgressError: If an upload to the platform is running
            UploadError: If there is nothing to upload
        """
        if self.is_uploading(platform):
            raise UploadInProgressError(f"Upload to {platform.value} already in progress")

        export = self.store.state.export
        if not export.exported or not export.file:
            raise UploadError("Export the video before uploading it")

        uploader = self.uploaders.get(platform)
        if uploader is None:
            raise UploadError(f"No uploader configured for {platform.value}")

        self.store.apply(SetUploadInfo(platform, {
            "uploading": True,
            "cancel_requested": False,
            "error": False,
            "uploaded_bytes": 0,
            "total_bytes": 0,
            "video_id": None,
        }))

        def on_progress(progress: UploadProgress):
            self.store.apply(SetUploadInfo(platform, {
                "uploaded_bytes": progress.uploaded_bytes,
                "total_bytes": progress.total_bytes,
            }))

        event_name = _ANALYTICS_NAMES[platform]
        try:
            handle = uploader.upload(export.file, {"platform": platform.value, **(options or {})}, on_progress)
            self._cancel_current = handle.cancel
            self.store.apply(SetUploadInfo(platform, {"total_bytes": handle.size}))
            video_id = await handle.complete
        except Exception as e:
            info = self.store.state.uploads[platform]
            if info.cancel_requested or isinstance(e, UploadCanceledError):
                logger.info(f"Upload to {platform.value} canceled")
                self.store.apply(SetUploadInfo(platform, {"uploading": False}))
            else:
                logger.error(f"Upload to {platform.value} failed: {e}")
                self.store.apply(SetUploadInfo(platform, {"uploading": False, "error": True}))
                self.analytics.record("Highlighter", {
                    "type": f"Upload{event_name}Error",
                    "platform": platform.value,
                })
            return None

        self.store.apply(SetUploadInfo(platform, {"uploading": False, "video_id": video_id}))
        self.analytics.record("Highlighter", {
            "type": f"Upload{event_name}Success",
            "platform": platform.value,
            "privacy": (options or {}).get("privacy_status"),
            "videoLink": video_id,
        })
        logger.info(f"Upload to {platform.value} finished: {video_id}")
        return video_id

    def cancel(self, platform: UploadPlatform) -> bool:
        """Cancel the running upload to a platform. No-op when none runs."""
        if not self.is_uploading(platform):
            return False
        self.store.apply(SetUploadInfo(platform, {"cancel_requested": True}))
        if self._cancel_current is not None:
            self._cancel_current()
        return True

    def clear(self):
        """Forget all upload records."""
        self._cancel_current = None
        self.store.apply(ClearUploads())
