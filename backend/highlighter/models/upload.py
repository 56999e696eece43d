"""Upload tracking records."""
import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional


class UploadPlatform(str, enum.Enum):
    """Upload destinations."""
    YOUTUBE = "youtube"
    CROSSCLIP = "crossclip"
    TYPESTUDIO = "typestudio"
    CLIPCHAMP = "clipchamp"


@dataclass
class UploadInfo:
    """Upload status for one platform."""
    platform: UploadPlatform
    uploading: bool = False
    uploaded_bytes: int = 0
    total_bytes: int = 0
    cancel_requested: bool = False
    video_id: Optional[str] = None
    error: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform.value,
            "uploading": self.uploading,
            "uploaded_bytes": self.uploaded_bytes,
            "total_bytes": self.total_bytes,
            "cancel_requested": self.cancel_requested,
            "video_id": self.video_id,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadInfo":
        return cls(
            platform=UploadPlatform(data["platform"]),
            uploading=bool(data.get("uploading", False)),
            uploaded_bytes=int(data.get("uploaded_bytes") or 0),
            total_bytes=int(data.get("total_bytes") or 0),
            cancel_requested=bool(data.get("cancel_requested", False)),
            video_id=data.get("video_id"),
            error=bool(data.get("error", False)),
        )


@dataclass
class UploadProgress:
    uploaded_bytes: int
    total_bytes: int
