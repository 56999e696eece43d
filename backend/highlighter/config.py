"""Application configuration."""
import os
import tempfile
from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="HIGHLIGHTER_",
    )

    # App settings
    app_name: str = "Highlighter"
    debug: bool = True

    # Server settings
    host: str = "127.0.0.1"
    port: int = 8000
    frontend_url: str = "http://localhost:5173"

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/highlighter.db"
    state_namespace: str = "HighlighterService"

    # Data directories
    data_dir: Path = Path("./data")
    scrub_sprite_dir: Path = Path("./data/scrub")
    clips_dir: Path = Path("./data/clips")
    milestones_dir: Path = Path("./data/milestones")

    # FFmpeg settings
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Clip import
    supported_file_types: List[str] = ["mp4", "mov", "mkv", "avi", "flv"]
    replay_buffer_duration: int = 20  # Seconds captured by one replay buffer save
    load_concurrency: int = os.cpu_count() or 4

    # Scrub sprite settings
    scrub_width: int = 266
    scrub_height: int = 150
    scrub_frames: int = 20

    # AI highlighter engine
    ai_highlighter_enabled: bool = True
    highlighter_dir: Path = Path("./data/ai-highlighter")
    highlighter_manifest_url: str = "https://cdn.example.com/ai-highlighter/manifest.json"
    highlighter_binary_name: str = "highlighter"
    highlight_padding_seconds: float = 2.0
    detection_delay_seconds: float = 5.0
    progress_update_interval: float = 1.0  # Seconds between persisted progress writes

    # Export settings
    export_file: Path = Path.home() / "Videos" / "Output.mp4"
    preview_file: Path = Path(tempfile.gettempdir()) / "highlighter-preview.mp4"
    export_fps: int = 30
    export_resolution: int = 1080
    export_preset: str = "medium"
    export_video_codec: str = "libx264"
    export_audio_codec: str = "aac"
    export_audio_bitrate: str = "192k"
    frame_update_interval: float = 0.1  # Seconds between current frame updates

    # Uploads
    youtube_access_token: Optional[str] = None
    storage_upload_url: str = "https://api.example.com/v1/shared-storage/uploads"
    storage_api_token: Optional[str] = None
    upload_chunk_size: int = 8 * 1024 * 1024
    upload_http_timeout: float = 120.0
    upload_connect_timeout: float = 15.0

    # Analytics
    analytics_url: Optional[str] = None


settings = Settings()

# Ensure directories exist
settings.data_dir.mkdir(parents=True, exist_ok=True)
settings.scrub_sprite_dir.mkdir(parents=True, exist_ok=True)
settings.milestones_dir.mkdir(parents=True, exist_ok=True)
