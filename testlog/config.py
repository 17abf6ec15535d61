from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Application
    app_name: str = "TestLog Media API"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True

    # Database
    database_url: str = "sqlite:///./testlog.db"
    database_echo: bool = False

    # Managed storage root for imported media
    media_root: str = "./media"

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Render settings
    render_width: int = 1920
    render_height: int = 1080
    render_fps: int = 30
    render_crf: int = 20
    render_preset: str = "medium"
    overlay_font_path: str = ""  # TTF used for overlay text; Pillow default when empty

    # Audio sync
    sync_analysis_seconds: float = 20.0
    sync_plausible_offset_seconds: float = 20.0
    sync_max_offset_seconds: float = 60.0

    # Import policy
    max_video_bytes: int = 1_073_741_824  # 1 GiB
    max_videos_per_test: int = 2
    max_tester_files_per_test: int = 1

    # Redis (for Celery)
    redis_url: str = "redis://localhost:6379/0"
    celery_task_time_limit: int = 3600

    @computed_field
    @property
    def media_root_path(self) -> Path:
        return Path(self.media_root).expanduser().resolve()


@lru_cache
def get_settings() -> Settings:
    return Settings()
