from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./app.db"

    # JWT
    secret_key: str = "your-secret-key-change-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7  # 7 days

    # Frontend URL for CORS
    frontend_url: str = "http://localhost:3000"

    # Root folder for persisted media: <data_root>/videos/<id>/{video,thumbnail}
    # (empty = backend/data)
    data_root: str = ""

    # Read size for upload and stream copies
    upload_chunk_size: int = 1024 * 1024  # 1 MB

    # Fraction of size and duration a session must reach before a view counts
    watch_percentage_required: float = 0.6

    # FFprobe / FFmpeg: bounded worker pool, per-call timeout
    media_workers: int = 2
    media_tool_timeout_seconds: int = 120
    ffprobe_binary: str = "ffprobe"
    ffmpeg_binary: str = "ffmpeg"
    thumbnail_offset_seconds: float = 1.0

    # Node part of generated identifiers (0-1023), unique per running instance
    id_node: int = 1

    log_level: str = "INFO"

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()
