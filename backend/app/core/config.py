from pydantic_settings import BaseSettings
import os

class Settings(BaseSettings):
    PROJECT_NAME: str = "AudioFlow"
    CORS_ORIGINS: list[str] = ["*"]
    LOG_LEVEL: str = "INFO"

    # Storage settings
    DOWNLOAD_PATH: str = "downloads"
    FILE_RETENTION_SECONDS: int = 24 * 60 * 60
    CLEANUP_INTERVAL_SECONDS: int = 30 * 60

    # Resolution settings
    USER_AGENT: str = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36'
    CACHE_TTL_SECONDS: int = 10 * 60
    CACHE_MAX_ENTRIES: int = 1000
    RESOLVE_ATTEMPTS: int = 3
    RESOLVE_RETRY_DELAY: float = 2.0
    DIRECT_LINK_TTL_HOURS: int = 6

    # Transcode settings
    FFMPEG_PATH: str = "ffmpeg"
    DEFAULT_BITRATE: int = 128
    AUDIO_CHANNELS: int = 2
    AUDIO_SAMPLE_RATE: int = 44100
    STREAM_CHUNK_SIZE: int = 64 * 1024

    BATCH_MAX_ITEMS: int = 10

    class Config:
        case_sensitive = True
        env_file = ".env"

settings = Settings()

# Ensure directories exist
if os.environ.get("VERCEL"):
    settings.DOWNLOAD_PATH = "/tmp/downloads"

os.makedirs(settings.DOWNLOAD_PATH, exist_ok=True)
