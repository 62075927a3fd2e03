from pydantic_settings import BaseSettings
from typing import Optional
import os

class Settings(BaseSettings):
    PROJECT_NAME: str = "MovieBox API"
    API_PREFIX: str = "/api"
    CORS_ORIGINS: list[str] = ["*"]
    PORT: int = 5435
    LOG_LEVEL: str = "INFO"

    # Catalog host selection
    MOVIEBOX_API_HOST: str = "h5.aoneroom.com"
    MIRROR_HOSTS: list[str] = [
        "h5.aoneroom.com",
        "movieboxapp.in",
        "moviebox.pk",
        "moviebox.ph",
        "moviebox.id",
        "v.moviebox.ph",
        "netnaija.video",
    ]

    # Upstream request settings
    UPSTREAM_TIMEOUT: float = 30.0
    MOBILE_USER_AGENT: str = "okhttp/4.12.0"
    FORWARDED_IP: str = "1.1.1.1"
    CLIENT_INFO: str = '{"timezone":"Africa/Nairobi"}'
    TRENDING_UID: str = "5591179548772780352"
    PLAYER_ORIGIN: str = "https://fmoviesunblocked.net"

    # Media relay settings
    DOWNLOAD_FALLBACK_FILENAME: str = "movie.mp4"
    STREAM_FILENAME: str = "stream.mp4"
    STREAM_CACHE_CONTROL: str = "public, max-age=3600"

    # Base used for links handed out by /api/sources; request host when unset
    PUBLIC_BASE_URL: Optional[str] = None
    INDEX_HTML: str = os.path.join(os.getcwd(), "index.html")

    class Config:
        case_sensitive = True

settings = Settings()
