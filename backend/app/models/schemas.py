from enum import Enum, IntEnum
from pydantic import BaseModel
from typing import Any, List, Optional

class SubjectType(IntEnum):
    ALL = 0
    MOVIES = 1
    TV_SERIES = 2
    MUSIC = 6

class ProxyMode(str, Enum):
    DOWNLOAD = "download"
    STREAM = "stream"

class ProxyRequest(BaseModel):
    target_url: str
    range: Optional[str] = None
    mode: ProxyMode

class MediaSource(BaseModel):
    id: Any = None
    quality: str
    download_url: str
    stream_url: str
    size: Optional[Any] = None
    format: str = "mp4"

class ApiResponse(BaseModel):
    status: int = 200
    success: str = "true"
    results: Any = None

class SourcesResponse(ApiResponse):
    results: List[MediaSource] = []
    subtitles: List[Any] = []

class ErrorResponse(BaseModel):
    status: int
    success: str = "false"
    message: str
    error: Optional[str] = None
