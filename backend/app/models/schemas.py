from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Optional, Union

AUDIO = "audio"
VIDEO = "video"
MUXED = "muxed"

class MediaFormat(BaseModel):
    model_config = ConfigDict(frozen=True)

    format_id: str
    kind: str
    container: Optional[str] = None
    codecs: Optional[str] = None
    # Raw upstream value; see formats.parse_bitrate
    bitrate: Optional[Union[int, float, str]] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None
    content_length: Optional[int] = None
    url: str

class Thumbnail(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    width: Optional[int] = None
    height: Optional[int] = None

class VideoMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    author: Optional[str] = None
    duration: Optional[float] = None
    view_count: Optional[int] = None
    description: Optional[str] = None
    upload_date: Optional[str] = None
    category: Optional[str] = None
    thumbnails: List[Thumbnail] = []
    formats: List[MediaFormat] = []

class DownloadRequest(BaseModel):
    videoId: Optional[str] = None
    quality: str = "highestaudio"
    bitrate: Optional[int] = Field(default=None, ge=32, le=320)

class BatchRequest(BaseModel):
    # Shape is checked by the batch orchestrator so bad input maps to a 400
    videoIds: Any = None
    quality: str = "highestaudio"
    bitrate: Optional[int] = Field(default=None, ge=32, le=320)

class BatchSuccess(BaseModel):
    videoId: str
    title: str
    filename: str
    downloadUrl: str
    status: str = "queued"

class BatchFailure(BaseModel):
    videoId: Any
    error: str

class BatchResponse(BaseModel):
    status: str = "batch_queued"
    successful: List[BatchSuccess] = []
    failed: List[BatchFailure] = []
    total: int
