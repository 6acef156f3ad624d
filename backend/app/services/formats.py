from typing import Any, List, Optional

from backend.app.core.errors import NoFormatsAvailable
from backend.app.models.schemas import AUDIO, VIDEO, MediaFormat, VideoMetadata
from backend.app.services.resolver import filter_formats

HIGHEST = "highestaudio"
LOWEST = "lowestaudio"
VIDEO_LISTING_LIMIT = 10


def parse_bitrate(value: Any) -> int:
    """Integer bitrate of a format; missing or non-numeric values count as 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        pass
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0


def list_audio_formats(metadata: VideoMetadata) -> List[MediaFormat]:
    return filter_formats(metadata.formats, AUDIO)


def list_video_formats(metadata: VideoMetadata, limit: int = VIDEO_LISTING_LIMIT) -> List[MediaFormat]:
    return filter_formats(metadata.formats, VIDEO)[:limit]


def select_best_audio(metadata: VideoMetadata) -> MediaFormat:
    best: Optional[MediaFormat] = None
    for fmt in list_audio_formats(metadata):
        # strict '>' keeps the first-seen maximum on ties
        if best is None or parse_bitrate(fmt.bitrate) > parse_bitrate(best.bitrate):
            best = fmt
    if best is None:
        raise NoFormatsAvailable()
    return best


def choose_audio_format(metadata: VideoMetadata, quality: Optional[str] = HIGHEST) -> MediaFormat:
    audio = list_audio_formats(metadata)
    if not audio:
        raise NoFormatsAvailable()
    if quality == LOWEST:
        lowest = audio[0]
        for fmt in audio[1:]:
            if parse_bitrate(fmt.bitrate) < parse_bitrate(lowest.bitrate):
                lowest = fmt
        return lowest
    if quality and quality != HIGHEST:
        for fmt in audio:
            if fmt.format_id == quality:
                return fmt
    return select_best_audio(metadata)


def describe_format(fmt: MediaFormat) -> dict:
    return {
        "itag": fmt.format_id,
        "container": fmt.container,
        "codecs": fmt.codecs,
        "bitrate": fmt.bitrate,
        "sampleRate": fmt.sample_rate,
        "channels": fmt.channels,
        "contentLength": fmt.content_length,
    }
