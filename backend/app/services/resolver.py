import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import yt_dlp

from backend.app.core.config import settings
from backend.app.core.errors import ResolutionError
from backend.app.models.schemas import AUDIO, MUXED, VIDEO, MediaFormat, Thumbnail, VideoMetadata

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class RetryPolicy:
    """How many times a call site tries the resolver, with a fixed delay."""
    attempts: int = 1
    delay: float = 0.0

SINGLE_ATTEMPT = RetryPolicy()
STREAM_RETRY = RetryPolicy(attempts=settings.RESOLVE_ATTEMPTS, delay=settings.RESOLVE_RETRY_DELAY)

NOT_FOUND_MARKERS = (
    'video unavailable', 'private video', 'has been removed', 'not available',
    'does not exist', 'account associated with this video has been terminated',
    'sign in to confirm your age', 'incomplete youtube id',
)
RATE_LIMIT_MARKERS = ('http error 429', 'too many requests', 'rate-limit', 'rate limit')


def watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def filter_formats(formats: List[MediaFormat], kind: str) -> List[MediaFormat]:
    return [f for f in formats if f.kind == kind]


def classify_error(exc: Exception) -> str:
    message = str(exc).lower()
    if any(m in message for m in RATE_LIMIT_MARKERS):
        return ResolutionError.RATE_LIMITED
    if any(m in message for m in NOT_FOUND_MARKERS):
        return ResolutionError.NOT_FOUND
    return ResolutionError.NETWORK


class SourceResolver:
    def __init__(self, user_agent: str = settings.USER_AGENT):
        self.ua = user_agent
        self.headers = {
            'User-Agent': self.ua,
            'Accept-Language': 'en-US,en;q=0.9',
            'Referer': 'https://www.youtube.com/',
        }

    def _ydl_opts(self) -> dict:
        return {
            'quiet': True, 'no_warnings': True, 'skip_download': True,
            'check_formats': False, 'user_agent': self.ua, 'socket_timeout': 10,
            'http_headers': self.headers, 'no_color': True, 'noplaylist': True,
        }

    async def resolve(self, video_id: str, policy: RetryPolicy = SINGLE_ATTEMPT) -> VideoMetadata:
        last_error: Optional[ResolutionError] = None
        for attempt in range(1, policy.attempts + 1):
            logger.info("Getting video info for %s, attempt %d/%d", video_id, attempt, policy.attempts)
            try:
                return await self._resolve_once(video_id)
            except ResolutionError as e:
                logger.warning("Resolution attempt %d for %s failed: %s", attempt, video_id, e)
                last_error = e
                if attempt < policy.attempts:
                    await asyncio.sleep(policy.delay)
        raise last_error

    async def _resolve_once(self, video_id: str) -> VideoMetadata:
        loop = asyncio.get_running_loop()
        try:
            info = await loop.run_in_executor(None, self._extract_sync, watch_url(video_id), self._ydl_opts())
        except yt_dlp.utils.DownloadError as e:
            raise ResolutionError(classify_error(e), str(e)) from e
        except yt_dlp.utils.ExtractorError as e:
            raise ResolutionError(ResolutionError.MALFORMED, str(e)) from e
        if not isinstance(info, dict):
            raise ResolutionError(ResolutionError.MALFORMED, "Empty extraction result")
        try:
            return self._parse_info(info)
        except (KeyError, TypeError, ValueError) as e:
            raise ResolutionError(ResolutionError.MALFORMED, str(e)) from e

    def _extract_sync(self, url: str, opts: dict):
        with yt_dlp.YoutubeDL(opts) as ydl:
            return ydl.extract_info(url, download=False)

    def _parse_format(self, f: Dict[str, Any]) -> Optional[MediaFormat]:
        url = f.get('url')
        if not url or f.get('ext') == 'mhtml':
            return None

        vcodec = f.get('vcodec') or 'none'
        acodec = f.get('acodec') or 'none'
        if vcodec == 'none' and acodec == 'none':
            return None
        if vcodec == 'none':
            kind = AUDIO
        elif acodec == 'none':
            kind = VIDEO
        else:
            kind = MUXED

        codecs = ', '.join(c for c in (vcodec, acodec) if c != 'none')
        return MediaFormat(
            format_id=str(f.get('format_id')),
            kind=kind,
            container=f.get('ext'),
            codecs=codecs or None,
            bitrate=f.get('abr') if kind == AUDIO else f.get('tbr'),
            sample_rate=f.get('asr'),
            channels=f.get('audio_channels'),
            content_length=f.get('filesize') or f.get('filesize_approx'),
            url=url,
        )

    def _parse_info(self, info: Dict[str, Any]) -> VideoMetadata:
        formats = [mf for mf in (self._parse_format(f) for f in info.get('formats') or []) if mf]
        thumbnails = [
            Thumbnail(url=t['url'], width=t.get('width'), height=t.get('height'))
            for t in info.get('thumbnails') or [] if t.get('url')
        ]
        categories = info.get('categories') or []
        return VideoMetadata(
            id=info['id'], title=info.get('title') or info['id'],
            author=info.get('uploader') or info.get('channel'),
            duration=info.get('duration'), view_count=info.get('view_count'),
            description=info.get('description'), upload_date=info.get('upload_date'),
            category=categories[0] if categories else None,
            thumbnails=thumbnails, formats=formats,
        )

resolver = SourceResolver()
