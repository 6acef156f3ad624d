import re
from typing import Any

from backend.app.core.errors import InvalidIdentifier

VIDEO_ID_RE = re.compile(r'[A-Za-z0-9_-]{11}')


def is_valid_video_id(value: Any) -> bool:
    return isinstance(value, str) and VIDEO_ID_RE.fullmatch(value) is not None


def require_video_id(value: Any) -> str:
    if not is_valid_video_id(value):
        raise InvalidIdentifier()
    return value
