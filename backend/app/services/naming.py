import re
import uuid

MAX_FILENAME_LENGTH = 100

_DISALLOWED = re.compile(r'[^A-Za-z0-9_\s-]')
_SEPARATOR_RUNS = re.compile(r'[\s-]+')


def sanitize_filename(title: str) -> str:
    name = _DISALLOWED.sub('', title or '')
    name = _SEPARATOR_RUNS.sub('_', name).strip('_').lower()
    return name[:MAX_FILENAME_LENGTH] or 'audio'


def unique_filename(title: str, ext: str = 'mp3') -> str:
    """Sanitized title plus a short random suffix, e.g. ``song_1a2b3c4d.mp3``."""
    return f"{sanitize_filename(title)}_{uuid.uuid4().hex[:8]}.{ext}"
