"""
Share URL parsing and validation.
"""

from urllib.parse import urlparse

from vidfriends.core.constants import ALLOWED_URL_SCHEMES, MAX_URL_LEN
from vidfriends.core.error_codes import MediaError, ErrorCode


def normalize_video_url(url: str) -> str | None:
    """
    Return the trimmed URL if it is an absolute http(s) URL with a host.
    Returns None otherwise.
    """
    url = (url or "").strip()
    if not url or len(url) > MAX_URL_LEN:
        return None
    if any(c.isspace() for c in url):
        return None

    try:
        parsed = urlparse(url)
    except ValueError:
        return None

    if parsed.scheme.lower() not in ALLOWED_URL_SCHEMES:
        return None
    if not parsed.hostname:
        return None
    return url


def validate_video_url(url: str) -> str:
    """
    Validate a shared video URL and return it normalized.
    Raises MediaError if invalid.
    """
    normalized = normalize_video_url(url)
    if not normalized:
        raise MediaError(ErrorCode.INVALID_URL, f"Not a valid video URL: {url!r}")
    return normalized


def is_video_url(url: str) -> bool:
    """Quick check if a string looks like a shareable video URL."""
    return normalize_video_url(url) is not None


def parse_input_lines(text: str) -> list[str]:
    """
    Parse pasted text into a list of video URLs.
    - Trims whitespace
    - Ignores empty lines and '#' comments
    - Rejects non-URLs (silently skips)
    """
    urls = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        if is_video_url(line):
            urls.append(line)
    return urls


def parse_input_file(filepath: str) -> list[str]:
    """Parse a .txt file containing one URL per line."""
    with open(filepath, 'r', encoding='utf-8', errors='replace') as f:
        return parse_input_lines(f.read())
