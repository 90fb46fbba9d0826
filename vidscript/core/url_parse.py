"""
Video link parsing and validation.
"""

import re

from vidscript.core.constants import VIDEO_ID_PATTERN
from vidscript.core.error_codes import UnresolvableLink

_VIDEO_ID_RE = re.compile(VIDEO_ID_PATTERN)


def extract_video_id(url: str) -> str | None:
    """
    Extract the BV video id from a share link.
    Returns None if the string carries no video id.
    """
    if not url:
        return None
    m = _VIDEO_ID_RE.search(url.strip())
    return m.group(0) if m else None


def resolve(url: str) -> str:
    """
    Resolve a share link to its video id.
    Raises UnresolvableLink if no id can be found.
    """
    video_id = extract_video_id(url)
    if not video_id:
        raise UnresolvableLink(f"No video id in link: {url!r}")
    return video_id


def is_supported_url(url: str) -> bool:
    """Quick check if a string carries a video id."""
    return extract_video_id(url) is not None


def parse_input_lines(text: str) -> list[str]:
    """
    Parse pasted text into a list of video links.
    - Trims whitespace
    - Ignores empty lines
    - Skips lines without a video id
    """
    urls = []
    for line in text.splitlines():
        line = line.strip()
        if line and is_supported_url(line):
            urls.append(line)
    return urls
