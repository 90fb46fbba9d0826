"""
Subtitle JSON parsing → plain text.
Removes styling/markup, collapses whitespace, drops consecutive repeats.
"""

import re
import logging

logger = logging.getLogger(__name__)

_HTML_TAG_RE = re.compile(r'<[^>]+>')
_WHITESPACE_RE = re.compile(r'[ \t　]+')


def clean_caption_line(line: str) -> str:
    line = _HTML_TAG_RE.sub('', line or '')
    return _WHITESPACE_RE.sub(' ', line).strip()


def parse_subtitle_json(payload: dict) -> str:
    """
    Convert a platform subtitle document ({"body": [{"from", "to", "content"}]})
    into clean plain text, one cue per line.
    """
    body = payload.get('body') or []

    cleaned_lines = []
    prev_line = None
    for cue in body:
        if not isinstance(cue, dict):
            continue
        text = clean_caption_line(str(cue.get('content', '')))
        if not text:
            continue
        # Subtitle tracks often repeat a cue across adjacent timestamps
        if text == prev_line:
            continue
        cleaned_lines.append(text)
        prev_line = text

    logger.debug("Parsed %d subtitle cues into %d lines", len(body), len(cleaned_lines))
    return '\n'.join(cleaned_lines)
