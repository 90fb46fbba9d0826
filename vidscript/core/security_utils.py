"""
Security utilities for VidScript.
- Filename sanitization for staged uploads
- Secret masking for logs
"""

import re
import logging

from vidscript.core.constants import UNSAFE_FILENAME_CHARS, MAX_FILENAME_LEN

logger = logging.getLogger(__name__)


def sanitize_filename(name: str, fallback: str = "audio.bin") -> str:
    """Sanitize a suggested file name for upload to a public host."""
    if not name:
        return fallback
    # Replace unsafe characters with underscore
    safe = re.sub(UNSAFE_FILENAME_CHARS, '_', name)
    # Remove path traversal sequences
    safe = safe.replace('..', '')
    # Collapse multiple underscores/spaces
    safe = re.sub(r'[_\s]+', '_', safe).strip('_')
    # Truncate, keeping the extension
    if len(safe) > MAX_FILENAME_LEN:
        stem, dot, ext = safe.rpartition('.')
        if dot and len(ext) <= 5:
            safe = stem[:MAX_FILENAME_LEN - len(ext) - 1] + '.' + ext
        else:
            safe = safe[:MAX_FILENAME_LEN]
    # Remove leading dots (hidden files)
    safe = safe.lstrip('.')
    return safe if safe else fallback


def mask_secret(secret: str | None) -> str:
    """Render an API key safe for logs: keep the last 4 characters only."""
    if not secret:
        return "<none>"
    if len(secret) <= 8:
        return "****"
    return "****" + secret[-4:]
