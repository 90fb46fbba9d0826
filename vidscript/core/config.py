"""
Application configuration manager.
Stores pipeline settings in a JSON file under the user's config directory.
API keys are never stored here; callers pass them per run.
"""

import json
import logging
from pathlib import Path

from vidscript.core.constants import (
    CONFIG_PATH, DEFAULT_METADATA_RELAYS, DEFAULT_AUDIO_RELAYS,
    RELAY_READ_TIMEOUT_SEC, POLL_INTERVAL_SEC, TRANSCRIPTION_TIMEOUT_SEC,
    MIN_AUDIO_BYTES, DASHSCOPE_MODEL, DASHSCOPE_LANGUAGE_HINTS, STAGING_ENDPOINT,
)

# Validation bounds
_RELAY_TIMEOUT_MIN = 5
_RELAY_TIMEOUT_MAX = 120
_POLL_INTERVAL_MIN = 1
_POLL_INTERVAL_MAX = 30
_TRANSCRIPTION_TIMEOUT_MIN = 60       # 1 minute
_TRANSCRIPTION_TIMEOUT_MAX = 3600     # 1 hour

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'metadata_relays': list(DEFAULT_METADATA_RELAYS),
    'audio_relays': list(DEFAULT_AUDIO_RELAYS),
    'relay_read_timeout_sec': RELAY_READ_TIMEOUT_SEC,
    'poll_interval_sec': POLL_INTERVAL_SEC,
    'transcription_timeout_sec': TRANSCRIPTION_TIMEOUT_SEC,
    'min_audio_bytes': MIN_AUDIO_BYTES,
    'model': DASHSCOPE_MODEL,
    'language_hints': list(DASHSCOPE_LANGUAGE_HINTS),
    'staging_endpoint': STAGING_ENDPOINT,
}


def _clamp_number(key: str, value, lo: float, hi: float, cast=float):
    try:
        value = cast(value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s %r — using default", key, value)
        return _DEFAULTS[key]
    return max(lo, min(hi, value))


def validate_setting(key: str, value):
    """Validate and coerce config values to safe ranges."""
    if key in ('metadata_relays', 'audio_relays'):
        if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
            logger.warning("Invalid %s %r — using default", key, value)
            return list(_DEFAULTS[key])
        return [v for v in value if '{url}' in v or '{raw_url}' in v]

    if key == 'relay_read_timeout_sec':
        return _clamp_number(key, value, _RELAY_TIMEOUT_MIN, _RELAY_TIMEOUT_MAX)

    if key == 'poll_interval_sec':
        return _clamp_number(key, value, _POLL_INTERVAL_MIN, _POLL_INTERVAL_MAX)

    if key == 'transcription_timeout_sec':
        return _clamp_number(key, value, _TRANSCRIPTION_TIMEOUT_MIN, _TRANSCRIPTION_TIMEOUT_MAX)

    if key == 'min_audio_bytes':
        return _clamp_number(key, value, 1, float('inf'), cast=int)

    if key == 'language_hints':
        if isinstance(value, str):
            value = [v.strip() for v in value.split(',')]
        if not isinstance(value, (list, tuple)):
            logger.warning("Invalid language_hints %r — using default", value)
            return list(_DEFAULTS[key])
        return [str(v) for v in value if str(v).strip()]

    return value


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None):
        self.path = config_path or CONFIG_PATH
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merging with defaults."""
        self._data = json.loads(json.dumps(_DEFAULTS))
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    self._data[key] = validate_setting(key, value)
            except (OSError, ValueError, AttributeError) as e:
                logger.warning("Failed to load config: %s", e)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def set(self, key: str, value):
        self._data[key] = validate_setting(key, value)
        self.save()

    def as_dict(self) -> dict:
        return dict(self._data)
