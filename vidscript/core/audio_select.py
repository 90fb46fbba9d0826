"""
Audio stream selection policy (speech-first).
Selects the DASH audio stream to download for speech transcription.
"""

import logging

from vidscript.core.constants import PREFERRED_AUDIO_KBPS, MIN_AUDIO_KBPS, MAX_AUDIO_KBPS
from vidscript.core.models import MediaLocator

logger = logging.getLogger(__name__)


def _stream_kbps(stream: dict) -> float | None:
    bandwidth = stream.get('bandwidth')
    try:
        bandwidth = float(bandwidth)
    except (TypeError, ValueError):
        return None
    return bandwidth / 1000 if bandwidth > 0 else None


def select_audio_stream(audio_streams: list[dict]) -> MediaLocator | None:
    """
    Select the best audio stream for speech transcription.

    Policy:
    1. Ignore entries without a stream URL
    2. Prefer bitrates in the 64–132 kbps range, closest to 96 kbps
       (smaller payloads relay and stage faster; speech needs little more)
    3. If all are above the range, choose the lowest
    4. If all are below the floor, choose the highest
    5. If bandwidth is missing everywhere, keep the platform's order

    Returns None when no usable stream exists.
    """
    candidates = []
    for stream in audio_streams or []:
        if not isinstance(stream, dict):
            continue
        url = stream.get('baseUrl') or stream.get('base_url')
        if not isinstance(url, str) or not url:
            continue
        candidates.append((stream, url, _stream_kbps(stream)))

    if not candidates:
        return None

    with_rate = [c for c in candidates if c[2] is not None]

    if with_rate:
        above_floor = [c for c in with_rate if c[2] >= MIN_AUDIO_KBPS]
        if above_floor:
            in_range = [c for c in above_floor if c[2] <= MAX_AUDIO_KBPS]
            if in_range:
                in_range.sort(key=lambda c: (abs(c[2] - PREFERRED_AUDIO_KBPS), -c[2]))
                selected = in_range[0]
                reason = f"closest to {PREFERRED_AUDIO_KBPS}kbps in [{MIN_AUDIO_KBPS}-{MAX_AUDIO_KBPS}]"
            else:
                above_floor.sort(key=lambda c: c[2])
                selected = above_floor[0]
                reason = "lowest above range"
        else:
            with_rate.sort(key=lambda c: -c[2])
            selected = with_rate[0]
            reason = f"no stream >= {MIN_AUDIO_KBPS}kbps; highest available"
    else:
        selected = candidates[0]
        reason = "no bandwidth data; first listed stream"

    stream, url, kbps = selected
    backups = stream.get('backupUrl') or stream.get('backup_url')
    if not isinstance(backups, list):
        backups = []

    logger.info("Selected audio stream: id=%s kbps=%s reason=%s",
                stream.get('id'), kbps, reason)

    return MediaLocator(
        url=url,
        backup_urls=tuple(u for u in backups if isinstance(u, str)),
        bandwidth=int(kbps * 1000) if kbps is not None else None,
        codec=stream.get('codecs'),
    )
