"""
Video metadata, captions and audio-stream lookup via the platform's public API.
All platform calls go through the relay chain.
"""

import dataclasses
import logging

import requests

from vidscript.core.constants import (
    BILIBILI_VIEW_URL, BILIBILI_PLAYER_URL, BILIBILI_PLAYURL_URL,
    DEFAULT_METADATA_RELAYS,
)
from vidscript.core.error_codes import (
    AllRelaysExhausted, MetadataUnavailable, AudioDownloadFailed,
)
from vidscript.core.models import VideoMetadata, MediaLocator
from vidscript.core.relay_fetch import fetch_through_relays, accept_ok_status, accept_json_code
from vidscript.core.captions_parse import parse_subtitle_json
from vidscript.core.audio_select import select_audio_stream

logger = logging.getLogger(__name__)


def _as_text(value) -> str:
    return value if isinstance(value, str) else ""


def _as_int(value) -> int | None:
    """Platform numbers sometimes arrive as strings; anything else is dropped."""
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def fetch_metadata(video_id: str, relays: list[str] | None = None,
                   session: requests.Session | None = None,
                   timeout: tuple | float | None = None,
                   include_captions: bool = True) -> VideoMetadata:
    """
    Fetch title, author, description and duration for a video id.
    Captions are fetched as a best-effort extra; their failure never propagates.
    Raises MetadataUnavailable if the primary lookup fails on every relay.
    """
    relays = DEFAULT_METADATA_RELAYS if relays is None else relays
    target = BILIBILI_VIEW_URL.format(video_id=video_id)
    platform_errors = []

    def _accept(resp: requests.Response) -> bool:
        if not accept_ok_status(resp):
            return False
        data = resp.json()
        if not isinstance(data, dict):
            return False
        if data.get('code') != 0:
            platform_errors.append(f"code={data.get('code')} {data.get('message') or ''}".strip())
            return False
        return isinstance(data.get('data'), dict)

    try:
        resp = fetch_through_relays(target, relays, _accept, session=session, timeout=timeout)
    except AllRelaysExhausted as e:
        detail = platform_errors[-1] if platform_errors else e.message
        raise MetadataUnavailable(f"Video info unavailable for {video_id}: {detail}")

    info = resp.json()['data']
    owner = info.get('owner')
    if not isinstance(owner, dict):
        owner = {}

    metadata = VideoMetadata(
        video_id=video_id,
        title=_as_text(info.get('title')) or f"video_{video_id}",
        author=_as_text(owner.get('name')) or "Unknown author",
        description=_as_text(info.get('desc')),
        duration_sec=_as_int(info.get('duration')) or 0,
        aid=_as_int(info.get('aid')),
        cid=_as_int(info.get('cid')),
    )
    logger.info("Fetched metadata for %s: duration=%ss", video_id, metadata.duration_sec)

    if include_captions and metadata.aid and metadata.cid:
        try:
            subtitle_text = fetch_captions(metadata.aid, metadata.cid, relays, session, timeout)
        except Exception as e:
            # Captions are optional; the description stands in for them
            logger.warning("Captions fetch failed for %s, using description: %s", video_id, e)
            subtitle_text = ""
        if subtitle_text:
            metadata = dataclasses.replace(metadata, subtitle_text=subtitle_text)

    return metadata


def fetch_captions(aid: int, cid: int, relays: list[str] | None = None,
                   session: requests.Session | None = None,
                   timeout: tuple | float | None = None) -> str:
    """
    Fetch the first subtitle track listed for a video part.
    Returns "" when the video has no subtitles; raises on transport failures.
    """
    relays = DEFAULT_METADATA_RELAYS if relays is None else relays
    target = BILIBILI_PLAYER_URL.format(aid=aid, cid=cid)

    resp = fetch_through_relays(target, relays, accept_json_code(0),
                                session=session, timeout=timeout)
    data = resp.json().get('data')
    subtitle = data.get('subtitle') if isinstance(data, dict) else None
    subtitles = subtitle.get('subtitles') if isinstance(subtitle, dict) else None
    if not isinstance(subtitles, list):
        subtitles = []

    subtitle_url = next((s['subtitle_url'] for s in subtitles
                         if isinstance(s, dict) and isinstance(s.get('subtitle_url'), str)
                         and s['subtitle_url']), None)
    if not subtitle_url:
        logger.info("No subtitle tracks for aid=%s cid=%s", aid, cid)
        return ""
    if subtitle_url.startswith('//'):
        subtitle_url = 'https:' + subtitle_url

    def _accept(sub_resp: requests.Response) -> bool:
        return accept_ok_status(sub_resp) and isinstance(sub_resp.json(), dict)

    sub_resp = fetch_through_relays(subtitle_url, relays, _accept,
                                    session=session, timeout=timeout)
    return parse_subtitle_json(sub_resp.json())


def fetch_media_locator(metadata: VideoMetadata, relays: list[str] | None = None,
                        session: requests.Session | None = None,
                        timeout: tuple | float | None = None) -> MediaLocator | None:
    """
    Look up a fresh audio stream locator for the video.
    Returns None if the platform lists no audio stream.
    Raises AudioDownloadFailed if the lookup fails on every relay.
    """
    if not metadata.cid:
        logger.warning("No cid for %s, cannot locate audio", metadata.video_id)
        return None

    relays = DEFAULT_METADATA_RELAYS if relays is None else relays
    target = BILIBILI_PLAYURL_URL.format(video_id=metadata.video_id, cid=metadata.cid)

    try:
        resp = fetch_through_relays(target, relays, accept_json_code(0),
                                    session=session, timeout=timeout)
    except AllRelaysExhausted as e:
        raise AudioDownloadFailed(f"Audio stream lookup failed for {metadata.video_id}: {e.message}")

    data = resp.json().get('data')
    dash = data.get('dash') if isinstance(data, dict) else None
    audio = dash.get('audio') if isinstance(dash, dict) else None
    if not isinstance(audio, list):
        return None
    return select_audio_stream(audio)


def with_media_locator(metadata: VideoMetadata, locator: MediaLocator | None) -> VideoMetadata:
    return dataclasses.replace(metadata, media_locator=locator)


def get_video_duration(metadata: VideoMetadata) -> float:
    """Get video duration in seconds from metadata."""
    return float(metadata.duration_sec or 0)
