"""
Audio download through the relay chain.
"""

import logging

import requests

from vidscript.core.constants import DEFAULT_AUDIO_RELAYS, MIN_AUDIO_BYTES
from vidscript.core.error_codes import AllRelaysExhausted, AudioDownloadFailed
from vidscript.core.models import MediaLocator
from vidscript.core.relay_fetch import fetch_through_relays, accept_min_size

logger = logging.getLogger(__name__)

_ERROR_PAGE_PREFIXES = (b'<!doctype', b'<html', b'<?xml', b'{', b'[')


def looks_like_error_page(body: bytes) -> bool:
    """Relays answer 200 with HTML or JSON error bodies; real audio is binary."""
    head = body[:64].lstrip().lower()
    return head.startswith(_ERROR_PAGE_PREFIXES)


def download_audio(locator: MediaLocator, relays: list[str] | None = None,
                   session: requests.Session | None = None,
                   min_bytes: int = MIN_AUDIO_BYTES,
                   timeout: tuple | float | None = None) -> bytes:
    """
    Download the audio bytes a locator points at.
    Tries the primary stream URL, then each backup, each through every relay.
    Raises AudioDownloadFailed once all of them are exhausted.
    """
    relays = DEFAULT_AUDIO_RELAYS if relays is None else relays
    size_ok = accept_min_size(min_bytes)

    def _accept(resp: requests.Response) -> bool:
        return size_ok(resp) and not looks_like_error_page(resp.content)

    urls = locator.candidate_urls()
    for i, url in enumerate(urls, start=1):
        try:
            resp = fetch_through_relays(url, relays, _accept, session=session, timeout=timeout)
        except AllRelaysExhausted as e:
            logger.warning("Audio stream %d/%d unreachable: %s", i, len(urls), e.message)
            continue

        logger.info("Downloaded audio: %d bytes", len(resp.content))
        return resp.content

    raise AudioDownloadFailed(
        f"Audio download failed on all {len(relays)} relays for {len(urls)} stream URL(s)"
    )
