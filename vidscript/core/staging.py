"""
Staging: push bytes to an ephemeral public host so the transcription
service can fetch them by URL. Staged files may vanish after first
download, so callers should submit the URL right away.
"""

import json
import logging

import requests

from vidscript.core.constants import STAGING_ENDPOINT, STAGING_TIMEOUT_SEC
from vidscript.core.error_codes import StagingFailed
from vidscript.core.models import StagedAsset
from vidscript.core.security_utils import sanitize_filename

logger = logging.getLogger(__name__)


def stage(data: bytes, suggested_name: str,
          session: requests.Session | None = None,
          endpoint: str = STAGING_ENDPOINT,
          timeout: float = STAGING_TIMEOUT_SEC) -> StagedAsset:
    """
    Upload a payload as a multipart file and return its public URL.
    Single attempt; raises StagingFailed on any failure.
    """
    if session is None:
        with requests.Session() as owned:
            return stage(data, suggested_name, owned, endpoint, timeout)

    filename = sanitize_filename(suggested_name)

    try:
        resp = session.post(
            endpoint,
            files={"file": (filename, data, "application/octet-stream")},
            timeout=timeout,
        )
    except requests.exceptions.Timeout:
        raise StagingFailed("Staging upload timed out")
    except requests.exceptions.RequestException as e:
        raise StagingFailed(f"Staging upload failed: {type(e).__name__}")

    if not 200 <= resp.status_code < 300:
        raise StagingFailed(f"Staging host returned {resp.status_code}: {(resp.text or '')[:200]}")

    try:
        result = resp.json()
    except (json.JSONDecodeError, ValueError):
        raise StagingFailed("Failed to parse staging host response")

    if not isinstance(result, dict) or not result.get('success') or not result.get('link'):
        raise StagingFailed(f"Staging host did not return a link: {str(result)[:200]}")

    logger.info("Staged %d bytes as %s", len(data), filename)
    return StagedAsset(public_url=result['link'], size_bytes=len(data))
