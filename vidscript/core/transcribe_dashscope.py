"""
DashScope Paraformer speech-to-text integration.
Asynchronous file transcription: submit a job for a public URL, poll the task
until it reaches a terminal state or the wall-clock bound, then fetch the result.
"""

import json
import logging
import threading
import time
from typing import Callable, Optional

import requests

from vidscript.core.constants import (
    JobStatus, DASHSCOPE_SUBMIT_URL, DASHSCOPE_TASK_URL, DASHSCOPE_MODEL,
    DASHSCOPE_LANGUAGE_HINTS, DASHSCOPE_REQUEST_TIMEOUT_SEC,
    POLL_INTERVAL_SEC, TRANSCRIPTION_TIMEOUT_SEC,
)
from vidscript.core.error_codes import (
    SubmissionRejected, TranscriptionFailed, TranscriptionTimedOut, RunCancelled,
)
from vidscript.core.models import TranscriptionJob, Transcript, TranscriptSegment
from vidscript.core.security_utils import mask_secret

logger = logging.getLogger(__name__)

_KNOWN_STATUSES = {JobStatus.PENDING, JobStatus.RUNNING, JobStatus.SUCCEEDED, JobStatus.FAILED}


def normalize_status(remote_status: str | None) -> str:
    """Map a remote task status onto PENDING/RUNNING/SUCCEEDED/FAILED."""
    if not remote_status:
        return JobStatus.PENDING
    status = str(remote_status).upper()
    if status in _KNOWN_STATUSES:
        return status
    # CANCELED / UNKNOWN (task expired or not found) end the job
    return JobStatus.FAILED


def _json_or_none(resp: requests.Response) -> dict | None:
    try:
        data = resp.json()
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


class DashScopeTranscriber:
    """
    Submits transcription jobs and waits for them.
    Clock and sleep are injectable so polling can run on simulated time.
    """

    def __init__(self, api_key: str, session: requests.Session | None = None,
                 model: str = DASHSCOPE_MODEL,
                 language_hints: list[str] | None = None,
                 poll_interval_sec: float = POLL_INTERVAL_SEC,
                 timeout_sec: float = TRANSCRIPTION_TIMEOUT_SEC,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        if not api_key:
            raise SubmissionRejected("DashScope API key not provided")
        self.api_key = api_key
        self._owns_session = session is None
        self.session = session or requests.Session()
        self.model = model
        self.language_hints = list(language_hints or DASHSCOPE_LANGUAGE_HINTS)
        self.poll_interval_sec = poll_interval_sec
        self.timeout_sec = timeout_sec
        self.clock = clock
        self.sleep = sleep

    def close(self):
        """Close the HTTP session if this transcriber opened it."""
        if self._owns_session:
            self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _headers(self, async_mode: bool = False) -> dict:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if async_mode:
            headers["X-DashScope-Async"] = "enable"
        return headers

    # ── Submission ────────────────────────────────────────────────────

    def submit(self, public_url: str) -> str:
        """Submit a transcription job for a public file URL. Returns the task id."""
        body = {
            "model": self.model,
            "input": {"file_urls": [public_url]},
            "parameters": {"language_hints": self.language_hints},
        }

        try:
            resp = self.session.post(
                DASHSCOPE_SUBMIT_URL,
                headers=self._headers(async_mode=True),
                json=body,
                timeout=DASHSCOPE_REQUEST_TIMEOUT_SEC,
            )
        except requests.exceptions.RequestException as e:
            raise SubmissionRejected(f"Network error submitting job: {type(e).__name__}")

        data = _json_or_none(resp)
        if data is None:
            raise SubmissionRejected(f"Unparsable submission response (HTTP {resp.status_code})")

        if data.get('code') or not 200 <= resp.status_code < 300:
            # Sanitize error message (never log API key)
            raise SubmissionRejected(
                f"{data.get('code') or resp.status_code}: {data.get('message') or 'submission failed'}"
            )

        task_id = (data.get('output') or {}).get('task_id')
        if not task_id:
            raise SubmissionRejected("Submission response carried no task id")

        logger.info("Submitted transcription job %s (key %s)", task_id, mask_secret(self.api_key))
        return task_id

    # ── Polling ───────────────────────────────────────────────────────

    def query(self, job_id: str) -> TranscriptionJob:
        """
        Fetch the current state of a job.
        Network errors propagate as requests exceptions; a remote error
        code raises TranscriptionFailed.
        """
        resp = self.session.get(
            DASHSCOPE_TASK_URL.format(task_id=job_id),
            headers=self._headers(),
            timeout=DASHSCOPE_REQUEST_TIMEOUT_SEC,
        )
        data = _json_or_none(resp)
        if data is None:
            raise requests.exceptions.InvalidJSONError(
                f"Unparsable task status (HTTP {resp.status_code})")
        if data.get('code'):
            raise TranscriptionFailed(f"{data.get('code')}: {data.get('message') or 'query failed'}")

        output = data.get('output') or {}
        status = normalize_status(output.get('task_status'))
        message = output.get('message')

        result_locator = None
        results = output.get('results') or []
        if results and isinstance(results[0], dict):
            first = results[0]
            result_locator = first.get('transcription_url')
            if first.get('subtask_status') == JobStatus.FAILED:
                status = JobStatus.FAILED
                message = first.get('message') or first.get('code') or message

        return TranscriptionJob(job_id=job_id, status=status,
                                result_locator=result_locator, message=message)

    def await_completion(self, job_id: str,
                         on_status_change: Optional[Callable[[str], None]] = None,
                         cancel_event: threading.Event | None = None) -> Transcript:
        """
        Poll a job on a fixed interval until it succeeds, fails or the
        wall-clock bound passes. on_status_change is called on every poll.
        An abandoned job is not cancelled remotely.
        """
        start = self.clock()
        polls = 0

        while self.clock() - start < self.timeout_sec:
            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelled(f"Stopped waiting for job {job_id}")

            polls += 1
            try:
                job = self.query(job_id)
            except requests.exceptions.RequestException as e:
                logger.warning("Poll %d for job %s failed: %s", polls, job_id, type(e).__name__)
                job = None

            if job is not None:
                if on_status_change:
                    on_status_change(job.status)

                if job.is_terminal:
                    if job.status != JobStatus.SUCCEEDED:
                        raise TranscriptionFailed(job.message or "Speech recognition task failed")
                    logger.info("Job %s succeeded after %d polls", job_id, polls)
                    return self.fetch_result(job)

            remaining = self.timeout_sec - (self.clock() - start)
            if remaining <= 0:
                break
            self.sleep(min(self.poll_interval_sec, remaining))

        raise TranscriptionTimedOut(
            f"Job {job_id} not finished after {self.timeout_sec:.0f}s ({polls} polls)"
        )

    # ── Result ────────────────────────────────────────────────────────

    def fetch_result(self, job: TranscriptionJob) -> Transcript:
        """Download and parse the result document of a succeeded job."""
        if not job.result_locator:
            raise TranscriptionFailed("Job succeeded without a result URL")

        try:
            resp = self.session.get(job.result_locator, timeout=DASHSCOPE_REQUEST_TIMEOUT_SEC)
        except requests.exceptions.RequestException as e:
            raise TranscriptionFailed(f"Could not fetch transcription result: {type(e).__name__}")

        if not 200 <= resp.status_code < 300:
            raise TranscriptionFailed(f"Transcription result returned {resp.status_code}")

        payload = _json_or_none(resp)
        if payload is None:
            raise TranscriptionFailed("Failed to parse transcription result JSON")

        return parse_transcription_result(payload)


def parse_transcription_result(payload: dict) -> Transcript:
    """
    Build a Transcript from a result document
    ({"transcripts": [{"text", "sentences": [...]}], "properties": {...}}).
    """
    texts = []
    segments = []
    for transcript in payload.get('transcripts') or []:
        if not isinstance(transcript, dict):
            continue
        text = (transcript.get('text') or '').strip()
        if text:
            texts.append(text)
        for sentence in transcript.get('sentences') or []:
            try:
                segments.append(TranscriptSegment(
                    text=sentence.get('text', ''),
                    start_ms=int(sentence.get('begin_time', 0)),
                    end_ms=int(sentence.get('end_time', 0)),
                ))
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed sentence: %s", e)

    duration = (payload.get('properties') or {}).get('original_duration_in_milliseconds')

    return Transcript(
        full_text='\n'.join(texts),
        segments=tuple(segments),
        duration_ms=int(duration) if isinstance(duration, (int, float)) else None,
    )
