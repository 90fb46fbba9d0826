"""
Pipeline controller.
Runs one link through resolve → metadata → (audio → stage → transcribe)
and reports progress at fixed checkpoints.
"""

import contextlib
import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional

import requests

from vidscript.core.constants import (
    PipelineMode, PIPELINE_MODES, Phase, JobStatus,
    DEFAULT_METADATA_RELAYS, DEFAULT_AUDIO_RELAYS,
    RELAY_CONNECT_TIMEOUT_SEC, RELAY_READ_TIMEOUT_SEC,
    POLL_INTERVAL_SEC, TRANSCRIPTION_TIMEOUT_SEC, MIN_AUDIO_BYTES,
    DASHSCOPE_MODEL, DASHSCOPE_LANGUAGE_HINTS, STAGING_ENDPOINT,
    LONG_VIDEO_SEC, NO_CONTENT_PLACEHOLDER,
    MAX_UPLOAD_BYTES, SUPPORTED_MEDIA_EXTENSIONS,
    PROGRESS_RESOLVE, PROGRESS_METADATA, PROGRESS_LONG_VIDEO,
    PROGRESS_LOCATE_AUDIO, PROGRESS_DOWNLOAD, PROGRESS_STAGE, PROGRESS_SUBMIT,
    PROGRESS_POLL_START, PROGRESS_POLL_SPAN, PROGRESS_POLL_CAP,
    PROGRESS_FETCH_RESULT, PROGRESS_DONE,
)
from vidscript.core.config import AppConfig, validate_setting
from vidscript.core.error_codes import (
    JobError, AudioDownloadFailed, TranscriptionFailed, RunCancelled, UnsupportedFile,
)
from vidscript.core.models import PipelineResult, ProgressEvent, Transcript, VideoMetadata
from vidscript.core.url_parse import resolve
from vidscript.core.metadata import (
    fetch_metadata, fetch_media_locator, with_media_locator, get_video_duration,
)
from vidscript.core.download_audio import download_audio
from vidscript.core.staging import stage
from vidscript.core.transcribe_dashscope import DashScopeTranscriber

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int], None]


class ProgressReporter:
    """Forwards checkpoints to a callback, never letting the percent go down."""

    def __init__(self, on_progress: Optional[ProgressCallback] = None):
        self.on_progress = on_progress
        self.percent = 0
        self.history: list[ProgressEvent] = []

    def report(self, phase: str, percent: float):
        self.percent = max(self.percent, min(PROGRESS_DONE, int(percent)))
        self.history.append(ProgressEvent(phase=phase, percent=self.percent))
        logger.debug("Progress %s: %d%%", phase, self.percent)
        if self.on_progress:
            self.on_progress(phase, self.percent)


def validate_local_file(path: Path) -> int:
    """Check a user-supplied media file. Returns its size in bytes."""
    if not path.is_file():
        raise UnsupportedFile(f"File not found: {path}")
    if path.suffix.lower() not in SUPPORTED_MEDIA_EXTENSIONS:
        raise UnsupportedFile(f"Unsupported file type: {path.suffix or '(none)'}")
    size = path.stat().st_size
    if size == 0:
        raise UnsupportedFile(f"File is empty: {path.name}")
    if size > MAX_UPLOAD_BYTES:
        raise UnsupportedFile(
            f"File too large ({size / 1024 / 1024:.1f}MB > {MAX_UPLOAD_BYTES // 1024 // 1024}MB)")
    return size


class PipelineController:
    """
    Drives a single link (or local file) to a transcript.
    Each run opens and closes its own HTTP session, so runs share no cookies
    or connections. An injected session is used as-is for every run and
    stays open; its owner closes it.
    """

    def __init__(self, config: AppConfig | dict | None = None,
                 session: requests.Session | None = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        if isinstance(config, AppConfig):
            config = config.as_dict()
        self.config = {k: validate_setting(k, v) for k, v in (config or {}).items()}
        self.session = session
        self.clock = clock
        self.sleep = sleep

    # ── Config helpers ────────────────────────────────────────────────

    @property
    def metadata_relays(self) -> list[str]:
        return self.config.get('metadata_relays', DEFAULT_METADATA_RELAYS)

    @property
    def audio_relays(self) -> list[str]:
        return self.config.get('audio_relays', DEFAULT_AUDIO_RELAYS)

    @property
    def relay_timeout(self) -> tuple:
        return (RELAY_CONNECT_TIMEOUT_SEC,
                self.config.get('relay_read_timeout_sec', RELAY_READ_TIMEOUT_SEC))

    @property
    def min_audio_bytes(self) -> int:
        return self.config.get('min_audio_bytes', MIN_AUDIO_BYTES)

    @property
    def staging_endpoint(self) -> str:
        return self.config.get('staging_endpoint', STAGING_ENDPOINT)

    def make_transcriber(self, api_key: str,
                         session: requests.Session | None = None) -> DashScopeTranscriber:
        return DashScopeTranscriber(
            api_key,
            session=session or self.session,
            model=self.config.get('model', DASHSCOPE_MODEL),
            language_hints=self.config.get('language_hints', DASHSCOPE_LANGUAGE_HINTS),
            poll_interval_sec=self.config.get('poll_interval_sec', POLL_INTERVAL_SEC),
            timeout_sec=self.config.get('transcription_timeout_sec', TRANSCRIPTION_TIMEOUT_SEC),
            clock=self.clock,
            sleep=self.sleep,
        )

    @contextlib.contextmanager
    def _run_session(self):
        if self.session is not None:
            yield self.session
            return
        with requests.Session() as session:
            yield session

    # ── Entry points ──────────────────────────────────────────────────

    def run_pipeline(self, url: str, api_key: str | None, mode: str,
                     on_progress: Optional[ProgressCallback] = None,
                     cancel_event: threading.Event | None = None) -> PipelineResult:
        """
        Turn a video link into a transcript.
        mode 'description' returns captions/description text without any audio work;
        mode 'speech' transcribes the audio track. Raises a JobError subclass on failure.
        """
        if mode not in PIPELINE_MODES:
            raise ValueError(f"Unknown mode {mode!r}; expected one of {PIPELINE_MODES}")

        progress = ProgressReporter(on_progress)
        try:
            with self._run_session() as session:
                return self._run(url, api_key, mode, session, progress, cancel_event)
        except JobError as e:
            logger.warning("Run failed for %s: %s", url, e)
            raise
        except Exception as e:
            logger.error("Unexpected error processing %s: %s", url, e, exc_info=True)
            raise

    def transcribe_local_file(self, path: str | Path, api_key: str | None,
                              on_progress: Optional[ProgressCallback] = None,
                              cancel_event: threading.Event | None = None) -> PipelineResult:
        """
        Manual-upload path: transcribe a media file the user downloaded
        themselves, skipping the platform and relay stages entirely.
        """
        path = Path(path)
        progress = ProgressReporter(on_progress)
        progress.report(Phase.RESOLVE, PROGRESS_RESOLVE)

        size = validate_local_file(path)
        logger.info("Transcribing local file %s (%d bytes)", path.name, size)

        with self._run_session() as session:
            transcriber = self.make_transcriber(api_key, session)
            transcript = self._transcribe_bytes(path.read_bytes(), path.name, session,
                                                transcriber, progress, cancel_event)
        progress.report(Phase.DONE, PROGRESS_DONE)
        return PipelineResult(
            title=path.stem,
            author="Local file",
            transcript_text=transcript.full_text,
            mode=PipelineMode.SPEECH,
            segments=transcript.segments,
        )

    # ── Stages ────────────────────────────────────────────────────────

    @staticmethod
    def _check_cancel(cancel_event: threading.Event | None):
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelled("Processing stopped by user")

    def _run(self, url: str, api_key: str | None, mode: str,
             session: requests.Session,
             progress: ProgressReporter,
             cancel_event: threading.Event | None) -> PipelineResult:
        # ── Stage 1: Resolve link ──
        progress.report(Phase.RESOLVE, PROGRESS_RESOLVE)
        video_id = resolve(url)

        # ── Stage 2: Fetch metadata ──
        self._check_cancel(cancel_event)
        progress.report(Phase.METADATA, PROGRESS_METADATA)
        metadata = fetch_metadata(video_id, self.metadata_relays,
                                  session, self.relay_timeout)

        if mode == PipelineMode.DESCRIPTION:
            text = metadata.text_description.strip() or NO_CONTENT_PLACEHOLDER
            progress.report(Phase.DONE, PROGRESS_DONE)
            return PipelineResult(
                title=metadata.title,
                author=metadata.author,
                transcript_text=text,
                video_id=video_id,
                mode=mode,
            )

        return self._run_speech(metadata, api_key, session, progress, cancel_event)

    def _run_speech(self, metadata: VideoMetadata, api_key: str | None,
                    session: requests.Session,
                    progress: ProgressReporter,
                    cancel_event: threading.Event | None) -> PipelineResult:
        """Speech path: locate → download → stage → submit → poll → assemble."""
        # Fails before any audio work when the key is missing
        transcriber = self.make_transcriber(api_key, session)

        duration = get_video_duration(metadata)
        if duration > LONG_VIDEO_SEC:
            logger.info("Long video (%d min), recognition may take a while", duration // 60)
            progress.report(Phase.LONG_VIDEO, PROGRESS_LONG_VIDEO)

        # ── Locate audio ──
        self._check_cancel(cancel_event)
        progress.report(Phase.LOCATE_AUDIO, PROGRESS_LOCATE_AUDIO)
        locator = metadata.media_locator or fetch_media_locator(
            metadata, self.metadata_relays, session, self.relay_timeout)
        if locator is None:
            raise AudioDownloadFailed(f"No audio stream available for {metadata.video_id}")
        metadata = with_media_locator(metadata, locator)

        # ── Download audio ──
        self._check_cancel(cancel_event)
        progress.report(Phase.DOWNLOAD, PROGRESS_DOWNLOAD)
        audio = download_audio(metadata.media_locator, self.audio_relays, session,
                               self.min_audio_bytes, self.relay_timeout)

        transcript = self._transcribe_bytes(audio, f"{metadata.video_id}.m4s", session,
                                            transcriber, progress, cancel_event)

        progress.report(Phase.DONE, PROGRESS_DONE)
        return PipelineResult(
            title=metadata.title,
            author=metadata.author,
            transcript_text=transcript.full_text,
            video_id=metadata.video_id,
            mode=PipelineMode.SPEECH,
            segments=transcript.segments,
        )

    def _transcribe_bytes(self, data: bytes, filename: str,
                          session: requests.Session,
                          transcriber: DashScopeTranscriber,
                          progress: ProgressReporter,
                          cancel_event: threading.Event | None) -> Transcript:
        """Stage → submit → poll. Shared by the link and local-file paths."""
        # ── Stage ──
        self._check_cancel(cancel_event)
        progress.report(Phase.STAGE, PROGRESS_STAGE)
        asset = stage(data, filename, session=session, endpoint=self.staging_endpoint)

        # ── Submit (promptly: staged files are single-use) ──
        self._check_cancel(cancel_event)
        progress.report(Phase.SUBMIT, PROGRESS_SUBMIT)
        job_id = transcriber.submit(asset.public_url)

        # ── Poll ──
        progress.report(Phase.POLL, PROGRESS_POLL_START)
        started = transcriber.clock()

        def _on_status(status: str):
            if status == JobStatus.SUCCEEDED:
                progress.report(Phase.FETCH_RESULT, PROGRESS_FETCH_RESULT)
                return
            elapsed = transcriber.clock() - started
            ratio = elapsed / transcriber.timeout_sec if transcriber.timeout_sec else 1.0
            percent = min(PROGRESS_POLL_START + ratio * PROGRESS_POLL_SPAN, PROGRESS_POLL_CAP)
            progress.report(f"{Phase.POLL}:{status}", percent)

        transcript = transcriber.await_completion(job_id, _on_status, cancel_event)

        if not transcript.full_text.strip():
            raise TranscriptionFailed("Recognition finished but returned no text")
        return transcript


def run_pipeline(url: str, api_key: str | None, mode: str,
                 on_progress: Optional[ProgressCallback] = None,
                 config: AppConfig | dict | None = None,
                 cancel_event: threading.Event | None = None) -> PipelineResult:
    """Run one link through a fresh controller; the run opens and closes its own session."""
    return PipelineController(config).run_pipeline(url, api_key, mode, on_progress, cancel_event)
