"""
Standardised error handling for VidScript.
Every pipeline failure is a JobError subclass with a fixed code.
"""

from vidscript.core.constants import ErrorCode, RETRYABLE_ERRORS


class JobError(Exception):
    """Raised when a pipeline run encounters a known error condition."""

    code = "ERR_UNEXPECTED"

    def __init__(self, message: str, code: str | None = None, retryable: bool | None = None):
        if code is not None:
            self.code = code
        self.message = message
        # auto-detect retryable from code if not explicitly set
        self.retryable = retryable if retryable is not None else (self.code in RETRYABLE_ERRORS)
        super().__init__(f"[{self.code}] {message}")


class UnresolvableLink(JobError):
    code = ErrorCode.UNRESOLVABLE_LINK


class MetadataUnavailable(JobError):
    code = ErrorCode.METADATA_UNAVAILABLE


class AllRelaysExhausted(JobError):
    code = ErrorCode.ALL_RELAYS_EXHAUSTED

    def __init__(self, message: str, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)


class AudioDownloadFailed(JobError):
    code = ErrorCode.AUDIO_DOWNLOAD_FAILED


class StagingFailed(JobError):
    code = ErrorCode.STAGING_FAILED


class SubmissionRejected(JobError):
    code = ErrorCode.SUBMISSION_REJECTED


class TranscriptionFailed(JobError):
    code = ErrorCode.TRANSCRIPTION_FAILED

    def __init__(self, remote_message: str):
        self.remote_message = remote_message
        super().__init__(remote_message)


class TranscriptionTimedOut(JobError):
    code = ErrorCode.TRANSCRIPTION_TIMEOUT


class RunCancelled(JobError):
    code = ErrorCode.RUN_CANCELLED


class UnsupportedFile(JobError):
    code = ErrorCode.UNSUPPORTED_FILE


_USER_MESSAGES = {
    ErrorCode.UNRESOLVABLE_LINK:
        "Could not find a video id (BV…) in this link. Paste the full video URL.",
    ErrorCode.METADATA_UNAVAILABLE:
        "Could not fetch video information. Check the link and try again later.",
    ErrorCode.ALL_RELAYS_EXHAUSTED:
        "None of the relay proxies could reach the platform. Try again later.",
    ErrorCode.AUDIO_DOWNLOAD_FAILED:
        "The audio track could not be downloaded (the platform blocks hotlinking). "
        "Download the video yourself and use the file upload option instead.",
    ErrorCode.STAGING_FAILED:
        "Uploading the audio to temporary hosting failed. Try again in a moment.",
    ErrorCode.SUBMISSION_REJECTED:
        "The speech recognition service rejected the job. Check your DashScope API key.",
    ErrorCode.TRANSCRIPTION_FAILED:
        "Speech recognition failed for this audio.",
    ErrorCode.TRANSCRIPTION_TIMEOUT:
        "Speech recognition took too long. Try again later or use a shorter clip.",
    ErrorCode.RUN_CANCELLED:
        "The run was cancelled.",
    ErrorCode.UNSUPPORTED_FILE:
        "Unsupported file. Upload an MP3, WAV, M4A, MP4 or similar file up to 25MB.",
}


def is_retryable(code: str) -> bool:
    return code in RETRYABLE_ERRORS


def user_message(error: Exception) -> str:
    """Return an actionable, user-facing message for an error."""
    if isinstance(error, JobError):
        base = _USER_MESSAGES.get(error.code, error.message)
        if isinstance(error, TranscriptionFailed) and error.remote_message:
            return f"{base} ({error.remote_message})"
        return base
    return f"Unexpected error: {error}"
