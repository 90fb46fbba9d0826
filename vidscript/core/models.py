"""
Data models (plain dataclasses) for VidScript.
"""

from dataclasses import dataclass, field
from typing import Optional

from vidscript.core.constants import JobStatus, TERMINAL_STATUSES


@dataclass(frozen=True)
class MediaLocator:
    url: str                         # time-limited, never cache across runs
    backup_urls: tuple = ()
    bandwidth: Optional[int] = None  # bits per second
    codec: Optional[str] = None

    def candidate_urls(self) -> list[str]:
        return [self.url] + [u for u in self.backup_urls if u and u != self.url]


@dataclass(frozen=True)
class VideoMetadata:
    video_id: str
    title: str
    author: str
    description: str = ""
    duration_sec: int = 0
    aid: Optional[int] = None
    cid: Optional[int] = None
    subtitle_text: str = ""
    media_locator: Optional[MediaLocator] = None

    @property
    def text_description(self) -> str:
        """Captions text when available, else the uploader's description."""
        return self.subtitle_text or self.description


@dataclass(frozen=True)
class StagedAsset:
    public_url: str
    size_bytes: int


@dataclass
class TranscriptionJob:
    job_id: str
    status: str = JobStatus.PENDING
    result_locator: Optional[str] = None
    message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class TranscriptSegment:
    text: str
    start_ms: int
    end_ms: int


@dataclass(frozen=True)
class Transcript:
    full_text: str
    segments: tuple = ()
    duration_ms: Optional[int] = None


@dataclass(frozen=True)
class ProgressEvent:
    phase: str
    percent: int


@dataclass(frozen=True)
class PipelineResult:
    title: str
    author: str
    transcript_text: str
    video_id: Optional[str] = None
    mode: Optional[str] = None
    segments: tuple = field(default_factory=tuple)
