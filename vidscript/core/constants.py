"""
Shared constants for VidScript.
Single source of truth — imported by every other module.
"""

import pathlib

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "VidScript"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

APP_CONFIG_DIR = HOME / ".config" / "vidscript"
APP_STATE_DIR = HOME / ".local" / "state" / "vidscript"
CONFIG_PATH = APP_CONFIG_DIR / "config.json"
LOG_FILE = APP_STATE_DIR / "app.log"

# ── Pipeline modes ───────────────────────────────────────────────────
class PipelineMode:
    DESCRIPTION = "description"
    SPEECH = "speech"

PIPELINE_MODES = (PipelineMode.DESCRIPTION, PipelineMode.SPEECH)

# ── Transcription job status values ──────────────────────────────────
class JobStatus:
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

TERMINAL_STATUSES = {JobStatus.SUCCEEDED, JobStatus.FAILED}

# ── Pipeline phases (ordered) ────────────────────────────────────────
class Phase:
    RESOLVE = "resolve"
    METADATA = "metadata"
    LONG_VIDEO = "long-video"
    LOCATE_AUDIO = "locate-audio"
    DOWNLOAD = "download"
    STAGE = "stage"
    SUBMIT = "submit"
    POLL = "poll"
    FETCH_RESULT = "fetch-result"
    DONE = "done"

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    # Non-retryable
    UNRESOLVABLE_LINK = "ERR_UNRESOLVABLE_LINK"
    ALL_RELAYS_EXHAUSTED = "ERR_ALL_RELAYS_EXHAUSTED"
    AUDIO_DOWNLOAD_FAILED = "ERR_AUDIO_DOWNLOAD_FAILED"
    SUBMISSION_REJECTED = "ERR_SUBMISSION_REJECTED"
    TRANSCRIPTION_FAILED = "ERR_TRANSCRIPTION_FAILED"
    UNSUPPORTED_FILE = "ERR_UNSUPPORTED_FILE"

    # Retryable
    METADATA_UNAVAILABLE = "ERR_METADATA_UNAVAILABLE"
    STAGING_FAILED = "ERR_STAGING_FAILED"
    TRANSCRIPTION_TIMEOUT = "ERR_TRANSCRIPTION_TIMEOUT"
    RUN_CANCELLED = "ERR_RUN_CANCELLED"

RETRYABLE_ERRORS = {
    ErrorCode.METADATA_UNAVAILABLE,
    ErrorCode.STAGING_FAILED,
    ErrorCode.TRANSCRIPTION_TIMEOUT,
    ErrorCode.RUN_CANCELLED,
}

# ── Progress mapping ─────────────────────────────────────────────────
PROGRESS_RESOLVE = 5
PROGRESS_METADATA = 10
PROGRESS_LONG_VIDEO = 15
PROGRESS_LOCATE_AUDIO = 20
PROGRESS_DOWNLOAD = 30
PROGRESS_STAGE = 50
PROGRESS_SUBMIT = 60
PROGRESS_POLL_START = 70
PROGRESS_POLL_SPAN = 20
PROGRESS_POLL_CAP = 89
PROGRESS_FETCH_RESULT = 90
PROGRESS_DONE = 100

LONG_VIDEO_SEC = 1800          # 30 minutes

# ── Video platform (Bilibili) ─────────────────────────────────────────
VIDEO_ID_PATTERN = r'BV[a-zA-Z0-9]+'

BILIBILI_API = "https://api.bilibili.com"
BILIBILI_VIEW_URL = BILIBILI_API + "/x/web-interface/view?bvid={video_id}"
BILIBILI_PLAYER_URL = BILIBILI_API + "/x/player/v2?aid={aid}&cid={cid}"
BILIBILI_PLAYURL_URL = BILIBILI_API + "/x/player/playurl?bvid={video_id}&cid={cid}&qn=16&fnval=16"
BILIBILI_REFERER = "https://www.bilibili.com"

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)

NO_CONTENT_PLACEHOLDER = "(No description text available)"

# ── Relays ────────────────────────────────────────────────────────────
# {url} is replaced by the URL-encoded target, {raw_url} by the target verbatim.
DEFAULT_METADATA_RELAYS = [
    "https://api.allorigins.win/raw?url={url}",
    "https://corsproxy.io/?{url}",
]

DEFAULT_AUDIO_RELAYS = [
    "https://api.codetabs.com/v1/proxy?quest={url}",
    "https://api.allorigins.win/raw?url={url}",
    "https://corsproxy.io/?{url}",
    "https://proxy.cors.sh/{raw_url}",
]

RELAY_CONNECT_TIMEOUT_SEC = 5
RELAY_READ_TIMEOUT_SEC = 20

# Anything at or below this is a relay error page, not audio
MIN_AUDIO_BYTES = 1000

# ── Audio stream selection (DASH audio ids / bandwidth) ───────────────
PREFERRED_AUDIO_KBPS = 96
MIN_AUDIO_KBPS = 64
MAX_AUDIO_KBPS = 132

# ── Staging host ──────────────────────────────────────────────────────
STAGING_ENDPOINT = "https://file.io"
STAGING_TIMEOUT_SEC = 120

# ── DashScope (Paraformer) ────────────────────────────────────────────
DASHSCOPE_API_BASE = "https://dashscope.aliyuncs.com/api/v1"
DASHSCOPE_SUBMIT_URL = DASHSCOPE_API_BASE + "/services/audio/asr/transcription"
DASHSCOPE_TASK_URL = DASHSCOPE_API_BASE + "/tasks/{task_id}"
DASHSCOPE_MODEL = "paraformer-v2"
DASHSCOPE_LANGUAGE_HINTS = ["zh", "en"]
DASHSCOPE_REQUEST_TIMEOUT_SEC = 30

POLL_INTERVAL_SEC = 3
TRANSCRIPTION_TIMEOUT_SEC = 600    # 10 minutes

# ── Local file upload ─────────────────────────────────────────────────
MAX_UPLOAD_BYTES = 25 * 1024 * 1024
SUPPORTED_MEDIA_EXTENSIONS = {
    ".wav", ".mp3", ".ogg", ".flac", ".m4a", ".aac", ".mp4",
    ".webm", ".mkv", ".mov", ".m4s", ".ts", ".flv",
}

# Characters forbidden in staged file names
UNSAFE_FILENAME_CHARS = r'[<>:"/\\|?*\x00-\x1f]'
MAX_FILENAME_LEN = 120
