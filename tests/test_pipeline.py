#!/usr/bin/env python3
"""
Tests for the transcription orchestrator and the pipeline controller.
Network traffic goes to FakeSession, time to FakeClock.
"""

import sys
import tempfile
import threading
from pathlib import Path
from unittest import mock

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(Path(__file__).resolve().parent))

import unittest

import requests

from vidscript.core.constants import JobStatus, PipelineMode, NO_CONTENT_PLACEHOLDER
from vidscript.core.error_codes import (
    UnresolvableLink, MetadataUnavailable, AudioDownloadFailed, SubmissionRejected,
    TranscriptionFailed, TranscriptionTimedOut, RunCancelled, UnsupportedFile,
)
from vidscript.core.models import ProgressEvent, TranscriptionJob
from vidscript.core.pipeline import PipelineController, ProgressReporter
from vidscript.core.transcribe_dashscope import (
    DashScopeTranscriber, normalize_status, parse_transcription_result,
)

import main

from fakes import (
    FakeResponse, FakeSession, FakeClock, TEST_RELAYS,
    view_body, playurl_body, NO_SUBTITLES_BODY,
)

VIDEO_URL = "https://x.test/video/BVabc123"
AUDIO_BYTES = b"\x00\x00\x00\x1cftypiso5" + b"\x01" * 4000
RESULT_URL = "https://result.test/transcription.json"


def task_body(status, result_url=None, **extra):
    output = {"task_id": "task-1", "task_status": status}
    if result_url:
        output["results"] = [{"file_url": "https://file.io/abc",
                              "transcription_url": result_url,
                              "subtask_status": "SUCCEEDED"}]
    output.update(extra)
    return {"request_id": "r", "output": output}


def transcription_routes(poll_sequence, result_body=None):
    """Staging, submission, polling and result routes for a speech run."""
    return [
        ("file.io", FakeResponse(200, json_body={"success": True, "link": "https://file.io/abc"})),
        ("services/audio/asr/transcription", FakeResponse(200, json_body={
            "request_id": "r", "output": {"task_id": "task-1", "task_status": "PENDING"}})),
        ("tasks/task-1", [FakeResponse(200, json_body=b) for b in poll_sequence]),
        ("result.test", FakeResponse(200, json_body=result_body or {"transcripts": []})),
    ]


def platform_routes(locator_streams=None, audio=None):
    routes = [
        ("x/web-interface/view", FakeResponse(200, json_body=view_body())),
        ("x/player/v2", FakeResponse(200, json_body=NO_SUBTITLES_BODY)),
    ]
    if locator_streams is not None:
        routes.append(("x/player/playurl", FakeResponse(200, json_body=playurl_body(*locator_streams))))
    if audio is not None:
        routes.append(("upos.test", audio))
    return routes


AUDIO_STREAM = {"id": 30216, "bandwidth": 67000, "baseUrl": "https://upos.test/64.m4s"}

HELLO_WORLD = {"transcripts": [{"text": "hello"}, {"text": "world"}]}


def make_controller(session, clock, **config):
    cfg = {"metadata_relays": TEST_RELAYS, "audio_relays": TEST_RELAYS}
    cfg.update(config)
    return PipelineController(cfg, session=session, clock=clock, sleep=clock.sleep)


class ProgressRecorder:
    def __init__(self):
        self.events = []

    def __call__(self, phase, percent):
        self.events.append((phase, percent))

    @property
    def percents(self):
        return [p for _, p in self.events]

    @property
    def phases(self):
        return [ph for ph, _ in self.events]


class TestTranscriptionOrchestrator(unittest.TestCase):
    """Test submit/poll/fetch against a simulated service."""

    def make_transcriber(self, session, clock, timeout_sec=60):
        return DashScopeTranscriber("sk-test-key-1234", session=session,
                                    poll_interval_sec=3, timeout_sec=timeout_sec,
                                    clock=clock, sleep=clock.sleep)

    def test_submit_request_shape(self):
        session = FakeSession(transcription_routes([]))
        job_id = self.make_transcriber(session, FakeClock()).submit("https://file.io/abc")
        self.assertEqual(job_id, "task-1")
        method, url, kwargs = session.calls[0]
        self.assertEqual(method, "POST")
        self.assertEqual(kwargs["headers"]["X-DashScope-Async"], "enable")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer sk-test-key-1234")
        self.assertEqual(kwargs["json"]["input"], {"file_urls": ["https://file.io/abc"]})
        self.assertEqual(kwargs["json"]["model"], "paraformer-v2")
        self.assertEqual(kwargs["json"]["parameters"]["language_hints"], ["zh", "en"])

    def test_submit_rejected(self):
        cases = [
            FakeResponse(401, json_body={"code": "InvalidApiKey", "message": "Invalid API-key"}),
            FakeResponse(200, json_body={"output": {}}),
            FakeResponse(502, content=b"<html>bad gateway</html>"),
            requests.exceptions.ConnectionError("down"),
        ]
        for outcome in cases:
            session = FakeSession([("services/audio/asr/transcription", outcome)])
            with self.assertRaises(SubmissionRejected):
                self.make_transcriber(session, FakeClock()).submit("https://file.io/abc")

    def test_missing_api_key(self):
        with self.assertRaises(SubmissionRejected):
            DashScopeTranscriber("")

    def test_owned_session_closed_on_exit(self):
        owned = FakeSession()
        with mock.patch("vidscript.core.transcribe_dashscope.requests.Session", return_value=owned):
            with DashScopeTranscriber("sk-test-key-1234") as transcriber:
                self.assertIs(transcriber.session, owned)
        self.assertTrue(owned.closed)

        shared = FakeSession()
        DashScopeTranscriber("sk-test-key-1234", session=shared).close()
        self.assertFalse(shared.closed)

    def test_status_sequence_to_success(self):
        clock = FakeClock()
        session = FakeSession(transcription_routes(
            [task_body("PENDING"), task_body("PENDING"), task_body("RUNNING"),
             task_body("SUCCEEDED", RESULT_URL)],
            HELLO_WORLD,
        ))
        seen = []
        transcript = self.make_transcriber(session, clock).await_completion("task-1", seen.append)
        self.assertEqual(transcript.full_text, "hello\nworld")
        self.assertEqual(seen, ["PENDING", "PENDING", "RUNNING", "SUCCEEDED"])
        self.assertEqual(clock.sleeps, [3, 3, 3])
        self.assertEqual(len(session.calls_matching("result.test")), 1)

    def test_failed_job_raises_remote_message(self):
        clock = FakeClock()
        session = FakeSession(transcription_routes(
            [task_body("RUNNING"), task_body("FAILED", message="audio format unsupported")]))
        seen = []
        with self.assertRaises(TranscriptionFailed) as ctx:
            self.make_transcriber(session, clock).await_completion("task-1", seen.append)
        self.assertIn("audio format unsupported", ctx.exception.remote_message)
        self.assertEqual(seen, ["RUNNING", "FAILED"])
        self.assertEqual(len(session.calls_matching("tasks/task-1")), 2)

    def test_subtask_failure(self):
        body = task_body("SUCCEEDED")
        body["output"]["results"] = [{"subtask_status": "FAILED", "code": "FILE_DOWNLOAD_FAILED"}]
        session = FakeSession(transcription_routes([body]))
        with self.assertRaises(TranscriptionFailed) as ctx:
            self.make_transcriber(session, FakeClock()).await_completion("task-1")
        self.assertIn("FILE_DOWNLOAD_FAILED", ctx.exception.message)

    def test_timeout(self):
        clock = FakeClock()
        session = FakeSession(transcription_routes([task_body("RUNNING")]))
        seen = []
        with self.assertRaises(TranscriptionTimedOut):
            self.make_transcriber(session, clock, timeout_sec=60).await_completion("task-1", seen.append)
        self.assertGreaterEqual(clock.now, 60)
        self.assertLess(clock.now, 60 + 3)
        self.assertEqual(len(seen), len(session.calls_matching("tasks/task-1")))
        self.assertEqual(set(seen), {"RUNNING"})

    def test_transient_poll_error_keeps_polling(self):
        clock = FakeClock()
        session = FakeSession(transcription_routes([]))
        session.rules[2] = ("tasks/task-1", [
            requests.exceptions.ConnectionError("blip"),
            FakeResponse(200, json_body=task_body("SUCCEEDED", RESULT_URL)),
        ])
        session.rules[3] = ("result.test", FakeResponse(200, json_body=HELLO_WORLD))
        seen = []
        transcript = self.make_transcriber(session, clock).await_completion("task-1", seen.append)
        self.assertEqual(transcript.full_text, "hello\nworld")
        self.assertEqual(seen, ["SUCCEEDED"])

    def test_cancel_event(self):
        cancel = threading.Event()
        cancel.set()
        session = FakeSession(transcription_routes([task_body("RUNNING")]))
        with self.assertRaises(RunCancelled):
            self.make_transcriber(session, FakeClock()).await_completion("task-1", cancel_event=cancel)
        self.assertEqual(session.calls, [])

    def test_result_without_locator(self):
        session = FakeSession()
        transcriber = self.make_transcriber(session, FakeClock())
        with self.assertRaises(TranscriptionFailed):
            transcriber.fetch_result(TranscriptionJob(job_id="t", status=JobStatus.SUCCEEDED))

    def test_normalize_status(self):
        self.assertEqual(normalize_status("running"), JobStatus.RUNNING)
        self.assertEqual(normalize_status(None), JobStatus.PENDING)
        self.assertEqual(normalize_status("CANCELED"), JobStatus.FAILED)
        self.assertEqual(normalize_status("UNKNOWN"), JobStatus.FAILED)
        self.assertTrue(TranscriptionJob(job_id="t", status=JobStatus.FAILED).is_terminal)
        self.assertFalse(TranscriptionJob(job_id="t", status=JobStatus.RUNNING).is_terminal)

    def test_parse_result_with_sentences(self):
        transcript = parse_transcription_result({
            "properties": {"original_duration_in_milliseconds": 4200},
            "transcripts": [{
                "text": "你好。世界。",
                "sentences": [
                    {"begin_time": 0, "end_time": 1500, "text": "你好。"},
                    {"begin_time": 1500, "end_time": 4200, "text": "世界。"},
                ],
            }],
        })
        self.assertEqual(transcript.full_text, "你好。世界。")
        self.assertEqual(len(transcript.segments), 2)
        self.assertEqual(transcript.segments[1].start_ms, 1500)
        self.assertEqual(transcript.duration_ms, 4200)


class TestProgressReporter(unittest.TestCase):

    def test_never_decreases(self):
        recorder = ProgressRecorder()
        reporter = ProgressReporter(recorder)
        for phase, pct in [("a", 10), ("b", 5), ("c", 50), ("d", 49.9), ("e", 150)]:
            reporter.report(phase, pct)
        self.assertEqual(recorder.percents, [10, 10, 50, 50, 100])
        self.assertEqual(reporter.history[1], ProgressEvent(phase="b", percent=10))

    def test_without_callback(self):
        reporter = ProgressReporter()
        reporter.report("resolve", 5)
        self.assertEqual(reporter.percent, 5)


class TestPipelineDescriptionMode(unittest.TestCase):

    def test_description_mode_returns_metadata_text(self):
        session = FakeSession(platform_routes())
        recorder = ProgressRecorder()
        result = make_controller(session, FakeClock()).run_pipeline(
            VIDEO_URL, None, PipelineMode.DESCRIPTION, recorder)
        self.assertEqual((result.title, result.author, result.transcript_text), ("T", "A", "D"))
        self.assertEqual(result.video_id, "BVabc123")
        self.assertEqual(recorder.phases, ["resolve", "metadata", "done"])
        self.assertEqual(recorder.percents[-1], 100)

    def test_description_mode_never_touches_audio(self):
        session = FakeSession(platform_routes())
        with mock.patch("vidscript.core.pipeline.download_audio") as dl, \
                mock.patch("vidscript.core.pipeline.stage") as st, \
                mock.patch("vidscript.core.pipeline.DashScopeTranscriber") as tr, \
                mock.patch("vidscript.core.pipeline.fetch_media_locator") as loc:
            make_controller(session, FakeClock()).run_pipeline(
                VIDEO_URL, "sk-test-key-1234", PipelineMode.DESCRIPTION)
        dl.assert_not_called()
        st.assert_not_called()
        tr.assert_not_called()
        loc.assert_not_called()

    def test_empty_description_placeholder(self):
        session = FakeSession([
            ("x/web-interface/view", FakeResponse(200, json_body=view_body(desc=""))),
            ("x/player/v2", FakeResponse(200, json_body=NO_SUBTITLES_BODY)),
        ])
        result = make_controller(session, FakeClock()).run_pipeline(
            VIDEO_URL, None, PipelineMode.DESCRIPTION)
        self.assertEqual(result.transcript_text, NO_CONTENT_PLACEHOLDER)

    def test_unresolvable_link_makes_no_requests(self):
        session = FakeSession(platform_routes())
        with self.assertRaises(UnresolvableLink):
            make_controller(session, FakeClock()).run_pipeline(
                "https://x.test/video/nothing", None, PipelineMode.DESCRIPTION)
        self.assertEqual(session.calls, [])

    def test_metadata_failure_propagates(self):
        with self.assertRaises(MetadataUnavailable):
            make_controller(FakeSession(), FakeClock()).run_pipeline(
                VIDEO_URL, None, PipelineMode.DESCRIPTION)

    def test_unknown_mode(self):
        with self.assertRaises(ValueError):
            make_controller(FakeSession(), FakeClock()).run_pipeline(VIDEO_URL, None, "summary")


class TestPipelineSpeechMode(unittest.TestCase):

    def test_audio_blocked_on_every_relay(self):
        session = FakeSession(platform_routes(
            [AUDIO_STREAM], audio=FakeResponse(200, content=b"<html>blocked</html>")))
        session.rules.extend(transcription_routes([task_body("SUCCEEDED", RESULT_URL)], HELLO_WORLD))
        with self.assertRaises(AudioDownloadFailed):
            make_controller(session, FakeClock()).run_pipeline(
                VIDEO_URL, "sk-test-key-1234", PipelineMode.SPEECH)
        self.assertEqual(len(session.calls_matching("upos.test")), 3)
        self.assertEqual(session.calls_matching("file.io"), [])
        self.assertEqual(session.calls_matching("dashscope"), [])

    def test_speech_mode_end_to_end(self):
        clock = FakeClock()
        session = FakeSession(platform_routes(
            [AUDIO_STREAM], audio=FakeResponse(200, content=AUDIO_BYTES)))
        session.rules.extend(transcription_routes(
            [task_body("PENDING"), task_body("PENDING"), task_body("RUNNING"),
             task_body("SUCCEEDED", RESULT_URL)],
            HELLO_WORLD,
        ))
        recorder = ProgressRecorder()
        result = make_controller(session, clock).run_pipeline(
            VIDEO_URL, "sk-test-key-1234", PipelineMode.SPEECH, recorder)

        self.assertEqual(result.transcript_text, "hello\nworld")
        self.assertEqual((result.title, result.author), ("T", "A"))
        self.assertEqual(recorder.percents, sorted(recorder.percents))
        self.assertEqual(recorder.percents[-1], 100)
        for phase in ("resolve", "metadata", "locate-audio", "download", "stage", "submit",
                      "poll", "poll:PENDING", "poll:RUNNING", "fetch-result", "done"):
            self.assertIn(phase, recorder.phases)
        poll_percents = [p for ph, p in recorder.events if ph.startswith("poll")]
        self.assertTrue(all(70 <= p <= 89 for p in poll_percents))
        # the staged file is what was downloaded
        upload = session.calls_matching("file.io")[0][2]["files"]["file"]
        self.assertEqual(upload[0], "BVabc123.m4s")
        self.assertEqual(upload[1], AUDIO_BYTES)

    def test_speech_mode_poll_timeout(self):
        clock = FakeClock()
        session = FakeSession(platform_routes(
            [AUDIO_STREAM], audio=FakeResponse(200, content=AUDIO_BYTES)))
        session.rules.extend(transcription_routes([task_body("PENDING"), task_body("RUNNING")]))
        recorder = ProgressRecorder()
        with self.assertRaises(TranscriptionTimedOut):
            make_controller(session, clock, transcription_timeout_sec=60).run_pipeline(
                VIDEO_URL, "sk-test-key-1234", PipelineMode.SPEECH, recorder)
        self.assertEqual(recorder.percents, sorted(recorder.percents))
        self.assertLess(max(recorder.percents), 90)
        self.assertNotIn("done", recorder.phases)

    def test_missing_api_key_fails_before_audio(self):
        session = FakeSession(platform_routes([AUDIO_STREAM], audio=FakeResponse(200, content=AUDIO_BYTES)))
        with self.assertRaises(SubmissionRejected):
            make_controller(session, FakeClock()).run_pipeline(VIDEO_URL, "", PipelineMode.SPEECH)
        self.assertEqual(session.calls_matching("x/player/playurl"), [])
        self.assertEqual(session.calls_matching("upos.test"), [])

    def test_no_audio_stream(self):
        session = FakeSession(platform_routes([]))
        with self.assertRaises(AudioDownloadFailed):
            make_controller(session, FakeClock()).run_pipeline(
                VIDEO_URL, "sk-test-key-1234", PipelineMode.SPEECH)

    def test_empty_recognition_is_an_error(self):
        session = FakeSession(platform_routes([AUDIO_STREAM], audio=FakeResponse(200, content=AUDIO_BYTES)))
        session.rules.extend(transcription_routes(
            [task_body("SUCCEEDED", RESULT_URL)], {"transcripts": [{"text": ""}]}))
        with self.assertRaises(TranscriptionFailed):
            make_controller(session, FakeClock()).run_pipeline(
                VIDEO_URL, "sk-test-key-1234", PipelineMode.SPEECH)

    def test_long_video_notice(self):
        session = FakeSession([
            ("x/web-interface/view", FakeResponse(200, json_body=view_body(duration=3600))),
            ("x/player/v2", FakeResponse(200, json_body=NO_SUBTITLES_BODY)),
        ])
        recorder = ProgressRecorder()
        with self.assertRaises(AudioDownloadFailed):
            make_controller(session, FakeClock()).run_pipeline(
                VIDEO_URL, "sk-test-key-1234", PipelineMode.SPEECH, recorder)
        self.assertEqual(recorder.phases[:4], ["resolve", "metadata", "long-video", "locate-audio"])

    def test_cancelled_before_start(self):
        cancel = threading.Event()
        cancel.set()
        session = FakeSession(platform_routes())
        with self.assertRaises(RunCancelled):
            make_controller(session, FakeClock()).run_pipeline(
                VIDEO_URL, "sk-test-key-1234", PipelineMode.SPEECH, cancel_event=cancel)
        self.assertEqual(session.calls, [])

    def test_independent_runs_share_nothing(self):
        session = FakeSession(platform_routes())
        controller = make_controller(session, FakeClock())
        first, second = ProgressRecorder(), ProgressRecorder()
        controller.run_pipeline(VIDEO_URL, None, PipelineMode.DESCRIPTION, first)
        controller.run_pipeline(VIDEO_URL, None, PipelineMode.DESCRIPTION, second)
        self.assertEqual(first.events, second.events)
        self.assertEqual(second.percents[0], 5)


class TestLocalFileUpload(unittest.TestCase):

    def test_transcribe_local_file(self):
        clock = FakeClock()
        session = FakeSession(transcription_routes(
            [task_body("RUNNING"), task_body("SUCCEEDED", RESULT_URL)], HELLO_WORLD))
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "my talk.mp3"
            path.write_bytes(AUDIO_BYTES)
            recorder = ProgressRecorder()
            result = make_controller(session, clock).transcribe_local_file(
                path, "sk-test-key-1234", recorder)
        self.assertEqual(result.title, "my talk")
        self.assertEqual(result.transcript_text, "hello\nworld")
        self.assertEqual(recorder.percents, sorted(recorder.percents))
        self.assertEqual(session.calls_matching("bilibili"), [])
        self.assertEqual(session.calls_matching("file.io")[0][2]["files"]["file"][0], "my_talk.mp3")

    def test_rejects_unsupported_files(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            txt = Path(tmpdir) / "notes.txt"
            txt.write_text("hello")
            empty = Path(tmpdir) / "empty.mp3"
            empty.write_bytes(b"")
            controller = make_controller(FakeSession(), FakeClock())
            for path in (txt, empty, Path(tmpdir) / "missing.mp3"):
                with self.assertRaises(UnsupportedFile):
                    controller.transcribe_local_file(path, "sk-test-key-1234")

    def test_rejects_oversized_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "big.wav"
            path.write_bytes(b"\x00")
            controller = make_controller(FakeSession(), FakeClock())
            with mock.patch("vidscript.core.pipeline.MAX_UPLOAD_BYTES", 0):
                with self.assertRaises(UnsupportedFile):
                    controller.transcribe_local_file(path, "sk-test-key-1234")


class TestSessionPerRun(unittest.TestCase):

    def test_runs_do_not_share_cookies(self):
        sessions = []

        def new_session():
            session = FakeSession([
                ("x/web-interface/view", FakeResponse(
                    200, json_body=view_body(), cookies={"buvid3": f"run{len(sessions)}"})),
                ("x/player/v2", FakeResponse(200, json_body=NO_SUBTITLES_BODY)),
            ])
            sessions.append(session)
            return session

        clock = FakeClock()
        controller = PipelineController({"metadata_relays": TEST_RELAYS},
                                        clock=clock, sleep=clock.sleep)
        with mock.patch("vidscript.core.pipeline.requests.Session", side_effect=new_session):
            controller.run_pipeline(VIDEO_URL, None, PipelineMode.DESCRIPTION)
            controller.run_pipeline(VIDEO_URL, None, PipelineMode.DESCRIPTION)

        self.assertEqual(len(sessions), 2)
        self.assertTrue(all(s.closed for s in sessions))
        self.assertEqual(sessions[0].cookies_sent[-1], {"buvid3": "run0"})
        self.assertEqual(sessions[1].cookies_sent[0], {})

    def test_session_closed_when_run_fails(self):
        sessions = []

        def new_session():
            sessions.append(FakeSession())
            return sessions[-1]

        controller = PipelineController({"metadata_relays": TEST_RELAYS})
        with mock.patch("vidscript.core.pipeline.requests.Session", side_effect=new_session):
            with self.assertRaises(MetadataUnavailable):
                controller.run_pipeline(VIDEO_URL, None, PipelineMode.DESCRIPTION)
        self.assertTrue(sessions[0].closed)

    def test_injected_session_left_open(self):
        session = FakeSession(platform_routes())
        make_controller(session, FakeClock()).run_pipeline(VIDEO_URL, None, PipelineMode.DESCRIPTION)
        self.assertFalse(session.closed)


class TestBatchRun(unittest.TestCase):

    def test_failed_link_is_skipped(self):
        session = FakeSession([("bvid=BVbad", FakeResponse(200, json_body={"code": -404, "message": "gone"}))])
        session.rules.extend(platform_routes())
        text = "https://x.test/video/BVabc123\nnot a link\n\nhttps://x.test/video/BVbad\n"
        with mock.patch("sys.stderr"):
            outputs, failures = main.run_batch(make_controller(session, FakeClock()), text,
                                               None, PipelineMode.DESCRIPTION)
        self.assertEqual(outputs, ["T\nA\n\nD\n"])
        self.assertEqual(failures, 1)


if __name__ == "__main__":
    unittest.main()
