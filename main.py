#!/usr/bin/env python3
"""
VidScript v1.0.0 — command-line entry point.
Thin caller around the core pipeline: parses arguments, configures logging,
prints progress and writes the transcript.
"""

import argparse
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

from vidscript.core.constants import APP_VERSION, LOG_FILE, PIPELINE_MODES, PipelineMode
from vidscript.core.config import AppConfig
from vidscript.core.error_codes import JobError, user_message
from vidscript.core.models import PipelineResult
from vidscript.core.pipeline import PipelineController
from vidscript.core.url_parse import parse_input_lines

logger = logging.getLogger("vidscript")


def setup_logging(log_file: Path = LOG_FILE, verbose: bool = False):
    """Full log to file, warnings (or everything with -v) to stderr."""
    log_file.parent.mkdir(parents=True, exist_ok=True)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding="utf-8"),
            console,
        ],
    )
    # urllib3 logs every relay URL at DEBUG, including the target
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def print_progress(phase: str, percent: int):
    print(f"[{percent:3d}%] {phase}", file=sys.stderr)


def format_result(result: PipelineResult) -> str:
    return f"{result.title}\n{result.author}\n\n{result.transcript_text}\n"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vidscript",
        description="Extract a text transcript from a video link.",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("url", nargs="?", help="video link containing a BV id")
    source.add_argument("--file", type=Path, help="transcribe a local audio/video file instead")
    source.add_argument("--batch", type=Path,
                        help="text file of links, one per line (lines without a video id are skipped)")
    parser.add_argument("--mode", choices=PIPELINE_MODES, default=PipelineMode.DESCRIPTION,
                        help="description: captions/description text; speech: transcribe audio")
    parser.add_argument("--api-key", default=None,
                        help="DashScope API key (default: $DASHSCOPE_API_KEY)")
    parser.add_argument("--config", type=Path, default=None, help="path to config.json")
    parser.add_argument("--output", "-o", type=Path, default=None,
                        help="write the transcript here instead of stdout")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


def run_batch(controller: PipelineController, text: str, api_key: str | None,
              mode: str) -> tuple[list[str], int]:
    """Run every link in text. A failed link is reported and skipped."""
    urls = parse_input_lines(text)
    logger.info("Batch: %d links", len(urls))
    outputs = []
    failures = 0
    for i, url in enumerate(urls, 1):
        print(f"({i}/{len(urls)}) {url}", file=sys.stderr)
        try:
            result = controller.run_pipeline(url, api_key, mode, print_progress)
        except JobError as e:
            failures += 1
            print(f"Error: {user_message(e)}", file=sys.stderr)
            continue
        outputs.append(format_result(result))
    return outputs, failures


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)

    logger.info("=" * 60)
    logger.info("VidScript v%s starting at %s", APP_VERSION, datetime.now().isoformat())
    logger.info("Python: %s", sys.executable)
    logger.info("=" * 60)

    api_key = args.api_key or os.environ.get("DASHSCOPE_API_KEY")
    controller = PipelineController(AppConfig(args.config))
    failures = 0

    try:
        if args.batch:
            outputs, failures = run_batch(
                controller, args.batch.read_text(encoding="utf-8"), api_key, args.mode)
            if not outputs:
                print("Error: no link in the batch produced a transcript", file=sys.stderr)
                return 1
        elif args.file:
            outputs = [format_result(
                controller.transcribe_local_file(args.file, api_key, print_progress))]
        else:
            outputs = [format_result(
                controller.run_pipeline(args.url, api_key, args.mode, print_progress))]
    except JobError as e:
        print(f"Error: {user_message(e)}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.critical("Fatal error: %s: %s", type(e).__name__, e, exc_info=True)
        print(f"Error: {user_message(e)}\nCheck logs at: {LOG_FILE}", file=sys.stderr)
        return 1

    text = "\n".join(outputs)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(text, encoding="utf-8")
        logger.info("Wrote transcript: %s", args.output)
    else:
        sys.stdout.write(text)
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
