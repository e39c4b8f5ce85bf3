#!/usr/bin/env python3
"""
Live Recitation Analysis Launcher

This script provides an easy way to launch different components of the system.
"""

import sys
import json
import asyncio
import argparse
import subprocess
import logging
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / "src"))

from tilawa_live.api_clients import AlQuranAPIClient, RemoteTranscriptionClient, TarteelTranscriptionClient
from tilawa_live.config import LiveRecitationConfig, settings
from tilawa_live.exceptions import QuranTextError
from tilawa_live.session_summary import create_live_session_summary
from tilawa_live.streaming import LiveRecitationSession

# Setup logging
logging.basicConfig(level=settings.log_level, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def run_fastapi_server(host=None, port=None):
    """Launch the FastAPI backend server."""
    from tilawa_live.fastapi_server import run_server

    logger.info("Starting FastAPI backend server...")
    try:
        run_server(host=host, port=port)
    except KeyboardInterrupt:
        logger.info("FastAPI server stopped by user")
    return True


def run_tests():
    """Run the test suite."""
    logger.info("Running tests...")
    try:
        subprocess.run([sys.executable, "-m", "pytest", "-q"], check=True)
        logger.info("All tests passed!")
        return True
    except subprocess.CalledProcessError as e:
        logger.error(f"Tests failed: {e}")
        return False


def resolve_expected_text(args):
    """Expected text from --expected, or fetched for --surah/--ayah."""
    if args.expected:
        return args.expected, args.ayah_id
    if args.surah and args.ayah:
        try:
            ayah = AlQuranAPIClient().get_ayah_data(args.surah, args.ayah)
        except QuranTextError as e:
            logger.error(f"Could not fetch ayah {args.surah}:{args.ayah}: {e}")
            return None, None
        return ayah.text, args.ayah_id or f"{args.surah}:{args.ayah}"
    logger.error("Provide --expected or both --surah and --ayah")
    return None, None


def run_analysis(args):
    """Score a transcription against the expected text and print the summary."""
    expected, ayah_id = resolve_expected_text(args)
    if expected is None:
        return False

    summary = create_live_session_summary(
        args.transcription or "",
        expected,
        ayah_id=ayah_id,
        dialect=args.dialect,
        locale_hint=args.locale,
        substitution_threshold=args.threshold,
    )
    print(json.dumps(summary.to_dict(), ensure_ascii=False, indent=2))
    return True


async def _record_live(args, expected, ayah_id):
    if args.server_url:
        transcriber = RemoteTranscriptionClient(args.server_url, timeout=settings.transcription_timeout)
    else:
        transcriber = TarteelTranscriptionClient.from_settings(settings)

    config = LiveRecitationConfig(
        chunk_duration_ms=args.chunk_ms,
        dialect=args.dialect,
        locale_hint=args.locale,
        substitution_threshold=args.threshold,
        ayah_id=ayah_id,
    )

    last_transcript = {"text": ""}

    def on_update(session):
        if session.transcript_text != last_transcript["text"]:
            last_transcript["text"] = session.transcript_text
            print(f"[{session.status}] {session.transcript_text}")

    async with LiveRecitationSession(expected, transcriber, config=config, on_update=on_update) as session:
        if not await session.start():
            logger.error(session.error)
            return None
        print(f"Recording for {args.seconds}s using {session.capture_mode} capture. Recite now.")
        try:
            await asyncio.sleep(args.seconds)
        except asyncio.CancelledError:
            pass
        summary = await session.stop()
        if session.error:
            logger.error(session.error)
        return summary


def run_live(args):
    """Record from the microphone and print live and final feedback."""
    expected, ayah_id = resolve_expected_text(args)
    if expected is None:
        return False

    try:
        summary = asyncio.run(_record_live(args, expected, ayah_id))
    except KeyboardInterrupt:
        logger.info("Live session stopped by user")
        return True

    if summary is None:
        return False

    print("\n" + "=" * 50)
    print("RECITATION RESULTS")
    print("=" * 50)
    print(f"Transcription: {summary.transcription}")
    print(f"Overall: {summary.feedback.overall_score}  Accuracy: {summary.feedback.accuracy}  "
          f"Timing: {summary.feedback.timing_score}  Fluency: {summary.feedback.fluency_score}")
    print(summary.feedback.feedback)
    for error in summary.feedback.errors:
        print(f"  - word {error.index + 1}: {error.message} ({error.correct or error.word})")
    print(f"Hasanat: {summary.hasanat_points}")
    return True


def main():
    parser = argparse.ArgumentParser(
        description="Live Recitation Analysis Launcher",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_system.py server                                   # Launch API server
  python run_system.py analyze --surah 1 --ayah 1 --transcription "بسم الله الرحمن الرحيم"
  python run_system.py live --surah 1 --ayah 2 --seconds 10    # Record from the microphone
  python run_system.py test                                     # Run tests
        """
    )

    parser.add_argument(
        "component",
        choices=["server", "analyze", "live", "test"],
        help="Component to launch"
    )
    parser.add_argument("--expected", help="Expected ayah text")
    parser.add_argument("--transcription", help="Detected text for 'analyze'")
    parser.add_argument("--surah", type=int, help="Surah number used to fetch the expected text")
    parser.add_argument("--ayah", type=int, help="Ayah number used to fetch the expected text")
    parser.add_argument("--ayah-id", help="Identifier stored on the summary")
    parser.add_argument("--dialect", default="auto", help="Dialect code or 'auto'")
    parser.add_argument("--locale", help="Locale hint, e.g. ur-PK")
    parser.add_argument("--threshold", type=float, default=0.75, help="Substitution threshold (0.5-0.95)")
    parser.add_argument("--chunk-ms", type=int, default=4000, help="Live chunk duration in milliseconds")
    parser.add_argument("--seconds", type=float, default=15.0, help="Live recording length")
    parser.add_argument("--server-url", help="Send live chunks to a running server instead of Tarteel")
    parser.add_argument("--host", help="Server host")
    parser.add_argument("--port", type=int, help="Server port")

    args = parser.parse_args()

    success = False

    if args.component == "server":
        success = run_fastapi_server(args.host, args.port)
    elif args.component == "analyze":
        success = run_analysis(args)
    elif args.component == "live":
        success = run_live(args)
    elif args.component == "test":
        success = run_tests()

    if not success:
        sys.exit(1)

    logger.info("Operation completed successfully!")


if __name__ == "__main__":
    main()
