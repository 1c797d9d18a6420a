"""CLI interface with subcommand routing over the conversion service."""

import argparse
import asyncio
import logging
import sys

from speechmaker.audio import TranscodeGateway
from speechmaker.constants import OUTPUT_FORMATS, PREVIEW_TIMEOUT, VERSION
from speechmaker.errors import InputError, SpeechMakerError
from speechmaker.ffmpeg import CapabilityDetector
from speechmaker.files import read_text_file
from speechmaker.models import (
    CompletedEvent,
    JobState,
    ProgressEvent,
    RetryEvent,
)
from speechmaker.pipeline import ConversionPipeline
from speechmaker.preview import play_preview
from speechmaker.service import ConversionService
from speechmaker.settings import load_settings
from speechmaker.tts import EdgeTTSEngine, SynthesisGateway
from speechmaker.voices import VoiceRegistry

logger = logging.getLogger(__name__)


def _fail(error: SpeechMakerError, fallback_output: str | None = None):
    """Print a user-facing error with troubleshooting steps and exit 1."""
    print(f"Error: {error.user_message}", file=sys.stderr)
    if error.message != error.user_message:
        print(f"  ({error.message})", file=sys.stderr)
    if fallback_output:
        print(f"WAV output kept at: {fallback_output}", file=sys.stderr)
    if error.troubleshooting:
        print("Troubleshooting:", file=sys.stderr)
        for i, step in enumerate(error.troubleshooting, 1):
            print(f"  {i}. {step}", file=sys.stderr)
    raise SystemExit(1)


def _print_event(event):
    if isinstance(event, ProgressEvent):
        print(f"[{event.progress:3d}%] {event.phase}")
    elif isinstance(event, RetryEvent):
        print(
            f"Attempt {event.attempt}/{event.max_attempts} failed: {event.error} "
            f"(retrying in {event.delay:.0f}s)",
            file=sys.stderr,
        )
    elif isinstance(event, CompletedEvent):
        print(f"Saved: {event.output_file}")


async def _convert(args, settings, text: str):
    engine = EdgeTTSEngine()
    registry = VoiceRegistry(engine)
    detector = CapabilityDetector()
    await detector.probe()

    voice_id = args.voice or settings.last_selected_voice
    if voice_id and not args.voice:
        await registry.get_available_voices()
        if registry.find(voice_id) is None:
            logger.warning("Saved voice %s is no longer available, using default", voice_id)
            voice_id = None
    if not voice_id:
        await registry.get_available_voices()
        default = registry.default_voice()
        if default is None:
            raise InputError("No voices available to choose a default from")
        voice_id = default.id
        print(f"Using default voice: {voice_id}")

    pipeline = ConversionPipeline(
        SynthesisGateway(registry, engine),
        TranscodeGateway(detector),
        max_chunk_length=args.max_chunk_length or settings.max_chunk_length,
    )
    service = ConversionService(pipeline, settings)
    service.subscribe(_print_event)
    job = service.start_job(
        text,
        voice_id=voice_id,
        speed=args.speed,
        output_format=args.format,
        output_dir=args.output_dir,
    )
    return await service.wait(job.id)


def cmd_convert(args):
    """Convert a text file or inline text to speech."""
    settings = load_settings(args.settings)
    text = read_text_file(args.file) if args.file else args.text

    result = asyncio.run(_convert(args, settings, text))
    if result.state == JobState.COMPLETED:
        return
    if result.state == JobState.CANCELLED:
        print("Conversion cancelled.", file=sys.stderr)
        raise SystemExit(1)
    _fail(result.error, fallback_output=result.error.details.get("fallback_output"))


def cmd_voices(args):
    """List available voices."""
    registry = VoiceRegistry(EdgeTTSEngine())
    result = asyncio.run(registry.load_with_retry())
    if not result.success:
        _fail(result.error)

    voices = registry.filter(args.filter) if args.filter else registry.voices
    if not voices:
        print("No matching voices found.")
        return
    print("Available voices:")
    for v in voices:
        marker = "*" if v.is_default else " "
        print(f" {marker} {v.id:<32} {v.gender:<8} {v.locale:<8} {v.display_name}")


def cmd_ffmpeg(args):
    """Report FFmpeg availability."""
    detector = CapabilityDetector()
    status = asyncio.run(detector.probe())
    if status.available:
        print(f"FFmpeg {status.version} ({status.source}): {status.path}")
        return
    print(f"FFmpeg not available: {status.error}", file=sys.stderr)
    print("MP3 output is disabled; WAV output still works.", file=sys.stderr)
    print("To install FFmpeg:", file=sys.stderr)
    for i, step in enumerate(detector.installation_guide(), 1):
        print(f"  {i}. {step}", file=sys.stderr)
    raise SystemExit(1)


def cmd_preview(args):
    """Play an audio file for a few seconds."""
    asyncio.run(play_preview(args.file, timeout=args.timeout))


def main(argv=None):
    """CLI entry point."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    parser = argparse.ArgumentParser(
        prog="speechmaker",
        description="SpeechMaker: convert text to speech audio files",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # convert
    convert_parser = subparsers.add_parser("convert", parents=[common], help="Convert text to speech")
    source = convert_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("file", nargs="?", help="Path to a .txt file")
    source.add_argument("--text", help="Text to convert")
    convert_parser.add_argument("--voice", help="Voice id, e.g. en-US-AriaNeural")
    convert_parser.add_argument("--speed", type=float, help="Speech speed, 0.5 to 2.0")
    convert_parser.add_argument("--format", choices=OUTPUT_FORMATS, help="Output format")
    convert_parser.add_argument("--output-dir", help="Output folder")
    convert_parser.add_argument("--max-chunk-length", type=int, help="Maximum characters per segment")
    convert_parser.add_argument("--settings", help="Path to settings.json")
    convert_parser.set_defaults(func=cmd_convert)

    # voices
    voices_parser = subparsers.add_parser("voices", parents=[common], help="List available voices")
    voices_parser.add_argument("--filter", help="Filter voices by substring")
    voices_parser.set_defaults(func=cmd_voices)

    # ffmpeg
    ffmpeg_parser = subparsers.add_parser("ffmpeg", parents=[common], help="Check FFmpeg availability")
    ffmpeg_parser.set_defaults(func=cmd_ffmpeg)

    # preview
    preview_parser = subparsers.add_parser("preview", parents=[common], help="Play an audio file")
    preview_parser.add_argument("file", help="Audio file to play")
    preview_parser.add_argument("--timeout", type=float, default=PREVIEW_TIMEOUT, help="Stop after this many seconds")
    preview_parser.set_defaults(func=cmd_preview)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        args.func(args)
    except SpeechMakerError as e:
        _fail(e)


if __name__ == "__main__":
    main()
