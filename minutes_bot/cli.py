"""
Command line entry point.

Commands:
    minutes-bot transcribe RECORDING [--attendee "Name <email>"] [--sample email=voice.wav] [--output FILE]
        Split a local WAV recording by speaker, transcribe it and print the minutes.

    minutes-bot config
        Show every configuration value and where it comes from.
"""

import argparse
import logging
import re
import sys
from pathlib import Path
from typing import Dict, List, Optional

from .audio import AudioSegmenter, AudioTranscriber, PyannoteDiarizer, PyannoteSpeakerMatcher, TranscriptionPipeline
from .audio import VoiceprintRegistry
from .config import BotConfig, ConfigManager, setup_logging
from .errors import InvalidRecordingError
from .models import User

logger = logging.getLogger(__name__)

ATTENDEE_PATTERN = re.compile(r"^\s*(?P<name>[^<]+?)\s*<(?P<email>[^>]+)>\s*$")


def parse_attendee(value: str) -> User:
    """Parse ``"Display Name <email>"`` into a User."""
    match = ATTENDEE_PATTERN.match(value)
    if not match:
        raise argparse.ArgumentTypeError(f"Expected 'Name <email>', got {value!r}")
    return User(match.group("name"), match.group("email"))


def parse_sample(value: str) -> tuple:
    email, sep, path = value.partition("=")
    if not sep or not email or not path:
        raise argparse.ArgumentTypeError(f"Expected 'email=path/to/sample.wav', got {value!r}")
    return email.strip(), Path(path.strip())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="minutes-bot", description="Meeting minutes bot")
    subparsers = parser.add_subparsers(dest="command", required=True)

    transcribe = subparsers.add_parser("transcribe", help="Transcribe a local recording")
    transcribe.add_argument("recording", type=Path, help="PCM WAV recording of the meeting")
    transcribe.add_argument(
        "--attendee", "-a", action="append", type=parse_attendee, default=[], help="Participant as 'Name <email>'"
    )
    transcribe.add_argument(
        "--sample", "-s", action="append", type=parse_sample, default=[], help="Voice sample as 'email=path.wav'"
    )
    transcribe.add_argument("--output", "-o", type=Path, help="Write the minutes to this file")
    transcribe.add_argument("--whisper-model", help="Whisper model size (default: WHISPER_MODEL or base)")

    subparsers.add_parser("config", help="Show resolved configuration")
    return parser


def transcribe_recording(args: argparse.Namespace, config: BotConfig) -> int:
    attendees: Dict[str, User] = {user.email: user for user in args.attendee}

    matcher = PyannoteSpeakerMatcher(config.huggingface_token, config.embedding_model)
    registry = VoiceprintRegistry(
        matcher,
        min_enrollment_ms=config.min_enrollment_ms,
        silence_threshold=config.silence_threshold,
        max_workers=config.enrollment_workers,
    )
    for email, path in args.sample:
        user = attendees.setdefault(email, User(email.split("@")[0], email))
        registry.add_sample(user, path.read_bytes())

    lookup = registry.build_for(attendees.values())
    for error in lookup.errors:
        print(f"⚠ {error}", file=sys.stderr)

    segmenter = AudioSegmenter(
        PyannoteDiarizer(config.huggingface_token, config.diarization_model),
        matcher,
        acceptance_threshold=config.acceptance_threshold,
        min_window_ms=config.min_window_ms,
    )
    try:
        segments = segmenter.split(args.recording, lookup.enrolled)
    except InvalidRecordingError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    pipeline = TranscriptionPipeline(
        AudioTranscriber(config.whisper_model, language=config.language),
        max_workers=config.transcription_workers,
        segment_timeout=config.segment_timeout,
    )
    if not pipeline.perform(segments):
        print("✗ Failed to generate meeting minutes", file=sys.stderr)
        return 1

    if args.output:
        pipeline.write_minutes(args.output)
        print(f"✓ Minutes written to {args.output}")
    else:
        print(pipeline.render())
    return 0


def show_config() -> int:
    for key in sorted(ConfigManager.DEFAULTS):
        value, source = ConfigManager.get_display_value(key)
        if "PASSWORD" in key or "TOKEN" in key:
            value = "***" if value else ""
        print(f"{key:<24} {value!s:<40} ({source})")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "config":
        return show_config()

    overrides = {"whisper_model": args.whisper_model} if getattr(args, "whisper_model", None) else {}
    config = BotConfig.from_env(**overrides)
    setup_logging(config.log_level, config.log_file)
    return transcribe_recording(args, config)


if __name__ == "__main__":
    sys.exit(main())
