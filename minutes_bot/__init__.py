"""
Meeting minutes bot.

Detects meeting invitations, joins the call when the meeting starts, splits
the recording by speaker, transcribes every segment and mails the ordered
minutes to the participants.
"""

from .config import BotConfig, ConfigManager, setup_logging
from .errors import (
    DialError,
    DownloadError,
    EnrollmentError,
    InvalidRecordingError,
    MinutesBotError,
    NotificationError,
    SchedulerInternalError,
    SegmentError,
    StageError,
    StageTimeout,
)
from .models import AudioSegment, SegmentCollection, TranscriptEntry, User, Voiceprint

__version__ = "0.1.0"

__all__ = [
    "AudioSegment",
    "BotConfig",
    "ConfigManager",
    "DialError",
    "DownloadError",
    "EnrollmentError",
    "InvalidRecordingError",
    "MinutesBotError",
    "NotificationError",
    "SchedulerInternalError",
    "SegmentError",
    "SegmentCollection",
    "StageError",
    "StageTimeout",
    "TranscriptEntry",
    "User",
    "Voiceprint",
    "setup_logging",
]
