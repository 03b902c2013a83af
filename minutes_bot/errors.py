"""
Exception hierarchy for the minutes bot.

Stage-local conditions (one unusable voiceprint, one failed segment) are
absorbed by the component that raises them. Stage-fatal conditions abort the
current meeting only and are turned into a failure notice by the workflow.
"""

from typing import Optional


class MinutesBotError(Exception):
    """Base exception for minutes bot errors."""

    pass


class EnrollmentError(MinutesBotError):
    """Raised when a user's voice sample cannot be enrolled."""

    def __init__(self, message: str, user=None):
        super().__init__(message)
        self.user = user


class InvalidRecordingError(MinutesBotError):
    """Raised when a recording is empty or cannot be decoded."""

    pass


class SegmentError(MinutesBotError):
    """Raised when a single segment cannot be transcribed."""

    def __init__(self, message: str, segment=None):
        super().__init__(message)
        self.segment = segment


class StageError(MinutesBotError):
    """A workflow stage failed; the meeting cannot produce minutes."""

    stage = "unknown"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class DialError(StageError):
    """Raised when the bot cannot join the call."""

    stage = "dial"


class DownloadError(StageError):
    """Raised when the recording cannot be downloaded."""

    stage = "download"


class StageTimeout(StageError):
    """Raised when a bounded stage runs past its timeout."""

    pass


class NotificationError(MinutesBotError):
    """Raised when the notifier cannot deliver a message."""

    pass


class SchedulerInternalError(MinutesBotError):
    """Raised when a scheduled task could not reach the running state."""

    def __init__(self, message: str, task_id: Optional[str] = None):
        super().__init__(message)
        self.task_id = task_id
