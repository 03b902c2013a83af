"""
Wiring for a complete bot process.

``build_bot`` assembles the scheduler, meeting workflow, invitation listener
and status API from a ``BotConfig`` and the vendor integrations. Recognition
capabilities default to Whisper and pyannote.audio.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from flask import Flask

from ..audio.diarization import PyannoteDiarizer, PyannoteSpeakerMatcher
from ..audio.segmenter import AudioSegmenter
from ..audio.transcription import AudioTranscriber
from ..audio.voiceprints import VoiceprintRegistry
from ..collaborators import (
    AttendeeDirectory,
    BoundaryDetector,
    Dialer,
    HttpRecorder,
    InvitationSource,
    Notifier,
    Recorder,
    SmtpNotifier,
    SpeakerMatcher,
    SpeechRecognizer,
)
from ..config import BotConfig
from .app import create_app
from .listener import InvitationListener
from .scheduler import WorkflowScheduler
from .task_manager import TaskManager
from .workflow import MeetingWorkflow

logger = logging.getLogger(__name__)


@dataclass
class Bot:
    """A wired bot: call ``start()`` to begin listening and ``serve()`` for the status API."""

    config: BotConfig
    task_manager: TaskManager
    scheduler: WorkflowScheduler
    registry: VoiceprintRegistry
    workflow: MeetingWorkflow
    listener: InvitationListener
    app: Flask

    def start(self) -> None:
        self.listener.start()

    def stop(self) -> None:
        self.listener.stop()
        self.scheduler.shutdown()

    def serve(self, host: str = "0.0.0.0", port: int = 5001) -> None:
        """Start listening and block serving the status API until interrupted."""
        self.start()
        try:
            self.app.run(host=host, port=port)
        finally:
            self.stop()


def build_bot(
    config: BotConfig,
    source: InvitationSource,
    dialer: Dialer,
    directory: AttendeeDirectory,
    recorder: Optional[Recorder] = None,
    notifier: Optional[Notifier] = None,
    matcher: Optional[SpeakerMatcher] = None,
    detector: Optional[BoundaryDetector] = None,
    recognizer: Optional[SpeechRecognizer] = None,
) -> Bot:
    """Assemble a bot; any capability left as None gets its default implementation."""
    task_manager = TaskManager(config.tasks_dir)

    recorder = recorder or HttpRecorder(
        config.recording_base_url, download_dir=config.tasks_dir, timeout=config.download_timeout
    )
    notifier_impl = notifier or SmtpNotifier(
        config.smtp_host, config.smtp_port, config.bot_email, config.smtp_user, config.smtp_password
    )

    def report_to_operator(error):
        notifier_impl.send([config.bot_email], "Minutes bot scheduler error", str(error))

    matcher = matcher or PyannoteSpeakerMatcher(config.huggingface_token, config.embedding_model)
    detector = detector or PyannoteDiarizer(config.huggingface_token, config.diarization_model)
    recognizer = recognizer or AudioTranscriber(config.whisper_model, language=config.language)

    scheduler = WorkflowScheduler(task_manager, on_internal_error=report_to_operator)
    registry = VoiceprintRegistry(
        matcher,
        min_enrollment_ms=config.min_enrollment_ms,
        silence_threshold=config.silence_threshold,
        max_workers=config.enrollment_workers,
    )
    segmenter = AudioSegmenter(
        detector, matcher, acceptance_threshold=config.acceptance_threshold, min_window_ms=config.min_window_ms
    )
    workflow = MeetingWorkflow(
        config, dialer, recorder, directory, notifier_impl, registry, segmenter, recognizer, task_manager
    )
    listener = InvitationListener(config, source, directory, registry, notifier_impl, scheduler, workflow)
    app = create_app(task_manager, scheduler, listener)

    return Bot(config, task_manager, scheduler, registry, workflow, listener, app)
