"""
Meeting workflow: the work a scheduled task performs when a meeting starts.

Stages, in order: attendee lookup, dial-in, recording download, voiceprint
lookup, segmentation, transcription and distribution. Any failing stage skips
the rest, but distribution always runs: participants receive either the
minutes or a failure notice.
"""

import logging
import shutil
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Optional, Set, Type

from ..audio.pipeline import TranscriptionPipeline
from ..audio.segmenter import AudioSegmenter
from ..audio.voiceprints import VoiceprintRegistry
from ..collaborators import AttendeeDirectory, Dialer, Notifier, Recorder, SpeechRecognizer
from ..config import BotConfig
from ..errors import DialError, DownloadError, InvalidRecordingError, StageError, StageTimeout
from ..models import User
from .scheduler import current_task_id
from .task_manager import TaskManager, TaskStage

logger = logging.getLogger(__name__)

FAILURE_SUBJECT = "Failed to generate meeting minutes"


def minutes_subject(moment: Optional[datetime] = None) -> str:
    moment = moment or datetime.now()
    return f"Meeting minutes for {moment:%Y-%m-%d %H:%M}"


def resolve_recipients(config: BotConfig, attendees: Set[User]) -> List[str]:
    """Attendee addresses in release mode, otherwise only the bot's own address."""
    if not config.release or not attendees:
        return [config.bot_email]
    return sorted({user.email for user in attendees})


class MeetingWorkflow:
    """Dial, record, diarize, transcribe and distribute one meeting."""

    def __init__(
        self,
        config: BotConfig,
        dialer: Dialer,
        recorder: Recorder,
        directory: AttendeeDirectory,
        notifier: Notifier,
        registry: VoiceprintRegistry,
        segmenter: AudioSegmenter,
        recognizer: SpeechRecognizer,
        task_manager: Optional[TaskManager] = None,
    ):
        self.config = config
        self.dialer = dialer
        self.recorder = recorder
        self.directory = directory
        self.notifier = notifier
        self.registry = registry
        self.segmenter = segmenter
        self.recognizer = recognizer
        self.task_manager = task_manager

    def __call__(self, access_code: str) -> bool:
        return self.run(access_code)

    def run(self, access_code: str, task_id: Optional[str] = None) -> bool:
        """
        Run the full workflow for one meeting.

        Args:
            access_code: Meeting access code
            task_id: Scheduled task id for progress reporting; taken from the running task if omitted

        Returns:
            True if the minutes were delivered, False if a failure notice was delivered instead

        Raises:
            NotificationError: If neither the minutes nor the failure notice could be sent
        """
        task_id = task_id or current_task_id()
        start_time = time.time()
        logger.info(f"Starting meeting workflow for {access_code}")

        attendees = self._lookup_attendees(access_code)
        recipients = resolve_recipients(self.config, attendees)

        try:
            minutes = self._produce_minutes(access_code, attendees, task_id)
        except (StageError, InvalidRecordingError) as e:
            stage = getattr(e, "stage", "segment")
            logger.error(f"Meeting {access_code} failed at stage '{stage}': {e}")
            self._notify_failure(recipients, access_code, stage, e, task_id)
            return False
        except Exception as e:
            logger.exception(f"Unexpected error in meeting workflow for {access_code}: {e}")
            self._notify_failure(recipients, access_code, "internal", e, task_id)
            return False

        self._stage(task_id, TaskStage.DISTRIBUTING, 90.0, "Sending minutes")
        self.notifier.send(recipients, minutes_subject(), minutes)
        self._stage(task_id, TaskStage.COMPLETE, 100.0, "Minutes delivered")

        logger.info(f"Meeting {access_code} minutes sent in {time.time() - start_time:.2f} seconds")
        return True

    def _produce_minutes(self, access_code: str, attendees: Set[User], task_id: Optional[str]) -> str:
        """Run every stage up to distribution and return the rendered minutes."""
        cfg = self.config

        self._stage(task_id, TaskStage.DIALING, 10.0, "Dialing into meeting")
        recording_id = self._bounded(self.dialer.dial, access_code, cfg.dial_timeout, "dial", DialError)

        self._stage(task_id, TaskStage.DOWNLOADING, 30.0, "Downloading recording")
        recording = self._bounded(self.recorder.download, recording_id, cfg.download_timeout, "download", DownloadError)
        recording = self._keep_with_task(task_id, recording)

        self._stage(task_id, TaskStage.ENROLLING, 40.0, "Resolving voiceprints")
        lookup = self.registry.build_for(attendees)

        self._stage(task_id, TaskStage.SEGMENTING, 50.0, "Splitting recording by speaker")
        segments = self.segmenter.split(recording, lookup.enrolled)

        self._stage(task_id, TaskStage.TRANSCRIBING, 70.0, f"Transcribing {len(segments)} segment(s)")
        pipeline = TranscriptionPipeline(
            self.recognizer, max_workers=cfg.transcription_workers, segment_timeout=cfg.segment_timeout
        )
        if not pipeline.perform(segments):
            raise StageError("No segment of the recording could be transcribed", stage="transcribe")

        if self.task_manager is not None and task_id is not None:
            path = pipeline.write_minutes(self.task_manager.get_task_dir(task_id) / "minutes.txt")
            logger.info(f"Minutes for {access_code} written to {path}")

        return pipeline.render()

    def _lookup_attendees(self, access_code: str) -> Set[User]:
        try:
            return set(self.directory.attendees_of(access_code))
        except Exception as e:
            logger.error(f"Attendee lookup failed for {access_code}, mail goes to {self.config.bot_email}: {e}")
            return set()

    def _bounded(
        self, fn: Callable[[Any], Any], arg: Any, timeout: float, stage: str, error_cls: Type[StageError]
    ) -> Any:
        """Run ``fn(arg)`` with a timeout, translating failures into stage errors."""
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=stage)
        try:
            future = executor.submit(fn, arg)
            try:
                return future.result(timeout=timeout)
            except FuturesTimeoutError:
                if future.done():
                    raise error_cls(f"{stage} failed: {future.exception()}") from future.exception()
                raise StageTimeout(f"{stage} did not finish within {timeout:.0f}s", stage=stage)
            except StageError:
                raise
            except Exception as e:
                raise error_cls(f"{stage} failed: {e}") from e
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _keep_with_task(self, task_id: Optional[str], recording: Any) -> Any:
        """Move a downloaded recording into the task directory so deleting the task removes it."""
        if self.task_manager is None or task_id is None:
            return recording

        source = Path(recording)
        task_dir = self.task_manager.get_task_dir(task_id)
        if source.parent.resolve() == task_dir.resolve():
            return source

        target = task_dir / source.name
        shutil.move(str(source), str(target))
        logger.debug(f"Moved recording {source} to {target}")
        return target

    def _notify_failure(
        self, recipients: List[str], access_code: str, stage: str, error: BaseException, task_id: Optional[str]
    ) -> None:
        self._stage(task_id, TaskStage.DISTRIBUTING, 90.0, "Sending failure notice")
        body = (
            f"Meeting minutes could not be generated for meeting {access_code}.\n\n"
            f"Failed stage: {stage}\n"
            f"Reason: {error}\n"
        )
        self.notifier.send(recipients, FAILURE_SUBJECT, body)
        if self.task_manager is not None and task_id is not None:
            self.task_manager.record_error(task_id, f"{stage}: {error}")

    def _stage(self, task_id: Optional[str], stage: TaskStage, progress: float, message: str) -> None:
        if self.task_manager is None or task_id is None:
            return
        self.task_manager.update_stage(task_id, stage)
        self.task_manager.update_progress(task_id, progress, message)

