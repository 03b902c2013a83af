"""
Invitation listener: the fixed-delay polling loop that discovers meetings.

Every poll reads at most one invitation from the bot's inbox. Valid
invitations are turned into scheduled meeting workflows; invalid ones are
deleted. Attendees without a voiceprint are asked to enroll so the bot can
attribute their speech.
"""

import logging
import threading
from typing import Callable, Optional, Set

from ..audio.voiceprints import VoiceprintRegistry
from ..collaborators import AttendeeDirectory, InvitationSource, Notifier
from ..config import BotConfig
from ..errors import NotificationError
from ..models import User
from .scheduler import TaskHandle, WorkflowScheduler
from .workflow import resolve_recipients

logger = logging.getLogger(__name__)

ENROLLMENT_SUBJECT = "Register your voice for meeting minutes"


class InvitationListener:
    """Polls for invitations and schedules one workflow per meeting."""

    def __init__(
        self,
        config: BotConfig,
        source: InvitationSource,
        directory: AttendeeDirectory,
        registry: VoiceprintRegistry,
        notifier: Notifier,
        scheduler: WorkflowScheduler,
        workflow: Callable[[str], bool],
    ):
        self.config = config
        self.source = source
        self.directory = directory
        self.registry = registry
        self.notifier = notifier
        self.scheduler = scheduler
        self.workflow = workflow

        self.is_running = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll_once(self) -> Optional[TaskHandle]:
        """
        Process at most one pending invitation.

        Returns:
            Handle of the scheduled meeting, or None if nothing was scheduled
        """
        invitation = self.source.fetch()
        if invitation is None:
            return None

        if not invitation.is_valid():
            logger.warning(f"Not a valid meeting invitation ({invitation.access_code!r}), deleting it")
            self.source.delete(invitation)
            return None

        logger.info(f"New meeting {invitation.access_code} found at {invitation.start_time.astimezone().isoformat()}")

        try:
            attendees = set(self.directory.attendees_of(invitation.access_code))
        except Exception as e:
            logger.error(f"Attendee lookup failed for {invitation.access_code}: {e}")
            attendees = set()
        self._request_enrollment(attendees)

        handle = self.scheduler.schedule(
            self.workflow,
            invitation.start_time,
            args=(invitation.access_code,),
            name=f"meeting-{invitation.access_code}",
        )
        self.source.delete(invitation)
        return handle

    def _request_enrollment(self, attendees: Set[User]) -> None:
        """Ask every attendee without a voiceprint to register one."""
        for user in sorted(self.registry.unregistered(attendees), key=lambda u: u.email):
            body = (
                f"Hello {user.name},\n\n"
                "You have been invited to a meeting whose minutes are recorded automatically.\n"
                "To be named in the minutes, record a short voice sample at:\n\n"
                f"{self.config.registration_url}?email={user.email}\n"
            )
            recipients = resolve_recipients(self.config, {user})
            try:
                self.notifier.send(recipients, ENROLLMENT_SUBJECT, body)
            except NotificationError as e:
                logger.warning(f"Could not send enrollment request to {user}: {e}")

    def run(self) -> None:
        """Poll until ``stop()`` is called, waiting ``poll_interval`` seconds between polls."""
        logger.info("Listening for meeting invitations")
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception as e:
                logger.exception(f"Error while polling for invitations: {e}")
            self._stop.wait(self.config.poll_interval)
        logger.info("Invitation listener stopped")

    def start(self) -> None:
        """Run the polling loop on a background thread."""
        if self.is_running:
            logger.warning("Invitation listener is already running")
            return

        self.is_running = True
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="invitation-listener", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        if not self.is_running:
            return

        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        self.is_running = False
