"""
Interfaces for the external collaborators used by the meeting workflow.

Every vendor integration (mailbox, conferencing dial-in, recording storage,
attendee lookup, recognition services, outgoing mail) implements one of these
abstract base classes. The core only depends on the interfaces.

Two thin adapters are provided here: ``HttpRecorder`` downloads recordings over
HTTP and ``SmtpNotifier`` sends plain-text mail.
"""

import logging
import re
import smtplib
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path
from typing import BinaryIO, Iterable, List, Optional, Sequence, Set, Tuple

import requests
from requests.exceptions import RequestException

from .errors import DownloadError, NotificationError
from .models import User, Voiceprint

logger = logging.getLogger(__name__)

ACCESS_CODE_PATTERN = re.compile(r"^\d{9,10}$")


@dataclass(frozen=True)
class Invitation:
    """A pending meeting invitation read from the bot's inbox."""

    access_code: str
    start_time: Optional[datetime]
    message_id: Optional[str] = None

    def is_valid(self) -> bool:
        return bool(self.access_code and ACCESS_CODE_PATTERN.match(self.access_code)) and self.start_time is not None


class InvitationSource(ABC):
    """Inbox that yields meeting invitations."""

    @abstractmethod
    def fetch(self) -> Optional[Invitation]:
        """Return the oldest pending invitation, or None."""
        ...

    @abstractmethod
    def delete(self, invitation: Invitation) -> None:
        """Remove a consumed invitation from the inbox."""
        ...


class Dialer(ABC):
    """Places the bot into a conference call."""

    @abstractmethod
    def dial(self, access_code: str) -> str:
        """
        Join the meeting and record it until it ends.

        Returns:
            Recording identifier

        Raises:
            DialError: If the access code is invalid or the call cannot connect
        """
        ...


class Recorder(ABC):
    """Fetches finished call recordings."""

    @abstractmethod
    def download(self, recording_id: str) -> Path:
        """Return a local path to the mono PCM WAV recording."""
        ...


class AttendeeDirectory(ABC):
    """Looks up who was invited to a meeting."""

    @abstractmethod
    def attendees_of(self, access_code: str) -> Set[User]:
        ...


class SpeechRecognizer(ABC):
    """Speech-to-text capability."""

    @abstractmethod
    def recognize(self, stream: BinaryIO) -> str:
        """Transcribe 16 kHz mono 16-bit PCM; may return an empty string."""
        ...


class BoundaryDetector(ABC):
    """Speaker-change detection capability."""

    @abstractmethod
    def detect_boundaries(self, audio) -> List[int]:
        """
        Return speaker-change offsets in milliseconds.

        The list should start at 0, end at the recording duration and be
        strictly increasing.
        """
        ...


class SpeakerMatcher(ABC):
    """Voice enrollment and identification capability."""

    @abstractmethod
    def enroll_profile(self, sample: bytes, profile_id: Optional[str] = None) -> str:
        """
        Enroll a WAV voice sample.

        Args:
            sample: WAV bytes including the RIFF header
            profile_id: Existing profile to replace; a new one is created when None

        Returns:
            Profile handle
        """
        ...

    @abstractmethod
    def identify(self, audio: bytes, voiceprints: Sequence[Voiceprint]) -> Tuple[Optional[User], float]:
        """Return the best-matching user for the PCM interval and the match confidence."""
        ...


class Notifier(ABC):
    """Outgoing mail."""

    @abstractmethod
    def send(self, recipients: Iterable[str], subject: str, body: str) -> None:
        """
        Raises:
            NotificationError: If the message could not be delivered
        """
        ...


class HttpRecorder(Recorder):
    """Downloads recordings from ``<base_url>/<recording_id>`` into a local directory."""

    def __init__(self, base_url: str, download_dir: Optional[str] = None, timeout: float = 300.0):
        self.base_url = base_url.rstrip("/")
        self.download_dir = Path(download_dir or tempfile.gettempdir())
        self.timeout = timeout
        self.session = requests.Session()

    def download(self, recording_id: str) -> Path:
        target = self.download_dir / f"{recording_id}.wav"
        self.download_dir.mkdir(parents=True, exist_ok=True)

        try:
            with self.session.get(f"{self.base_url}/{recording_id}", stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                with open(target, "wb") as f:
                    for chunk in response.iter_content(chunk_size=64 * 1024):
                        f.write(chunk)
        except RequestException as e:
            raise DownloadError(f"Failed to download recording {recording_id}: {e}") from e

        logger.info(f"Downloaded recording {recording_id} to {target}")
        return target


class SmtpNotifier(Notifier):
    """Sends plain-text mail through an SMTP relay."""

    def __init__(self, host: str, port: int, sender: str, user: str = "", password: str = "", timeout: float = 30.0):
        self.host = host
        self.port = port
        self.sender = sender
        self.user = user
        self.password = password
        self.timeout = timeout

    def send(self, recipients: Iterable[str], subject: str, body: str) -> None:
        recipients = sorted(set(recipients))
        if not recipients:
            raise NotificationError(f"No recipients for '{subject}'")

        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = ", ".join(recipients)
        message["Subject"] = subject
        message.set_content(body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.user:
                    smtp.starttls()
                    smtp.login(self.user, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Failed to send '{subject}': {e}") from e

        logger.info(f"Sent '{subject}' to {len(recipients)} recipient(s)")
