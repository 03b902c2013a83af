"""Shared fixtures and in-memory collaborators for the minutes bot tests.

Provides:
- WAV generation helpers (sine tones, silence, arbitrary rate/channels)
- Fake recognition capabilities (recognizer, boundary detector, speaker matcher)
- Fake vendor integrations (dialer, recorder, attendee directory, inbox, mail)
"""

import io
import threading
import time
import wave
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pytest

from minutes_bot.audio.utils import PcmAudio
from minutes_bot.collaborators import (
    AttendeeDirectory,
    BoundaryDetector,
    Dialer,
    Invitation,
    InvitationSource,
    Notifier,
    Recorder,
    SpeakerMatcher,
    SpeechRecognizer,
)
from minutes_bot.config import BotConfig
from minutes_bot.errors import NotificationError
from minutes_bot.models import AudioSegment, User, Voiceprint


# ── Audio helpers ────────────────────────────────────────────────────────────


def make_wav(
    duration_ms: int,
    rate: int = 16000,
    channels: int = 1,
    amplitude: float = 0.5,
    frequency: float = 440.0,
) -> bytes:
    """Return a 16-bit PCM WAV file holding a sine tone (or silence when amplitude is 0)."""
    frames = rate * duration_ms // 1000
    t = np.arange(frames) / rate
    tone = amplitude * np.sin(2 * np.pi * frequency * t)
    samples = (np.repeat(tone[:, None], channels, axis=1) * 32767).astype("<i2")

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(rate)
        wf.writeframes(samples.tobytes())
    return buffer.getvalue()


def indexed_segments(count: int, speakers: Optional[Sequence[Optional[User]]] = None) -> List[AudioSegment]:
    """
    One-second segments whose samples all hold the segment's 1-based index.

    ``segment_index`` recovers the index from a segment's audio stream.
    """
    data = b"".join(np.full(16000, i + 1, dtype="<i2").tobytes() for i in range(count))
    source = PcmAudio(data)
    speakers = list(speakers or [None] * count)
    return [AudioSegment(i * 1000, (i + 1) * 1000, source=source, speaker=speakers[i]) for i in range(count)]


def segment_index(data: bytes) -> int:
    return int(np.frombuffer(data[:2], dtype="<i2")[0]) - 1


# ── Recognition fakes ────────────────────────────────────────────────────────


class ScriptedRecognizer(SpeechRecognizer):
    """
    Recognizer driven by the segment index encoded in the audio.

    ``script`` maps an index to the text to return or an exception to raise;
    ``delays`` maps an index to seconds to sleep first.
    """

    def __init__(self, script: Optional[Dict[int, object]] = None, delays: Optional[Dict[int, float]] = None):
        self.script = script or {}
        self.delays = delays or {}
        self.calls: List[int] = []
        self._lock = threading.Lock()

    def recognize(self, stream) -> str:
        index = segment_index(stream.read())
        with self._lock:
            self.calls.append(index)
        time.sleep(self.delays.get(index, 0))
        outcome = self.script.get(index, f"segment {index}")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class ConstantRecognizer(SpeechRecognizer):
    def __init__(self, text: str = "hello", error: Optional[Exception] = None):
        self.text = text
        self.error = error

    def recognize(self, stream) -> str:
        if self.error:
            raise self.error
        return self.text


class FakeDetector(BoundaryDetector):
    def __init__(self, boundaries: Optional[List[int]] = None, error: Optional[Exception] = None):
        self.boundaries = boundaries
        self.error = error
        self.calls = 0

    def detect_boundaries(self, audio: PcmAudio) -> List[int]:
        self.calls += 1
        if self.error:
            raise self.error
        if self.boundaries is None:
            return [0, audio.duration_ms]
        return list(self.boundaries)


class FakeMatcher(SpeakerMatcher):
    """
    Speaker matcher returning scripted identities in call order.

    Each identity is a ``(user_or_email, confidence)`` pair; an email is
    resolved against the voiceprints passed to ``identify``.
    """

    def __init__(self, identities: Optional[List[Tuple[Optional[str], float]]] = None, fail_enroll: bool = False):
        self.identities = list(identities or [])
        self.fail_enroll = fail_enroll
        self.profiles: Dict[str, bytes] = {}
        self.enroll_calls: List[Optional[str]] = []
        self.identify_calls = 0
        self._lock = threading.Lock()

    def enroll_profile(self, sample: bytes, profile_id: Optional[str] = None) -> str:
        with self._lock:
            self.enroll_calls.append(profile_id)
            if self.fail_enroll:
                raise RuntimeError("speaker service unavailable")
            profile_id = profile_id or f"profile-{len(self.profiles) + 1}"
            self.profiles[profile_id] = sample
            return profile_id

    def identify(self, audio: bytes, voiceprints: Sequence[Voiceprint]) -> Tuple[Optional[User], float]:
        self.identify_calls += 1
        if not self.identities:
            return None, 0.0
        email, confidence = self.identities.pop(0)
        by_email = {vp.user.email: vp.user for vp in voiceprints}
        return by_email.get(email), confidence


# ── Integration fakes ────────────────────────────────────────────────────────


class FakeDialer(Dialer):
    def __init__(self, recording_id: str = "rec-1", error: Optional[Exception] = None, delay: float = 0.0):
        self.recording_id = recording_id
        self.error = error
        self.delay = delay
        self.dialed: List[str] = []

    def dial(self, access_code: str) -> str:
        self.dialed.append(access_code)
        time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.recording_id


class FakeRecorder(Recorder):
    def __init__(self, path: Path, error: Optional[Exception] = None):
        self.path = path
        self.error = error
        self.downloaded: List[str] = []

    def download(self, recording_id: str) -> Path:
        self.downloaded.append(recording_id)
        if self.error:
            raise self.error
        return self.path


class FakeDirectory(AttendeeDirectory):
    def __init__(self, attendees: Iterable[User] = (), error: Optional[Exception] = None):
        self.attendees = set(attendees)
        self.error = error

    def attendees_of(self, access_code: str):
        if self.error:
            raise self.error
        return set(self.attendees)


class FakeInvitationSource(InvitationSource):
    def __init__(self, invitations: Iterable[Invitation] = ()):
        self.invitations = list(invitations)
        self.deleted: List[Invitation] = []

    def fetch(self) -> Optional[Invitation]:
        return self.invitations[0] if self.invitations else None

    def delete(self, invitation: Invitation) -> None:
        self.invitations.remove(invitation)
        self.deleted.append(invitation)


class FakeNotifier(Notifier):
    """Records every message instead of sending it."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Tuple[List[str], str, str]] = []

    def send(self, recipients: Iterable[str], subject: str, body: str) -> None:
        if self.fail:
            raise NotificationError("mail relay down")
        self.sent.append((sorted(recipients), subject, body))


class FakeScheduler:
    """Captures schedule() calls without starting threads."""

    def __init__(self):
        self.scheduled: List[Dict[str, object]] = []

    def schedule(self, workflow: Callable, trigger_time, args=(), kwargs=None, name=None):
        entry = {"workflow": workflow, "trigger_time": trigger_time, "args": args, "kwargs": kwargs, "name": name}
        self.scheduled.append(entry)
        return entry


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def alice() -> User:
    return User("Alice", "alice@corp.com", 1)


@pytest.fixture
def bob() -> User:
    return User("Bob", "bob@corp.com", 2)


@pytest.fixture
def config(tmp_path) -> BotConfig:
    return BotConfig(
        bot_email="bot@corp.com",
        release=True,
        registration_url="https://minutes.corp.com/enroll",
        poll_interval=0.01,
        tasks_dir=str(tmp_path / "tasks"),
        min_enrollment_ms=1000,
        min_window_ms=1000,
        segment_timeout=5.0,
        download_timeout=5.0,
        dial_timeout=5.0,
    )


@pytest.fixture
def voice_sample() -> bytes:
    return make_wav(2000, frequency=220.0)


@pytest.fixture
def recording_path(tmp_path) -> Path:
    path = tmp_path / "recording.wav"
    path.write_bytes(make_wav(3000))
    return path
