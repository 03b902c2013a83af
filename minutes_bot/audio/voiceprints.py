"""
Voiceprint registry: enrolled voice references per meeting participant.

The registry owns the mapping from ``User`` to ``Voiceprint`` for the lifetime
of the bot process. Enrollment delegates to a ``SpeakerMatcher`` which creates
the remote profile; the registry guarantees at most one profile per user and
re-uses it when a user enrolls again.

Key features:
- Sample validation (minimum length, silence detection) before any remote call
- Idempotent enrollment by user identity
- Parallel, fail-partial enrollment of staged samples in ``build_for``
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from ..collaborators import SpeakerMatcher
from ..errors import EnrollmentError, InvalidRecordingError
from ..models import User, Voiceprint
from .utils import get_audio_level, normalize_recording

logger = logging.getLogger(__name__)


@dataclass
class RegistryLookup:
    """Result of ``VoiceprintRegistry.build_for``."""

    voiceprints: Dict[User, Optional[Voiceprint]] = field(default_factory=dict)
    errors: List[EnrollmentError] = field(default_factory=list)

    @property
    def enrolled(self) -> List[Voiceprint]:
        """Voiceprints of the users that can be identified, ordered by user name."""
        found = [vp for vp in self.voiceprints.values() if vp is not None]
        return sorted(found, key=lambda vp: (vp.user.name, vp.user.email))

    @property
    def unidentified(self) -> Set[User]:
        return {user for user, vp in self.voiceprints.items() if vp is None}

    def __getitem__(self, user: User) -> Optional[Voiceprint]:
        return self.voiceprints[user]

    def __len__(self) -> int:
        return len(self.voiceprints)


class VoiceprintRegistry:
    """Maps users to enrolled voiceprints."""

    def __init__(
        self,
        matcher: SpeakerMatcher,
        min_enrollment_ms: int = 5000,
        silence_threshold: float = 0.001,
        max_workers: int = 4,
    ):
        """
        Initialize the registry.

        Args:
            matcher: Speaker matching capability used to create profiles
            min_enrollment_ms: Shortest voice sample accepted for enrollment
            silence_threshold: Minimum RMS level of a usable sample
            max_workers: Maximum number of concurrent enrollments in ``build_for``
        """
        self.matcher = matcher
        self.min_enrollment_ms = min_enrollment_ms
        self.silence_threshold = silence_threshold
        self.max_workers = max_workers

        self._voiceprints: Dict[User, Voiceprint] = {}
        self._profile_ids: Dict[User, str] = {}
        self._pending: Dict[User, bytes] = {}
        self._user_locks: Dict[User, threading.Lock] = {}
        self._lock = threading.Lock()

    def enroll(self, user: User, sample: bytes) -> Voiceprint:
        """
        Enroll a voice sample for a user.

        Enrolling the same user again replaces the reference on the user's
        existing profile; no second profile is created.

        Args:
            user: Participant to enroll
            sample: WAV bytes of the user speaking

        Returns:
            The new voiceprint

        Raises:
            EnrollmentError: If the sample is unusable or the remote enrollment fails
        """
        wav = self._validate_sample(user, sample)

        with self._lock_for(user):
            existing_profile = self._profile_ids.get(user)
            try:
                profile_id = self.matcher.enroll_profile(wav, profile_id=existing_profile)
            except EnrollmentError as e:
                raise EnrollmentError(str(e), user=user) from e
            except Exception as e:
                raise EnrollmentError(f"Enrollment failed for {user}: {e}", user=user) from e

            voiceprint = Voiceprint(user=user, profile_id=profile_id, sample=sample)
            with self._lock:
                self._profile_ids[user] = profile_id
                self._voiceprints[user] = voiceprint

        action = "Re-enrolled" if existing_profile else "Enrolled"
        logger.info(f"{action} {user} with profile {profile_id}")
        return voiceprint

    def add_sample(self, user: User, sample: bytes) -> None:
        """Stage a voice sample to be enrolled by the next ``build_for`` call."""
        with self._lock:
            self._pending[user] = sample

    def get(self, user: User) -> Optional[Voiceprint]:
        with self._lock:
            return self._voiceprints.get(user)

    def unregistered(self, users: Iterable[User]) -> Set[User]:
        """Users with neither a voiceprint nor a staged sample."""
        with self._lock:
            return {u for u in users if u not in self._voiceprints and u not in self._pending}

    def build_for(self, users: Iterable[User]) -> RegistryLookup:
        """
        Resolve voiceprints for a set of meeting participants.

        Users with a staged sample are enrolled concurrently. A failed
        enrollment is recorded in ``errors`` and leaves that user without a
        voiceprint for this lookup; the remaining users are unaffected. Users that were never
        registered map to None.

        Args:
            users: Invited participants

        Returns:
            RegistryLookup with one entry per user
        """
        users = set(users)
        lookup = RegistryLookup()

        with self._lock:
            to_enroll = {u: self._pending.pop(u) for u in users if u in self._pending}
            for user in users:
                lookup.voiceprints[user] = self._voiceprints.get(user)

        if to_enroll:
            logger.info(f"Enrolling {len(to_enroll)} staged voice sample(s)")
            workers = max(1, min(self.max_workers, len(to_enroll)))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="enroll") as executor:
                futures = {executor.submit(self.enroll, user, sample): user for user, sample in to_enroll.items()}
                for future in as_completed(futures):
                    user = futures[future]
                    try:
                        lookup.voiceprints[user] = future.result()
                    except EnrollmentError as e:
                        logger.warning(f"Enrollment failed for {user}, speaker will be unidentified: {e}")
                        lookup.errors.append(e)
                        lookup.voiceprints[user] = None

        missing = len(lookup.unidentified)
        if missing:
            logger.info(f"{missing} of {len(users)} participant(s) have no voiceprint")
        return lookup

    def _validate_sample(self, user: User, sample: bytes) -> bytes:
        """Return the sample as canonical WAV bytes, or raise EnrollmentError."""
        try:
            pcm = normalize_recording(sample)
        except InvalidRecordingError as e:
            raise EnrollmentError(f"Unreadable voice sample for {user}: {e}", user=user) from e

        if pcm.duration_ms < self.min_enrollment_ms:
            raise EnrollmentError(
                f"Voice sample for {user} is too short ({pcm.duration_ms} ms < {self.min_enrollment_ms} ms)",
                user=user,
            )

        if get_audio_level(pcm.to_float()) < self.silence_threshold:
            raise EnrollmentError(f"Voice sample for {user} is silent", user=user)

        return pcm.to_wav_bytes()

    def _lock_for(self, user: User) -> threading.Lock:
        with self._lock:
            return self._user_locks.setdefault(user, threading.Lock())

    def __contains__(self, user: User) -> bool:
        return self.get(user) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._voiceprints)
