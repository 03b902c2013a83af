"""
Split a meeting recording into speaker-attributed segments.

The segmenter normalizes the recording to 16 kHz mono 16-bit PCM, asks the
boundary detector where the speaker changes, and matches every interval
against the enrolled voiceprints. The result is a ``SegmentCollection`` that
covers the whole recording without gaps or overlaps.
"""

import logging
from typing import Iterable, List

from ..collaborators import BoundaryDetector, SpeakerMatcher
from ..models import AudioSegment, SegmentCollection, Voiceprint
from .utils import AudioSource, PcmAudio, normalize_recording

logger = logging.getLogger(__name__)


def sanitize_boundaries(boundaries: Iterable[int], duration_ms: int) -> List[int]:
    """
    Force a boundary list into a strictly increasing cover of ``[0, duration_ms]``.

    Offsets outside ``(0, duration_ms)`` and duplicates are dropped; 0 and
    ``duration_ms`` are always present.
    """
    inner = sorted({int(b) for b in boundaries if 0 < int(b) < duration_ms})
    return [0] + inner + [duration_ms]


class AudioSegmenter:
    """Produce time-ordered, non-overlapping speaker segments from a recording."""

    def __init__(
        self,
        detector: BoundaryDetector,
        matcher: SpeakerMatcher,
        acceptance_threshold: float = 0.5,
        min_window_ms: int = 1000,
    ):
        """
        Args:
            detector: Speaker-change detection capability
            matcher: Speaker identification capability
            acceptance_threshold: Lowest confidence at which a match is attached
            min_window_ms: Shortest interval the detector and matcher are run on
        """
        self.detector = detector
        self.matcher = matcher
        self.acceptance_threshold = acceptance_threshold
        self.min_window_ms = min_window_ms

    def split(self, recording: AudioSource, voiceprints: Iterable[Voiceprint] = ()) -> SegmentCollection:
        """
        Split a recording into segments.

        Args:
            recording: Path, WAV bytes or binary file object of the recording
            voiceprints: Enrolled voiceprints to match speakers against

        Returns:
            SegmentCollection ordered by start offset

        Raises:
            InvalidRecordingError: If the recording is empty or cannot be decoded
        """
        audio = normalize_recording(recording)
        voiceprints = list(voiceprints)
        duration = audio.duration_ms

        if duration == 0 or duration < self.min_window_ms:
            # Any recording with samples spans at least one millisecond
            end = max(1, duration)
            logger.info(f"Recording of {duration} ms is below the analysis window, using a single segment")
            return SegmentCollection([AudioSegment(0, end, source=audio)])

        boundaries = self._detect(audio)
        segments = SegmentCollection()
        for start, end in zip(boundaries, boundaries[1:]):
            segments.add(self._match(AudioSegment(start, end, source=audio), voiceprints))

        identified = sum(1 for s in segments if s.identified)
        logger.info(f"Split {duration} ms recording into {len(segments)} segment(s), {identified} identified")
        return segments

    def _detect(self, audio: PcmAudio) -> List[int]:
        duration = audio.duration_ms
        try:
            raw = list(self.detector.detect_boundaries(audio))
        except Exception as e:
            logger.warning(f"Boundary detection failed, treating recording as one segment: {e}")
            return [0, duration]

        boundaries = sanitize_boundaries(raw, duration)
        if raw != boundaries:
            logger.warning(f"Boundary detector returned {raw!r}, using {boundaries!r}")
        return boundaries

    def _match(self, segment: AudioSegment, voiceprints: List[Voiceprint]) -> AudioSegment:
        """Attach the best match above the acceptance threshold to the segment."""
        if not voiceprints or segment.duration_ms < self.min_window_ms:
            return segment

        try:
            user, confidence = self.matcher.identify(segment.pcm(), voiceprints)
        except Exception as e:
            logger.warning(f"Speaker matching failed for {segment!r}: {e}")
            return segment

        if user is not None and confidence >= self.acceptance_threshold:
            segment.speaker = user
            segment.confidence = confidence
        return segment
