"""
Data models shared by the registry, segmenter, transcription pipeline and workflow.

All offsets are integer milliseconds from the first sample of the recording.
"""

import bisect
import io
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterator, List, Optional, Tuple, Union

if TYPE_CHECKING:
    from .audio.utils import PcmAudio

UNKNOWN_SPEAKER = "Unknown Speaker"
UNAVAILABLE_TEXT = "[transcription unavailable]"


@dataclass(frozen=True)
class User:
    """A meeting participant."""

    name: str
    email: str
    user_id: Optional[Union[int, str]] = None

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"


@dataclass(frozen=True)
class Voiceprint:
    """An enrolled voice reference for one user."""

    user: User
    profile_id: str
    sample: bytes = field(default=b"", repr=False, compare=False)


class AudioSegment:
    """
    A contiguous slice ``[start_offset, end_offset)`` of a recording.

    The audio stream is opened lazily from the shared source buffer the first
    time it is requested. Comparison and hashing use ``start_offset`` only.
    """

    def __init__(
        self,
        start_offset: int,
        end_offset: int,
        source: Optional["PcmAudio"] = None,
        speaker: Optional[User] = None,
        confidence: float = 0.0,
    ):
        if start_offset < 0 or end_offset <= start_offset:
            raise ValueError(f"Invalid segment range [{start_offset}, {end_offset})")

        self.start_offset = start_offset
        self.end_offset = end_offset
        self.speaker = speaker
        self.confidence = confidence
        self._source = source
        self._stream: Optional[io.BytesIO] = None

    @property
    def duration_ms(self) -> int:
        return self.end_offset - self.start_offset

    @property
    def identified(self) -> bool:
        return self.speaker is not None

    @property
    def stream(self) -> io.BytesIO:
        """Raw PCM stream for this segment's range, opened on first access."""
        if self._stream is None:
            self._stream = io.BytesIO(self.pcm())
        return self._stream

    def pcm(self) -> bytes:
        """Return the headerless PCM bytes for this segment."""
        if self._source is None:
            raise ValueError("Segment audio has been released")
        return self._source.slice(self.start_offset, self.end_offset)

    def release(self) -> None:
        """Close the stream and drop the reference to the source recording."""
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        self._source = None

    def overlaps(self, other: "AudioSegment") -> bool:
        return self.start_offset < other.end_offset and other.start_offset < self.end_offset

    def __lt__(self, other: "AudioSegment") -> bool:
        return self.start_offset < other.start_offset

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AudioSegment):
            return NotImplemented
        return self.start_offset == other.start_offset

    def __hash__(self) -> int:
        return hash(self.start_offset)

    def __repr__(self) -> str:
        speaker = self.speaker.name if self.speaker else None
        return f"AudioSegment([{self.start_offset}, {self.end_offset}), speaker={speaker!r})"


class SegmentCollection:
    """
    Segments of one recording, iterated in ascending start offset.

    Segments live in an append-only arena; a separate index of
    ``(start_offset, arena_position)`` pairs is kept sorted on insert.
    """

    def __init__(self, segments: Optional[List[AudioSegment]] = None):
        self._arena: List[AudioSegment] = []
        self._index: List[Tuple[int, int]] = []
        for segment in segments or []:
            self.add(segment)

    def add(self, segment: AudioSegment) -> None:
        """
        Insert a segment.

        Raises:
            ValueError: If the segment overlaps one already in the collection
        """
        position = bisect.bisect_left(self._index, (segment.start_offset, -1))
        for neighbour in (position - 1, position):
            if 0 <= neighbour < len(self._index):
                existing = self._arena[self._index[neighbour][1]]
                if existing.overlaps(segment):
                    raise ValueError(f"{segment!r} overlaps {existing!r}")

        self._arena.append(segment)
        self._index.insert(position, (segment.start_offset, len(self._arena) - 1))

    def release(self) -> None:
        for segment in self._arena:
            segment.release()

    def __iter__(self) -> Iterator[AudioSegment]:
        return (self._arena[position] for _, position in self._index)

    def __len__(self) -> int:
        return len(self._index)

    def __getitem__(self, item: int) -> AudioSegment:
        return self._arena[self._index[item][1]]

    def __repr__(self) -> str:
        return f"SegmentCollection({list(self)!r})"


@dataclass(frozen=True)
class TranscriptEntry:
    """One transcribed segment of the minutes."""

    start_offset: int
    end_offset: int
    text: str
    speaker: Optional[User] = None
    available: bool = True

    @property
    def speaker_label(self) -> str:
        return self.speaker.name if self.speaker else UNKNOWN_SPEAKER

    @classmethod
    def unavailable(cls, segment: AudioSegment) -> "TranscriptEntry":
        """Placeholder for a segment whose transcription failed."""
        return cls(
            start_offset=segment.start_offset,
            end_offset=segment.end_offset,
            text=UNAVAILABLE_TEXT,
            speaker=segment.speaker,
            available=False,
        )
