"""
Transcription pipeline: speaker segments in, ordered minutes out.

Segments are transcribed concurrently and independently. Whatever order they
finish in, the entries are sorted by start offset before rendering. A failed or
timed-out segment is replaced by a placeholder entry so one bad slice of audio
never discards the rest of the meeting.
"""

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Dict, Iterable, List, Union

from ..collaborators import SpeechRecognizer
from ..errors import SegmentError
from ..models import AudioSegment, TranscriptEntry
from .utils import format_timestamp

logger = logging.getLogger(__name__)

NO_SPEECH_TEXT = "(No speech detected)"


def render_entries(entries: Iterable[TranscriptEntry]) -> str:
    """
    Render transcript entries as a plain-text minutes document.

    Each entry becomes ``[MM:SS] [Speaker]: text``; entries are separated by a
    blank line and always appear in ascending start offset.
    """
    lines = []
    for entry in sorted(entries, key=lambda e: (e.start_offset, e.end_offset)):
        timestamp = format_timestamp(entry.start_offset / 1000)
        lines.append(f"[{timestamp}] [{entry.speaker_label}]: {entry.text}".rstrip())

    return "\n\n".join(lines) if lines else NO_SPEECH_TEXT


class TranscriptionPipeline:
    """Transcribes one meeting's segments and renders the minutes."""

    def __init__(
        self,
        recognizer: SpeechRecognizer,
        max_workers: int = 4,
        segment_timeout: float = 120.0,
        poll_interval: float = 0.05,
    ):
        """
        Args:
            recognizer: Speech-to-text capability
            max_workers: Maximum number of segments transcribed at once
            segment_timeout: Seconds a single segment may take once started
            poll_interval: How often running segments are checked for timeouts (seconds)
        """
        self.recognizer = recognizer
        self.max_workers = max_workers
        self.segment_timeout = segment_timeout
        self.poll_interval = poll_interval

        self.entries: List[TranscriptEntry] = []
        self.failures: List[SegmentError] = []

    def transcribe_segment(self, segment: AudioSegment) -> TranscriptEntry:
        """
        Transcribe a single segment.

        Silence is not an error: the entry keeps its speaker and has empty text.

        Raises:
            SegmentError: If the recognizer fails on this segment
        """
        try:
            text = self.recognizer.recognize(segment.stream)
        except SegmentError:
            raise
        except Exception as e:
            raise SegmentError(f"Transcription failed for {segment!r}: {e}", segment=segment) from e

        return TranscriptEntry(
            start_offset=segment.start_offset,
            end_offset=segment.end_offset,
            text=(text or "").strip(),
            speaker=segment.speaker,
        )

    def perform(self, segments: Iterable[AudioSegment]) -> bool:
        """
        Transcribe all segments.

        Segments are released once transcribed.

        Returns:
            False if there were no segments or every segment failed, True otherwise
        """
        segments = list(segments)
        self.entries = []
        self.failures = []

        if not segments:
            logger.warning("No segments to transcribe")
            return False

        results: Dict[int, TranscriptEntry] = {}
        started: Dict[int, float] = {}

        def run(index: int, segment: AudioSegment) -> TranscriptEntry:
            started[index] = time.monotonic()
            return self.transcribe_segment(segment)

        workers = max(1, min(self.max_workers, len(segments)))
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="transcribe")
        try:
            submitted = time.monotonic()
            futures: Dict[Future, int] = {executor.submit(run, i, s): i for i, s in enumerate(segments)}
            pending = set(futures)

            while pending:
                done, pending = wait(pending, timeout=self.poll_interval, return_when=FIRST_COMPLETED)

                for future in done:
                    index = futures[future]
                    try:
                        results[index] = future.result()
                    except SegmentError as e:
                        self._record_failure(results, index, segments[index], e)

                now = time.monotonic()
                for future in list(pending):
                    index = futures[future]
                    if not self._expired(index, started, submitted, workers, now):
                        continue
                    if index not in started and not future.cancel():
                        continue

                    pending.discard(future)
                    reason = "timed out" if index in started else "never started"
                    error = SegmentError(
                        f"Transcription of {segments[index]!r} {reason} within {self.segment_timeout:.0f}s",
                        segment=segments[index],
                    )
                    self._record_failure(results, index, segments[index], error)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            for segment in segments:
                segment.release()

        self.entries = sorted(results.values(), key=lambda e: (e.start_offset, e.end_offset))

        if len(self.failures) == len(segments):
            logger.error(f"All {len(segments)} segment(s) failed to transcribe")
            return False

        if self.failures:
            logger.warning(f"{len(self.failures)} of {len(segments)} segment(s) failed, placeholders inserted")
        else:
            logger.info(f"Transcribed {len(segments)} segment(s)")
        return True

    def _expired(self, index: int, started: Dict[int, float], submitted: float, workers: int, now: float) -> bool:
        """
        Whether a segment has run past its timeout.

        A segment that has not started yet is queued behind busy, possibly hung,
        workers. It expires once every wave of work ahead of it, plus its own,
        could have used up a full timeout.
        """
        if index in started:
            return now - started[index] > self.segment_timeout
        return now - submitted > self.segment_timeout * (index // workers + 1)

    def _record_failure(
        self, results: Dict[int, TranscriptEntry], index: int, segment: AudioSegment, error: SegmentError
    ) -> None:
        logger.warning(str(error))
        self.failures.append(error)
        results[index] = TranscriptEntry.unavailable(segment)

    def render(self) -> str:
        """Render the transcribed entries; the same entries always render identically."""
        return render_entries(self.entries)

    def write_minutes(self, path: Union[str, Path]) -> Path:
        """Write the rendered minutes to a text file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render() + "\n", encoding="utf-8")
        return path
