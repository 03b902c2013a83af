"""Tests for splitting recordings into speaker-attributed segments."""

import pytest

from conftest import FakeDetector, FakeMatcher, make_wav
from minutes_bot.audio.segmenter import AudioSegmenter
from minutes_bot.audio.utils import pcm_to_wav_bytes
from minutes_bot.errors import InvalidRecordingError
from minutes_bot.models import AudioSegment, SegmentCollection, Voiceprint


@pytest.fixture
def voiceprints(alice, bob):
    return [Voiceprint(alice, "profile-a"), Voiceprint(bob, "profile-b")]


def assert_covers(segments, duration_ms):
    """Segments are ordered, contiguous and span the whole recording."""
    offsets = [(s.start_offset, s.end_offset) for s in segments]
    assert offsets[0][0] == 0
    assert offsets[-1][1] == duration_ms
    for (_, end), (start, _) in zip(offsets, offsets[1:]):
        assert end == start


class TestSplit:
    def test_two_minute_meeting_with_three_turns(self, alice, bob, voiceprints):
        detector = FakeDetector([0, 30000, 74000, 120000])
        matcher = FakeMatcher([(alice.email, 0.91), (bob.email, 0.3), (bob.email, 0.82)])
        segmenter = AudioSegmenter(detector, matcher, acceptance_threshold=0.5)

        segments = segmenter.split(make_wav(120000), voiceprints)

        assert [(s.start_offset, s.end_offset) for s in segments] == [(0, 30000), (30000, 74000), (74000, 120000)]
        assert [s.speaker for s in segments] == [alice, None, bob]
        assert segments[0].confidence == pytest.approx(0.91)
        assert segments[1].confidence == 0.0

    def test_segments_cover_recording(self, voiceprints):
        segmenter = AudioSegmenter(FakeDetector([0, 1200, 2500, 2600, 4000]), FakeMatcher())

        segments = segmenter.split(make_wav(4000), voiceprints)

        assert len(segments) == 4
        assert_covers(segments, 4000)

    def test_segment_audio_matches_range(self, voiceprints):
        segmenter = AudioSegmenter(FakeDetector([0, 1500, 3000]), FakeMatcher())

        segments = segmenter.split(make_wav(3000), voiceprints)

        assert len(segments[0].pcm()) == 1500 * 16 * 2
        assert len(segments[1].stream.read()) == 1500 * 16 * 2

    def test_short_recording_is_single_unidentified_segment(self, alice, voiceprints):
        detector = FakeDetector()
        matcher = FakeMatcher([(alice.email, 0.99)])
        segmenter = AudioSegmenter(detector, matcher, min_window_ms=1000)

        segments = segmenter.split(make_wav(600), voiceprints)

        assert len(segments) == 1
        assert (segments[0].start_offset, segments[0].end_offset) == (0, 600)
        assert segments[0].speaker is None
        assert detector.calls == 0
        assert matcher.identify_calls == 0

    def test_sub_millisecond_recording_is_one_millisecond_segment(self, voiceprints):
        detector = FakeDetector()
        segmenter = AudioSegmenter(detector, FakeMatcher())

        segments = segmenter.split(pcm_to_wav_bytes(b"\x01\x00" * 10), voiceprints)

        assert len(segments) == 1
        assert (segments[0].start_offset, segments[0].end_offset) == (0, 1)
        assert segments[0].speaker is None
        assert len(segments[0].pcm()) == 20
        assert detector.calls == 0

    def test_zero_length_recording_fails(self, voiceprints):
        segmenter = AudioSegmenter(FakeDetector(), FakeMatcher())

        with pytest.raises(InvalidRecordingError):
            segmenter.split(make_wav(0), voiceprints)

    def test_detector_failure_falls_back_to_one_segment(self, alice, voiceprints):
        segmenter = AudioSegmenter(FakeDetector(error=RuntimeError("model crashed")), FakeMatcher([(alice.email, 0.8)]))

        segments = segmenter.split(make_wav(3000), voiceprints)

        assert len(segments) == 1
        assert segments[0].speaker == alice
        assert_covers(segments, 3000)

    def test_malformed_boundaries_are_sanitized(self, voiceprints):
        segmenter = AudioSegmenter(FakeDetector([2000, 500, 500, 9999]), FakeMatcher())

        segments = segmenter.split(make_wav(3000), voiceprints)

        assert [(s.start_offset, s.end_offset) for s in segments] == [(0, 500), (500, 2000), (2000, 3000)]

    def test_short_intervals_are_not_matched(self, alice, voiceprints):
        matcher = FakeMatcher([(alice.email, 0.9), (alice.email, 0.9)])
        segmenter = AudioSegmenter(FakeDetector([0, 500, 3000]), matcher, min_window_ms=1000)

        segments = segmenter.split(make_wav(3000), voiceprints)

        assert segments[0].speaker is None
        assert segments[1].speaker == alice
        assert matcher.identify_calls == 1

    def test_without_voiceprints_all_unknown(self):
        matcher = FakeMatcher()
        segmenter = AudioSegmenter(FakeDetector([0, 1500, 3000]), matcher)

        segments = segmenter.split(make_wav(3000), [])

        assert all(not s.identified for s in segments)
        assert matcher.identify_calls == 0


class TestSegmentCollection:
    def test_iterates_in_start_order(self):
        collection = SegmentCollection()
        for start in (2000, 0, 1000):
            collection.add(AudioSegment(start, start + 1000))

        assert [s.start_offset for s in collection] == [0, 1000, 2000]

    def test_rejects_overlap(self):
        collection = SegmentCollection([AudioSegment(0, 1000)])

        with pytest.raises(ValueError):
            collection.add(AudioSegment(500, 1500))

    def test_released_segment_has_no_audio(self):
        segment = AudioSegment(0, 1000)

        segment.release()
        with pytest.raises(ValueError):
            segment.pcm()

    def test_invalid_range(self):
        with pytest.raises(ValueError):
            AudioSegment(1000, 1000)
