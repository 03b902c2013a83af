"""
Audio processing for meeting minutes.

This package turns a meeting recording into an ordered, speaker-attributed
transcript: voice enrollment, segmentation by speaker and per-segment
speech-to-text.

Main components:
- VoiceprintRegistry: Enrolled voice references per participant
- AudioSegmenter: Split a recording into speaker-attributed segments
- TranscriptionPipeline: Transcribe segments and render the minutes
- PyannoteDiarizer / PyannoteSpeakerMatcher: pyannote.audio capabilities
- AudioTranscriber: Speech-to-text using Whisper with hallucination filtering

Example usage:
    from minutes_bot.audio import AudioSegmenter, TranscriptionPipeline

    segments = AudioSegmenter(diarizer, matcher).split("meeting.wav", lookup.enrolled)
    pipeline = TranscriptionPipeline(AudioTranscriber("base"))
    if pipeline.perform(segments):
        print(pipeline.render())
"""

from .diarization import PyannoteDiarizer, PyannoteSpeakerMatcher, boundaries_from_turns
from .pipeline import TranscriptionPipeline, render_entries
from .segmenter import AudioSegmenter, sanitize_boundaries
from .transcription import AudioTranscriber
from .utils import PcmAudio, format_timestamp, get_audio_level, normalize_recording, pcm_to_wav_bytes
from .voiceprints import RegistryLookup, VoiceprintRegistry

__all__ = [
    "AudioSegmenter",
    "AudioTranscriber",
    "PcmAudio",
    "PyannoteDiarizer",
    "PyannoteSpeakerMatcher",
    "RegistryLookup",
    "TranscriptionPipeline",
    "VoiceprintRegistry",
    "boundaries_from_turns",
    "format_timestamp",
    "get_audio_level",
    "normalize_recording",
    "pcm_to_wav_bytes",
    "render_entries",
    "sanitize_boundaries",
]
