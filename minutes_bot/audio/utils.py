"""
Utility functions for audio processing.

This module converts meeting recordings into the canonical format used by the
rest of the pipeline (PCM/WAV mono, 16 kHz, 16 bits per sample) and provides
helpers for slicing, timestamp formatting and level measurement.

Key features:
- WAV decoding for 8/16/32-bit, mono or multi-channel input
- Resampling to 16 kHz with linear interpolation
- Header stripping: offsets are elapsed time from sample zero
- RIFF header re-wrapping for capabilities that need a WAV container
- Audio level (RMS) calculation for silence detection
"""

import io
import os
import wave
from dataclasses import dataclass
from typing import BinaryIO, Tuple, Union

import numpy as np

from ..errors import InvalidRecordingError

SAMPLE_RATE = 16000
SAMPLE_WIDTH = 2
CHANNELS = 1

AudioSource = Union[str, os.PathLike, bytes, BinaryIO]


@dataclass(frozen=True)
class PcmAudio:
    """Headerless canonical PCM data plus its format."""

    data: bytes
    sample_rate: int = SAMPLE_RATE
    sample_width: int = SAMPLE_WIDTH

    @property
    def num_frames(self) -> int:
        return len(self.data) // self.sample_width

    @property
    def duration_ms(self) -> int:
        return self.num_frames * 1000 // self.sample_rate

    def byte_offset(self, offset_ms: int) -> int:
        """Byte position of the frame at ``offset_ms``."""
        frame = offset_ms * self.sample_rate // 1000
        return min(frame * self.sample_width, len(self.data))

    def slice(self, start_ms: int, end_ms: int) -> bytes:
        """Return the raw bytes for ``[start_ms, end_ms)``; the final range includes trailing frames."""
        start = self.byte_offset(start_ms)
        end = len(self.data) if end_ms >= self.duration_ms else self.byte_offset(end_ms)
        return self.data[start:end]

    def to_float(self) -> np.ndarray:
        return pcm_to_float(self.data)

    def to_wav_bytes(self) -> bytes:
        return pcm_to_wav_bytes(self.data, rate=self.sample_rate)


def format_timestamp(seconds: float) -> str:
    """
    Format seconds as MM:SS or HH:MM:SS.

    Args:
        seconds: Time in seconds

    Returns:
        Formatted time string
    """
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def pcm_to_float(data: bytes) -> np.ndarray:
    """Convert 16-bit little-endian PCM bytes to float32 in [-1, 1]."""
    return np.frombuffer(data, dtype="<i2").astype(np.float32) / 32768.0


def float_to_pcm(audio: np.ndarray) -> bytes:
    """Convert float audio in [-1, 1] to 16-bit little-endian PCM bytes."""
    scaled = np.clip(np.round(audio.astype(np.float64) * 32768.0), -32768, 32767)
    return scaled.astype("<i2").tobytes()


def read_wav(source: AudioSource) -> Tuple[np.ndarray, int]:
    """
    Decode a WAV file into a mono float32 array.

    Args:
        source: Path, raw WAV bytes or a binary file object

    Returns:
        Tuple of (audio, sample_rate)

    Raises:
        InvalidRecordingError: If the data is not a decodable PCM WAV file
    """
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)
    elif isinstance(source, os.PathLike):
        source = os.fspath(source)

    try:
        with wave.open(source, "rb") as wf:
            n_channels = wf.getnchannels()
            sampwidth = wf.getsampwidth()
            framerate = wf.getframerate()
            frames = wf.readframes(wf.getnframes())
    except (wave.Error, EOFError, OSError) as e:
        raise InvalidRecordingError(f"Cannot read WAV data: {e}") from e

    if sampwidth == 1:
        audio = (np.frombuffer(frames, dtype=np.uint8).astype(np.float32) - 128.0) / 128.0
    elif sampwidth == 2:
        audio = np.frombuffer(frames, dtype="<i2").astype(np.float32) / 32768.0
    elif sampwidth == 4:
        audio = np.frombuffer(frames, dtype="<i4").astype(np.float32) / 2147483648.0
    else:
        raise InvalidRecordingError(f"Unsupported sample width: {sampwidth}")

    if n_channels > 1:
        usable = len(audio) - len(audio) % n_channels
        audio = audio[:usable].reshape(-1, n_channels).mean(axis=1)

    return audio, framerate


def resample(audio: np.ndarray, rate: int, target_rate: int = SAMPLE_RATE) -> np.ndarray:
    """Resample with linear interpolation."""
    if rate == target_rate or len(audio) == 0:
        return audio

    duration = len(audio) / rate
    target_length = int(duration * target_rate)
    return np.interp(
        np.linspace(0, len(audio), target_length, endpoint=False, dtype=np.float64),
        np.arange(len(audio), dtype=np.float64),
        audio,
    ).astype(np.float32)


def normalize_recording(source: AudioSource) -> PcmAudio:
    """
    Convert a recording to canonical mono 16 kHz 16-bit PCM with the header removed.

    Raises:
        InvalidRecordingError: If the recording cannot be decoded or has no samples
    """
    audio, rate = read_wav(source)
    if rate <= 0:
        raise InvalidRecordingError(f"Invalid sample rate: {rate}")

    audio = resample(audio, rate)
    pcm = PcmAudio(float_to_pcm(audio))
    if pcm.num_frames == 0:
        raise InvalidRecordingError("Recording contains no audio")
    return pcm


def pcm_to_wav_bytes(data: bytes, rate: int = SAMPLE_RATE, channels: int = CHANNELS) -> bytes:
    """Wrap raw 16-bit PCM data in a RIFF/WAV header."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(SAMPLE_WIDTH)
        wf.setframerate(rate)
        wf.writeframes(data)
    return buffer.getvalue()


def get_audio_level(audio: np.ndarray) -> float:
    """
    Calculate RMS (Root Mean Square) audio level.

    Args:
        audio: Audio array (any numeric type)

    Returns:
        RMS level as float (higher values indicate louder audio)
    """
    if len(audio) == 0:
        return 0.0
    audio = audio.astype(np.float64)
    return float(np.sqrt(np.mean(audio**2)))
