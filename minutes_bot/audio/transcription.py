"""
Audio transcription functionality using OpenAI Whisper.

This module provides the default speech-to-text capability used by the
transcription pipeline. Segments arrive as 16 kHz mono 16-bit PCM streams and
are passed to Whisper as float32 arrays, so no ffmpeg decoding is involved.

Key features:
- Multiple Whisper model sizes (tiny to large), loaded lazily
- Hallucination detection and filtering on silent or low-level audio
- Thread-safe: concurrent callers share one model behind a lock
"""

import logging
import threading
from typing import BinaryIO, Dict, Optional

import numpy as np

from ..collaborators import SpeechRecognizer
from .utils import pcm_to_float

logger = logging.getLogger(__name__)

HALLUCINATIONS = ["1.5%", "2.5%", "3.5%", "subscribe", ".", "...", "♪", "[blank_audio]", "(blank)"]


class AudioTranscriber(SpeechRecognizer):
    """
    Handle audio transcription using OpenAI Whisper.

    Transcribes PCM segment streams and drops segments that look like Whisper
    hallucinations rather than speech.
    """

    def __init__(self, model_name: str = "base", language: Optional[str] = None):
        """
        Initialize transcriber with a Whisper model.

        Args:
            model_name: Whisper model size (tiny, base, small, medium, large)
            language: Language code for transcription (default: auto-detect)
        """
        self.model_name = model_name
        self.language = language
        self.model = None
        self._lock = threading.Lock()

    def load_model(self):
        """Load the Whisper model (imported here so the package loads without torch)."""
        if self.model is None:
            import whisper

            logger.info(f"Loading Whisper model: {self.model_name}")
            self.model = whisper.load_model(self.model_name)

    def transcribe(self, audio: np.ndarray, **kwargs) -> Dict:
        """
        Run Whisper on a float32 waveform sampled at 16 kHz.

        Returns:
            Whisper result dictionary with 'text', 'segments' and 'language'
        """
        with self._lock:
            self.load_model()
            return self.model.transcribe(audio.astype(np.float32), language=self.language, fp16=False, **kwargs)

    def recognize(self, stream: BinaryIO) -> str:
        """
        Transcribe a raw PCM stream.

        Returns:
            The recognized text, or an empty string for silence or unintelligible audio
        """
        data = stream.read()
        if len(data) < 2:
            return ""

        result = self.transcribe(pcm_to_float(data[: len(data) - len(data) % 2]), verbose=None)

        kept = []
        for segment in result.get("segments", []):
            text = segment["text"].strip()
            if text and self._is_valid_transcription(text, segment.get("no_speech_prob", 0.0)):
                kept.append(text)

        return " ".join(kept)

    def _is_valid_transcription(self, text: str, no_speech_prob: float = 0.0) -> bool:
        """
        Check if a transcription segment is valid (not a hallucination).

        Args:
            text: Transcribed text to validate
            no_speech_prob: Whisper's probability that segment contains no speech (0-1)

        Returns:
            True if segment appears to be valid speech, False if likely hallucination
        """
        if no_speech_prob > 0.6:
            return False

        text_lower = text.lower().strip()

        if text_lower in HALLUCINATIONS:
            return False

        if len(text_lower) <= 3 and not any(c.isalpha() for c in text_lower):
            return False

        if len(set(text_lower.replace(" ", ""))) <= 2 and len(text_lower) < 10:
            return False

        return True
