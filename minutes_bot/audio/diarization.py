"""
Speaker diarization and speaker matching using pyannote.audio.

This module provides the default recognition capabilities used by the audio
segmenter:

- ``PyannoteDiarizer`` detects speaker-change boundaries with the pyannote
  speaker-diarization pipeline.
- ``PyannoteSpeakerMatcher`` enrolls voice samples as speaker embeddings and
  identifies the closest enrolled speaker by cosine similarity.

Both load their models lazily on first use. All pyannote and torch imports
are done inside methods, not at module level, so that importing the package
stays cheap and the models are only pulled in when they are needed.
"""

import logging
import threading
import uuid
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..collaborators import BoundaryDetector, SpeakerMatcher
from ..errors import EnrollmentError
from ..models import User, Voiceprint
from .utils import SAMPLE_RATE, PcmAudio, pcm_to_float, read_wav, resample

logger = logging.getLogger(__name__)


def _to_waveform(audio: np.ndarray, sample_rate: int = SAMPLE_RATE) -> dict:
    """Wrap a mono float array in the in-memory input format pyannote expects."""
    import torch

    waveform = torch.from_numpy(np.ascontiguousarray(audio, dtype=np.float32))[None, :]
    return {"waveform": waveform, "sample_rate": sample_rate}


def boundaries_from_turns(turns: Sequence[Tuple[float, float, str]], duration_ms: int) -> List[int]:
    """
    Convert diarization turns into speaker-change boundaries.

    A boundary is placed at the start of every turn whose speaker differs from
    the previous turn's speaker. Overlapping turns are ordered by start time.

    Args:
        turns: List of (start_seconds, end_seconds, speaker_label) tuples
        duration_ms: Recording duration in milliseconds

    Returns:
        Strictly increasing offsets starting at 0 and ending at ``duration_ms``
    """
    boundaries = [0]
    previous_speaker = None

    for start, _, speaker in sorted(turns, key=lambda t: (t[0], t[1])):
        offset = int(round(start * 1000))
        if previous_speaker is not None and speaker != previous_speaker and boundaries[-1] < offset < duration_ms:
            boundaries.append(offset)
        previous_speaker = speaker

    if duration_ms > 0:
        boundaries.append(duration_ms)
    return boundaries


class PyannoteDiarizer(BoundaryDetector):
    """
    Detect speaker changes using pyannote.audio.

    Identifies when the active speaker changes in a recording. The pipeline is
    only loaded when first needed.
    """

    def __init__(self, hf_token: str, model_name: str = "pyannote/speaker-diarization-3.1"):
        """
        Initialize diarizer with Hugging Face token and model.

        Args:
            hf_token: Hugging Face authentication token
            model_name: HuggingFace model ID or local path for diarization model
        """
        self.hf_token = hf_token
        self.model_name = model_name
        self.pipeline = None
        self._lock = threading.Lock()

    def _load_pipeline(self):
        """Load the pyannote diarization pipeline (lazy loading)."""
        with self._lock:
            if self.pipeline is not None:
                return

            import torch
            from pyannote.audio import Pipeline
            from pyannote.audio.core.task import Problem, Resolution, Specifications

            # PyTorch 2.6+ loads checkpoints with weights_only=True
            torch.serialization.add_safe_globals([torch.torch_version.TorchVersion])
            torch.serialization.add_safe_globals([Specifications, Problem, Resolution])

            logger.info(f"Loading diarization pipeline: {self.model_name}")
            self.pipeline = Pipeline.from_pretrained(self.model_name, use_auth_token=self.hf_token)
            logger.info(f"Diarization pipeline loaded: {self.model_name}")

    def diarize(self, audio: PcmAudio) -> List[Tuple[float, float, str]]:
        """
        Perform speaker diarization on canonical PCM audio.

        Returns:
            List of (start_time, end_time, speaker_label) tuples in seconds
        """
        self._load_pipeline()

        waveform = _to_waveform(audio.to_float(), audio.sample_rate)
        with self._lock:
            diarization = self.pipeline(waveform)
        return [(turn.start, turn.end, speaker) for turn, _, speaker in diarization.itertracks(yield_label=True)]

    def detect_boundaries(self, audio: PcmAudio) -> List[int]:
        turns = self.diarize(audio)
        boundaries = boundaries_from_turns(turns, audio.duration_ms)
        logger.info(f"Diarization found {len(set(t[2] for t in turns))} speaker(s), {len(boundaries) - 1} interval(s)")
        return boundaries


class PyannoteSpeakerMatcher(SpeakerMatcher):
    """
    Enroll and identify speakers with pyannote speaker embeddings.

    Each profile stores the embedding of its enrolled sample. Identification
    embeds the interval and picks the enrolled voiceprint with the highest
    cosine similarity. Confidence is the similarity clipped to [0, 1].
    """

    def __init__(self, hf_token: str, model_name: str = "pyannote/embedding"):
        self.hf_token = hf_token
        self.model_name = model_name
        self.inference = None
        self._profiles: Dict[str, np.ndarray] = {}
        self._lock = threading.Lock()

    def _load_model(self):
        with self._lock:
            if self.inference is not None:
                return

            from pyannote.audio import Inference, Model

            logger.info(f"Loading speaker embedding model: {self.model_name}")
            model = Model.from_pretrained(self.model_name, use_auth_token=self.hf_token)
            self.inference = Inference(model, window="whole")

    def embed(self, audio: np.ndarray, sample_rate: int = SAMPLE_RATE) -> np.ndarray:
        """Return a unit-length embedding for a mono float waveform."""
        self._load_model()
        waveform = _to_waveform(audio, sample_rate)
        with self._lock:
            embedding = np.asarray(self.inference(waveform), dtype=np.float64).reshape(-1)
        norm = np.linalg.norm(embedding)
        return embedding / norm if norm > 0 else embedding

    def enroll_profile(self, sample: bytes, profile_id: Optional[str] = None) -> str:
        audio, rate = read_wav(sample)
        try:
            embedding = self.embed(resample(audio, rate))
        except Exception as e:
            raise EnrollmentError(f"Could not compute speaker embedding: {e}") from e

        profile_id = profile_id or str(uuid.uuid4())
        with self._lock:
            self._profiles[profile_id] = embedding
        return profile_id

    def identify(self, audio: bytes, voiceprints: Sequence[Voiceprint]) -> Tuple[Optional[User], float]:
        with self._lock:
            candidates = [
                (vp.user, self._profiles[vp.profile_id]) for vp in voiceprints if vp.profile_id in self._profiles
            ]

        if not candidates:
            return None, 0.0

        embedding = self.embed(pcm_to_float(audio))
        best_user, best_score = None, 0.0
        for user, reference in candidates:
            score = float(np.clip(np.dot(embedding, reference), 0.0, 1.0))
            if score > best_score:
                best_user, best_score = user, score
        return best_user, best_score
