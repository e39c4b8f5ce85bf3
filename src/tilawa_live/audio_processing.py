"""
Audio processing utilities for live recitation capture.

Raw microphone frames are float32 arrays in [-1, 1]. They are merged,
resampled to the transcription sample rate and written as 16-bit PCM WAV.
Recorder chunks stay in a compressed container and can be transcoded or
concatenated with pydub when a backend needs WAV.
"""

import io
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
import librosa
import soundfile as sf
from pydub import AudioSegment

from .exceptions import AudioProcessingError


logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 16000
VOLUME_SMOOTHING = 0.25

MIME_TYPES = {
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "webm": "audio/webm",
    "mp3": "audio/mpeg",
    "mp4": "audio/mp4",
}


@dataclass(frozen=True)
class AudioFrame:
    """A block of raw samples delivered by a capture stream."""
    samples: np.ndarray
    sample_rate: int

    @property
    def duration_ms(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return len(self.samples) / self.sample_rate * 1000


@dataclass(frozen=True)
class EncodedChunk:
    """One time-boxed segment of audio ready for transcription."""
    data: bytes
    mime_type: str
    duration_ms: Optional[float] = None
    sample_rate: Optional[int] = None

    @property
    def extension(self) -> str:
        subtype = self.mime_type.split(";")[0].split("/")[-1].strip().lower()
        if subtype in ("x-wav", "wave"):
            return "wav"
        if subtype == "mpeg":
            return "mp3"
        return subtype or "bin"

    @property
    def is_wav(self) -> bool:
        return self.extension == "wav"

    @property
    def filename(self) -> str:
        return f"recitation-chunk.{self.extension}"

    def __len__(self) -> int:
        return len(self.data)


def rms_level(samples: np.ndarray) -> float:
    """Root mean square level of a block of float samples."""
    if samples is None or len(samples) == 0:
        return 0.0
    samples = np.asarray(samples, dtype=np.float64)
    return float(np.sqrt(np.mean(np.square(samples))))


def smooth_level(previous: float, current: float, smoothing: float = VOLUME_SMOOTHING) -> float:
    return previous * (1 - smoothing) + current * smoothing


class AudioProcessor:
    """Handles encoding, resampling and container conversion for recitation audio."""

    def __init__(self, target_sample_rate: int = DEFAULT_SAMPLE_RATE):
        """
        Initialize AudioProcessor.

        Args:
            target_sample_rate: Sample rate of encoded WAV chunks (default: 16000)
        """
        self.target_sample_rate = target_sample_rate
        self.logger = logging.getLogger(__name__)

    def merge_frames(self, frames: Sequence[np.ndarray]) -> np.ndarray:
        """Concatenate frames along the time axis."""
        if not frames:
            raise AudioProcessingError("No audio frames available for encoding")
        return np.concatenate([np.asarray(frame, dtype=np.float32) for frame in frames], axis=0)

    def resample(self, samples: np.ndarray, source_sample_rate: int, target_sample_rate: Optional[int] = None) -> np.ndarray:
        """
        Resample audio to the target rate.

        Args:
            samples: Mono (n,) or interleaved (n, channels) samples
            source_sample_rate: Rate the samples were captured at
            target_sample_rate: Desired rate (defaults to the processor's target)

        Returns:
            Resampled samples with the same channel layout
        """
        target_sample_rate = target_sample_rate or self.target_sample_rate
        if source_sample_rate == target_sample_rate or len(samples) == 0:
            return samples
        if samples.ndim == 2:
            resampled = librosa.resample(samples.T, orig_sr=source_sample_rate, target_sr=target_sample_rate)
            return resampled.T
        return librosa.resample(samples, orig_sr=source_sample_rate, target_sr=target_sample_rate)

    def encode_pcm_as_wav(
        self,
        frames: Sequence[np.ndarray],
        source_sample_rate: int,
        target_sample_rate: Optional[int] = None,
    ) -> bytes:
        """
        Encode float frames as a 16-bit PCM WAV file.

        Args:
            frames: Float sample blocks in [-1, 1]
            source_sample_rate: Capture sample rate
            target_sample_rate: Output sample rate (defaults to the processor's target)

        Returns:
            WAV file bytes
        """
        if not frames:
            raise AudioProcessingError("No audio frames available for encoding")
        if not source_sample_rate or source_sample_rate <= 0:
            raise AudioProcessingError("A valid source sample rate is required")

        target_sample_rate = target_sample_rate or self.target_sample_rate
        try:
            samples = self.merge_frames(frames)
            samples = self.resample(samples, source_sample_rate, target_sample_rate)
            samples = np.clip(samples, -1.0, 1.0)

            buffer = io.BytesIO()
            sf.write(buffer, samples, target_sample_rate, format="WAV", subtype="PCM_16")
            data = buffer.getvalue()

            self.logger.debug(f"Encoded {len(samples)} samples at {target_sample_rate}Hz ({len(data)} bytes)")
            return data

        except AudioProcessingError:
            raise
        except Exception as e:
            self.logger.error(f"Error encoding WAV chunk: {e}")
            raise AudioProcessingError(f"Failed to encode WAV chunk: {e}") from e

    def frames_to_chunk(
        self,
        frames: Sequence[np.ndarray],
        source_sample_rate: int,
        target_sample_rate: Optional[int] = None,
    ) -> EncodedChunk:
        """Encode frames and wrap them with their duration."""
        target_sample_rate = target_sample_rate or self.target_sample_rate
        total_samples = sum(len(frame) for frame in frames)
        return EncodedChunk(
            data=self.encode_pcm_as_wav(frames, source_sample_rate, target_sample_rate),
            mime_type=MIME_TYPES["wav"],
            duration_ms=total_samples / source_sample_rate * 1000,
            sample_rate=target_sample_rate,
        )

    def encode_compressed(
        self,
        samples: np.ndarray,
        sample_rate: int,
        container: str = "ogg",
        codec: Optional[str] = "libopus",
    ) -> EncodedChunk:
        """
        Encode float samples into a compressed container with pydub.

        Args:
            samples: Mono float samples in [-1, 1]
            sample_rate: Sample rate of the samples
            container: ffmpeg container format
            codec: ffmpeg codec, or None for the container default

        Returns:
            EncodedChunk in the requested container
        """
        try:
            pcm = (np.clip(samples, -1.0, 1.0) * 32767).astype("<i2")
            segment = AudioSegment(
                data=pcm.tobytes(),
                sample_width=2,
                frame_rate=sample_rate,
                channels=1,
            )
            buffer = io.BytesIO()
            if codec:
                segment.export(buffer, format=container, codec=codec)
            else:
                segment.export(buffer, format=container)
            return EncodedChunk(
                data=buffer.getvalue(),
                mime_type=MIME_TYPES.get(container, f"audio/{container}"),
                duration_ms=len(segment),
                sample_rate=sample_rate,
            )
        except Exception as e:
            self.logger.error(f"Error encoding {container} chunk: {e}")
            raise AudioProcessingError(f"Failed to encode {container} chunk: {e}") from e

    def _load_segment(self, chunk: EncodedChunk) -> AudioSegment:
        return AudioSegment.from_file(io.BytesIO(chunk.data), format=chunk.extension)

    def _segment_to_wav(self, segment: AudioSegment, target_sample_rate: int) -> EncodedChunk:
        segment = segment.set_frame_rate(target_sample_rate).set_sample_width(2)
        buffer = io.BytesIO()
        segment.export(buffer, format="wav")
        return EncodedChunk(
            data=buffer.getvalue(),
            mime_type=MIME_TYPES["wav"],
            duration_ms=len(segment),
            sample_rate=target_sample_rate,
        )

    def transcode_to_wav(self, chunk: EncodedChunk, target_sample_rate: Optional[int] = None) -> EncodedChunk:
        """
        Convert a compressed chunk into 16-bit PCM WAV at the target rate.

        WAV chunks already at the target rate are returned unchanged.
        """
        target_sample_rate = target_sample_rate or self.target_sample_rate
        if chunk.is_wav and chunk.sample_rate == target_sample_rate:
            return chunk
        try:
            return self._segment_to_wav(self._load_segment(chunk), target_sample_rate)
        except Exception as e:
            self.logger.error(f"Error transcoding {chunk.mime_type} chunk: {e}")
            raise AudioProcessingError(f"Failed to transcode audio chunk: {e}") from e

    def concatenate_chunks(self, chunks: Sequence[EncodedChunk], target_sample_rate: Optional[int] = None) -> EncodedChunk:
        """
        Join recorded chunks into a single WAV recording.

        Args:
            chunks: Chunks in recording order
            target_sample_rate: Output sample rate

        Returns:
            One WAV EncodedChunk covering the whole session
        """
        if not chunks:
            raise AudioProcessingError("No audio chunks available for concatenation")

        target_sample_rate = target_sample_rate or self.target_sample_rate
        try:
            combined = AudioSegment.empty()
            for chunk in chunks:
                combined += self._load_segment(chunk)
            self.logger.debug(f"Concatenated {len(chunks)} chunks into {len(combined)}ms of audio")
            return self._segment_to_wav(combined, target_sample_rate)
        except Exception as e:
            self.logger.error(f"Error concatenating audio chunks: {e}")
            raise AudioProcessingError(f"Failed to concatenate audio chunks: {e}") from e


def encode_pcm_as_wav(
    frames: List[np.ndarray],
    source_sample_rate: int,
    target_sample_rate: int = DEFAULT_SAMPLE_RATE,
) -> bytes:
    """Convenience function wrapping ``AudioProcessor.encode_pcm_as_wav``."""
    return AudioProcessor(target_sample_rate).encode_pcm_as_wav(frames, source_sample_rate)
