"""
Microphone capture strategies.

Two producers share one interface. ``MicrophoneStreamCapture`` delivers raw
float frames for low-latency aggregation; ``RecorderCapture`` records fixed
timeslices and emits compressed chunks. Both hand their output to a
``FrameChannel``, a bounded queue owned by the event loop that drops the
oldest item when full.
"""

import queue
import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Union

import numpy as np

from .audio_processing import AudioFrame, AudioProcessor, EncodedChunk, rms_level, smooth_level
from .config import DEFAULT_CHUNK_DURATION_MS
from .exceptions import AudioProcessingError, CaptureUnavailableError, MicrophonePermissionError


logger = logging.getLogger(__name__)

MICROPHONE_STREAM = "microphone-stream"
MEDIA_RECORDER = "media-recorder"


@dataclass(frozen=True)
class CaptureFailure:
    """Published by a producer when capture breaks mid-session."""
    message: str
    error: Optional[BaseException] = None


CapturedItem = Union[AudioFrame, EncodedChunk, CaptureFailure]


def load_sounddevice():
    """Import sounddevice, which needs the PortAudio shared library at import time."""
    try:
        import sounddevice as sd
    except (ImportError, OSError) as e:
        raise CaptureUnavailableError(f"Audio capture backend unavailable: {e}") from e
    return sd


class FrameChannel:
    """
    Bounded hand-off between capture threads and the event loop.

    ``publish`` may be called from any thread. Items and the close marker are
    applied on the loop in the order they were published.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, max_depth: int = 512):
        self._loop = loop
        self._items: Deque[CapturedItem] = deque()
        self._max_depth = max_depth
        self._ready = asyncio.Event()
        self._closed = False
        self.dropped = 0

    def publish(self, item: CapturedItem) -> None:
        try:
            self._loop.call_soon_threadsafe(self._put, item)
        except RuntimeError:
            # Loop already closed; the session is gone.
            logger.debug("Dropping captured audio after event loop shutdown")

    def _put(self, item: CapturedItem) -> None:
        if self._closed:
            return
        if len(self._items) >= self._max_depth:
            self._items.popleft()
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 50 == 0:
                logger.warning(f"Capture channel full, dropped {self.dropped} item(s)")
        self._items.append(item)
        self._ready.set()

    def close(self) -> None:
        try:
            self._loop.call_soon_threadsafe(self._close)
        except RuntimeError:
            self._closed = True

    def _close(self) -> None:
        self._closed = True
        self._ready.set()

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._items)

    async def get(self) -> Optional[CapturedItem]:
        """Wait for the next item; returns None once closed and drained."""
        while not self._items:
            if self._closed:
                return None
            self._ready.clear()
            await self._ready.wait()
        return self._items.popleft()


class ChunkProducer(ABC):
    """A microphone capture strategy."""

    mode = ""

    def __init__(self):
        self.volume = 0.0
        self.logger = logging.getLogger(__name__)

    def _update_volume(self, samples: np.ndarray) -> None:
        self.volume = smooth_level(self.volume, rms_level(samples))

    @abstractmethod
    def is_supported(self) -> bool:
        """Whether this strategy can run on the current machine."""

    @abstractmethod
    async def start(self, channel: FrameChannel) -> None:
        """
        Acquire the microphone and start publishing to the channel.

        Raises:
            MicrophonePermissionError: the device refused access
            CaptureUnavailableError: no capture backend is available
        """

    @abstractmethod
    async def stop(self) -> None:
        """Release the microphone. Safe to call more than once."""


class MicrophoneStreamCapture(ChunkProducer):
    """Streams raw float32 frames from the default input device."""

    mode = MICROPHONE_STREAM

    def __init__(self, sample_rate: Optional[int] = None, block_size: int = 2048, device=None):
        super().__init__()
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.device = device
        self._stream = None

    def is_supported(self) -> bool:
        try:
            sd = load_sounddevice()
        except CaptureUnavailableError as e:
            self.logger.debug(f"Microphone stream unsupported: {e}")
            return False
        try:
            sd.query_devices(self.device, "input")
        except (sd.PortAudioError, ValueError) as e:
            self.logger.debug(f"No input device for microphone stream: {e}")
            return False
        return True

    async def start(self, channel: FrameChannel) -> None:
        if self._stream is not None:
            return
        sd = load_sounddevice()
        sample_rate = self.sample_rate
        if sample_rate is None:
            sample_rate = int(sd.query_devices(self.device, "input")["default_samplerate"])

        def callback(indata, frames, time_info, status):
            if status:
                self.logger.warning(f"Microphone stream status: {status}")
            samples = indata[:, 0].copy()
            self._update_volume(samples)
            channel.publish(AudioFrame(samples=samples, sample_rate=sample_rate))

        stream = _open_input_stream(
            sd,
            samplerate=sample_rate,
            blocksize=self.block_size,
            channels=1,
            dtype="float32",
            device=self.device,
            callback=callback,
        )

        self._stream = stream
        self.logger.info(f"Microphone stream started at {sample_rate}Hz")

    async def stop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        await asyncio.to_thread(_close_stream, stream)
        self.volume = 0.0


class RecorderCapture(ChunkProducer):
    """
    Records fixed timeslices and emits each one as a compressed chunk.

    Blocks from the audio callback are collected on a worker thread, which
    encodes a chunk whenever a full timeslice is buffered and flushes the
    remainder when recording stops.
    """

    mode = MEDIA_RECORDER

    def __init__(
        self,
        timeslice_ms: int = DEFAULT_CHUNK_DURATION_MS,
        sample_rate: int = 48000,
        container: str = "ogg",
        codec: Optional[str] = "libopus",
        device=None,
        audio_processor: Optional[AudioProcessor] = None,
    ):
        super().__init__()
        self.timeslice_ms = timeslice_ms
        self.sample_rate = sample_rate
        self.container = container
        self.codec = codec
        self.device = device
        self.audio_processor = audio_processor or AudioProcessor()
        self._stream = None
        self._worker: Optional[threading.Thread] = None
        self._blocks: "queue.Queue[np.ndarray]" = queue.Queue()
        self._stop_event = threading.Event()

    def is_supported(self) -> bool:
        try:
            sd = load_sounddevice()
        except CaptureUnavailableError:
            return False
        try:
            sd.query_devices(self.device, "input")
        except (sd.PortAudioError, ValueError):
            return False
        return True

    @property
    def timeslice_samples(self) -> int:
        return max(1, int(self.sample_rate * self.timeslice_ms / 1000))

    async def start(self, channel: FrameChannel) -> None:
        if self._stream is not None:
            return
        sd = load_sounddevice()
        self._blocks = queue.Queue()
        self._stop_event = threading.Event()

        def callback(indata, frames, time_info, status):
            if status:
                self.logger.warning(f"Recorder status: {status}")
            block = indata[:, 0].copy()
            self._update_volume(block)
            self._blocks.put(block)

        stream = _open_input_stream(
            sd,
            samplerate=self.sample_rate,
            channels=1,
            dtype="float32",
            device=self.device,
            callback=callback,
        )

        self._stream = stream
        self._worker = threading.Thread(
            target=self._run_worker, args=(channel,), name="recorder-capture", daemon=True
        )
        self._worker.start()
        self.logger.info(f"Recorder started with {self.timeslice_ms}ms timeslices")

    def _run_worker(self, channel) -> None:
        pending: List[np.ndarray] = []
        pending_samples = 0
        while True:
            try:
                block = self._blocks.get(timeout=0.1)
            except queue.Empty:
                if self._stop_event.is_set():
                    break
                continue
            pending.append(block)
            pending_samples += len(block)
            if pending_samples >= self.timeslice_samples:
                self._emit(channel, pending)
                pending = []
                pending_samples = 0
        if pending:
            self._emit(channel, pending)

    def _emit(self, channel, blocks: List[np.ndarray]) -> None:
        try:
            chunk = self.audio_processor.encode_compressed(
                np.concatenate(blocks), self.sample_rate, self.container, self.codec
            )
        except AudioProcessingError as e:
            self.logger.error(f"Recorder failed to encode a timeslice: {e}")
            channel.publish(CaptureFailure("Recording failed. Please try again.", e))
            return
        channel.publish(chunk)

    async def stop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            await asyncio.to_thread(_close_stream, stream)
        self._stop_event.set()
        worker, self._worker = self._worker, None
        if worker is not None:
            await asyncio.to_thread(worker.join)
        self.volume = 0.0


def _open_input_stream(sd, **kwargs):
    """Open and start an input stream; a stream that fails to start is closed again."""
    stream = None
    try:
        stream = sd.InputStream(**kwargs)
        stream.start()
    except sd.PortAudioError as e:
        if stream is not None:
            _close_stream(stream)
        raise MicrophonePermissionError(f"Could not access the microphone: {e}") from e
    return stream


def _close_stream(stream) -> None:
    try:
        stream.stop()
    except Exception as e:
        logger.warning(f"Error stopping input stream: {e}")
    try:
        stream.close()
    except Exception as e:
        logger.warning(f"Error closing input stream: {e}")


def default_producers(chunk_duration_ms: int = DEFAULT_CHUNK_DURATION_MS) -> List[ChunkProducer]:
    """Raw-frame streaming first, chunked recording as the fallback."""
    return [MicrophoneStreamCapture(), RecorderCapture(timeslice_ms=chunk_duration_ms)]
