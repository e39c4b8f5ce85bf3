"""
Live recitation session coordinator.

The coordinator owns the microphone for the length of a session. Captured
audio flows through a bounded channel into a frame aggregator, which emits
time-boxed WAV chunks onto a bounded FIFO queue. A single-flight processor
sends one chunk at a time to the transcriber and merges the returned text
into a running transcript, so results are applied in submission order.
"""

import time
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional, Sequence

import numpy as np

from .alignment import EXTRA, MATCH, MISSING, AlignmentContext, align_words
from .api_clients import LIVE_MODE, Transcriber
from .arabic_text import normalize_arabic, split_words
from .audio_processing import AudioFrame, AudioProcessor, EncodedChunk
from .capture import CaptureFailure, ChunkProducer, FrameChannel, default_producers
from .config import LiveRecitationConfig
from .dialects import DialectResolution, DialectResolver
from .exceptions import (
    AudioProcessingError,
    CaptureUnavailableError,
    MicrophonePermissionError,
    TranscriptionError,
    TranscriptionUnavailableError,
)
from .phonetics import PhoneticModelRegistry
from .session_summary import LiveSessionSummary, create_live_session_summary


logger = logging.getLogger(__name__)

IDLE = "idle"
REQUESTING_PERMISSION = "requesting-permission"
LISTENING = "listening"
PROCESSING = "processing"
PERMISSION_DENIED = "permission-denied"
ERROR = "error"

ERROR_PERMISSION = "permission"
ERROR_CAPTURE = "capture"
ERROR_TRANSCRIPTION_UNAVAILABLE = "transcription-unavailable"

PERMISSION_DENIED_MESSAGE = "Microphone permission denied. Please enable access to continue."
CAPTURE_UNSUPPORTED_MESSAGE = "Live recitation capture is not supported on this device."
NO_EXPECTED_TEXT_MESSAGE = "No verses are available for live analysis."
SEGMENT_FAILURE_WARNING = (
    "Live transcription encountered an error on a segment. "
    "We're still recording, you can continue reciting."
)
FINALIZE_FAILURE_WARNING = "Full-session analysis failed. Showing feedback from the live transcript."


class ChunkAggregator:
    """Buffers raw frames until they cover one chunk duration."""

    def __init__(self, chunk_duration_ms: int, audio_processor: AudioProcessor):
        self.chunk_duration_ms = chunk_duration_ms
        self.audio_processor = audio_processor
        self.buffers: List[np.ndarray] = []
        self.total_samples = 0
        self.sample_rate: Optional[int] = None

    @property
    def buffered_ms(self) -> float:
        if not self.sample_rate:
            return 0.0
        return self.total_samples / self.sample_rate * 1000

    def add(self, frame: AudioFrame) -> Optional[EncodedChunk]:
        """Buffer a frame; returns a chunk once the buffer is full."""
        if self.sample_rate is None:
            self.sample_rate = frame.sample_rate
        self.buffers.append(frame.samples)
        self.total_samples += len(frame.samples)
        if self.buffered_ms >= self.chunk_duration_ms:
            return self.flush()
        return None

    def flush(self) -> Optional[EncodedChunk]:
        """Encode whatever is buffered, even if short of a full chunk."""
        if not self.buffers or not self.sample_rate:
            return None
        buffers, sample_rate = self.buffers, self.sample_rate
        self.reset()
        return self.audio_processor.frames_to_chunk(buffers, sample_rate)

    def reset(self) -> None:
        self.buffers = []
        self.total_samples = 0
        self.sample_rate = None


class ChunkQueue:
    """FIFO of chunks awaiting transcription; drops the oldest beyond max_depth."""

    def __init__(self, max_depth: int = 6):
        self.max_depth = max_depth
        self._chunks: Deque[EncodedChunk] = deque()
        self.dropped = 0

    def push(self, chunk: EncodedChunk) -> Optional[EncodedChunk]:
        self._chunks.append(chunk)
        if len(self._chunks) > self.max_depth:
            self.dropped += 1
            return self._chunks.popleft()
        return None

    def pop(self) -> Optional[EncodedChunk]:
        return self._chunks.popleft() if self._chunks else None

    def clear(self) -> int:
        count = len(self._chunks)
        self._chunks.clear()
        return count

    def __len__(self) -> int:
        return len(self._chunks)


class RunningTranscript:
    """
    Growing transcript assembled from overlapping chunk transcriptions.

    Each merge finds the longest suffix of the accumulated tokens that equals
    a prefix of the new tokens and appends only the remainder.
    """

    def __init__(self):
        self.tokens: List[str] = []
        self.display_tokens: List[str] = []

    @property
    def text(self) -> str:
        return " ".join(self.display_tokens)

    def merge(self, chunk_text: str) -> List[str]:
        """
        Merge a chunk transcription.

        Args:
            chunk_text: Raw transcription of one chunk

        Returns:
            Display tokens that were appended
        """
        incoming = []
        for word in split_words(chunk_text):
            normalized = normalize_arabic(word)
            if normalized:
                incoming.append((normalized, word))
        if not incoming:
            return []

        normalized_new = [normalized for normalized, _ in incoming]
        overlap = 0
        for size in range(min(len(self.tokens), len(normalized_new)), 0, -1):
            if self.tokens[-size:] == normalized_new[:size]:
                overlap = size
                break

        appended = incoming[overlap:]
        self.tokens.extend(normalized for normalized, _ in appended)
        self.display_tokens.extend(word for _, word in appended)
        return [word for _, word in appended]

    def reset(self) -> None:
        self.tokens = []
        self.display_tokens = []

    def __len__(self) -> int:
        return len(self.tokens)


@dataclass(frozen=True)
class WordFeedback:
    """Live verdict for one expected word."""
    expected: str
    detected: Optional[str]
    status: str
    similarity: float


def build_word_feedback(expected_text: str, transcript: str, context: AlignmentContext):
    """Align the running transcript and return (per-word feedback, extra words)."""
    feedback: List[WordFeedback] = []
    extras: List[str] = []
    for entry in align_words(expected_text, transcript, context):
        if entry.type == MATCH:
            similarity = entry.similarity or 0.0
            status = "correct" if similarity >= context.substitution_threshold else "incorrect"
            feedback.append(WordFeedback(entry.expected, entry.detected, status, similarity))
        elif entry.type == MISSING:
            feedback.append(WordFeedback(entry.expected, None, "missing", 0.0))
        elif entry.type == EXTRA:
            extras.append(entry.detected)
    return feedback, extras


class LiveRecitationSession:
    """
    Coordinates capture, chunking, transcription and live feedback.

    Usage::

        async with LiveRecitationSession(expected_text, transcriber) as session:
            await session.start()
            ...
            summary = await session.stop()
    """

    def __init__(
        self,
        expected_text: str,
        transcriber: Transcriber,
        config: Optional[LiveRecitationConfig] = None,
        producers: Optional[Sequence[ChunkProducer]] = None,
        registry: Optional[PhoneticModelRegistry] = None,
        audio_processor: Optional[AudioProcessor] = None,
        on_update: Optional[Callable[["LiveRecitationSession"], None]] = None,
    ):
        self.expected_text = (expected_text or "").strip()
        self.transcriber = transcriber
        self.config = config or LiveRecitationConfig()
        self.registry = registry or PhoneticModelRegistry()
        self.audio_processor = audio_processor or AudioProcessor(self.config.target_sample_rate)
        self.producers = list(producers) if producers is not None else default_producers(self.config.chunk_duration_ms)
        self.on_update = on_update
        self.logger = logging.getLogger(__name__)

        self.resolution: DialectResolution = DialectResolver(self.registry).resolve(
            self.config.dialect,
            expected_text=self.expected_text,
            locale_hint=self.config.locale_hint,
        )
        self.context = AlignmentContext(
            model=self.resolution.model,
            substitution_threshold=self.config.substitution_threshold,
        )

        self.status = IDLE
        self.error: Optional[str] = None
        self.error_kind: Optional[str] = None
        self.warning: Optional[str] = None
        self.capture_mode: Optional[str] = None
        self.transcript = RunningTranscript()
        self.interim_transcript = ""
        self.feedback: List[WordFeedback] = []
        self.extras: List[str] = []
        self.summary: Optional[LiveSessionSummary] = None
        self.last_latency_ms: Optional[int] = None

        self._aggregator = ChunkAggregator(self.config.chunk_duration_ms, self.audio_processor)
        self._queue = ChunkQueue(self.config.max_queue_depth)
        self._channel: Optional[FrameChannel] = None
        self._producer: Optional[ChunkProducer] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._processor_task: Optional[asyncio.Task] = None
        self._halt_task: Optional[asyncio.Task] = None
        self._processing = False
        self._starting = False
        self._session_frames: List[np.ndarray] = []
        self._session_sample_rate: Optional[int] = None
        self._session_chunks: List[EncodedChunk] = []
        self._started_at: Optional[float] = None
        self._stopped_at: Optional[float] = None

    async def __aenter__(self) -> "LiveRecitationSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # -- public state -----------------------------------------------------

    @property
    def is_capturing(self) -> bool:
        return self._producer is not None

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def queued_chunks(self) -> int:
        return len(self._queue)

    @property
    def dropped_chunks(self) -> int:
        return self._queue.dropped

    @property
    def volume(self) -> float:
        return self._producer.volume if self._producer is not None else 0.0

    @property
    def transcript_text(self) -> str:
        return self.transcript.text

    @property
    def elapsed_seconds(self) -> Optional[float]:
        if self._started_at is None:
            return None
        end = self._stopped_at if self._stopped_at is not None else time.monotonic()
        return round(end - self._started_at, 2)

    def dismiss_warning(self) -> None:
        self.warning = None
        self._notify()

    # -- lifecycle --------------------------------------------------------

    async def start(self) -> bool:
        """
        Acquire the microphone and begin listening.

        Tries each capture strategy in order. Starting while a session is
        already active does nothing.

        Returns:
            True when capture is running after the call
        """
        if self._producer is not None or self._starting:
            self.logger.warning("Live recitation session already active; ignoring start()")
            return self._producer is not None

        if not split_words(self.expected_text):
            self._fail(ERROR, ERROR_CAPTURE, NO_EXPECTED_TEXT_MESSAGE)
            return False

        self._starting = True
        try:
            self._reset()
            self._set_status(REQUESTING_PERMISSION)
            channel = FrameChannel(asyncio.get_running_loop(), self.config.frame_channel_depth)

            permission_error: Optional[Exception] = None
            capture_error: Optional[Exception] = None
            for producer in self.producers:
                if not producer.is_supported():
                    self.logger.debug(f"Capture mode {producer.mode} not supported, skipping")
                    continue
                try:
                    await producer.start(channel)
                except MicrophonePermissionError as e:
                    self.logger.warning(f"{producer.mode} capture denied: {e}")
                    permission_error = e
                    continue
                except CaptureUnavailableError as e:
                    self.logger.warning(f"{producer.mode} capture unavailable: {e}")
                    capture_error = e
                    continue
                self._producer = producer
                break

            if self._producer is None:
                if permission_error is not None:
                    self._fail(PERMISSION_DENIED, ERROR_PERMISSION, PERMISSION_DENIED_MESSAGE)
                else:
                    message = str(capture_error) if capture_error else CAPTURE_UNSUPPORTED_MESSAGE
                    self._fail(ERROR, ERROR_CAPTURE, message)
                return False

            self._channel = channel
            self.capture_mode = self._producer.mode
            self._started_at = time.monotonic()
            self._pump_task = asyncio.create_task(self._pump(channel))
            self.logger.info(f"Listening with {self.capture_mode} capture, dialect {self.resolution.model.code}")
            self._set_status(LISTENING)
            return True
        finally:
            self._starting = False

    async def stop(self, finalize: Optional[bool] = None) -> Optional[LiveSessionSummary]:
        """
        Stop listening.

        Flushes the partial buffer as a final chunk, releases the microphone
        and waits for queued chunks to be transcribed. With finalization the
        whole session is transcribed once more and summarized.

        Args:
            finalize: Override ``config.finalize_on_stop``

        Returns:
            The session summary when finalization ran, otherwise the previous summary
        """
        if self._producer is None:
            return self.summary

        if finalize is None:
            finalize = self.config.finalize_on_stop

        await self._halt_capture()
        await self.drain()

        if finalize and self.status != ERROR:
            self.summary = await self._finalize()

        if self.status not in (ERROR, PERMISSION_DENIED):
            self._set_status(IDLE)
        return self.summary

    async def close(self) -> None:
        """Tear the session down, abandoning queued chunks."""
        dropped = self._queue.clear()
        if dropped:
            self.logger.info(f"Abandoned {dropped} queued chunk(s) on close")
        await self._halt_capture(flush=False)
        task, self._processor_task = self._processor_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._processing = False
        if self.status not in (ERROR, PERMISSION_DENIED):
            self._set_status(IDLE)

    async def drain(self) -> None:
        """Wait until the queue is empty and nothing is in flight."""
        while True:
            task = self._processor_task
            if task is not None and not task.done():
                await asyncio.shield(task)
                continue
            if len(self._queue) and self.status != ERROR:
                self._kick_processor()
                continue
            return

    def ingest_recognizer_result(self, text: str, is_final: bool = True) -> List[str]:
        """
        Accept text from a parallel speech recognizer.

        Final results are merged into the transcript; interim results are only
        exposed through ``interim_transcript``.
        """
        if not is_final:
            self.interim_transcript = (text or "").strip()
            self._notify()
            return []
        self.interim_transcript = ""
        return self._apply_transcript(text)

    # -- internals --------------------------------------------------------

    def _reset(self) -> None:
        self.error = None
        self.error_kind = None
        self.warning = None
        self.summary = None
        self.interim_transcript = ""
        self.transcript.reset()
        self.feedback, self.extras = [], []
        self._aggregator.reset()
        self._queue.clear()
        self._session_frames = []
        self._session_sample_rate = None
        self._session_chunks = []
        self._started_at = None
        self._stopped_at = None

    def _set_status(self, status: str) -> None:
        if status != self.status:
            self.logger.debug(f"Session status {self.status} -> {status}")
            self.status = status
            self._notify()

    def _fail(self, status: str, kind: str, message: str) -> None:
        self.error = message
        self.error_kind = kind
        self._set_status(status)

    def _notify(self) -> None:
        if self.on_update is None:
            return
        try:
            self.on_update(self)
        except Exception:
            self.logger.exception("Session update listener failed")

    async def _pump(self, channel: FrameChannel) -> None:
        while True:
            item = await channel.get()
            if item is None:
                return
            if isinstance(item, AudioFrame):
                self._handle_frame(item)
            elif isinstance(item, EncodedChunk):
                self._session_chunks.append(item)
                self._enqueue(item)
            elif isinstance(item, CaptureFailure):
                self.logger.error(f"Capture failed: {item.message}")
                self._fail(ERROR, ERROR_CAPTURE, item.message)
                self._halt_task = asyncio.get_running_loop().create_task(self._halt_capture(flush=False))
                return

    def _handle_frame(self, frame: AudioFrame) -> None:
        if self._session_sample_rate is None:
            self._session_sample_rate = frame.sample_rate
        self._session_frames.append(frame.samples)
        try:
            chunk = self._aggregator.add(frame)
        except AudioProcessingError as e:
            self.logger.error(f"Failed to encode buffered frames: {e}")
            return
        if chunk is not None:
            self._enqueue(chunk)

    def _flush_pending_frames(self) -> None:
        try:
            chunk = self._aggregator.flush()
        except AudioProcessingError as e:
            self.logger.error(f"Failed to encode final buffered frames: {e}")
            return
        if chunk is not None:
            self._enqueue(chunk)

    def _enqueue(self, chunk: EncodedChunk) -> None:
        if self.error_kind == ERROR_TRANSCRIPTION_UNAVAILABLE:
            return
        dropped = self._queue.push(chunk)
        if dropped is not None:
            self.logger.warning(
                f"Transcription backlog full, dropped oldest chunk ({self._queue.dropped} dropped so far)"
            )
        self._kick_processor()

    def _kick_processor(self) -> None:
        if self._processing:
            return
        if self._processor_task is not None and not self._processor_task.done():
            return
        if not len(self._queue):
            return
        self._processor_task = asyncio.get_running_loop().create_task(self._process_queue())

    async def _process_queue(self) -> None:
        while True:
            chunk = self._queue.pop()
            if chunk is None:
                return

            self._processing = True
            self._set_status(PROCESSING)
            try:
                text = await self._transcribe_chunk(chunk)
                self._apply_transcript(text)
            except TranscriptionUnavailableError as e:
                self.logger.error(f"Transcription unavailable: {e}")
                self._queue.clear()
                self._fail(ERROR, ERROR_TRANSCRIPTION_UNAVAILABLE, str(e))
                await self._halt_capture(flush=False)
                return
            except asyncio.TimeoutError:
                self.logger.error(
                    f"Transcription of a {chunk.duration_ms or 0:.0f}ms chunk timed out "
                    f"after {self.config.transcription_timeout_s}s"
                )
                self.warning = SEGMENT_FAILURE_WARNING
            except (TranscriptionError, AudioProcessingError) as e:
                self.logger.error(f"Live transcription failed for a {chunk.duration_ms or 0:.0f}ms chunk: {e}")
                self.warning = SEGMENT_FAILURE_WARNING
            except Exception:
                self.logger.exception("Unexpected error while transcribing a live chunk")
                self.warning = SEGMENT_FAILURE_WARNING
            finally:
                self._processing = False
                if self.status == PROCESSING:
                    self._set_status(LISTENING if self.is_capturing else IDLE)

    async def _transcribe_chunk(self, chunk: EncodedChunk) -> str:
        if self.config.transcode_chunks and not chunk.is_wav:
            chunk = await asyncio.to_thread(self.audio_processor.transcode_to_wav, chunk)
        started = time.monotonic()
        text = await self._call_transcriber(chunk, LIVE_MODE, self.config.transcription_timeout_s)
        self.last_latency_ms = int((time.monotonic() - started) * 1000)
        return text or ""

    async def _call_transcriber(self, chunk: EncodedChunk, mode: Optional[str], timeout: float) -> str:
        """
        Run one blocking transcribe call on a worker thread.

        A call that outlives ``timeout`` cannot be cancelled, so it is waited
        out and its result discarded before ``asyncio.TimeoutError`` is
        raised. The next chunk is never sent while a request is outstanding.
        """
        call = asyncio.ensure_future(asyncio.to_thread(self.transcriber.transcribe, chunk, mode))
        try:
            done, _ = await asyncio.wait({call}, timeout=timeout)
            if call in done:
                return call.result()

            self.logger.warning(f"Transcription exceeded {timeout}s, waiting for the request to settle")
            try:
                await call
            except TranscriptionUnavailableError:
                raise
            except Exception as e:
                self.logger.debug(f"Discarded late transcription failure: {e}")
            raise asyncio.TimeoutError()
        except asyncio.CancelledError:
            call.cancel()
            raise

    def _apply_transcript(self, text: str) -> List[str]:
        appended = self.transcript.merge(text or "")
        if appended:
            self.feedback, self.extras = build_word_feedback(
                self.expected_text, self.transcript.text, self.context
            )
            self._notify()
        return appended

    async def _halt_capture(self, flush: bool = True) -> None:
        producer, self._producer = self._producer, None
        channel, self._channel = self._channel, None
        if producer is not None:
            try:
                await producer.stop()
            except Exception:
                self.logger.exception(f"Failed to stop {producer.mode} capture")
            self._stopped_at = time.monotonic()
        if channel is not None:
            channel.close()
        pump, self._pump_task = self._pump_task, None
        if pump is not None and pump is not asyncio.current_task():
            await pump
        if flush:
            self._flush_pending_frames()
        else:
            self._aggregator.reset()
        self.capture_mode = None

    def _session_audio(self) -> Optional[EncodedChunk]:
        if self._session_frames and self._session_sample_rate:
            return self.audio_processor.frames_to_chunk(self._session_frames, self._session_sample_rate)
        if self._session_chunks:
            return self.audio_processor.concatenate_chunks(self._session_chunks)
        return None

    async def _finalize(self) -> LiveSessionSummary:
        transcription = self.transcript.text
        latency = self.last_latency_ms

        try:
            audio = await asyncio.to_thread(self._session_audio)
            if audio is not None:
                self._set_status(PROCESSING)
                started = time.monotonic()
                full_text = await self._call_transcriber(audio, None, self.config.transcription_timeout_s * 2)
                latency = int((time.monotonic() - started) * 1000)
                if full_text and full_text.strip():
                    transcription = full_text.strip()
                    self._apply_transcript(transcription)
        except TranscriptionUnavailableError as e:
            self.logger.error(f"Full-session transcription unavailable: {e}")
            self.warning = FINALIZE_FAILURE_WARNING
        except asyncio.TimeoutError:
            self.logger.error("Full-session transcription timed out")
            self.warning = FINALIZE_FAILURE_WARNING
        except (TranscriptionError, AudioProcessingError) as e:
            self.logger.error(f"Full-session analysis failed: {e}")
            self.warning = FINALIZE_FAILURE_WARNING
        except Exception:
            self.logger.exception("Unexpected error during full-session analysis")
            self.warning = FINALIZE_FAILURE_WARNING

        summary = create_live_session_summary(
            transcription,
            self.expected_text,
            duration_seconds=self.elapsed_seconds,
            ayah_id=self.config.ayah_id or "live-session",
            analysis={"engine": self.transcriber.engine, "latency_ms": latency},
            dialect=self.config.dialect,
            locale_hint=self.config.locale_hint,
            substitution_threshold=self.config.substitution_threshold,
            registry=self.registry,
        )
        self.logger.info(
            f"Session finalized: overall={summary.feedback.overall_score} "
            f"accuracy={summary.feedback.accuracy} mistakes={len(summary.mistakes)}"
        )
        return summary
