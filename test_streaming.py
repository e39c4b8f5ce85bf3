#!/usr/bin/env python3
"""
Tests for the live recitation session coordinator and capture plumbing.
"""

import sys
import time
import asyncio
import threading
import unittest
from pathlib import Path
from unittest.mock import ANY, Mock, patch

import numpy as np

# Add the src directory to the Python path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from tilawa_live.alignment import AlignmentContext
from tilawa_live.api_clients import Transcriber
from tilawa_live.audio_processing import AudioFrame, AudioProcessor, EncodedChunk
from tilawa_live.capture import (
    CaptureFailure,
    ChunkProducer,
    FrameChannel,
    MicrophoneStreamCapture,
    RecorderCapture,
    load_sounddevice,
)
from tilawa_live.config import LiveRecitationConfig
from tilawa_live.exceptions import (
    TRANSCRIPTION_UNAVAILABLE_MESSAGE,
    AudioProcessingError,
    CaptureUnavailableError,
    MicrophonePermissionError,
    TranscriptionError,
    TranscriptionUnavailableError,
)
from tilawa_live.phonetics import PhoneticModelRegistry
from tilawa_live.streaming import (
    CAPTURE_UNSUPPORTED_MESSAGE,
    ERROR,
    ERROR_CAPTURE,
    ERROR_PERMISSION,
    ERROR_TRANSCRIPTION_UNAVAILABLE,
    FINALIZE_FAILURE_WARNING,
    IDLE,
    LISTENING,
    NO_EXPECTED_TEXT_MESSAGE,
    PERMISSION_DENIED,
    PERMISSION_DENIED_MESSAGE,
    REQUESTING_PERMISSION,
    SEGMENT_FAILURE_WARNING,
    ChunkAggregator,
    ChunkQueue,
    LiveRecitationSession,
    RunningTranscript,
    build_word_feedback,
)

IKHLAS = "قل هو الله أحد"
SAMPLE_RATE = 16000


class FakeProducer(ChunkProducer):
    """Capture strategy driven by the test instead of a microphone."""

    mode = "fake-stream"

    def __init__(self, supported=True, error=None, mode=None):
        super().__init__()
        self.supported = supported
        self.error = error
        if mode:
            self.mode = mode
        self.channel = None
        self.start_calls = 0
        self.stop_calls = 0

    def is_supported(self):
        return self.supported

    async def start(self, channel):
        self.start_calls += 1
        if self.error is not None:
            raise self.error
        self.channel = channel

    async def stop(self):
        self.stop_calls += 1

    def send_frame(self, samples=1600, sample_rate=SAMPLE_RATE):
        self.channel.publish(AudioFrame(samples=np.zeros(samples, dtype=np.float32), sample_rate=sample_rate))


class ScriptedTranscriber(Transcriber):
    """Returns scripted live results and records how it was called."""

    def __init__(self, responses=None, full_text=None, delay=0.0, gate=None):
        self.responses = list(responses or [])
        self.full_text = full_text
        self.delay = delay
        self.gate = gate
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def transcribe(self, chunk, mode="live"):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.calls.append((mode, chunk))
        try:
            if self.gate is not None:
                self.gate.wait(timeout=2)
            if self.delay:
                time.sleep(self.delay)
            if mode is None:
                if isinstance(self.full_text, Exception):
                    raise self.full_text
                return self.full_text or ""
            if not self.responses:
                return ""
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        finally:
            with self._lock:
                self.in_flight -= 1


async def wait_until(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.01)


class SessionTestCase(unittest.IsolatedAsyncioTestCase):
    def make_session(self, transcriber=None, producers=None, expected_text=IKHLAS, **config):
        options = dict(chunk_duration_ms=100, dialect="standard", finalize_on_stop=False)
        options.update(config)
        self.transcriber = transcriber or ScriptedTranscriber()
        self.producers = producers if producers is not None else [FakeProducer()]
        self.session = LiveRecitationSession(
            expected_text,
            self.transcriber,
            config=LiveRecitationConfig(**options),
            producers=self.producers,
        )
        return self.session

    async def asyncTearDown(self):
        session = getattr(self, "session", None)
        if session is not None:
            await session.close()


class TestSessionLifecycle(SessionTestCase):
    async def test_start_and_stop(self):
        statuses = []
        session = self.make_session()
        session.on_update = lambda s: statuses.append(s.status)

        self.assertTrue(await session.start())
        self.assertEqual(session.status, LISTENING)
        self.assertTrue(session.is_capturing)
        self.assertEqual(session.capture_mode, "fake-stream")
        self.assertEqual(statuses[:2], [REQUESTING_PERMISSION, LISTENING])

        self.assertIsNone(await session.stop())
        self.assertEqual(session.status, IDLE)
        self.assertFalse(session.is_capturing)
        self.assertEqual(self.producers[0].stop_calls, 1)
        self.assertIsNotNone(session.elapsed_seconds)

    async def test_start_twice_is_noop(self):
        session = self.make_session()
        self.assertTrue(await session.start())
        self.assertTrue(await session.start())
        self.assertEqual(self.producers[0].start_calls, 1)

    async def test_missing_expected_text(self):
        session = self.make_session(expected_text="   ")
        self.assertFalse(await session.start())
        self.assertEqual(session.status, ERROR)
        self.assertEqual(session.error, NO_EXPECTED_TEXT_MESSAGE)
        self.assertEqual(self.producers[0].start_calls, 0)

    async def test_falls_back_to_next_producer(self):
        producers = [
            FakeProducer(supported=False, mode="unsupported"),
            FakeProducer(error=MicrophonePermissionError("denied"), mode="denied"),
            FakeProducer(mode="recorder"),
        ]
        session = self.make_session(producers=producers)

        self.assertTrue(await session.start())
        self.assertEqual(session.capture_mode, "recorder")
        self.assertEqual(producers[0].start_calls, 0)
        self.assertEqual(producers[1].start_calls, 1)
        self.assertIsNone(session.error)

    async def test_permission_denied(self):
        session = self.make_session(producers=[FakeProducer(error=MicrophonePermissionError("denied"))])
        self.assertFalse(await session.start())
        self.assertEqual(session.status, PERMISSION_DENIED)
        self.assertEqual(session.error_kind, ERROR_PERMISSION)
        self.assertEqual(session.error, PERMISSION_DENIED_MESSAGE)

    async def test_no_capture_backend(self):
        session = self.make_session(producers=[FakeProducer(error=CaptureUnavailableError("No input device"))])
        self.assertFalse(await session.start())
        self.assertEqual(session.status, ERROR)
        self.assertEqual(session.error_kind, ERROR_CAPTURE)
        self.assertEqual(session.error, "No input device")

    async def test_nothing_supported(self):
        session = self.make_session(producers=[FakeProducer(supported=False)])
        self.assertFalse(await session.start())
        self.assertEqual(session.error, CAPTURE_UNSUPPORTED_MESSAGE)

    async def test_close_releases_microphone(self):
        session = self.make_session()
        await session.start()
        await session.close()
        self.assertEqual(self.producers[0].stop_calls, 1)
        self.assertFalse(session.is_capturing)
        self.assertEqual(session.status, IDLE)

    async def test_context_manager_closes(self):
        producer = FakeProducer()
        async with LiveRecitationSession(IKHLAS, ScriptedTranscriber(), producers=[producer]) as session:
            await session.start()
        self.assertEqual(producer.stop_calls, 1)

    async def test_volume_follows_producer(self):
        session = self.make_session()
        self.assertEqual(session.volume, 0.0)
        await session.start()
        self.producers[0].volume = 0.3
        self.assertEqual(session.volume, 0.3)

    async def test_listener_errors_are_contained(self):
        session = self.make_session()

        def broken_listener(_):
            raise RuntimeError("listener failed")

        session.on_update = broken_listener
        self.assertTrue(await session.start())

    async def test_capture_failure_stops_session(self):
        session = self.make_session()
        await session.start()
        self.producers[0].channel.publish(CaptureFailure("Recording failed. Please try again."))

        await wait_until(lambda: self.producers[0].stop_calls == 1)
        self.assertEqual(session.status, ERROR)
        self.assertEqual(session.error_kind, ERROR_CAPTURE)
        self.assertEqual(session.error, "Recording failed. Please try again.")


class TestChunkProcessing(SessionTestCase):
    async def test_chunks_transcribed_one_at_a_time_in_order(self):
        transcriber = ScriptedTranscriber(["قل", "هو", "الله", "أحد"], delay=0.03)
        session = self.make_session(transcriber)
        await session.start()

        for _ in range(4):
            self.producers[0].send_frame()
        await wait_until(lambda: len(transcriber.calls) == 4)
        await session.drain()

        self.assertEqual(transcriber.max_in_flight, 1)
        self.assertEqual([mode for mode, _ in transcriber.calls], ["live"] * 4)
        self.assertEqual(session.transcript_text, IKHLAS)
        self.assertEqual([item.status for item in session.feedback], ["correct"] * 4)
        self.assertEqual(session.dropped_chunks, 0)
        self.assertEqual(session.status, LISTENING)

    async def test_chunks_are_wav_at_target_rate(self):
        transcriber = ScriptedTranscriber(["قل"])
        session = self.make_session(transcriber)
        await session.start()
        self.producers[0].send_frame(samples=4800, sample_rate=48000)
        await wait_until(lambda: len(transcriber.calls) == 1)

        chunk = transcriber.calls[0][1]
        self.assertTrue(chunk.is_wav)
        self.assertEqual(chunk.sample_rate, 16000)
        self.assertAlmostEqual(chunk.duration_ms, 100.0)
        self.assertEqual(chunk.data[:4], b"RIFF")

    async def test_backlog_drops_oldest(self):
        gate = threading.Event()
        transcriber = ScriptedTranscriber(gate=gate)
        session = self.make_session(transcriber, max_queue_depth=2)
        await session.start()

        for _ in range(8):
            self.producers[0].send_frame()
        await wait_until(lambda: session.dropped_chunks > 0)
        self.assertLessEqual(session.queued_chunks, 2)

        gate.set()
        await wait_until(lambda: len(transcriber.calls) + session.dropped_chunks == 8)
        await session.drain()
        self.assertEqual(transcriber.max_in_flight, 1)
        self.assertEqual(session.queued_chunks, 0)

    async def test_transcription_unavailable_stops_session(self):
        transcriber = ScriptedTranscriber([TranscriptionUnavailableError()], delay=0.05)
        session = self.make_session(transcriber)
        await session.start()

        for _ in range(3):
            self.producers[0].send_frame()
        await wait_until(lambda: self.producers[0].stop_calls == 1)
        await session.drain()

        self.assertEqual(session.status, ERROR)
        self.assertEqual(session.error_kind, ERROR_TRANSCRIPTION_UNAVAILABLE)
        self.assertEqual(session.error, TRANSCRIPTION_UNAVAILABLE_MESSAGE)
        self.assertEqual(session.queued_chunks, 0)
        self.assertEqual(len(transcriber.calls), 1)
        self.assertFalse(session.is_capturing)

    async def test_transient_error_keeps_recording(self):
        transcriber = ScriptedTranscriber([TranscriptionError("upstream hiccup", status=502), "قل هو"])
        session = self.make_session(transcriber)
        await session.start()

        self.producers[0].send_frame()
        self.producers[0].send_frame()
        await wait_until(lambda: len(transcriber.calls) == 2)
        await session.drain()

        self.assertEqual(session.warning, SEGMENT_FAILURE_WARNING)
        self.assertIsNone(session.error)
        self.assertEqual(session.status, LISTENING)
        self.assertEqual(session.transcript_text, "قل هو")

        session.dismiss_warning()
        self.assertIsNone(session.warning)

    async def test_timeout_is_transient(self):
        transcriber = ScriptedTranscriber(["قل"], delay=0.3)
        session = self.make_session(transcriber, transcription_timeout_s=0.05)
        await session.start()

        self.producers[0].send_frame()
        await wait_until(lambda: session.warning is not None)
        self.assertEqual(session.warning, SEGMENT_FAILURE_WARNING)
        self.assertEqual(session.status, LISTENING)

    async def test_timed_out_request_finishes_before_next_chunk(self):
        transcriber = ScriptedTranscriber(["قل", "هو", "الله"], delay=0.4)
        session = self.make_session(transcriber, transcription_timeout_s=0.1)
        await session.start()

        for _ in range(3):
            self.producers[0].send_frame()
            await asyncio.sleep(0.15)
        await wait_until(lambda: len(transcriber.calls) == 3)
        await session.drain()

        self.assertEqual(transcriber.max_in_flight, 1)
        self.assertEqual(session.warning, SEGMENT_FAILURE_WARNING)
        self.assertEqual(session.transcript_text, "")
        self.assertEqual(session.status, LISTENING)

    async def test_late_unavailable_signal_is_terminal(self):
        transcriber = ScriptedTranscriber([TranscriptionUnavailableError()], delay=0.3)
        session = self.make_session(transcriber, transcription_timeout_s=0.05)
        await session.start()

        self.producers[0].send_frame()
        await wait_until(lambda: session.status == ERROR)
        self.assertEqual(session.error_kind, ERROR_TRANSCRIPTION_UNAVAILABLE)
        self.assertFalse(session.is_capturing)

    async def test_stop_flushes_partial_chunk(self):
        transcriber = ScriptedTranscriber(["قل هو"])
        session = self.make_session(transcriber)
        await session.start()

        self.producers[0].send_frame(samples=800)
        await session.stop(finalize=False)

        self.assertEqual(len(transcriber.calls), 1)
        self.assertAlmostEqual(transcriber.calls[0][1].duration_ms, 50.0)
        self.assertEqual(session.transcript_text, "قل هو")
        self.assertEqual(session.status, IDLE)

    async def test_close_abandons_partial_chunk(self):
        transcriber = ScriptedTranscriber(["قل هو"])
        session = self.make_session(transcriber)
        await session.start()

        self.producers[0].send_frame(samples=800)
        await session.close()
        self.assertEqual(transcriber.calls, [])


class TestFinalization(SessionTestCase):
    async def test_stop_summarizes_full_session(self):
        transcriber = ScriptedTranscriber(["قل هو"], full_text=IKHLAS)
        session = self.make_session(transcriber, finalize_on_stop=True)
        await session.start()

        self.producers[0].send_frame()
        await wait_until(lambda: len(transcriber.calls) == 1)
        summary = await session.stop()

        self.assertIsNotNone(summary)
        self.assertIs(session.summary, summary)
        self.assertEqual(summary.transcription, IKHLAS)
        self.assertEqual(summary.feedback.accuracy, 100)
        self.assertEqual(summary.ayah_id, "live-session")
        self.assertEqual(summary.analysis.engine, "on-device")
        self.assertIsNotNone(summary.duration)
        self.assertEqual(transcriber.calls[-1][0], None)
        self.assertTrue(transcriber.calls[-1][1].is_wav)
        self.assertEqual(session.transcript_text, IKHLAS)
        self.assertEqual(session.status, IDLE)

    async def test_failed_finalization_uses_live_transcript(self):
        transcriber = ScriptedTranscriber(["قل هو"], full_text=TranscriptionError("busy"))
        session = self.make_session(transcriber, finalize_on_stop=True, ayah_id="112:1")
        await session.start()

        self.producers[0].send_frame()
        await wait_until(lambda: len(transcriber.calls) == 1)
        summary = await session.stop()

        self.assertEqual(session.warning, FINALIZE_FAILURE_WARNING)
        self.assertEqual(summary.transcription, "قل هو")
        self.assertEqual(summary.ayah_id, "112:1")
        self.assertEqual(summary.feedback.accuracy, 50)

    async def test_stop_without_start(self):
        session = self.make_session(finalize_on_stop=True)
        self.assertIsNone(await session.stop())


class TestRecognizerResults(SessionTestCase):
    async def test_interim_and_final_results(self):
        session = self.make_session()

        self.assertEqual(session.ingest_recognizer_result("قل هو", is_final=False), [])
        self.assertEqual(session.interim_transcript, "قل هو")
        self.assertEqual(session.transcript_text, "")

        self.assertEqual(session.ingest_recognizer_result("قل هو"), ["قل", "هو"])
        self.assertEqual(session.interim_transcript, "")
        self.assertEqual(
            [item.status for item in session.feedback],
            ["correct", "correct", "missing", "missing"],
        )


class TestRunningTranscript(unittest.TestCase):
    def test_overlap_is_not_duplicated(self):
        transcript = RunningTranscript()
        self.assertEqual(transcript.merge("قل هو الله"), ["قل", "هو", "الله"])
        self.assertEqual(transcript.merge("هو الله أحد"), ["أحد"])
        self.assertEqual(transcript.text, IKHLAS)

    def test_overlap_ignores_diacritics(self):
        transcript = RunningTranscript()
        transcript.merge("بسم الله")
        self.assertEqual(transcript.merge("اللَّهِ الرحمن"), ["الرحمن"])
        self.assertEqual(transcript.text, "بسم الله الرحمن")

    def test_non_arabic_tokens_are_skipped(self):
        transcript = RunningTranscript()
        self.assertEqual(transcript.merge("... !!"), [])
        self.assertEqual(transcript.merge(""), [])
        self.assertEqual(len(transcript), 0)

    def test_no_overlap_appends_everything(self):
        transcript = RunningTranscript()
        transcript.merge("قل هو")
        self.assertEqual(transcript.merge("الله أحد"), ["الله", "أحد"])
        transcript.reset()
        self.assertEqual(transcript.text, "")


class TestChunkQueue(unittest.TestCase):
    def test_drops_oldest(self):
        chunks = [EncodedChunk(data=bytes([i]), mime_type="audio/wav") for i in range(3)]
        chunk_queue = ChunkQueue(max_depth=2)

        self.assertIsNone(chunk_queue.push(chunks[0]))
        self.assertIsNone(chunk_queue.push(chunks[1]))
        self.assertIs(chunk_queue.push(chunks[2]), chunks[0])
        self.assertEqual(chunk_queue.dropped, 1)
        self.assertEqual(len(chunk_queue), 2)

        self.assertIs(chunk_queue.pop(), chunks[1])
        self.assertIs(chunk_queue.pop(), chunks[2])
        self.assertIsNone(chunk_queue.pop())

    def test_clear(self):
        chunk_queue = ChunkQueue()
        chunk_queue.push(EncodedChunk(data=b"x", mime_type="audio/wav"))
        self.assertEqual(chunk_queue.clear(), 1)
        self.assertEqual(len(chunk_queue), 0)


class TestChunkAggregator(unittest.TestCase):
    def test_emits_full_chunks(self):
        aggregator = ChunkAggregator(100, AudioProcessor(SAMPLE_RATE))
        frame = AudioFrame(samples=np.zeros(800, dtype=np.float32), sample_rate=SAMPLE_RATE)

        self.assertIsNone(aggregator.add(frame))
        self.assertAlmostEqual(aggregator.buffered_ms, 50.0)

        chunk = aggregator.add(frame)
        self.assertIsNotNone(chunk)
        self.assertAlmostEqual(chunk.duration_ms, 100.0)
        self.assertEqual(chunk.mime_type, "audio/wav")
        self.assertEqual(aggregator.buffered_ms, 0.0)

    def test_flush(self):
        aggregator = ChunkAggregator(100, AudioProcessor(SAMPLE_RATE))
        self.assertIsNone(aggregator.flush())
        aggregator.add(AudioFrame(samples=np.zeros(160, dtype=np.float32), sample_rate=SAMPLE_RATE))
        chunk = aggregator.flush()
        self.assertAlmostEqual(chunk.duration_ms, 10.0)
        self.assertIsNone(aggregator.flush())


class TestWordFeedback(unittest.TestCase):
    def setUp(self):
        self.context = AlignmentContext(PhoneticModelRegistry().get("standard"))

    def test_partial_transcript(self):
        feedback, extras = build_word_feedback(IKHLAS, "قل هو الله", self.context)
        self.assertEqual([item.status for item in feedback], ["correct", "correct", "correct", "missing"])
        self.assertIsNone(feedback[3].detected)
        self.assertEqual(extras, [])

    def test_extra_words(self):
        feedback, extras = build_word_feedback(IKHLAS, "قل هو الله أحد الصمد", self.context)
        self.assertEqual(len(feedback), 4)
        self.assertEqual(extras, ["الصمد"])


class TestFrameChannel(unittest.IsolatedAsyncioTestCase):
    async def test_drops_oldest_and_closes_after_pending(self):
        channel = FrameChannel(asyncio.get_running_loop(), max_depth=2)
        for item in ("a", "b", "c"):
            channel.publish(item)
        await asyncio.sleep(0.01)

        self.assertEqual(len(channel), 2)
        self.assertEqual(channel.dropped, 1)

        channel.close()
        self.assertEqual(await channel.get(), "b")
        self.assertEqual(await channel.get(), "c")
        self.assertIsNone(await channel.get())
        self.assertTrue(channel.closed)

    async def test_publish_from_thread(self):
        channel = FrameChannel(asyncio.get_running_loop())
        thread = threading.Thread(target=channel.publish, args=("frame",))
        thread.start()
        self.assertEqual(await asyncio.wait_for(channel.get(), timeout=1), "frame")
        thread.join()


class TestRecorderCapture(unittest.TestCase):
    def make_recorder(self):
        processor = Mock()
        processor.encode_compressed.side_effect = lambda samples, sample_rate, container, codec: EncodedChunk(
            data=b"OggS", mime_type="audio/ogg", duration_ms=len(samples) / sample_rate * 1000
        )
        return RecorderCapture(timeslice_ms=100, sample_rate=SAMPLE_RATE, audio_processor=processor)

    def test_worker_emits_timeslices_and_remainder(self):
        recorder = self.make_recorder()
        channel = Mock()
        for _ in range(3):
            recorder._blocks.put(np.zeros(1000, dtype=np.float32))
        recorder._stop_event.set()

        recorder._run_worker(channel)

        published = [call.args[0] for call in channel.publish.call_args_list]
        self.assertEqual([chunk.duration_ms for chunk in published], [125.0, 62.5])
        recorder.audio_processor.encode_compressed.assert_called_with(
            ANY, SAMPLE_RATE, "ogg", "libopus"
        )

    def test_encoding_failure_is_published(self):
        recorder = self.make_recorder()
        recorder.audio_processor.encode_compressed.side_effect = AudioProcessingError("ffmpeg missing")
        channel = Mock()
        recorder._blocks.put(np.zeros(2000, dtype=np.float32))
        recorder._stop_event.set()

        recorder._run_worker(channel)

        failure = channel.publish.call_args.args[0]
        self.assertIsInstance(failure, CaptureFailure)
        self.assertEqual(failure.message, "Recording failed. Please try again.")

    def test_timeslice_samples(self):
        self.assertEqual(RecorderCapture(timeslice_ms=4000, sample_rate=48000, audio_processor=Mock()).timeslice_samples, 192000)


class PortAudioError(Exception):
    pass


class TestInputStreams(unittest.IsolatedAsyncioTestCase):
    def make_backend(self, start_error=None):
        backend = Mock()
        backend.PortAudioError = PortAudioError
        backend.query_devices.return_value = {"default_samplerate": 44100.0}
        if start_error is not None:
            backend.InputStream.return_value.start.side_effect = start_error
        return backend

    async def test_microphone_stream_closed_when_start_fails(self):
        backend = self.make_backend(PortAudioError("Device unavailable"))
        capture = MicrophoneStreamCapture(sample_rate=SAMPLE_RATE)
        with patch("tilawa_live.capture.load_sounddevice", return_value=backend):
            with self.assertRaises(MicrophonePermissionError):
                await capture.start(Mock())

        backend.InputStream.return_value.close.assert_called_once()
        self.assertIsNone(capture._stream)

    async def test_recorder_closed_when_start_fails(self):
        backend = self.make_backend(PortAudioError("Device unavailable"))
        recorder = RecorderCapture(sample_rate=SAMPLE_RATE, audio_processor=Mock())
        with patch("tilawa_live.capture.load_sounddevice", return_value=backend):
            with self.assertRaises(MicrophonePermissionError):
                await recorder.start(Mock())

        backend.InputStream.return_value.close.assert_called_once()
        self.assertIsNone(recorder._stream)
        self.assertIsNone(recorder._worker)

    async def test_microphone_stream_uses_device_rate(self):
        backend = self.make_backend()
        channel = Mock()
        capture = MicrophoneStreamCapture()
        with patch("tilawa_live.capture.load_sounddevice", return_value=backend):
            await capture.start(channel)

        kwargs = backend.InputStream.call_args.kwargs
        self.assertEqual(kwargs["samplerate"], 44100)
        kwargs["callback"](np.full((4, 1), 0.5, dtype=np.float32), 4, None, None)
        frame = channel.publish.call_args.args[0]
        self.assertEqual(frame.sample_rate, 44100)
        self.assertEqual(len(frame.samples), 4)

        await capture.stop()
        backend.InputStream.return_value.close.assert_called_once()


class TestSoundDeviceLoading(unittest.TestCase):
    def test_missing_backend(self):
        with patch.dict(sys.modules, {"sounddevice": None}):
            with self.assertRaises(CaptureUnavailableError):
                load_sounddevice()
            self.assertFalse(MicrophoneStreamCapture().is_supported())
            self.assertFalse(RecorderCapture(audio_processor=Mock()).is_supported())


if __name__ == "__main__":
    unittest.main()
