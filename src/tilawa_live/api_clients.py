"""
API clients for transcription backends and Quran text.
"""

import time
import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urljoin

import requests

from .audio_processing import EncodedChunk
from .config import Settings
from .exceptions import (
    TRANSCRIPTION_UNAVAILABLE_MESSAGE,
    QuranTextError,
    TarteelTranscriptionError,
    TranscriptionError,
    TranscriptionUnavailableError,
)


LIVE_MODE = "live"

_TRANSCRIPTION_KEYS = ("transcription", "transcript", "text")
_NESTED_KEYS = ("data", "result")
_LATENCY_KEYS = ("latencyMs", "latency_ms")
_TRACKING_KEYS = ("recitationId", "trackingId", "jobId")


@dataclass
class TranscriptionResult:
    """Transcription text plus whatever metadata the backend returned."""
    transcription: str
    latency_ms: Optional[int] = None
    tracking_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AyahData:
    """Represents ayah data from AlQuran API."""
    surah_number: int
    ayah_number: int
    text: str
    words: List[str]


class Transcriber(ABC):
    """Turns one audio chunk into text."""

    engine = "on-device"

    @property
    def is_configured(self) -> bool:
        return True

    @abstractmethod
    def transcribe(self, chunk: EncodedChunk, mode: Optional[str] = LIVE_MODE) -> str:
        """
        Transcribe an audio chunk.

        Args:
            chunk: Encoded audio
            mode: "live" for streaming segments, None for a full session

        Returns:
            Transcribed text, possibly empty

        Raises:
            TranscriptionUnavailableError: backend is not configured
            TranscriptionError: transient failure for this chunk
        """

    def transcribe_detailed(
        self,
        chunk: EncodedChunk,
        mode: Optional[str] = LIVE_MODE,
        expected_text: Optional[str] = None,
        ayah_id: Optional[str] = None,
        duration_seconds: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TranscriptionResult:
        """Transcribe and wrap the text in a ``TranscriptionResult``."""
        started = time.monotonic()
        text = self.transcribe(chunk, mode)
        return TranscriptionResult(transcription=text or "", latency_ms=int((time.monotonic() - started) * 1000))


class CallableTranscriber(Transcriber):
    """Adapts a plain ``transcribe(chunk) -> str`` function."""

    def __init__(self, func: Callable[[EncodedChunk], str], engine: str = "on-device"):
        self.func = func
        self.engine = engine

    def transcribe(self, chunk: EncodedChunk, mode: Optional[str] = LIVE_MODE) -> str:
        return self.func(chunk) or ""


def extract_transcription(payload: Any) -> Optional[str]:
    """Find the transcription text in a backend response."""
    if isinstance(payload, str):
        return payload.strip() or None
    if isinstance(payload, list):
        for item in payload:
            text = extract_transcription(item)
            if text:
                return text
        return None
    if not isinstance(payload, dict):
        return None

    for key in _TRANSCRIPTION_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    for key in _NESTED_KEYS:
        text = extract_transcription(payload.get(key))
        if text:
            return text
    hypotheses = payload.get("hypotheses")
    if isinstance(hypotheses, list) and hypotheses:
        return extract_transcription(hypotheses[0])
    return None


def extract_latency(payload: Any) -> Optional[int]:
    if not isinstance(payload, dict):
        return None
    for source in (payload, payload.get("meta")):
        if not isinstance(source, dict):
            continue
        for key in _LATENCY_KEYS:
            value = source.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return int(value)
    return None


def extract_tracking_id(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    for key in _TRACKING_KEYS:
        value = payload.get(key)
        if value:
            return str(value)
    return None


def _error_message(payload: Any, default: str) -> str:
    if isinstance(payload, dict):
        for key in ("error", "message", "detail"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return default


def _parse_body(response: requests.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            return response.json()
        except ValueError:
            return {}
    return response.text


class TarteelTranscriptionClient(Transcriber):
    """Client for the Tarteel external transcription API."""

    engine = "tarteel"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transcribe_path: Optional[str] = None,
        org_id: Optional[str] = None,
        app_id: Optional[str] = None,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize Tarteel transcription client.

        Args:
            api_key: Tarteel API key; the client reports itself unconfigured without one
            base_url: API root, e.g. https://api.tarteel.ai/api/v1
            transcribe_path: Path of the transcription endpoint under base_url
            org_id: Optional organisation header
            app_id: Optional application header
            timeout: Request timeout in seconds
            session: requests session to reuse
        """
        self.api_key = api_key
        self.base_url = (base_url or "https://api.tarteel.ai/api/v1").rstrip("/") + "/"
        self.transcribe_path = (transcribe_path or "recitations/external-transcriptions").lstrip("/")
        self.org_id = org_id
        self.app_id = app_id
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TarteelTranscriptionClient":
        return cls(
            api_key=settings.tarteel_api_key,
            base_url=settings.tarteel_api_base_url,
            transcribe_path=settings.tarteel_transcribe_path,
            org_id=settings.tarteel_org_id,
            app_id=settings.tarteel_app_id,
            timeout=settings.transcription_timeout,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def endpoint(self) -> str:
        return urljoin(self.base_url, self.transcribe_path)

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-API-KEY": self.api_key or "",
        }
        if self.org_id:
            headers["X-Tarteel-Org"] = self.org_id
        if self.app_id:
            headers["X-Tarteel-App"] = self.app_id
        return headers

    def _build_payload(
        self,
        chunk: EncodedChunk,
        mode: Optional[str],
        expected_text: Optional[str],
        ayah_id: Optional[str],
        duration_seconds: Optional[float],
        metadata: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        if duration_seconds is None and chunk.duration_ms is not None:
            duration_seconds = chunk.duration_ms / 1000
        payload: Dict[str, Any] = {
            "audio": {
                "filename": chunk.filename,
                "mimeType": chunk.mime_type,
                "encoding": "base64",
                "data": base64.b64encode(chunk.data).decode("ascii"),
                "durationSeconds": duration_seconds,
            },
            "mode": mode,
            "metadata": dict(metadata or {}),
        }
        if expected_text:
            payload["expected_text"] = expected_text
            payload["expectedText"] = expected_text
        if ayah_id:
            payload["ayah_id"] = ayah_id
        return payload

    def transcribe_detailed(
        self,
        chunk: EncodedChunk,
        mode: Optional[str] = LIVE_MODE,
        expected_text: Optional[str] = None,
        ayah_id: Optional[str] = None,
        duration_seconds: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TranscriptionResult:
        """
        Send audio to Tarteel and parse the response.

        Args:
            chunk: Encoded audio
            mode: "live" or None for a full session
            expected_text: Reference text forwarded to the service
            ayah_id: Ayah identifier forwarded to the service
            duration_seconds: Audio duration, derived from the chunk when omitted
            metadata: Extra metadata forwarded to the service

        Returns:
            TranscriptionResult
        """
        if not self.is_configured:
            raise TranscriptionUnavailableError(TRANSCRIPTION_UNAVAILABLE_MESSAGE)

        payload = self._build_payload(chunk, mode, expected_text, ayah_id, duration_seconds, metadata)
        started = time.monotonic()
        try:
            response = self.session.post(self.endpoint, json=payload, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            self.logger.error(f"Network error accessing Tarteel API: {e}")
            raise TarteelTranscriptionError(f"Failed to reach Tarteel: {e}", status=502) from e

        body = _parse_body(response)
        if not response.ok:
            message = _error_message(body, f"Tarteel transcription failed with status {response.status_code}")
            self.logger.error(f"Tarteel API error {response.status_code}: {message}")
            raise TarteelTranscriptionError(message, status=response.status_code, payload=body)

        transcription = extract_transcription(body)
        if transcription is None:
            raise TarteelTranscriptionError(
                "Tarteel response did not include a transcription",
                status=502,
                payload=body,
            )

        latency = extract_latency(body)
        if latency is None:
            latency = int((time.monotonic() - started) * 1000)

        self.logger.debug(f"Tarteel returned {len(transcription.split())} words in {latency}ms")
        return TranscriptionResult(
            transcription=transcription,
            latency_ms=latency,
            tracking_id=extract_tracking_id(body),
            raw=body if isinstance(body, dict) else {},
        )

    def transcribe(self, chunk: EncodedChunk, mode: Optional[str] = LIVE_MODE) -> str:
        return self.transcribe_detailed(chunk, mode=mode).transcription


class RemoteTranscriptionClient(Transcriber):
    """Posts chunks to a running tilawa-live server's ``/transcribe`` endpoint."""

    engine = "tarteel"

    def __init__(self, base_url: str = "http://127.0.0.1:8000", timeout: float = 15.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logging.getLogger(__name__)

    def transcribe(self, chunk: EncodedChunk, mode: Optional[str] = LIVE_MODE) -> str:
        data = {"mode": mode} if mode else {}
        files = {"audio": (chunk.filename, chunk.data, chunk.mime_type)}
        try:
            response = self.session.post(
                urljoin(self.base_url, "transcribe"), data=data, files=files, timeout=self.timeout
            )
        except requests.RequestException as e:
            self.logger.error(f"Network error reaching transcription server: {e}")
            raise TranscriptionError(f"Failed to reach transcription server: {e}") from e

        body = _parse_body(response)
        if response.status_code == 503:
            raise TranscriptionUnavailableError(
                _error_message(body, TRANSCRIPTION_UNAVAILABLE_MESSAGE), payload=body
            )
        if not response.ok:
            message = _error_message(body, f"Live transcription failed with status {response.status_code}")
            raise TranscriptionError(message, status=response.status_code, payload=body)

        return extract_transcription(body) or ""


class AlQuranAPIClient:
    """Client for AlQuran Cloud API."""

    BASE_URL = "https://api.alquran.cloud/v1/"

    def __init__(self, edition: str = "quran-uthmani", session: Optional[requests.Session] = None):
        self.edition = edition
        self.session = session or requests.Session()
        self.logger = logging.getLogger(__name__)

    def get_ayah_data(self, surah_number: int, ayah_number: int) -> AyahData:
        """
        Get the text of one ayah.

        Args:
            surah_number: Surah number (1-114)
            ayah_number: Ayah number within the surah

        Returns:
            AyahData object containing the ayah text and its words
        """
        if not 1 <= surah_number <= 114:
            raise ValueError(f"Surah number must be between 1 and 114, got {surah_number}")

        try:
            response = self._make_request(f"ayah/{surah_number}:{ayah_number}/{self.edition}")
        except requests.RequestException as e:
            self.logger.error(f"Network error accessing AlQuran API: {e}")
            raise QuranTextError(f"Failed to fetch ayah data: {e}") from e

        if response.get("code") != 200:
            raise QuranTextError(f"API Error: {response.get('status', 'Unknown error')}")

        text = response["data"]["text"]
        return AyahData(
            surah_number=surah_number,
            ayah_number=ayah_number,
            text=text,
            words=text.split(),
        )

    def _make_request(self, endpoint: str) -> Dict:
        """Make a request to the AlQuran API."""
        url = urljoin(self.BASE_URL, endpoint)
        self.logger.debug(f"Making request to: {url}")

        response = self.session.get(url, timeout=10)
        response.raise_for_status()

        return response.json()
