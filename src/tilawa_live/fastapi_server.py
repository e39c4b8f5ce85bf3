"""
FastAPI backend for live recitation analysis.
"""

import logging
from typing import List, Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import uvicorn

from .api_clients import LIVE_MODE, AlQuranAPIClient, TarteelTranscriptionClient, Transcriber
from .audio_processing import EncodedChunk
from .config import settings
from .exceptions import (
    TRANSCRIPTION_UNAVAILABLE_MESSAGE,
    QuranTextError,
    TranscriptionError,
    TranscriptionUnavailableError,
)
from .phonetics import PhoneticModelRegistry, is_dialect_code, list_dialects
from .session_summary import LiveSessionSummary, create_live_session_summary


# Pydantic models for API requests/responses
class AnalyzeRequest(BaseModel):
    """Request model for text-only recitation analysis."""
    transcription: str = Field("", description="Detected recitation text")
    expected_text: str = Field(..., description="Reference ayah text")
    duration_seconds: Optional[float] = Field(None, ge=0)
    ayah_id: Optional[str] = None
    engine: Optional[str] = Field(None, description="tarteel, nvidia or on-device")
    latency_ms: Optional[int] = Field(None, ge=0)
    dialect: Optional[str] = Field("auto", description="Dialect code or 'auto'")
    locale_hint: Optional[str] = None
    substitution_threshold: Optional[float] = None


class SimilarityBreakdownResponse(BaseModel):
    combined: float
    text: float
    phonetic: float


class MistakeResponse(BaseModel):
    index: int
    type: str
    confidence: int
    categories: List[str]
    word: Optional[str] = None
    correct: Optional[str] = None
    similarity: Optional[float] = None
    similarity_breakdown: Optional[SimilarityBreakdownResponse] = None


class MistakeCategoryResponse(BaseModel):
    category: str
    label: str
    description: str
    count: int
    indices: List[int]


class AnalysisResponse(BaseModel):
    engine: str
    stack: List[str]
    description: str
    latency_ms: Optional[int] = None


class ErrorDetailResponse(BaseModel):
    index: int
    type: str
    message: str
    word: Optional[str] = None
    correct: Optional[str] = None
    categories: List[str] = []
    confidence: Optional[int] = None


class FeedbackResponse(BaseModel):
    overall_score: int
    accuracy: int
    timing_score: int
    fluency_score: int
    feedback: str
    errors: List[ErrorDetailResponse]


class MistakeConfidenceResponse(BaseModel):
    index: int
    type: str
    category: str
    confidence: int


class AlignmentConfidenceResponse(BaseModel):
    index: int
    type: str
    confidence: int
    expected: Optional[str] = None
    detected: Optional[str] = None


class ConfidenceResponse(BaseModel):
    overall: int
    mistakes: List[MistakeConfidenceResponse]
    alignment: List[AlignmentConfidenceResponse]


class DialectInsightResponse(BaseModel):
    code: str
    label: str
    description: str
    source: str
    weight: float
    detection_confidence: int
    reasons: List[str]


class WordTimingResponse(BaseModel):
    word: str
    start: int
    end: int


class SessionSummaryResponse(BaseModel):
    """Response model for a scored recitation."""
    transcription: str
    expected_text: str
    mistakes: List[MistakeResponse]
    mistake_breakdown: List[MistakeCategoryResponse]
    analysis: AnalysisResponse
    feedback: FeedbackResponse
    confidence: ConfidenceResponse
    dialect: DialectInsightResponse
    hasanat_points: int
    arabic_letter_count: int
    words: List[WordTimingResponse]
    duration: Optional[float] = None
    ayah_id: Optional[str] = None


class LiveTranscriptionResponse(BaseModel):
    transcription: str
    latency_ms: Optional[int] = None


class TranscriptionResponse(BaseModel):
    transcription: str


class DialectResponse(BaseModel):
    code: str
    label: str
    description: str
    weight: float


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    message: str
    transcription_configured: bool


# Initialize FastAPI app
app = FastAPI(
    title="Live Recitation Analysis API",
    description="Transcribe recitation audio and score it against the expected ayah text",
    version="1.0.0"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Shared service instances
registry = PhoneticModelRegistry()
transcriber: Optional[Transcriber] = None
alquran_client: Optional[AlQuranAPIClient] = None
logger = logging.getLogger(__name__)


@app.on_event("startup")
async def startup_event():
    """Create the transcription and Quran text clients."""
    global transcriber, alquran_client
    transcriber = TarteelTranscriptionClient.from_settings(settings)
    alquran_client = AlQuranAPIClient()
    if transcriber.is_configured:
        logger.info("Tarteel transcription client initialized")
    else:
        logger.warning("TARTEEL_API_KEY not found. /transcribe will answer 503.")


def summary_response(summary: LiveSessionSummary) -> SessionSummaryResponse:
    return SessionSummaryResponse.model_validate(summary.to_dict())


def _dialect_or_auto(value: Optional[str]) -> str:
    return value if is_dialect_code(value) else "auto"


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    configured = transcriber is not None and transcriber.is_configured
    return HealthResponse(
        status="healthy",
        message="Live recitation analysis API is running",
        transcription_configured=configured
    )


@app.get("/dialects", response_model=List[DialectResponse])
async def get_dialects():
    """List the supported dialect models."""
    return [DialectResponse(**item) for item in list_dialects()]


@app.post("/analyze", response_model=SessionSummaryResponse)
async def analyze_recitation(request: AnalyzeRequest):
    """
    Score an already transcribed recitation.

    No audio is involved; the same inputs always give the same summary.
    """
    summary = create_live_session_summary(
        request.transcription,
        request.expected_text,
        duration_seconds=request.duration_seconds,
        ayah_id=request.ayah_id,
        analysis={"engine": request.engine, "latency_ms": request.latency_ms},
        dialect=_dialect_or_auto(request.dialect),
        locale_hint=request.locale_hint,
        substitution_threshold=request.substitution_threshold,
        registry=registry,
    )
    return summary_response(summary)


@app.post("/transcribe")
async def transcribe_recitation(
    audio: Optional[UploadFile] = File(None, description="Recitation audio chunk or full session"),
    mode: Optional[str] = Form(None, description="'live' for streaming chunks"),
    expected_text: Optional[str] = Form(None),
    ayah_id: Optional[str] = Form(None),
    dialect: Optional[str] = Form(None),
    locale: Optional[str] = Form(None),
    substitution_threshold: Optional[float] = Form(None),
    duration_seconds: Optional[float] = Form(None, ge=0),
):
    """
    Transcribe recitation audio.

    In live mode only the transcription is returned. When expected text is
    supplied the transcription is scored and a full session summary returned.
    """
    if audio is None:
        raise HTTPException(status_code=400, detail="Missing audio file")

    content_type = audio.content_type or "application/octet-stream"
    if not (content_type.startswith("audio/") or content_type.startswith("video/webm")
            or content_type == "application/octet-stream"):
        raise HTTPException(status_code=400, detail="Invalid audio file format")

    data = await audio.read()
    if not data:
        raise HTTPException(status_code=400, detail="Audio file is empty")
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(status_code=413, detail="Audio file is too large")

    if transcriber is None or not transcriber.is_configured:
        raise HTTPException(status_code=503, detail=TRANSCRIPTION_UNAVAILABLE_MESSAGE)

    if content_type == "application/octet-stream":
        content_type = "audio/wav"
    chunk = EncodedChunk(
        data=data,
        mime_type=content_type,
        duration_ms=duration_seconds * 1000 if duration_seconds is not None else None,
    )
    live = mode == LIVE_MODE

    try:
        result = await run_in_threadpool(
            transcriber.transcribe_detailed,
            chunk,
            LIVE_MODE if live else None,
            None if live else expected_text,
            ayah_id,
            duration_seconds,
        )
    except TranscriptionUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except TranscriptionError as e:
        logger.error(f"Transcription failed: {e}")
        raise HTTPException(status_code=e.status or 502, detail=str(e))
    except Exception as e:
        logger.error(f"Error processing recitation audio: {e}")
        raise HTTPException(status_code=500, detail=f"Processing failed: {str(e)}")

    if live:
        return LiveTranscriptionResponse(transcription=result.transcription, latency_ms=result.latency_ms)

    if expected_text and expected_text.strip():
        summary = create_live_session_summary(
            result.transcription,
            expected_text,
            duration_seconds=duration_seconds,
            ayah_id=ayah_id,
            analysis={"engine": "tarteel", "latency_ms": result.latency_ms},
            dialect=_dialect_or_auto(dialect),
            locale_hint=locale,
            substitution_threshold=substitution_threshold,
            registry=registry,
        )
        return summary_response(summary)

    return TranscriptionResponse(transcription=result.transcription)


@app.get("/ayah-info/{surah_number}/{ayah_number}")
async def get_ayah_info(surah_number: int, ayah_number: int):
    """
    Get the reference text of a specific ayah.

    Returns the ayah text and word count for use as expected text.
    """
    if alquran_client is None:
        raise HTTPException(status_code=503, detail="Quran text client not initialized")
    if not 1 <= surah_number <= 114 or ayah_number < 1:
        raise HTTPException(status_code=404, detail="Ayah not found")

    try:
        ayah_data = await run_in_threadpool(alquran_client.get_ayah_data, surah_number, ayah_number)
    except QuranTextError as e:
        logger.error(f"Error getting ayah info: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to get ayah info: {str(e)}")

    return {
        "surah_number": surah_number,
        "ayah_number": ayah_number,
        "ayah_id": f"{surah_number}:{ayah_number}",
        "text": ayah_data.text,
        "words": ayah_data.words,
        "word_count": len(ayah_data.words)
    }


# Development server function
def run_server(host: Optional[str] = None, port: Optional[int] = None, reload: bool = False):
    """Run the FastAPI server."""
    uvicorn.run(
        "tilawa_live.fastapi_server:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level, format='%(asctime)s - %(levelname)s - %(message)s')
    run_server(reload=True)
