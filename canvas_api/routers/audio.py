"""
Audio router
- POST /api/process-audio

Workshop recording (base64) -> Groq Whisper transcript -> OpenRouter
extraction of the workflows mentioned in it.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from ..config import Settings, get_settings
from ..errors import ApiError, BadRequestError, GatewayTimeoutError, ServerMisconfiguredError
from ..llm.client import LLMClient, LLMError, get_groq_client, get_openrouter_client
from ..middleware.rate_limiter import RateLimit, get_rate_limit
from ..middleware.timeout import TimeoutPolicy, request_time_remaining
from ..middleware.validation import StringRule, ValidatedBody
from ..schemas import AudioResponse, ErrorResponse, RateLimitErrorResponse, ValidationErrorResponse
from ..services import extraction_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["audio"])

PROCESS_AUDIO_PATH = "/api/process-audio"

TIMEOUTS = {
    PROCESS_AUDIO_PATH: TimeoutPolicy(
        seconds=55,
        message="L'elaborazione dell'audio ha richiesto troppo tempo. Prova con una registrazione più breve.",
        name="process-audio",
    ),
}

# 25MB of audio is about 33.4MB of base64
MAX_BODY_BYTES = 35 * 1024 * 1024

# Budget the extraction step needs after transcription
MIN_EXTRACTION_SECONDS = 10.0

AUDIO_SCHEMA = {
    "audio": StringRule(required=True, sanitize=False, message="Nessun dato audio fornito"),
    "filename": StringRule(max_length=255),
}


async def require_audio_providers(
    groq: LLMClient = Depends(get_groq_client),
    openrouter: LLMClient = Depends(get_openrouter_client),
) -> None:
    """Both provider keys must be set before the upload is even parsed"""
    for client in (groq, openrouter):
        if not client.configured:
            logger.error(f"{client.name} API key not configured")
            raise ServerMisconfiguredError(details=f"{client.name.upper()}_API_KEY missing")


@router.post(
    "/process-audio",
    response_model=AudioResponse,
    responses={
        400: {"model": ValidationErrorResponse, "description": "Invalid or oversized audio"},
        429: {"model": RateLimitErrorResponse, "description": "Rate limit exceeded"},
        500: {"model": ErrorResponse, "description": "Processing failed"},
        504: {"model": ErrorResponse, "description": "Request timeout"},
    },
    summary="Extract workflows from a workshop recording",
)
async def process_audio(
    request: Request,
    _providers=Depends(require_audio_providers),
    body: Dict[str, Any] = Depends(ValidatedBody(AUDIO_SCHEMA, max_bytes=MAX_BODY_BYTES)),
    _limit=Depends(RateLimit(get_rate_limit("ai", "audio"), "ai.audio")),
    groq: LLMClient = Depends(get_groq_client),
    openrouter: LLMClient = Depends(get_openrouter_client),
    settings: Settings = Depends(get_settings),
):
    try:
        audio = extraction_service.decode_audio(body["audio"])
    except extraction_service.AudioDecodeError as e:
        raise BadRequestError("Audio non valido: codifica base64 errata", details=str(e))
    except extraction_service.AudioTooLargeError as e:
        raise BadRequestError("File troppo grande. Massimo 25MB consentiti.", details=str(e))

    filename = body.get("filename") or "audio.webm"
    logger.info(f"Processing audio '{filename}' ({len(audio) / 1024 / 1024:.2f}MB)")

    try:
        transcription = await extraction_service.transcribe_audio(
            groq, settings.GROQ_WHISPER_MODEL, audio, filename
        )
    except LLMError as e:
        raise ApiError("Errore durante la trascrizione dell'audio", details=str(e))

    remaining = request_time_remaining(request)
    if remaining is not None and remaining < MIN_EXTRACTION_SECONDS:
        logger.warning(f"Only {remaining:.1f}s left after transcription, skipping extraction")
        raise GatewayTimeoutError(
            "Tempo insufficiente per analizzare la trascrizione. Prova con un audio più breve."
        )

    try:
        workflows = await extraction_service.extract_workflows_from_transcript(
            openrouter, settings.EXTRACTION_MODEL, transcription
        )
    except extraction_service.ExtractionParseError as e:
        raise ApiError(
            "Impossibile interpretare la risposta AI",
            details=str(e),
            extra={"preview": e.preview},
        )
    except LLMError as e:
        raise ApiError("Errore durante l'estrazione dei workflow", details=str(e))

    logger.info(f"Extracted {len(workflows)} workflows from {len(transcription)} characters")
    return AudioResponse(transcription=transcription, workflows=workflows)
