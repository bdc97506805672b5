"""
AI router
- POST /api/ai-generate-bpmn
- POST /api/ai-generate-vba
- POST /api/ai-chat
- POST /api/ai-suggestions
- POST /api/ai-workflow-extract

Each route: validated body -> rate limit -> service. Generation routes
degrade to local templates; chat falls back from Groq to OpenRouter.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..config import Settings, get_settings
from ..errors import ApiError, BadRequestError, ServerMisconfiguredError, UpstreamSaturatedError
from ..llm.client import (
    LLMAuthenticationError,
    LLMClient,
    LLMConfigurationError,
    LLMError,
    get_groq_client,
    get_openrouter_client,
    is_saturation_error,
)
from ..llm.fallback import FallbackExhausted, FallbackResult
from ..middleware.metrics import record_fallback
from ..middleware.rate_limiter import RateLimit, get_rate_limit
from ..middleware.timeout import TimeoutPolicy
from ..middleware.validation import ArrayRule, NumberRule, ObjectRule, StringRule, ValidatedBody
from ..schemas import (
    BpmnResponse,
    ChatResponse,
    ErrorResponse,
    RateLimitErrorResponse,
    SuggestionResponse,
    ValidationErrorResponse,
    VbaResponse,
    WorkflowExtractResponse,
)
from ..services import bpmn_service, chat_service, extraction_service, suggestions_service, vba_service
from ..utils.timestamps import iso_timestamp

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["ai"])

TIMEOUTS = {
    "/api/ai-chat": TimeoutPolicy(
        seconds=25,
        message="La risposta dell'assistente ha richiesto troppo tempo. Riprova.",
        name="ai-chat",
    ),
    "/api/ai-generate-bpmn": TimeoutPolicy(
        seconds=30,
        message="La generazione del diagramma BPMN ha richiesto troppo tempo. Riprova.",
        name="ai-bpmn",
    ),
    "/api/ai-generate-vba": TimeoutPolicy(
        seconds=30,
        message="La generazione del codice VBA ha richiesto troppo tempo. Riprova.",
        name="ai-vba",
    ),
    "/api/ai-suggestions": TimeoutPolicy(
        seconds=30,
        message="La generazione dei suggerimenti AI ha richiesto troppo tempo. Riprova con meno workflow.",
        name="ai-suggestions",
    ),
}

COMMON_RESPONSES = {
    400: {"model": ValidationErrorResponse, "description": "Invalid request body"},
    413: {"model": ErrorResponse, "description": "Payload too large"},
    429: {"model": RateLimitErrorResponse, "description": "Rate limit exceeded"},
    504: {"model": ErrorResponse, "description": "Request timeout"},
}

BODY_LIMIT = 50 * 1024


# ============================================================
# Request schemas
# ============================================================

def _has_title_and_description(workflow: Dict[str, Any]) -> bool:
    return bool(workflow.get("titolo")) and bool(workflow.get("descrizione"))


WORKFLOW_RULE = ObjectRule(
    required=True,
    custom=_has_title_and_description,
    message="Workflow con titolo e descrizione obbligatorio",
)

BPMN_SCHEMA = {
    "workflow": WORKFLOW_RULE,
    "relatedWorkflows": ArrayRule(item_type="object", max_length=50),
}

VBA_SCHEMA = {
    "workflow": WORKFLOW_RULE,
}

CHAT_SCHEMA = {
    "message": StringRule(required=True, min_length=1, max_length=2000),
    "context": ObjectRule(),
    "conversationHistory": ArrayRule(item_type="object", max_length=100),
}

SUGGESTIONS_SCHEMA = {
    "type": StringRule(required=True, max_length=50),
    "workflows": ArrayRule(required=True, item_type="object", max_length=200),
    "evaluations": ObjectRule(required=True),
    "costoOrario": NumberRule(minimum=0),
}

EXTRACT_SCHEMA = {
    "description": StringRule(
        required=True,
        min_length=10,
        max_length=10000,
        message="La descrizione deve contenere almeno 10 caratteri",
    ),
}


def _note_fallback(endpoint: str, result: FallbackResult) -> None:
    if result.used_fallback:
        record_fallback(endpoint, result.strategy)
        logger.info(f"{endpoint} served by '{result.strategy}' after {len(result.failures)} failure(s)")


# ============================================================
# BPMN / VBA
# ============================================================

@router.post(
    "/ai-generate-bpmn",
    response_model=BpmnResponse,
    response_model_exclude_none=True,
    responses=COMMON_RESPONSES,
    summary="Generate a BPMN 2.0 diagram",
)
async def generate_bpmn(
    body: Dict[str, Any] = Depends(ValidatedBody(BPMN_SCHEMA, max_bytes=BODY_LIMIT)),
    _limit=Depends(RateLimit(get_rate_limit("ai", "bpmn"), "ai.bpmn")),
    groq: LLMClient = Depends(get_groq_client),
    settings: Settings = Depends(get_settings),
):
    """
    BPMN XML for a workflow and its related workflows

    Never fails because of the AI provider: a broken or missing AI answer
    yields the local template with `fallback: true`.
    """
    result = await bpmn_service.generate_bpmn(
        body["workflow"], body.get("relatedWorkflows"), groq, settings.GROQ_CHAT_MODEL
    )
    _note_fallback("ai-generate-bpmn", result)
    return BpmnResponse(
        bpmn_xml=result.value,
        timestamp=iso_timestamp(),
        fallback=True if result.used_fallback else None,
    )


@router.post(
    "/ai-generate-vba",
    response_model=VbaResponse,
    response_model_exclude_none=True,
    responses=COMMON_RESPONSES,
    summary="Generate a VBA module",
)
async def generate_vba(
    body: Dict[str, Any] = Depends(ValidatedBody(VBA_SCHEMA, max_bytes=BODY_LIMIT)),
    _limit=Depends(RateLimit(get_rate_limit("ai", "vba"), "ai.vba")),
    groq: LLMClient = Depends(get_groq_client),
    settings: Settings = Depends(get_settings),
):
    workflow = body["workflow"]
    result = await vba_service.generate_vba(workflow, groq, settings.GROQ_CHAT_MODEL)
    _note_fallback("ai-generate-vba", result)
    return VbaResponse(
        vba_code=result.value,
        timestamp=iso_timestamp(),
        filename=f"{vba_service.sanitize_filename(str(workflow['titolo']))}.bas",
        fallback=True if result.used_fallback else None,
    )


# ============================================================
# Chat
# ============================================================

@router.post(
    "/ai-chat",
    response_model=ChatResponse,
    response_model_exclude_none=True,
    responses={**COMMON_RESPONSES, 500: {"model": ErrorResponse, "description": "Both providers failed"}},
    summary="Canvas assistant chat",
)
async def chat(
    body: Dict[str, Any] = Depends(ValidatedBody(CHAT_SCHEMA, max_bytes=BODY_LIMIT)),
    _limit=Depends(RateLimit(get_rate_limit("ai", "chat"), "ai.chat")),
    groq: LLMClient = Depends(get_groq_client),
    openrouter: LLMClient = Depends(get_openrouter_client),
    settings: Settings = Depends(get_settings),
):
    try:
        result = await chat_service.answer(
            body["message"],
            body.get("context"),
            body.get("conversationHistory"),
            groq,
            settings.GROQ_CHAT_MODEL,
            openrouter,
            settings.OPENROUTER_CHAT_MODEL,
        )
    except FallbackExhausted as e:
        raise ApiError("Errore AI Chat", details=str(e.last_error))

    _note_fallback("ai-chat", result)
    return ChatResponse(
        response=result.value,
        timestamp=iso_timestamp(),
        fallback=True if result.used_fallback else None,
    )


# ============================================================
# Suggestions
# ============================================================

def _suggestion_error(error: Exception) -> ApiError:
    details = str(error)
    if is_saturation_error(error):
        return UpstreamSaturatedError(
            "OpenRouter è temporaneamente saturo. Riprova tra 5-10 minuti.", details=details
        )
    if isinstance(error, (LLMAuthenticationError, LLMConfigurationError)):
        return ServerMisconfiguredError(
            "Configurazione API non valida. Verifica le chiavi API.", details=details
        )
    return ApiError("Errore durante la generazione dei suggerimenti AI", details=details)


@router.post(
    "/ai-suggestions",
    response_model=SuggestionResponse,
    responses={
        **COMMON_RESPONSES,
        500: {"model": ErrorResponse, "description": "Generation failed"},
        503: {"model": ErrorResponse, "description": "Provider saturated"},
    },
    summary="30/60/90 day implementation plan",
)
async def suggestions(
    body: Dict[str, Any] = Depends(ValidatedBody(SUGGESTIONS_SCHEMA, max_bytes=200 * 1024)),
    _limit=Depends(RateLimit(get_rate_limit("ai", "suggestions"), "ai.suggestions")),
    openrouter: LLMClient = Depends(get_openrouter_client),
    settings: Settings = Depends(get_settings),
):
    if body["type"] not in suggestions_service.SUPPORTED_TYPES:
        raise BadRequestError("Tipo di suggerimento sconosciuto", details=body["type"])

    try:
        result = await suggestions_service.generate_implementation_plan(
            body["workflows"],
            body["evaluations"],
            body.get("costoOrario"),
            openrouter,
            settings.SUGGESTIONS_PRIMARY_MODEL,
            settings.SUGGESTIONS_FALLBACK_MODEL,
        )
    except FallbackExhausted as e:
        raise _suggestion_error(e.last_error)
    except LLMError as e:
        raise _suggestion_error(e)

    _note_fallback("ai-suggestions", result)
    logger.info(f"Implementation plan ready ({len(result.value)} chars) from {result.strategy}")
    return SuggestionResponse(suggestion=result.value, model=result.strategy)


# ============================================================
# Workflow extraction from text
# ============================================================

@router.post(
    "/ai-workflow-extract",
    response_model=WorkflowExtractResponse,
    responses={**COMMON_RESPONSES, 500: {"model": ErrorResponse, "description": "Extraction failed"}},
    summary="Extract one workflow from a description",
)
async def workflow_extract(
    body: Dict[str, Any] = Depends(ValidatedBody(EXTRACT_SCHEMA, max_bytes=BODY_LIMIT)),
    _limit=Depends(RateLimit(get_rate_limit("ai", "workflow-extract"), "ai.workflow-extract")),
    openrouter: LLMClient = Depends(get_openrouter_client),
    settings: Settings = Depends(get_settings),
):
    model = settings.EXTRACTION_MODEL
    try:
        workflow = await extraction_service.extract_workflow_from_text(openrouter, model, body["description"])
    except extraction_service.ExtractionParseError as e:
        raise ApiError(
            "Impossibile interpretare la risposta AI",
            details=str(e),
            extra={"preview": e.preview},
        )
    except extraction_service.IncompleteWorkflowError as e:
        raise ApiError("Estrazione incompleta", details=str(e), extra={"missing": e.missing})
    except LLMConfigurationError as e:
        raise ServerMisconfiguredError(details=str(e))
    except LLMError as e:
        raise ApiError("Errore durante l'estrazione del workflow", details=str(e))

    logger.info(f"Extracted workflow '{workflow.get('titolo', '')}' with {model}")
    return WorkflowExtractResponse(workflow=workflow, model=model)
