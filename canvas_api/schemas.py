"""
Pydantic response schemas

Request bodies are checked by the validation dependency (see
middleware/validation.py); these models describe what the routes return.
Field names are snake_case with camelCase aliases on the wire.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ============================================================
# Common
# ============================================================

class ErrorResponse(BaseModel):
    """Common error response"""
    error: str
    message: Optional[str] = None
    details: Optional[str] = None


class FieldViolation(BaseModel):
    field: str
    message: str


class ValidationErrorResponse(BaseModel):
    error: str
    fields: List[FieldViolation]


class RateLimitErrorResponse(BaseModel):
    error: str
    message: str
    retry_after: int = Field(..., alias="retryAfter")

    class Config:
        populate_by_name = True


# ============================================================
# AI
# ============================================================

class BpmnResponse(BaseModel):
    bpmn_xml: str = Field(..., alias="bpmnXml")
    timestamp: str
    fallback: Optional[bool] = None

    class Config:
        populate_by_name = True


class VbaResponse(BaseModel):
    vba_code: str = Field(..., alias="vbaCode")
    timestamp: str
    filename: str
    fallback: Optional[bool] = None

    class Config:
        populate_by_name = True


class ChatResponse(BaseModel):
    response: str
    timestamp: str
    fallback: Optional[bool] = None


class SuggestionResponse(BaseModel):
    success: bool = True
    suggestion: str
    model: str


class WorkflowExtractResponse(BaseModel):
    success: bool = True
    workflow: Dict[str, Any]
    model: str


class AudioResponse(BaseModel):
    success: bool = True
    transcription: str
    workflows: List[Dict[str, Any]]


# ============================================================
# Auth
# ============================================================

class UserResponse(BaseModel):
    """User as returned to the client (no password hash)"""
    id: str
    email: str
    plan: str
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    subscription_status: Optional[str] = Field(default=None, alias="subscriptionStatus")

    class Config:
        populate_by_name = True


class AuthResponse(BaseModel):
    success: bool = True
    token: str
    user: UserResponse


class MeResponse(BaseModel):
    success: bool = True
    user: UserResponse


# ============================================================
# Ops
# ============================================================

class HealthChecks(BaseModel):
    api: bool
    database: bool
    timestamp: str


class HealthResponse(BaseModel):
    status: str  # healthy | degraded
    checks: HealthChecks
    response_time: str = Field(..., alias="responseTime")
    uptime: float
    timestamp: str
    environment: str
    version: Optional[str] = None

    class Config:
        populate_by_name = True


class ConnectionInfo(BaseModel):
    status: str
    current_time: Optional[datetime] = Field(default=None, alias="currentTime")

    class Config:
        populate_by_name = True


class TablesInfo(BaseModel):
    found: List[str]
    missing: List[str]
    all_present: bool = Field(..., alias="allPresent")

    class Config:
        populate_by_name = True


class DbCheckResponse(BaseModel):
    success: bool = True
    message: str
    connection: ConnectionInfo
    tables: TablesInfo


class MigrationResponse(BaseModel):
    success: bool = True
    message: str
    tables: List[str]
