"""
Operations router
- GET /api/health
- GET /api/db-check
- POST /api/db-migrate
"""

import asyncio
import logging
import secrets
import time
from typing import Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from ..config import Settings, get_settings
from ..db import EXPECTED_TABLES, Database, get_database
from ..errors import ApiError, ServerMisconfiguredError, UnauthorizedError
from ..schemas import (
    ConnectionInfo,
    DbCheckResponse,
    ErrorResponse,
    HealthChecks,
    HealthResponse,
    MigrationResponse,
    TablesInfo,
)
from ..utils.timestamps import iso_timestamp

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["ops"])

_started_at = time.monotonic()

DB_CHECK_TIMEOUT_SECONDS = 5.0

DATABASE_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)


def database_or_none() -> Optional[Database]:
    """Database when DATABASE_URL is configured, else None"""
    try:
        return get_database()
    except ServerMisconfiguredError:
        return None


def database_hint(error_message: str) -> str:
    """Operator hint for a failed database check"""
    if "relation" in error_message and "does not exist" in error_message:
        return "Le tabelle non esistono ancora. Esegui POST /api/db-migrate per crearle."
    if "DATABASE_URL" in error_message:
        return "Verifica che DATABASE_URL sia configurato nelle variabili d'ambiente"
    if "connect" in error_message.lower():
        return "Verifica che la connection string del database sia corretta"
    return "Controlla i log per maggiori dettagli"


@router.get(
    "/health",
    response_model=HealthResponse,
    response_model_exclude_none=True,
    responses={503: {"model": HealthResponse, "description": "Database unreachable"}},
    summary="Health check",
)
async def health(
    database: Optional[Database] = Depends(database_or_none),
    settings: Settings = Depends(get_settings),
):
    """
    Liveness plus database connectivity

    200 when every check passes, 503 ("degraded") otherwise. Used by
    uptime monitors and load balancers.
    """
    started = time.monotonic()
    database_ok = False
    if database is not None:
        try:
            database_ok = await asyncio.wait_for(database.ping(), DB_CHECK_TIMEOUT_SECONDS)
        except DATABASE_ERRORS as e:
            logger.error(f"Health check - database error: {e}")

    timestamp = iso_timestamp()
    body = HealthResponse(
        status="healthy" if database_ok else "degraded",
        checks=HealthChecks(api=True, database=database_ok, timestamp=timestamp),
        response_time=f"{int((time.monotonic() - started) * 1000)}ms",
        uptime=round(time.monotonic() - _started_at, 3),
        timestamp=timestamp,
        environment=settings.ENVIRONMENT,
        version=settings.version_tag,
    )
    return JSONResponse(
        status_code=200 if database_ok else 503,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


@router.get(
    "/db-check",
    response_model=DbCheckResponse,
    responses={500: {"model": ErrorResponse, "description": "Database unreachable"}},
    summary="Database connection and schema check",
)
async def db_check(database: Optional[Database] = Depends(database_or_none)):
    if database is None:
        raise ApiError(
            "Errore connessione database",
            details="DATABASE_URL not set",
            extra={"success": False, "hint": database_hint("DATABASE_URL")},
        )

    try:
        current_time = await database.current_time()
        found = sorted(await database.list_tables())
    except DATABASE_ERRORS as e:
        raise ApiError(
            "Errore connessione database",
            details=str(e),
            extra={"success": False, "hint": database_hint(str(e))},
        )

    missing = [t for t in EXPECTED_TABLES if t not in found]
    return DbCheckResponse(
        message="Database connesso con successo!",
        connection=ConnectionInfo(status="connected", current_time=current_time),
        tables=TablesInfo(found=found, missing=missing, all_present=not missing),
    )


@router.post(
    "/db-migrate",
    response_model=MigrationResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Missing or wrong migration secret"},
        500: {"model": ErrorResponse, "description": "Migration failed"},
    },
    summary="Create the database schema",
)
async def db_migrate(
    x_migration_secret: Optional[str] = Header(default=None),
    database: Optional[Database] = Depends(database_or_none),
    settings: Settings = Depends(get_settings),
):
    """
    Create missing tables

    Requires X-Migration-Secret == MIGRATION_SECRET; an unset secret rejects
    every call.
    """
    expected = settings.MIGRATION_SECRET
    if not expected or not x_migration_secret or not secrets.compare_digest(
        x_migration_secret.encode("utf-8"), expected.encode("utf-8")
    ):
        logger.warning("db-migrate called with a missing or wrong secret")
        raise UnauthorizedError()

    if database is None:
        raise ServerMisconfiguredError("Database non configurato", details="DATABASE_URL not set")

    try:
        await database.create_all()
    except DATABASE_ERRORS as e:
        raise ApiError("Migrazione fallita", details=str(e), extra={"success": False})

    return MigrationResponse(
        message="Migrazione del database completata con successo!",
        tables=list(EXPECTED_TABLES),
    )
