"""
Auth router
- POST /api/auth/register
- POST /api/auth/login
- GET /api/auth/me
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, status
from starlette.concurrency import run_in_threadpool

from ..config import Settings, get_settings
from ..errors import BadRequestError, NotFoundError, UnauthorizedError
from ..middleware.metrics import record_auth_attempt
from ..middleware.rate_limiter import RateLimit, get_client_id, get_rate_limit
from ..middleware.validation import StringRule, ValidatedBody
from ..schemas import AuthResponse, ErrorResponse, MeResponse, RateLimitErrorResponse, UserResponse, ValidationErrorResponse
from ..services.auth_service import EMAIL_PATTERN, fits_bcrypt, get_jwt_service, get_password_service
from ..services.logging_service import central_logging
from ..services.user_repository import (
    EmailAlreadyRegisteredError,
    UserRecord,
    UserRepository,
    get_user_repository,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

REGISTER_SCHEMA = {
    "email": StringRule(
        required=True,
        max_length=255,
        pattern=EMAIL_PATTERN,
        message="Email non valida",
    ),
    "password": StringRule(
        required=True,
        min_length=8,
        sanitize=False,
        custom=fits_bcrypt,
        message="La password deve essere lunga almeno 8 caratteri (massimo 72 byte)",
    ),
}

LOGIN_SCHEMA = {
    "email": StringRule(required=True, max_length=255, pattern=EMAIL_PATTERN, message="Email non valida"),
    "password": StringRule(required=True, sanitize=False, message="Password obbligatoria"),
}

AUTH_RESPONSES = {
    400: {"model": ValidationErrorResponse, "description": "Invalid request body"},
    429: {"model": RateLimitErrorResponse, "description": "Too many attempts"},
}

INVALID_CREDENTIALS = "Email o password non corretti"


def _user_response(user: UserRecord) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        plan=user.plan,
        created_at=user.created_at,
        subscription_status=user.subscription_status,
    )


@router.post(
    "/register",
    status_code=status.HTTP_201_CREATED,
    response_model=AuthResponse,
    response_model_exclude_none=True,
    responses=AUTH_RESPONSES,
    summary="Create an account",
)
async def register(
    request: Request,
    body: Dict[str, Any] = Depends(ValidatedBody(REGISTER_SCHEMA)),
    _limit=Depends(RateLimit(get_rate_limit("auth", "register"), "auth.register")),
    users: UserRepository = Depends(get_user_repository),
    settings: Settings = Depends(get_settings),
):
    email = body["email"].lower()
    jwt_service = get_jwt_service(settings)
    password_hash = await run_in_threadpool(
        get_password_service(settings).hash_password, body["password"]
    )

    try:
        user = await users.create(email, password_hash)
    except EmailAlreadyRegisteredError:
        record_auth_attempt("register", success=False)
        raise BadRequestError("Email già registrata")

    token = jwt_service.create_access_token(user.id, user.email, user.plan)
    record_auth_attempt("register", success=True)
    await central_logging.audit("auth.register", user_id=user.id, client_id=get_client_id(request))
    logger.info(f"User registered: {user.id}")
    return AuthResponse(token=token, user=_user_response(user))


@router.post(
    "/login",
    response_model=AuthResponse,
    response_model_exclude_none=True,
    responses={**AUTH_RESPONSES, 401: {"model": ErrorResponse, "description": "Invalid credentials"}},
    summary="Log in with email and password",
)
async def login(
    request: Request,
    body: Dict[str, Any] = Depends(ValidatedBody(LOGIN_SCHEMA)),
    _limit=Depends(RateLimit(get_rate_limit("auth", "login"), "auth.login")),
    users: UserRepository = Depends(get_user_repository),
    settings: Settings = Depends(get_settings),
):
    email = body["email"].lower()
    jwt_service = get_jwt_service(settings)
    client_id = get_client_id(request)
    passwords = get_password_service(settings)
    user = await users.get_by_email(email)

    if user is None:
        # Same bcrypt cost as a wrong password
        await run_in_threadpool(passwords.hash_password, body["password"])
        password_ok = False
    else:
        password_ok = await run_in_threadpool(passwords.verify_password, body["password"], user.password_hash)

    if not password_ok:
        record_auth_attempt("login", success=False)
        await central_logging.audit("auth.login_failed", client_id=client_id, details={"email": email})
        raise UnauthorizedError(INVALID_CREDENTIALS)

    token = jwt_service.create_access_token(user.id, user.email, user.plan)
    record_auth_attempt("login", success=True)
    await central_logging.audit("auth.login", user_id=user.id, client_id=client_id)
    return AuthResponse(token=token, user=UserResponse(id=user.id, email=user.email, plan=user.plan))


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def require_auth(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """
    Bearer token dependency

    Returns:
        the token claims (userId, email, plan)
    """
    token = _bearer_token(request)
    if token is None:
        raise UnauthorizedError("Token mancante")
    claims = get_jwt_service(settings).verify_token(token)
    if claims is None:
        raise UnauthorizedError("Token non valido o scaduto")
    return claims


@router.get(
    "/me",
    response_model=MeResponse,
    response_model_exclude_none=True,
    responses={
        401: {"model": ErrorResponse, "description": "Unauthorized"},
        404: {"model": ErrorResponse, "description": "User not found"},
    },
    summary="Current user",
)
async def me(
    claims: Dict[str, Any] = Depends(require_auth),
    users: UserRepository = Depends(get_user_repository),
):
    user = await users.get_by_id(str(claims["userId"]))
    if user is None:
        record_auth_attempt("me", success=False)
        raise NotFoundError("Utente non trovato")
    record_auth_attempt("me", success=True)
    return MeResponse(user=_user_response(user))
