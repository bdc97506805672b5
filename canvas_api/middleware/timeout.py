"""
Request timeouts

race() waits for an awaitable up to a deadline. The operation is shielded: on
expiry it keeps running in the background (an LLM call may still be billed,
a write may still land) and only the waiting stops.

RequestTimeoutMiddleware applies race() to the whole downstream ASGI app:
- no response started yet: the client gets a 504 with the policy message
- response already started: the timeout is logged and the started response
  is left to finish, no second response is written
- after a 504, anything the abandoned app sends is dropped

The request deadline is stored in scope["state"] so long handlers can check
their remaining budget with request_time_remaining().
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Mapping, Optional, TypeVar

from fastapi import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .metrics import record_timeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 25.0
DEFAULT_TIMEOUT_MESSAGE = "Timeout della richiesta: l'operazione ha richiesto troppo tempo"
DEADLINE_STATE_KEY = "request_deadline"


class OperationTimeout(Exception):
    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Operation exceeded {timeout_seconds}s")


def _report_abandoned(task: "asyncio.Future[Any]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(f"Abandoned operation failed after timeout: {exc!r}")
    else:
        logger.info("Abandoned operation completed after timeout")


async def race(operation: Awaitable[T], timeout_seconds: float) -> T:
    """
    Await `operation` for at most `timeout_seconds`

    Raises:
        OperationTimeout: deadline reached first (operation keeps running)
        Exception: whatever the operation itself raised
    """
    task = asyncio.ensure_future(operation)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout_seconds)
    except asyncio.TimeoutError:
        task.add_done_callback(_report_abandoned)
        raise OperationTimeout(timeout_seconds) from None


# ============================================================
# Time budget helpers
# ============================================================

def request_time_remaining(request: Request) -> Optional[float]:
    """Remaining budget of the current request, None outside the middleware"""
    deadline = request.scope.get("state", {}).get(DEADLINE_STATE_KEY)
    if deadline is None:
        return None
    return max(0.0, deadline - time.monotonic())


# ============================================================
# Middleware
# ============================================================

@dataclass(frozen=True)
class TimeoutPolicy:
    seconds: float = DEFAULT_TIMEOUT_SECONDS
    message: str = DEFAULT_TIMEOUT_MESSAGE
    name: str = "default"


def timeout_response(policy: TimeoutPolicy) -> JSONResponse:
    return JSONResponse(
        status_code=504,
        content={
            "error": "Timeout della richiesta",
            "message": policy.message,
            "timeout": f"{int(policy.seconds * 1000)}ms",
        },
    )


class RequestTimeoutMiddleware:
    """
    Per-request deadline (pure ASGI)

    `overrides` maps exact paths to their own TimeoutPolicy, every other
    HTTP request uses `default`.
    """

    def __init__(
        self,
        app: ASGIApp,
        default: TimeoutPolicy = TimeoutPolicy(),
        overrides: Optional[Mapping[str, TimeoutPolicy]] = None,
    ) -> None:
        self.app = app
        self.default = default
        self.overrides = dict(overrides or {})

    def policy_for(self, path: str) -> TimeoutPolicy:
        return self.overrides.get(path, self.default)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        policy = self.policy_for(scope.get("path", ""))
        response_started = False
        timed_out = False

        async def guarded_send(message: Message) -> None:
            nonlocal response_started
            if timed_out:
                return
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        scope.setdefault("state", {})[DEADLINE_STATE_KEY] = time.monotonic() + policy.seconds

        app_task = asyncio.ensure_future(self.app(scope, receive, guarded_send))
        try:
            await race(app_task, policy.seconds)
        except OperationTimeout:
            logger.error(
                f"Request timeout after {policy.seconds}s: "
                f"{scope.get('method', '')} {scope.get('path', '')}"
            )
            record_timeout(policy.name, responded=not response_started)
            if response_started:
                # Status line is committed; let the started response finish
                logger.warning(f"Response already started for {scope.get('path', '')}, not sending 504")
                await app_task
                return
            timed_out = True
            await timeout_response(policy)(scope, receive, send)
