"""
Request body validation

A schema maps field names to rules, one rule class per field type:

    REGISTER_SCHEMA = {
        "email": StringRule(required=True, pattern=EMAIL_PATTERN, max_length=255),
        "password": StringRule(required=True, min_length=8, sanitize=False),
    }

validate_body() returns one Violation per offending field and checks every
field. ValidatedBody(schema) wraps it as a FastAPI dependency that answers 400
on violations and sanitizes string fields before the handler sees them.

The SQL/XSS detectors are heuristics for logging only. Parameterized queries
and output encoding are what actually protect the app.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from functools import singledispatch
from typing import Any, Callable, Dict, List, Mapping, Optional, Pattern, Union

from fastapi import Request

from ..errors import BadRequestError, PayloadTooLargeError

logger = logging.getLogger(__name__)


# ============================================================
# Rules
# ============================================================

@dataclass(frozen=True)
class FieldRule:
    required: bool = False
    message: Optional[str] = None
    custom: Optional[Callable[[Any], bool]] = None


@dataclass(frozen=True)
class StringRule(FieldRule):
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[Union[str, Pattern]] = None
    sanitize: bool = True


@dataclass(frozen=True)
class NumberRule(FieldRule):
    minimum: Optional[float] = None
    maximum: Optional[float] = None


@dataclass(frozen=True)
class BooleanRule(FieldRule):
    pass


@dataclass(frozen=True)
class ArrayRule(FieldRule):
    item_type: Optional[str] = None  # "string" | "number" | "object"
    min_length: Optional[int] = None
    max_length: Optional[int] = None


@dataclass(frozen=True)
class ObjectRule(FieldRule):
    pass


Schema = Mapping[str, FieldRule]


@dataclass(frozen=True)
class Violation:
    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message}


# ============================================================
# Type checks (one per rule variant)
# ============================================================

def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value)


_ITEM_CHECKS: Dict[str, Callable[[Any], bool]] = {
    "string": lambda v: isinstance(v, str),
    "number": _is_number,
    "object": lambda v: isinstance(v, dict),
}


@singledispatch
def check_type(rule: FieldRule, field: str, value: Any) -> Optional[str]:
    """Return a violation message, or None when the value fits the rule"""
    raise TypeError(f"Unsupported rule type: {type(rule).__name__}")


@check_type.register
def _(rule: StringRule, field: str, value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return f"Il campo {field} deve essere una stringa"
    if rule.min_length is not None and len(value) < rule.min_length:
        return f"Il campo {field} deve contenere almeno {rule.min_length} caratteri"
    if rule.max_length is not None and len(value) > rule.max_length:
        return f"Il campo {field} non può superare {rule.max_length} caratteri"
    if rule.pattern is not None and not re.search(rule.pattern, value):
        return f"Il campo {field} ha un formato non valido"
    return None


@check_type.register
def _(rule: NumberRule, field: str, value: Any) -> Optional[str]:
    if not _is_number(value):
        return f"Il campo {field} deve essere un numero"
    if rule.minimum is not None and value < rule.minimum:
        return f"Il campo {field} deve essere almeno {rule.minimum}"
    if rule.maximum is not None and value > rule.maximum:
        return f"Il campo {field} non può superare {rule.maximum}"
    return None


@check_type.register
def _(rule: BooleanRule, field: str, value: Any) -> Optional[str]:
    if not isinstance(value, bool):
        return f"Il campo {field} deve essere un booleano"
    return None


@check_type.register
def _(rule: ArrayRule, field: str, value: Any) -> Optional[str]:
    if not isinstance(value, list):
        return f"Il campo {field} deve essere un array"
    if rule.item_type is not None:
        item_ok = _ITEM_CHECKS[rule.item_type]
        if not all(item_ok(item) for item in value):
            return f"Tutti gli elementi di {field} devono essere di tipo {rule.item_type}"
    if rule.min_length is not None and len(value) < rule.min_length:
        return f"Il campo {field} deve contenere almeno {rule.min_length} elementi"
    if rule.max_length is not None and len(value) > rule.max_length:
        return f"Il campo {field} non può contenere più di {rule.max_length} elementi"
    return None


@check_type.register
def _(rule: ObjectRule, field: str, value: Any) -> Optional[str]:
    if not isinstance(value, dict):
        return f"Il campo {field} deve essere un oggetto"
    return None


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def validate_field(field: str, value: Any, rule: FieldRule) -> Optional[Violation]:
    if _is_missing(value):
        if rule.required:
            return Violation(field, rule.message or f"Il campo {field} è obbligatorio")
        if value is None:
            return None

    message = check_type(rule, field, value)
    if message is None and rule.custom is not None:
        try:
            accepted = bool(rule.custom(value))
        except (TypeError, ValueError, KeyError, AttributeError):
            accepted = False
        if not accepted:
            message = f"Il campo {field} non è valido"

    if message is None:
        return None
    return Violation(field, rule.message or message)


def validate_body(body: Any, schema: Schema) -> List[Violation]:
    """Check `body` against every rule of `schema`"""
    if not isinstance(body, dict):
        return [Violation("body", "Il corpo della richiesta deve essere un oggetto JSON valido")]

    violations = []
    for field, rule in schema.items():
        violation = validate_field(field, body.get(field), rule)
        if violation is not None:
            violations.append(violation)
    return violations


# ============================================================
# Sanitization / detectors
# ============================================================

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_WHITESPACE_RUN = re.compile(r"\s+")


def sanitize_string(value: str) -> str:
    """Drop control characters, collapse whitespace runs, trim (idempotent)"""
    value = value.replace("\0", "")
    value = _CONTROL_CHARS.sub("", value)
    value = _WHITESPACE_RUN.sub(" ", value)
    return value.strip()


def sanitize_body(body: Dict[str, Any], schema: Schema) -> Dict[str, Any]:
    for field, rule in schema.items():
        value = body.get(field)
        if isinstance(rule, StringRule) and rule.sanitize and isinstance(value, str) and value:
            body[field] = sanitize_string(value)
    return body


SQL_INJECTION_PATTERNS = [
    re.compile(r"(\bOR\b|\bAND\b)\s+['\"]?\d+['\"]?\s*=\s*['\"]?\d+", re.IGNORECASE),
    re.compile(r"UNION\s+SELECT", re.IGNORECASE),
    re.compile(r";\s*DROP\s+TABLE", re.IGNORECASE),
    re.compile(r";\s*DELETE\s+FROM", re.IGNORECASE),
    re.compile(r";\s*UPDATE\s+", re.IGNORECASE),
    re.compile(r";\s*INSERT\s+INTO", re.IGNORECASE),
    re.compile(r"--"),
    re.compile(r"/\*"),
    re.compile(r"\bxp_\w+", re.IGNORECASE),
    re.compile(r"\bsp_\w+", re.IGNORECASE),
]

XSS_PATTERNS = [
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"<iframe", re.IGNORECASE),
    re.compile(r"<embed", re.IGNORECASE),
    re.compile(r"<object", re.IGNORECASE),
]


def has_sql_injection(value: str) -> bool:
    return any(p.search(value) for p in SQL_INJECTION_PATTERNS)


def has_xss(value: str) -> bool:
    return any(p.search(value) for p in XSS_PATTERNS)


def is_safe_input(value: str) -> bool:
    return not has_sql_injection(value) and not has_xss(value)


# ============================================================
# FastAPI dependency
# ============================================================

class RequestValidationFailed(BadRequestError):
    """400 listing every offending field"""

    def __init__(self, violations: List[Violation]):
        super().__init__(
            "Validazione fallita",
            extra={"fields": [v.to_dict() for v in violations]},
        )
        self.violations = violations


class ValidatedBody:
    """
    Dependency returning the validated, sanitized JSON body

    Usage:
        body: dict = Depends(ValidatedBody(CHAT_SCHEMA, max_bytes=50_000))
    """

    def __init__(self, schema: Schema, max_bytes: int = 50 * 1024):
        self.schema = schema
        self.max_bytes = max_bytes

    async def __call__(self, request: Request) -> Dict[str, Any]:
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.max_bytes:
            raise PayloadTooLargeError()

        raw = await request.body()
        if len(raw) > self.max_bytes:
            raise PayloadTooLargeError()

        try:
            body = json.loads(raw) if raw else None
        except (ValueError, RecursionError):
            # RecursionError: nesting deeper than the decoder can follow
            body = None

        self._raise_on_violations(request, validate_body(body, self.schema))
        sanitize_body(body, self.schema)
        # Sanitizing can shorten strings below their minimum
        self._raise_on_violations(request, validate_body(body, self.schema))
        self._flag_suspicious(request, body)
        return body

    @staticmethod
    def _raise_on_violations(request: Request, violations: List[Violation]) -> None:
        if violations:
            logger.info(
                f"Validation failed on {request.url.path}: "
                f"{', '.join(v.field for v in violations)}"
            )
            raise RequestValidationFailed(violations)

    def _flag_suspicious(self, request: Request, body: Dict[str, Any]) -> None:
        for field, rule in self.schema.items():
            value = body.get(field)
            if not isinstance(rule, StringRule) or not rule.sanitize:
                continue
            if isinstance(value, str) and not is_safe_input(value):
                logger.warning(f"Suspicious input in '{field}' on {request.url.path}")
