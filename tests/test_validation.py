"""
Request validation tests
"""

import json

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from canvas_api.config import get_settings
from canvas_api.errors import register_exception_handlers
from canvas_api.middleware.validation import (
    ArrayRule,
    BooleanRule,
    NumberRule,
    ObjectRule,
    StringRule,
    ValidatedBody,
    has_sql_injection,
    has_xss,
    is_safe_input,
    sanitize_body,
    sanitize_string,
    validate_body,
)

SCHEMA = {
    "name": StringRule(required=True, min_length=2, max_length=10),
    "age": NumberRule(minimum=0, maximum=120),
    "active": BooleanRule(),
    "tags": ArrayRule(item_type="string", max_length=3),
    "meta": ObjectRule(),
}


class TestValidateBody:
    def test_conforming_body_has_no_violations(self):
        body = {"name": "Anna", "age": 30, "active": True, "tags": ["a"], "meta": {}}

        assert validate_body(body, SCHEMA) == []

    def test_optional_fields_may_be_absent(self):
        assert validate_body({"name": "Anna"}, SCHEMA) == []

    def test_missing_required_field(self):
        violations = validate_body({}, SCHEMA)

        assert [v.field for v in violations] == ["name"]
        assert violations[0].message == "Il campo name è obbligatorio"

    def test_empty_string_counts_as_missing(self):
        violations = validate_body({"name": ""}, SCHEMA)

        assert violations[0].message == "Il campo name è obbligatorio"

    def test_one_violation_per_field_and_all_fields_checked(self):
        body = {"name": 5, "age": "old", "active": "yes", "tags": "x", "meta": []}

        violations = validate_body(body, SCHEMA)

        assert sorted(v.field for v in violations) == ["active", "age", "meta", "name", "tags"]

    def test_string_bounds(self):
        short = validate_body({"name": "A"}, SCHEMA)[0].message
        long = validate_body({"name": "A" * 11}, SCHEMA)[0].message

        assert "almeno 2" in short
        assert "10" in long

    def test_string_pattern(self):
        schema = {"code": StringRule(pattern=r"^W\d{3}$")}

        assert validate_body({"code": "W001"}, schema) == []
        assert validate_body({"code": "X1"}, schema)[0].message == "Il campo code ha un formato non valido"

    def test_boolean_is_not_a_number(self):
        assert validate_body({"name": "Anna", "age": True}, SCHEMA)[0].field == "age"

    def test_nan_is_not_a_number(self):
        assert validate_body({"name": "Anna", "age": float("nan")}, SCHEMA)[0].field == "age"

    def test_number_bounds(self):
        assert validate_body({"name": "Anna", "age": -1}, SCHEMA)[0].field == "age"
        assert validate_body({"name": "Anna", "age": 121}, SCHEMA)[0].field == "age"

    def test_array_items_checked_before_length(self):
        violations = validate_body({"name": "Anna", "tags": [1, 2, 3, 4]}, SCHEMA)

        assert violations[0].message == "Tutti gli elementi di tags devono essere di tipo string"

    def test_array_max_length(self):
        violations = validate_body({"name": "Anna", "tags": ["a", "b", "c", "d"]}, SCHEMA)

        assert "più di 3" in violations[0].message

    def test_custom_predicate_runs_last(self):
        schema = {"n": NumberRule(custom=lambda v: v % 2 == 0)}

        assert validate_body({"n": 4}, schema) == []
        assert validate_body({"n": 3}, schema)[0].message == "Il campo n non è valido"
        assert validate_body({"n": "x"}, schema)[0].message == "Il campo n deve essere un numero"

    def test_custom_predicate_error_rejects(self):
        schema = {"meta": ObjectRule(custom=lambda v: v["missing"])}

        assert validate_body({"meta": {}}, schema)[0].field == "meta"

    def test_message_override(self):
        schema = {"email": StringRule(required=True, message="Email non valida")}

        assert validate_body({}, schema)[0].message == "Email non valida"

    @pytest.mark.parametrize("body", [None, [], "text", 3])
    def test_non_object_body(self, body):
        violations = validate_body(body, SCHEMA)

        assert len(violations) == 1
        assert violations[0].field == "body"


class TestSanitization:
    def test_sanitize_string(self):
        assert sanitize_string("  hello\x00\x07   world \n") == "hello world"

    def test_sanitize_is_idempotent(self):
        once = sanitize_string(" a\t\tb\x1f c ")

        assert sanitize_string(once) == once

    def test_sanitize_body_respects_rule_flag(self):
        schema = {
            "title": StringRule(),
            "password": StringRule(sanitize=False),
            "count": NumberRule(),
        }
        body = {"title": "  Report   mensile ", "password": "  secret  ", "count": 2}

        sanitize_body(body, schema)

        assert body == {"title": "Report mensile", "password": "  secret  ", "count": 2}


class TestDetectors:
    @pytest.mark.parametrize("value", ["1 OR 1=1", "x UNION SELECT *", "a; DROP TABLE users", "admin'--"])
    def test_sql_injection_signatures(self, value):
        assert has_sql_injection(value)

    @pytest.mark.parametrize("value", ["<script>alert(1)</script>", "javascript:void(0)", '<img onerror="x">'])
    def test_xss_signatures(self, value):
        assert has_xss(value)

    def test_plain_text_is_safe(self):
        assert is_safe_input("Preparazione report vendite mensile")


class TestValidatedBodyDependency:
    @pytest.fixture
    def client(self):
        app = FastAPI()
        register_exception_handlers(app, get_settings())

        @app.post("/echo")
        async def echo(body: dict = Depends(ValidatedBody({"name": StringRule(required=True)}, max_bytes=100))):
            return body

        return TestClient(app)

    def test_valid_body_is_sanitized(self, client):
        response = client.post("/echo", json={"name": "  Anna   Rossi "})

        assert response.status_code == 200
        assert response.json() == {"name": "Anna Rossi"}

    def test_violations_return_400(self, client):
        response = client.post("/echo", json={})

        assert response.status_code == 400
        assert response.json() == {
            "error": "Validazione fallita",
            "fields": [{"field": "name", "message": "Il campo name è obbligatorio"}],
        }

    def test_invalid_json_is_body_violation(self, client):
        response = client.post("/echo", content=b"{not json", headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json()["fields"][0]["field"] == "body"

    def test_oversized_body_returns_413(self, client):
        response = client.post("/echo", content=json.dumps({"name": "x" * 200}).encode())

        assert response.status_code == 413
        assert response.json()["error"] == "Richiesta troppo grande"

    def test_whitespace_only_required_field_is_rejected(self, client):
        response = client.post("/echo", json={"name": "   \t  "})

        assert response.status_code == 400
        assert response.json()["fields"][0]["field"] == "name"


class TestValidatedBodyLimits:
    @pytest.fixture
    def client(self):
        app = FastAPI()
        register_exception_handlers(app, get_settings())
        schema = {"text": StringRule(required=True, min_length=10)}

        @app.post("/extract")
        async def extract(body: dict = Depends(ValidatedBody(schema, max_bytes=1024 * 1024))):
            return body

        return TestClient(app)

    def test_deeply_nested_json_is_body_violation(self, client):
        depth = 100_000
        content = b'{"text": ' + b"[" * depth + b"]" * depth + b"}"

        response = client.post("/extract", content=content, headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json()["fields"][0]["field"] == "body"

    def test_min_length_checked_after_sanitizing(self, client):
        response = client.post("/extract", json={"text": "          x"})

        assert response.status_code == 400
        assert response.json()["fields"] == [
            {"field": "text", "message": "Il campo text deve contenere almeno 10 caratteri"}
        ]

    def test_sanitized_text_within_bounds(self, client):
        response = client.post("/extract", json={"text": "  Ogni lunedì   preparo il report  "})

        assert response.status_code == 200
        assert response.json() == {"text": "Ogni lunedì preparo il report"}
