"""Tests for the error envelope format and exception mapping.

Error responses have the stable shape:
{
    "status": "error",
    "error": {
        "code": "<stable_code>",
        "message": "<human_readable>",
        "details": <object|array|null>
    },
    "request_id": "<id>"
}
"""

import json

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import ValidationError

from blur.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
    register_exception_handlers,
)
from blur.api.schemas import Envelope, ErrorBody
from blur.logging import correlation_id_var
from blur.service import errors
from blur.storage.errors import ConstraintViolation


class TestErrorBody:
    def test_required_fields(self):
        error = ErrorBody(code="unauthorized", message="Invalid credentials")
        assert error.code == "unauthorized"
        assert error.details is None

    def test_accepts_list_details(self):
        error = ErrorBody(
            code="validation_error",
            message="Multiple errors",
            details=[{"field": "email"}, {"field": "password"}],
        )
        assert len(error.details) == 2

    def test_unknown_code_rejected(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="teapot", message="nope")


class TestEnvelope:
    def test_request_id_generated_without_context(self):
        correlation_id_var.set(None)
        envelope = Envelope(status="ok")
        assert len(envelope.request_id) == 36

    def test_request_id_follows_correlation_id(self):
        token = correlation_id_var.set("corr-1")
        try:
            assert Envelope(status="ok").request_id == "corr-1"
        finally:
            correlation_id_var.reset(token)

    def test_invalid_status_rejected(self):
        with pytest.raises(ValidationError):
            Envelope(status="success")


class TestErrorCodeMapping:
    @pytest.mark.parametrize(
        "status,code",
        [
            (400, "validation_error"),
            (401, "unauthorized"),
            (403, "forbidden"),
            (404, "not_found"),
            (409, "conflict"),
            (429, "rate_limited"),
            (500, "server_error"),
            (418, "server_error"),
        ],
    )
    def test_status_maps_to_code(self, status, code):
        assert _error_code_for_status(status) == code

    def test_all_codes_covered(self):
        assert set(_STATUS_TO_CODE.values()) == {
            "unauthorized",
            "forbidden",
            "not_found",
            "rate_limited",
            "validation_error",
            "conflict",
            "server_error",
        }

    def test_error_response_body(self):
        response = _error_response(404, "Not found", details=None)
        data = json.loads(response.body.decode())
        assert response.status_code == 404
        assert data["status"] == "error"
        assert data["error"] == {"code": "not_found", "message": "Not found", "details": None}
        assert "request_id" in data


@pytest.fixture
def error_client():
    app = FastAPI()
    register_exception_handlers(app)

    raisers = {
        "duplicate-email": errors.DuplicateEmail("email already registered"),
        "duplicate-nickname": errors.DuplicateNickname("nickname already in use"),
        "bad-credentials": errors.InvalidCredentials("invalid email or password"),
        "bad-token": errors.InvalidToken("token expired"),
        "mismatch": errors.TokenMismatch("refresh token is no longer current"),
        "bad-code": errors.InvalidCode("verification code is invalid"),
        "expired-code": errors.CodeExpired("verification code has expired"),
        "unverified": errors.EmailNotVerified("email address has not been verified"),
        "inactive": errors.AccountInactive("account is inactive"),
        "forbidden": errors.ForbiddenError("insufficient role"),
        "missing": errors.NotFoundError("account not found"),
        "fields": errors.ValidationError(
            "invalid signup request",
            detail={"errors": [{"field": "email", "message": "bad", "input": "x"}]},
        ),
        "constraint": ConstraintViolation("email already exists", {"field": "email"}),
        "http": HTTPException(status_code=404, detail="nothing here"),
    }

    @app.get("/raise/{name}")
    async def _raise(name: str):
        raise raisers[name]

    return TestClient(app)


@pytest.mark.parametrize(
    "name,status,code,reason",
    [
        ("duplicate-email", 409, "conflict", "duplicate_email"),
        ("duplicate-nickname", 409, "conflict", "duplicate_nickname"),
        ("bad-credentials", 401, "unauthorized", "invalid_credentials"),
        ("bad-token", 401, "unauthorized", "invalid_token"),
        ("mismatch", 401, "unauthorized", "token_mismatch"),
        ("bad-code", 400, "validation_error", "invalid_code"),
        ("expired-code", 400, "validation_error", "code_expired"),
        ("unverified", 400, "validation_error", "email_not_verified"),
        ("inactive", 403, "forbidden", "account_inactive"),
        ("forbidden", 403, "forbidden", "forbidden"),
        ("missing", 404, "not_found", "not_found"),
    ],
)
def test_service_errors_render_envelope(error_client, name, status, code, reason):
    response = error_client.get(f"/raise/{name}")

    assert response.status_code == status
    body = response.json()
    assert body["status"] == "error"
    assert body["error"]["code"] == code
    assert body["error"]["details"]["reason"] == reason


def test_validation_error_lists_fields(error_client):
    body = error_client.get("/raise/fields").json()
    assert body["error"]["details"]["reason"] == "invalid_fields"
    assert body["error"]["details"]["errors"][0]["field"] == "email"


def test_constraint_violation_is_conflict(error_client):
    response = error_client.get("/raise/constraint")
    assert response.status_code == 409
    assert response.json()["error"]["details"] == {"field": "email"}


def test_http_exception_is_wrapped(error_client):
    response = error_client.get("/raise/http")
    assert response.status_code == 404
    assert response.json()["error"]["message"] == "nothing here"
