"""
Unit tests for error handling.

WHAT: Test exception-to-status mapping and error payloads
WHY: Callers rely on status codes to tell bad input from state conflicts
HOW: Call status_code_for directly and route a raising endpoint through the handlers
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from agentmarket.middleware.error_handler import register_exception_handlers, status_code_for
from agentmarket.utils.exceptions import (
    BusinessException,
    ValidationException,
    UnauthorizedException,
    ForbiddenException,
    NotParticipantException,
    ListingNotFoundException,
    DealNotFoundException,
    DisputeNotFoundException,
    InvalidDealStatusException,
    DuplicateCompletionException,
    OpenDisputeExistsException,
    ActiveListingConflictException,
    AdminNotConfiguredException,
)


@pytest.mark.unit
@pytest.mark.parametrize("exc,expected", [
    (ValidationException("bad"), 400),
    (UnauthorizedException(), 401),
    (ForbiddenException("no"), 403),
    (NotParticipantException("m1", "mallory"), 403),
    (ListingNotFoundException("l1"), 404),
    (DealNotFoundException("m1"), 404),
    (DisputeNotFoundException("m1"), 404),
    (InvalidDealStatusException("m1", "start", "matched", ["approved"]), 400),
    (DuplicateCompletionException("m1", "alice"), 409),
    (OpenDisputeExistsException("m1"), 409),
    (ActiveListingConflictException("alice", "offering", "dev"), 409),
    (AdminNotConfiguredException(), 503),
    (BusinessException("other", "OTHER"), 400),
])
def test_status_code_mapping(exc, expected):
    assert status_code_for(exc) == expected


class Payload(BaseModel):
    count: int


@pytest.fixture
def error_client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/boom")
    async def boom():
        raise DuplicateCompletionException("m1", "alice")

    @app.post("/echo")
    async def echo(payload: Payload):
        return payload

    return TestClient(app)


@pytest.mark.unit
def test_business_exception_payload(error_client):
    response = error_client.get("/boom")

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "COMPLETION_ALREADY_CONFIRMED"
    assert body["details"] == {"match_id": "m1", "agent_id": "alice"}
    assert "timestamp" in body


@pytest.mark.unit
def test_request_validation_is_400(error_client):
    response = error_client.post("/echo", json={"count": "many"})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "VALIDATION_ERROR"
    assert body["details"][0]["loc"] == ["body", "count"]
