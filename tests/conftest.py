import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from xero_client.auth import Authenticator, Credentials, GrantType
from xero_client.config import Settings
from xero_client.executor import RequestExecutor
from xero_client.models.token import TokenStore


NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
TOKEN_URL = "https://identity.xero.com/connect/token"
API_BASE = "https://api.xero.com/api.xro/2.0/"


# --- Canned API responses ---

TOKEN_RESPONSE = {
    "access_token": "access-1",
    "expires_in": 1800,
    "token_type": "Bearer",
    "refresh_token": "refresh-1",
    "scope": "accounting.transactions offline_access",
}

REFRESHED_TOKEN_RESPONSE = {
    "access_token": "access-2",
    "expires_in": 1800,
    "token_type": "Bearer",
    "refresh_token": "refresh-2",
}

INVOICE = {
    "InvoiceID": "243216c5-369e-4056-ac67-05388f86dc81",
    "InvoiceNumber": "INV-0001",
    "Type": "ACCREC",
    "Status": "DRAFT",
    "LineItems": [{"Description": "Consulting", "Quantity": 1.0, "UnitAmount": 120.5}],
    "Reference": "PO-17",
}

INVOICES_RESPONSE = {"Invoices": [INVOICE]}

VALIDATION_ERROR = {
    "ErrorNumber": 10,
    "Type": "ValidationException",
    "Message": "A validation exception occurred",
    "Elements": [
        {
            "InvoiceNumber": "INV-0001",
            "Type": "ACCREC",
            "Reference": "PO-17",
            "ValidationErrors": [
                {"Message": "Email address must be valid."},
                {"Message": "Invoice not of valid status for modification"},
            ],
        },
        {
            "Name": "Acme Ltd",
            "ValidationErrors": [{"Message": "The contact name Acme Ltd is already assigned to another contact."}],
        },
    ],
}

NOT_FOUND_ERROR = {
    "ErrorNumber": 404,
    "Type": "ObjectNotFoundException",
    "Message": "The resource you're looking for cannot be found",
}

CONNECTIONS_RESPONSE = [
    {
        "id": "e1eede29-f875-4a5d-8470-17f6a29a88b1",
        "authEventId": "d99ecdfe-391d-43d2-b834-17636ba90e8d",
        "tenantId": "70784a63-d24b-46a9-a4db-0e70a274b056",
        "tenantType": "ORGANISATION",
        "tenantName": "Maple Florists Ltd",
        "createdDateUtc": "2019-07-09T23:40:30.183313",
        "updatedDateUtc": "2020-05-15T01:35:13.849198",
    }
]


# --- Time ---

class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingSleep:
    """Stands in for asyncio.sleep: records delays and moves the fake clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)
        await asyncio.sleep(0)


def json_response(status_code: int, payload=None, headers: dict | None = None) -> httpx.Response:
    if payload is None:
        return httpx.Response(status_code, headers=headers)
    return httpx.Response(status_code, json=payload, headers=headers)


def fresh_token(clock: FakeClock, seconds: int = 1800, refresh_token: str | None = "refresh-1") -> TokenStore:
    return TokenStore(
        access_token="access-1",
        refresh_token=refresh_token,
        expires_at=clock() + timedelta(seconds=seconds),
    )


class Recorder:
    """MockTransport handler that replays responses and keeps the requests it saw."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


# --- Fixtures ---

@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="http://localhost:4000/auth/xero/callback",
        max_concurrent_requests=None,
    )


@pytest.fixture
def credentials():
    return Credentials("client-id", "client-secret")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep(clock):
    return RecordingSleep(clock)


@pytest.fixture
def make_executor(settings, credentials, clock, sleep):
    """Build an executor with a valid token whose HTTP traffic goes to `handler`."""

    def _make(handler, **overrides):
        config = settings.model_copy(update=overrides)
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        authenticator = Authenticator(credentials, http, grant=GrantType.AUTHORIZATION_CODE, clock=clock)
        authenticator.set_token(fresh_token(clock))
        return RequestExecutor(http, authenticator, config, sleep=sleep, clock=clock)

    return _make
