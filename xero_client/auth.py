import asyncio
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from pydantic import ValidationError

from xero_client.config import Settings
from xero_client.exceptions import AuthenticationError
from xero_client.models.common import StatusResponse
from xero_client.models.token import TokenResponse, TokenStore

logger = logging.getLogger(__name__)

OFFLINE_ACCESS = "offline_access"

SCOPES = {
    "accounting": [
        "accounting.transactions",
        "accounting.transactions.read",
        "accounting.reports.read",
        "accounting.journals.read",
        "accounting.settings",
        "accounting.settings.read",
        "accounting.contacts",
        "accounting.contacts.read",
        "accounting.attachments",
        "accounting.attachments.read",
    ],
    "payroll": [
        "payroll.employees",
        "payroll.employees.read",
        "payroll.payruns",
        "payroll.payruns.read",
        "payroll.payslip",
        "payroll.payslip.read",
        "payroll.settings",
        "payroll.settings.read",
        "payroll.timesheets",
        "payroll.timesheets.read",
    ],
    "identity": ["openid", "profile", "email", OFFLINE_ACCESS],
}

ACCOUNTING_SCOPES = SCOPES["accounting"]
PAYROLL_SCOPES = SCOPES["payroll"]

# Consent URLs issued but not yet answered; the oldest are forgotten first.
MAX_PENDING_STATES = 32


class GrantType(str, Enum):
    CLIENT_CREDENTIALS = "client_credentials"
    AUTHORIZATION_CODE = "authorization_code"


@dataclass(frozen=True)
class Credentials:
    client_id: str
    client_secret: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "Credentials":
        if not settings.client_id:
            raise AuthenticationError("Xero client id not configured. Set XERO_CLIENT_ID in .env")
        return cls(settings.client_id, settings.client_secret or None)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Authenticator:
    """Obtains and renews access tokens for one client session.

    `ensure_valid_token` is the entry point used before every request. Renewal
    runs under a lock so concurrent callers that see an expiring token share a
    single exchange with the identity provider.
    """

    def __init__(
        self,
        credentials: Credentials,
        http: httpx.AsyncClient,
        *,
        grant: GrantType = GrantType.CLIENT_CREDENTIALS,
        scopes: list[str] | None = None,
        redirect_uri: str | None = None,
        token_url: str = "https://identity.xero.com/connect/token",
        authorize_endpoint: str = "https://login.xero.com/identity/connect/authorize",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.credentials = credentials
        self.grant = grant
        self.scopes = list(scopes or [])
        self.redirect_uri = redirect_uri
        self.token_url = token_url
        self.authorize_endpoint = authorize_endpoint
        self._http = http
        self._clock = clock
        self._store: TokenStore | None = None
        self._lock = asyncio.Lock()
        # insertion-ordered, oldest first
        self._pending_states: dict[str, None] = {}

    @property
    def token(self) -> TokenStore | None:
        return self._store

    def set_token(self, store: TokenStore) -> None:
        """Install a token obtained elsewhere, e.g. one the caller persisted."""
        self._store = store

    def clear_token(self) -> None:
        """Forget the current token, e.g. after the user disconnects the app."""
        self._store = None

    # --- Grant exchanges ---

    def authorize_url(self, state: str | None = None) -> tuple[str, str]:
        """Build the consent URL for the authorization-code flow.

        Returns the URL and the CSRF state that the callback must echo back.
        """
        if not self.redirect_uri:
            raise AuthenticationError("A redirect URI is required for the authorization code flow")
        state = state or secrets.token_urlsafe(16)
        self._pending_states[state] = None
        while len(self._pending_states) > MAX_PENDING_STATES:
            del self._pending_states[next(iter(self._pending_states))]
        query = urlencode({
            "response_type": "code",
            "client_id": self.credentials.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
            "state": state,
        })
        return f"{self.authorize_endpoint}?{query}", state

    async def acquire(self) -> TokenStore:
        if self.grant is GrantType.AUTHORIZATION_CODE:
            raise AuthenticationError(
                "No Xero token for this session. Complete the authorization code flow first."
            )
        data = {"grant_type": "client_credentials"}
        if self.scopes:
            data["scope"] = " ".join(self.scopes)
        response, issued_at = await self._request_token(data)
        self._store = TokenStore.from_response(response, issued_at)
        logger.info("Acquired client credentials token, expires at %s", self._store.expires_at.isoformat())
        return self._store

    async def exchange_code(self, code: str, state: str | None = None) -> TokenStore:
        if state is not None:
            if state not in self._pending_states:
                raise AuthenticationError("OAuth state mismatch, the callback was not issued by this session")
            del self._pending_states[state]
        response, issued_at = await self._request_token({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri or "",
        })
        self._store = TokenStore.from_response(response, issued_at)
        logger.info("Exchanged authorization code, expires at %s", self._store.expires_at.isoformat())
        return self._store

    async def refresh(self, store: TokenStore) -> TokenStore:
        if not store.refresh_token:
            raise AuthenticationError("Token has no refresh token, re-authorize to continue")
        response, issued_at = await self._request_token({
            "grant_type": "refresh_token",
            "refresh_token": store.refresh_token,
        })
        refreshed = store.model_copy(deep=True)
        refreshed.apply_refresh(response, issued_at)
        self._store = refreshed
        logger.info("Refreshed token, expires at %s", refreshed.expires_at.isoformat())
        return refreshed

    async def ensure_valid_token(self) -> TokenStore:
        """Return a token that is not within 60s of expiry, renewing it if needed."""
        store = self._store
        if store is not None and not store.is_expiring(self._clock()):
            return store

        async with self._lock:
            # another caller may have renewed while we waited
            store = self._store
            if store is not None and not store.is_expiring(self._clock()):
                return store

            if self.grant is GrantType.CLIENT_CREDENTIALS:
                store = await self.acquire()
            elif store is None:
                raise AuthenticationError(
                    "No Xero token for this session. Complete the authorization code flow first."
                )
            else:
                store = await self.refresh(store)

            if store.is_expiring(self._clock()):
                raise AuthenticationError(
                    f"Identity provider issued a token expiring at {store.expires_at.isoformat()}, "
                    "too close to use"
                )
            return store

    async def _request_token(self, data: dict) -> tuple[TokenResponse, datetime]:
        issued_at = self._clock()
        auth = None
        if self.credentials.client_secret:
            auth = (self.credentials.client_id, self.credentials.client_secret)
        else:
            data = {**data, "client_id": self.credentials.client_id}

        try:
            resp = await self._http.post(self.token_url, data=data, auth=auth)
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Token request to {self.token_url} failed: {e}") from e

        if resp.status_code != 200:
            raise AuthenticationError(
                f"Token request rejected (HTTP {resp.status_code}): {_describe_oauth_error(resp)}"
            )
        try:
            return TokenResponse.model_validate_json(resp.content), issued_at
        except ValidationError as e:
            raise AuthenticationError(f"Malformed token response: {e}") from e


def _describe_oauth_error(resp: httpx.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(payload, dict) and "error" in payload:
        description = payload.get("error_description")
        return f"{payload['error']}: {description}" if description else str(payload["error"])
    return resp.text[:200]


# --- Auth router ---

def get_authenticator() -> Authenticator:
    from xero_client.client import get_client

    return get_client().authenticator


router = APIRouter(prefix="/auth/xero", tags=["auth"])


@router.get("/setup")
def auth_setup(authenticator: Authenticator = Depends(get_authenticator)):
    """Redirect to the Xero consent screen."""
    url, _ = authenticator.authorize_url()
    return RedirectResponse(url, status_code=302)


@router.get("/callback")
async def auth_callback(code: str, state: str, authenticator: Authenticator = Depends(get_authenticator)) -> StatusResponse:
    """Handle the redirect from Xero and exchange the code for tokens."""
    store = await authenticator.exchange_code(code, state)
    return StatusResponse(
        integration="xero",
        authenticated=True,
        message=f"Xero authorized until {store.expires_at.isoformat()}. You can close this tab.",
    )


@router.get("/status")
def auth_status(authenticator: Authenticator = Depends(get_authenticator)) -> StatusResponse:
    store = authenticator.token
    if store is None:
        return StatusResponse(integration="xero", authenticated=False, message="Not authenticated, visit /auth/xero/setup")
    expiring = store.is_expiring(_utcnow())
    renewable = store.refresh_token is not None
    return StatusResponse(
        integration="xero",
        authenticated=not expiring or renewable,
        message=f"Token expires at {store.expires_at.isoformat()}" + (" (refreshable)" if renewable else ""),
    )
