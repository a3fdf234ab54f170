import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, Awaitable, Callable

import httpx

from xero_client.auth import Authenticator, Credentials, GrantType
from xero_client.concurrency import ConcurrencyGate
from xero_client.config import Settings, get_settings
from xero_client.executor import RequestExecutor
from xero_client.http_client import build_async_client
from xero_client.models.common import DecimalPrecision, Method
from xero_client.models.entities import Connection
from xero_client.models.token import TokenStore
from xero_client.rate_limit import RateLimitTracker

logger = logging.getLogger(__name__)


class XeroClient:
    """One API session: token, rate-limit state, concurrency gate and connection pool.

    Nothing is shared between instances, so several clients (e.g. one per app
    registration) can run side by side.
    """

    def __init__(
        self,
        credentials: Credentials,
        settings: Settings | None = None,
        *,
        grant: GrantType = GrantType.CLIENT_CREDENTIALS,
        scopes: list[str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.settings = settings or get_settings()
        self.http = build_async_client(self.settings, transport)
        timing = {"clock": clock} if clock else {}
        self.authenticator = Authenticator(
            credentials,
            self.http,
            grant=grant,
            scopes=scopes if scopes is not None else self.settings.scopes,
            redirect_uri=self.settings.redirect_uri,
            token_url=self.settings.token_url,
            authorize_endpoint=self.settings.authorize_url,
            **timing,
        )
        self.tracker = RateLimitTracker()
        self.gate = ConcurrencyGate(self.settings.max_concurrent_requests)
        if sleep:
            timing["sleep"] = sleep
        self.executor = RequestExecutor(
            self.http,
            self.authenticator,
            self.settings,
            tracker=self.tracker,
            gate=self.gate,
            **timing,
        )

    # --- Construction ---

    @classmethod
    async def from_client_credentials(
        cls,
        credentials: Credentials,
        scopes: list[str] | None = None,
        settings: Settings | None = None,
        **kwargs: Any,
    ) -> "XeroClient":
        client = cls(credentials, settings, grant=GrantType.CLIENT_CREDENTIALS, scopes=scopes, **kwargs)
        await client.authenticator.acquire()
        return client

    @classmethod
    async def from_authorization_code(
        cls,
        credentials: Credentials,
        code: str,
        settings: Settings | None = None,
        **kwargs: Any,
    ) -> "XeroClient":
        client = cls(credentials, settings, grant=GrantType.AUTHORIZATION_CODE, **kwargs)
        await client.authenticator.exchange_code(code)
        return client

    @classmethod
    def from_token(cls, credentials: Credentials, token: TokenStore, settings: Settings | None = None, **kwargs: Any) -> "XeroClient":
        """Resume a session from a token the caller persisted."""
        client = cls(credentials, settings, grant=GrantType.AUTHORIZATION_CODE, **kwargs)
        client.authenticator.set_token(token)
        return client

    def authorize_url(self, state: str | None = None) -> tuple[str, str]:
        return self.authenticator.authorize_url(state)

    # --- Session state ---

    @property
    def tenant_id(self) -> str | None:
        return self.executor.tenant_id

    def set_tenant(self, tenant_id: str | None) -> None:
        logger.info("Using Xero tenant %s", tenant_id)
        self.executor.tenant_id = tenant_id

    @property
    def decimal_precision(self) -> DecimalPrecision:
        return self.executor.decimal_precision

    @decimal_precision.setter
    def decimal_precision(self, value: DecimalPrecision) -> None:
        self.executor.decimal_precision = DecimalPrecision(value)

    async def ensure_valid_token(self) -> TokenStore:
        return await self.authenticator.ensure_valid_token()

    # --- Requests ---

    async def execute(self, method: Method | str, url: str, entity_type: str, response_model: Any = None, **kwargs: Any) -> Any:
        return await self.executor.execute(method, url, entity_type, response_model, **kwargs)

    def endpoint(self, path: str) -> str:
        return self.settings.api_base_url.rstrip("/") + "/" + path.lstrip("/")

    async def get(self, path: str, entity_type: str, response_model: Any = None, **kwargs: Any) -> Any:
        return await self.execute(Method.GET, self.endpoint(path), entity_type, response_model, **kwargs)

    async def post(self, path: str, entity_type: str, body: Any, response_model: Any = None, **kwargs: Any) -> Any:
        return await self.execute(Method.POST, self.endpoint(path), entity_type, response_model, body=body, **kwargs)

    async def put(self, path: str, entity_type: str, body: Any, response_model: Any = None, **kwargs: Any) -> Any:
        return await self.execute(Method.PUT, self.endpoint(path), entity_type, response_model, body=body, **kwargs)

    async def delete(self, path: str, entity_type: str, response_model: Any = None, **kwargs: Any) -> Any:
        return await self.execute(Method.DELETE, self.endpoint(path), entity_type, response_model, **kwargs)

    async def connections(self) -> list[Connection]:
        """List the tenants the current token can access."""
        return await self.execute(Method.GET, self.settings.connections_url, "Connection", list[Connection])

    # --- Lifecycle ---

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "XeroClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


@lru_cache
def get_client() -> XeroClient:
    """Process-wide client used by the local auth web app."""
    settings = get_settings()
    return XeroClient(Credentials.from_settings(settings), settings, grant=GrantType.AUTHORIZATION_CODE)
