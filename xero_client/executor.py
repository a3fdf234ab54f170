"""Request execution: authentication, dispatch, response mapping and retries.

Every call walks PREPARING -> AUTHENTICATED -> DISPATCHED and ends in SUCCEEDED,
RATE_LIMITED or FAILED. RATE_LIMITED and transient failures go back to
PREPARING after a delay, within separate retry budgets; FAILED raises.
"""

import asyncio
import json
import logging
import random
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

import httpx
from pydantic import TypeAdapter, ValidationError

from xero_client.auth import Authenticator
from xero_client.concurrency import ConcurrencyGate
from xero_client.config import Settings
from xero_client.diagnostics import describe_json_error, describe_validation_error
from xero_client.exceptions import (
    AuthenticationError,
    DeserializationError,
    IntegrationError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ValidationException,
    XeroError,
)
from xero_client.models.common import DecimalPrecision, Method, ResponseContext
from xero_client.models.errors import ApiErrorResponse, ErrorType, ValidationErrorResponse
from xero_client.rate_limit import RateLimitTracker, RateLimitType, retry_after_seconds

logger = logging.getLogger(__name__)

# Entity types whose endpoints accept `unitdp`.
UNITDP_ENTITY_TYPES = frozenset({
    "Invoice",
    "CreditNote",
    "Item",
    "Quote",
    "PurchaseOrder",
    "BankTransaction",
    "Receipt",
    "RepeatingInvoice",
    "Overpayment",
    "Prepayment",
})

TENANT_HEADER = "Xero-tenant-id"


class AttemptState(str, Enum):
    PREPARING = "preparing"
    AUTHENTICATED = "authenticated"
    DISPATCHED = "dispatched"
    SUCCEEDED = "succeeded"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Retry(Exception):
    """Internal signal: back off and start a new attempt."""

    def __init__(self, error: RateLimitError | NetworkError, retry_after: float | None = None):
        self.error = error
        self.retry_after = retry_after


class RequestExecutor:
    def __init__(
        self,
        http: httpx.AsyncClient,
        authenticator: Authenticator,
        settings: Settings,
        *,
        tracker: RateLimitTracker | None = None,
        gate: ConcurrencyGate | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._http = http
        self.authenticator = authenticator
        self.settings = settings
        self.tracker = tracker or RateLimitTracker()
        self.gate = gate or ConcurrencyGate(settings.max_concurrent_requests)
        self.decimal_precision = settings.decimal_precision
        self.tenant_id: str | None = None
        self._sleep = sleep
        self._clock = clock

    async def execute(
        self,
        method: Method | str,
        url: str,
        entity_type: str,
        response_model: Any = None,
        *,
        body: Any = None,
        params: Mapping[str, Any] | None = None,
        unitdp: DecimalPrecision | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Send a request and return the body validated as `response_model`.

        With `response_model=None` the parsed JSON is returned as-is (or None for
        an empty body). Raises a XeroError subclass on failure. `timeout` bounds
        the whole call, retries and waits included.
        """
        call = self._run(Method(method), url, entity_type, response_model, body, params, unitdp)
        if timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout)

    async def _run(
        self,
        method: Method,
        url: str,
        entity_type: str,
        response_model: Any,
        body: Any,
        params: Mapping[str, Any] | None,
        unitdp: DecimalPrecision | None,
    ) -> Any:
        query = self._build_query(entity_type, params, unitdp)
        rate_limit_retries = 0
        network_retries = 0
        max_attempts = 1 + self.settings.max_rate_limit_retries + self.settings.max_network_retries

        for attempt in range(1, max_attempts + 1):
            self._trace(attempt, AttemptState.PREPARING, method, url)
            token = await self.authenticator.ensure_valid_token()
            self._trace(attempt, AttemptState.AUTHENTICATED, method, url)

            delay = self.tracker.pre_dispatch_delay(self._clock())
            if delay > 0:
                logger.info("Holding %s %s for %.1fs until the rate limit resets", method.value, url, delay)
                await self._sleep(delay)

            try:
                async with self.gate.slot():
                    self._trace(attempt, AttemptState.DISPATCHED, method, url)
                    resp = await self._send(method, url, token.access_token, body, query)
                    result = self._handle_response(resp, method, url, entity_type, response_model)
            except _Retry as retry:
                error = retry.error
                if isinstance(error, RateLimitError):
                    self._trace(attempt, AttemptState.RATE_LIMITED, method, url)
                    if rate_limit_retries >= self.settings.max_rate_limit_retries:
                        logger.warning("Giving up on %s %s after %d rate limit retries", method.value, url, rate_limit_retries)
                        raise error from retry.__cause__
                    delay = self._rate_limit_backoff(error.limit_type, retry.retry_after, rate_limit_retries)
                    rate_limit_retries += 1
                else:
                    if network_retries >= self.settings.max_network_retries:
                        self._trace(attempt, AttemptState.FAILED, method, url)
                        logger.warning("Giving up on %s %s after %d network retries", method.value, url, network_retries)
                        raise error from retry.__cause__
                    delay = self._network_backoff(network_retries)
                    network_retries += 1
                logger.info("Retrying %s %s in %.2fs: %s", method.value, url, delay, error)
                await self._sleep(delay)
                continue
            except XeroError:
                self._trace(attempt, AttemptState.FAILED, method, url)
                raise

            self._trace(attempt, AttemptState.SUCCEEDED, method, url)
            return result

        raise AssertionError("retry budget arithmetic is inconsistent")

    def _trace(self, attempt: int, state: AttemptState, method: Method, url: str) -> None:
        logger.debug("attempt %d %s: %s %s", attempt, state.value, method.value, url)

    def _build_query(
        self,
        entity_type: str,
        params: Mapping[str, Any] | None,
        unitdp: DecimalPrecision | None,
    ) -> dict[str, Any]:
        query = dict(params or {})
        if entity_type not in UNITDP_ENTITY_TYPES:
            return query
        if unitdp is not None:
            query["unitdp"] = unitdp.value
        else:
            query.setdefault("unitdp", self.decimal_precision.value)
        return query

    async def _send(self, method: Method, url: str, access_token: str, body: Any, query: dict) -> httpx.Response:
        headers = {"Authorization": f"Bearer {access_token}"}
        if self.tenant_id:
            headers[TENANT_HEADER] = self.tenant_id
        json_body = body if method in (Method.POST, Method.PUT) else None
        try:
            return await self._http.request(
                method.value,
                url,
                headers=headers,
                params=query or None,
                json=json_body,
            )
        except httpx.TransportError as e:
            error = NetworkError(f"{method.value} {url} failed: {e!r}", transient=True)
            raise _Retry(error) from e

    # --- Response mapping ---

    def _handle_response(
        self,
        resp: httpx.Response,
        method: Method,
        url: str,
        entity_type: str,
        response_model: Any,
    ) -> Any:
        status = resp.status_code
        self.tracker.update(resp.headers, status, self._clock())
        text = resp.text
        context = ResponseContext.capture(url=url, method=method, status_code=status, body=text, entity_type=entity_type)

        if 200 <= status < 300:
            return self._deserialize(text, context, response_model)
        if status == 429:
            raise self._rate_limited(resp, context)
        if status >= 500:
            error = NetworkError(f"{method.value} {url} returned HTTP {status}", transient=True, context=context)
            raise _Retry(error)
        raise self._client_error(text, context)

    def _deserialize(self, text: str, context: ResponseContext, response_model: Any) -> Any:
        if not text.strip():
            if response_model is None:
                return None
            raise DeserializationError(context, 0, "empty response body")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            position, detail, snippet = describe_json_error(text, e)
            logger.error("Failed to parse %s response: %s", context.entity_type, detail)
            raise DeserializationError(context, position, detail, snippet) from e
        if response_model is None:
            return payload
        try:
            return TypeAdapter(response_model).validate_python(payload)
        except ValidationError as e:
            position, detail, snippet = describe_validation_error(text, e)
            logger.error("Response did not match %s: %s", context.entity_type, detail)
            raise DeserializationError(context, position, detail, snippet) from e

    def _rate_limited(self, resp: httpx.Response, context: ResponseContext) -> Exception:
        state = self.tracker.state
        error = RateLimitError(state.limit_type, state.reset_at, context)
        if state.limit_type is RateLimitType.DAILY:
            logger.warning("Daily rate limit exhausted, resets at %s", state.reset_at)
            return error
        return _Retry(error, retry_after_seconds(resp.headers))

    def _client_error(self, text: str, context: ResponseContext) -> Exception:
        status = context.status_code
        response = self._parse_api_error(text, context)

        if status in (401, 403):
            detail = str(response) if response is not None else text[:200]
            return AuthenticationError(f"Xero rejected the request (HTTP {status}): {detail}", context)
        if response is not None and response.error_type is ErrorType.VALIDATION:
            return ValidationException(response, context)
        if status == 404 or (response is not None and response.error_type is ErrorType.OBJECT_NOT_FOUND):
            return NotFoundError(context.url, context)
        return IntegrationError(status, text, context, response)

    def _parse_api_error(self, text: str, context: ResponseContext) -> ApiErrorResponse | None:
        """Parse a Xero error body; None when the body is not one.

        A ValidationException body is parsed strictly: if its Elements are
        missing or malformed a DeserializationError is raised.
        """
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return None
        if not isinstance(payload, dict) or not isinstance(payload.get("Type"), str):
            return None

        if payload["Type"] == ErrorType.VALIDATION.value:
            try:
                response = ValidationErrorResponse.model_validate(payload)
            except ValidationError as e:
                position, detail, snippet = describe_validation_error(text, e)
                logger.error("Malformed ValidationException payload: %s", detail)
                raise DeserializationError(context, position, detail, snippet) from e
            if not response.elements:
                logger.warning("ValidationException from %s %s has an empty Elements array", context.method.value, context.url)
            return response

        try:
            return ApiErrorResponse.model_validate(payload)
        except ValidationError:
            logger.debug("Error body from %s is not a Xero error payload", context.url)
            return None

    # --- Backoff ---

    def _network_backoff(self, retries: int) -> float:
        delay = min(self.settings.backoff_cap_seconds, self.settings.backoff_base_seconds * 2**retries)
        return delay + random.uniform(0, delay * 0.1)

    def _rate_limit_backoff(self, limit_type: RateLimitType, retry_after: float | None, retries: int) -> float:
        # Minute tier: never wait longer than Xero asked for.
        if limit_type is RateLimitType.MINUTE:
            if retry_after is not None:
                return min(retry_after, self.settings.minute_backoff_cap_seconds)
            return min(self.settings.minute_backoff_cap_seconds, self.settings.backoff_base_seconds * 2**retries)
        # App-wide tier: at least app_minute_backoff_seconds, doubled per retry.
        floor = max(retry_after or 0.0, self.settings.app_minute_backoff_seconds)
        return min(self.settings.app_minute_backoff_cap_seconds, floor * 2**retries)
