from datetime import datetime

from xero_client.models.common import ResponseContext
from xero_client.models.errors import ApiErrorResponse, ValidationElement
from xero_client.rate_limit import RateLimitType


class XeroError(Exception):
    """Base class for every failure surfaced by the client."""

    def __init__(self, message: str, context: ResponseContext | None = None):
        super().__init__(message)
        self.context = context

    @property
    def api_response(self) -> ApiErrorResponse | None:
        return None

    def diagnostic_context(self) -> dict:
        """Flat key/value view of the failure for structured logs or error reporting."""
        data: dict = {"xero.error": type(self).__name__}
        if self.context is not None:
            data["xero.url"] = self.context.url
            data["xero.method"] = self.context.method.value
            data["xero.status_code"] = self.context.status_code
            data["xero.entity_type"] = self.context.entity_type
            body = self.context.response_body
            data["xero.response_body"] = body if len(body) <= 500 else body[:500] + "..."
        response = self.api_response
        if response is not None:
            if response.error_number is not None:
                data["xero.error_number"] = response.error_number
            if response.message:
                data["xero.message"] = response.message
            data["xero.error_type"] = response.type
        return data


class AuthenticationError(XeroError):
    """Raised when a token cannot be obtained or the API rejects it."""


class NotFoundError(XeroError):
    def __init__(self, url: str, context: ResponseContext | None = None):
        entity = context.entity_type if context else "resource"
        super().__init__(f"{entity} not found at {url}", context)
        self.url = url


class RateLimitError(XeroError):
    """Raised when a rate limit is hit and no more retries are allowed."""

    def __init__(self, limit_type: RateLimitType, reset_at: datetime | None, context: ResponseContext | None = None):
        when = f", resets at {reset_at.isoformat()}" if reset_at else ""
        super().__init__(f"Xero {limit_type.value} rate limit exceeded{when}", context)
        self.limit_type = limit_type
        self.reset_at = reset_at

    def diagnostic_context(self) -> dict:
        data = super().diagnostic_context()
        data["xero.limit_type"] = self.limit_type.value
        if self.reset_at is not None:
            data["xero.reset_at"] = self.reset_at.isoformat()
        return data


class ValidationException(XeroError):
    def __init__(self, response: ApiErrorResponse, context: ResponseContext | None = None):
        super().__init__(str(response), context)
        self.response = response
        self.elements: list[ValidationElement] = list(response.elements or [])

    @property
    def api_response(self) -> ApiErrorResponse:
        return self.response

    @property
    def messages(self) -> list[str]:
        return [element.message for element in self.elements]


class DeserializationError(XeroError):
    """A response body could not be turned into the expected type.

    `position` is the byte offset in the full body where parsing failed, or None
    when it cannot be located. `excerpt` shows the body around that offset.
    """

    def __init__(
        self,
        context: ResponseContext,
        position: int | None,
        detail: str,
        excerpt: str | None = None,
    ):
        where = f" at byte {position}" if position is not None else ""
        super().__init__(
            f"Failed to deserialize {context.entity_type} response from "
            f"{context.method.value} {context.url} (HTTP {context.status_code}){where}: {detail}",
            context,
        )
        self.position = position
        self.detail = detail
        self.excerpt = excerpt

    def diagnostic_context(self) -> dict:
        data = super().diagnostic_context()
        data["xero.parse_position"] = self.position
        data["xero.parse_detail"] = self.detail
        return data


class NetworkError(XeroError):
    """Transport failure or 5xx response."""

    def __init__(self, message: str, transient: bool = True, context: ResponseContext | None = None):
        super().__init__(message, context)
        self.transient = transient


class IntegrationError(XeroError):
    """Raised when the API answers with a status the client has no specific mapping for."""

    def __init__(
        self,
        status: int,
        body: str,
        context: ResponseContext | None = None,
        response: ApiErrorResponse | None = None,
    ):
        summary = str(response) if response is not None else body[:200]
        super().__init__(f"Xero API error (HTTP {status}): {summary}", context)
        self.status = status
        self.body = body
        self.response = response

    @property
    def api_response(self) -> ApiErrorResponse | None:
        return self.response
