from enum import Enum

from pydantic import BaseModel, ConfigDict

MAX_BODY_BYTES = 2048


class Method(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


class DecimalPrecision(int, Enum):
    """Value of the `unitdp` query parameter."""

    TWO = 2
    FOUR = 4


def truncate_body(body: str, limit: int = MAX_BODY_BYTES) -> str:
    """Cut a response body to at most `limit` UTF-8 bytes, marking the cut."""
    raw = body.encode("utf-8")
    if len(raw) <= limit:
        return body
    # room for the longest marker this body can need
    reserve = len(f"…[truncated {len(raw)} bytes]".encode("utf-8"))
    head = raw[: max(0, limit - reserve)].decode("utf-8", errors="ignore")
    dropped = len(raw) - len(head.encode("utf-8"))
    return f"{head}…[truncated {dropped} bytes]"


class ResponseContext(BaseModel):
    """Snapshot of a single HTTP call, attached to errors for diagnosis."""

    model_config = ConfigDict(frozen=True)

    url: str
    method: Method
    status_code: int
    response_body: str
    entity_type: str

    @classmethod
    def capture(cls, *, url: str, method: Method | str, status_code: int, body: str, entity_type: str) -> "ResponseContext":
        return cls(
            url=url,
            method=Method(method),
            status_code=status_code,
            response_body=truncate_body(body),
            entity_type=entity_type,
        )


class ErrorResponse(BaseModel):
    error_code: str
    message: str


class StatusResponse(BaseModel):
    integration: str
    authenticated: bool
    message: str
