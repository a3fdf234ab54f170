import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Mount

from xero_client.auth import router as auth_router
from xero_client.config import get_settings
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
from xero_client.models.common import ErrorResponse

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


# --- Localhost-only middleware ---

class LocalhostOnlyMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        client_host = request.client.host if request.client else None
        if client_host not in ("127.0.0.1", "::1", "localhost"):
            return JSONResponse(
                status_code=403,
                content=ErrorResponse(error_code="forbidden", message="Localhost access only").model_dump(),
            )
        return await call_next(request)


# --- FastAPI app ---

api = FastAPI(title="Xero Client", version="0.1.0")
api.include_router(auth_router)


# --- Exception handlers ---

def _error(status_code: int, error_code: str, exc: XeroError) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error_code=error_code, message=str(exc)).model_dump())


@api.exception_handler(AuthenticationError)
async def auth_error_handler(request: Request, exc: AuthenticationError):
    return _error(401, "auth_error", exc)


@api.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error(404, "not_found", exc)


@api.exception_handler(ValidationException)
async def validation_error_handler(request: Request, exc: ValidationException):
    return _error(422, "validation_error", exc)


@api.exception_handler(RateLimitError)
async def rate_limit_error_handler(request: Request, exc: RateLimitError):
    return _error(429, "rate_limit", exc)


@api.exception_handler(NetworkError)
async def network_error_handler(request: Request, exc: NetworkError):
    return _error(502, "network_error", exc)


@api.exception_handler(DeserializationError)
async def deserialization_error_handler(request: Request, exc: DeserializationError):
    logger.error("Deserialization failure: %s", exc.diagnostic_context())
    return _error(502, "deserialization_error", exc)


@api.exception_handler(IntegrationError)
async def integration_error_handler(request: Request, exc: IntegrationError):
    return _error(500, "integration_error", exc)


# --- Starlette root app ---

app = Starlette(
    middleware=[Middleware(LocalhostOnlyMiddleware)],
    routes=[Mount("/", app=api)],
)


def run():
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "xero_client.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
