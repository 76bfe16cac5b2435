"""Uniform ``{"success": false, "error": ...}`` error responses."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = 'Too many requests. Please try again later.'
INTERNAL_ERROR_MESSAGE = 'Internal server error'


def error_response(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={'success': False, 'error': message},
        headers=headers,
    )


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return 'Invalid request'
    first = errors[0]
    location = '.'.join(str(part) for part in first.get('loc', ()) if part not in ('body', 'path', 'query'))
    message = first.get('msg', 'Invalid value')
    return f'{location}: {message}' if location else message


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, 'headers', None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(status.HTTP_400_BAD_REQUEST, _validation_message(exc))


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    client = request.client.host if request.client else 'unknown'
    logger.warning('Rate limit exceeded for %s on %s: %s', client, request.url.path, exc.detail)
    return error_response(status.HTTP_429_TOO_MANY_REQUESTS, RATE_LIMIT_MESSAGE)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception('Unhandled error on %s %s', request.method, request.url.path)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR_MESSAGE)


async def catch_unhandled_errors(request: Request, call_next):
    """HTTP middleware turning unexpected errors into the 500 envelope.

    Runs inside the other middleware, so the response still gets the
    security and CORS headers.
    """
    try:
        return await call_next(request)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.url.path)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR_MESSAGE)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
