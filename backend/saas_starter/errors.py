# saas_starter/errors.py
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import is_production
from .models import utcnow

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------
# Error types raised by routes and services
# -------------------------------------------------------------------
class AppError(Exception):
    def __init__(self, message: str, status_code: int = 500, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class ValidationError(AppError):
    def __init__(self, message: str, fields: Optional[dict[str, list[str]]] = None):
        super().__init__(message, 400, "VALIDATION_ERROR")
        self.fields = fields


class AuthenticationError(AppError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, 401, "AUTHENTICATION_ERROR")


class AuthorizationError(AppError):
    def __init__(self, message: str = "Access denied"):
        super().__init__(message, 403, "AUTHORIZATION_ERROR")


class NotFoundError(AppError):
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, 404, "NOT_FOUND")


class PlanUpgradeRequiredError(AppError):
    def __init__(self, message: str, feature: str):
        super().__init__(message, 403, "PLAN_UPGRADE_REQUIRED")
        self.feature = feature


class RateLimitError(AppError):
    def __init__(self, message: str = "Too many requests", reset_at: Optional[datetime] = None):
        super().__init__(message, 429, "RATE_LIMIT_EXCEEDED")
        self.reset_at = reset_at


# -------------------------------------------------------------------
# Handlers (registered in main.py)
# -------------------------------------------------------------------
def _wants_html(request: Request) -> bool:
    accept = (request.headers.get("accept") or "").lower()
    # browsers usually send text/html
    return "text/html" in accept


async def app_error_handler(request: Request, exc: AppError):
    logger.warning("API Error: %s", exc.message, extra={"code": exc.code, "status_code": exc.status_code})

    # Unauthenticated → send to login page in browser
    if exc.status_code == 401 and _wants_html(request):
        return RedirectResponse(url="/auth/login", status_code=303)

    content: dict = {"error": exc.message, "code": exc.code}
    if isinstance(exc, ValidationError) and exc.fields:
        content["fields"] = exc.fields
    if isinstance(exc, PlanUpgradeRequiredError):
        content["feature"] = exc.feature

    headers: dict[str, str] = {}
    if isinstance(exc, RateLimitError) and exc.reset_at:
        seconds = (exc.reset_at - utcnow()).total_seconds()
        headers["Retry-After"] = str(max(0, math.ceil(seconds)))

    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        key = ".".join(loc) or "body"
        fields.setdefault(key, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=400,
        content={"error": "Invalid input", "code": "VALIDATION_ERROR", "fields": fields},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Unauthenticated → send to login page in browser
    if exc.status_code == 401 and _wants_html(request):
        return RedirectResponse(url="/auth/login", status_code=303)

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unexpected error on %s %s", request.method, request.url.path, exc_info=exc)

    # Don't expose internal errors in production
    message = "Internal server error" if is_production() else (str(exc) or "Unknown error")
    return JSONResponse(status_code=500, content={"error": message})
