# Central exception handlers: known library errors to status codes, everything else to 500

import logging
import re

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

logger = logging.getLogger(__name__)


class UploadRejected(Exception):
    """An uploaded file broke the type, size or count limits."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


_INDEX_FIELD = re.compile(r"index: (?:\w+\.)*?(\w+?)_-?1")

def duplicate_field(exc: DuplicateKeyError) -> str:
    details = exc.details or {}
    key_value = details.get("keyValue") or {}
    if key_value:
        return next(iter(key_value)).split(".")[-1]
    match = _INDEX_FIELD.search(str(exc))
    return match.group(1) if match else ""

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": message})

async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    field = duplicate_field(exc)
    label = field.replace("_", " ").capitalize() if field else "Record"
    logger.warning("Duplicate key on %s %s: %s", request.method, request.url.path, field or exc)
    return _error(400, f"{label} already exists")

async def validation_handler(request: Request, exc: ValidationError):
    messages = [err.get("msg", "Invalid value") for err in exc.errors()]
    return _error(400, "; ".join(messages) or "Validation failed")

async def upload_handler(request: Request, exc: UploadRejected):
    return _error(400, exc.message)

async def unhandled_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")

def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(ValidationError, validation_handler)
    app.add_exception_handler(UploadRejected, upload_handler)
    app.add_exception_handler(Exception, unhandled_handler)
