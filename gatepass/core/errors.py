"""
Error taxonomy for gate pass operations and logging helpers.

Every workflow failure the caller can act on is a ``GatePassError``. Store
faults (``SQLAlchemyError`` and friends) are never wrapped and reach the
caller unmodified.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class GatePassError(Exception):
    """Base class for expected, caller-recoverable workflow failures."""

    kind = "gate_pass_error"
    status_code = 400

    def __init__(self, message: str, *, terminal: bool = False, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.terminal = terminal
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.kind, "message": self.message, "terminal": self.terminal}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(GatePassError):
    """Malformed or out-of-range input."""

    kind = "validation_error"
    status_code = 400


class PolicyError(GatePassError):
    """Well-formed input that violates a business rule."""

    kind = "policy_error"
    status_code = 403


class ConflictError(GatePassError):
    """The record has already moved past the point where the operation applies."""

    kind = "conflict_error"
    status_code = 409


class NotFoundError(GatePassError):
    kind = "not_found"
    status_code = 404


def log_exception(
    logger: logging.Logger,
    message: str,
    *,
    extra: Optional[dict[str, Any]] = None,
    exc: Optional[BaseException] = None,
) -> None:
    """Log ``message`` with traceback and flattened context fields."""
    context = " ".join(f"{key}={value}" for key, value in (extra or {}).items())
    text = f"{message} {context}".strip()
    if exc is not None:
        logger.error(text, exc_info=(type(exc), exc, exc.__traceback__))
    else:
        logger.exception(text)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(GatePassError)
    async def _gate_pass_error_handler(_request: Request, exc: GatePassError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
