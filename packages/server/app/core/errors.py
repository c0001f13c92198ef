"""
Typed failures of the sign-off workflow.

Every refusal is a SignOffError carrying a stable ``code`` for the issuer and
support tooling, an HTTP status, and a plain-language ``message`` that is safe
to show to a magic-link recipient. Only TransientStorageError may be retried,
and only at the HTTP boundary.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from portfolio_shared.schemas.common import ErrorResponse, TokenInvalidReason


class SignOffError(Exception):
    code = "signoff_error"
    status_code = 400
    message = "The request could not be completed."

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(detail or self.message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=self.message, code=self.code)


class Unauthorized(SignOffError):
    code = "unauthorized"
    status_code = 401
    message = "You are not allowed to do that."


class RecordNotFound(SignOffError):
    code = "record_not_found"
    status_code = 404
    message = "That evidence record could not be found."


class InvalidKind(SignOffError):
    code = "invalid_kind"
    status_code = 400
    message = "That form type does not match this evidence."


TOKEN_MESSAGES = {
    TokenInvalidReason.NOT_FOUND: "This link is not valid.",
    TokenInvalidReason.USED: "This link has already been used.",
    TokenInvalidReason.EXPIRED: "This link has expired.",
    TokenInvalidReason.TARGET_SIGNED_OFF: "This form has already been signed off.",
}


class TokenInvalid(SignOffError):
    code = "token_invalid"
    status_code = 401

    def __init__(self, reason: TokenInvalidReason, detail: Optional[str] = None):
        self.reason = reason
        super().__init__(detail or reason.value)

    @property
    def message(self) -> str:  # type: ignore[override]
        return TOKEN_MESSAGES[self.reason]

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=self.message, code=self.code, reason=self.reason.value)


class RecordMismatch(SignOffError):
    code = "record_mismatch"
    status_code = 401
    message = "This link is not valid for that form."


class IllegalTransition(SignOffError):
    code = "illegal_transition"
    status_code = 400
    message = "This form can't be changed right now."


class AlreadySignedOff(SignOffError):
    code = "already_signed_off"
    status_code = 401
    message = "This form has already been signed off."


class InvalidRequest(SignOffError):
    code = "invalid_request"
    status_code = 400
    message = "The request is missing required information."

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail)
        if detail:
            self.message = detail


class TransientStorageError(SignOffError):
    code = "storage_unavailable"
    status_code = 500
    message = "Something went wrong. Please try again."


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

async def signoff_error_handler(request: Request, exc: SignOffError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(exclude_none=True),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies are a 400 on this API, not FastAPI's default 422."""
    fields = sorted({".".join(str(p) for p in err["loc"][1:]) for err in exc.errors()})
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error="Missing or invalid fields: " + ", ".join(fields) if fields else InvalidRequest.message,
            code=InvalidRequest.code,
        ).model_dump(exclude_none=True),
    )
