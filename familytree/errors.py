"""
Client-facing error taxonomy.

Each error is an ``HTTPException`` so routes and dependencies can raise it
directly and FastAPI renders it as ``{"detail": ...}``.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException


class ApiError(HTTPException):
    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: Any = None, headers: dict[str, str] | None = None):
        super().__init__(
            status_code=self.status_code,
            detail=detail if detail is not None else self.default_detail,
            headers=headers,
        )


class ValidationError(ApiError):
    status_code = 400
    default_detail = "Invalid request"


class Unauthorized(ApiError):
    status_code = 401
    default_detail = "Unauthorized"

    def __init__(self, detail: Any = None):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(ApiError):
    status_code = 403
    default_detail = "Forbidden: Insufficient privileges"


class NotFound(ApiError):
    status_code = 404
    default_detail = "Not found"


class Conflict(ApiError):
    status_code = 409
    default_detail = "Conflict"


class UpstreamFailure(ApiError):
    """
    The store, credential service or mailer returned an error.

    ``caller_caused`` maps to 400 (e.g. the e-mail is already registered);
    anything else is treated as infrastructural and maps to 500.
    """

    default_detail = "Upstream service error"

    def __init__(self, detail: Any = None, *, caller_caused: bool = False):
        self.caller_caused = caller_caused
        self.status_code = 400 if caller_caused else 500
        super().__init__(detail)
