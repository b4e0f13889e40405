"""Request identity and error responses shared by the student routes."""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

# Set by the session layer in front of this service.
USER_HEADER = "X-User-Email"


def _error_payload(message: str) -> dict[str, object]:
    return {"ok": False, "error": message}


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=_error_payload(message))


def unauthorized() -> JSONResponse:
    return error_response(401, "Unauthorized")


def session_email(request: Request) -> str | None:
    """Return the signed-in student's email, or None for anonymous calls."""
    email = request.headers.get(USER_HEADER, "").strip()
    return email or None
