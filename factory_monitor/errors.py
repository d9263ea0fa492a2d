from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        *,
        details: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


class InvalidWindowError(ApiError):
    def __init__(self, message: str, *, field: str = "start_date"):
        super().__init__(
            400,
            "VALIDATION_ERROR",
            message,
            details=[{"field": field, "message": message}],
        )


class StoreUnavailableError(ApiError):
    """Event store could not be reached or did not answer in time.

    Always retryable: callers should back off and try again.
    """

    def __init__(
        self,
        message: str = "Event store is unavailable.",
        *,
        code: str = "STORE_UNAVAILABLE",
        cause: str | None = None,
    ):
        super().__init__(503, code, message, details={"cause": cause} if cause else None)
        self.cause = cause


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": get_request_id(request),
    }
    if details is not None:
        error["details"] = details
    headers = {"Retry-After": "5"} if status_code == 503 else None
    return JSONResponse(status_code=status_code, content={"error": error}, headers=headers)


def validation_details(errors: list[dict[str, Any]]) -> list[dict[str, str]]:
    details: list[dict[str, str]] = []
    for item in errors:
        location = [str(part) for part in item.get("loc", ()) if part not in ("body", "query", "path")]
        details.append(
            {
                "field": ".".join(location) or "body",
                "message": str(item.get("msg", "Invalid value.")),
            }
        )
    return details
