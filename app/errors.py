from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


class ResourceConflictError(ApiError):
    """A booking or reservation would break a mutual-exclusion invariant."""

    def __init__(
        self,
        message: str,
        *,
        resource_type: str,
        resource_id: int,
        conflicting_id: int | None = None,
    ):
        super().__init__(
            status_code=409,
            code="RESOURCE_CONFLICT",
            message=message,
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "conflicting_id": conflicting_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.conflicting_id = conflicting_id


class PastCutoffError(ApiError):
    def __init__(self, message: str, *, cutoff_at: datetime, starts_at: datetime):
        super().__init__(
            status_code=409,
            code="PAST_CUTOFF",
            message=message,
            details={
                "cutoff_at": cutoff_at.isoformat(),
                "starts_at": starts_at.isoformat(),
            },
        )
        self.cutoff_at = cutoff_at
        self.starts_at = starts_at


class AlreadyDecidedError(ApiError):
    def __init__(self, *, approval_id: int, current_status: str):
        super().__init__(
            status_code=409,
            code="ALREADY_DECIDED",
            message=f"WFH request {approval_id} is already {current_status}.",
            details={"approval_id": approval_id, "status": current_status},
        )
        self.approval_id = approval_id
        self.current_status = current_status


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
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": get_request_id(request),
    }
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})
