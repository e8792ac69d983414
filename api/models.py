"""
LOR Ledger — API Models

Request/response dataclasses for the API server.
No FastAPI dependency — used by server and tests.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any

from connector.errors import ErrorKind, LorError


@dataclass
class StudentSubmission:
    """POST /v1/students request body."""
    name: str
    course: str
    email: str
    request: bool = True

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> StudentSubmission:
        return cls(
            name=body.get("name", ""),
            course=body.get("course", ""),
            email=body.get("email", ""),
            request=body.get("request", True),
        )

    def validate(self) -> list[str]:
        """Return list of validation errors (empty = valid)."""
        errors = []
        for name in ("name", "course", "email"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                errors.append(f"{name} is required and must be a non-empty string")
        if not isinstance(self.request, bool):
            errors.append("request must be a boolean")
        return errors


@dataclass
class StudentIdPath:
    """Path parameter for /v1/students/{id}/..."""
    student_id: str

    def validate(self) -> list[str]:
        try:
            value = int(self.student_id)
        except (TypeError, ValueError):
            return ["student id must be an integer"]
        if value < 0:
            return ["student id must not be negative"]
        return []

    @property
    def value(self) -> int:
        return int(self.student_id)


@dataclass
class ErrorResponse:
    """Body of every non-2xx ledger or connection response."""
    kind: str
    message: str
    detail: str = ""
    reason: str | None = None

    @classmethod
    def from_error(cls, error: LorError) -> ErrorResponse:
        failure = error.failure
        return cls(
            kind=failure.kind.value,
            message=failure.message,
            detail=failure.detail,
            reason=failure.reason,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ErrorKind → HTTP status. Anything not listed maps to 500.
HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.NOT_CONNECTED: 409,
    ErrorKind.UNCONFIGURED: 503,
    ErrorKind.AGENT_UNAVAILABLE: 503,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.ALREADY_REQUESTED: 409,
    ErrorKind.NOT_REQUESTED: 409,
    ErrorKind.INVALID_INPUT: 422,
    ErrorKind.USER_REJECTED: 400,
    ErrorKind.INSUFFICIENT_RESOURCES: 402,
    ErrorKind.EXECUTION_REVERTED: 409,
    ErrorKind.TRANSPORT_ERROR: 502,
    ErrorKind.LEDGER_NOT_FOUND: 502,
    ErrorKind.LEDGER_VERIFICATION_FAILED: 502,
    ErrorKind.PROVIDER_INIT_FAILED: 502,
    ErrorKind.PENDING_TIMEOUT: 504,
}


def http_status_for(kind: ErrorKind) -> int:
    return HTTP_STATUS.get(kind, 500)
