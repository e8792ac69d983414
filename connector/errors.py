"""
LOR Ledger — Error Taxonomy

One closed set of failure kinds shared by the connection orchestrator,
the account requester and the ledger client. Raw errors coming from the
outside world are converted into this taxonomy exactly once, at the
boundary where they are first observed:

  - signing agent errors → agent_error_from_rpc() (this module)
  - ledger / transport errors → ledger.client.classify_ledger_error()

Downstream code switches on ErrorKind / AgentErrorTag only. Nothing
re-parses raw messages after the boundary.

Usage:
    from connector.errors import ErrorKind, Failure, LorError

    try:
        await client.approve_recommendation(3)
    except LorError as e:
        if e.kind == ErrorKind.UNAUTHORIZED:
            ...
        print(e.failure.message)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


# ═══════════════════════════════════════════════════════════════════
# Kinds
# ═══════════════════════════════════════════════════════════════════

class ErrorKind(str, enum.Enum):
    """Every failure the system surfaces to a caller."""
    # Connection
    USER_REJECTED = "user_rejected"
    PENDING_TIMEOUT = "pending_timeout"
    UNCONFIGURED = "unconfigured"
    AGENT_UNAVAILABLE = "agent_unavailable"
    PROVIDER_INIT_FAILED = "provider_init_failed"
    LEDGER_NOT_FOUND = "ledger_not_found"
    LEDGER_VERIFICATION_FAILED = "ledger_verification_failed"
    NOT_CONNECTED = "not_connected"

    # Ledger preconditions
    NOT_FOUND = "not_found"
    ALREADY_REQUESTED = "already_requested"
    NOT_REQUESTED = "not_requested"
    UNAUTHORIZED = "unauthorized"
    INVALID_INPUT = "invalid_input"

    # Transport / execution
    INSUFFICIENT_RESOURCES = "insufficient_resources"
    EXECUTION_REVERTED = "execution_reverted"
    TRANSPORT_ERROR = "transport_error"


_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.USER_REJECTED: "The request was rejected in the wallet.",
    ErrorKind.PENDING_TIMEOUT: (
        "A wallet connection request is still pending. "
        "Finish or dismiss it in the wallet, then retry."
    ),
    ErrorKind.UNCONFIGURED: "No ledger address is configured.",
    ErrorKind.AGENT_UNAVAILABLE: "No signing wallet is available.",
    ErrorKind.PROVIDER_INIT_FAILED: "The wallet session could not be created.",
    ErrorKind.LEDGER_NOT_FOUND: "No ledger is deployed at the configured address.",
    ErrorKind.LEDGER_VERIFICATION_FAILED: "The ledger address could not be verified.",
    ErrorKind.NOT_CONNECTED: "Not connected. Connect a wallet first.",
    ErrorKind.NOT_FOUND: "No student exists with that id.",
    ErrorKind.ALREADY_REQUESTED: "A recommendation was already requested for this student.",
    ErrorKind.NOT_REQUESTED: "No recommendation has been requested for this student.",
    ErrorKind.UNAUTHORIZED: "This account is not allowed to approve recommendations.",
    ErrorKind.INVALID_INPUT: "Name, course and email are all required.",
    ErrorKind.INSUFFICIENT_RESOURCES: "Insufficient funds for the transaction fee.",
    ErrorKind.EXECUTION_REVERTED: "The ledger rejected the transaction.",
    ErrorKind.TRANSPORT_ERROR: "The ledger could not be reached.",
}

# Kinds that a manual retry can plausibly fix without a config change.
RETRYABLE_BY_USER = frozenset({
    ErrorKind.USER_REJECTED,
    ErrorKind.PENDING_TIMEOUT,
    ErrorKind.AGENT_UNAVAILABLE,
    ErrorKind.PROVIDER_INIT_FAILED,
    ErrorKind.LEDGER_VERIFICATION_FAILED,
    ErrorKind.TRANSPORT_ERROR,
})


@dataclass(frozen=True)
class Failure:
    """
    A classified failure.

    kind is the taxonomy entry; detail is free text for diagnostics
    (e.g. the last transport error); reason is the ledger's revert
    reason when one was reported.
    """
    kind: ErrorKind
    detail: str = ""
    reason: str | None = None

    @property
    def message(self) -> str:
        base = _MESSAGES[self.kind]
        if self.kind == ErrorKind.EXECUTION_REVERTED and self.reason:
            return f"{base} Reason: {self.reason}"
        if self.detail and self.kind in (ErrorKind.TRANSPORT_ERROR,
                                         ErrorKind.PROVIDER_INIT_FAILED,
                                         ErrorKind.LEDGER_VERIFICATION_FAILED):
            return f"{base} ({self.detail})"
        return base

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_BY_USER

    def to_dict(self) -> dict[str, str | None]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "detail": self.detail,
            "reason": self.reason,
        }


# ═══════════════════════════════════════════════════════════════════
# Exceptions
# ═══════════════════════════════════════════════════════════════════

class LorError(Exception):
    """Base for every classified error. Carries a Failure."""

    def __init__(self, kind: ErrorKind, detail: str = "", reason: str | None = None):
        self.failure = Failure(kind=kind, detail=detail, reason=reason)
        super().__init__(self.failure.message)

    @property
    def kind(self) -> ErrorKind:
        return self.failure.kind

    @property
    def reason(self) -> str | None:
        return self.failure.reason


class ConnectionFailed(LorError):
    """A connection attempt ended in Failed(kind)."""
    pass


class LedgerError(LorError):
    """A ledger operation failed (precondition, execution or transport)."""
    pass


# ═══════════════════════════════════════════════════════════════════
# Signing agent boundary
# ═══════════════════════════════════════════════════════════════════

class AgentErrorTag(str, enum.Enum):
    USER_REJECTED = "user_rejected"
    ALREADY_PENDING = "already_pending"
    UNTAGGED = "untagged"


# EIP-1193 provider error codes
USER_REJECTED_CODE = 4001
RESOURCE_UNAVAILABLE_CODE = -32002
INTERNAL_RPC_CODE = -32603


class AgentError(Exception):
    """Tagged error raised by signing agent adapters."""

    def __init__(self, tag: AgentErrorTag, message: str = "", code: int | None = None):
        self.tag = tag
        self.code = code
        self.message = message
        super().__init__(message or tag.value)

    @property
    def is_user_rejection(self) -> bool:
        return self.tag == AgentErrorTag.USER_REJECTED

    @property
    def is_pending(self) -> bool:
        return self.tag == AgentErrorTag.ALREADY_PENDING


def agent_error_from_rpc(code: int | None, message: str = "") -> AgentError:
    """
    Convert a raw provider error (code + message) into a tagged AgentError.

    This is the only place agent error text is inspected.
    """
    if code == USER_REJECTED_CODE:
        return AgentError(AgentErrorTag.USER_REJECTED, message, code)
    if code == RESOURCE_UNAVAILABLE_CODE or "already pending" in (message or "").lower():
        return AgentError(AgentErrorTag.ALREADY_PENDING, message, code)
    return AgentError(AgentErrorTag.UNTAGGED, message, code)
