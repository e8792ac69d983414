"""
LOR Ledger — Ledger Client

Issues ledger operations through the current Session:

  views      get_student, get_student_details, student_count, is_approver
  mutations  add_student, request_recommendation, approve_recommendation,
             submit_request (add + request)

Rules:
  - No Session → LedgerError(NOT_CONNECTED), the ledger is never contacted
  - A mutation is complete only once its transaction is confirmed
  - A failed mutation is never re-sent; the caller decides what to do
  - Raw ledger / transport / wallet errors are classified here, once,
    by classify_ledger_error()

Usage:
    client = LedgerClient(orchestrator)
    confirmation = await client.submit_request("Alice", "Math", "alice@email.com")
    student = await client.get_student(confirmation.student_id)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from connector.errors import (
    INTERNAL_RPC_CODE,
    USER_REJECTED_CODE,
    AgentError,
    ErrorKind,
    LedgerError,
    LorError,
)
from connector.logging import EventLogger, generate_attempt_id
from connector.orchestrator import Session
from ledger.contract import RevertReason, Student

logger = logging.getLogger("lor_ledger.client")


# ═══════════════════════════════════════════════════════════════════
# Error classification
# ═══════════════════════════════════════════════════════════════════

_REVERT_KINDS: dict[str, ErrorKind] = {
    RevertReason.NOT_FOUND.value: ErrorKind.NOT_FOUND,
    RevertReason.ALREADY_REQUESTED.value: ErrorKind.ALREADY_REQUESTED,
    RevertReason.NOT_REQUESTED.value: ErrorKind.NOT_REQUESTED,
    RevertReason.UNAUTHORIZED.value: ErrorKind.UNAUTHORIZED,
    RevertReason.INVALID_INPUT.value: ErrorKind.INVALID_INPUT,
}

REVERT_MARKER = "execution reverted"
FUNDS_MARKER = "insufficient funds"


def classify_ledger_error(error: BaseException) -> LedgerError:
    """
    Convert a raw ledger, transport or wallet error into a LedgerError.

    Precedence: user rejection, insufficient funds, revert (known reason
    → precondition kind, otherwise EXECUTION_REVERTED), transport.
    """
    if isinstance(error, LedgerError):
        return error
    if isinstance(error, LorError):
        return LedgerError(error.kind, error.failure.detail, error.reason)

    if isinstance(error, AgentError):
        if error.is_user_rejection:
            return LedgerError(ErrorKind.USER_REJECTED, error.message)
        return LedgerError(ErrorKind.TRANSPORT_ERROR, error.message or str(error))

    code = getattr(error, "code", None)
    message = str(getattr(error, "message", "") or error)
    lowered = message.lower()
    reason = getattr(error, "reason", None)

    if code == USER_REJECTED_CODE:
        return LedgerError(ErrorKind.USER_REJECTED, message)

    if FUNDS_MARKER in lowered:
        return LedgerError(ErrorKind.INSUFFICIENT_RESOURCES, message)

    if reason is None and REVERT_MARKER in lowered:
        tail = message[lowered.index(REVERT_MARKER) + len(REVERT_MARKER):]
        reason = tail.lstrip(": ").strip() or None
    if reason is not None or REVERT_MARKER in lowered:
        kind = _REVERT_KINDS.get(reason or "", ErrorKind.EXECUTION_REVERTED)
        return LedgerError(kind, message, reason)

    if code == INTERNAL_RPC_CODE:
        return LedgerError(
            ErrorKind.TRANSPORT_ERROR,
            "internal JSON-RPC error; check the ledger address and network",
        )
    return LedgerError(ErrorKind.TRANSPORT_ERROR, message)


# ═══════════════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Confirmation:
    """A mutation the ledger has confirmed."""
    operation: str
    student_id: int
    tx_hash: str
    block_number: int
    events: list[str] = field(default_factory=list)
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "student_id": self.student_id,
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "events": list(self.events),
            "message": self.message,
        }


class RequestIncomplete(LedgerError):
    """submit_request registered the student but the request step failed."""

    def __init__(self, student_id: int, cause: LedgerError):
        self.student_id = student_id
        self.cause = cause
        super().__init__(
            cause.kind,
            f"student {student_id} registered, request failed: {cause.failure.detail}",
            cause.reason,
        )


class SessionSource(Protocol):
    @property
    def session(self) -> Session | None:
        ...


class _FixedSession:
    def __init__(self, session: Session | None):
        self.session = session


# ═══════════════════════════════════════════════════════════════════
# Client
# ═══════════════════════════════════════════════════════════════════

class LedgerClient:
    """
    Ledger operations over whatever Session the source currently holds.
    Pass the ConnectionOrchestrator so a reconnect is picked up.
    """

    def __init__(self, sessions: SessionSource, events: EventLogger | None = None):
        self.sessions = sessions
        self.events = events or EventLogger("ledger_client")

    @classmethod
    def for_session(cls, session: Session) -> LedgerClient:
        return cls(_FixedSession(session))

    # ── Views ───────────────────────────────────────────────────

    async def get_student(self, student_id: int) -> Student:
        return await self._view("getStudent", student_id)

    async def get_student_details(self, student_id: int) -> tuple[str, str, str, bool]:
        return tuple(await self._view("getStudentDetails", student_id))

    async def student_count(self) -> int:
        return int(await self._view("studentCount"))

    async def is_approver(self, account: str | None = None) -> bool:
        session = self._require_session()
        return bool(await self._view("isApprover", account or session.account))

    # ── Mutations ───────────────────────────────────────────────

    async def add_student(self, name: str, course: str, email: str) -> Confirmation:
        receipt = await self._mutate("add_student", "addStudent", name, course, email)
        student_id = int(receipt.return_value)
        return self._confirm(receipt, "add_student", student_id,
                             f"Student {student_id} registered")

    async def request_recommendation(self, student_id: int) -> Confirmation:
        receipt = await self._mutate("request_recommendation",
                                     "requestRecommendation", int(student_id))
        return self._confirm(receipt, "request_recommendation", int(student_id),
                             f"Recommendation requested for student {student_id}")

    async def approve_recommendation(self, student_id: int) -> Confirmation:
        receipt = await self._mutate("approve_recommendation",
                                     "approveRecommendation", int(student_id))
        return self._confirm(receipt, "approve_recommendation", int(student_id),
                             f"Recommendation approved for student {student_id}")

    async def submit_request(self, name: str, course: str, email: str) -> Confirmation:
        """
        Register a student and request their recommendation.

        The id comes from the confirmed registration. If the request step
        fails, RequestIncomplete carries the id that was assigned.
        """
        added = await self.add_student(name, course, email)
        try:
            requested = await self.request_recommendation(added.student_id)
        except LedgerError as e:
            raise RequestIncomplete(added.student_id, e) from e
        return Confirmation(
            operation="submit_request",
            student_id=added.student_id,
            tx_hash=requested.tx_hash,
            block_number=requested.block_number,
            events=added.events + requested.events,
            message=f"Recommendation requested. Recommendation ID: {added.student_id}",
        )

    # ── Internals ───────────────────────────────────────────────

    def _require_session(self) -> Session:
        session = self.sessions.session
        if session is None:
            raise LedgerError(ErrorKind.NOT_CONNECTED)
        return session

    async def _view(self, method: str, *args: Any) -> Any:
        session = self._require_session()
        call_id = generate_attempt_id()
        self.events.ledger_call(call_id, method, mutating=False, account=session.account)
        try:
            return await session.ledger.call(method, *args)
        except Exception as e:
            err = classify_ledger_error(e)
            self.events.ledger_failed(call_id, method, err.kind.value, err.reason)
            raise err from e

    async def _mutate(self, operation: str, method: str, *args: Any) -> Any:
        session = self._require_session()
        call_id = generate_attempt_id()
        self.events.ledger_call(call_id, operation, mutating=True, account=session.account)
        t0 = time.monotonic()
        try:
            pending = await session.ledger.transact(method, *args)
            receipt = await pending.wait()
        except Exception as e:
            err = classify_ledger_error(e)
            self.events.ledger_failed(call_id, operation, err.kind.value, err.reason)
            logger.warning("%s failed: %s", operation, err.kind.value)
            raise err from e

        self.events.ledger_confirmed(call_id, operation, receipt.tx_hash,
                                     receipt.block_number, time.monotonic() - t0)
        return receipt

    @staticmethod
    def _confirm(receipt: Any, operation: str, student_id: int, message: str) -> Confirmation:
        return Confirmation(
            operation=operation,
            student_id=student_id,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            events=[e.name for e in receipt.events],
            message=message,
        )
