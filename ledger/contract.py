"""
LOR Ledger — Recommendation Ledger

The authoritative record store for letters of recommendation. One state
machine per student id:

    (none) → REGISTERED → REQUEST_PENDING → APPROVED

  add_student            creates REGISTERED, id = student_count
  request_recommendation REGISTERED → REQUEST_PENDING
  approve_recommendation REQUEST_PENDING → APPROVED (allow-listed only)
  get_student            read-only

Invariants:
  - ids are dense, zero-based, assigned in creation order, never reused
  - approved implies requested
  - a failing operation changes nothing (all checks run before mutation)
  - for approval, Unauthorized is reported before any other failure

This module is pure logic, no I/O. ledger.chain hosts an instance at an
address and sequences transactions against it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Iterable


class RevertReason(str, enum.Enum):
    """Reason strings a reverted ledger call reports."""
    NOT_FOUND = "NotFound"
    ALREADY_REQUESTED = "AlreadyRequested"
    NOT_REQUESTED = "NotRequested"
    UNAUTHORIZED = "Unauthorized"
    INVALID_INPUT = "InvalidInput"


class Revert(Exception):
    """A ledger precondition failed. No state was changed."""

    def __init__(self, reason: RevertReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class StudentStatus(str, enum.Enum):
    REGISTERED = "registered"
    REQUEST_PENDING = "request_pending"
    APPROVED = "approved"


@dataclass(frozen=True)
class Student:
    """Read-only view of a student record."""
    id: int
    name: str
    course: str
    email: str
    requested: bool = False
    approved: bool = False

    @property
    def status(self) -> StudentStatus:
        if self.approved:
            return StudentStatus.APPROVED
        if self.requested:
            return StudentStatus.REQUEST_PENDING
        return StudentStatus.REGISTERED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "course": self.course,
            "email": self.email,
            "requested": self.requested,
            "approved": self.approved,
            "status": self.status.value,
        }


@dataclass
class _StudentRecord:
    name: str
    course: str
    email: str
    requested: bool = False
    approved: bool = False


@dataclass(frozen=True)
class LedgerEvent:
    """Emitted by a successful mutation; carried on the receipt."""
    name: str
    args: dict[str, Any] = field(default_factory=dict)


# Public method name → (python method, mutating)
METHODS: dict[str, tuple[str, bool]] = {
    "addStudent": ("add_student", True),
    "requestRecommendation": ("request_recommendation", True),
    "approveRecommendation": ("approve_recommendation", True),
    "getStudent": ("get_student", False),
    "getStudentDetails": ("get_student_details", False),
    "studentCount": ("get_student_count", False),
    "isApprover": ("is_approver", False),
}


class RecommendationLedger:
    """
    Authorization-gated ledger of recommendation requests.

    approvers is the allow-list for approve_recommendation. Addresses
    compare case-insensitively.
    """

    # Deployed bytecode marker; an address with code "0x" has no ledger.
    CODE = "0x608060405234801561001057600080fd5b50"

    def __init__(self, approvers: Iterable[str] = ()):
        self.approvers = frozenset(a.lower() for a in approvers if a)
        self._students: list[_StudentRecord] = []
        self._events: list[LedgerEvent] = []

    # ── Views ───────────────────────────────────────────────────

    @property
    def student_count(self) -> int:
        return len(self._students)

    def get_student_count(self, sender: str | None = None) -> int:
        return self.student_count

    def is_approver(self, account: str, sender: str | None = None) -> bool:
        return bool(account) and account.lower() in self.approvers

    def get_student(self, student_id: int, sender: str | None = None) -> Student:
        rec = self._record(student_id)
        return Student(
            id=int(student_id),
            name=rec.name,
            course=rec.course,
            email=rec.email,
            requested=rec.requested,
            approved=rec.approved,
        )

    def get_student_details(
        self, student_id: int, sender: str | None = None,
    ) -> tuple[str, str, str, bool]:
        """(name, course, email, approved)."""
        rec = self._record(student_id)
        return (rec.name, rec.course, rec.email, rec.approved)

    @property
    def events(self) -> list[LedgerEvent]:
        return list(self._events)

    # ── Mutations ───────────────────────────────────────────────

    def add_student(self, name: str, course: str, email: str,
                    sender: str | None = None) -> int:
        fields = {"name": name, "course": course, "email": email}
        missing = [k for k, v in fields.items() if not isinstance(v, str) or not v.strip()]
        if missing:
            raise Revert(RevertReason.INVALID_INPUT, "empty " + ", ".join(missing))

        student_id = len(self._students)
        self._students.append(_StudentRecord(name=name, course=course, email=email))
        self._events.append(LedgerEvent("StudentAdded", {
            "id": student_id, "name": name, "course": course, "sender": sender,
        }))
        return student_id

    def request_recommendation(self, student_id: int, sender: str | None = None) -> None:
        rec = self._record(student_id)
        if rec.requested:
            raise Revert(RevertReason.ALREADY_REQUESTED, f"student {student_id}")
        rec.requested = True
        self._events.append(LedgerEvent("RecommendationRequested", {
            "id": int(student_id), "sender": sender,
        }))

    def approve_recommendation(self, student_id: int, sender: str | None = None) -> None:
        if not self.is_approver(sender or ""):
            raise Revert(RevertReason.UNAUTHORIZED, f"{sender} is not an approver")
        rec = self._record(student_id)
        if not rec.requested:
            raise Revert(RevertReason.NOT_REQUESTED, f"student {student_id}")
        rec.approved = True
        self._events.append(LedgerEvent("RecommendationApproved", {
            "id": int(student_id), "approver": sender,
        }))

    # ── Dispatch ────────────────────────────────────────────────

    def execute(self, method: str, args: Iterable[Any] = (),
                sender: str | None = None) -> tuple[Any, list[LedgerEvent]]:
        """
        Run a public method by name. Returns (return value, events emitted).
        Raises Revert on precondition failure, KeyError on unknown method.
        """
        if method not in METHODS:
            raise KeyError(f"unknown ledger method: {method}")
        attr, _ = METHODS[method]
        mark = len(self._events)
        value = getattr(self, attr)(*args, sender=sender)
        return value, self._events[mark:]

    @staticmethod
    def is_mutating(method: str) -> bool:
        return METHODS[method][1]

    # ── Internals ───────────────────────────────────────────────

    def _record(self, student_id: Any) -> _StudentRecord:
        try:
            idx = int(student_id)
        except (TypeError, ValueError):
            raise Revert(RevertReason.NOT_FOUND, f"invalid id {student_id!r}")
        if idx < 0 or idx >= len(self._students):
            raise Revert(RevertReason.NOT_FOUND, f"student {idx}")
        return self._students[idx]
