"""
LOR Ledger - Ledger Package

Ledger side of the system:

  - ledger.contract: RecommendationLedger state machine (pure logic)
  - ledger.chain: SimulatedChain host, LedgerHandle, SimulatedAgent wallet
  - ledger.client: LedgerClient and ledger error classification
  - ledger.runtime: composition root
  - ledger.cli: command line entry point
"""

from ledger.contract import (
    LedgerEvent, RecommendationLedger, Revert, RevertReason, Student, StudentStatus,
)
from ledger.chain import (
    LedgerHandle, PendingTransaction, Receipt, RpcError, SimulatedAgent, SimulatedChain,
)
from ledger.client import Confirmation, LedgerClient, RequestIncomplete, classify_ledger_error
from ledger.runtime import LedgerRuntime, create_runtime

__all__ = [
    "Confirmation",
    "LedgerClient",
    "LedgerEvent",
    "LedgerHandle",
    "LedgerRuntime",
    "PendingTransaction",
    "Receipt",
    "RecommendationLedger",
    "RequestIncomplete",
    "Revert",
    "RevertReason",
    "RpcError",
    "SimulatedAgent",
    "SimulatedChain",
    "Student",
    "StudentStatus",
    "classify_ledger_error",
    "create_runtime",
]
