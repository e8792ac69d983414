"""
LOR Ledger - Connector Package

Wallet side of the system: negotiating account access with a signing
agent and sequencing a connection attempt into a Session.

  - connector.errors: ErrorKind, Failure, LorError and the agent boundary
  - connector.agent: SigningAgent / Signer protocols, JsonRpcAgent
  - connector.accounts: AccountRequester
  - connector.orchestrator: ConnectionOrchestrator, Phase, Session
  - connector.config / connector.logging: ambient configuration and logs
"""

from connector.errors import (
    AgentError, AgentErrorTag, ConnectionFailed, ErrorKind, Failure,
    LedgerError, LorError, agent_error_from_rpc,
)
from connector.agent import AccountSigner, JsonRpcAgent, Signer, SigningAgent, format_address
from connector.accounts import AccountRequester, AccountRequestResult, RequestPolicy, request_accounts
from connector.orchestrator import (
    ConnectionOrchestrator, ConnectionState, InvalidTransition, Phase, Session,
)

__all__ = [
    "AccountRequestResult",
    "AccountRequester",
    "AccountSigner",
    "AgentError",
    "AgentErrorTag",
    "ConnectionFailed",
    "ConnectionOrchestrator",
    "ConnectionState",
    "ErrorKind",
    "Failure",
    "InvalidTransition",
    "JsonRpcAgent",
    "LedgerError",
    "LorError",
    "Phase",
    "RequestPolicy",
    "Session",
    "Signer",
    "SigningAgent",
    "agent_error_from_rpc",
    "format_address",
    "request_accounts",
]
