"""
LOR Ledger — Runtime Composition

The one place where the pieces are wired together. Everything else
receives its collaborators explicitly; there is no module-level
connection or session state.

    settings → agent (SimulatedAgent or JsonRpcAgent)
             → SimulatedChain (+ deployed RecommendationLedger)
             → ConnectionOrchestrator → LedgerClient

Usage:
    runtime = create_runtime(load_settings())
    await runtime.orchestrator.connect()
    await runtime.client.submit_request("Alice", "Math", "alice@email.com")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from connector.accounts import AccountRequester, RequestPolicy
from connector.agent import JsonRpcAgent, SigningAgent
from connector.config import Settings
from connector.orchestrator import ConnectionOrchestrator
from ledger.chain import SimulatedAgent, SimulatedChain
from ledger.client import LedgerClient
from ledger.contract import RecommendationLedger

logger = logging.getLogger("lor_ledger.runtime")

# First well-known development account; owner and approver in dev mode.
DEV_ACCOUNT = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


@dataclass
class LedgerRuntime:
    settings: Settings
    chain: SimulatedChain
    agent: SigningAgent | None
    orchestrator: ConnectionOrchestrator
    client: LedgerClient
    ledger_address: str | None

    async def aclose(self) -> None:
        close = getattr(self.agent, "aclose", None)
        if close is not None:
            await close()


def create_agent(settings: Settings, accounts: list[str] | None = None) -> SigningAgent:
    """JSON-RPC wallet when agent.url is configured, in-process otherwise."""
    if settings.agent_url:
        logger.info("Using JSON-RPC signing agent at %s", settings.agent_url)
        return JsonRpcAgent(settings.agent_url)
    return SimulatedAgent(accounts or [DEV_ACCOUNT])


def create_runtime(
    settings: Settings,
    agent: SigningAgent | None = None,
    chain: SimulatedChain | None = None,
    deploy_ledger: bool = True,
    requester: AccountRequester | None = None,
) -> LedgerRuntime:
    """
    Build a runtime.

    deploy_ledger places a fresh ledger on the chain when no address is
    configured. With deploy_ledger=False and no address, connecting
    fails as Unconfigured.
    """
    chain = chain or SimulatedChain()
    agent = agent if agent is not None else create_agent(settings)

    address = settings.ledger_address
    if deploy_ledger and not address:
        approvers = settings.approvers or [DEV_ACCOUNT]
        address = chain.deploy(RecommendationLedger(approvers=approvers))
        logger.info("Deployed development ledger at %s (approvers=%s)", address, approvers)

    orchestrator = ConnectionOrchestrator(
        agent=agent,
        backend=chain,
        ledger_address=address,
        requester=requester or AccountRequester(RequestPolicy.from_settings(settings)),
        expected_network_id=settings.expected_network_id,
    )
    client = LedgerClient(orchestrator)

    return LedgerRuntime(
        settings=settings,
        chain=chain,
        agent=agent,
        orchestrator=orchestrator,
        client=client,
        ledger_address=address,
    )
