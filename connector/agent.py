"""
LOR Ledger — Signing Agent Interface

The signing agent is the external wallet that holds key authority. The
orchestrator only talks to it through the SigningAgent protocol:

    request_accounts()          interactive permission prompt
    list_authorized_accounts()  non-interactive, already-granted accounts
    current_network_id()        network the agent is pointed at
    create_signer()             capability that authorizes mutating calls

Adapters raise connector.errors.AgentError (tagged) and nothing else for
agent-side failures. Raw provider errors never cross this boundary.

Two adapters ship with the package:
  - JsonRpcAgent: EIP-1193 style JSON-RPC over HTTP (httpx)
  - ledger.chain.SimulatedAgent: in-process wallet for dev and tests
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

import httpx

from connector.errors import AgentError, AgentErrorTag, agent_error_from_rpc

logger = logging.getLogger("lor_ledger.agent")


# ═══════════════════════════════════════════════════════════════════
# Protocols
# ═══════════════════════════════════════════════════════════════════

@runtime_checkable
class Signer(Protocol):
    """Capability to authorize mutating ledger calls for one account."""

    address: str

    async def sign_transaction(self, tx: dict[str, Any]) -> dict[str, Any]:
        ...


@runtime_checkable
class SigningAgent(Protocol):
    """Contract of the external wallet. All methods are suspension points."""

    async def request_accounts(self) -> list[str]:
        ...

    async def list_authorized_accounts(self) -> list[str]:
        ...

    async def current_network_id(self) -> str:
        ...

    async def create_signer(self) -> Signer:
        ...


class AccountSigner:
    """
    Signer bound to one account. The actual signature is delegated to
    the agent through sign_fn, so the user may still reject it.
    """

    def __init__(
        self,
        address: str,
        sign_fn: Callable[[dict[str, Any]], Awaitable[dict[str, Any]]],
    ):
        self.address = address
        self._sign_fn = sign_fn

    async def sign_transaction(self, tx: dict[str, Any]) -> dict[str, Any]:
        if tx.get("from", self.address).lower() != self.address.lower():
            raise AgentError(
                AgentErrorTag.UNTAGGED,
                f"signer {self.address} cannot sign for {tx.get('from')}",
            )
        return await self._sign_fn({**tx, "from": self.address})

    def __repr__(self) -> str:
        return f"AccountSigner({format_address(self.address)})"


def format_address(address: str | None) -> str:
    """Shorten an address for display: 0x1234...abcd."""
    if not address:
        return ""
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


# ═══════════════════════════════════════════════════════════════════
# JSON-RPC adapter
# ═══════════════════════════════════════════════════════════════════

class JsonRpcAgent:
    """
    Signing agent reached over HTTP JSON-RPC (a wallet bridge or a dev
    node with unlocked accounts).

    Example:
        agent = JsonRpcAgent("http://127.0.0.1:8545")
        accounts = await agent.request_accounts()
        await agent.aclose()

    Transport failures and JSON-RPC error objects are both converted to
    AgentError here.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._ids = itertools.count(1)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def _rpc(self, method: str, params: list[Any] | None = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        try:
            resp = await self._client.post(self.url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            logger.warning("JSON-RPC %s transport failure: %s", method, e)
            raise AgentError(AgentErrorTag.UNTAGGED, f"{method}: {e}") from e
        except ValueError as e:
            raise AgentError(AgentErrorTag.UNTAGGED, f"{method}: invalid JSON response") from e

        if data.get("error"):
            err = data["error"]
            raise agent_error_from_rpc(err.get("code"), err.get("message", ""))
        return data.get("result")

    async def request_accounts(self) -> list[str]:
        return list(await self._rpc("eth_requestAccounts") or [])

    async def list_authorized_accounts(self) -> list[str]:
        return list(await self._rpc("eth_accounts") or [])

    async def current_network_id(self) -> str:
        network_id = await self._rpc("eth_chainId")
        if network_id is None:
            raise AgentError(AgentErrorTag.UNTAGGED, "eth_chainId returned no network id")
        return str(network_id)

    async def create_signer(self) -> Signer:
        accounts = await self.list_authorized_accounts()
        if not accounts:
            raise AgentError(AgentErrorTag.UNTAGGED, "no authorized account to sign with")

        async def _sign(tx: dict[str, Any]) -> dict[str, Any]:
            signed = await self._rpc("eth_signTransaction", [tx])
            return {**tx, "signature": signed}

        return AccountSigner(accounts[0], _sign)
