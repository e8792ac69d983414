"""
LOR Ledger — Simulated Chain and Wallet

In-process stand-ins for the two external actors, used by the dev
server, the CLI demo and the tests:

  SimulatedChain  — hosts RecommendationLedger instances at addresses,
                    answers code lookups and views, and sequences
                    transactions into blocks in submission order.
  SimulatedAgent  — a wallet implementing the SigningAgent protocol,
                    scriptable to reject, report "already pending" or
                    fail with transport errors.

Errors raised here are deliberately raw (RpcError with a code and a
message, the way a node reports them). ledger.client converts them into
the error taxonomy.

Usage:
    chain = SimulatedChain()
    address = chain.deploy(RecommendationLedger(approvers=[owner]))
    agent = SimulatedAgent([owner])

    handle = chain.bind(address, await agent.create_signer())
    tx = await handle.transact("addStudent", "Alice", "Math", "alice@email.com")
    receipt = await tx.wait()
"""

from __future__ import annotations

import asyncio
import hashlib
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any

from connector.agent import AccountSigner, Signer
from connector.errors import AgentError, agent_error_from_rpc
from ledger.contract import METHODS, LedgerEvent, RecommendationLedger, Revert

logger = logging.getLogger("lor_ledger.chain")

HARDHAT_NETWORK_ID = "0x7a69"
DEFAULT_BALANCE = 10 ** 18
DEFAULT_FEE = 21_000 * 10 ** 9

# Raw node error codes
REVERT_CODE = 3
SERVER_ERROR_CODE = -32000
INTERNAL_ERROR_CODE = -32603

FUNDS_MESSAGE = "insufficient funds for gas * price + value"


class RpcError(Exception):
    """Raw error as reported by a ledger node."""

    def __init__(self, code: int, message: str, reason: str | None = None,
                 data: Any = None):
        self.code = code
        self.message = message
        self.reason = reason
        self.data = data
        super().__init__(message)


# ═══════════════════════════════════════════════════════════════════
# Transactions
# ═══════════════════════════════════════════════════════════════════

@dataclass
class Receipt:
    """Confirmation of a mined transaction."""
    tx_hash: str
    block_number: int
    status: int                   # 1 success, 0 reverted
    sender: str
    method: str
    return_value: Any = None
    fee: int = 0
    events: list[LedgerEvent] = field(default_factory=list)


@dataclass
class _Tx:
    tx_hash: str
    sender: str
    to: str
    method: str
    args: list[Any]
    done: asyncio.Event = field(default_factory=asyncio.Event)
    receipt: Receipt | None = None
    error: RpcError | None = None


class PendingTransaction:
    """Handle returned by a submission. Await wait() for confirmation."""

    def __init__(self, chain: SimulatedChain, tx: _Tx):
        self._chain = chain
        self._tx = tx

    @property
    def tx_hash(self) -> str:
        return self._tx.tx_hash

    async def wait(self) -> Receipt:
        """Block until mined. Raises RpcError if the transaction reverted."""
        if not self._tx.done.is_set() and self._chain.auto_mine:
            if self._chain.block_time:
                await asyncio.sleep(self._chain.block_time)
            await self._chain.mine()
        await self._tx.done.wait()
        if self._tx.error is not None:
            raise self._tx.error
        return self._tx.receipt


# ═══════════════════════════════════════════════════════════════════
# Chain
# ═══════════════════════════════════════════════════════════════════

class SimulatedChain:
    """
    Single authoritative ledger host. Transactions are executed one at a
    time in the order they were submitted; views read committed state.
    """

    def __init__(
        self,
        network_id: str = HARDHAT_NETWORK_ID,
        fee: int = DEFAULT_FEE,
        default_balance: int = DEFAULT_BALANCE,
        auto_mine: bool = True,
        block_time: float = 0.0,
    ):
        self.network_id = network_id
        self.fee = fee
        self.default_balance = default_balance
        self.auto_mine = auto_mine
        self.block_time = block_time
        self.block_number = 0

        self._contracts: dict[str, RecommendationLedger] = {}
        self._balances: dict[str, int] = {}
        self._mempool: list[_Tx] = []
        self._txs: dict[str, _Tx] = {}
        self._faults: dict[str, list[Exception]] = {}
        self._seq = itertools.count()
        self._lock = asyncio.Lock()

    # ── Setup ───────────────────────────────────────────────────

    def deploy(self, ledger: RecommendationLedger,
               deployer: str = "0x" + "0" * 40) -> str:
        """Place a ledger at a fresh deterministic address."""
        seed = f"{deployer.lower()}:{len(self._contracts)}".encode()
        address = "0x" + hashlib.sha256(seed).hexdigest()[:40]
        self._contracts[address] = ledger
        logger.info("Ledger deployed at %s", address)
        return address

    def ledger_at(self, address: str) -> RecommendationLedger | None:
        return self._contracts.get(address.lower())

    def fund(self, account: str, amount: int) -> None:
        self._balances[account.lower()] = amount

    def balance_of(self, account: str) -> int:
        return self._balances.get(account.lower(), self.default_balance)

    def fail_next(self, operation: str, error: Exception) -> None:
        """Make the next get_code / call / send raise error."""
        self._faults.setdefault(operation, []).append(error)

    def _maybe_fault(self, operation: str) -> None:
        queued = self._faults.get(operation)
        if queued:
            raise queued.pop(0)

    # ── Reads ───────────────────────────────────────────────────

    async def get_code(self, address: str) -> str:
        await asyncio.sleep(0)
        self._maybe_fault("get_code")
        if address.lower() in self._contracts:
            return RecommendationLedger.CODE
        return "0x"

    async def call(self, address: str, method: str, args: list[Any] | tuple = (),
                   sender: str | None = None) -> Any:
        await asyncio.sleep(0)
        self._maybe_fault("call")
        ledger = self._require_ledger(address)
        if method not in METHODS:
            raise RpcError(INTERNAL_ERROR_CODE, f"unknown method {method}")
        if RecommendationLedger.is_mutating(method):
            raise RpcError(INTERNAL_ERROR_CODE, f"{method} is not a view; send a transaction")
        try:
            value, _ = ledger.execute(method, list(args), sender=sender)
        except Revert as r:
            raise _revert_error(r) from r
        return value

    def bind(self, address: str, signer: Signer) -> LedgerHandle:
        return LedgerHandle(self, address, signer)

    # ── Writes ──────────────────────────────────────────────────

    async def send_transaction(self, signed_tx: dict[str, Any]) -> PendingTransaction:
        """Accept a signed transaction into the mempool."""
        await asyncio.sleep(0)
        self._maybe_fault("send")
        if not signed_tx.get("signature"):
            raise RpcError(SERVER_ERROR_CODE, "transaction is not signed")

        sender = str(signed_tx["from"]).lower()
        to = str(signed_tx["to"]).lower()
        method = signed_tx["method"]
        self._require_ledger(to)
        if method not in METHODS:
            raise RpcError(INTERNAL_ERROR_CODE, f"unknown method {method}")

        if self.balance_of(sender) < self.fee:
            raise RpcError(SERVER_ERROR_CODE, FUNDS_MESSAGE)

        seq = next(self._seq)
        tx_hash = "0x" + hashlib.sha256(
            f"{sender}:{to}:{method}:{signed_tx.get('args')}:{seq}".encode()
        ).hexdigest()
        tx = _Tx(tx_hash=tx_hash, sender=sender, to=to, method=method,
                 args=list(signed_tx.get("args", [])))
        self._mempool.append(tx)
        self._txs[tx_hash] = tx
        logger.debug("Tx %s queued: %s from %s", tx_hash[:10], method, sender)
        return PendingTransaction(self, tx)

    async def mine(self) -> int:
        """Execute everything in the mempool as one block. Returns tx count."""
        async with self._lock:
            batch, self._mempool = self._mempool, []
            if not batch:
                return 0
            self.block_number += 1
            for tx in batch:
                self._execute(tx)
            logger.debug("Block %d mined with %d tx(s)", self.block_number, len(batch))
            return len(batch)

    def _execute(self, tx: _Tx) -> None:
        ledger = self._contracts[tx.to]
        # earlier transactions in the block may have spent the balance
        if self.balance_of(tx.sender) < self.fee:
            tx.error = RpcError(SERVER_ERROR_CODE, FUNDS_MESSAGE, data={"tx_hash": tx.tx_hash})
            tx.done.set()
            return
        self._balances[tx.sender] = self.balance_of(tx.sender) - self.fee
        try:
            value, events = ledger.execute(tx.method, tx.args, sender=tx.sender)
            tx.receipt = Receipt(
                tx_hash=tx.tx_hash, block_number=self.block_number, status=1,
                sender=tx.sender, method=tx.method, return_value=value,
                fee=self.fee, events=list(events),
            )
        except Revert as r:
            tx.receipt = Receipt(
                tx_hash=tx.tx_hash, block_number=self.block_number, status=0,
                sender=tx.sender, method=tx.method, fee=self.fee,
            )
            tx.error = _revert_error(r, tx_hash=tx.tx_hash)
        except Exception as e:
            logger.error("Tx %s failed during execution: %s", tx.tx_hash[:10], e)
            tx.receipt = Receipt(
                tx_hash=tx.tx_hash, block_number=self.block_number, status=0,
                sender=tx.sender, method=tx.method, fee=self.fee,
            )
            tx.error = RpcError(
                INTERNAL_ERROR_CODE,
                f"internal error executing {tx.method}: {e}",
                data={"tx_hash": tx.tx_hash},
            )
        tx.done.set()

    # ── Internals ───────────────────────────────────────────────

    def _require_ledger(self, address: str) -> RecommendationLedger:
        ledger = self._contracts.get(str(address).lower())
        if ledger is None:
            raise RpcError(SERVER_ERROR_CODE, f"no contract at {address}")
        return ledger


def _revert_error(r: Revert, tx_hash: str | None = None) -> RpcError:
    return RpcError(
        REVERT_CODE,
        f"execution reverted: {r.reason.value}",
        reason=r.reason.value,
        data={"detail": r.detail, "tx_hash": tx_hash},
    )


# ═══════════════════════════════════════════════════════════════════
# Ledger Handle
# ═══════════════════════════════════════════════════════════════════

class LedgerHandle:
    """A ledger address bound to a signer: the capability in a Session."""

    def __init__(self, chain: SimulatedChain, address: str, signer: Signer):
        self.chain = chain
        self.address = address
        self.signer = signer

    async def call(self, method: str, *args: Any) -> Any:
        return await self.chain.call(self.address, method, args, sender=self.signer.address)

    async def transact(self, method: str, *args: Any) -> PendingTransaction:
        tx = {
            "from": self.signer.address,
            "to": self.address,
            "method": method,
            "args": list(args),
        }
        signed = await self.signer.sign_transaction(tx)
        return await self.chain.send_transaction(signed)


# ═══════════════════════════════════════════════════════════════════
# Wallet
# ═══════════════════════════════════════════════════════════════════

class SimulatedAgent:
    """
    Scriptable in-process wallet.

    request_script holds the outcomes of successive request_accounts()
    calls: None grants access, an exception is raised instead. Once the
    script is exhausted every request is granted.
    """

    def __init__(
        self,
        accounts: list[str],
        network_id: str = HARDHAT_NETWORK_ID,
        authorized: bool = False,
        request_script: list[Exception | None] | None = None,
        latency: float = 0.0,
    ):
        self.accounts = list(accounts)
        self.network_id = network_id
        self.authorized = authorized
        self.request_script = list(request_script or [])
        self.latency = latency

        self.reject_signing = False
        self.pending = False
        self.network_error: Exception | None = None
        self.signer_error: Exception | None = None

        self.request_calls = 0
        self.list_calls = 0
        self.sign_calls = 0

    async def _pause(self):
        await asyncio.sleep(self.latency)

    async def request_accounts(self) -> list[str]:
        self.request_calls += 1
        await self._pause()
        if self.request_script:
            outcome = self.request_script.pop(0)
            if outcome is not None:
                raise outcome
        self.authorized = True
        self.pending = False
        return list(self.accounts)

    async def list_authorized_accounts(self) -> list[str]:
        self.list_calls += 1
        await self._pause()
        return list(self.accounts) if self.authorized else []

    async def current_network_id(self) -> str:
        await self._pause()
        if self.network_error is not None:
            raise self.network_error
        return self.network_id

    async def create_signer(self) -> Signer:
        await self._pause()
        if self.signer_error is not None:
            raise self.signer_error
        if not self.authorized or not self.accounts:
            raise agent_error_from_rpc(4100, "account not authorized")
        return AccountSigner(self.accounts[0], self._sign)

    async def is_request_pending(self) -> bool:
        return self.pending

    def revoke(self) -> None:
        self.authorized = False

    async def _sign(self, tx: dict[str, Any]) -> dict[str, Any]:
        self.sign_calls += 1
        await self._pause()
        if self.reject_signing:
            raise agent_error_from_rpc(4001, "User denied transaction signature.")
        digest = hashlib.sha256(repr(sorted(tx.items())).encode()).hexdigest()
        return {**tx, "signature": "0x" + digest}


def pending_error() -> AgentError:
    """The error a wallet reports while another permission prompt is open."""
    return agent_error_from_rpc(
        -32002, "Request of type 'wallet_requestPermissions' already pending",
    )
