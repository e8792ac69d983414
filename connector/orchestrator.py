"""
LOR Ledger — Connection Orchestrator

Single-attempt-at-a-time state machine that turns a signing agent and a
configured ledger address into a Session:

  DISCONNECTED → CONNECTING → ACCOUNTS_REQUESTED → CHAIN_IDENTIFIED
               → SESSION_CREATED → LEDGER_VERIFIED → CONNECTED

with FAILED reachable from every non-terminal phase. CONNECTED and
FAILED are terminal for an attempt; only reset() returns to
DISCONNECTED.

Entry guard: connect() starts an attempt only when the phase is
DISCONNECTED and no attempt is in flight. Re-entrant triggers while an
attempt runs (or after it finished) are dropped, not queued.

Every await is a suspension point, and every phase change runs
listeners that may call reset(). After each of them the attempt checks
that it is still the current attempt; a reset() in the meantime
invalidates it and any late result is discarded instead of committed.

Usage:
    orch = ConnectionOrchestrator(agent, chain, ledger_address="0x...")
    phase = await orch.connect()
    if phase == Phase.CONNECTED:
        session = orch.session
    else:
        print(orch.state.last_error.message)
    orch.reset()   # manual retry; call connect() again afterwards
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Protocol

from connector.accounts import AccountRequester
from connector.agent import Signer, SigningAgent, format_address
from connector.errors import ConnectionFailed, ErrorKind, Failure
from connector.logging import EventLogger, generate_attempt_id

logger = logging.getLogger("lor_ledger.orchestrator")


# ═══════════════════════════════════════════════════════════════════
# Phases
# ═══════════════════════════════════════════════════════════════════

class Phase(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    ACCOUNTS_REQUESTED = "accounts_requested"
    CHAIN_IDENTIFIED = "chain_identified"
    SESSION_CREATED = "session_created"
    LEDGER_VERIFIED = "ledger_verified"
    CONNECTED = "connected"
    FAILED = "failed"


_TRANSITIONS: dict[Phase, set[Phase]] = {
    Phase.DISCONNECTED: {Phase.CONNECTING},
    Phase.CONNECTING: {Phase.ACCOUNTS_REQUESTED, Phase.FAILED},
    Phase.ACCOUNTS_REQUESTED: {Phase.CHAIN_IDENTIFIED, Phase.FAILED},
    Phase.CHAIN_IDENTIFIED: {Phase.SESSION_CREATED, Phase.FAILED},
    Phase.SESSION_CREATED: {Phase.LEDGER_VERIFIED, Phase.FAILED},
    Phase.LEDGER_VERIFIED: {Phase.CONNECTED, Phase.FAILED},
}

TERMINAL_PHASES = frozenset({Phase.CONNECTED, Phase.FAILED})

_STATUS_TEXT: dict[Phase, str] = {
    Phase.DISCONNECTED: "Not connected",
    Phase.CONNECTING: "Checking ledger address...",
    Phase.ACCOUNTS_REQUESTED: "Wallet connected, identifying network...",
    Phase.CHAIN_IDENTIFIED: "Initializing wallet session...",
    Phase.SESSION_CREATED: "Verifying ledger...",
    Phase.LEDGER_VERIFIED: "Ledger verified, finishing up...",
}


class InvalidTransition(Exception):
    """Raised when a phase change is not allowed by the state machine."""
    pass


# ═══════════════════════════════════════════════════════════════════
# State and Session
# ═══════════════════════════════════════════════════════════════════

class LedgerBackend(Protocol):
    """The read/bind half of a Ledger Target that the orchestrator needs."""

    async def get_code(self, address: str) -> str:
        ...

    def bind(self, address: str, signer: Signer) -> Any:
        ...


@dataclass(frozen=True)
class Session:
    """
    Result of a successful connection attempt.

    Built once, assigned whole, replaced whole on retry.
    """
    account: str
    signer: Signer
    ledger: Any                 # ledger handle bound to (address, signer)
    ledger_address: str
    network_id: str | None = None


@dataclass
class ConnectionState:
    """Process-wide connection state. Mutated only by the orchestrator."""
    phase: Phase = Phase.DISCONNECTED
    attempt_in_flight: bool = False
    last_error: Failure | None = None
    account: str | None = None
    network_id: str | None = None
    attempt_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "attempt_in_flight": self.attempt_in_flight,
            "last_error": self.last_error.to_dict() if self.last_error else None,
            "account": self.account,
            "network_id": self.network_id,
            "attempt_id": self.attempt_id,
        }


PhaseListener = Callable[[Phase, Phase, ConnectionState], None]


# ═══════════════════════════════════════════════════════════════════
# Orchestrator
# ═══════════════════════════════════════════════════════════════════

class ConnectionOrchestrator:
    """
    Owns ConnectionState and the Session. Other components get read-only
    snapshots or the Session handle, never the mutable state.
    """

    def __init__(
        self,
        agent: SigningAgent | None,
        backend: LedgerBackend,
        ledger_address: str | None,
        requester: AccountRequester | None = None,
        expected_network_id: str | None = None,
        events: EventLogger | None = None,
    ):
        self.agent = agent
        self.backend = backend
        self.ledger_address = ledger_address
        self.requester = requester or AccountRequester()
        self.expected_network_id = expected_network_id
        self.events = events or EventLogger("orchestrator")

        self._state = ConnectionState()
        self._session: Session | None = None
        self._generation = 0
        self._listeners: list[PhaseListener] = []

    # ── Read side ───────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        """Copy of the current state."""
        return replace(self._state)

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def is_connected(self) -> bool:
        return self._state.phase == Phase.CONNECTED and self._session is not None

    def snapshot(self) -> dict[str, Any]:
        d = self._state.to_dict()
        d["status"] = self.status_message()
        d["ledger_address"] = self.ledger_address
        d["settled"] = self._state.phase in TERMINAL_PHASES
        return d

    def status_message(self) -> str:
        phase = self._state.phase
        if phase == Phase.CONNECTED:
            return f"Connected as {format_address(self._state.account)}"
        if phase == Phase.FAILED:
            err = self._state.last_error
            return f"Connection failed: {err.message if err else 'unknown error'}"
        return _STATUS_TEXT[phase]

    def subscribe(self, listener: PhaseListener) -> Callable[[], None]:
        """Register a phase-change listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return _unsubscribe

    # ── Commands ────────────────────────────────────────────────

    async def connect(self) -> Phase:
        """
        Run one connection attempt if the entry guard allows it.

        Returns the phase after the call. A dropped trigger returns the
        current phase unchanged.
        """
        if self._state.phase != Phase.DISCONNECTED or self._state.attempt_in_flight:
            logger.debug(
                "Connect trigger dropped (phase=%s, in_flight=%s)",
                self._state.phase.value, self._state.attempt_in_flight,
            )
            return self._state.phase

        self._generation += 1
        gen = self._generation
        attempt_id = generate_attempt_id()
        started = time.monotonic()

        self._state.attempt_in_flight = True
        self._state.attempt_id = attempt_id
        self._state.last_error = None
        self._transition(Phase.CONNECTING)
        self.events.attempt_start(attempt_id, self.ledger_address)

        try:
            await self._run_attempt(gen)
        except ConnectionFailed as e:
            if self._is_current(gen):
                self._fail(e.failure)
        except Exception as e:
            # Unexpected bug in a collaborator; still end the attempt cleanly
            logger.exception("Connection attempt %s crashed", attempt_id)
            if self._is_current(gen):
                self._fail(Failure(ErrorKind.TRANSPORT_ERROR, detail=str(e)))

        if not self._is_current(gen):
            self.events.attempt_discarded(attempt_id, self._state.phase.value)
            return self._state.phase

        err = self._state.last_error
        self.events.attempt_end(
            attempt_id,
            status=self._state.phase.value,
            elapsed_s=time.monotonic() - started,
            error_kind=err.kind.value if err else None,
        )
        return self._state.phase

    def reset(self) -> None:
        """
        Manual retry: drop the Session and any error, return to
        DISCONNECTED. An in-flight attempt is abandoned; its late
        results are discarded. Does not reconnect by itself.
        """
        old = self._state.phase
        self._generation += 1
        self._session = None
        self._state = ConnectionState(network_id=self._state.network_id)
        logger.info("Connection reset (was %s)", old.value)
        self._notify(old, Phase.DISCONNECTED)

    def notify_network_changed(self, network_id: str) -> None:
        """Record a network switch reported by the agent."""
        previous = self._state.network_id
        self._state.network_id = network_id
        if previous != network_id:
            logger.info("Agent network changed: %s -> %s", previous, network_id)
            self._check_expected_network(network_id)

    # ── Attempt ─────────────────────────────────────────────────

    async def _run_attempt(self, gen: int) -> None:
        # a listener may reset() on any phase change, including CONNECTING
        if not self._is_current(gen):
            return

        if not self.ledger_address:
            logger.warning("Ledger address not configured")
            raise ConnectionFailed(ErrorKind.UNCONFIGURED)

        if self.agent is None:
            logger.warning("No signing agent available")
            raise ConnectionFailed(ErrorKind.AGENT_UNAVAILABLE)

        # CONNECTING → ACCOUNTS_REQUESTED
        result = await self.requester.request(self.agent)
        if not self._is_current(gen):
            return
        account = result.accounts[0]
        self._state.account = account
        logger.info("Wallet account %s granted after %d attempt(s)",
                    format_address(account), result.attempts)
        self._transition(Phase.ACCOUNTS_REQUESTED)
        if not self._is_current(gen):
            return

        # ACCOUNTS_REQUESTED → CHAIN_IDENTIFIED (observational only)
        network_id = None
        try:
            network_id = await self.agent.current_network_id()
        except Exception as e:
            logger.warning("Could not read network id: %s", e)
        if not self._is_current(gen):
            return
        if network_id is not None:
            self._state.network_id = network_id
            self._check_expected_network(network_id)
        self._transition(Phase.CHAIN_IDENTIFIED)
        if not self._is_current(gen):
            return

        # CHAIN_IDENTIFIED → SESSION_CREATED
        try:
            signer = await self.agent.create_signer()
            ledger = self.backend.bind(self.ledger_address, signer)
        except Exception as e:
            logger.error("Session creation failed: %s", e)
            raise ConnectionFailed(ErrorKind.PROVIDER_INIT_FAILED, str(e)) from e
        if not self._is_current(gen):
            return
        self._transition(Phase.SESSION_CREATED)
        if not self._is_current(gen):
            return

        # SESSION_CREATED → LEDGER_VERIFIED
        try:
            code = await self.backend.get_code(self.ledger_address)
        except Exception as e:
            logger.error("Ledger verification failed: %s", e)
            raise ConnectionFailed(ErrorKind.LEDGER_VERIFICATION_FAILED, str(e)) from e
        if not self._is_current(gen):
            return
        if not code or code == "0x":
            logger.error("No ledger code at %s", self.ledger_address)
            raise ConnectionFailed(ErrorKind.LEDGER_NOT_FOUND, self.ledger_address)
        self._transition(Phase.LEDGER_VERIFIED)
        if not self._is_current(gen):
            return

        # LEDGER_VERIFIED → CONNECTED
        self._session = Session(
            account=signer.address,
            signer=signer,
            ledger=ledger,
            ledger_address=self.ledger_address,
            network_id=self._state.network_id,
        )
        self._state.account = signer.address
        self._state.attempt_in_flight = False
        self._transition(Phase.CONNECTED)
        logger.info("Connected to ledger %s as %s",
                    self.ledger_address, format_address(signer.address))

    # ── Internals ───────────────────────────────────────────────

    def _is_current(self, gen: int) -> bool:
        # reset() and every new attempt bump the generation
        return gen == self._generation

    def _transition(self, to: Phase) -> None:
        old = self._state.phase
        allowed = _TRANSITIONS.get(old, set())
        if to not in allowed:
            raise InvalidTransition(
                f"{old.value} → {to.value} is not allowed. "
                f"Valid transitions: {sorted(p.value for p in allowed)}"
            )
        self._state.phase = to
        self.events.phase_transition(self._state.attempt_id or "", old.value, to.value)
        self._notify(old, to)

    def _fail(self, failure: Failure) -> None:
        self._session = None
        self._state.attempt_in_flight = False
        self._state.last_error = failure
        self._transition(Phase.FAILED)
        logger.warning("Connection failed: %s (%s)", failure.kind.value, failure.detail)

    def _check_expected_network(self, network_id: str) -> None:
        expected = self.expected_network_id
        if expected and str(network_id).lower() != str(expected).lower():
            logger.warning(
                "Agent is on network %s, expected %s", network_id, expected,
            )

    def _notify(self, old: Phase, new: Phase) -> None:
        snapshot = self.state
        for listener in list(self._listeners):
            try:
                listener(old, new, snapshot)
            except Exception:
                logger.exception("Phase listener failed on %s -> %s", old.value, new.value)
