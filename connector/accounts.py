"""
LOR Ledger — Account Negotiation with Retry

Asks the signing agent for account access:
  - Non-interactive listing first: already-authorized accounts are
    returned without prompting the user again
  - Interactive permission request otherwise
  - User rejection fails immediately, never retried
  - "Already pending" waits (bounded) for the other prompt to clear,
    then moves on to the next attempt
  - Any other error retries after a fixed delay until attempts run out

Usage:
    from connector.accounts import AccountRequester, RequestPolicy

    requester = AccountRequester(RequestPolicy(max_attempts=3))
    result = await requester.request(agent)
    result.accounts   # ["0xf39f..."]

    # or, one-shot
    accounts = await request_accounts(agent, max_attempts=3)

Failures raise connector.errors.ConnectionFailed with kind
USER_REJECTED, PENDING_TIMEOUT or TRANSPORT_ERROR.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from connector.agent import SigningAgent
from connector.errors import (
    AgentError,
    AgentErrorTag,
    ConnectionFailed,
    ErrorKind,
)

logger = logging.getLogger("lor_ledger.accounts")


# ═══════════════════════════════════════════════════════════════════
# Policy
# ═══════════════════════════════════════════════════════════════════

@dataclass
class RequestPolicy:
    """Retry configuration for account negotiation."""
    max_attempts: int = 3
    retry_delay: float = 1.0            # fixed backoff between failed attempts
    pending_timeout: float = 5.0        # bound on waiting for a pending prompt
    pending_poll_interval: float = 1.0

    @classmethod
    def from_settings(cls, settings: Any) -> RequestPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            retry_delay=settings.retry_delay,
            pending_timeout=settings.pending_timeout,
            pending_poll_interval=settings.pending_poll_interval,
        )


DEFAULT_POLICY = RequestPolicy()


@dataclass
class AccountRequestResult:
    """Accounts granted plus a record of how many tries it took."""
    accounts: list[str]
    attempts: int
    prompted: bool                  # whether the interactive request was issued
    attempt_log: list[dict[str, Any]] = field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════
# Pending wait
# ═══════════════════════════════════════════════════════════════════

async def wait_for_pending(
    agent: SigningAgent,
    timeout: float,
    poll_interval: float,
    sleep_fn: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """
    Wait until the agent's pending permission prompt clears.

    Agents that expose is_request_pending() are polled until it returns
    False or the timeout elapses. Agents without a pending check get a single
    settle delay. Returns True if it is safe to try again.
    """
    is_pending = getattr(agent, "is_request_pending", None)
    if is_pending is None:
        await sleep_fn(min(poll_interval, timeout))
        return True

    deadline = clock() + timeout
    while True:
        try:
            if not await is_pending():
                return True
        except AgentError as e:
            # The next attempt will surface whatever is wrong
            logger.debug("Pending check failed: %s", e)
            return True
        remaining = deadline - clock()
        if remaining <= 0:
            return False
        await sleep_fn(min(poll_interval, remaining))


# ═══════════════════════════════════════════════════════════════════
# Requester
# ═══════════════════════════════════════════════════════════════════

class AccountRequester:
    """
    Negotiates account access with a signing agent.

    sleep_fn and clock are injectable so tests run without real delays.
    """

    def __init__(
        self,
        policy: RequestPolicy | None = None,
        sleep_fn: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policy = policy or DEFAULT_POLICY
        self.sleep_fn = sleep_fn
        self.clock = clock

    async def request(
        self,
        agent: SigningAgent,
        max_attempts: int | None = None,
    ) -> AccountRequestResult:
        if max_attempts is None:
            max_attempts = self.policy.max_attempts
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        attempt_log: list[dict[str, Any]] = []
        prompted = False
        last_error: Exception | None = None

        for attempt in range(max_attempts):
            final = attempt == max_attempts - 1
            entry: dict[str, Any] = {"attempt": attempt + 1}
            try:
                existing = await agent.list_authorized_accounts()
                if existing:
                    entry["status"] = "already_authorized"
                    attempt_log.append(entry)
                    return AccountRequestResult(
                        accounts=list(existing), attempts=attempt + 1,
                        prompted=prompted, attempt_log=attempt_log,
                    )

                prompted = True
                accounts = await agent.request_accounts()
                if not accounts:
                    raise AgentError(AgentErrorTag.UNTAGGED, "agent granted no accounts")

                entry["status"] = "granted"
                attempt_log.append(entry)
                logger.debug("Accounts granted on attempt %d/%d", attempt + 1, max_attempts)
                return AccountRequestResult(
                    accounts=list(accounts), attempts=attempt + 1,
                    prompted=prompted, attempt_log=attempt_log,
                )

            except AgentError as e:
                entry["error"] = str(e)[:200]
                entry["tag"] = e.tag.value

                if e.is_user_rejection:
                    entry["status"] = "user_rejected"
                    attempt_log.append(entry)
                    logger.info("Account request rejected by user (attempt %d)", attempt + 1)
                    raise ConnectionFailed(ErrorKind.USER_REJECTED, e.message) from e

                if e.is_pending:
                    entry["status"] = "pending"
                    attempt_log.append(entry)
                    logger.info(
                        "Account request already pending (attempt %d/%d), waiting up to %.1fs",
                        attempt + 1, max_attempts, self.policy.pending_timeout,
                    )
                    cleared = await wait_for_pending(
                        agent,
                        timeout=self.policy.pending_timeout,
                        poll_interval=self.policy.pending_poll_interval,
                        sleep_fn=self.sleep_fn,
                        clock=self.clock,
                    )
                    entry["cleared"] = cleared
                    if final:
                        if cleared:
                            existing = await self._list_quietly(agent)
                            if existing:
                                return AccountRequestResult(
                                    accounts=existing, attempts=attempt + 1,
                                    prompted=prompted, attempt_log=attempt_log,
                                )
                        raise ConnectionFailed(ErrorKind.PENDING_TIMEOUT, e.message) from e
                    continue

                last_error = e

            except Exception as e:
                entry["error"] = str(e)[:200]
                entry["tag"] = AgentErrorTag.UNTAGGED.value
                last_error = e

            entry["status"] = "retryable_error"
            attempt_log.append(entry)
            logger.warning(
                "Account request failed (attempt %d/%d): %s",
                attempt + 1, max_attempts, str(last_error)[:100],
            )
            if final:
                break
            entry["backoff_s"] = self.policy.retry_delay
            await self.sleep_fn(self.policy.retry_delay)

        logger.error("Account request exhausted %d attempts", max_attempts)
        raise ConnectionFailed(ErrorKind.TRANSPORT_ERROR, str(last_error)) from last_error

    async def _list_quietly(self, agent: SigningAgent) -> list[str]:
        try:
            return list(await agent.list_authorized_accounts())
        except AgentError as e:
            logger.debug("Post-wait account listing failed: %s", e)
            return []


async def request_accounts(
    agent: SigningAgent,
    max_attempts: int = 3,
    policy: RequestPolicy | None = None,
    sleep_fn: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> list[str]:
    """One-shot helper: negotiate and return the granted accounts."""
    requester = AccountRequester(policy=policy, sleep_fn=sleep_fn)
    result = await requester.request(agent, max_attempts=max_attempts)
    return result.accounts
