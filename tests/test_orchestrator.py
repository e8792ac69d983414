"""
LOR Ledger — Connection Orchestrator Tests

Tests:
  - Full phase sequence ending in CONNECTED with a Session
  - Entry guard: concurrent triggers start exactly one attempt
  - No ledger code → FAILED(LEDGER_NOT_FOUND), no Session
  - Unconfigured address / missing agent / signer failure / code lookup failure
  - Network id failure is non-fatal, mismatch only warns
  - reset() discards a late result; manual retry reconnects
  - Listeners, snapshots and status text
"""

import asyncio
import os
import sys
import unittest

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from connector.accounts import AccountRequester, RequestPolicy
from connector.errors import ErrorKind, agent_error_from_rpc
from connector.orchestrator import ConnectionOrchestrator, InvalidTransition, Phase
from ledger.chain import RpcError, SimulatedAgent, SimulatedChain
from ledger.contract import RecommendationLedger

ACCOUNT = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
EMPTY_ADDRESS = "0x" + "ab" * 20


async def _no_sleep(seconds):
    return None


def _build(agent=None, address="deploy", expected_network_id=None, max_attempts=3):
    chain = SimulatedChain()
    if address == "deploy":
        address = chain.deploy(RecommendationLedger(approvers=[ACCOUNT]))
    if agent is None:
        agent = SimulatedAgent([ACCOUNT])
    requester = AccountRequester(
        RequestPolicy(max_attempts=max_attempts, retry_delay=0.0), sleep_fn=_no_sleep,
    )
    orch = ConnectionOrchestrator(
        agent=agent, backend=chain, ledger_address=address,
        requester=requester, expected_network_id=expected_network_id,
    )
    return orch, chain, agent


class TestHappyPath(unittest.IsolatedAsyncioTestCase):

    async def test_phase_sequence(self):
        orch, chain, agent = _build()
        seen = []
        orch.subscribe(lambda old, new, state: seen.append(new))

        phase = await orch.connect()

        self.assertEqual(phase, Phase.CONNECTED)
        self.assertEqual(seen, [
            Phase.CONNECTING,
            Phase.ACCOUNTS_REQUESTED,
            Phase.CHAIN_IDENTIFIED,
            Phase.SESSION_CREATED,
            Phase.LEDGER_VERIFIED,
            Phase.CONNECTED,
        ])
        self.assertTrue(orch.is_connected)
        self.assertEqual(orch.session.account, ACCOUNT)
        self.assertEqual(orch.session.network_id, "0x7a69")
        self.assertFalse(orch.state.attempt_in_flight)
        self.assertIsNone(orch.state.last_error)

    async def test_session_handle_is_usable(self):
        orch, chain, agent = _build()
        await orch.connect()
        self.assertEqual(await orch.session.ledger.call("studentCount"), 0)

    async def test_connect_when_connected_is_noop(self):
        orch, chain, agent = _build()
        await orch.connect()
        session = orch.session
        self.assertEqual(await orch.connect(), Phase.CONNECTED)
        self.assertIs(orch.session, session)
        self.assertEqual(agent.request_calls, 1)

    async def test_snapshot(self):
        orch, chain, agent = _build()
        self.assertFalse(orch.snapshot()["settled"])
        await orch.connect()
        snap = orch.snapshot()
        self.assertEqual(snap["phase"], "connected")
        self.assertEqual(snap["status"], "Connected as 0xf39F...2266")
        self.assertTrue(snap["settled"])
        self.assertEqual(snap["ledger_address"], orch.ledger_address)


class TestEntryGuard(unittest.IsolatedAsyncioTestCase):

    async def test_concurrent_triggers_start_one_attempt(self):
        agent = SimulatedAgent([ACCOUNT], latency=0.01)
        orch, chain, agent = _build(agent=agent)

        results = await asyncio.gather(orch.connect(), orch.connect(), orch.connect())

        self.assertEqual(results[0], Phase.CONNECTED)
        self.assertNotIn(Phase.FAILED, results)
        self.assertEqual(agent.request_calls, 1)
        self.assertEqual(agent.list_calls, 1)
        self.assertEqual(orch.phase, Phase.CONNECTED)

    async def test_failed_requires_reset(self):
        orch, chain, agent = _build(address=None)
        self.assertEqual(await orch.connect(), Phase.FAILED)
        self.assertEqual(await orch.connect(), Phase.FAILED)
        self.assertEqual(orch.state.last_error.kind, ErrorKind.UNCONFIGURED)


class TestFailures(unittest.IsolatedAsyncioTestCase):

    async def test_ledger_not_found(self):
        orch, chain, agent = _build(address=EMPTY_ADDRESS)
        phase = await orch.connect()
        self.assertEqual(phase, Phase.FAILED)
        self.assertEqual(orch.state.last_error.kind, ErrorKind.LEDGER_NOT_FOUND)
        self.assertIsNone(orch.session)
        self.assertFalse(orch.is_connected)

    async def test_unconfigured(self):
        orch, chain, agent = _build(address=None)
        await orch.connect()
        self.assertEqual(orch.state.last_error.kind, ErrorKind.UNCONFIGURED)
        self.assertEqual(agent.request_calls, 0)
        self.assertEqual(agent.list_calls, 0)

    async def test_agent_unavailable(self):
        chain = SimulatedChain()
        address = chain.deploy(RecommendationLedger())
        orch = ConnectionOrchestrator(agent=None, backend=chain, ledger_address=address)
        await orch.connect()
        self.assertEqual(orch.state.last_error.kind, ErrorKind.AGENT_UNAVAILABLE)

    async def test_user_rejection(self):
        agent = SimulatedAgent([ACCOUNT], request_script=[agent_error_from_rpc(4001, "denied")])
        orch, chain, agent = _build(agent=agent)
        await orch.connect()
        self.assertEqual(orch.phase, Phase.FAILED)
        self.assertEqual(orch.state.last_error.kind, ErrorKind.USER_REJECTED)
        self.assertEqual(agent.request_calls, 1)
        self.assertEqual(
            orch.status_message(), "Connection failed: The request was rejected in the wallet.",
        )

    async def test_provider_init_failed(self):
        orch, chain, agent = _build()
        agent.signer_error = RuntimeError("provider exploded")
        await orch.connect()
        err = orch.state.last_error
        self.assertEqual(err.kind, ErrorKind.PROVIDER_INIT_FAILED)
        self.assertIn("provider exploded", err.message)
        self.assertIsNone(orch.session)

    async def test_ledger_verification_failed(self):
        orch, chain, agent = _build()
        chain.fail_next("get_code", RpcError(-32000, "header not found"))
        await orch.connect()
        self.assertEqual(orch.state.last_error.kind, ErrorKind.LEDGER_VERIFICATION_FAILED)

    async def test_unexpected_exception_is_transport_error(self):
        class BrokenRequester:
            async def request(self, agent):
                raise ValueError("bug")

        orch, chain, agent = _build()
        orch.requester = BrokenRequester()
        await orch.connect()
        self.assertEqual(orch.phase, Phase.FAILED)
        self.assertEqual(orch.state.last_error.kind, ErrorKind.TRANSPORT_ERROR)
        self.assertFalse(orch.state.attempt_in_flight)


class TestNetwork(unittest.IsolatedAsyncioTestCase):

    async def test_network_failure_is_not_fatal(self):
        orch, chain, agent = _build()
        agent.network_error = RuntimeError("eth_chainId unsupported")
        self.assertEqual(await orch.connect(), Phase.CONNECTED)
        self.assertIsNone(orch.state.network_id)

    async def test_network_mismatch_only_warns(self):
        orch, chain, agent = _build(expected_network_id="0x1")
        with self.assertLogs("lor_ledger.orchestrator", level="WARNING") as logs:
            phase = await orch.connect()
        self.assertEqual(phase, Phase.CONNECTED)
        self.assertTrue(any("expected 0x1" in line for line in logs.output))

    async def test_notify_network_changed(self):
        orch, chain, agent = _build()
        await orch.connect()
        orch.notify_network_changed("0x1")
        self.assertEqual(orch.state.network_id, "0x1")
        self.assertEqual(orch.phase, Phase.CONNECTED)


class TestReset(unittest.IsolatedAsyncioTestCase):

    async def test_reset_discards_late_result(self):
        agent = SimulatedAgent([ACCOUNT], latency=0.05)
        orch, chain, agent = _build(agent=agent)

        task = asyncio.create_task(orch.connect())
        await asyncio.sleep(0.01)
        self.assertTrue(orch.state.attempt_in_flight)

        orch.reset()
        phase = await task

        self.assertEqual(phase, Phase.DISCONNECTED)
        self.assertEqual(orch.phase, Phase.DISCONNECTED)
        self.assertIsNone(orch.session)
        self.assertFalse(orch.state.attempt_in_flight)

    async def test_reset_from_listener_discards_attempt(self):
        for phase in (Phase.CONNECTING, Phase.ACCOUNTS_REQUESTED, Phase.CHAIN_IDENTIFIED,
                      Phase.SESSION_CREATED, Phase.LEDGER_VERIFIED):
            with self.subTest(phase=phase.value):
                orch, chain, agent = _build()

                def reset_on(old, new, state, target=phase, orch=orch):
                    if new == target:
                        orch.reset()

                unsubscribe = orch.subscribe(reset_on)
                with self.assertNoLogs("lor_ledger.orchestrator", level="ERROR"):
                    result = await orch.connect()

                self.assertEqual(result, Phase.DISCONNECTED)
                self.assertEqual(orch.phase, Phase.DISCONNECTED)
                self.assertIsNone(orch.session)
                self.assertFalse(orch.is_connected)
                self.assertFalse(orch.state.attempt_in_flight)

                unsubscribe()
                self.assertEqual(await orch.connect(), Phase.CONNECTED)
                self.assertIsNotNone(orch.session)

    async def test_manual_retry_after_failure(self):
        agent = SimulatedAgent([ACCOUNT], request_script=[agent_error_from_rpc(4001, "denied")])
        orch, chain, agent = _build(agent=agent)
        self.assertEqual(await orch.connect(), Phase.FAILED)

        orch.reset()
        self.assertEqual(orch.phase, Phase.DISCONNECTED)
        self.assertIsNone(orch.state.last_error)

        self.assertEqual(await orch.connect(), Phase.CONNECTED)
        self.assertEqual(agent.request_calls, 2)

    async def test_reset_replaces_session(self):
        orch, chain, agent = _build()
        await orch.connect()
        first = orch.session
        orch.reset()
        self.assertIsNone(orch.session)
        await orch.connect()
        self.assertIsNotNone(orch.session)
        self.assertIsNot(orch.session, first)


class TestListeners(unittest.IsolatedAsyncioTestCase):

    async def test_listener_failure_does_not_break_attempt(self):
        orch, chain, agent = _build()

        def broken(old, new, state):
            raise RuntimeError("listener bug")

        orch.subscribe(broken)
        self.assertEqual(await orch.connect(), Phase.CONNECTED)

    async def test_unsubscribe(self):
        orch, chain, agent = _build()
        seen = []
        unsubscribe = orch.subscribe(lambda old, new, state: seen.append(new))
        unsubscribe()
        await orch.connect()
        self.assertEqual(seen, [])

    async def test_listener_gets_copy(self):
        orch, chain, agent = _build()
        states = []
        orch.subscribe(lambda old, new, state: states.append(state))
        await orch.connect()
        states[0].phase = Phase.FAILED
        self.assertEqual(orch.phase, Phase.CONNECTED)


class TestTransitions(unittest.TestCase):

    def test_invalid_transition(self):
        orch, chain, agent = _build()
        with self.assertRaises(InvalidTransition):
            orch._transition(Phase.CONNECTED)

    def test_status_text_when_disconnected(self):
        orch, chain, agent = _build()
        self.assertEqual(orch.status_message(), "Not connected")


if __name__ == "__main__":
    unittest.main()
