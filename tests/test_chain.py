"""
LOR Ledger — Simulated Chain Tests

Tests:
  - get_code distinguishes deployed and empty addresses
  - Views go through call(), mutations must be transactions
  - Transactions are executed in submission order within a block
  - Reverts are reported raw (code 3, "execution reverted: <Reason>")
  - Fees are charged even on revert; unfunded senders are refused,
    at submission and again when the block is mined
  - A transaction that fails to execute still settles its waiter
  - Unsigned transactions are refused
"""

import asyncio
import os
import sys
import unittest

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from ledger.chain import INTERNAL_ERROR_CODE, REVERT_CODE, RpcError, SimulatedAgent, SimulatedChain
from ledger.contract import RecommendationLedger

OWNER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


class ChainTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.chain = SimulatedChain()
        self.address = self.chain.deploy(RecommendationLedger(approvers=[OWNER]))
        self.agent = SimulatedAgent([OWNER], authorized=True)
        self.handle = self.chain.bind(self.address, await self.agent.create_signer())


class TestReads(ChainTestCase):

    async def test_get_code(self):
        self.assertEqual(await self.chain.get_code(self.address), RecommendationLedger.CODE)
        self.assertEqual(await self.chain.get_code("0x" + "0" * 40), "0x")

    async def test_address_case_insensitive(self):
        self.assertIsNotNone(self.chain.ledger_at(self.address.upper().replace("0X", "0x")))

    async def test_view(self):
        self.assertEqual(await self.handle.call("studentCount"), 0)
        self.assertTrue(await self.handle.call("isApprover", OWNER))

    async def test_view_revert(self):
        with self.assertRaises(RpcError) as ctx:
            await self.handle.call("getStudent", 0)
        self.assertEqual(ctx.exception.code, REVERT_CODE)
        self.assertEqual(ctx.exception.reason, "NotFound")
        self.assertEqual(ctx.exception.message, "execution reverted: NotFound")

    async def test_mutation_via_call_refused(self):
        with self.assertRaises(RpcError):
            await self.handle.call("addStudent", "Alice", "Math", "a@b.c")
        self.assertEqual(self.chain.ledger_at(self.address).student_count, 0)

    async def test_no_contract(self):
        with self.assertRaises(RpcError):
            await self.chain.call("0x" + "0" * 40, "studentCount")

    async def test_injected_fault(self):
        self.chain.fail_next("call", RpcError(-32603, "Internal JSON-RPC error."))
        with self.assertRaises(RpcError):
            await self.handle.call("studentCount")
        self.assertEqual(await self.handle.call("studentCount"), 0)


class TestTransactions(ChainTestCase):

    async def test_confirmed_receipt(self):
        tx = await self.handle.transact("addStudent", "Alice", "Math", "alice@email.com")
        receipt = await tx.wait()
        self.assertEqual(receipt.status, 1)
        self.assertEqual(receipt.return_value, 0)
        self.assertEqual(receipt.block_number, 1)
        self.assertEqual(receipt.tx_hash, tx.tx_hash)
        self.assertEqual([e.name for e in receipt.events], ["StudentAdded"])
        self.assertEqual(self.agent.sign_calls, 1)

    async def test_submission_order(self):
        self.chain.auto_mine = False
        first = await self.handle.transact("addStudent", "A", "Math", "a@x.org")
        second = await self.handle.transact("addStudent", "B", "Math", "b@x.org")
        self.assertEqual(await self.chain.mine(), 2)
        r1, r2 = await asyncio.gather(first.wait(), second.wait())
        self.assertEqual((r1.return_value, r2.return_value), (0, 1))
        self.assertEqual(r1.block_number, r2.block_number)

    async def test_concurrent_adds_get_distinct_ids(self):
        async def add(i):
            tx = await self.handle.transact("addStudent", f"S{i}", "Math", f"s{i}@x.org")
            return (await tx.wait()).return_value

        ids = await asyncio.gather(*(add(i) for i in range(6)))
        self.assertEqual(sorted(ids), list(range(6)))

    async def test_revert_charges_fee(self):
        before = self.chain.balance_of(OWNER)
        tx = await self.handle.transact("requestRecommendation", 5)
        with self.assertRaises(RpcError) as ctx:
            await tx.wait()
        self.assertEqual(ctx.exception.reason, "NotFound")
        self.assertEqual(self.chain.balance_of(OWNER), before - self.chain.fee)

    async def test_insufficient_funds(self):
        self.chain.fund(OWNER, 0)
        with self.assertRaises(RpcError) as ctx:
            await self.handle.transact("addStudent", "Alice", "Math", "a@b.c")
        self.assertIn("insufficient funds", ctx.exception.message)
        self.assertEqual(self.chain.ledger_at(self.address).student_count, 0)

    async def test_execution_error_does_not_stall_block(self):
        self.chain.auto_mine = False
        bad = await self.handle.transact("requestRecommendation")   # missing id
        good = await self.handle.transact("addStudent", "Alice", "Math", "a@b.c")
        self.assertEqual(await self.chain.mine(), 2)

        with self.assertRaises(RpcError) as ctx:
            await asyncio.wait_for(bad.wait(), timeout=1.0)
        self.assertEqual(ctx.exception.code, INTERNAL_ERROR_CODE)

        receipt = await asyncio.wait_for(good.wait(), timeout=1.0)
        self.assertEqual(receipt.status, 1)
        self.assertEqual(receipt.return_value, 0)

        # the chain keeps sequencing after the failure
        tx = await self.handle.transact("requestRecommendation", 0)
        self.assertEqual((await asyncio.wait_for(tx.wait(), timeout=1.0)).status, 1)

    async def test_balance_rechecked_when_mined(self):
        self.chain.fund(OWNER, self.chain.fee)
        self.chain.auto_mine = False
        first = await self.handle.transact("addStudent", "A", "Math", "a@x.org")
        second = await self.handle.transact("addStudent", "B", "Math", "b@x.org")
        await self.chain.mine()

        self.assertEqual((await first.wait()).return_value, 0)
        with self.assertRaises(RpcError) as ctx:
            await second.wait()
        self.assertIn("insufficient funds", ctx.exception.message)
        self.assertEqual(self.chain.balance_of(OWNER), 0)
        self.assertEqual(self.chain.ledger_at(self.address).student_count, 1)

    async def test_unsigned_refused(self):
        with self.assertRaises(RpcError):
            await self.chain.send_transaction({
                "from": OWNER, "to": self.address, "method": "addStudent", "args": [],
            })

    async def test_signature_rejected_in_wallet(self):
        self.agent.reject_signing = True
        with self.assertRaises(Exception) as ctx:
            await self.handle.transact("addStudent", "Alice", "Math", "a@b.c")
        self.assertTrue(ctx.exception.is_user_rejection)
        self.assertEqual(self.chain.ledger_at(self.address).student_count, 0)

    async def test_block_time(self):
        self.chain.block_time = 0.01
        tx = await self.handle.transact("addStudent", "Alice", "Math", "a@b.c")
        receipt = await tx.wait()
        self.assertEqual(receipt.status, 1)


class TestAgent(unittest.IsolatedAsyncioTestCase):

    async def test_signer_requires_authorization(self):
        agent = SimulatedAgent([OWNER])
        with self.assertRaises(Exception):
            await agent.create_signer()
        await agent.request_accounts()
        signer = await agent.create_signer()
        self.assertEqual(signer.address, OWNER)

    async def test_revoke(self):
        agent = SimulatedAgent([OWNER], authorized=True)
        agent.revoke()
        self.assertEqual(await agent.list_authorized_accounts(), [])


if __name__ == "__main__":
    unittest.main()
