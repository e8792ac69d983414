"""
LOR Ledger — Recommendation Ledger Tests

Tests:
  - Register → request → approve lifecycle
  - Ids are dense, zero-based and never reused
  - Precondition failures change nothing
  - Unauthorized is reported before NotFound / NotRequested
  - Empty or whitespace-only fields are InvalidInput
  - Name-based dispatch and emitted events
"""

import os
import sys
import unittest

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from ledger.contract import RecommendationLedger, Revert, RevertReason, StudentStatus

OWNER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
STRANGER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"


class TestLifecycle(unittest.TestCase):

    def setUp(self):
        self.ledger = RecommendationLedger(approvers=[OWNER])

    def test_register(self):
        sid = self.ledger.add_student("Alice", "Math", "alice@email.com")
        self.assertEqual(sid, 0)
        s = self.ledger.get_student(0)
        self.assertEqual((s.name, s.course, s.email), ("Alice", "Math", "alice@email.com"))
        self.assertFalse(s.requested)
        self.assertFalse(s.approved)
        self.assertEqual(s.status, StudentStatus.REGISTERED)

    def test_request_then_approve(self):
        self.ledger.add_student("Alice", "Math", "alice@email.com")
        self.ledger.request_recommendation(0)
        s = self.ledger.get_student(0)
        self.assertTrue(s.requested)
        self.assertFalse(s.approved)
        self.assertEqual(s.status, StudentStatus.REQUEST_PENDING)

        self.ledger.approve_recommendation(0, sender=OWNER)
        s = self.ledger.get_student(0)
        self.assertTrue(s.approved)
        self.assertEqual(s.status, StudentStatus.APPROVED)
        self.assertEqual(
            self.ledger.get_student_details(0), ("Alice", "Math", "alice@email.com", True),
        )

    def test_ids_are_dense(self):
        ids = [self.ledger.add_student(f"S{i}", "Math", f"s{i}@x.org") for i in range(5)]
        self.assertEqual(ids, [0, 1, 2, 3, 4])
        self.assertEqual(self.ledger.student_count, 5)
        self.assertEqual(self.ledger.get_student(3).name, "S3")

    def test_to_dict(self):
        self.ledger.add_student("Alice", "Math", "alice@email.com")
        d = self.ledger.get_student(0).to_dict()
        self.assertEqual(d["id"], 0)
        self.assertEqual(d["status"], "registered")


class TestPreconditions(unittest.TestCase):

    def setUp(self):
        self.ledger = RecommendationLedger(approvers=[OWNER])
        self.ledger.add_student("Alice", "Math", "alice@email.com")

    def assertRevert(self, reason, fn, *args, **kwargs):
        with self.assertRaises(Revert) as ctx:
            fn(*args, **kwargs)
        self.assertEqual(ctx.exception.reason, reason)

    def test_get_unknown(self):
        self.assertRevert(RevertReason.NOT_FOUND, self.ledger.get_student, 1)
        self.assertRevert(RevertReason.NOT_FOUND, self.ledger.get_student, -1)
        self.assertRevert(RevertReason.NOT_FOUND, self.ledger.get_student, "abc")

    def test_request_twice(self):
        self.ledger.request_recommendation(0)
        self.assertRevert(RevertReason.ALREADY_REQUESTED, self.ledger.request_recommendation, 0)
        self.assertTrue(self.ledger.get_student(0).requested)

    def test_request_unknown(self):
        self.assertRevert(RevertReason.NOT_FOUND, self.ledger.request_recommendation, 7)

    def test_approve_before_request(self):
        self.assertRevert(RevertReason.NOT_REQUESTED, self.ledger.approve_recommendation,
                          0, sender=OWNER)
        self.assertFalse(self.ledger.get_student(0).approved)

    def test_unauthorized_checked_first(self):
        # unknown id and not requested both lose to Unauthorized
        self.assertRevert(RevertReason.UNAUTHORIZED, self.ledger.approve_recommendation,
                          99, sender=STRANGER)
        self.assertRevert(RevertReason.UNAUTHORIZED, self.ledger.approve_recommendation,
                          0, sender=STRANGER)
        self.assertRevert(RevertReason.UNAUTHORIZED, self.ledger.approve_recommendation, 0)

    def test_approver_case_insensitive(self):
        self.ledger.request_recommendation(0)
        self.ledger.approve_recommendation(0, sender=OWNER.lower())
        self.assertTrue(self.ledger.get_student(0).approved)
        self.assertTrue(self.ledger.is_approver(OWNER.upper().replace("0X", "0x")))
        self.assertFalse(self.ledger.is_approver(STRANGER))

    def test_empty_fields(self):
        for args in [("", "Math", "a@b.c"), ("Alice", " ", "a@b.c"), ("Alice", "Math", "")]:
            self.assertRevert(RevertReason.INVALID_INPUT, self.ledger.add_student, *args)
        self.assertEqual(self.ledger.student_count, 1)

    def test_failed_add_does_not_consume_id(self):
        with self.assertRaises(Revert):
            self.ledger.add_student("", "", "")
        self.assertEqual(self.ledger.add_student("Bob", "Art", "bob@x.org"), 1)


class TestDispatch(unittest.TestCase):

    def test_execute_returns_events(self):
        ledger = RecommendationLedger(approvers=[OWNER])
        value, events = ledger.execute("addStudent", ["Alice", "Math", "a@b.c"], sender=OWNER)
        self.assertEqual(value, 0)
        self.assertEqual([e.name for e in events], ["StudentAdded"])

        _, events = ledger.execute("requestRecommendation", [0], sender=OWNER)
        self.assertEqual([e.name for e in events], ["RecommendationRequested"])

        _, events = ledger.execute("approveRecommendation", [0], sender=OWNER)
        self.assertEqual(events[0].args["approver"], OWNER)
        self.assertEqual(len(ledger.events), 3)

    def test_views_emit_nothing(self):
        ledger = RecommendationLedger()
        value, events = ledger.execute("studentCount")
        self.assertEqual(value, 0)
        self.assertEqual(events, [])

    def test_unknown_method(self):
        with self.assertRaises(KeyError):
            RecommendationLedger().execute("selfDestruct")

    def test_is_mutating(self):
        self.assertTrue(RecommendationLedger.is_mutating("addStudent"))
        self.assertFalse(RecommendationLedger.is_mutating("getStudent"))


if __name__ == "__main__":
    unittest.main()
