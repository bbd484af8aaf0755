from __future__ import annotations

import unittest

from teamcal.core.errors import InvalidEvent, PermissionDenied
from teamcal.core.store import get_store
from teamcal.services import attendees as ledger


class TestAttendeeLedger(unittest.TestCase):
    def setUp(self):
        get_store.cache_clear()

    def test_invite_is_idempotent_and_keeps_rsvp(self):
        ledger.invite("evt1", ["alice", "bob", "alice"])
        ledger.set_accepted("evt1", "alice", True)
        ledger.invite("evt1", ["alice"])

        self.assertEqual(sorted(ledger.attendees("evt1")), ["alice", "bob"])
        self.assertEqual(ledger.accepted_users("evt1"), ["alice"])

    def test_accept_then_decline(self):
        ledger.invite("evt1", ["alice"])
        self.assertEqual(ledger.set_accepted("evt1", "alice", True), ["alice"])
        self.assertEqual(ledger.set_accepted("evt1", "alice", False), [])
        row = ledger.attendance("evt1")[0]
        self.assertIs(row.accepted, False)

    def test_non_invitee_cannot_respond(self):
        with self.assertRaises(PermissionDenied):
            ledger.set_accepted("evt1", "mallory", True)
        self.assertEqual(ledger.attendees("evt1"), [])

    def test_interest_toggles_for_any_user(self):
        self.assertFalse(ledger.get_interested("evt1", "carol"))
        self.assertTrue(ledger.set_interested("evt1", "carol"))
        self.assertTrue(ledger.get_interested("evt1", "carol"))
        self.assertFalse(ledger.set_interested("evt1", "carol"))

    def test_attendance_joins_interest(self):
        ledger.invite("evt1", ["alice", "bob"])
        ledger.set_interested("evt1", "bob")
        rows = {row.user_id: row for row in ledger.attendance("evt1")}
        self.assertFalse(rows["alice"].interested)
        self.assertTrue(rows["bob"].interested)
        self.assertIsNone(rows["alice"].accepted)

    def test_notification_defaults_and_validation(self):
        self.assertEqual(ledger.get_notification("evt1", "alice"), "")
        self.assertEqual(ledger.set_notification("evt1", "alice", "15_minutes_before"), "15_minutes_before")
        self.assertEqual(ledger.notification_preferences("evt1"), {"alice": "15_minutes_before"})
        with self.assertRaises(InvalidEvent):
            ledger.set_notification("evt1", "alice", "whenever")

    def test_events_for_user_uses_member_index(self):
        ledger.invite("evt1", ["alice"])
        ledger.invite("evt2", ["alice", "bob"])
        self.assertEqual(sorted(ledger.events_for_user("alice")), ["evt1", "evt2"])
        self.assertEqual(ledger.events_for_user("bob"), ["evt2"])

    def test_uninvite_and_remove_event(self):
        ledger.invite("evt1", ["alice", "bob"])
        ledger.set_interested("evt1", "carol")
        ledger.set_notification("evt1", "alice", "1_hour_before")
        self.assertEqual(ledger.uninvite("evt1", ["bob"]), 1)
        self.assertFalse(ledger.is_invited("evt1", "bob"))

        self.assertEqual(ledger.remove_event("evt1"), 3)
        self.assertEqual(ledger.attendees("evt1"), [])
        self.assertEqual(ledger.notification_preferences("evt1"), {})
        self.assertFalse(ledger.get_interested("evt1", "carol"))
