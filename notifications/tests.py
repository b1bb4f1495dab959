from decimal import Decimal
from unittest.mock import patch

from django.core import mail
from django.test import TestCase

from accounts.models import CustomUser
from billing import signals
from billing.services import ledger_service, wallet_service
from notifications import receivers
from notifications.models import Notification


class LedgerEventReceiverTests(TestCase):
    def setUp(self):
        self.user = CustomUser.objects.create_user(email="earner@example.com", role=CustomUser.ROLE_EARNER)

    def test_events_are_delivered_only_after_commit(self):
        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            signals.emit_after_commit(signals.EARNING_CREDITED, self.user.pk, usd_amount="0.70", reason="text_message")
        self.assertFalse(Notification.objects.exists())
        for callback in callbacks:
            callback()
        notification = Notification.objects.get(user=self.user)
        self.assertEqual(notification.type, Notification.TYPE_EARNING)
        self.assertIn("$0.70", notification.message)

    def test_every_builder_produces_a_notification(self):
        payloads = {
            signals.CREDITS_PURCHASED: {"credits": 100, "transaction_id": "t"},
            signals.GIFT_RECEIVED: {"usd_amount": "3.50", "gift_name": "Rose", "emoji": "🌹", "gift_transaction_id": "g"},
            signals.EARNING_CREDITED: {"usd_amount": "0.70"},
            signals.EARNINGS_AVAILABLE: {"usd_amount": "35.00"},
            signals.WITHDRAWAL_REQUESTED: {"usd_amount": "30.00", "withdrawal_id": "w"},
            signals.WITHDRAWAL_COMPLETED: {"usd_amount": "30.00", "withdrawal_id": "w"},
            signals.WITHDRAWAL_FAILED: {"usd_amount": "30.00", "withdrawal_id": "w"},
            signals.BOOKING_SETTLED: {"usd_amount": "14.00", "video_date_id": "v"},
            signals.BOOKING_REFUNDED: {"credits": 200, "video_date_id": "v"},
        }
        self.assertEqual(set(payloads), set(receivers.BUILDERS))
        for event, payload in payloads.items():
            with self.subTest(event=event):
                notification = receivers.create_notification(None, event, self.user.pk, payload)
                self.assertTrue(notification.title)

    def test_unknown_event_is_ignored(self):
        self.assertIsNone(receivers.create_notification(None, "something_else", self.user.pk, {}))

    def test_payout_outcomes_send_email(self):
        signals._dispatch(signals.WITHDRAWAL_COMPLETED, self.user.pk, {"usd_amount": "30.00", "withdrawal_id": "w"})
        signals._dispatch(signals.WITHDRAWAL_FAILED, self.user.pk, {"usd_amount": "25.00", "withdrawal_id": "w2"})
        self.assertEqual(len(mail.outbox), 2)
        self.assertIn("$30.00", mail.outbox[0].body)
        self.assertEqual(mail.outbox[1].to, ["earner@example.com"])

    def test_failing_receiver_does_not_break_ledger(self):
        with patch("notifications.receivers.Notification.objects.create", side_effect=RuntimeError("db down")):
            with self.assertLogs("billing.signals", level="WARNING"):
                with self.captureOnCommitCallbacks(execute=True):
                    tx, created = ledger_service.confirm_purchase(self.user, "pi_robust", 100, Decimal("10.00"))
        self.assertTrue(created)
        self.assertEqual(wallet_service.get_wallet(self.user).credit_balance, 100)
