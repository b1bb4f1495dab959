import hashlib
import hmac
import json
import random
import time
from datetime import timedelta
from io import StringIO
from decimal import Decimal
from types import SimpleNamespace
from unittest import TestCase as SimpleTestCase
from unittest.mock import patch

import stripe
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.urls import reverse
from django.utils import timezone

from accounts.models import CustomUser
from billing import config, pricing
from billing.errors import (
    BelowMinimum,
    ExternalProviderError,
    GiftNotFound,
    InsufficientBalance,
    InsufficientEarnings,
    InvalidAmount,
    LedgerError,
    ManualReconciliationRequired,
    PayoutAccountMissing,
    PayoutHeld,
    PriceNotFound,
    RateTableError,
)
from billing.models import CreditReservation, GiftCatalogItem, Transaction, Withdrawal
from billing.services import ledger_service, stripe_service, wallet_service
from notifications.models import Notification
from video_dates.models import VideoDate


def make_user(email, role=CustomUser.ROLE_SEEKER, **extra):
    return CustomUser.objects.create_user(email=email, password="testpass123", role=role, **extra)


def make_earner(email="earner@example.com", **extra):
    extra.setdefault("stripe_account_id", "acct_test")
    extra.setdefault("stripe_onboarding_complete", True)
    return make_user(email, role=CustomUser.ROLE_EARNER, **extra)


def fund(user, credits, ref=None):
    ref = ref or f"pi_fund_{user.pk}_{credits}_{Transaction.objects.count()}"
    tx, _ = ledger_service.confirm_purchase(user, ref, credits, pricing.credits_to_usd(credits))
    return tx


def make_video_date(seeker, earner, credits=200, status=VideoDate.STATUS_PENDING):
    return VideoDate.objects.create(
        seeker=seeker,
        earner=earner,
        scheduled_start=timezone.now() + timedelta(hours=1),
        scheduled_duration=15,
        credits_reserved=credits,
        earner_amount=pricing.creator_share(credits),
        platform_fee=pricing.platform_share(credits),
        status=status,
    )


class PricingTests(SimpleTestCase):
    def test_conversions(self):
        self.assertEqual(pricing.credits_to_usd(200), Decimal("20.00"))
        self.assertEqual(pricing.creator_share(200), Decimal("14.00"))
        self.assertEqual(pricing.platform_share(200), Decimal("6.00"))
        self.assertEqual(pricing.creator_share(50), Decimal("3.50"))
        self.assertEqual(pricing.platform_share(50), Decimal("1.50"))

    def test_small_amounts_round_to_cents(self):
        self.assertEqual(pricing.credits_to_usd(1), Decimal("0.10"))
        self.assertEqual(pricing.creator_share(1), Decimal("0.07"))
        self.assertEqual(pricing.platform_share(1), Decimal("0.03"))
        self.assertEqual(pricing.round_cents(Decimal("0.005")), Decimal("0.01"))
        self.assertEqual(pricing.round_cents(Decimal("0.004")), Decimal("0.00"))

    def test_shares_add_up_within_a_cent(self):
        rng = random.Random(1234)
        for _ in range(200):
            credits = rng.randint(0, 100000)
            with self.subTest(credits=credits):
                total = pricing.creator_share(credits) + pricing.platform_share(credits)
                self.assertLessEqual(abs(total - pricing.credits_to_usd(credits)), pricing.CENT)
                self.assertTrue(pricing.earnings_match(credits, pricing.creator_share(credits)))

    def test_credits_must_be_integers(self):
        with self.assertRaises(TypeError):
            pricing.credits_to_usd(1.5)
        with self.assertRaises(TypeError):
            pricing.creator_share(True)

    def test_rate_table_shape(self):
        self.assertTrue(pricing.validate_rate_table({15: 200, 30: 150}))
        self.assertEqual(pricing.validate_rate_table({15: 200, 30: 280}), [])
        self.assertEqual(pricing.validate_rate_table(pricing.MIN_RATES), [])
        errors = pricing.validate_rate_table({15: 200, 30: 280, 60: 300})
        self.assertEqual(len(errors), 1)
        self.assertIn("60 min", errors[0])

    def test_rate_bounds(self):
        self.assertEqual(pricing.validate_rate_for_duration(150, 15), (False, 200, "15 min rate must be at least 200 credits"))
        self.assertEqual(pricing.validate_rate_for_duration(950, 90)[:2], (False, pricing.MAX_RATE))
        self.assertEqual(pricing.validate_rate_for_duration(300, 30), (True, 300, None))
        self.assertFalse(pricing.validate_rate_for_duration(300, 45)[0])

    def test_validate_call_rates_collects_every_error(self):
        with self.assertRaises(RateTableError) as ctx:
            pricing.validate_call_rates({15: 100, 30: 280, 60: 392})
        self.assertEqual(len(ctx.exception.errors), 2)
        self.assertEqual(ctx.exception.as_dict()["code"], "invalid_rates")

    def test_call_rates(self):
        rates = {15: 300, 30: 420, 60: 600, 90: 800}
        self.assertEqual(pricing.get_call_rate(rates, "video", 30), 420)
        self.assertEqual(pricing.get_call_rate(rates, "audio", 30), 294)
        self.assertEqual(pricing.get_call_rate({}, "video", 60), 392)
        self.assertEqual(pricing.derive_audio_rate(200), 140)
        with self.assertRaises(PriceNotFound):
            pricing.get_call_rate(rates, "video", 45)
        with self.assertRaises(PriceNotFound):
            pricing.get_call_rate(rates, "hologram", 15)

    def test_price_list(self):
        self.assertEqual(pricing.price_for("text_message"), 5)
        self.assertEqual(pricing.get_credit_pack("popular"), {"credits": 500, "price_cents": 5000})
        with self.assertRaises(PriceNotFound):
            pricing.price_for("free_lunch")
        with self.assertRaises(PriceNotFound):
            pricing.get_credit_pack("mega")


class WalletServiceTests(TestCase):
    def setUp(self):
        self.user = make_user("seeker@example.com")

    def test_debit_below_zero_writes_nothing(self):
        wallet_service.apply_delta(self.user, credits_delta=100)
        with self.assertRaises(InsufficientBalance) as ctx:
            wallet_service.apply_delta(self.user, credits_delta=-150)
        self.assertEqual(ctx.exception.required, 150)
        self.assertEqual(ctx.exception.available, 100)
        self.assertEqual(wallet_service.get_wallet(self.user).credit_balance, 100)

    def test_available_earnings_guard(self):
        wallet_service.apply_delta(self.user, available_delta=Decimal("10.00"))
        with self.assertRaises(InsufficientBalance) as ctx:
            wallet_service.apply_delta(self.user, available_delta=Decimal("-10.01"))
        self.assertEqual(ctx.exception.field, "available_earnings")

    def test_paid_out_total_only_grows(self):
        with self.assertRaises(InvalidAmount):
            wallet_service.apply_delta(self.user, paid_out_delta=Decimal("-1.00"))

    def test_payout_hold(self):
        wallet = wallet_service.set_payout_hold(self.user, True, "fraud review")
        self.assertTrue(wallet.payout_hold)
        self.assertEqual(wallet.payout_hold_reason, "fraud review")
        wallet = wallet_service.set_payout_hold(self.user, False, "ignored")
        self.assertFalse(wallet.payout_hold)
        self.assertEqual(wallet.payout_hold_reason, "")


class PurchaseTests(TestCase):
    def setUp(self):
        self.user = make_user("seeker@example.com")

    def test_confirm_purchase_is_idempotent(self):
        tx, created = ledger_service.confirm_purchase(self.user, "pi_abc", 500, Decimal("50.00"))
        again, created_again = ledger_service.confirm_purchase(self.user, "pi_abc", 500, Decimal("50.00"))
        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(tx.pk, again.pk)
        self.assertEqual(wallet_service.get_wallet(self.user).credit_balance, 500)
        self.assertEqual(Transaction.objects.filter(external_reference="pi_abc").count(), 1)

    def test_reference_of_another_user_is_rejected(self):
        other = make_user("other@example.com")
        ledger_service.confirm_purchase(self.user, "pi_shared", 100, Decimal("10.00"))
        with self.assertRaises(LedgerError):
            ledger_service.confirm_purchase(other, "pi_shared", 100, Decimal("10.00"))
        self.assertIsNone(wallet_service.get_wallet(other))

    def test_invalid_purchase(self):
        with self.assertRaises(InvalidAmount):
            ledger_service.confirm_purchase(self.user, "", 100, Decimal("10.00"))
        with self.assertRaises(InvalidAmount):
            ledger_service.confirm_purchase(self.user, "pi_zero", 0, Decimal("0.00"))
        with self.assertRaises(InvalidAmount):
            ledger_service.confirm_purchase(self.user, "pi_nan", 10, "not-a-number")
        self.assertFalse(Transaction.objects.exists())

    def test_notification_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            ledger_service.confirm_purchase(self.user, "pi_notify", 100, Decimal("10.00"))
        self.assertEqual(len(callbacks), 1)
        notification = Notification.objects.get(user=self.user)
        self.assertEqual(notification.type, Notification.TYPE_CREDITS_PURCHASED)

    def test_no_notification_for_repeat(self):
        ledger_service.confirm_purchase(self.user, "pi_once", 100, Decimal("10.00"))
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            ledger_service.confirm_purchase(self.user, "pi_once", 100, Decimal("10.00"))
        self.assertEqual(callbacks, [])


class SpendTests(TestCase):
    def setUp(self):
        self.seeker = make_user("seeker@example.com")
        self.earner = make_earner()

    def test_overspend_is_rejected_without_writes(self):
        fund(self.seeker, 100)
        count = Transaction.objects.count()
        with self.assertRaises(InsufficientBalance):
            ledger_service.spend_credits(self.seeker, 150, "text_message", recipient=self.earner)
        self.assertEqual(wallet_service.get_wallet(self.seeker).credit_balance, 100)
        self.assertEqual(wallet_service.get_or_create_wallet(self.earner).pending_earnings, 0)
        self.assertEqual(Transaction.objects.count(), count)

    def test_spend_with_recipient_credits_pending_earnings(self):
        fund(self.seeker, 100)
        tx = ledger_service.spend_credits(self.seeker, 10, "image_unlock", recipient=self.earner)
        self.assertEqual(tx.credits_amount, -10)
        self.assertEqual(wallet_service.get_wallet(self.seeker).credit_balance, 90)
        self.assertEqual(wallet_service.get_wallet(self.earner).pending_earnings, Decimal("0.70"))
        earning = Transaction.objects.get(user=self.earner, type=Transaction.TYPE_EARNING)
        self.assertEqual(earning.usd_amount, Decimal("0.70"))

    def test_invalid_spends(self):
        fund(self.seeker, 100)
        for amount in (0, -5, 2.5, True):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidAmount):
                    ledger_service.spend_credits(self.seeker, amount, "text_message")
        with self.assertRaises(InvalidAmount):
            ledger_service.spend_credits(self.seeker, 5, "text_message", recipient=self.seeker)

    def test_spend_for_item_uses_list_price(self):
        fund(self.seeker, 100)
        ledger_service.spend_for_item(self.seeker, "image_message")
        self.assertEqual(wallet_service.get_wallet(self.seeker).credit_balance, 90)
        with self.assertRaises(PriceNotFound):
            ledger_service.spend_for_item(self.seeker, "caviar")

    def test_random_operations_keep_wallet_consistent_with_log(self):
        for seed in range(5):
            with self.subTest(seed=seed):
                rng = random.Random(seed)
                user = make_user(f"random{seed}@example.com")
                balance = 0
                for step in range(30):
                    if rng.random() < 0.4:
                        credits = rng.randint(1, 300)
                        fund(user, credits, ref=f"pi_rand_{seed}_{step}")
                        balance += credits
                    else:
                        credits = rng.randint(1, 200)
                        try:
                            ledger_service.spend_credits(user, credits, "text_message", recipient=self.earner)
                        except InsufficientBalance:
                            self.assertLess(balance, credits)
                        else:
                            balance -= credits
                    self.assertGreaterEqual(balance, 0)
                audit = ledger_service.audit_wallet(user)
                self.assertTrue(audit["consistent"])
                self.assertEqual(audit["stored_credit_balance"], balance)


class GiftTests(TestCase):
    def setUp(self):
        self.sender = make_user("sender@example.com")
        self.recipient = make_earner()
        self.rose = GiftCatalogItem.objects.create(name="Rose", emoji="🌹", credits_cost=50)

    def test_gift_splits_value(self):
        fund(self.sender, 100)
        gift_tx = ledger_service.send_gift(self.sender, self.recipient, self.rose.pk, message="hi")
        self.assertEqual(wallet_service.get_wallet(self.sender).credit_balance, 50)
        self.assertEqual(wallet_service.get_wallet(self.recipient).pending_earnings, Decimal("3.50"))
        self.assertEqual(gift_tx.earner_amount, Decimal("3.50"))
        self.assertEqual(gift_tx.platform_fee, Decimal("1.50"))
        self.assertEqual(gift_tx.credits_spent, 50)
        self.assertTrue(Transaction.objects.filter(user=self.sender, type=Transaction.TYPE_GIFT_SENT, credits_amount=-50).exists())
        self.assertTrue(Transaction.objects.filter(user=self.recipient, type=Transaction.TYPE_GIFT_EARNING).exists())

    def test_gift_price_is_captured_at_send_time(self):
        fund(self.sender, 100)
        gift_tx = ledger_service.send_gift(self.sender, self.recipient, self.rose.pk)
        GiftCatalogItem.objects.filter(pk=self.rose.pk).update(credits_cost=80)
        gift_tx.refresh_from_db()
        self.assertEqual(gift_tx.credits_spent, 50)

    def test_rejected_gifts(self):
        fund(self.sender, 100)
        with self.assertRaises(InvalidAmount):
            ledger_service.send_gift(self.sender, self.sender, self.rose.pk)
        with self.assertRaises(GiftNotFound):
            ledger_service.send_gift(self.sender, self.recipient, 9999)
        self.rose.active = False
        self.rose.save()
        with self.assertRaises(GiftNotFound):
            ledger_service.send_gift(self.sender, self.recipient, self.rose.pk)
        self.assertEqual(wallet_service.get_wallet(self.sender).credit_balance, 100)

    def test_insufficient_credits_for_gift(self):
        fund(self.sender, 40)
        with self.assertRaises(InsufficientBalance):
            ledger_service.send_gift(self.sender, self.recipient, self.rose.pk)
        self.assertFalse(Transaction.objects.filter(type=Transaction.TYPE_GIFT_EARNING).exists())

    def test_only_recipient_can_react(self):
        fund(self.sender, 100)
        gift_tx = ledger_service.send_gift(self.sender, self.recipient, self.rose.pk)
        with self.assertRaises(GiftNotFound):
            ledger_service.react_to_gift(self.sender, gift_tx.pk, "❤️")
        gift_tx = ledger_service.react_to_gift(self.recipient, gift_tx.pk, "❤️")
        self.assertEqual(gift_tx.thank_you_reaction, "❤️")

    def test_gift_notifies_recipient(self):
        fund(self.sender, 100)
        with self.captureOnCommitCallbacks(execute=True):
            ledger_service.send_gift(self.sender, self.recipient, self.rose.pk)
        notification = Notification.objects.get(user=self.recipient)
        self.assertEqual(notification.type, Notification.TYPE_GIFT_RECEIVED)
        self.assertIn("Rose", notification.title)


class BookingLedgerTests(TestCase):
    def setUp(self):
        self.seeker = make_user("seeker@example.com")
        self.earner = make_earner()
        fund(self.seeker, 500)

    def test_reserve_is_idempotent_per_video_date(self):
        video_date = make_video_date(self.seeker, self.earner, credits=200)
        first = ledger_service.reserve_for_booking(self.seeker, 200, video_date)
        second = ledger_service.reserve_for_booking(self.seeker, 200, video_date)
        self.assertEqual(first, second)
        self.assertEqual(wallet_service.get_wallet(self.seeker).credit_balance, 300)
        self.assertEqual(CreditReservation.objects.get(pk=first).status, CreditReservation.STATUS_ACTIVE)

    def test_reserve_without_credits(self):
        video_date = make_video_date(self.seeker, self.earner, credits=600)
        with self.assertRaises(InsufficientBalance):
            ledger_service.reserve_for_booking(self.seeker, 600, video_date)
        self.assertFalse(CreditReservation.objects.exists())

    def test_settle_then_refund_is_refused(self):
        video_date = make_video_date(self.seeker, self.earner, credits=200)
        ledger_service.reserve_for_booking(self.seeker, 200, video_date)
        VideoDate.objects.filter(pk=video_date.pk).update(status=VideoDate.STATUS_COMPLETED)

        self.assertTrue(ledger_service.settle_booking(video_date.pk))
        self.assertFalse(ledger_service.settle_booking(video_date.pk))
        VideoDate.objects.filter(pk=video_date.pk).update(status=VideoDate.STATUS_CANCELLED)
        self.assertFalse(ledger_service.refund_booking(video_date.pk, "late"))

        self.assertEqual(wallet_service.get_wallet(self.seeker).credit_balance, 300)
        self.assertEqual(wallet_service.get_wallet(self.earner).pending_earnings, Decimal("14.00"))
        self.assertEqual(CreditReservation.objects.get(video_date=video_date).status, CreditReservation.STATUS_CONSUMED)
        self.assertEqual(Transaction.objects.filter(video_date=video_date, type=Transaction.TYPE_VIDEO_DATE_CHARGE).count(), 1)

    def test_existing_log_entry_blocks_settlement(self):
        video_date = make_video_date(self.seeker, self.earner, credits=200, status=VideoDate.STATUS_COMPLETED)
        Transaction.objects.create(
            user=self.seeker,
            type=Transaction.TYPE_VIDEO_DATE_CHARGE,
            credits_amount=0,
            usd_amount=Decimal("20.00"),
            video_date=video_date,
        )
        self.assertFalse(ledger_service.settle_booking(video_date.pk))
        video_date.refresh_from_db()
        self.assertIsNone(video_date.settled_at)
        self.assertFalse(Transaction.objects.filter(video_date=video_date, type=Transaction.TYPE_EARNING).exists())

    def test_refund_then_settle_is_refused(self):
        video_date = make_video_date(self.seeker, self.earner, credits=200)
        ledger_service.reserve_for_booking(self.seeker, 200, video_date)
        VideoDate.objects.filter(pk=video_date.pk).update(status=VideoDate.STATUS_CANCELLED_NO_SHOW)

        self.assertTrue(ledger_service.refund_booking(video_date.pk, "no_show"))
        self.assertFalse(ledger_service.refund_booking(video_date.pk, "no_show"))
        VideoDate.objects.filter(pk=video_date.pk).update(status=VideoDate.STATUS_COMPLETED)
        self.assertFalse(ledger_service.settle_booking(video_date.pk))

        self.assertEqual(wallet_service.get_wallet(self.seeker).credit_balance, 500)
        self.assertEqual(wallet_service.get_or_create_wallet(self.earner).pending_earnings, 0)
        self.assertEqual(CreditReservation.objects.get(video_date=video_date).status, CreditReservation.STATUS_RELEASED)
        self.assertTrue(ledger_service.audit_wallet(self.seeker)["consistent"])

    def test_refund_requires_cancelled_status(self):
        video_date = make_video_date(self.seeker, self.earner, credits=200, status=VideoDate.STATUS_SCHEDULED)
        ledger_service.reserve_for_booking(self.seeker, 200, video_date)
        self.assertFalse(ledger_service.refund_booking(video_date.pk))
        self.assertEqual(wallet_service.get_wallet(self.seeker).credit_balance, 300)


class EarningsHoldTests(TestCase):
    def setUp(self):
        self.seeker = make_user("seeker@example.com")
        self.earner = make_earner()
        fund(self.seeker, 1000)
        ledger_service.spend_credits(self.seeker, 500, "text_message", recipient=self.earner)

    def test_earnings_stay_pending_during_hold(self):
        result = ledger_service.promote_pending_to_available(now=timezone.now())
        self.assertEqual(result["transactions"], 0)
        wallet = wallet_service.get_wallet(self.earner)
        self.assertEqual(wallet.pending_earnings, Decimal("35.00"))
        self.assertEqual(wallet.available_earnings, 0)

    def test_promotion_happens_once(self):
        later = timezone.now() + timedelta(hours=config.EARNINGS_HOLD_HOURS, minutes=1)
        with self.captureOnCommitCallbacks(execute=True):
            result = ledger_service.promote_pending_to_available(now=later)
        self.assertEqual(result["users"], 1)
        self.assertEqual(result["amount"], Decimal("35.00"))
        again = ledger_service.promote_pending_to_available(now=later)
        self.assertEqual(again["transactions"], 0)

        wallet = wallet_service.get_wallet(self.earner)
        self.assertEqual(wallet.pending_earnings, 0)
        self.assertEqual(wallet.available_earnings, Decimal("35.00"))
        self.assertTrue(Notification.objects.filter(user=self.earner, type=Notification.TYPE_EARNINGS_AVAILABLE).exists())

    def test_management_command_reports_summary(self):
        out = StringIO()
        call_command("process_pending_earnings", stdout=out)
        self.assertIn("0 earnings", out.getvalue())
        self.assertEqual(wallet_service.get_wallet(self.earner).pending_earnings, Decimal("35.00"))


@override_settings(STRIPE_SECRET_KEY="sk_test_123")
class WithdrawalTests(TestCase):
    def setUp(self):
        self.earner = make_earner()
        wallet_service.apply_delta(self.earner, available_delta=Decimal("100.00"))

    def _available(self):
        return wallet_service.get_wallet(self.earner).available_earnings

    def test_validation_happens_before_any_write(self):
        with self.assertRaises(BelowMinimum):
            ledger_service.request_withdrawal(self.earner, "24.99")
        with self.assertRaises(InvalidAmount):
            ledger_service.request_withdrawal(self.earner, "-5")
        with self.assertRaises(InsufficientEarnings):
            ledger_service.request_withdrawal(self.earner, "100.01")
        wallet_service.set_payout_hold(self.earner, True, "fraud review")
        with self.assertRaises(PayoutHeld):
            ledger_service.request_withdrawal(self.earner, "50.00")
        self.assertFalse(Withdrawal.objects.exists())
        self.assertEqual(self._available(), Decimal("100.00"))

    def test_payout_account_required(self):
        self.earner.stripe_onboarding_complete = False
        self.earner.save()
        with self.assertRaises(PayoutAccountMissing):
            ledger_service.request_withdrawal(self.earner, "50.00")

    @patch("billing.services.ledger_service.payout_service.create_transfer")
    def test_successful_withdrawal(self, create_transfer):
        create_transfer.return_value = SimpleNamespace(id="tr_123")
        withdrawal = ledger_service.request_withdrawal(self.earner, "40.00")
        self.assertEqual(withdrawal.status, Withdrawal.STATUS_PROCESSING)
        self.assertEqual(withdrawal.stripe_transfer_id, "tr_123")
        self.assertEqual(self._available(), Decimal("60.00"))
        tx = Transaction.objects.get(withdrawal=withdrawal)
        self.assertEqual(tx.status, Transaction.STATUS_PENDING)
        self.assertEqual(tx.usd_amount, Decimal("-40.00"))

    @patch("billing.services.ledger_service.payout_service.create_transfer")
    def test_rejected_transfer_is_compensated(self, create_transfer):
        create_transfer.side_effect = stripe.InvalidRequestError("Insufficient platform balance", None)
        with self.assertRaises(ExternalProviderError):
            ledger_service.request_withdrawal(self.earner, "40.00")
        withdrawal = Withdrawal.objects.get()
        self.assertEqual(withdrawal.status, Withdrawal.STATUS_FAILED)
        self.assertFalse(withdrawal.needs_manual_review)
        self.assertEqual(self._available(), Decimal("100.00"))
        self.assertTrue(Transaction.objects.filter(withdrawal=withdrawal, type=Transaction.TYPE_WITHDRAWAL_REFUND).exists())

    @patch("billing.services.ledger_service.payout_service.create_transfer")
    def test_unknown_transfer_outcome_needs_review(self, create_transfer):
        create_transfer.side_effect = stripe.APIConnectionError("connection reset")
        with self.assertRaises(ManualReconciliationRequired):
            ledger_service.request_withdrawal(self.earner, "40.00")
        withdrawal = Withdrawal.objects.get()
        self.assertEqual(withdrawal.status, Withdrawal.STATUS_PENDING)
        self.assertTrue(withdrawal.needs_manual_review)
        self.assertEqual(self._available(), Decimal("60.00"))

        ledger_service.resolve_manual_review(withdrawal.pk, recredit=True, note="no transfer in dashboard")
        withdrawal.refresh_from_db()
        self.assertEqual(withdrawal.status, Withdrawal.STATUS_FAILED)
        self.assertFalse(withdrawal.needs_manual_review)
        self.assertEqual(self._available(), Decimal("100.00"))
        with self.assertRaises(LedgerError):
            ledger_service.resolve_manual_review(withdrawal.pk, recredit=True)

    @patch("billing.services.ledger_service.payout_service.create_transfer")
    def test_weekly_payouts_withdraw_everything(self, create_transfer):
        create_transfer.return_value = SimpleNamespace(id="tr_weekly")
        small = make_earner("small@example.com")
        wallet_service.apply_delta(small, available_delta=Decimal("10.00"))
        result = ledger_service.run_weekly_payouts()
        self.assertEqual(result["requested"], 1)
        self.assertEqual(result["amount"], Decimal("100.00"))
        self.assertEqual(self._available(), 0)
        self.assertFalse(Withdrawal.objects.filter(user=small).exists())


class WithdrawalWebhookTests(TestCase):
    def setUp(self):
        self.earner = make_earner()
        wallet_service.apply_delta(self.earner, available_delta=Decimal("30.00"))
        self.withdrawal = Withdrawal.objects.create(
            user=self.earner,
            amount=Decimal("30.00"),
            status=Withdrawal.STATUS_PROCESSING,
            stripe_transfer_id="tr_abc",
        )
        wallet_service.apply_delta(self.earner, available_delta=Decimal("-30.00"))

    def test_paid_event_applies_once(self):
        _, applied = ledger_service.reconcile_withdrawal_webhook("evt_1", self.withdrawal.pk, "paid")
        _, applied_again = ledger_service.reconcile_withdrawal_webhook("evt_1", self.withdrawal.pk, "paid")
        self.assertTrue(applied)
        self.assertFalse(applied_again)
        self.withdrawal.refresh_from_db()
        self.assertEqual(self.withdrawal.status, Withdrawal.STATUS_COMPLETED)
        self.assertEqual(wallet_service.get_wallet(self.earner).paid_out_total, Decimal("30.00"))

    def test_final_withdrawal_ignores_later_events(self):
        ledger_service.reconcile_withdrawal_webhook("evt_1", self.withdrawal.pk, "paid")
        _, applied = ledger_service.reconcile_withdrawal_webhook("evt_2", self.withdrawal.pk, "failed")
        self.assertFalse(applied)
        self.withdrawal.refresh_from_db()
        self.assertEqual(self.withdrawal.status, Withdrawal.STATUS_COMPLETED)
        self.assertFalse(wallet_service.get_wallet(self.earner).payout_hold)

    def test_failed_event_holds_payouts_without_recredit(self):
        with self.captureOnCommitCallbacks(execute=True):
            with self.assertLogs("billing.services.ledger_service", level="ERROR"):
                ledger_service.reconcile_withdrawal_webhook("evt_f", self.withdrawal.pk, "reversed", "bank rejected")
        self.withdrawal.refresh_from_db()
        wallet = wallet_service.get_wallet(self.earner)
        self.assertEqual(self.withdrawal.status, Withdrawal.STATUS_FAILED)
        self.assertTrue(self.withdrawal.needs_manual_review)
        self.assertEqual(self.withdrawal.failure_reason, "bank rejected")
        self.assertTrue(wallet.payout_hold)
        self.assertEqual(wallet.payout_hold_reason, config.MANUAL_RECONCILIATION_HOLD_REASON)
        self.assertEqual(wallet.available_earnings, 0)
        self.assertTrue(Notification.objects.filter(user=self.earner, type=Notification.TYPE_PAYOUT).exists())

    def test_review_without_recredit_releases_hold(self):
        ledger_service.reconcile_withdrawal_webhook("evt_f", self.withdrawal.pk, "failed")
        ledger_service.resolve_manual_review(self.withdrawal.pk, recredit=False, note="paid manually")
        wallet = wallet_service.get_wallet(self.earner)
        self.assertFalse(wallet.payout_hold)
        self.assertEqual(wallet.available_earnings, 0)

    def test_review_of_completed_withdrawal_cannot_recredit(self):
        ledger_service.reconcile_withdrawal_webhook("evt_1", self.withdrawal.pk, "paid")
        Withdrawal.objects.filter(pk=self.withdrawal.pk).update(needs_manual_review=True)
        with self.assertRaises(ManualReconciliationRequired):
            ledger_service.resolve_manual_review(self.withdrawal.pk, recredit=True)

    def test_malformed_withdrawal_id_is_unknown(self):
        withdrawal, applied = ledger_service.reconcile_withdrawal_webhook("evt_bad", "not-a-uuid", "paid")
        self.assertIsNone(withdrawal)
        self.assertFalse(applied)
        self.withdrawal.refresh_from_db()
        self.assertEqual(self.withdrawal.status, Withdrawal.STATUS_PROCESSING)

    def test_bad_input(self):
        with self.assertRaises(LedgerError):
            ledger_service.reconcile_withdrawal_webhook("evt_x", self.withdrawal.pk, "lost")
        with self.assertRaises(LedgerError):
            ledger_service.reconcile_withdrawal_webhook("", self.withdrawal.pk, "paid")


class StripeServiceTests(SimpleTestCase):
    def _sign(self, payload: str, secret: str, timestamp=None) -> str:
        timestamp = timestamp or int(time.time())
        signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={signature}"

    def test_construct_event_verifies_signature(self):
        payload = json.dumps({"id": "evt_1", "type": "transfer.paid"})
        event = stripe_service.construct_event(payload.encode(), self._sign(payload, "whsec_test"), "whsec_test")
        self.assertEqual(event["id"], "evt_1")
        self.assertEqual(event.get("type"), "transfer.paid")

    def test_construct_event_rejects_bad_signature(self):
        payload = json.dumps({"id": "evt_1"})
        with self.assertRaises(stripe.SignatureVerificationError):
            stripe_service.construct_event(payload.encode(), self._sign(payload, "whsec_other"), "whsec_test")

    def test_user_message_hides_api_text(self):
        self.assertEqual(stripe_service.user_message(stripe.APIConnectionError("boom"), "fallback"), "fallback")


@override_settings(
    STRIPE_WEBHOOK_SECRET="whsec_test",
    STRIPE_TRANSFER_WEBHOOK_SECRET="whsec_transfer",
    CRON_SECRET="cron-secret",
)
class BillingViewTests(TestCase):
    def setUp(self):
        self.seeker = make_user("seeker@example.com")
        self.earner = make_earner()

    def _post_json(self, url, data=None, **extra):
        return self.client.post(url, data=json.dumps(data or {}), content_type="application/json", **extra)

    def _payment_event(self, event_id="evt_pi", reference="pi_webhook"):
        return {
            "id": event_id,
            "type": "payment_intent.succeeded",
            "data": {"object": {
                "id": reference,
                "amount_received": 5000,
                "metadata": {"payment_type": "credit_purchase", "user_id": str(self.seeker.pk), "credits": "500"},
            }},
        }

    def test_wallet_requires_login(self):
        response = self.client.get(reverse("billing:wallet"))
        self.assertEqual(response.status_code, 401)

    def test_wallet(self):
        fund(self.seeker, 100)
        self.client.force_login(self.seeker)
        data = self.client.get(reverse("billing:wallet")).json()
        self.assertEqual(data["credit_balance"], 100)
        self.assertEqual(len(data["transactions"]), 1)

    def test_spend_insufficient_credits(self):
        self.client.force_login(self.seeker)
        response = self._post_json(reverse("billing:spend"), {"item": "text_message", "recipient_id": self.earner.pk})
        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.json()["code"], "insufficient_credits")

    def test_spend_ignores_client_price(self):
        fund(self.seeker, 100)
        self.client.force_login(self.seeker)
        response = self._post_json(reverse("billing:spend"), {"item": "text_message", "credits": 1})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["credit_balance"], 95)

    def test_send_gift(self):
        fund(self.seeker, 100)
        gift = GiftCatalogItem.objects.create(name="Rose", emoji="🌹", credits_cost=50)
        self.client.force_login(self.seeker)
        response = self._post_json(reverse("billing:send_gift"), {"recipient_id": self.earner.pk, "gift_id": gift.pk})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["credit_balance"], 50)
        catalog = self.client.get(reverse("billing:gift_catalog")).json()
        self.assertEqual([g["name"] for g in catalog["gifts"]], ["Rose"])

    def test_malformed_json(self):
        self.client.force_login(self.seeker)
        response = self.client.post(reverse("billing:spend"), data="{nope", content_type="application/json")
        self.assertEqual(response.status_code, 400)

    def test_webhook_without_signature(self):
        response = self._post_json(reverse("billing:stripe_webhook"), self._payment_event())
        self.assertEqual(response.status_code, 400)
        self.assertFalse(Transaction.objects.exists())

    @patch("billing.views.construct_event")
    def test_webhook_redelivery_credits_once(self, construct_event):
        construct_event.return_value = self._payment_event()
        for _ in range(2):
            response = self._post_json(reverse("billing:stripe_webhook"), {}, HTTP_STRIPE_SIGNATURE="t=1,v1=x")
            self.assertEqual(response.status_code, 200)
        self.assertEqual(wallet_service.get_wallet(self.seeker).credit_balance, 500)
        tx = Transaction.objects.get(external_reference="pi_webhook")
        self.assertEqual(tx.usd_amount, Decimal("50.00"))

    @patch("billing.views.construct_event")
    def test_checkout_session_needs_paid_status(self, construct_event):
        session = {
            "id": "cs_1",
            "payment_intent": "pi_checkout",
            "payment_status": "unpaid",
            "amount_total": 1000,
            "metadata": {"payment_type": "credit_purchase", "user_id": str(self.seeker.pk), "credits": "100"},
        }
        construct_event.return_value = {"id": "evt_cs", "type": "checkout.session.completed", "data": {"object": session}}
        self._post_json(reverse("billing:stripe_webhook"), {}, HTTP_STRIPE_SIGNATURE="sig")
        self.assertFalse(Transaction.objects.exists())

        session["payment_status"] = "paid"
        self._post_json(reverse("billing:stripe_webhook"), {}, HTTP_STRIPE_SIGNATURE="sig")
        self.assertEqual(wallet_service.get_wallet(self.seeker).credit_balance, 100)

    @patch("billing.views.payment_service.verify_credit_purchase")
    @patch("billing.views.construct_event")
    def test_client_confirm_races_webhook(self, construct_event, verify):
        construct_event.return_value = self._payment_event(reference="pi_race_123")
        verify.return_value = (500, Decimal("50.00"))
        self.client.force_login(self.seeker)
        confirm = self._post_json(reverse("billing:credits_confirm"), {"payment_intent_id": "pi_race_123"})
        self._post_json(reverse("billing:stripe_webhook"), {}, HTTP_STRIPE_SIGNATURE="sig")
        self.assertFalse(confirm.json()["already_processed"])
        self.assertEqual(wallet_service.get_wallet(self.seeker).credit_balance, 500)

    @patch("billing.views.construct_event")
    def test_transfer_webhook_by_transfer_id(self, construct_event):
        withdrawal = Withdrawal.objects.create(
            user=self.earner, amount=Decimal("25.00"), status=Withdrawal.STATUS_PROCESSING, stripe_transfer_id="tr_view"
        )
        construct_event.return_value = {"id": "evt_tr", "type": "transfer.paid", "data": {"object": {"id": "tr_view"}}}
        response = self._post_json(reverse("billing:stripe_transfer_webhook"), {}, HTTP_STRIPE_SIGNATURE="sig")
        self.assertEqual(response.status_code, 200)
        withdrawal.refresh_from_db()
        self.assertEqual(withdrawal.status, Withdrawal.STATUS_COMPLETED)

    @patch("billing.views.construct_event")
    def test_transfer_webhook_with_malformed_withdrawal_id(self, construct_event):
        construct_event.return_value = {
            "id": "evt_bad_id",
            "type": "transfer.failed",
            "data": {"object": {"id": "tr_unknown", "metadata": {"withdrawal_id": "not-a-uuid"}}},
        }
        response = self._post_json(reverse("billing:stripe_transfer_webhook"), {}, HTTP_STRIPE_SIGNATURE="sig")
        self.assertEqual(response.status_code, 200)

    def test_jobs_require_cron_secret(self):
        url = reverse("billing:job_process_pending_earnings")
        self.assertEqual(self.client.post(url).status_code, 403)
        self.assertEqual(self.client.post(url, HTTP_X_CRON_SECRET="wrong").status_code, 403)
        response = self.client.post(url, HTTP_X_CRON_SECRET="cron-secret")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["transactions"], 0)

    def test_withdrawal_endpoint_below_minimum(self):
        self.client.force_login(self.earner)
        response = self._post_json(reverse("billing:request_withdrawal"), {"amount": "10.00"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "below_minimum")
        self.assertFalse(Withdrawal.objects.exists())
