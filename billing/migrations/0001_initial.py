import uuid
from decimal import Decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("video_dates", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Wallet",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("credit_balance", models.IntegerField(default=0)),
                ("pending_earnings", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("available_earnings", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("paid_out_total", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("payout_hold", models.BooleanField(default=False)),
                ("payout_hold_reason", models.CharField(blank=True, default="", max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("user", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="wallet", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("credit_balance__gte", 0)), name="wallet_credit_balance_non_negative"),
                    models.CheckConstraint(condition=models.Q(("pending_earnings__gte", 0)), name="wallet_pending_earnings_non_negative"),
                    models.CheckConstraint(condition=models.Q(("available_earnings__gte", 0)), name="wallet_available_earnings_non_negative"),
                    models.CheckConstraint(condition=models.Q(("paid_out_total__gte", 0)), name="wallet_paid_out_total_non_negative"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Withdrawal",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("processing", "Processing"), ("completed", "Completed"), ("failed", "Failed")], default="pending", max_length=16)),
                ("stripe_transfer_id", models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ("failure_reason", models.CharField(blank=True, default="", max_length=255)),
                ("needs_manual_review", models.BooleanField(default=False)),
                ("requested_at", models.DateTimeField(auto_now_add=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("reviewed_at", models.DateTimeField(blank=True, null=True)),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="withdrawals", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-requested_at"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("amount__gt", 0)), name="withdrawal_amount_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Transaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("type", models.CharField(choices=[("purchase", "Purchase"), ("spend", "Spend"), ("earning", "Earning"), ("gift_sent", "Gift sent"), ("gift_earning", "Gift earning"), ("withdrawal", "Withdrawal"), ("withdrawal_refund", "Withdrawal refund"), ("video_date_charge", "Video date charge"), ("video_date_refund", "Video date refund")], max_length=32)),
                ("credits_amount", models.IntegerField(default=0)),
                ("usd_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("external_reference", models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("completed", "Completed"), ("failed", "Failed"), ("refunded", "Refunded")], default="completed", max_length=16)),
                ("description", models.CharField(blank=True, default="", max_length=255)),
                ("cleared_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="transactions", to=settings.AUTH_USER_MODEL)),
                ("video_date", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="transactions", to="video_dates.videodate")),
                ("withdrawal", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="transactions", to="billing.withdrawal")),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["user", "-created_at"], name="transaction_user_created_idx"),
                    models.Index(fields=["type", "cleared_at"], name="transaction_type_cleared_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(condition=models.Q(("type__in", ["video_date_charge", "video_date_refund"])), fields=("video_date", "type"), name="one_charge_or_refund_per_video_date_type"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ProcessedWebhookEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("event_id", models.CharField(max_length=255, unique=True)),
                ("event_type", models.CharField(max_length=100)),
                ("processed_at", models.DateTimeField(auto_now_add=True)),
            ],
        ),
        migrations.CreateModel(
            name="CreditReservation",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("credits", models.PositiveIntegerField()),
                ("status", models.CharField(choices=[("active", "Active"), ("consumed", "Consumed"), ("released", "Released")], default="active", max_length=16)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="credit_reservations", to=settings.AUTH_USER_MODEL)),
                ("video_date", models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name="reservation", to="video_dates.videodate")),
            ],
        ),
        migrations.CreateModel(
            name="GiftCatalogItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=100)),
                ("emoji", models.CharField(max_length=16)),
                ("credits_cost", models.PositiveIntegerField()),
                ("description", models.CharField(blank=True, default="", max_length=255)),
                ("animation_type", models.CharField(choices=[("standard", "Standard"), ("premium", "Premium"), ("ultra", "Ultra")], default="standard", max_length=16)),
                ("sort_order", models.IntegerField(default=0)),
                ("active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["sort_order", "credits_cost"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("credits_cost__gt", 0)), name="gift_credits_cost_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="GiftTransaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("credits_spent", models.PositiveIntegerField()),
                ("earner_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("platform_fee", models.DecimalField(decimal_places=2, max_digits=12)),
                ("message", models.CharField(blank=True, default="", max_length=500)),
                ("thank_you_reaction", models.CharField(blank=True, default="", max_length=16)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("gift", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="transactions", to="billing.giftcatalogitem")),
                ("recipient", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="gifts_received", to=settings.AUTH_USER_MODEL)),
                ("sender", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="gifts_sent", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
