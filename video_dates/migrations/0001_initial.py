import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="VideoDate",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("call_type", models.CharField(choices=[("video", "Video"), ("audio", "Audio")], default="video", max_length=8)),
                ("scheduled_start", models.DateTimeField(db_index=True)),
                ("scheduled_duration", models.PositiveIntegerField(help_text="Minutes")),
                ("credits_reserved", models.PositiveIntegerField()),
                ("earner_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("platform_fee", models.DecimalField(decimal_places=2, max_digits=12)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("scheduled", "Scheduled"), ("waiting", "Waiting"), ("in_progress", "In progress"), ("completed", "Completed"), ("cancelled", "Cancelled"), ("cancelled_no_show", "Cancelled (no-show)")], db_index=True, default="pending", max_length=20)),
                ("seeker_joined_at", models.DateTimeField(blank=True, null=True)),
                ("earner_joined_at", models.DateTimeField(blank=True, null=True)),
                ("waiting_started_at", models.DateTimeField(blank=True, null=True)),
                ("actual_start", models.DateTimeField(blank=True, null=True)),
                ("actual_end", models.DateTimeField(blank=True, null=True)),
                ("refunded", models.BooleanField(default=False)),
                ("settled_at", models.DateTimeField(blank=True, null=True)),
                ("room_name", models.CharField(blank=True, default="", max_length=128)),
                ("room_url", models.URLField(blank=True, default="", max_length=500)),
                ("seeker_token", models.TextField(blank=True, default="")),
                ("earner_token", models.TextField(blank=True, default="")),
                ("cancellation_reason", models.CharField(blank=True, default="", max_length=255)),
                ("refund_reason", models.CharField(blank=True, default="", max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("cancelled_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="+", to=settings.AUTH_USER_MODEL)),
                ("earner", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="video_dates_hosted", to=settings.AUTH_USER_MODEL)),
                ("seeker", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="video_dates_booked", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-scheduled_start"],
                "indexes": [models.Index(fields=["status", "scheduled_start"], name="video_date_status_start_idx")],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("refunded", True), ("settled_at__isnull", False), _negated=True), name="video_date_not_both_refunded_and_settled"),
                    models.CheckConstraint(condition=models.Q(("seeker", models.F("earner")), _negated=True), name="video_date_distinct_participants"),
                ],
            },
        ),
    ]
