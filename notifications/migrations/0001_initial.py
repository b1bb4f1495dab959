import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Notification",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("type", models.CharField(choices=[("credits_purchased", "Credits purchased"), ("gift_received", "Gift received"), ("earning", "Earning"), ("earnings_available", "Earnings available"), ("payout", "Payout"), ("video_date", "Video date")], max_length=32)),
                ("title", models.CharField(max_length=200)),
                ("message", models.TextField()),
                ("related_id", models.CharField(blank=True, default="", help_text="Id of the gift, withdrawal or video date this is about", max_length=64)),
                ("is_opened", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="notifications", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name": "Notification",
                "verbose_name_plural": "Notifications",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["user", "-created_at"], name="notification_user_created_idx"),
                    models.Index(fields=["user", "is_opened"], name="notification_user_opened_idx"),
                ],
            },
        ),
    ]
