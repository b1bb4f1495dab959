import json

from django.test import TestCase
from django.urls import reverse

from accounts.forms import EarnerProfileAdminForm
from accounts.models import CustomUser, EarnerProfile
from billing.errors import RateTableError


class CustomUserTests(TestCase):
    def test_email_is_normalized(self):
        user = CustomUser.objects.create_user(email="  Someone@Example.COM ", password="testpass123")
        self.assertEqual(user.email, "someone@example.com")
        self.assertEqual(user.role, CustomUser.ROLE_SEEKER)

    def test_payouts_need_completed_onboarding(self):
        user = CustomUser.objects.create_user(email="earner@example.com", role=CustomUser.ROLE_EARNER)
        self.assertFalse(user.can_receive_payouts)
        user.stripe_account_id = "acct_1"
        self.assertFalse(user.can_receive_payouts)
        user.stripe_onboarding_complete = True
        self.assertTrue(user.can_receive_payouts)

    def test_superuser(self):
        admin = CustomUser.objects.create_superuser(email="admin@example.com", password="testpass123")
        self.assertTrue(admin.is_staff)
        self.assertTrue(admin.is_email_verified)


class EarnerProfileTests(TestCase):
    def setUp(self):
        self.earner = CustomUser.objects.create_user(email="earner@example.com", role=CustomUser.ROLE_EARNER)
        self.profile = EarnerProfile.objects.create(user=self.earner)

    def test_defaults_are_the_minimum_rates(self):
        self.assertEqual(self.profile.video_rates, {15: 200, 30: 280, 60: 392, 90: 412})

    def test_invalid_table_is_not_stored(self):
        with self.assertRaises(RateTableError):
            self.profile.set_video_rates({15: 300, 30: 250, 60: 500, 90: 700})
        self.profile.refresh_from_db()
        self.assertEqual(self.profile.video_30min_rate, 280)

    def test_admin_form_validates_table(self):
        data = {
            "user": self.earner.pk,
            "display_name": "",
            "video_15min_rate": 900,
            "video_30min_rate": 300,
            "video_60min_rate": 400,
            "video_90min_rate": 500,
        }
        form = EarnerProfileAdminForm(data=data, instance=self.profile)
        self.assertFalse(form.is_valid())
        data.update(video_15min_rate=300, video_30min_rate=420, video_60min_rate=600, video_90min_rate=800)
        form = EarnerProfileAdminForm(data=data, instance=self.profile)
        self.assertTrue(form.is_valid(), form.errors)


class AccountViewTests(TestCase):
    def setUp(self):
        self.earner = CustomUser.objects.create_user(
            email="earner@example.com", password="testpass123", role=CustomUser.ROLE_EARNER
        )

    def _post(self, url, data):
        return self.client.post(url, data=json.dumps(data), content_type="application/json")

    def test_login(self):
        bad = self._post(reverse("accounts:login"), {"email": "earner@example.com", "password": "wrong"})
        self.assertEqual(bad.status_code, 400)
        ok = self._post(reverse("accounts:login"), {"email": "EARNER@example.com", "password": "testpass123"})
        self.assertEqual(ok.status_code, 200)
        self.assertEqual(self.client.get(reverse("accounts:me")).json()["user"]["email"], "earner@example.com")

    def test_rates(self):
        self.client.force_login(self.earner)
        data = self.client.get(reverse("accounts:video_rates")).json()
        self.assertEqual(data["rates"]["15"], {"video": 200, "audio": 140, "earner_usd": "14.00"})

        response = self._post(reverse("accounts:video_rates"), {"15": 300, "30": 420, "60": 600, "90": 800})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["rates"]["60"]["video"], 600)

        response = self._post(reverse("accounts:video_rates"), {"15": 300, "30": 200, "60": 600, "90": 800})
        self.assertEqual(response.status_code, 400)
        self.assertTrue(response.json()["errors"])
        response = self._post(reverse("accounts:video_rates"), {"15": "300"})
        self.assertEqual(response.status_code, 400)

    def test_seekers_cannot_set_rates(self):
        seeker = CustomUser.objects.create_user(email="seeker@example.com", password="testpass123")
        self.client.force_login(seeker)
        self.assertEqual(self.client.get(reverse("accounts:video_rates")).status_code, 403)
