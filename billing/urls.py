from django.urls import path
from . import views

app_name = "billing"

urlpatterns = [
    path("wallet/", views.wallet, name="wallet"),
    path("credits/packs/", views.credit_packs, name="credit_packs"),
    path("credits/intent/", views.credits_intent, name="credits_intent"),
    path("credits/confirm/", views.credits_confirm, name="credits_confirm"),
    path("spend/", views.spend, name="spend"),
    path("gifts/", views.gift_catalog, name="gift_catalog"),
    path("gifts/send/", views.send_gift, name="send_gift"),
    path("gifts/<uuid:gift_transaction_id>/react/", views.react_to_gift, name="react_to_gift"),
    path("withdrawals/", views.request_withdrawal, name="request_withdrawal"),
    path("connect/onboard/", views.connect_onboard, name="connect_onboard"),
    path("stripe-status/", views.stripe_status, name="stripe_status"),
    path("stripe-webhook/", views.stripe_webhook, name="stripe_webhook"),
    path("stripe-transfer-webhook/", views.stripe_transfer_webhook, name="stripe_transfer_webhook"),
    path("jobs/process-pending-earnings/", views.job_process_pending_earnings, name="job_process_pending_earnings"),
    path("jobs/run-weekly-payouts/", views.job_run_weekly_payouts, name="job_run_weekly_payouts"),
]
