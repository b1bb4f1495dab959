from django.contrib import admin, messages

from billing.errors import LedgerError
from billing.models import (
    CreditReservation,
    GiftCatalogItem,
    GiftTransaction,
    ProcessedWebhookEvent,
    Transaction,
    Wallet,
    Withdrawal,
)
from billing.services import ledger_service, wallet_service


@admin.register(Wallet)
class WalletAdmin(admin.ModelAdmin):
    list_display = ("user", "credit_balance", "pending_earnings", "available_earnings", "paid_out_total", "payout_hold", "updated_at")
    list_filter = ("payout_hold",)
    search_fields = ("user__email",)
    readonly_fields = ("user", "credit_balance", "pending_earnings", "available_earnings", "paid_out_total", "payout_hold", "payout_hold_reason", "created_at", "updated_at")
    actions = ["place_payout_hold", "release_payout_hold"]

    def has_add_permission(self, request):
        return False

    def place_payout_hold(self, request, queryset):
        for wallet in queryset.select_related("user"):
            wallet_service.set_payout_hold(wallet.user, True, f"admin:{request.user.email}")
        self.message_user(request, f"Payout hold placed on {queryset.count()} wallet(s).")
    place_payout_hold.short_description = "Place payout hold"

    def release_payout_hold(self, request, queryset):
        for wallet in queryset.select_related("user"):
            wallet_service.set_payout_hold(wallet.user, False)
        self.message_user(request, f"Payout hold released on {queryset.count()} wallet(s).")
    release_payout_hold.short_description = "Release payout hold"


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "type", "credits_amount", "usd_amount", "status", "external_reference", "created_at")
    list_filter = ("type", "status")
    search_fields = ("external_reference", "user__email")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Withdrawal)
class WithdrawalAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "amount", "status", "needs_manual_review", "stripe_transfer_id", "requested_at", "processed_at")
    list_filter = ("status", "needs_manual_review")
    search_fields = ("stripe_transfer_id", "user__email")
    readonly_fields = ("user", "amount", "status", "stripe_transfer_id", "failure_reason", "needs_manual_review", "requested_at", "processed_at", "reviewed_at")
    actions = ["resolve_and_recredit", "resolve_without_recredit"]

    def has_add_permission(self, request):
        return False

    def _resolve(self, request, queryset, recredit: bool):
        resolved = 0
        for withdrawal in queryset:
            try:
                ledger_service.resolve_manual_review(withdrawal.id, recredit, note=f"by {request.user.email}")
                resolved += 1
            except LedgerError as e:
                self.message_user(request, f"{withdrawal.id}: {e.message}", level=messages.ERROR)
        if resolved:
            self.message_user(request, f"Resolved {resolved} withdrawal(s).")

    def resolve_and_recredit(self, request, queryset):
        self._resolve(request, queryset, recredit=True)
    resolve_and_recredit.short_description = "Resolve review: return amount to available earnings"

    def resolve_without_recredit(self, request, queryset):
        self._resolve(request, queryset, recredit=False)
    resolve_without_recredit.short_description = "Resolve review: no re-credit"


@admin.register(ProcessedWebhookEvent)
class ProcessedWebhookEventAdmin(admin.ModelAdmin):
    list_display = ("event_id", "event_type", "processed_at")
    search_fields = ("event_id",)
    readonly_fields = ("event_id", "event_type", "processed_at")


@admin.register(CreditReservation)
class CreditReservationAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "video_date", "credits", "status", "created_at", "resolved_at")
    list_filter = ("status",)
    readonly_fields = ("user", "video_date", "credits", "status", "created_at", "resolved_at")


@admin.register(GiftCatalogItem)
class GiftCatalogItemAdmin(admin.ModelAdmin):
    list_display = ("emoji", "name", "credits_cost", "animation_type", "sort_order", "active")
    list_filter = ("active", "animation_type")
    list_editable = ("sort_order", "active")


@admin.register(GiftTransaction)
class GiftTransactionAdmin(admin.ModelAdmin):
    list_display = ("id", "sender", "recipient", "gift", "credits_spent", "earner_amount", "created_at")
    search_fields = ("sender__email", "recipient__email")
    readonly_fields = ("sender", "recipient", "gift", "credits_spent", "earner_amount", "platform_fee", "message", "thank_you_reaction", "created_at")
