from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.db.models import Count

from accounts.models import User, WalletTransaction

LEDGER_FIELDS = ("kind", "amount", "balance_after", "ride", "created_at")


class WalletTransactionInline(admin.TabularInline):
    """Most recent ledger rows, read-only"""
    model = WalletTransaction
    fields = LEDGER_FIELDS
    readonly_fields = LEDGER_FIELDS
    extra = 0
    max_num = 0
    can_delete = False
    ordering = ("-created_at",)


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Riders and drivers with their wallet"""

    list_display = ["username", "email", "role", "wallet_balance", "ride_count", "is_active"]
    list_filter = ["role", "is_active", "is_staff"]
    search_fields = ["username", "email", "phone_number"]
    ordering = ("username",)

    # Balance is changed through accounts.wallet only
    readonly_fields = ("wallet_balance",)
    inlines = [WalletTransactionInline]

    fieldsets = BaseUserAdmin.fieldsets + (
        ("Ride hailing", {"fields": ("role", "phone_number", "wallet_balance")}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ("Ride hailing", {"fields": ("role", "phone_number")}),
    )

    def get_queryset(self, request):
        return super().get_queryset(request).annotate(_ride_count=Count("rides", distinct=True))

    @admin.display(description="Rides booked", ordering="_ride_count")
    def ride_count(self, obj):
        return obj._ride_count


@admin.register(WalletTransaction)
class WalletTransactionAdmin(admin.ModelAdmin):
    list_display = ("user",) + LEDGER_FIELDS
    list_filter = ("kind",)
    search_fields = ("user__username", "user__email")
    readonly_fields = ("user",) + LEDGER_FIELDS

    def has_add_permission(self, request):
        return False
