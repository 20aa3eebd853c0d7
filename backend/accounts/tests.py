from decimal import Decimal

from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from accounts import wallet
from accounts.models import User, WalletTransaction
from services.ride_management.exceptions import SettlementError


class WalletBalanceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(
            username="rider",
            email="rider@example.com",
            password="pass1234",
            wallet_balance=Decimal("1000.00"),
        )

    def test_decrement_subtracts_and_records_debit(self):
        result = wallet.decrement_balance(self.user.id, Decimal("250"))

        self.user.refresh_from_db()
        self.assertEqual(result.new_balance, Decimal("750.00"))
        self.assertEqual(self.user.wallet_balance, Decimal("750.00"))

        entry = WalletTransaction.objects.get(user=self.user)
        self.assertEqual(entry.kind, "debit")
        self.assertEqual(entry.amount, Decimal("250.00"))
        self.assertEqual(entry.balance_after, Decimal("750.00"))
        self.assertIsNone(entry.ride_id)

    def test_balance_may_go_negative_without_floor(self):
        result = wallet.decrement_balance(self.user.id, 1500)

        self.assertEqual(result.new_balance, Decimal("-500.00"))

    @override_settings(WALLET_BALANCE_FLOOR=0)
    def test_floor_blocks_overdraft(self):
        with self.assertRaises(SettlementError):
            wallet.decrement_balance(self.user.id, 1500)

        self.user.refresh_from_db()
        self.assertEqual(self.user.wallet_balance, Decimal("1000.00"))
        self.assertFalse(WalletTransaction.objects.exists())

    @override_settings(WALLET_BALANCE_FLOOR=0)
    def test_floor_allows_spending_down_to_it(self):
        result = wallet.decrement_balance(self.user.id, 1000)

        self.assertEqual(result.new_balance, Decimal("0.00"))

    def test_zero_debit_leaves_balance_and_records_ledger_row(self):
        result = wallet.decrement_balance(self.user.id, Decimal("0"))

        self.user.refresh_from_db()
        self.assertEqual(result.new_balance, Decimal("1000.00"))
        self.assertEqual(self.user.wallet_balance, Decimal("1000.00"))
        entry = WalletTransaction.objects.get(user=self.user)
        self.assertEqual(entry.kind, "debit")
        self.assertEqual(entry.amount, Decimal("0.00"))

    def test_credit_rejects_zero(self):
        with self.assertRaises(ValueError):
            wallet.credit_balance(self.user.id, 0)

    def test_decrement_unknown_account(self):
        with self.assertRaises(SettlementError):
            wallet.decrement_balance(999999, 10)

    def test_decrement_rejects_negative_or_malformed_amount(self):
        for amount in (-5, "-0.01", "abc"):
            with self.assertRaises(SettlementError):
                wallet.decrement_balance(self.user.id, amount)

    def test_credit_adds_and_records(self):
        result = wallet.credit_balance(self.user.id, "499.50")

        self.assertEqual(result.new_balance, Decimal("1499.50"))
        entry = WalletTransaction.objects.get(user=self.user)
        self.assertEqual(entry.kind, "credit")

    def test_credit_unknown_account(self):
        with self.assertRaises(User.DoesNotExist):
            wallet.credit_balance(999999, 10)

    def test_successive_changes_accumulate(self):
        wallet.credit_balance(self.user.id, 100)
        wallet.decrement_balance(self.user.id, 40)
        wallet.decrement_balance(self.user.id, 60)

        self.user.refresh_from_db()
        self.assertEqual(self.user.wallet_balance, Decimal("1000.00"))
        self.assertEqual(WalletTransaction.objects.filter(user=self.user).count(), 3)


class WalletApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(
            username="rider",
            email="rider@example.com",
            password="pass1234",
        )
        self.client.force_authenticate(user=self.user)

    def test_wallet_requires_authentication(self):
        response = APIClient().get("/api/wallet/")

        self.assertEqual(response.status_code, 401)

    def test_fund_then_read_wallet(self):
        response = self.client.post("/api/wallet/fund/", {"amount": "1500.00"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["balance"], "1500.00")

        response = self.client.get("/api/wallet/")
        self.assertEqual(response.data["balance"], "1500.00")
        self.assertEqual(len(response.data["transactions"]), 1)
        self.assertEqual(response.data["transactions"][0]["kind"], "credit")

    def test_fund_rejects_non_positive_amount(self):
        response = self.client.post("/api/wallet/fund/", {"amount": "0"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.user.refresh_from_db()
        self.assertEqual(self.user.wallet_balance, Decimal("0.00"))
