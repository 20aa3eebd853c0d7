"""
Wallet balance operations (the Account Store).

Every balance change is a single UPDATE with an F() expression, so concurrent
funding and spending never lose an update. Callers never read the balance,
change it in Python, and write it back.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import F

from accounts.models import User, WalletTransaction
from services.ride_management.exceptions import SettlementError

logger = logging.getLogger(__name__)


@dataclass
class WalletResult:
    """Outcome of a balance adjustment."""
    account_id: int
    new_balance: Decimal


def _to_amount(amount, allow_zero: bool = False) -> Decimal:
    value = Decimal(str(amount)).quantize(Decimal("0.01"))
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError("Amount must be positive")
    return value


def _balance_floor() -> Optional[Decimal]:
    floor = getattr(settings, "WALLET_BALANCE_FLOOR", None)
    if floor is None:
        return None
    return Decimal(str(floor))


@transaction.atomic
def decrement_balance(account_id: int, amount, ride=None) -> WalletResult:
    """
    Atomically subtract amount from the account's wallet.

    Args:
        account_id: User id owning the wallet
        amount: Amount to subtract; zero-price rides settle with a zero debit
        ride: Ride being settled, recorded on the ledger row

    Returns:
        WalletResult with the balance after the decrement

    Raises:
        SettlementError: account missing, floor would be crossed, or DB failure
    """
    try:
        value = _to_amount(amount, allow_zero=True)
    except (ArithmeticError, ValueError) as exc:
        raise SettlementError(f"Invalid settlement amount: {amount}") from exc

    accounts = User.objects.filter(pk=account_id)
    floor = _balance_floor()
    if floor is not None:
        accounts = accounts.filter(wallet_balance__gte=floor + value)

    try:
        updated = accounts.update(wallet_balance=F("wallet_balance") - value)
        if not updated:
            if floor is not None and User.objects.filter(pk=account_id).exists():
                raise SettlementError("Insufficient wallet balance")
            raise SettlementError(f"Wallet account {account_id} not found")

        new_balance = User.objects.values_list("wallet_balance", flat=True).get(pk=account_id)
        WalletTransaction.objects.create(
            user_id=account_id,
            kind="debit",
            amount=value,
            balance_after=new_balance,
            ride=ride,
        )
    except DatabaseError as exc:
        logger.error("Wallet decrement failed for account %s: %s", account_id, exc)
        raise SettlementError("Wallet service unavailable") from exc

    logger.info("Debited %s from account %s (balance now %s)", value, account_id, new_balance)
    return WalletResult(account_id=account_id, new_balance=new_balance)


@transaction.atomic
def credit_balance(account_id: int, amount) -> WalletResult:
    """Atomically add amount to the account's wallet (wallet funding)."""
    value = _to_amount(amount)

    updated = User.objects.filter(pk=account_id).update(
        wallet_balance=F("wallet_balance") + value
    )
    if not updated:
        raise User.DoesNotExist(f"Wallet account {account_id} not found")

    new_balance = User.objects.values_list("wallet_balance", flat=True).get(pk=account_id)
    WalletTransaction.objects.create(
        user_id=account_id,
        kind="credit",
        amount=value,
        balance_after=new_balance,
    )

    logger.info("Credited %s to account %s (balance now %s)", value, account_id, new_balance)
    return WalletResult(account_id=account_id, new_balance=new_balance)
