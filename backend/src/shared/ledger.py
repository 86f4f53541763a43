"""
Wallet Ledger.

The only writer of ``walletBalance``. Every balance mutation is paired with a
write-once ledger entry stored under the caller's idempotency key, and both are
written in the same transaction: if the entry already exists the mutation has
already happened and the call is a no-op.
"""
import math
import uuid
from typing import NamedTuple, Optional

from .errors import InsufficientFunds, InvalidArgument, UserNotFound
from .logging import logger
from .models import LedgerEntry, LedgerKind, User, load
from .store import DocumentStore, Transaction
from .utils import now_iso


class LedgerResult(NamedTuple):
    applied: bool
    balance: int
    entry: LedgerEntry


def _positive_coins(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidArgument(f'Amount must be a positive whole number of coins, got {amount!r}')
    return amount


class WalletLedger:
    """Idempotent charge/credit against per-user coin balances."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def charge(self, uid: str, amount: int, kind: str, idempotency_key: str, **correlation) -> LedgerResult:
        """Debit ``amount`` coins. Raises InsufficientFunds without writing if the balance is short."""
        _positive_coins(amount)
        return self.store.run_transaction(
            lambda txn: self.charge_in(txn, uid, amount, kind, idempotency_key, **correlation)
        )

    def credit(self, uid: str, amount: int, kind: str, idempotency_key: str, **correlation) -> LedgerResult:
        _positive_coins(amount)
        return self.store.run_transaction(
            lambda txn: self.credit_in(txn, uid, amount, kind, idempotency_key, **correlation)
        )

    def charge_in(self, txn: Transaction, uid: str, amount: int, kind: str, idempotency_key: str,
                  **correlation) -> LedgerResult:
        """Charge as part of a larger transaction."""
        return self.apply_in(txn, uid, -_positive_coins(amount), kind, idempotency_key, **correlation)

    def credit_in(self, txn: Transaction, uid: str, amount: int, kind: str, idempotency_key: str,
                  **correlation) -> LedgerResult:
        return self.apply_in(txn, uid, _positive_coins(amount), kind, idempotency_key, **correlation)

    def already_applied(self, txn: Transaction, idempotency_key: str) -> Optional[LedgerEntry]:
        return load(LedgerEntry, txn.get('ledger', idempotency_key))

    def apply_in(
        self,
        txn: Transaction,
        uid: str,
        delta: int,
        kind: str,
        idempotency_key: str,
        task_id: Optional[str] = None,
        offer_id: Optional[str] = None,
        dispute_id: Optional[str] = None,
        note: Optional[str] = None
    ) -> LedgerResult:
        """
        Apply a signed balance change exactly once per idempotency key.

        Returns the stored result unchanged when the key was already used.
        """
        if not idempotency_key:
            raise InvalidArgument('Idempotency key is required')

        existing = self.already_applied(txn, idempotency_key)
        if existing:
            if existing.uid != uid:
                raise InvalidArgument(f'Idempotency key {idempotency_key} belongs to another user')
            return LedgerResult(False, existing.balance_after, existing)

        user = load(User, txn.get('users', uid))
        if user is None:
            raise UserNotFound(f'User {uid} not found')

        new_balance = user.wallet_balance + delta
        if new_balance < 0:
            raise InsufficientFunds(
                f'Balance {user.wallet_balance} cannot cover {-delta} coins for {kind}'
            )

        timestamp = now_iso()
        user.wallet_balance = new_balance
        user.updated_at = timestamp
        txn.set('users', uid, user.to_item())

        entry = LedgerEntry(
            entry_id=idempotency_key,
            uid=uid,
            kind=kind,
            amount=delta,
            balance_after=new_balance,
            task_id=task_id,
            offer_id=offer_id,
            dispute_id=dispute_id,
            note=note,
            created_at=timestamp,
        )
        txn.set('ledger', idempotency_key, entry.to_item())
        logger.info(f"Ledger {idempotency_key}: {uid} {delta:+d} coins ({kind}) -> {new_balance}")
        return LedgerResult(True, new_balance, entry)

    def top_up(self, uid: str, amount, max_coins: int, idempotency_key: Optional[str] = None) -> LedgerResult:
        """
        Credit purchased coins. Fractional amounts are floored to whole coins;
        without a caller key every call is a distinct top-up.
        """
        if not math.isfinite(amount):
            raise InvalidArgument('Top-up amount must be a finite number')
        coins = math.floor(amount)
        if coins < 1:
            raise InvalidArgument('Top-up must be at least 1 coin')
        if coins > max_coins:
            raise InvalidArgument(f'Maximum top-up is {max_coins} coins')
        key = f'topup:{uid}:{idempotency_key or uuid.uuid4()}'
        return self.credit(uid, coins, LedgerKind.TOPUP, key)

    def balance(self, uid: str) -> int:
        user = load(User, self.store.get('users', uid))
        if user is None:
            raise UserNotFound(f'User {uid} not found')
        return user.wallet_balance

    def history(self, uid: str, limit: int = 50):
        """Most recent ledger entries for a user."""
        docs = self.store.query(
            'ledger', self.store.config.LEDGER_USER_INDEX, 'uid', uid,
            limit=limit, scan_forward=False
        )
        return [load(LedgerEntry, doc) for doc in docs]
