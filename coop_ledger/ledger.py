"""
Account Ledger Module

Owns every account's transaction log and keeps the cached balance equal to
the fold of that log. Postings are validated, persisted and only then applied
in memory, all while holding the affected accounts' locks.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from decimal import Decimal
from datetime import date
from typing import Any, Dict, List, Optional
import threading

from .amounts import ZERO, AmountLike, to_amount
from .accounts import (
    Account, AccountStatus, AccountType, Direction, PaymentMethod, Transaction,
    TransactionIdGenerator, signed_effect, utc_now
)
from .errors import (
    AccountClosedError, InsufficientFundsError, InvariantViolation, NotFoundError, PersistenceError
)
from .logging_config import get_logger, log_action
from .storage import StorageInterface


class AccountLockRegistry:
    """
    One re-entrant lock per key (account id, or "member:<id>").

    `hold` acquires several keys in sorted order so two writers touching the
    same pair of accounts cannot deadlock.
    """

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, *keys: str):
        acquired = []
        try:
            for key in sorted(set(keys)):
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


@dataclass
class PendingPosting:
    """A validated change to one account, not yet persisted"""
    account: Account
    transaction: Optional[Transaction]
    balance: Decimal
    updates: Dict[str, Any] = field(default_factory=dict)


class AccountLedger:
    """
    Posts transactions and serves account state.

    Accounts are loaded from storage once and cached; the cached objects are
    the live state and must only be changed through this class.
    """

    def __init__(
        self,
        storage: StorageInterface,
        locks: Optional[AccountLockRegistry] = None,
        id_generator: Optional[TransactionIdGenerator] = None
    ):
        self.storage = storage
        self.locks = locks or AccountLockRegistry()
        self.id_generator = id_generator or TransactionIdGenerator()
        self.accounts_table = "accounts"
        self.transactions_table = "transactions"
        self.logger = get_logger("coop_ledger.ledger")
        self._accounts: Dict[str, Account] = {}
        self._cache_lock = threading.RLock()

    # ------------------------------------------------------------------
    # Account access
    # ------------------------------------------------------------------

    def open_account(
        self,
        member_id: str,
        account_type: AccountType,
        account_number: str,
        opening_amount: Optional[AmountLike] = None,
        opening_date: Optional[date] = None,
        status: AccountStatus = AccountStatus.ACTIVE,
        maturity_date: Optional[date] = None,
        low_balance_threshold: Optional[AmountLike] = None,
        payment_method: Optional[PaymentMethod] = None,
        account_id: Optional[str] = None
    ) -> Account:
        """
        Open an account for a member.

        A non-zero opening amount is posted as the first transaction (a
        deposit, or the disbursement for a loan) so the balance fold holds
        from creation.
        """
        now = utc_now()
        account_id = account_id or f"ACC-{self.id_generator.next_id()}"
        if self._load_account(account_id) is not None:
            raise ValueError(f"Account {account_id} already exists")

        account = Account(
            id=account_id,
            created_at=now,
            updated_at=now,
            account_number=account_number,
            member_id=member_id,
            account_type=account_type,
            status=status,
            maturity_date=maturity_date,
            low_balance_threshold=(
                to_amount(low_balance_threshold) if low_balance_threshold is not None else None
            ),
        )

        postings = []
        amount = to_amount(opening_amount) if opening_amount is not None else ZERO
        if amount > ZERO:
            direction = Direction.DEBIT if account_type == AccountType.LOAN else Direction.CREDIT
            description = "Loan Disbursement" if account_type == AccountType.LOAN else "Opening Balance"
            postings.append(self.prepare_posting(
                account, opening_date or now.date(), direction, amount, description,
                category=description, payment_method=payment_method
            ))

        with self.locks.hold(account.id):
            with self.storage.atomic():
                self.storage.save(self.accounts_table, account.id, account.to_dict())
                self._persist(postings)
            with self._cache_lock:
                self._accounts[account.id] = account
            self._apply(postings)

        log_action(
            self.logger, "info", f"Account opened: {account_type.value}",
            member_id=member_id, action="open_account", resource=f"account:{account.id}",
            extra={"account_number": account_number, "opening_amount": str(amount)}
        )
        return account

    def get_account(self, account_id: str) -> Account:
        """Get account by ID, raising NotFoundError when unknown"""
        account = self._load_account(account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found")
        return account

    def find_account(self, account_id: str) -> Optional[Account]:
        return self._load_account(account_id)

    def get_member_accounts(self, member_id: str) -> List[Account]:
        """All accounts of a member, in opening order"""
        rows = self.storage.find(self.accounts_table, {"member_id": member_id})
        accounts = [self._load_account(row['id']) for row in rows]
        return sorted((a for a in accounts if a is not None), key=lambda a: (a.created_at, a.id))

    def list_accounts(self) -> List[Account]:
        rows = self.storage.load_all(self.accounts_table)
        accounts = [self._load_account(row['id']) for row in rows]
        return sorted((a for a in accounts if a is not None), key=lambda a: (a.created_at, a.id))

    def latest_transactions(self, account_id: str, n: int = 10) -> List[Transaction]:
        """Most recent `n` transactions of an account in canonical order"""
        return self.get_account(account_id).log.latest(n)

    def _load_account(self, account_id: str) -> Optional[Account]:
        with self._cache_lock:
            cached = self._accounts.get(account_id)
            if cached is not None:
                return cached
            data = self.storage.load(self.accounts_table, account_id)
            if data is None:
                return None
            rows = self.storage.find(self.transactions_table, {"account_id": account_id})
            account = Account.from_dict(data, (Transaction.from_dict(row) for row in rows))
            self._accounts[account_id] = account
            return account

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def post_transaction(
        self,
        account_id: str,
        txn_date: date,
        direction: Direction,
        amount: AmountLike,
        description: str,
        payment_method: Optional[PaymentMethod] = None,
        category: Optional[str] = None,
        cash_amount: Optional[AmountLike] = None,
        online_amount: Optional[AmountLike] = None,
        utr_number: Optional[str] = None,
        due_date: Optional[date] = None
    ) -> Transaction:
        """
        Post one transaction atomically.

        Raises:
            NotFoundError: unknown account
            AccountClosedError: account is Closed
            InsufficientFundsError: debit beyond deposit balance, or repayment beyond loan outstanding
            PersistenceError: storage failed; nothing changed, retry
        """
        with self.locks.hold(account_id):
            account = self.get_account(account_id)
            try:
                posting = self.prepare_posting(
                    account, txn_date, direction, amount, description,
                    payment_method=payment_method, category=category,
                    cash_amount=cash_amount, online_amount=online_amount,
                    utr_number=utr_number, due_date=due_date
                )
            except InsufficientFundsError as exc:
                log_action(
                    self.logger, "warning", "Posting rejected: insufficient funds",
                    member_id=account.member_id, action="post_transaction",
                    resource=f"account:{account_id}",
                    extra={"balance": str(exc.balance), "requested": str(exc.requested),
                           "direction": direction.value}
                )
                raise
            self.commit_postings([posting])

        txn = posting.transaction
        log_action(
            self.logger, "info", f"Transaction posted: {direction.value}",
            member_id=account.member_id, action="post_transaction",
            resource=f"account:{account_id}",
            extra={"transaction_id": txn.id, "amount": str(txn.amount),
                   "balance": str(posting.balance), "date": txn.date.isoformat()}
        )
        return txn

    def prepare_posting(
        self,
        account: Account,
        txn_date: date,
        direction: Direction,
        amount: AmountLike,
        description: str,
        updates: Optional[Dict[str, Any]] = None,
        **details: Any
    ) -> PendingPosting:
        """
        Validate a movement and build the posting without persisting it.

        The caller must hold the account's lock from here until
        `commit_postings` returns.
        """
        if account.is_closed:
            raise AccountClosedError(f"Account {account.id} is closed")

        amount = to_amount(amount)
        if amount <= ZERO:
            raise ValueError("Transaction amount must be positive")

        if account.is_loan and direction == Direction.CREDIT and amount > account.balance:
            raise InsufficientFundsError(account.id, account.balance, amount)
        if not account.is_loan and direction == Direction.DEBIT and amount > account.balance:
            raise InsufficientFundsError(account.id, account.balance, amount)

        for key in ("cash_amount", "online_amount"):
            if details.get(key) is not None:
                details[key] = to_amount(details[key])

        transaction = Transaction(
            id=self.id_generator.next_id(),
            account_id=account.id,
            date=txn_date,
            direction=direction,
            amount=amount,
            description=description,
            created_at=utc_now(),
            **details
        )
        balance = to_amount(account.balance + signed_effect(account.account_type, direction, amount))
        return PendingPosting(account, transaction, balance, dict(updates or {}))

    def commit_postings(self, postings: List[PendingPosting]) -> None:
        """
        Persist a group of postings as one unit, then apply them in memory.

        Either every posting is stored and applied, or storage is rolled
        back and no in-memory state changes.
        """
        try:
            with self.storage.atomic():
                self._persist(postings)
        except PersistenceError:
            self.logger.error(
                "Persisting postings failed for accounts %s",
                ", ".join(p.account.id for p in postings), exc_info=True
            )
            raise
        self._apply(postings)

    def _persist(self, postings: List[PendingPosting]) -> None:
        now = utc_now()
        for posting in postings:
            if posting.transaction is not None:
                self.storage.save(
                    self.transactions_table, posting.transaction.id, posting.transaction.to_dict()
                )
            staged = replace(posting.account, balance=posting.balance, updated_at=now, **posting.updates)
            self.storage.save(self.accounts_table, staged.id, staged.to_dict())

    def _apply(self, postings: List[PendingPosting]) -> None:
        now = utc_now()
        for posting in postings:
            account = posting.account
            if posting.transaction is not None:
                account.log.append(posting.transaction)
            account.balance = posting.balance
            for key, value in posting.updates.items():
                setattr(account, key, value)
            account.updated_at = now

    # ------------------------------------------------------------------
    # Lifecycle and verification
    # ------------------------------------------------------------------

    def set_status(self, account_id: str, status: AccountStatus) -> Account:
        """Change an account's status (e.g. approve a pending loan)"""
        with self.locks.hold(account_id):
            account = self.get_account(account_id)
            if account.is_closed:
                raise AccountClosedError(f"Account {account_id} is closed")
            if status == AccountStatus.CLOSED and account.balance != ZERO:
                raise ValueError(f"Cannot close account with non-zero balance: {account.balance}")
            self.commit_postings([PendingPosting(account, None, account.balance, {"status": status})])

        log_action(
            self.logger, "info", f"Account status changed to {status.value}",
            member_id=account.member_id, action="set_status", resource=f"account:{account_id}"
        )
        return account

    def verify_account(self, account_id: str) -> Decimal:
        """
        Replay the account's log and compare against the cached balance.

        On mismatch the account is flagged for reconciliation and
        InvariantViolation is raised; the cached balance is left untouched.
        """
        with self.locks.hold(account_id):
            account = self.get_account(account_id)
            replayed = account.replayed_balance()
            if replayed == account.balance:
                return replayed

            self.logger.error(
                "Balance fold mismatch on account %s: cached %s, replayed %s",
                account_id, account.balance, replayed
            )
            if not account.needs_reconciliation:
                self.commit_postings([
                    PendingPosting(account, None, account.balance, {"needs_reconciliation": True})
                ])
            raise InvariantViolation(account_id, account.balance, replayed)

    def verify_all(self) -> List[str]:
        """Verify every account; returns ids of the ones flagged"""
        flagged = []
        for account in self.list_accounts():
            try:
                self.verify_account(account.id)
            except InvariantViolation:
                flagged.append(account.id)
        return flagged
