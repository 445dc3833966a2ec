"""
Account Model Module

Member accounts, their posted transactions and the sign convention that
turns a transaction history into a balance. Deposit-class accounts grow with
credits; loan accounts grow with debits (disbursements) and shrink with
credits (repayments).
"""

from bisect import insort
from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
from enum import Enum
import threading
import time

from .amounts import ZERO, to_amount
from .storage import StorageRecord


class AccountType(Enum):
    """Cooperative account products"""
    SHARE_CAPITAL = "Share Capital"
    COMPULSORY_DEPOSIT = "Compulsory Deposit"
    OPTIONAL_DEPOSIT = "Optional Deposit"
    FIXED_DEPOSIT = "Fixed Deposit"
    RECURRING_DEPOSIT = "Recurring Deposit"
    LOAN = "Loan"


class AccountStatus(Enum):
    """Account lifecycle states"""
    ACTIVE = "Active"
    DORMANT = "Dormant"
    CLOSED = "Closed"        # Terminal, balance pinned at zero
    DEFAULTED = "Defaulted"
    PENDING = "Pending"      # Loan awaiting approval


class Direction(Enum):
    """Direction of a posted movement"""
    CREDIT = "credit"
    DEBIT = "debit"


class PaymentMethod(Enum):
    """How the money moved at the counter"""
    CASH = "Cash"
    ONLINE = "Online"
    BOTH = "Both"


DEPOSIT_CLASS_TYPES = frozenset({
    AccountType.SHARE_CAPITAL,
    AccountType.COMPULSORY_DEPOSIT,
    AccountType.OPTIONAL_DEPOSIT,
    AccountType.FIXED_DEPOSIT,
    AccountType.RECURRING_DEPOSIT,
})

TIME_DEPOSIT_TYPES = frozenset({AccountType.FIXED_DEPOSIT, AccountType.RECURRING_DEPOSIT})

# Passbook column codes
ACCOUNT_CODES: Dict[AccountType, str] = {
    AccountType.SHARE_CAPITAL: "SM",
    AccountType.COMPULSORY_DEPOSIT: "CD",
    AccountType.OPTIONAL_DEPOSIT: "OD",
    AccountType.RECURRING_DEPOSIT: "RD",
    AccountType.LOAN: "RL",
    AccountType.FIXED_DEPOSIT: "FD",
}

PRINTABLE_CODES: Tuple[str, ...] = ("SM", "CD", "OD", "RD", "RL")


class TransactionIdGenerator:
    """
    Issues lexically sortable, strictly increasing transaction ids.

    Ids are microseconds since the epoch, bumped past the previous id when the
    clock has not moved, so same-day insertion order survives sorting by id.
    """

    def __init__(self, prefix: str = "TX"):
        self.prefix = prefix
        self._last = 0
        self._lock = threading.Lock()

    def next_id(self) -> str:
        with self._lock:
            value = max(time.time_ns() // 1000, self._last + 1)
            self._last = value
        return f"{self.prefix}{value:017d}"


@dataclass(frozen=True)
class Transaction:
    """
    Posted movement on one account. Never edited or deleted once persisted;
    corrections are new offsetting transactions.
    """
    id: str
    account_id: str
    date: date
    direction: Direction
    amount: Decimal
    description: str
    created_at: datetime
    category: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    cash_amount: Optional[Decimal] = None
    online_amount: Optional[Decimal] = None
    utr_number: Optional[str] = None
    due_date: Optional[date] = None

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', to_amount(self.amount))
        if self.amount <= ZERO:
            raise ValueError("Transaction amount must be positive")

    @property
    def sort_key(self) -> Tuple[date, str]:
        """Canonical ordering: date, then id"""
        return (self.date, self.id)

    @property
    def is_credit(self) -> bool:
        return self.direction == Direction.CREDIT

    @property
    def is_debit(self) -> bool:
        return self.direction == Direction.DEBIT

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "date": self.date.isoformat(),
            "direction": self.direction.value,
            "amount": str(self.amount),
            "description": self.description,
            "created_at": self.created_at.isoformat(),
            "category": self.category,
            "payment_method": self.payment_method.value if self.payment_method else None,
            "cash_amount": str(self.cash_amount) if self.cash_amount is not None else None,
            "online_amount": str(self.online_amount) if self.online_amount is not None else None,
            "utr_number": self.utr_number,
            "due_date": self.due_date.isoformat() if self.due_date else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        """Create instance from a stored dictionary"""
        return cls(
            id=data['id'],
            account_id=data['account_id'],
            date=date.fromisoformat(data['date']),
            direction=Direction(data['direction']),
            amount=Decimal(data['amount']),
            description=data['description'],
            created_at=datetime.fromisoformat(data['created_at']),
            category=data.get('category'),
            payment_method=PaymentMethod(data['payment_method']) if data.get('payment_method') else None,
            cash_amount=Decimal(data['cash_amount']) if data.get('cash_amount') is not None else None,
            online_amount=Decimal(data['online_amount']) if data.get('online_amount') is not None else None,
            utr_number=data.get('utr_number'),
            due_date=date.fromisoformat(data['due_date']) if data.get('due_date') else None,
        )


class TransactionLog:
    """
    Append-only transaction history of one account, kept in canonical order.

    Entries are only ever inserted. A backdated posting lands at its date
    position; the id index gives constant-time membership checks and
    `latest(n)` is a tail slice.
    """

    def __init__(self, transactions: Iterable[Transaction] = ()):
        self._entries: List[Tuple[Tuple[date, str], Transaction]] = sorted(
            ((txn.sort_key, txn) for txn in transactions), key=lambda item: item[0]
        )
        self._index: Dict[str, Transaction] = {txn.id: txn for _, txn in self._entries}

    def append(self, transaction: Transaction) -> None:
        if transaction.id in self._index:
            raise ValueError(f"Transaction {transaction.id} already posted")
        insort(self._entries, (transaction.sort_key, transaction), key=lambda item: item[0])
        self._index[transaction.id] = transaction

    def get(self, transaction_id: str) -> Optional[Transaction]:
        return self._index.get(transaction_id)

    def latest(self, n: int) -> List[Transaction]:
        """Most recent `n` transactions, oldest first"""
        if n <= 0:
            return []
        return [txn for _, txn in self._entries[-n:]]

    def entries(self) -> Tuple[Transaction, ...]:
        return tuple(txn for _, txn in self._entries)

    def __contains__(self, transaction_id: str) -> bool:
        return transaction_id in self._index

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self.entries())


def signed_effect(account_type: AccountType, direction: Direction, amount: Decimal) -> Decimal:
    """Change to the balance caused by a movement on an account of this type"""
    if account_type == AccountType.LOAN:
        return amount if direction == Direction.DEBIT else -amount
    return amount if direction == Direction.CREDIT else -amount


def replay_balance(account_type: AccountType, transactions: Iterable[Transaction]) -> Decimal:
    """Fold a transaction history into a balance under the type's sign convention"""
    balance = ZERO
    for txn in transactions:
        balance += signed_effect(account_type, txn.direction, txn.amount)
    return to_amount(balance)


@dataclass
class Account(StorageRecord):
    """
    Member account. `balance` is a materialised cache of the fold of
    `transactions`; only the ledger mutates either.
    """
    account_number: str
    member_id: str
    account_type: AccountType
    status: AccountStatus = AccountStatus.ACTIVE
    balance: Decimal = ZERO
    maturity_date: Optional[date] = None
    maturity_processed: bool = False
    low_balance_threshold: Optional[Decimal] = None
    needs_reconciliation: bool = False
    log: TransactionLog = field(default_factory=TransactionLog, repr=False, compare=False)

    @property
    def is_loan(self) -> bool:
        return self.account_type == AccountType.LOAN

    @property
    def is_deposit_class(self) -> bool:
        return self.account_type in DEPOSIT_CLASS_TYPES

    @property
    def is_time_deposit(self) -> bool:
        return self.account_type in TIME_DEPOSIT_TYPES

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.status == AccountStatus.CLOSED

    @property
    def code(self) -> str:
        """Passbook column code"""
        return ACCOUNT_CODES[self.account_type]

    @property
    def is_printable(self) -> bool:
        """Whether this account's entries appear in the passbook"""
        if self.code not in PRINTABLE_CODES:
            return False
        return not (self.is_loan and self.status == AccountStatus.PENDING)

    @property
    def transactions(self) -> Tuple[Transaction, ...]:
        """Transaction history in canonical (date, id) order"""
        return self.log.entries()

    def replayed_balance(self) -> Decimal:
        return replay_balance(self.account_type, self.log)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage (transactions are stored separately)"""
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "account_number": self.account_number,
            "member_id": self.member_id,
            "account_type": self.account_type.value,
            "status": self.status.value,
            "balance": str(self.balance),
            "maturity_date": self.maturity_date.isoformat() if self.maturity_date else None,
            "maturity_processed": self.maturity_processed,
            "low_balance_threshold": (
                str(self.low_balance_threshold) if self.low_balance_threshold is not None else None
            ),
            "needs_reconciliation": self.needs_reconciliation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], transactions: Iterable[Transaction] = ()) -> 'Account':
        """Create instance from a stored dictionary and its transactions"""
        threshold = data.get('low_balance_threshold')
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_number=data['account_number'],
            member_id=data['member_id'],
            account_type=AccountType(data['account_type']),
            status=AccountStatus(data['status']),
            balance=Decimal(data['balance']),
            maturity_date=date.fromisoformat(data['maturity_date']) if data.get('maturity_date') else None,
            maturity_processed=bool(data.get('maturity_processed', False)),
            low_balance_threshold=Decimal(threshold) if threshold is not None else None,
            needs_reconciliation=bool(data.get('needs_reconciliation', False)),
            log=TransactionLog(transactions),
        )


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
