"""
Passbook Layout Engine

Turns a member's transactions across the printable account codes into the
rows of a fixed-column ledger card. Each physical row holds at most one entry
per account code for a given date, carries the running balance of every code
it shows, and knows whether it has already been printed.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .accounts import Account, Direction, PaymentMethod, PRINTABLE_CODES, Transaction, signed_effect
from .amounts import ZERO, to_amount


@dataclass(frozen=True)
class PrintCell:
    """One code's slot in a row: movement amounts and the snapshot balance"""
    debit: Decimal
    credit: Decimal
    balance: Decimal


@dataclass(frozen=True)
class AnnotatedTransaction:
    """A transaction placed in the member-wide canonical stream"""
    transaction: Transaction
    code: str
    sequence: int
    snapshot_balance: Decimal
    unprinted: bool


@dataclass
class PrintRow:
    """
    A same-date bin of transactions with no account-code collision.

    `id` is the id of the latest transaction placed in the row, which is
    what the print watermark is advanced to.
    """
    id: str
    date: date
    cells: Dict[str, PrintCell] = field(default_factory=dict)
    transaction_ids: List[str] = field(default_factory=list)
    sequences: List[int] = field(default_factory=list)
    methods: Set[PaymentMethod] = field(default_factory=set)
    is_printed: bool = True

    @property
    def particulars(self) -> str:
        """Payment-mode label for the particulars column, "cash" when nothing is tagged"""
        if PaymentMethod.BOTH in self.methods or {PaymentMethod.CASH, PaymentMethod.ONLINE} <= self.methods:
            return "cash/online"
        if PaymentMethod.ONLINE in self.methods:
            return "online"
        return "cash"

    def cell(self, code: str) -> Optional[PrintCell]:
        return self.cells.get(code)

    def place(self, entry: AnnotatedTransaction) -> None:
        txn = entry.transaction
        self.cells[entry.code] = PrintCell(
            debit=txn.amount if txn.direction == Direction.DEBIT else ZERO,
            credit=txn.amount if txn.direction == Direction.CREDIT else ZERO,
            balance=entry.snapshot_balance,
        )
        self.id = txn.id
        self.transaction_ids.append(txn.id)
        self.sequences.append(entry.sequence)
        if txn.payment_method is not None:
            self.methods.add(txn.payment_method)
        if entry.unprinted:
            self.is_printed = False


def canonical_stream(accounts: Iterable[Account]) -> List[Tuple[Account, Transaction]]:
    """All transactions of the member's printable accounts in (date, id) order"""
    pairs = [
        (account, txn)
        for account in accounts
        if account.is_printable
        for txn in account.transactions
    ]
    pairs.sort(key=lambda pair: pair[1].sort_key)
    return pairs


def annotate(
    accounts: Iterable[Account],
    last_printed_transaction_id: Optional[str]
) -> List[AnnotatedTransaction]:
    """
    Replay one running balance per code over the canonical stream and mark
    everything after the watermark as unprinted.

    A watermark that never occurs in the stream leaves everything unprinted.
    """
    balances: Dict[str, Decimal] = {code: ZERO for code in PRINTABLE_CODES}
    stream = canonical_stream(accounts)

    # Without a known watermark the boundary sits before the first entry
    boundary_passed = not last_printed_transaction_id or not any(
        txn.id == last_printed_transaction_id for _, txn in stream
    )

    annotated = []
    for sequence, (account, txn) in enumerate(stream):
        code = account.code
        balances[code] = to_amount(
            balances[code] + signed_effect(account.account_type, txn.direction, txn.amount)
        )
        if txn.id == last_printed_transaction_id:
            unprinted = False
            boundary_passed = True
        else:
            unprinted = boundary_passed
        annotated.append(AnnotatedTransaction(txn, code, sequence, balances[code], unprinted))

    return annotated


def pack_rows(annotated: List[AnnotatedTransaction]) -> List[PrintRow]:
    """
    First-fit packing per date: each entry goes into the first row of its
    date whose slot for its code is still empty, otherwise a new row opens.
    """
    rows: List[PrintRow] = []
    rows_for_date: List[PrintRow] = []
    current_date: Optional[date] = None

    for entry in annotated:
        txn = entry.transaction
        if txn.date != current_date:
            rows.extend(rows_for_date)
            rows_for_date = []
            current_date = txn.date

        target = next((row for row in rows_for_date if entry.code not in row.cells), None)
        if target is None:
            target = PrintRow(id=txn.id, date=txn.date)
            rows_for_date.append(target)
        target.place(entry)

    rows.extend(rows_for_date)
    return rows


def build_passbook_layout(
    member_accounts: Iterable[Account],
    last_printed_transaction_id: Optional[str] = None
) -> List[PrintRow]:
    """Ordered print rows (date-major, creation order within a date)"""
    return pack_rows(annotate(list(member_accounts), last_printed_transaction_id))


def select_unprinted(rows: Iterable[PrintRow]) -> List[str]:
    """Row ids of every unprinted row, the default selection for a print run"""
    return [row.id for row in rows if not row.is_printed]


def transaction_positions(rows: Iterable[PrintRow]) -> Dict[str, int]:
    """Canonical position of every transaction id shown in the layout"""
    positions: Dict[str, int] = {}
    for row in rows:
        positions.update(zip(row.transaction_ids, row.sequences))
    return positions
