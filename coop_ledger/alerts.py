"""
Alert Deriver

Pure function from account snapshots to point-in-time notifications. Alert
ids are derived from the account id and alert kind so read-tracking by id
stays stable across evaluations.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

from .accounts import Account, AccountType
from .amounts import format_rupees, to_amount
from .config import LedgerConfig, get_config
from .notifications import Notification, NotificationSeverity


def derive_alerts(
    accounts: Iterable[Account],
    as_of: date,
    settings: Optional[LedgerConfig] = None
) -> List[Notification]:
    """
    Evaluate every account independently and return its alerts.

    Only Active accounts raise alerts. An account yields at most two: a
    loan can carry a maturity alert and an installment alert together.
    """
    settings = settings or get_config()
    alerts: List[Notification] = []

    for account in accounts:
        if not account.is_active:
            continue
        if account.account_type == AccountType.OPTIONAL_DEPOSIT:
            alerts.extend(_low_balance_alerts(account, as_of, settings))
        elif account.account_type == AccountType.LOAN:
            alerts.extend(_loan_maturity_alerts(account, as_of, settings))
            alerts.extend(_installment_alerts(account, as_of, settings))
        elif account.is_time_deposit:
            alerts.extend(_deposit_maturity_alerts(account, as_of, settings))

    return alerts


def _low_balance_alerts(account: Account, as_of: date, settings: LedgerConfig) -> List[Notification]:
    threshold = account.low_balance_threshold
    if threshold is None:
        threshold = to_amount(settings.low_balance_threshold)
    if account.balance >= threshold:
        return []
    return [Notification(
        id=f"ALERT-LOW-{account.id}",
        title="Low Balance Alert",
        message=(
            f"Account {account.account_number} balance ({format_rupees(account.balance)}) "
            f"is below minimum limit ({format_rupees(threshold)})."
        ),
        severity=NotificationSeverity.WARNING,
        date=as_of,
    )]


def _loan_maturity_alerts(account: Account, as_of: date, settings: LedgerConfig) -> List[Notification]:
    if account.maturity_date is None:
        return []
    days_left = (account.maturity_date - as_of).days

    if days_left < 0 and account.balance > Decimal('0'):
        return [Notification(
            id=f"ALERT-LOAN-MAT-{account.id}",
            title="Loan Maturity Overdue",
            message=(
                f"Loan {account.account_number} matured on {account.maturity_date.isoformat()}. "
                f"Outstanding: {format_rupees(account.balance)}."
            ),
            severity=NotificationSeverity.ALERT,
            date=as_of,
        )]
    if 0 <= days_left <= settings.loan_maturity_window_days:
        return [Notification(
            id=f"ALERT-LOAN-NEAR-{account.id}",
            title="Loan Maturity Approaching",
            message=(
                f"Loan {account.account_number} matures in {days_left} days "
                f"({account.maturity_date.isoformat()})."
            ),
            severity=NotificationSeverity.INFO,
            date=as_of,
        )]
    return []


def _installment_alerts(account: Account, as_of: date, settings: LedgerConfig) -> List[Notification]:
    if account.balance <= Decimal('0'):
        return []

    paid_this_month = any(
        txn.is_credit and txn.date.year == as_of.year and txn.date.month == as_of.month
        for txn in account.transactions
    )
    if paid_this_month:
        return []

    if as_of.day > settings.repayment_late_day:
        return [Notification(
            id=f"ALERT-EMI-LATE-{account.id}",
            title="Loan Repayment Late",
            message=f"EMI for {account.account_type.value} ({account.account_number}) is overdue for this month.",
            severity=NotificationSeverity.WARNING,
            date=as_of,
        )]
    if as_of.day > settings.repayment_due_day:
        return [Notification(
            id=f"ALERT-EMI-DUE-{account.id}",
            title="Loan Repayment Due",
            message=f"EMI for {account.account_type.value} ({account.account_number}) is due this month.",
            severity=NotificationSeverity.INFO,
            date=as_of,
        )]
    return []


def _deposit_maturity_alerts(account: Account, as_of: date, settings: LedgerConfig) -> List[Notification]:
    if account.maturity_date is None:
        return []
    days_left = (account.maturity_date - as_of).days
    if days_left > settings.deposit_maturity_window_days:
        return []

    matured = days_left < 0
    if matured:
        message = f"{account.account_type.value} {account.account_number} matured on {account.maturity_date.isoformat()}."
    else:
        message = (
            f"{account.account_type.value} {account.account_number} matures in {days_left} days "
            f"({account.maturity_date.isoformat()})."
        )
    return [Notification(
        id=f"ALERT-FD-MAT-{account.id}",
        title="Maturity Action Pending" if matured else "Deposit Maturity Approaching",
        message=message,
        severity=NotificationSeverity.WARNING if matured else NotificationSeverity.INFO,
        date=as_of,
    )]
