"""
Settlement Scheduler

Sweeps matured Fixed and Recurring Deposits into the member's Optional
Deposit once the grace period has passed. Each account is settled on its
own: one failure is logged and the pass moves on.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from .accounts import Account, AccountStatus, AccountType, Direction
from .amounts import ZERO, format_rupees
from .config import LedgerConfig, get_config
from .errors import LedgerError, NotFoundError
from .ledger import AccountLedger, PendingPosting
from .logging_config import get_logger, log_action
from .notifications import Notification, NotificationSeverity

MATURITY_TRANSFER = "Maturity Transfer"
MATURITY_CREDIT = "Maturity Credit"


@dataclass(frozen=True)
class SettlementResult:
    """One completed maturity sweep"""
    source: Account
    destination: Account
    amount: Decimal
    notification: Notification


@dataclass
class SettlementPassReport:
    """Outcome of the most recent pass, kept for operators"""
    as_of: date
    settled: List[SettlementResult] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)


class SettlementScheduler:
    """Runs settlement passes over every account in the ledger"""

    def __init__(self, ledger: AccountLedger, settings: Optional[LedgerConfig] = None):
        self.ledger = ledger
        self.settings = settings or get_config()
        self.logger = get_logger("coop_ledger.settlement")
        self.last_report: Optional[SettlementPassReport] = None

    def is_due(self, account: Account, as_of: date) -> bool:
        """Whether an account qualifies for auto-transfer on `as_of`"""
        if account.account_type not in (AccountType.FIXED_DEPOSIT, AccountType.RECURRING_DEPOSIT):
            return False
        if account.status != AccountStatus.ACTIVE or account.maturity_processed:
            return False
        if account.maturity_date is None or as_of < account.maturity_date:
            return False
        return (as_of - account.maturity_date).days >= self.settings.maturity_grace_days

    def find_destination(self, member_id: str) -> Account:
        """First Optional Deposit of the member that can still receive credits"""
        for account in self.ledger.get_member_accounts(member_id):
            if account.account_type == AccountType.OPTIONAL_DEPOSIT and not account.is_closed:
                return account
        raise NotFoundError(f"Member {member_id} has no Optional Deposit account")

    def run_settlement_pass(self, as_of: date) -> List[SettlementResult]:
        """
        Settle every due account and return the transfers made.

        Safe to re-run: `maturity_processed` is written together with the
        closing debit, so a settled account is never picked up again.
        """
        report = SettlementPassReport(as_of=as_of)

        for account in self.ledger.list_accounts():
            if not self.is_due(account, as_of):
                continue
            try:
                result = self.settle_account(account.id, as_of)
            except NotFoundError as exc:
                report.skipped[account.id] = str(exc)
                log_action(
                    self.logger, "info", "Maturity settlement skipped",
                    member_id=account.member_id, action="settle_maturity",
                    resource=f"account:{account.id}", extra={"reason": str(exc)}
                )
                continue
            except (LedgerError, ValueError) as exc:
                report.failed[account.id] = str(exc)
                self.logger.error(
                    "Maturity settlement failed for account %s: %s", account.id, exc, exc_info=True
                )
                continue
            if result is not None:
                report.settled.append(result)

        self.last_report = report
        log_action(
            self.logger, "info", "Settlement pass finished",
            action="run_settlement_pass",
            extra={"as_of": as_of.isoformat(), "settled": len(report.settled),
                   "skipped": len(report.skipped), "failed": len(report.failed)}
        )
        return report.settled

    def settle_account(self, account_id: str, as_of: date) -> Optional[SettlementResult]:
        """
        Close one matured deposit and credit its balance to the member's
        Optional Deposit. Both sides commit together or not at all.

        Returns None when the account is no longer due (for instance another
        pass settled it while this one waited for the lock).
        """
        account = self.ledger.get_account(account_id)
        destination = self.find_destination(account.member_id)

        with self.ledger.locks.hold(account.id, destination.id):
            if not self.is_due(account, as_of):
                return None

            amount = account.balance
            close_updates = {"status": AccountStatus.CLOSED, "maturity_processed": True}

            if amount <= ZERO:
                # Nothing to move; close without zero-amount postings
                self.ledger.commit_postings([PendingPosting(account, None, account.balance, close_updates)])
                log_action(
                    self.logger, "info", "Matured deposit closed with zero balance",
                    member_id=account.member_id, action="settle_maturity",
                    resource=f"account:{account.id}"
                )
                return None

            debit = self.ledger.prepare_posting(
                account, as_of, Direction.DEBIT, amount,
                f"Auto-Transfer to OD ({destination.account_number}) upon Maturity",
                updates=close_updates, category=MATURITY_TRANSFER
            )
            credit = self.ledger.prepare_posting(
                destination, as_of, Direction.CREDIT, amount,
                f"Maturity Credit from {account.account_type.value} ({account.account_number})",
                category=MATURITY_CREDIT
            )
            self.ledger.commit_postings([debit, credit])

        notification = Notification(
            id=f"NOTIF-TRANS-{account.id}",
            title="Maturity Transfer Complete",
            message=(
                f"{account.account_type.value} ({account.account_number}) matured. "
                f"{format_rupees(amount)} transferred to Optional Deposit."
            ),
            severity=NotificationSeverity.INFO,
            date=as_of,
        )
        log_action(
            self.logger, "info", "Maturity transfer completed",
            member_id=account.member_id, action="settle_maturity",
            resource=f"account:{account.id}",
            extra={"destination": destination.id, "amount": str(amount),
                   "debit_id": debit.transaction.id, "credit_id": credit.transaction.id}
        )
        return SettlementResult(account, destination, amount, notification)
