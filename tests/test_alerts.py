"""
Test suite for alert derivation and notification display order
"""

import pytest
from datetime import date

from coop_ledger.accounts import AccountStatus, AccountType, Direction
from coop_ledger.alerts import derive_alerts
from coop_ledger.config import LedgerConfig
from coop_ledger.ledger import AccountLedger
from coop_ledger.notifications import (
    Notification, NotificationSeverity, merge_read_state, sort_notifications
)
from coop_ledger.storage import InMemoryStorage


@pytest.fixture
def ledger():
    return AccountLedger(InMemoryStorage())


@pytest.fixture
def settings():
    return LedgerConfig(use_sqlite=False)


def open_loan(ledger, amount="10000", maturity_date=None):
    return ledger.open_account(
        "M001", AccountType.LOAN, "RL-1",
        opening_amount=amount, opening_date=date(2024, 1, 1), maturity_date=maturity_date
    )


class TestInstallmentAlerts:
    """Monthly repayment reminders"""
    
    def test_late_after_fifteenth(self, ledger, settings):
        loan = open_loan(ledger)
        
        alerts = derive_alerts([loan], date(2024, 3, 20), settings)
        
        assert len(alerts) == 1
        assert alerts[0].id == f"ALERT-EMI-LATE-{loan.id}"
        assert alerts[0].title == "Loan Repayment Late"
        assert alerts[0].severity == NotificationSeverity.WARNING
    
    def test_due_after_fifth(self, ledger, settings):
        loan = open_loan(ledger)
        
        alerts = derive_alerts([loan], date(2024, 3, 10), settings)
        
        assert [a.id for a in alerts] == [f"ALERT-EMI-DUE-{loan.id}"]
        assert alerts[0].severity == NotificationSeverity.INFO
    
    def test_nothing_early_in_month(self, ledger, settings):
        loan = open_loan(ledger)
        assert derive_alerts([loan], date(2024, 3, 3), settings) == []
    
    def test_boundary_days(self, ledger, settings):
        loan = open_loan(ledger)
        
        assert derive_alerts([loan], date(2024, 3, 5), settings) == []
        assert derive_alerts([loan], date(2024, 3, 15), settings)[0].title == "Loan Repayment Due"
        assert derive_alerts([loan], date(2024, 3, 16), settings)[0].title == "Loan Repayment Late"
    
    def test_paid_month_has_no_alert(self, ledger, settings):
        loan = open_loan(ledger)
        ledger.post_transaction(loan.id, date(2024, 3, 2), Direction.CREDIT, "1000", "EMI")
        
        assert derive_alerts([loan], date(2024, 3, 20), settings) == []
        # The same payment does not count for the following month
        assert len(derive_alerts([loan], date(2024, 4, 20), settings)) == 1
    
    def test_repaid_loan_has_no_alert(self, ledger, settings):
        loan = open_loan(ledger, amount=None)
        assert derive_alerts([loan], date(2024, 3, 20), settings) == []


class TestLoanMaturityAlerts:
    """Loan maturity window"""
    
    def test_overdue_with_outstanding(self, ledger, settings):
        loan = open_loan(ledger, maturity_date=date(2024, 3, 1))
        
        alerts = derive_alerts([loan], date(2024, 3, 20), settings)
        
        by_id = {a.id: a for a in alerts}
        assert set(by_id) == {f"ALERT-LOAN-MAT-{loan.id}", f"ALERT-EMI-LATE-{loan.id}"}
        assert by_id[f"ALERT-LOAN-MAT-{loan.id}"].severity == NotificationSeverity.ALERT
    
    def test_approaching(self, ledger, settings):
        loan = open_loan(ledger, maturity_date=date(2024, 3, 25))
        
        alerts = derive_alerts([loan], date(2024, 3, 3), settings)
        
        assert [a.id for a in alerts] == [f"ALERT-LOAN-NEAR-{loan.id}"]
        assert alerts[0].severity == NotificationSeverity.INFO
        assert "22 days" in alerts[0].message
    
    def test_outside_window(self, ledger, settings):
        loan = open_loan(ledger, maturity_date=date(2024, 6, 1))
        assert derive_alerts([loan], date(2024, 3, 3), settings) == []
    
    def test_overdue_without_outstanding(self, ledger, settings):
        loan = open_loan(ledger, amount=None, maturity_date=date(2024, 3, 1))
        assert derive_alerts([loan], date(2024, 3, 3), settings) == []


class TestDepositAlerts:
    """Low balance and time deposit maturity"""
    
    def test_low_balance_default_threshold(self, ledger, settings):
        od = ledger.open_account("M001", AccountType.OPTIONAL_DEPOSIT, "OD-1", opening_amount="300")
        
        alerts = derive_alerts([od], date(2024, 3, 3), settings)
        
        assert [a.id for a in alerts] == [f"ALERT-LOW-{od.id}"]
        assert alerts[0].severity == NotificationSeverity.WARNING
        assert "₹300.00" in alerts[0].message
        assert "₹500.00" in alerts[0].message
    
    def test_balance_at_threshold_is_fine(self, ledger, settings):
        od = ledger.open_account("M001", AccountType.OPTIONAL_DEPOSIT, "OD-1", opening_amount="500")
        assert derive_alerts([od], date(2024, 3, 3), settings) == []
    
    def test_account_threshold_overrides_default(self, ledger, settings):
        od = ledger.open_account(
            "M001", AccountType.OPTIONAL_DEPOSIT, "OD-1", opening_amount="300", low_balance_threshold="200"
        )
        assert derive_alerts([od], date(2024, 3, 3), settings) == []
    
    def test_configured_threshold(self, ledger):
        od = ledger.open_account("M001", AccountType.OPTIONAL_DEPOSIT, "OD-1", opening_amount="300")
        settings = LedgerConfig(use_sqlite=False, low_balance_threshold="250.00")
        assert derive_alerts([od], date(2024, 3, 3), settings) == []
    
    def test_fixed_deposit_approaching(self, ledger, settings):
        fd = ledger.open_account(
            "M001", AccountType.FIXED_DEPOSIT, "FD-1", opening_amount="1000", maturity_date=date(2024, 3, 25)
        )
        
        alerts = derive_alerts([fd], date(2024, 3, 20), settings)
        
        assert [a.id for a in alerts] == [f"ALERT-FD-MAT-{fd.id}"]
        assert alerts[0].title == "Deposit Maturity Approaching"
        assert alerts[0].severity == NotificationSeverity.INFO
    
    def test_matured_deposit_pending_action(self, ledger, settings):
        rd = ledger.open_account(
            "M001", AccountType.RECURRING_DEPOSIT, "RD-1", opening_amount="1000", maturity_date=date(2024, 3, 25)
        )
        
        alerts = derive_alerts([rd], date(2024, 3, 27), settings)
        
        assert alerts[0].title == "Maturity Action Pending"
        assert alerts[0].severity == NotificationSeverity.WARNING
    
    def test_distant_maturity(self, ledger, settings):
        fd = ledger.open_account(
            "M001", AccountType.FIXED_DEPOSIT, "FD-1", opening_amount="1000", maturity_date=date(2024, 3, 25)
        )
        assert derive_alerts([fd], date(2024, 3, 1), settings) == []
    
    def test_inactive_accounts_are_ignored(self, ledger, settings):
        od = ledger.open_account("M001", AccountType.OPTIONAL_DEPOSIT, "OD-1", opening_amount="100")
        ledger.set_status(od.id, AccountStatus.DORMANT)
        assert derive_alerts([od], date(2024, 3, 3), settings) == []
    
    def test_share_capital_never_alerts(self, ledger, settings):
        sm = ledger.open_account("M001", AccountType.SHARE_CAPITAL, "SM-1")
        assert derive_alerts([sm], date(2024, 3, 20), settings) == []
    
    def test_ids_are_stable(self, ledger, settings):
        od = ledger.open_account("M001", AccountType.OPTIONAL_DEPOSIT, "OD-1", opening_amount="100")
        loan = open_loan(ledger, maturity_date=date(2024, 3, 1))
        
        first = [a.id for a in derive_alerts([od, loan], date(2024, 3, 20), settings)]
        second = [a.id for a in derive_alerts([od, loan], date(2024, 3, 21), settings)]
        
        assert first == second


class TestNotificationOrdering:
    """Read-state merge and display sort"""
    
    def make(self, notif_id, severity, day, read=False):
        return Notification(notif_id, "title", "message", severity, date(2024, 3, day), read)
    
    def test_merge_read_state(self):
        notifications = [
            self.make("A", NotificationSeverity.INFO, 1),
            self.make("B", NotificationSeverity.ALERT, 1),
        ]
        
        merged = merge_read_state(notifications, {"B", "Z"})
        
        assert [n.read for n in merged] == [False, True]
        assert not notifications[1].read
    
    def test_sort_order(self):
        notifications = [
            self.make("old-info", NotificationSeverity.INFO, 1),
            self.make("read-alert", NotificationSeverity.ALERT, 9, read=True),
            self.make("new-warning", NotificationSeverity.WARNING, 5),
            self.make("alert", NotificationSeverity.ALERT, 2),
        ]
        
        ordered = [n.id for n in sort_notifications(notifications)]
        
        assert ordered == ["alert", "new-warning", "old-info", "read-alert"]
    
    def test_to_dict_uses_type_key(self):
        payload = self.make("A", NotificationSeverity.WARNING, 3).to_dict()
        assert payload["type"] == "warning"
        assert payload["date"] == "2024-03-03"
