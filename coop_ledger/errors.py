"""Exception hierarchy for ledger operations."""


class LedgerError(Exception):
    """Base exception for all ledger errors."""


class InsufficientFundsError(LedgerError, ValueError):
    """Raised when a debit (or loan repayment) exceeds the available balance.

    This is a business-rule rejection: nothing was posted and retrying the
    same request will fail again.
    """

    def __init__(self, account_id: str, balance, requested):
        self.account_id = account_id
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient funds on account {account_id}: "
            f"balance {balance}, requested {requested}"
        )


class NotFoundError(LedgerError, LookupError):
    """Raised when a referenced account, member or destination does not exist."""


class AccountClosedError(LedgerError):
    """Raised when posting to an account that is Closed."""


class PersistenceError(LedgerError):
    """Raised when the storage layer fails. No state was committed; retry the whole operation."""


class InvariantViolation(LedgerError):
    """Raised when an account's cached balance disagrees with its transaction fold."""

    def __init__(self, account_id: str, cached, replayed):
        self.account_id = account_id
        self.cached = cached
        self.replayed = replayed
        super().__init__(
            f"Balance mismatch on account {account_id}: "
            f"cached {cached}, replayed {replayed}"
        )
