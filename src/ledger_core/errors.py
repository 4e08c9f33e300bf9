"""
Error taxonomy for the order ledger.

Every error is raised to the caller. A trading order that fails admission is
not an error: it is persisted as REJECTED and returned.
"""


class LedgerError(Exception):
    """Base class for all ledger errors."""


class InvalidOrderError(LedgerError):
    """Malformed size / price / type combination."""


class InstrumentNotFoundError(LedgerError):
    pass


class UserNotFoundError(LedgerError):
    pass


class OrderNotFoundError(LedgerError):
    pass


class InsufficientFundsError(LedgerError):
    """Available cash does not cover the request (raised for withdrawals)."""


class InsufficientSharesError(LedgerError):
    pass


class InvalidStateTransitionError(LedgerError):
    """Attempt to move an order out of a terminal state."""


class UnauthorizedError(LedgerError):
    """Caller does not own the order."""
