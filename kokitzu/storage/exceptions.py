"""Custom exceptions for the bet ledger."""


class LedgerError(Exception):
    """Base exception for ledger errors."""

    def __init__(self, message: str, bet_id: str | None = None):
        super().__init__(message)
        self.bet_id = bet_id


class LedgerInvariantViolation(LedgerError):
    """Write would break a lifecycle or immutability rule."""

    pass


class BetNotFound(LedgerError):
    """No bet with the given id."""

    pass
