from .database import create_ledger_engine, create_session_factory, init_schema, session_scope
from .exceptions import BetNotFound, LedgerError, LedgerInvariantViolation
from .ledger import BetLedger
from .models import Bet, BetResult, BetRow, BetStatus, Direction, HoldingPeriod

__all__ = [
    "BetLedger",
    "Bet",
    "BetRow",
    "BetResult",
    "BetStatus",
    "Direction",
    "HoldingPeriod",
    "LedgerError",
    "LedgerInvariantViolation",
    "BetNotFound",
    "create_ledger_engine",
    "create_session_factory",
    "init_schema",
    "session_scope",
]
