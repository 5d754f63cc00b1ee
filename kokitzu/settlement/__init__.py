from .models import ResolveResult, ScanResult
from .outcome import derive_outcome, error_outcome, failed_creation_outcome, invalid_outcome
from .resolver import PendingIdResolver, resolver_job
from .scanner import SettlementScanner, settlement_job

__all__ = [
    "SettlementScanner",
    "settlement_job",
    "PendingIdResolver",
    "resolver_job",
    "ScanResult",
    "ResolveResult",
    "derive_outcome",
    "error_outcome",
    "failed_creation_outcome",
    "invalid_outcome",
]
