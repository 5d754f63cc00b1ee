"""Tick summaries for the settlement and resolver loops."""

from pydantic import BaseModel


class ScanResult(BaseModel):
    """Summary of one settlement scanner tick.

    ``settled`` counts every bet moved to a terminal state this tick, including
    the invalid and error outcomes.
    """

    inspected: int = 0
    settled: int = 0
    won: int = 0
    lost: int = 0
    draws: int = 0
    invalid: int = 0
    errors_marked: int = 0
    skipped_no_option_id: int = 0
    pending: int = 0
    failures: int = 0
    aborted: bool = False
    abort_reason: str | None = None


class ResolveResult(BaseModel):
    """Summary of one pending-identifier resolver tick."""

    inspected: int = 0
    resolved: int = 0
    pending: int = 0
    stale: int = 0
    failed_tx: int = 0
    anomalies: int = 0
    failures: int = 0
    aborted: bool = False
    abort_reason: str | None = None
