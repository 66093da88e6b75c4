"""Per-user monthly credit ledger."""

from photoroute.ledger.usage import (
    CreditReservation,
    TierUsage,
    UsageLedger,
    UsageStats,
    UsageTracker,
    period_key,
)

__all__ = [
    "CreditReservation",
    "TierUsage",
    "UsageLedger",
    "UsageStats",
    "UsageTracker",
    "period_key",
]
