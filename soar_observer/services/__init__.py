"""Read-side services used by the HTTP API."""

from .earnings_queries import (
    EarningsQueryService,
    EpochReward,
    MinerStatus,
    StatusReport,
    StatusThresholds,
    classify_status,
)

__all__ = [
    "EarningsQueryService",
    "EpochReward",
    "MinerStatus",
    "StatusReport",
    "StatusThresholds",
    "classify_status",
]
