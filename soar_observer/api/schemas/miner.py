"""
Schemas for the miner dashboard endpoints.
"""

from typing import List, Optional

from pydantic import BaseModel

from soar_observer.services.earnings_queries import MinerStatus


class MinerStatusLogs(BaseModel):
    lastSeen: Optional[str] = None
    diffMins: Optional[float] = None


class MinerStatusResponse(BaseModel):
    status: MinerStatus
    issues: List[str]
    logs: MinerStatusLogs


class RewardEntry(BaseModel):
    """Earnings of one wallet within one epoch."""
    epochNumber: int
    startTime: str
    endTime: str
    totalEarnings: float
    tokenSymbol: str
