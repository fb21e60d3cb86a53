"""
Schemas for client earnings lookups and aggregate earnings endpoints.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ClientEarningsResponse(BaseModel):
    """Lifetime and windowed earnings for one client, in base units."""
    address: str
    pubkey: str
    solana_address: Optional[str] = None
    total_lifetime_earnings: int = Field(description="Lifetime earnings in base units")
    earnings_over_period: int = Field(description="Earnings recorded in the period, base units")
    period: str


class AverageEarningsResponse(BaseModel):
    """Average earning per record in a window, in whole tokens."""
    average: float
    period: str
    startTime: str
    endTime: str


class TimeframeEarningsResponse(BaseModel):
    """Wallet earnings in a window, in whole tokens."""
    wallet: str
    period: str
    start: str
    end: str
    estimatedEarning: float
    tokenSymbol: str
