"""
Earnings models: the append-only earnings log and per-epoch rolling totals.
"""

from datetime import datetime

from sqlalchemy import (
    String, Integer, BigInteger, DateTime, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, utcnow


class ClientEarning(BaseModel):
    """Single earnings event. Created once, never mutated."""

    __tablename__ = "client_earnings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    client_address: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("clients.address", ondelete="CASCADE"),
        comment="Primary address of the earning client"
    )

    amount: Mapped[int] = mapped_column(
        BigInteger,
        comment="Amount in base units"
    )

    observed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        comment="Processing time, not chain time"
    )

    __table_args__ = (
        Index("idx_client_earnings_client_time", "client_address", "observed_at"),
        Index("idx_client_earnings_observed_at", "observed_at"),
    )

    def __repr__(self) -> str:
        return f"<ClientEarning(client={self.client_address}, amount={self.amount})>"


class EpochEarnings(BaseModel, TimestampMixin):
    """Rolling earnings total for one client within one epoch."""

    __tablename__ = "epoch_earnings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    client_address: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("clients.address", ondelete="CASCADE"),
        comment="Primary address of the earning client"
    )

    epoch_number: Mapped[int] = mapped_column(
        BigInteger,
        comment="Chain epoch counter"
    )

    # Window bounds are fixed when the row is created
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    total_earnings: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        comment="Sum of earnings in this epoch, base units"
    )

    __table_args__ = (
        UniqueConstraint("client_address", "epoch_number", name="uq_epoch_earnings_client_epoch"),
        Index("idx_epoch_earnings_epoch", "epoch_number"),
    )

    def __repr__(self) -> str:
        return (
            f"<EpochEarnings(client={self.client_address}, epoch={self.epoch_number}, "
            f"total={self.total_earnings})>"
        )
