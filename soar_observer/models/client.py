"""
Client model - one row per runner address ever observed on chain.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, BigInteger, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class Client(BaseModel, TimestampMixin):
    """Running earnings totals for a single chain address."""

    __tablename__ = "clients"

    # Primary identifier
    address: Mapped[str] = mapped_column(
        String(128),
        primary_key=True,
        comment="Soarchain client address"
    )

    pub_key: Mapped[str] = mapped_column(
        String(256),
        default="",
        comment="Last observed public key"
    )

    alternate_address: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
        comment="Secondary identity, e.g. a Solana wallet"
    )

    total_lifetime_earnings: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        comment="Sum of all earnings records in base units"
    )

    last_activity_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Processing time of the last applied challenge"
    )

    __table_args__ = (
        Index("idx_clients_alternate_address", "alternate_address"),
        Index("idx_clients_pub_key", "pub_key"),
        Index("idx_clients_last_activity", "last_activity_time"),
    )

    def __repr__(self) -> str:
        return f"<Client(address={self.address}, total={self.total_lifetime_earnings})>"
