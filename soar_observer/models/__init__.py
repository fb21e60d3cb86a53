"""
Database models for the Soarchain observer.
"""

from .base import Base, BaseModel, TimestampMixin
from .client import Client
from .earnings import ClientEarning, EpochEarnings

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "Client",
    "ClientEarning",
    "EpochEarnings",
]
