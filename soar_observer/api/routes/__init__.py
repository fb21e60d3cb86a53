"""
API routes package.
"""

from . import clients, earnings, miner

__all__ = ["clients", "earnings", "miner"]
