"""
API dependencies for FastAPI endpoints.
Provides database sessions and query parameter validation.
"""

from datetime import timedelta
from typing import AsyncGenerator, NamedTuple, Optional

from fastapi import Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from soar_observer.core.config import settings
from soar_observer.core.database import get_async_session
from soar_observer.services.earnings_queries import EarningsQueryService
from soar_observer.utils.timeutils import parse_duration


logger = structlog.get_logger(__name__)


class Period(NamedTuple):
    text: str
    duration: timedelta


async def get_database() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with get_async_session() as session:
        yield session


async def get_query_service(
    db: AsyncSession = Depends(get_database),
) -> EarningsQueryService:
    return EarningsQueryService(db)


async def get_period(
    period: Optional[str] = Query(
        None,
        description="Look-back window as a duration, e.g. 1h, 30m, 1h30m",
    ),
) -> Period:
    """Parse the ``period`` query parameter, defaulting to the configured window."""
    text = period or settings.default_period
    try:
        duration = parse_duration(text)
    except ValueError as e:
        logger.warning("Invalid period provided", period=text)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "INVALID_PERIOD",
                "message": f"Invalid period format: {e}",
            },
        )
    if duration < timedelta(0):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "INVALID_PERIOD",
                "message": "Period must not be negative",
            },
        )
    return Period(text, duration)


async def require_wallet(
    wallet: Optional[str] = Query(None, description="Alternate (Solana) wallet address"),
) -> str:
    """Require a non-empty ``wallet`` query parameter."""
    if not wallet or not wallet.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "MISSING_WALLET",
                "message": "Missing 'wallet' query param",
            },
        )
    return wallet.strip()
