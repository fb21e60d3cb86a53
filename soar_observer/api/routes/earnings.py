"""
Aggregate earnings over a time window.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

import structlog

from soar_observer.api.dependencies import Period, get_period, get_query_service, require_wallet
from soar_observer.api.schemas.clients import AverageEarningsResponse, TimeframeEarningsResponse
from soar_observer.core.config import settings
from soar_observer.services.earnings_queries import EarningsQueryService, window
from soar_observer.utils.timeutils import format_rfc3339


logger = structlog.get_logger(__name__)

router = APIRouter()


def _database_error(e: Exception) -> HTTPException:
    logger.error("Earnings query failed", error=str(e))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "DATABASE_ERROR", "message": "Failed to query earnings"},
    )


@router.get(
    "/average",
    response_model=AverageEarningsResponse,
    summary="Average Earnings",
    description="Average amount per earnings record in the period, in whole tokens",
)
async def get_average_earnings(
    period: Period = Depends(get_period),
    service: EarningsQueryService = Depends(get_query_service),
):
    start, end = window(period.duration, datetime.now(timezone.utc))
    try:
        average = await service.average(start, end)
    except SQLAlchemyError as e:
        raise _database_error(e)

    return AverageEarningsResponse(
        average=average / settings.token_unit,
        period=period.text,
        startTime=format_rfc3339(start),
        endTime=format_rfc3339(end),
    )


@router.get(
    "/timeframe-earnings",
    response_model=TimeframeEarningsResponse,
    summary="Wallet Earnings in Timeframe",
)
async def get_timeframe_earnings(
    wallet: str = Depends(require_wallet),
    period: Period = Depends(get_period),
    service: EarningsQueryService = Depends(get_query_service),
):
    start, end = window(period.duration, datetime.now(timezone.utc))
    try:
        total = await service.sum_for_wallet(wallet, start, end)
    except SQLAlchemyError as e:
        raise _database_error(e)

    return TimeframeEarningsResponse(
        wallet=wallet,
        period=period.text,
        start=format_rfc3339(start),
        end=format_rfc3339(end),
        estimatedEarning=total / settings.token_unit,
        tokenSymbol=settings.token_symbol,
    )
