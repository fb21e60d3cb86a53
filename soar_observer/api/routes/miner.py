"""
Miner dashboard endpoints keyed by the alternate (Solana) wallet address.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError

import structlog

from soar_observer.api.dependencies import get_query_service, require_wallet
from soar_observer.api.schemas.miner import MinerStatusLogs, MinerStatusResponse, RewardEntry
from soar_observer.core.config import settings
from soar_observer.services.earnings_queries import EarningsQueryService, EpochReward
from soar_observer.utils.timeutils import format_rfc3339


logger = structlog.get_logger(__name__)

router = APIRouter()


def _reward_entry(reward: EpochReward) -> RewardEntry:
    return RewardEntry(
        epochNumber=reward.epoch_number,
        startTime=format_rfc3339(reward.start_time),
        endTime=format_rfc3339(reward.end_time),
        totalEarnings=reward.total_earnings / settings.token_unit,
        tokenSymbol=settings.token_symbol,
    )


def _database_error(e: Exception) -> HTTPException:
    logger.error("Miner query failed", error=str(e))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "DATABASE_ERROR", "message": "Failed to query miner data"},
    )


@router.get(
    "/status",
    response_model=MinerStatusResponse,
    summary="Miner Status",
    description="Liveness derived from the last observed challenge for the wallet",
)
async def get_miner_status(
    wallet: str = Depends(require_wallet),
    service: EarningsQueryService = Depends(get_query_service),
):
    try:
        report = await service.wallet_status(wallet)
    except SQLAlchemyError as e:
        raise _database_error(e)

    return MinerStatusResponse(
        status=report.status,
        issues=report.issues,
        logs=MinerStatusLogs(
            lastSeen=format_rfc3339(report.last_seen),
            diffMins=round(report.diff_minutes, 2) if report.diff_minutes is not None else None,
        ),
    )


@router.get(
    "/latest-rewards",
    response_model=List[RewardEntry],
    summary="Latest Rewards",
    description="Most recent per-epoch earnings for the wallet, newest first",
)
async def get_latest_rewards(
    wallet: str = Depends(require_wallet),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Number of epochs"),
    service: EarningsQueryService = Depends(get_query_service),
):
    try:
        rewards = await service.epoch_rewards(
            wallet,
            newest_first=True,
            limit=limit or settings.default_rewards_limit,
        )
    except SQLAlchemyError as e:
        raise _database_error(e)
    return [_reward_entry(reward) for reward in rewards]


@router.get(
    "/all-rewards",
    response_model=List[RewardEntry],
    summary="All Rewards",
    description="Every per-epoch earnings entry for the wallet, oldest first",
)
async def get_all_rewards(
    wallet: str = Depends(require_wallet),
    service: EarningsQueryService = Depends(get_query_service),
):
    try:
        rewards = await service.epoch_rewards(wallet, newest_first=False)
    except SQLAlchemyError as e:
        raise _database_error(e)
    return [_reward_entry(reward) for reward in rewards]
