"""
Client earnings lookups by primary address, alternate address or public key.
"""

from datetime import datetime, timezone
from typing import Awaitable, Callable

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

import structlog

from soar_observer.api.dependencies import Period, get_period, get_query_service
from soar_observer.api.schemas.clients import ClientEarningsResponse
from soar_observer.core.exceptions import NotFoundError
from soar_observer.models.client import Client
from soar_observer.services.earnings_queries import EarningsQueryService, window


logger = structlog.get_logger(__name__)

router = APIRouter()


async def _client_earnings(
    lookup: Callable[[], Awaitable[Client]],
    service: EarningsQueryService,
    period: Period,
) -> ClientEarningsResponse:
    try:
        client = await lookup()
        start, end = window(period.duration, datetime.now(timezone.utc))
        over_period = await service.sum_for_client(client.address, start, end)
    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": e.code, "message": e.message},
        )
    except SQLAlchemyError as e:
        logger.error("Client earnings query failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "DATABASE_ERROR", "message": "Failed to query client earnings"},
        )

    return ClientEarningsResponse(
        address=client.address,
        pubkey=client.pub_key,
        solana_address=client.alternate_address,
        total_lifetime_earnings=client.total_lifetime_earnings,
        earnings_over_period=over_period,
        period=period.text,
    )


@router.get(
    "/client/solana/{solana_address}",
    response_model=ClientEarningsResponse,
    summary="Client Earnings by Solana Address",
)
async def get_client_by_solana_address(
    solana_address: str,
    period: Period = Depends(get_period),
    service: EarningsQueryService = Depends(get_query_service),
):
    return await _client_earnings(
        lambda: service.get_client_by_alternate(solana_address), service, period
    )


@router.get(
    "/client/pubkey/{pubkey}",
    response_model=ClientEarningsResponse,
    summary="Client Earnings by Public Key",
)
async def get_client_by_pubkey(
    pubkey: str,
    period: Period = Depends(get_period),
    service: EarningsQueryService = Depends(get_query_service),
):
    return await _client_earnings(
        lambda: service.get_client_by_pubkey(pubkey), service, period
    )


@router.get(
    "/client/{address}",
    response_model=ClientEarningsResponse,
    summary="Client Earnings",
    description="Lifetime earnings and earnings over the requested period for one client",
)
async def get_client(
    address: str,
    period: Period = Depends(get_period),
    service: EarningsQueryService = Depends(get_query_service),
):
    return await _client_earnings(lambda: service.get_client(address), service, period)
