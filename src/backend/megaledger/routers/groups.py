"""
Groups API router: read-only ledger views per group.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from megaledger.exceptions import TransportError
from megaledger.models.ledger import GroupSummary, InactiveBuyer, RankingEntry, ZeroPurchaseMember

router = APIRouter(prefix="/groups", tags=["groups"])
logger = logging.getLogger(__name__)


class ZeroPurchaseList(BaseModel):
    group_id: str
    member_total: int
    members: List[ZeroPurchaseMember]


@router.get("/{group_id}/ranking", response_model=List[RankingEntry])
def get_ranking(
    group_id: str,
    request: Request,
    limit: Optional[int] = Query(None, ge=1, le=500, description="Maximum entries")
):
    """Buyers by cumulative megabytes, highest first."""
    try:
        return request.app.state.runtime.ledger.ranking(group_id, limit)

    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to build ranking: {str(e)}"
        )


@router.get("/{group_id}/inactive", response_model=List[InactiveBuyer])
def get_inactive(
    group_id: str,
    request: Request,
    days: Optional[int] = Query(None, ge=0, description="Inactivity threshold in days")
):
    """Buyers with no purchase for more than `days` days, most inactive first."""
    try:
        return request.app.state.runtime.ledger.inactive_buyers(group_id, days)

    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list inactive buyers: {str(e)}"
        )


@router.get("/{group_id}/zero-purchase", response_model=ZeroPurchaseList)
def get_zero_purchase(group_id: str, request: Request):
    """
    Members who never bought, from the gateway's current membership.

    Returns 502 if the gateway cannot list the members.
    """
    try:
        runtime = request.app.state.runtime
        participants = runtime.transport.get_participants(group_id)
        members = runtime.ledger.zero_purchase_members(group_id, participants)

        return ZeroPurchaseList(
            group_id=group_id,
            member_total=len(participants),
            members=members
        )

    except TransportError as e:
        logger.error("Gateway error listing members", extra={
            "group_id": group_id,
            "error": str(e)
        })
        raise HTTPException(
            status_code=502,
            detail=f"Gateway error: {str(e)}"
        )
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list zero-purchase members: {str(e)}"
        )


@router.get("/{group_id}/summary", response_model=GroupSummary)
def get_summary(group_id: str, request: Request):
    try:
        return request.app.state.runtime.ledger.group_summary(group_id)

    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to build summary: {str(e)}"
        )
