"""
Webhook router for events pushed by the WhatsApp gateway.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from megaledger.models.message import GroupJoinEvent, InboundMessage

router = APIRouter(prefix="/webhook", tags=["webhook"])
logger = logging.getLogger(__name__)


class MessageResult(BaseModel):
    """Outcome of processing one inbound message."""
    message_id: Optional[str] = None
    action: str
    reference: Optional[str] = None
    matched_reference: Optional[str] = None
    command: Optional[str] = None
    group_id: Optional[str] = None
    phone: Optional[str] = None
    amount: Optional[int] = None
    rank: Optional[int] = None
    cumulative_total: Optional[int] = None
    error: Optional[str] = None


class GroupJoinResult(BaseModel):
    group_id: str
    removed: List[str]
    failed: List[str]


# Handlers are sync: the pipeline blocks on gateway calls, FastAPI runs them in its threadpool
@router.post("/messages", response_model=MessageResult)
def receive_message(message: InboundMessage, request: Request):
    """
    Process an inbound chat message.

    The pipeline never raises for a bad message; failures come back as
    action="failed" with the error text.
    """
    try:
        runtime = request.app.state.runtime
        result = runtime.reconciliation.handle_message(message)
        return MessageResult(**result)

    except Exception as e:
        logger.error("Webhook processing failed", extra={
            "message_id": message.id,
            "error": str(e)
        })
        raise HTTPException(
            status_code=500,
            detail=f"Message processing failed: {str(e)}"
        )


@router.post("/group-join", response_model=GroupJoinResult)
def group_join(event: GroupJoinEvent, request: Request):
    """Remove new participants whose numbers are not local."""
    try:
        runtime = request.app.state.runtime
        return GroupJoinResult(**runtime.reconciliation.handle_group_join(event))

    except Exception as e:
        logger.error("Group join processing failed", extra={
            "group_id": event.group_id,
            "error": str(e)
        })
        raise HTTPException(
            status_code=500,
            detail=f"Group join processing failed: {str(e)}"
        )
