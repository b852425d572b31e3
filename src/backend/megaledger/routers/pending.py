"""
Pending receipts router: operator view of unmatched receipts.

Unresolved confirmations are resolved by hand from here.
"""

import logging
from typing import List

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from megaledger.models.receipt import PendingReceiptView

router = APIRouter(prefix="/pending", tags=["pending"])
logger = logging.getLogger(__name__)


class SweepResponse(BaseModel):
    removed: int
    remaining: int


@router.get("", response_model=List[PendingReceiptView])
def list_pending(request: Request):
    """Every pending receipt, oldest first, with its age."""
    try:
        runtime = request.app.state.runtime
        current = runtime.store.now()

        return [
            PendingReceiptView(
                normalized_reference=receipt.normalized_reference,
                raw_reference=receipt.raw_reference,
                reference_type=receipt.reference_type,
                sender_id=receipt.sender_id,
                display_name=receipt.display_name,
                group_id=receipt.group_id,
                captured_at=receipt.captured_at,
                age_seconds=int((current - receipt.captured_at).total_seconds()),
            )
            for receipt in runtime.store.all()
        ]

    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list pending receipts: {str(e)}"
        )


@router.delete("/{reference}")
def delete_pending(reference: str, request: Request):
    """Discard a pending receipt by its normalized reference."""
    try:
        runtime = request.app.state.runtime
        if not runtime.store.remove(reference):
            raise HTTPException(status_code=404, detail="Pending receipt not found")

        logger.info("Pending receipt removed by operator", extra={"reference": reference})
        return {"success": True, "reference": reference}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to remove pending receipt: {str(e)}"
        )


@router.post("/sweep", response_model=SweepResponse)
def sweep_pending(request: Request):
    """Run the expiry sweep now."""
    try:
        runtime = request.app.state.runtime
        removed = runtime.sweep_pending()
        return SweepResponse(removed=removed, remaining=len(runtime.store))

    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Sweep failed: {str(e)}"
        )
