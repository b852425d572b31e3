"""
Pydantic models for the per-group purchase ledger.
"""

from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime


class PurchaseEntry(BaseModel):
    """A single confirmed purchase in a buyer's daily log."""
    timestamp: datetime
    amount: int


class Buyer(BaseModel):
    """Purchase record for one phone number in one group."""
    display_name: str
    current_purchase_amount: int = 0
    cumulative_purchase_amount: int = 0
    last_purchase_at: Optional[datetime] = None
    daily_purchase_log: Dict[str, List[PurchaseEntry]] = Field(default_factory=dict)


class GroupLedger(BaseModel):
    """All buyers of one group plus group-wide totals."""
    name: str = ""
    buyers: Dict[str, Buyer] = Field(default_factory=dict)
    total_purchase_count: int = 0
    total_amount: int = 0
    created_at: datetime


class RankingEntry(BaseModel):
    """One line of the leaderboard."""
    position: int
    phone: str
    display_name: str
    cumulative_purchase_amount: int


class InactiveBuyer(BaseModel):
    """A buyer with no purchase for longer than the inactivity threshold."""
    phone: str
    display_name: str
    days_inactive: int
    cumulative_purchase_amount: int


class ZeroPurchaseMember(BaseModel):
    """A group member who has never completed a purchase."""
    phone: str
    display_name: str
    has_record: bool


class PurchaseResult(BaseModel):
    """Outcome of recording a confirmed purchase."""
    phone: str
    display_name: str
    amount: int
    rank: int
    cumulative_total: int
    purchases_today: int
    days_since_last_purchase: int  # Calendar days before this purchase, 0 for first purchase
    leader_phone: Optional[str] = None
    leader_total: int = 0


class GroupSummary(BaseModel):
    """Group-wide ledger totals."""
    group_id: str
    name: str
    buyer_count: int
    total_purchase_count: int
    total_amount: int
    created_at: datetime
