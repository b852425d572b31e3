"""
Pydantic models for payment receipts awaiting confirmation.
"""

from enum import Enum
from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class ReferenceType(str, Enum):
    """Payment network that issued a transaction reference."""
    MPESA = "MPESA"    # Opaque alphanumeric codes
    EMOLA = "EMOLA"    # Prefixed numeric codes with separators
    UNKNOWN = "UNKNOWN"


class ParsedReference(BaseModel):
    """A reference extracted from message text."""
    reference: str  # Normalized form, used as the store key
    raw: str
    reference_type: ReferenceType = ReferenceType.UNKNOWN
    pattern_name: Optional[str] = None


class PendingReceipt(BaseModel):
    """A captured receipt waiting for its confirmation."""
    normalized_reference: str
    raw_reference: str
    reference_type: ReferenceType = ReferenceType.UNKNOWN
    sender_id: str  # 9-digit local subscriber number
    display_name: str
    group_id: str
    captured_at: datetime
    message_id: Optional[str] = None


class PendingReceiptView(BaseModel):
    """Debug view of a pending receipt."""
    normalized_reference: str
    raw_reference: str
    reference_type: ReferenceType
    sender_id: str
    display_name: str
    group_id: str
    captured_at: datetime
    age_seconds: int
