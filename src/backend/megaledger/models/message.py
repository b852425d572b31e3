"""
Pydantic models for chat events delivered by the WhatsApp gateway.
"""

import base64
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class MediaPayload(BaseModel):
    """Media attached to a message, base64 encoded by the gateway."""
    mime_type: str
    data: str
    filename: Optional[str] = None

    def decoded(self) -> bytes:
        return base64.b64decode(self.data)

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


class InboundMessage(BaseModel):
    """A single chat message."""
    id: Optional[str] = None
    body: str = ""
    sender_id: str  # Author id as reported by the gateway, e.g. 258841234567@c.us
    group_id: Optional[str] = None  # None for direct messages
    sender_name: Optional[str] = None
    has_media: bool = False
    media: Optional[MediaPayload] = None
    message_type: str = "chat"
    from_me: bool = False
    timestamp: Optional[datetime] = None

    @property
    def chat_id(self) -> str:
        """Chat to reply into."""
        return self.group_id or self.sender_id


class GroupJoinEvent(BaseModel):
    """Participants added to a group."""
    group_id: str
    participant_ids: List[str] = Field(default_factory=list)
    type: str = "add"


class Participant(BaseModel):
    """A group member as reported by the gateway."""
    id: str
    phone: str  # Digits only, with country code
    name: Optional[str] = None
    is_admin: bool = False
