from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Literal, Optional
from datetime import datetime
import uuid

from app.core.config import settings

MessageType = Literal["text", "inquiry", "offer"]

def normalize_uuid(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    try:
        return str(uuid.UUID(str(v)))
    except ValueError:
        raise ValueError("Debe ser un UUID válido")

class ProfileSummary(BaseModel):
    id: str
    display_name: Optional[str] = None
    profile_image_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

class ListingSummary(BaseModel):
    id: str
    title: str
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    price: Optional[float] = None
    status: Optional[str] = None
    user_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

class MessageBase(BaseModel):
    message_text: str = Field(..., min_length=1, max_length=settings.MESSAGE_MAX_LENGTH)
    message_type: MessageType = "text"

    @field_validator("message_text")
    @classmethod
    def text_not_blank(cls, v):
        if not v.strip():
            raise ValueError("El mensaje no puede estar vacío")
        return v

class MessageCreate(MessageBase):
    listing_id: str
    recipient_id: str
    parent_message_id: Optional[str] = None
    thread_id: Optional[str] = None

    @field_validator("listing_id", "recipient_id", "parent_message_id", "thread_id")
    @classmethod
    def ids_are_uuids(cls, v):
        return normalize_uuid(v)

class ReplyCreate(MessageBase):
    pass

class MessageResponse(BaseModel):
    id: str
    listing_id: str
    sender_id: str
    recipient_id: str
    message_text: str
    message_type: str = "text"
    parent_message_id: Optional[str] = None
    thread_id: Optional[str] = None
    thread_depth: int = 0
    thread_order: int = 0
    is_read: bool = False
    read_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    sender: Optional[ProfileSummary] = None
    recipient: Optional[ProfileSummary] = None
    listing: Optional[ListingSummary] = None

    model_config = ConfigDict(from_attributes=True)

class ThreadedMessage(MessageResponse):
    replies: List["ThreadedMessage"] = []
    reply_count: int = 0
    has_replies: bool = False
    thread_root: bool = False
    depth_level: int = 0

ThreadedMessage.model_rebuild()

class MarkReadRequest(BaseModel):
    conversation_id: Optional[str] = None
    message_ids: Optional[List[str]] = None

    @field_validator("message_ids")
    @classmethod
    def ids_are_uuids(cls, v):
        if v is None:
            return v
        return [normalize_uuid(i) for i in v]

class UpdatedCountResponse(BaseModel):
    message: str
    updated_count: int

class UnreadCountResponse(BaseModel):
    unread_count: int
