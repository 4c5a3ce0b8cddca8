from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import List, Optional
from datetime import datetime

from app.schemas.message import (
    MessageResponse, ThreadedMessage, ProfileSummary, ListingSummary, normalize_uuid,
)

class ConversationResponse(BaseModel):
    id: str
    listing_id: str
    participants: List[str]
    other_participant_id: str
    other_participant: Optional[ProfileSummary] = None
    listing: Optional[ListingSummary] = None
    last_message: MessageResponse
    unread_count: int
    is_archived: bool = False
    is_self_conversation: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

class ConversationListResponse(BaseModel):
    conversations: List[ConversationResponse]
    total: int

class ConversationThreadResponse(BaseModel):
    conversation_id: str
    messages: List[MessageResponse]
    threaded_messages: List[ThreadedMessage]

class ArchiveRequest(BaseModel):
    conversation_ids: List[str] = Field(..., min_length=1)
    archive: bool = True

class DeleteRequest(BaseModel):
    conversation_ids: List[str] = []
    message_ids: List[str] = []
    soft_delete: bool = True

    @field_validator("message_ids")
    @classmethod
    def ids_are_uuids(cls, v):
        return [normalize_uuid(i) for i in v]

    @model_validator(mode="after")
    def requires_targets(self):
        if not self.conversation_ids and not self.message_ids:
            raise ValueError("Debes indicar conversation_ids o message_ids")
        return self

class DeletedCountResponse(BaseModel):
    message: str
    deleted_count: int
