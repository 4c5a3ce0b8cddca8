from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from app.core.utils import utcnow
from app.db.base_class import Base
import uuid

class ConversationSetting(Base):
    """Estado de archivado por usuario y conversación, independiente de los mensajes."""
    __tablename__ = "conversation_settings"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    listing_id = Column(String, nullable=False)
    other_participant_id = Column(String, nullable=False)
    is_archived = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'listing_id', 'other_participant_id', name='uq_conversation_setting_key'),
    )
