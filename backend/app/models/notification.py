from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index
from app.core.utils import utcnow
from app.db.base_class import Base
import uuid

class InAppNotification(Base):
    __tablename__ = "in_app_notifications"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(String, nullable=False)  # message, reply
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    action_url = Column(String, nullable=True)
    action_label = Column(String, nullable=True)
    priority = Column(String, default="medium")
    icon = Column(String, nullable=True)
    related_entity_id = Column(String, nullable=True)
    related_entity_type = Column(String, nullable=True)
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_notification_user_read', 'user_id', 'is_read'),
    )
