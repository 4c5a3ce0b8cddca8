from sqlalchemy import Column, String, DateTime, ForeignKey, Index
from app.core.utils import utcnow
from app.db.base_class import Base

class MessageHide(Base):
    """
    Mensajes ocultos ("eliminados para mí") por un usuario.

    El borrado suave de un participante no afecta la vista del otro.
    """
    __tablename__ = "message_hides"

    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    message_id = Column(String, ForeignKey("messages.id", ondelete="CASCADE"), primary_key=True)
    hidden_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_message_hide_message', 'message_id'),
    )
