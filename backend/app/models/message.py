from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from app.core.utils import utcnow
from app.db.base_class import Base
import uuid

class Message(Base):
    __tablename__ = "messages"

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    listing_id = Column(String, ForeignKey("listings.id"), nullable=False)
    sender_id = Column(String, ForeignKey("users.id"), nullable=False)
    recipient_id = Column(String, ForeignKey("users.id"), nullable=False)
    message_text = Column(String(5000), nullable=False)
    message_type = Column(String, nullable=False, default="text")  # text, inquiry, offer

    # Hilos: parent_message_id es solo referencial, sin FK ni cascada
    parent_message_id = Column(String, nullable=True, index=True)
    thread_id = Column(String, nullable=True, index=True)
    thread_depth = Column(Integer, nullable=False, default=0)
    thread_order = Column(Integer, nullable=False, default=0)

    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)

    # Precisión de microsegundos: el orden por recencia depende de este campo
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    # Relaciones
    sender = relationship("User", foreign_keys=[sender_id], back_populates="sent_messages")
    recipient = relationship("User", foreign_keys=[recipient_id], back_populates="received_messages")
    listing = relationship("Listing", back_populates="messages")

    # Índices para optimizar búsqueda de conversaciones
    __table_args__ = (
        Index('idx_message_sender_recipient', 'sender_id', 'recipient_id'),
        Index('idx_message_recipient_read', 'recipient_id', 'is_read'),
        Index('idx_message_listing_order', 'listing_id', 'thread_order'),
        Index('idx_message_created_at', 'created_at'),
    )

    @property
    def is_self_message(self) -> bool:
        return self.sender_id == self.recipient_id
