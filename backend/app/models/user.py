from sqlalchemy import Column, String, Boolean, DateTime, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.db.base_class import Base
import uuid

class User(Base):
    """Perfil público del usuario (almacén de perfiles)."""
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, index=True, nullable=False)
    display_name = Column(String, nullable=True)
    profile_image_url = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relaciones
    listings = relationship("Listing", back_populates="owner")
    received_messages = relationship("Message", foreign_keys="Message.recipient_id", back_populates="recipient")
    sent_messages = relationship("Message", foreign_keys="Message.sender_id", back_populates="sender")

    __table_args__ = (
        Index('idx_user_display_name', 'display_name'),
    )
