from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Float, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.db.base_class import Base
import uuid

class Listing(Base):
    """Anuncio de vehículo. La mensajería solo lo lee para validar y mostrar."""
    __tablename__ = "listings"

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False)  # vendedor
    title = Column(String, nullable=False)
    make = Column(String, nullable=True)
    model = Column(String, nullable=True)
    year = Column(Integer, nullable=True)
    price = Column(Float, nullable=True)
    status = Column(String, default="active")  # active, sold, unavailable
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relaciones
    owner = relationship("User", back_populates="listings")
    messages = relationship("Message", back_populates="listing")

    __table_args__ = (
        Index('idx_listing_user_status', 'user_id', 'status'),
    )

    @property
    def label(self) -> str:
        """Texto corto para notificaciones: "2019 Toyota Corolla" o el título."""
        parts = [str(p) for p in (self.year, self.make, self.model) if p]
        return " ".join(parts) if parts else self.title
