from sqlalchemy import Column, Integer, String, ForeignKey
from app.db.base_class import Base

class ListingThreadCounter(Base):
    """Secuencia de thread_order por anuncio; nunca retrocede aunque se borren mensajes."""
    __tablename__ = "listing_thread_counters"

    listing_id = Column(String, ForeignKey("listings.id", ondelete="CASCADE"), primary_key=True)
    last_order = Column(Integer, nullable=False, default=0)
