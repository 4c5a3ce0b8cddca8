from typing import Optional, Set
from sqlalchemy import delete, inspect, select
from sqlalchemy.orm import Session
import logging

from app.core.errors import FeatureUnavailable
from app.core.utils import utcnow
from app.models.conversation_setting import ConversationSetting
from app.repositories.base import upsert
from app.services.conversations import ConversationKey

logger = logging.getLogger(__name__)

class ConversationSettingsRepository:
    """
    Capa de archivado por usuario. Es opcional: si la tabla no existe las
    escrituras fallan con FeatureUnavailable y las lecturas la ignoran.
    """

    def __init__(self, db: Session):
        self.db = db
        self._available: Optional[bool] = None

    def is_available(self) -> bool:
        # Se inspecciona la conexión de la sesión para no abrir otra transacción
        if self._available is None:
            self._available = inspect(self.db.connection()).has_table(ConversationSetting.__tablename__)
        return self._available

    def _require_available(self) -> None:
        if not self.is_available():
            raise FeatureUnavailable(
                "El archivado de conversaciones no está disponible todavía"
            )

    def archived_keys(self, user_id: str) -> Set[ConversationKey]:
        if not self.is_available():
            logger.warning("Tabla conversation_settings no disponible; se ignora el archivado")
            return set()

        rows = self.db.execute(
            select(ConversationSetting.listing_id, ConversationSetting.other_participant_id)
            .where(
                ConversationSetting.user_id == user_id,
                ConversationSetting.is_archived == True,  # noqa: E712
            )
        ).all()
        return {ConversationKey(listing_id, other_id) for listing_id, other_id in rows}

    def set_archived(self, user_id: str, key: ConversationKey, archived: bool) -> None:
        self._require_available()
        upsert(
            self.db,
            ConversationSetting,
            {
                "user_id": user_id,
                "listing_id": key.listing_id,
                "other_participant_id": key.other_participant_id,
                "is_archived": archived,
                "updated_at": utcnow(),
            },
            index_elements=["user_id", "listing_id", "other_participant_id"],
            update_fields=["is_archived", "updated_at"],
        )

    def delete_for(self, user_id: str, key: ConversationKey) -> None:
        if not self.is_available():
            return
        self.db.execute(
            delete(ConversationSetting)
            .where(
                ConversationSetting.user_id == user_id,
                ConversationSetting.listing_id == key.listing_id,
                ConversationSetting.other_participant_id == key.other_participant_id,
            )
            .execution_options(synchronize_session=False)
        )
