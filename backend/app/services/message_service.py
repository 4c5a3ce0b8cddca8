"""
Operaciones del ciclo de vida de los mensajes: enviar, responder, leer,
archivar y borrar. Cada operación valida los permisos del usuario contra el
registro de mensajes y se ejecuta en una sola transacción.
"""
from dataclasses import dataclass
from typing import List, Optional, Tuple
import logging
import uuid

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import Forbidden, NotFound, ValidationFailed
from app.db.session import transaction_scope
from app.models.listing import Listing
from app.models.message import Message
from app.models.user import User
from app.repositories.conversation_settings_repository import ConversationSettingsRepository
from app.repositories.message_repository import MessageRepository
from app.schemas.message import MessageCreate, ReplyCreate, MessageResponse
from app.services.conversations import (
    Conversation, ConversationKey, aggregate_conversations, paginate,
)
from app.services.message_threads import ThreadLinker, build_message_threads
from app.tasks.notifications import notify_new_message_task

logger = logging.getLogger(__name__)

@dataclass
class ConversationPage:
    conversations: List[Conversation]
    total: int

class MessageService:
    def __init__(self, db: Session):
        self.db = db
        self.messages = MessageRepository(db)
        self.settings_store = ConversationSettingsRepository(db)

    # Lectura

    def _visible_conversations(
        self, user: User, include_archived: bool = False, search: Optional[str] = None
    ) -> List[Conversation]:
        with transaction_scope(self.db, commit=False):
            messages = self.messages.list_for_user(user.id, search=search)
            archived = self.settings_store.archived_keys(user.id)

        return aggregate_conversations(
            messages, user.id, archived_keys=archived, include_archived=include_archived
        )

    def list_conversations(
        self,
        user: User,
        include_archived: bool = False,
        search: Optional[str] = None,
        offset: int = 0,
        limit: int = settings.MESSAGES_DEFAULT_PAGE_SIZE,
    ) -> ConversationPage:
        conversations = self._visible_conversations(user, include_archived, search)
        return ConversationPage(paginate(conversations, offset, limit), len(conversations))

    def get_conversation(
        self, user: User, conversation_id: str, offset: int = 0, limit: Optional[int] = None
    ) -> Tuple[ConversationKey, List[Message], List[dict]]:
        key = ConversationKey.parse(conversation_id)
        with transaction_scope(self.db, commit=False):
            messages = self.messages.list_conversation(key, user.id, offset=offset, limit=limit)

        flat = [MessageResponse.model_validate(m).model_dump() for m in messages]
        return key, messages, build_message_threads(flat)

    def unread_count(self, user: User) -> int:
        """No leídos en todas las conversaciones no archivadas."""
        return sum(c.unread_count for c in self._visible_conversations(user))

    # Envío

    def send_message(self, sender: User, message_in: MessageCreate) -> Message:
        with transaction_scope(self.db):
            recipient = self.db.get(User, message_in.recipient_id)
            if recipient is None or not recipient.is_active:
                raise NotFound("Destinatario no encontrado")

            listing = self.db.get(Listing, message_in.listing_id)
            if listing is None:
                raise NotFound("Anuncio no encontrado")

            message_id = str(uuid.uuid4())
            position = ThreadLinker(self.db).link(
                message_id,
                listing.id,
                sender.id,
                recipient.id,
                parent_message_id=message_in.parent_message_id,
                requested_thread_id=message_in.thread_id,
            )

            message = self.messages.add(Message(
                id=message_id,
                listing_id=listing.id,
                sender_id=sender.id,
                recipient_id=recipient.id,
                message_text=message_in.message_text,
                message_type=message_in.message_type,
                parent_message_id=position.parent_message_id,
                thread_id=position.thread_id,
                thread_depth=position.thread_depth,
                thread_order=position.thread_order,
            ))

        logger.info(
            f"Mensaje {message.id} enviado por {sender.id} sobre {listing.id} "
            f"(hilo {message.thread_id}, orden {message.thread_order})"
        )
        self._dispatch_notification(message, sender, listing)

        with transaction_scope(self.db, commit=False):
            return self.messages.get(message.id)

    def reply(self, sender: User, parent_message_id: str, reply_in: ReplyCreate) -> Message:
        """Responde a un mensaje derivando anuncio y destinatario del mensaje padre."""
        with transaction_scope(self.db, commit=False):
            parent = self.messages.get_visible(parent_message_id, sender.id)
        if parent is None:
            raise NotFound("Mensaje padre no encontrado")

        if parent.is_self_message:
            recipient_id = sender.id
        elif parent.sender_id == sender.id:
            recipient_id = parent.recipient_id
        else:
            recipient_id = parent.sender_id

        return self.send_message(sender, MessageCreate(
            listing_id=parent.listing_id,
            recipient_id=recipient_id,
            message_text=reply_in.message_text,
            message_type=reply_in.message_type,
            parent_message_id=parent.id,
        ))

    def _dispatch_notification(self, message: Message, sender: User, listing: Listing) -> None:
        """Entrega la notificación a Celery. Un fallo aquí nunca invalida el envío."""
        if not settings.NOTIFICATIONS_ENABLED:
            return
        conversation_id = str(ConversationKey(message.listing_id, sender.id))
        try:
            notify_new_message_task.delay(
                message.recipient_id,
                message.id,
                conversation_id,
                sender.display_name,
                listing.label,
                message.parent_message_id is not None,
            )
        except Exception as e:
            logger.error(f"No se pudo encolar la notificación del mensaje {message.id}: {str(e)}")

    # Lectura de estado

    def mark_read(
        self, user: User, conversation_id: Optional[str] = None, message_ids: Optional[List[str]] = None
    ) -> int:
        if conversation_id:
            key = ConversationKey.parse(conversation_id)
            with transaction_scope(self.db):
                updated = self.messages.mark_conversation_read(key, user.id)
            logger.info(f"Conversación {key} marcada como leída por {user.id}: {updated} mensajes")
            return updated

        if message_ids:
            with transaction_scope(self.db):
                updated = self.messages.mark_ids_read(message_ids, user.id)
            return updated

        raise ValidationFailed("Debes indicar conversation_id o message_ids")

    # Archivado

    def set_archived(self, user: User, conversation_ids: List[str], archive: bool) -> int:
        keys = [
            ConversationKey.parse(raw, require_participant=True, field_name="conversation_ids")
            for raw in conversation_ids
        ]
        with transaction_scope(self.db):
            for key in keys:
                self.settings_store.set_archived(user.id, key, archive)

        logger.info(f"{len(keys)} conversaciones {'archivadas' if archive else 'desarchivadas'} por {user.id}")
        return len(keys)

    # Borrado

    def delete(
        self,
        user: User,
        conversation_ids: Optional[List[str]] = None,
        message_ids: Optional[List[str]] = None,
        soft_delete: bool = True,
    ) -> int:
        """
        Borra conversaciones y/o mensajes en una sola transacción.

        El borrado suave oculta los mensajes solo para `user`. El definitivo
        exige que `user` sea autor de todos los mensajes afectados: si alguno
        es ajeno no se borra nada.
        """
        keys = [
            ConversationKey.parse(raw, require_participant=True, field_name="conversation_ids")
            for raw in conversation_ids or []
        ]
        message_ids = list(message_ids or [])
        if not keys and not message_ids:
            raise ValidationFailed("Debes indicar conversation_ids o message_ids")

        with transaction_scope(self.db):
            if soft_delete:
                deleted = self._hide_conversations(user, keys) + self._hide_messages(user, message_ids)
            else:
                deleted = self._purge(user, keys, message_ids)

        logger.info(
            f"Borrado {'suave' if soft_delete else 'definitivo'} por {user.id}: "
            f"{len(keys)} conversaciones, {len(message_ids)} mensajes"
        )
        return deleted

    def _hide_conversations(self, user: User, keys: List[ConversationKey]) -> int:
        for key in keys:
            ids = self.messages.conversation_message_ids(key, user.id)
            self.messages.hide_for_user(ids, user.id)
            self.settings_store.delete_for(user.id, key)
        return len(keys)

    def _hide_messages(self, user: User, message_ids: List[str]) -> int:
        visible = [
            message_id for message_id in message_ids
            if self.messages.get_visible(message_id, user.id) is not None
        ]
        return self.messages.hide_for_user(visible, user.id)

    def _purge(self, user: User, keys: List[ConversationKey], message_ids: List[str]) -> int:
        authors = []
        for key in keys:
            authors.extend(self.messages.conversation_authors(key, user.id))
        loose = self.messages.authors_of(message_ids)
        self._require_authorship(authors + loose, user)

        self.messages.hard_delete(list(dict.fromkeys(m_id for m_id, _ in authors + loose)))
        for key in keys:
            self.settings_store.delete_for(user.id, key)
        return len(keys) + len(loose)

    @staticmethod
    def _require_authorship(authors: List[tuple], user: User) -> None:
        foreign = [message_id for message_id, sender_id in authors if sender_id != user.id]
        if foreign:
            logger.warning(f"Borrado definitivo rechazado para {user.id}: {len(foreign)} mensajes ajenos")
            raise Forbidden("No puedes eliminar mensajes enviados por otros usuarios")
