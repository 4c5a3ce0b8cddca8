from typing import Iterable, List, Optional
from sqlalchemy import and_, or_, select, update, delete, exists
from sqlalchemy.orm import Session, joinedload

from app.core.utils import utcnow
from app.models.message import Message
from app.models.message_hide import MessageHide
from app.repositories.base import insert_ignore
from app.services.conversations import ConversationKey

def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")

class MessageRepository:
    """Acceso al registro de mensajes. No hace commit: lo decide el servicio."""

    def __init__(self, db: Session):
        self.db = db

    def _with_profiles(self, stmt):
        return stmt.options(
            joinedload(Message.sender),
            joinedload(Message.recipient),
            joinedload(Message.listing),
        )

    def _visible_to(self, user_id: str):
        """Mensajes del usuario que no están borrados ni ocultos para él."""
        hidden = exists().where(
            and_(MessageHide.message_id == Message.id, MessageHide.user_id == user_id)
        )
        return and_(
            or_(Message.sender_id == user_id, Message.recipient_id == user_id),
            Message.is_deleted == False,  # noqa: E712
            ~hidden,
        )

    def _in_conversation(self, key: ConversationKey, user_id: str):
        """Filtro de los mensajes de una conversación vista por `user_id`."""
        clauses = [Message.listing_id == key.listing_id]
        other = key.other_participant_id
        if other is None:
            clauses.append(or_(Message.sender_id == user_id, Message.recipient_id == user_id))
        elif other == user_id:
            clauses.append(and_(Message.sender_id == user_id, Message.recipient_id == user_id))
        else:
            clauses.append(or_(
                and_(Message.sender_id == user_id, Message.recipient_id == other),
                and_(Message.sender_id == other, Message.recipient_id == user_id),
            ))
        return and_(*clauses)

    def get(self, message_id: str) -> Optional[Message]:
        stmt = self._with_profiles(select(Message).where(Message.id == message_id))
        return self.db.execute(stmt).scalar_one_or_none()

    def get_visible(self, message_id: str, user_id: str) -> Optional[Message]:
        stmt = self._with_profiles(
            select(Message).where(Message.id == message_id, self._visible_to(user_id))
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_user(self, user_id: str, search: Optional[str] = None) -> List[Message]:
        """Todos los mensajes visibles del usuario, del más reciente al más antiguo."""
        stmt = select(Message).where(self._visible_to(user_id))
        if search:
            stmt = stmt.where(Message.message_text.ilike(f"%{_escape_like(search)}%", escape="\\"))
        stmt = self._with_profiles(stmt).order_by(
            Message.created_at.desc(), Message.thread_order.desc()
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_conversation(
        self, key: ConversationKey, user_id: str, offset: int = 0, limit: Optional[int] = None
    ) -> List[Message]:
        """Mensajes de una conversación en orden de llegada."""
        stmt = self._with_profiles(
            select(Message)
            .where(self._visible_to(user_id), self._in_conversation(key, user_id))
            .order_by(Message.thread_order.asc(), Message.created_at.asc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def conversation_message_ids(self, key: ConversationKey, user_id: str) -> List[str]:
        stmt = select(Message.id).where(self._visible_to(user_id), self._in_conversation(key, user_id))
        return list(self.db.execute(stmt).scalars().all())

    def conversation_authors(self, key: ConversationKey, user_id: str) -> List[tuple]:
        """(id, sender_id) de todos los mensajes de la conversación, visibles o no."""
        stmt = select(Message.id, Message.sender_id).where(
            self._in_conversation(key, user_id),
            Message.is_deleted == False,  # noqa: E712
        )
        return [tuple(row) for row in self.db.execute(stmt).all()]

    def authors_of(self, message_ids: Iterable[str]) -> List[tuple]:
        stmt = select(Message.id, Message.sender_id).where(Message.id.in_(list(message_ids)))
        return [tuple(row) for row in self.db.execute(stmt).all()]

    def add(self, message: Message) -> Message:
        self.db.add(message)
        self.db.flush()
        return message

    def mark_read(self, criteria) -> int:
        stmt = (
            update(Message)
            .where(criteria, Message.is_read == False)  # noqa: E712
            .values(is_read=True, read_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount or 0

    def mark_conversation_read(self, key: ConversationKey, user_id: str) -> int:
        """
        Marca como leídos los mensajes que el usuario puede leer:
        en una auto-conversación los que él envió, en otra los que recibió.
        """
        base = and_(self._visible_to(user_id), Message.listing_id == key.listing_id)
        if key.other_participant_id is None:
            # Incluye los auto-mensajes: en ellos el destinatario es el autor
            reader = Message.recipient_id == user_id
        elif key.is_self_for(user_id):
            reader = and_(Message.sender_id == user_id, Message.recipient_id == user_id)
        else:
            reader = and_(
                Message.recipient_id == user_id,
                Message.sender_id == key.other_participant_id,
            )
        return self.mark_read(and_(base, reader))

    def mark_ids_read(self, message_ids: List[str], user_id: str) -> int:
        # El destinatario es el lector; en auto-mensajes coincide con el autor
        return self.mark_read(
            and_(Message.id.in_(message_ids), Message.recipient_id == user_id, self._visible_to(user_id))
        )

    def hide_for_user(self, message_ids: Iterable[str], user_id: str) -> int:
        count = 0
        for message_id in message_ids:
            insert_ignore(
                self.db,
                MessageHide,
                {"user_id": user_id, "message_id": message_id, "hidden_at": utcnow()},
                ["user_id", "message_id"],
            )
            count += 1
        return count

    def hard_delete(self, message_ids: List[str]) -> int:
        if not message_ids:
            return 0
        self.db.execute(
            delete(MessageHide)
            .where(MessageHide.message_id.in_(message_ids))
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(
            delete(Message)
            .where(Message.id.in_(message_ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
