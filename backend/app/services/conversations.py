"""
Agregación de conversaciones.

Una conversación no se persiste: se deriva en cada petición plegando el
registro de mensajes del usuario en una entrada por (anuncio, contraparte).
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set
import uuid

from app.core.errors import ValidationFailed
from app.core.utils import ensure_utc, is_strictly_newer

KEY_SEPARATOR = ":"

@dataclass(frozen=True)
class ConversationKey:
    """
    Identidad de una conversación desde el punto de vista de un usuario.

    En una auto-conversación `other_participant_id` es el propio usuario.
    `other_participant_id` puede faltar cuando el cliente solo indica el anuncio.
    """
    listing_id: str
    other_participant_id: Optional[str] = None

    def __str__(self) -> str:
        if self.other_participant_id is None:
            return self.listing_id
        return f"{self.listing_id}{KEY_SEPARATOR}{self.other_participant_id}"

    @classmethod
    def for_message(cls, message: Any, user_id: str) -> "ConversationKey":
        if message.sender_id == message.recipient_id:
            return cls(message.listing_id, message.sender_id)
        other = message.recipient_id if message.sender_id == user_id else message.sender_id
        return cls(message.listing_id, other)

    @classmethod
    def parse(cls, raw: str, require_participant: bool = False, field_name: str = "conversation_id") -> "ConversationKey":
        """Interpreta "<listing_uuid>:<participant_uuid>" o "<listing_uuid>"."""
        parts = (raw or "").strip().split(KEY_SEPARATOR)
        if len(parts) > 2 or not parts[0]:
            raise ValidationFailed.for_field(field_name, f"Clave de conversación inválida: {raw!r}")

        try:
            normalized = [str(uuid.UUID(p)) for p in parts]
        except ValueError:
            raise ValidationFailed.for_field(field_name, f"Clave de conversación inválida: {raw!r}")

        if len(normalized) == 1:
            if require_participant:
                raise ValidationFailed.for_field(
                    field_name, f"La clave {raw!r} debe incluir el otro participante"
                )
            return cls(normalized[0])
        return cls(normalized[0], normalized[1])

    def is_self_for(self, user_id: str) -> bool:
        return self.other_participant_id == user_id

@dataclass
class Conversation:
    key: ConversationKey
    user_id: str
    last_message: Any
    is_archived: bool = False
    unread_count: int = 0
    created_at: Optional[datetime] = None
    other_participant: Any = None

    @property
    def id(self) -> str:
        return str(self.key)

    @property
    def listing_id(self) -> str:
        return self.key.listing_id

    @property
    def other_participant_id(self) -> str:
        return self.key.other_participant_id

    @property
    def is_self_conversation(self) -> bool:
        return self.key.is_self_for(self.user_id)

    @property
    def participants(self) -> List[str]:
        if self.is_self_conversation:
            return [self.user_id]
        return [self.user_id, self.key.other_participant_id]

    @property
    def listing(self) -> Any:
        return getattr(self.last_message, "listing", None)

    @property
    def updated_at(self) -> Optional[datetime]:
        return self.last_message.created_at

def _counterpart_profile(message: Any, user_id: str) -> Any:
    if message.sender_id == message.recipient_id or message.recipient_id == user_id:
        return getattr(message, "sender", None)
    return getattr(message, "recipient", None)

def _counts_as_unread(message: Any, user_id: str) -> bool:
    if message.is_read:
        return False
    if message.sender_id == message.recipient_id:
        # Auto-conversación: el autor es también el lector
        return message.sender_id == user_id
    return message.recipient_id == user_id

def aggregate_conversations(
    messages: Iterable[Any],
    user_id: str,
    archived_keys: Optional[Set[ConversationKey]] = None,
    include_archived: bool = False,
) -> List[Conversation]:
    """
    Pliega mensajes (ordenados del más reciente al más antiguo) en conversaciones.

    Los mensajes en los que el usuario no participa se ignoran. El resultado
    se ordena por la fecha del último mensaje, descendente.
    """
    archived_keys = archived_keys or set()
    conversations: Dict[ConversationKey, Conversation] = {}

    for message in messages:
        if user_id not in (message.sender_id, message.recipient_id):
            continue

        key = ConversationKey.for_message(message, user_id)
        is_archived = key in archived_keys
        if is_archived and not include_archived:
            continue

        conversation = conversations.get(key)
        if conversation is None:
            conversation = Conversation(
                key=key,
                user_id=user_id,
                last_message=message,
                is_archived=is_archived,
                created_at=message.created_at,
                other_participant=_counterpart_profile(message, user_id),
            )
            conversations[key] = conversation
        else:
            if is_strictly_newer(message.created_at, conversation.last_message.created_at):
                conversation.last_message = message
            if is_strictly_newer(conversation.created_at, message.created_at):
                conversation.created_at = message.created_at
            if conversation.other_participant is None:
                conversation.other_participant = _counterpart_profile(message, user_id)

        if _counts_as_unread(message, user_id):
            conversation.unread_count += 1

    # sorted es estable: en empate se conserva el orden de recencia de entrada
    return sorted(
        conversations.values(),
        key=lambda c: ensure_utc(c.last_message.created_at),
        reverse=True,
    )

def paginate(items: List[Any], offset: int, limit: int) -> List[Any]:
    return items[offset:offset + limit]
