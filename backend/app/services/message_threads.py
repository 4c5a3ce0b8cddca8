"""
Hilos de mensajes: asignación de identidad de hilo al crear y
reconstrucción del árbol de respuestas al leer.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional
import logging

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.core.errors import NotFound, ValidationFailed
from app.core.utils import ensure_utc
from app.models.message import Message
from app.models.thread_counter import ListingThreadCounter
from app.repositories.base import insert_ignore
from app.repositories.message_repository import MessageRepository

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

@dataclass(frozen=True)
class ThreadPosition:
    thread_id: str
    thread_depth: int
    thread_order: int
    parent_message_id: Optional[str] = None

class ThreadLinker:
    """Calcula thread_id, thread_depth y thread_order para un mensaje nuevo."""

    def __init__(self, db: Session):
        self.db = db

    def next_order(self, listing_id: str) -> int:
        """
        Reserva el siguiente thread_order del anuncio.

        El incremento es un único UPDATE sobre la fila del contador, que queda
        bloqueada hasta el commit de la transacción que envía el mensaje.
        """
        self._ensure_counter(listing_id)
        return self.db.execute(
            update(ListingThreadCounter)
            .where(ListingThreadCounter.listing_id == listing_id)
            .values(last_order=ListingThreadCounter.last_order + 1)
            .returning(ListingThreadCounter.last_order)
        ).scalar_one()

    def _ensure_counter(self, listing_id: str) -> None:
        exists = self.db.execute(
            select(ListingThreadCounter.listing_id)
            .where(ListingThreadCounter.listing_id == listing_id)
        ).first()
        if exists:
            return

        # Sembrar desde el máximo existente para datos previos al contador
        current_max = self.db.execute(
            select(func.coalesce(func.max(Message.thread_order), 0))
            .where(Message.listing_id == listing_id)
        ).scalar_one()
        insert_ignore(
            self.db,
            ListingThreadCounter,
            {"listing_id": listing_id, "last_order": current_max},
            ["listing_id"],
        )
        logger.debug(f"Contador de hilos para {listing_id} inicializado en {current_max}")

    def link(
        self,
        message_id: str,
        listing_id: str,
        sender_id: str,
        recipient_id: str,
        parent_message_id: Optional[str] = None,
        requested_thread_id: Optional[str] = None,
    ) -> ThreadPosition:
        if parent_message_id is None:
            if requested_thread_id is not None and requested_thread_id != message_id:
                raise ValidationFailed.for_field(
                    "thread_id", "Un mensaje raíz no puede unirse a un hilo existente"
                )
            return ThreadPosition(
                thread_id=message_id,
                thread_depth=0,
                thread_order=self.next_order(listing_id),
            )

        # El padre debe ser visible para el remitente
        parent = MessageRepository(self.db).get_visible(parent_message_id, sender_id)
        if parent is None:
            raise NotFound("Mensaje padre no encontrado")
        if parent.listing_id != listing_id:
            raise ValidationFailed.for_field(
                "parent_message_id", "El mensaje padre pertenece a otro anuncio"
            )
        if {parent.sender_id, parent.recipient_id} != {sender_id, recipient_id}:
            logger.warning(
                f"Respuesta de {sender_id} a {parent.id} fuera de su conversación rechazada"
            )
            raise NotFound("Mensaje padre no encontrado")

        # Raíces antiguas pueden no tener thread_id asignado
        thread_id = parent.thread_id or parent.id
        if requested_thread_id is not None and requested_thread_id != thread_id:
            raise ValidationFailed.for_field(
                "thread_id", "thread_id no coincide con el hilo del mensaje padre"
            )

        return ThreadPosition(
            thread_id=thread_id,
            thread_depth=(parent.thread_depth or 0) + 1,
            thread_order=self.next_order(listing_id),
            parent_message_id=parent.id,
        )

def _sort_key(node: Mapping[str, Any]):
    created_at = ensure_utc(node.get("created_at")) or _EPOCH
    return (node.get("thread_order") or 0, created_at)

def build_message_threads(messages: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """
    Construye el bosque de hilos a partir de una lista plana de mensajes.

    Cada nodo es una copia del mensaje con `replies`, `reply_count`,
    `has_replies`, `thread_root` y `depth_level`. Una respuesta cuyo padre no
    está en la lista se descarta (no se promueve a raíz). Función pura.
    """
    nodes: Dict[str, Dict[str, Any]] = {}
    for message in messages:
        nodes[message["id"]] = {
            **message,
            "replies": [],
            "reply_count": 0,
            "has_replies": False,
            "thread_root": not message.get("parent_message_id"),
            "depth_level": message.get("thread_depth") or 0,
        }

    roots: List[Dict[str, Any]] = []
    for message in messages:
        node = nodes[message["id"]]
        parent_id = message.get("parent_message_id")
        if not parent_id:
            roots.append(node)
            continue

        parent = nodes.get(parent_id)
        if parent is not None:
            parent["replies"].append(node)

    for node in nodes.values():
        node["replies"].sort(key=_sort_key)
        node["reply_count"] = len(node["replies"])
        node["has_replies"] = node["reply_count"] > 0

    roots.sort(key=_sort_key)
    return roots
