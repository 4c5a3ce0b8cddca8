# app/tasks/notifications.py
from celery import shared_task
import logging
from typing import Optional
from sqlalchemy.orm import Session
from app.db.session import build_engine
from app.core.config import settings
from app.models.notification import InAppNotification

logger = logging.getLogger(__name__)

_task_engine = None

# Conexión a base de datos para tareas de Celery
def get_db_session() -> Session:
    global _task_engine
    if _task_engine is None:
        _task_engine = build_engine(settings.DATABASE_URL)
    return Session(bind=_task_engine, autoflush=False, expire_on_commit=False)

def build_message_notification(
    recipient_id: str,
    message_id: str,
    conversation_id: str,
    sender_name: str,
    listing_label: str,
    is_reply: bool,
) -> InAppNotification:
    """Construye la notificación in-app para un mensaje nuevo o una respuesta"""
    if is_reply:
        title = f"{sender_name} respondió a tu mensaje"
    else:
        title = f"Nuevo mensaje de {sender_name}"

    return InAppNotification(
        user_id=recipient_id,
        type="reply" if is_reply else "message",
        title=title,
        message=f"Mensaje sobre {listing_label}",
        action_url=f"/messages?conversation={conversation_id}",
        action_label="Ver mensaje",
        priority="medium",
        icon="reply" if is_reply else "message",
        related_entity_id=message_id,
        related_entity_type="message",
    )

@shared_task(bind=True, max_retries=5, name="app.tasks.notifications.notify_new_message_task")
def notify_new_message_task(self, recipient_id: str, message_id: str, conversation_id: str,
                            sender_name: Optional[str], listing_label: str, is_reply: bool):
    """
    Tarea Celery que registra la notificación in-app del destinatario.
    Reintenta con backoff exponencial si el almacenamiento falla.
    """
    db = get_db_session()
    try:
        notification = build_message_notification(
            recipient_id,
            message_id,
            conversation_id,
            sender_name or "un usuario",
            listing_label,
            is_reply,
        )
        db.add(notification)
        db.commit()
        logger.info(f"Notificación {notification.id} creada para {recipient_id}")
        return notification.id

    except Exception as e:
        db.rollback()
        logger.error(f"Error al crear notificación de mensaje {message_id}: {str(e)}")
        retry_delay = 60 * (2 ** self.request.retries)  # 60s, 120s, 240s, etc.
        raise self.retry(exc=e, countdown=retry_delay)
    finally:
        db.close()
