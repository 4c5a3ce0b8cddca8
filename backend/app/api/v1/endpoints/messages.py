from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Any, Optional, Union

from app.api import deps
from app.core.config import settings
from app.models.user import User
from app.schemas.conversation import (
    ArchiveRequest,
    ConversationListResponse,
    ConversationResponse,
    ConversationThreadResponse,
    DeleteRequest,
    DeletedCountResponse,
)
from app.schemas.message import (
    MarkReadRequest,
    MessageCreate,
    MessageResponse,
    ReplyCreate,
    UnreadCountResponse,
    UpdatedCountResponse,
)
from app.services.message_service import MessageService

router = APIRouter()

@router.get("/", response_model=Union[ConversationThreadResponse, ConversationListResponse])
def get_messages(
    *,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_user),
    conversation_id: Optional[str] = Query(
        None, description="Clave de conversación: '<listing_id>:<otro_usuario_id>' o solo '<listing_id>'"
    ),
    include_archived: bool = Query(False, description="Incluir conversaciones archivadas"),
    search: Optional[str] = Query(None, description="Filtrar por texto del mensaje"),
    limit: int = Query(
        settings.MESSAGES_DEFAULT_PAGE_SIZE, ge=1, le=settings.MESSAGES_MAX_PAGE_SIZE,
        description="Número máximo de resultados",
    ),
    offset: int = Query(0, ge=0, description="Número de resultados a omitir"),
) -> Any:
    """
    Obtener las conversaciones del usuario actual o, con `conversation_id`,
    los mensajes de una conversación en forma plana y en hilos.
    """
    service = MessageService(db)

    if conversation_id:
        key, messages, threaded = service.get_conversation(
            current_user, conversation_id, offset=offset, limit=limit
        )
        return ConversationThreadResponse(
            conversation_id=str(key),
            messages=[MessageResponse.model_validate(m) for m in messages],
            threaded_messages=threaded,
        )

    page = service.list_conversations(
        current_user,
        include_archived=include_archived,
        search=search,
        offset=offset,
        limit=limit,
    )
    return ConversationListResponse(
        conversations=[ConversationResponse.model_validate(c) for c in page.conversations],
        total=page.total,
    )

@router.post("/", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def create_message(
    *,
    db: Session = Depends(deps.get_db),
    message_in: MessageCreate,
    current_user: User = Depends(deps.get_current_user),
) -> Any:
    """
    Enviar un mensaje sobre un anuncio.

    Si se indica `parent_message_id` el mensaje se encadena en el hilo del padre.
    """
    return MessageService(db).send_message(current_user, message_in)

@router.get("/unread-count", response_model=UnreadCountResponse)
def get_unread_count(
    *,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_user),
) -> Any:
    """
    Total de mensajes no leídos en las conversaciones no archivadas.
    """
    return UnreadCountResponse(unread_count=MessageService(db).unread_count(current_user))

@router.patch("/read", response_model=UpdatedCountResponse)
def mark_messages_as_read(
    *,
    db: Session = Depends(deps.get_db),
    read_in: MarkReadRequest,
    current_user: User = Depends(deps.get_current_user),
) -> Any:
    """
    Marcar como leída una conversación completa o una lista de mensajes.
    """
    updated = MessageService(db).mark_read(
        current_user,
        conversation_id=read_in.conversation_id,
        message_ids=read_in.message_ids,
    )
    return UpdatedCountResponse(message="Mensajes marcados como leídos", updated_count=updated)

@router.patch("/archive", response_model=UpdatedCountResponse)
def archive_conversations(
    *,
    db: Session = Depends(deps.get_db),
    archive_in: ArchiveRequest,
    current_user: User = Depends(deps.get_current_user),
) -> Any:
    """
    Archivar o desarchivar conversaciones. Solo afecta a la vista del usuario actual.
    """
    updated = MessageService(db).set_archived(
        current_user, archive_in.conversation_ids, archive_in.archive
    )
    action = "archivadas" if archive_in.archive else "desarchivadas"
    return UpdatedCountResponse(message=f"Conversaciones {action}", updated_count=updated)

@router.delete("/", response_model=DeletedCountResponse)
def delete_messages(
    *,
    db: Session = Depends(deps.get_db),
    delete_in: DeleteRequest = Body(...),
    current_user: User = Depends(deps.get_current_user),
) -> Any:
    """
    Eliminar conversaciones o mensajes.

    Con `soft_delete` (por defecto) solo se ocultan para el usuario actual;
    el borrado definitivo exige ser el autor de todos los mensajes afectados.
    """
    deleted = MessageService(db).delete(
        current_user,
        conversation_ids=delete_in.conversation_ids,
        message_ids=delete_in.message_ids,
        soft_delete=delete_in.soft_delete,
    )
    return DeletedCountResponse(message="Elementos eliminados", deleted_count=deleted)

@router.post("/{message_id}/replies", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def reply_to_message(
    *,
    db: Session = Depends(deps.get_db),
    message_id: str,
    reply_in: ReplyCreate,
    current_user: User = Depends(deps.get_current_user),
) -> Any:
    """
    Responder a un mensaje. El anuncio y el destinatario se toman del mensaje padre.
    """
    return MessageService(db).reply(current_user, message_id, reply_in)
