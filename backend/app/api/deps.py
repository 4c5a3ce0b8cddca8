#backend/app/api/deps.py
from typing import Generator, Optional
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from app.core.errors import StorageError, Unauthorized
from app.core.security import decode_jwt_token
from app.db.session import transaction_scope
from app.models.user import User
from app.core.config import settings
import logging

logger = logging.getLogger(__name__)

# El token lo emite el servicio de identidad; aquí solo se valida
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/token", auto_error=False)

def get_db() -> Generator[Session, None, None]:
    """
    Dependency para obtener una sesión de base de datos sincrónica.
    """
    # Importamos aquí para leer el estado actual de la inicialización
    from app.db import session as db_session

    if not db_session._is_initialized:
        logger.warning("Conexión a base de datos no inicializada en get_db, inicializando...")
        if not db_session.init_db_connection_sync():
            raise StorageError("No se pudo conectar a la base de datos")

    if db_session.SessionLocal is None:
        logger.error("SessionLocal es None a pesar de la inicialización")
        raise StorageError("Error de configuración de base de datos")

    db = db_session.SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_current_user(
    db: Session = Depends(get_db),
    token: Optional[str] = Depends(oauth2_scheme),
) -> User:
    """
    Dependency para obtener el usuario actual autenticado.
    """
    if not token:
        raise Unauthorized("No autenticado")

    payload = decode_jwt_token(token)
    if not payload:
        raise Unauthorized("No se pudo validar las credenciales")

    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("No se pudo validar las credenciales")

    with transaction_scope(db, commit=False):
        user = db.get(User, user_id)
    if not user:
        raise Unauthorized("Usuario no encontrado")

    if not user.is_active:
        logger.warning(f"Acceso rechazado para el usuario inactivo {user_id}")
        raise Unauthorized("Usuario inactivo")

    return user
