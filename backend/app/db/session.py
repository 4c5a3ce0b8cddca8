from contextlib import contextmanager
from typing import Iterator
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from app.core.config import settings
from app.core.errors import MessagingError, StorageError
import logging
import asyncio

logger = logging.getLogger(__name__)

# Inicialización de engine con None
engine = None
SessionLocal = None

# Control de inicialización
_is_initialized = False
_initialization_lock = asyncio.Lock()

def build_engine(url: str, echo: bool = False):
    """Crea el engine con opciones de pool adecuadas para el motor."""
    url = str(url)
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})

    return create_engine(
        url,
        echo=echo,
        pool_size=10,
        max_overflow=20,
        pool_timeout=60,
        pool_recycle=1800,  # Reciclar conexiones cada 30 minutos
        pool_pre_ping=True,
    )

def _connect() -> None:
    global engine, SessionLocal, _is_initialized

    engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

    # Probar la conexión
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))

    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )
    _is_initialized = True

async def init_db_connection(max_retries=5, initial_delay=1):
    """Inicializa la conexión a la base de datos con reintentos."""
    if _is_initialized:
        return True

    # Usar lock para evitar inicializaciones concurrentes
    async with _initialization_lock:
        if _is_initialized:
            return True

        retry_count = 0
        last_exception = None

        while retry_count < max_retries:
            try:
                _connect()
                logger.info(f"Conexión a la base de datos establecida (intento {retry_count + 1})")
                return True
            except SQLAlchemyError as e:
                retry_count += 1
                last_exception = e
                wait_time = initial_delay * (2 ** (retry_count - 1))  # Exponential backoff

                logger.warning(f"Intento {retry_count}/{max_retries} fallido para conectar a la base de datos: {e}")
                if retry_count < max_retries:
                    logger.warning(f"Reintentando en {wait_time} segundos...")
                    await asyncio.sleep(wait_time)

        logger.error(f"No se pudo conectar a la base de datos después de {max_retries} intentos: {last_exception}")
        return False

def init_db_connection_sync() -> bool:
    """Inicialización sin reintentos para dependencias síncronas."""
    if _is_initialized:
        return True
    try:
        _connect()
        logger.info("Conexión a base de datos inicializada de forma sincrónica")
        return True
    except SQLAlchemyError as e:
        logger.error(f"Error al inicializar conexión de forma sincrónica: {e}")
        return False

@contextmanager
def transaction_scope(db: Session, commit: bool = True) -> Iterator[Session]:
    """
    Proporciona un contexto transaccional.

    Los errores del almacenamiento deshacen toda la operación y se convierten
    en StorageError; los errores de dominio se propagan tal cual.
    """
    try:
        yield db
        if commit:
            db.commit()
    except MessagingError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error de almacenamiento en transacción: {str(e)}")
        raise StorageError("Error del almacenamiento de mensajes, inténtalo de nuevo") from e
