from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
import logging
from contextlib import asynccontextmanager

from app.api.api import api_router
from app.core.config import settings
from app.core.errors import MessagingError, StorageError, Unauthorized
from app.middleware.security import setup_security_middleware

# Registra la app de Celery para que .delay() use el broker configurado
from app.worker import celery  # noqa: F401

# Configurar logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

def create_tables() -> None:
    """Crea las tablas que falten. Nunca elimina datos existentes."""
    from app.db import session as db_session
    from app.db.base import Base

    Base.metadata.create_all(bind=db_session.engine)
    logger.info("Tablas de base de datos creadas/verificadas")

@asynccontextmanager
async def lifespan(app: FastAPI):
    from app.db import session as db_session

    logger.info(f"Iniciando la aplicación en entorno: {settings.ENVIRONMENT}")
    if await db_session.init_db_connection(max_retries=5, initial_delay=2):
        create_tables()
    else:
        logger.error("No se pudo inicializar la base de datos; las peticiones responderán 503")

    yield

    logger.info("Deteniendo la aplicación...")
    if db_session.engine is not None:
        db_session.engine.dispose()
    logger.info("Conexiones a base de datos cerradas")

# Crear la aplicación FastAPI
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="API de mensajería entre compradores y vendedores de autos",
    version="0.1.0",
    openapi_url=f"{settings.API_V1_STR}/openapi.json" if not settings.ENVIRONMENT == "production" else None,
    docs_url=None,  # Desactivamos endpoint de docs por defecto
    redoc_url=None,
    lifespan=lifespan,
)

@app.exception_handler(MessagingError)
async def messaging_error_handler(request: Request, exc: MessagingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    # Errores del almacenamiento que escapan de transaction_scope
    logger.error(f"{request.method} {request.url.path} -> error de almacenamiento: {str(exc)}")
    error = StorageError("Error del almacenamiento de mensajes, inténtalo de nuevo")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [
        {"loc": list(error.get("loc", [])), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({"error": "validation", "detail": "Solicitud inválida", "fields": fields}),
    )

# Configurar middlewares de seguridad
setup_security_middleware(app)

# Incluir routers
app.include_router(api_router, prefix=settings.API_V1_STR)

@app.get("/health", include_in_schema=False)
def health_check():
    return {"status": "ok", "environment": settings.ENVIRONMENT}

# Documentación Swagger servida desde CDN
@app.get("/docs", include_in_schema=False)
async def custom_swagger_ui_html():
    return get_swagger_ui_html(
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        title=f"{settings.PROJECT_NAME} - API Documentation",
        swagger_js_url="https://cdn.jsdelivr.net/npm/swagger-ui-dist@5.12.0/swagger-ui-bundle.js",
        swagger_css_url="https://cdn.jsdelivr.net/npm/swagger-ui-dist@5.12.0/swagger-ui.css",
        swagger_ui_parameters={"persistAuthorization": True},
    )
