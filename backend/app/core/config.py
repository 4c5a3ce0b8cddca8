import secrets
from typing import Any, Dict, List, Optional, Union
from pydantic import AnyHttpUrl, PostgresDsn, field_validator, ValidationInfo
from pydantic_settings import BaseSettings, SettingsConfigDict
import logging

logger = logging.getLogger(__name__)

class EnvironmentSettings(BaseSettings):
    """Configuración básica de entorno"""
    # Entorno de ejecución
    ENVIRONMENT: str = "development"

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v):
        allowed = ["development", "testing", "staging", "production"]
        if v.lower() not in allowed:
            raise ValueError(f"Entorno debe ser uno de: {', '.join(allowed)}")
        return v.lower()

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

# Cargar el entorno primero
env = EnvironmentSettings().ENVIRONMENT

# Mapeo de archivos de entorno
env_files = {
    "development": [".env.development", ".env"],
    "testing": [".env.testing", ".env"],
    "staging": [".env.staging", ".env"],
    "production": [".env.production", ".env"],
}

class Settings(BaseSettings):
    # API
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Mercado de Autos - Mensajería"
    DEBUG: bool = False

    # Entorno
    ENVIRONMENT: str = env

    # JWT (los tokens los emite el proveedor de identidad; aquí solo se verifican)
    SECRET_KEY: str = ""
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7  # 7 días

    @field_validator("SECRET_KEY", mode="before")
    @classmethod
    def validate_secret_key(cls, v):
        if not v or len(v) < 32:
            if env == "production":
                raise ValueError("SECRET_KEY debe tener al menos 32 caracteres en producción")
            # En desarrollo, generar una clave automáticamente
            logger.warning("SECRET_KEY no configurada o insegura, generando automáticamente")
            return secrets.token_urlsafe(32)
        return v

    # CORS
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Base de datos
    POSTGRES_SERVER: str = "db"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: Optional[str] = None
    POSTGRES_DB: str = "marketplace"
    DATABASE_URL: Optional[str] = None

    @field_validator("POSTGRES_PASSWORD", mode="before")
    @classmethod
    def validate_db_password(cls, v):
        if env == "production" and (not v or len(v) < 12):
            raise ValueError("POSTGRES_PASSWORD debe tener al menos 12 caracteres en producción")
        return v

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str], info: ValidationInfo) -> Any:
        if isinstance(v, str) and v:
            return v

        values = info.data
        if not values.get("POSTGRES_PASSWORD"):
            if env == "production":
                raise ValueError("Se requiere DATABASE_URL o POSTGRES_PASSWORD en producción")
            # En desarrollo, usar SQLite como fallback
            logger.warning("PostgreSQL no configurado, usando SQLite")
            return "sqlite:///./marketplace.db"

        # Construir DSN
        return str(PostgresDsn.build(
            scheme="postgresql",
            username=values.get("POSTGRES_USER"),
            password=values.get("POSTGRES_PASSWORD"),
            host=values.get("POSTGRES_SERVER"),
            path=values.get("POSTGRES_DB") or "",
        ))

    # Redis
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None
    REDIS_URL: Optional[str] = None

    @field_validator("REDIS_URL", mode="before")
    @classmethod
    def assemble_redis_connection(cls, v: Optional[str], info: ValidationInfo) -> Any:
        if isinstance(v, str) and v:
            return v

        values = info.data
        password_part = f":{values.get('REDIS_PASSWORD')}@" if values.get('REDIS_PASSWORD') else ""
        return f"redis://{password_part}{values.get('REDIS_HOST')}:{values.get('REDIS_PORT')}/{values.get('REDIS_DB')}"

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT_LIMIT: int = 100  # Número de solicitudes
    RATE_LIMIT_DEFAULT_PERIOD: int = 3600  # Período en segundos (1 hora)
    RATE_LIMIT_SEND_LIMIT: int = 60  # Mensajes enviados por período
    RATE_LIMIT_BY_IP: bool = False  # Por defecto se limita por usuario autenticado

    # Mensajería
    MESSAGES_DEFAULT_PAGE_SIZE: int = 20
    MESSAGES_MAX_PAGE_SIZE: int = 100
    MESSAGE_MAX_LENGTH: int = 5000
    NOTIFICATIONS_ENABLED: bool = True

    # Configuraciones específicas por entorno
    def get_settings_by_environment(self) -> Dict[str, Any]:
        settings_map = {
            "development": {
                "DEBUG": True,
                "RATE_LIMIT_ENABLED": False,
            },
            "testing": {
                "DEBUG": False,
                "RATE_LIMIT_ENABLED": False,
                "NOTIFICATIONS_ENABLED": False,
            },
            "staging": {
                "DEBUG": False,
                "RATE_LIMIT_DEFAULT_LIMIT": 200,
            },
            "production": {
                "DEBUG": False,
                "RATE_LIMIT_DEFAULT_LIMIT": 100,
            },
        }

        return settings_map.get(self.ENVIRONMENT, {})

    # Aplicar configuraciones específicas del entorno
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)

        env_settings = self.get_settings_by_environment()
        for key, value in env_settings.items():
            if hasattr(self, key):
                setattr(self, key, value)

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=env_files.get(env, [".env"]),
        extra="ignore",
        validate_default=True,
    )

# Crear instancia de configuración
settings = Settings()

logger.info(f"Configuración cargada para entorno: {settings.ENVIRONMENT}")
if settings.DATABASE_URL:
    db_url_safe = str(settings.DATABASE_URL)
    if settings.POSTGRES_PASSWORD:
        db_url_safe = db_url_safe.replace(str(settings.POSTGRES_PASSWORD), '****')
    logger.info(f"Base de datos: {db_url_safe}")
