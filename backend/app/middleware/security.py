from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi.middleware.cors import CORSMiddleware
from starlette.status import HTTP_429_TOO_MANY_REQUESTS, HTTP_403_FORBIDDEN
import time
import redis.asyncio as redis
import logging
import json
from typing import Callable, Dict, List, Optional, Tuple, Any
from app.core.config import settings
from app.core.security import decode_jwt_token

logger = logging.getLogger(__name__)

DOC_PATHS = ("/docs", "/redoc", f"{settings.API_V1_STR}/openapi.json")

class SecurityMiddleware(BaseHTTPMiddleware):
    """
    Middleware de seguridad de la API de mensajería:
    - Añade encabezados de seguridad
    - Limita la tasa de peticiones por usuario (o IP si no hay sesión)
    - Bloquea temporalmente a los clientes que exceden el límite repetidamente

    Si Redis no responde las peticiones se dejan pasar.
    """

    def __init__(
        self,
        app: FastAPI,
        redis_url: Optional[str] = None,
        exclude_paths: Optional[List[str]] = None,
    ):
        super().__init__(app)
        self.redis_url = redis_url or settings.REDIS_URL
        self.exclude_paths = exclude_paths or list(DOC_PATHS)
        self.redis_pool = None
        self.enabled = settings.RATE_LIMIT_ENABLED

        self.default_limit = settings.RATE_LIMIT_DEFAULT_LIMIT
        self.default_period = settings.RATE_LIMIT_DEFAULT_PERIOD
        self.rate_limit_by_ip = settings.RATE_LIMIT_BY_IP

        # Límites por (método, ruta)
        self.route_limits: Dict[Tuple[str, str], Tuple[int, int]] = {
            ("POST", f"{settings.API_V1_STR}/messages"): (
                settings.RATE_LIMIT_SEND_LIMIT, settings.RATE_LIMIT_DEFAULT_PERIOD
            ),
        }

        self.block_after_violations = 5
        self.block_duration = 3600

        # Bloqueos conocidos por este proceso
        self.blocked_clients: Dict[str, float] = {}

    async def get_redis(self) -> redis.Redis:
        """Obtiene una conexión a Redis para rate limiting"""
        if self.redis_pool is None:
            self.redis_pool = redis.ConnectionPool.from_url(
                self.redis_url, decode_responses=True
            )
        return redis.Redis(connection_pool=self.redis_pool)

    def is_path_excluded(self, path: str) -> bool:
        return any(path.startswith(excluded) for excluded in self.exclude_paths)

    def get_client_identifier(self, request: Request) -> str:
        """
        Identifica al cliente por el usuario del token; si no hay token válido,
        o si se limita por IP, por la dirección de origen.
        """
        client_ip = request.client.host if request.client else "unknown"
        if self.rate_limit_by_ip:
            return f"ip:{client_ip}"

        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            payload = decode_jwt_token(auth_header[len("Bearer "):])
            if payload and payload.get("sub"):
                return f"user:{payload['sub']}"

        return f"ip:{client_ip}"

    def limit_for(self, method: str, path: str) -> Tuple[int, int]:
        for (route_method, prefix), limit in self.route_limits.items():
            if method == route_method and path.rstrip("/") == prefix:
                return limit
        return self.default_limit, self.default_period

    async def is_blocked(self, client_id: str) -> bool:
        until = self.blocked_clients.get(client_id)
        if until is not None:
            if time.time() > until:
                del self.blocked_clients[client_id]
                return False
            return True

        try:
            r = await self.get_redis()
            return bool(await r.get(f"block:{client_id}"))
        except Exception as e:
            logger.warning(f"Redis no disponible para comprobar bloqueos: {str(e)}")
            return False

    async def increment_violation(self, client_id: str) -> int:
        """Cuenta una violación del límite y bloquea al cliente si es reincidente."""
        try:
            r = await self.get_redis()
            violations_key = f"violations:{client_id}"
            violations = await r.incr(violations_key)
            if violations == 1:
                await r.expire(violations_key, 86400)

            if violations >= self.block_after_violations:
                await r.set(f"block:{client_id}", "1", ex=self.block_duration)
                self.blocked_clients[client_id] = time.time() + self.block_duration
                logger.warning(f"Cliente bloqueado por exceso de violaciones: {client_id}")

            return violations
        except Exception as e:
            logger.error(f"Error al incrementar violaciones: {str(e)}")
            return 0

    async def is_rate_limited(self, client_id: str, method: str, path: str) -> Tuple[bool, int, int, int]:
        """
        Verifica si el cliente ha excedido su límite de tasa.
        Retorna: (limitado, actual, límite, reset)
        """
        limit, period = self.limit_for(method, path)

        try:
            r = await self.get_redis()
            redis_key = f"ratelimit:{client_id}:{method}:{path}"

            count = await r.get(redis_key)
            count = int(count) if count else 0

            ttl = await r.ttl(redis_key)
            reset_time = int(time.time() + (ttl if ttl > 0 else period))

            if count >= limit:
                return True, count, limit, reset_time

            pipe = r.pipeline()
            pipe.incr(redis_key)
            if count == 0:
                pipe.expire(redis_key, period)
            await pipe.execute()

            return False, count + 1, limit, reset_time

        except Exception as e:
            logger.error(f"Error en rate limiting: {str(e)}")
            # Si hay error, permitir la petición
            return False, 0, limit, int(time.time() + period)

    def add_security_headers(self, response: Response, path: str) -> None:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), camera=(), microphone=()"

        if path.startswith(DOC_PATHS):
            # La documentación carga recursos del CDN
            response.headers["X-Frame-Options"] = "SAMEORIGIN"
        else:
            response.headers["X-Frame-Options"] = "DENY"
            response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        if settings.ENVIRONMENT == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Any]
    ) -> Response:
        start_time = time.time()
        path = request.url.path
        limited_request = self.enabled and not self.is_path_excluded(path)

        if limited_request:
            client_id = self.get_client_identifier(request)

            if await self.is_blocked(client_id):
                return Response(
                    content=json.dumps({
                        "error": "forbidden",
                        "detail": "Tu acceso ha sido bloqueado temporalmente por exceso de solicitudes",
                    }),
                    status_code=HTTP_403_FORBIDDEN,
                    media_type="application/json",
                )

            limited, current, limit, reset = await self.is_rate_limited(client_id, request.method, path)
            if limited:
                await self.increment_violation(client_id)
                logger.info(f"Límite de tasa excedido para {client_id} en {request.method} {path}")
                return Response(
                    content=json.dumps({
                        "error": "rate_limited",
                        "detail": "Demasiadas solicitudes. Por favor, inténtalo de nuevo más tarde.",
                    }),
                    status_code=HTTP_429_TOO_MANY_REQUESTS,
                    headers={
                        "X-RateLimit-Limit": str(limit),
                        "X-RateLimit-Remaining": "0",
                        "X-RateLimit-Reset": str(reset),
                        "Retry-After": str(max(0, reset - int(time.time()))),
                    },
                    media_type="application/json",
                )

        response = await call_next(request)

        self.add_security_headers(response, path)
        if limited_request:
            response.headers["X-RateLimit-Limit"] = str(limit)
            response.headers["X-RateLimit-Remaining"] = str(max(0, limit - current))
            response.headers["X-RateLimit-Reset"] = str(reset)

        response.headers["X-Process-Time"] = str(time.time() - start_time)
        return response

def setup_security_middleware(app: FastAPI) -> None:
    """Configura los middlewares de seguridad para la aplicación"""
    if settings.BACKEND_CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[str(origin).rstrip("/") for origin in settings.BACKEND_CORS_ORIGINS],
            allow_credentials=True,
            allow_methods=["GET", "POST", "PATCH", "DELETE"],
            allow_headers=["Authorization", "Content-Type"],
            expose_headers=[
                "X-RateLimit-Limit",
                "X-RateLimit-Remaining",
                "X-RateLimit-Reset",
                "X-Process-Time",
            ],
        )

    app.add_middleware(SecurityMiddleware, redis_url=settings.REDIS_URL)
