from typing import Any, Dict, List, Optional
from fastapi import status

class MessagingError(Exception):
    """
    Error base de la mensajería.

    Cada subclase define el código HTTP y un `kind` que el cliente puede
    distinguir sin analizar el texto del mensaje.
    """
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    kind: str = "error"

    def __init__(self, detail: str, fields: Optional[List[Dict[str, Any]]] = None):
        super().__init__(detail)
        self.detail = detail
        self.fields = fields or []

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.kind, "detail": self.detail}
        if self.fields:
            payload["fields"] = self.fields
        return payload

class Unauthorized(MessagingError):
    """Sesión ausente o inválida"""
    status_code = status.HTTP_401_UNAUTHORIZED
    kind = "unauthorized"

class ValidationFailed(MessagingError):
    status_code = status.HTTP_400_BAD_REQUEST
    kind = "validation"

    @classmethod
    def for_field(cls, field: str, detail: str) -> "ValidationFailed":
        return cls(detail, fields=[{"loc": [field], "msg": detail}])

class NotFound(MessagingError):
    status_code = status.HTTP_404_NOT_FOUND
    kind = "not_found"

class Forbidden(MessagingError):
    status_code = status.HTTP_403_FORBIDDEN
    kind = "forbidden"

class StorageError(MessagingError):
    """El almacenamiento no está disponible o rechazó la operación (reintentable)"""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    kind = "storage_error"

class FeatureUnavailable(MessagingError):
    """Funcionalidad opcional cuyo almacenamiento no existe (p. ej. archivado)"""
    status_code = status.HTTP_501_NOT_IMPLEMENTED
    kind = "feature_unavailable"
