"""
Taxonomía de errores del núcleo transaccional.

Todas las excepciones extienden HTTPException para que los servicios
las lancen igual que cualquier error HTTP. Los handlers registrados en
main.py las serializan con el formato {"error": ..., "details": [...]}.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DomainError(HTTPException):
    """Error de negocio con mensaje legible y detalles opcionales."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Error de negocio"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[List[Dict[str, Any]]] = None,
        extra: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message or self.default_message
        self.details = details
        self.extra = extra or {}
        super().__init__(status_code=status_code or self.status_code, detail=self.message)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        payload.update(self.extra)
        return payload


class ValidationError(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Datos inválidos"


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Registro no encontrado"


class ConflictError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "La operación entra en conflicto con el estado actual"


class AuthorizationError(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "No autorizado"


class RateLimitError(DomainError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Demasiadas solicitudes. Intenta nuevamente en unos segundos"

    def __init__(self, retry_after: int, message: Optional[str] = None):
        super().__init__(message=message, extra={"retry_after": retry_after})
        self.headers = {"Retry-After": str(retry_after)}


class InternalError(DomainError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Error interno del servidor"


# ===== HANDLERS =====

async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    headers = getattr(exc, "headers", None)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Error en la solicitud"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": message},
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(part) for part in error.get("loc", []) if part != "body"),
            "message": error.get("msg", ""),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Datos inválidos", "details": details},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": InternalError.default_message},
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
