"""
Dependencias de autenticación para FastAPI.

La emisión de tokens y la gestión de usuarios viven fuera de este servicio;
aquí sólo se decodifica el JWT (sub, tenant_id, user_role) y se consulta la
tabla de permisos.
"""
from uuid import UUID
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
import logging

from mostrador.core.config import settings
from mostrador.core.exceptions import AuthorizationError
from mostrador.modules.auth.permissions import has_permission
from mostrador.modules.auth.schemas import AuthContext

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


class AuthDependencies:
    """Dependencias de autenticación reutilizables."""

    @staticmethod
    def get_auth_context(
        credentials: HTTPAuthorizationCredentials = Depends(security),
    ) -> AuthContext:
        """
        Obtener contexto de autenticación (usuario, negocio y rol) desde el token.
        """
        credentials_exception = AuthorizationError(
            "No se pudieron validar las credenciales",
            status_code=401,
        )
        credentials_exception.headers = {"WWW-Authenticate": "Bearer"}

        if credentials is None:
            raise credentials_exception

        try:
            payload = jwt.decode(
                credentials.credentials,
                settings.APP_SECRET_STRING,
                algorithms=[settings.ALGORITHM]
            )
        except jwt.PyJWTError:
            raise credentials_exception

        user_id = payload.get("sub")
        tenant_id = payload.get("tenant_id")
        if not user_id or not tenant_id:
            raise credentials_exception

        try:
            return AuthContext(
                user_id=UUID(str(user_id)),
                tenant_id=UUID(str(tenant_id)),
                user_role=payload.get("user_role"),
                email=payload.get("email"),
            )
        except ValueError:
            raise credentials_exception

    @staticmethod
    def require_permission(permission: str):
        """
        Dependencia para requerir un permiso concreto.
        """
        def permission_checker(auth_context: AuthContext = Depends(AuthDependencies.get_auth_context)):
            if not has_permission(auth_context.user_role, permission):
                logger.info(
                    f"Permiso denegado: user={auth_context.user_id} role={auth_context.user_role} "
                    f"permission={permission}"
                )
                raise AuthorizationError("No tienes permisos para realizar esta acción")
            return auth_context
        return permission_checker


# Instancias de dependencias
get_auth_context = AuthDependencies.get_auth_context
require_permission = AuthDependencies.require_permission
