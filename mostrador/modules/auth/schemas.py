from pydantic import BaseModel
from typing import Optional
from uuid import UUID


class AuthContext(BaseModel):
    """Identidad del usuario que hace la operación, resuelta desde el token."""
    user_id: UUID
    tenant_id: UUID
    user_role: Optional[str] = None
    email: Optional[str] = None
