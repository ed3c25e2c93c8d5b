from uuid import UUID

import jwt
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.application.services.access_policy import Permission, ensure_allowed
from app.core.errors import BadRequestError, ForbiddenError, NotFoundError, UnauthorizedError
from app.core.security import decode_token
from app.core.tenant import get_current_tenant
from app.domain.models.tenant import Tenant
from app.domain.models.user import User
from app.infrastructure.db.session import get_db

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def require_tenant_id() -> UUID:
    tenant_id = get_current_tenant()
    if tenant_id is None:
        raise BadRequestError("Missing X-Tenant-ID header")
    return tenant_id


def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    if not token:
        raise UnauthorizedError("Missing bearer token")
    try:
        claims = decode_token(token)
    except jwt.PyJWTError as exc:
        raise UnauthorizedError("Invalid token") from exc

    if claims.get("type") != "access":
        raise UnauthorizedError("Invalid token type")

    try:
        user_id = UUID(claims["sub"])
        tenant_id = UUID(claims["tenant_id"])
    except (KeyError, ValueError) as exc:
        raise UnauthorizedError("Invalid token payload") from exc

    user = db.execute(select(User).where(User.id == user_id, User.tenant_id == tenant_id)).scalar_one_or_none()
    if user is None:
        raise UnauthorizedError("User not found")

    header_tenant_id = get_current_tenant()
    if header_tenant_id is not None and header_tenant_id != user.tenant_id:
        raise ForbiddenError("Tenant mismatch")

    return user


def get_current_tenant_model(
    tenant_id: UUID = Depends(require_tenant_id),
    db: Session = Depends(get_db),
) -> Tenant:
    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant not found")
    return tenant


def require_permission(permission: Permission):
    """Dependency that resolves the bearer user and checks ``permission``.

    The ``X-Tenant-ID`` header is mandatory and must match the token's tenant.
    """

    def _dependency(
        tenant_id: UUID = Depends(require_tenant_id),
        current_user: User = Depends(get_current_user),
    ) -> User:
        if current_user.tenant_id != tenant_id:
            raise ForbiddenError("Tenant mismatch")
        ensure_allowed(current_user, permission)
        return current_user

    return _dependency
