from uuid import UUID

import jwt
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.application.services.access_policy import is_platform_admin
from app.application.services.audit_service import log_audit_event
from app.application.services.auth_service import AuthService
from app.core.errors import ForbiddenError, UnauthorizedError
from app.core.security import create_access_token, create_refresh_token, decode_token
from app.domain.models.user import User
from app.infrastructure.db.session import get_db
from app.interfaces.api.deps import get_current_user, require_tenant_id

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


def _serialize_user(user: User) -> dict:
    return {
        "id": str(user.id),
        "tenant_id": str(user.tenant_id),
        "email": user.email,
        "role": user.role,
        "is_platform_admin": is_platform_admin(user),
    }


@router.post("/login")
def login(
    payload: LoginRequest,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(require_tenant_id),
) -> dict:
    user = AuthService.authenticate(db, tenant_id=tenant_id, email=payload.email, password=payload.password)
    if not user:
        raise UnauthorizedError("Invalid credentials")

    log_audit_event(db, tenant_id=user.tenant_id, action="auth.login", metadata={"user_id": str(user.id)})
    db.commit()
    return {
        "ok": True,
        "access_token": create_access_token(user_id=user.id, tenant_id=user.tenant_id),
        "refresh_token": create_refresh_token(user_id=user.id, tenant_id=user.tenant_id),
        "token_type": "bearer",
        "user": _serialize_user(user),
    }


@router.post("/refresh")
def refresh_tokens(
    payload: RefreshRequest,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(require_tenant_id),
) -> dict:
    try:
        claims = decode_token(payload.refresh_token)
        token_tenant_id = UUID(claims["tenant_id"])
        user_id = UUID(claims["sub"])
    except (jwt.PyJWTError, KeyError, ValueError) as exc:
        raise UnauthorizedError("Invalid refresh token") from exc

    if claims.get("type") != "refresh":
        raise UnauthorizedError("Invalid token type")
    if tenant_id != token_tenant_id:
        raise ForbiddenError("Tenant mismatch")
    if db.get(User, user_id) is None:
        raise UnauthorizedError("User not found")

    return {
        "ok": True,
        "access_token": create_access_token(user_id=user_id, tenant_id=token_tenant_id),
        "refresh_token": create_refresh_token(user_id=user_id, tenant_id=token_tenant_id),
        "token_type": "bearer",
    }


@router.get("/me")
def me(current_user: User = Depends(get_current_user)) -> dict:
    return {"ok": True, "user": _serialize_user(current_user)}
