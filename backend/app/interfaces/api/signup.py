from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.application.services.auth_service import AuthService
from app.application.services.magazine_service import serialize_tenant
from app.core.security import create_access_token, create_refresh_token
from app.infrastructure.db.session import get_db

router = APIRouter(tags=["signup"])


class SignupRequest(BaseModel):
    tenant_name: str = Field(min_length=2, max_length=255)
    owner_email: str
    owner_password: str = Field(min_length=8)
    website: str | None = None


@router.post("/signup", status_code=status.HTTP_201_CREATED)
def signup(payload: SignupRequest, db: Session = Depends(get_db)) -> dict:
    tenant, owner = AuthService.signup_tenant(
        db,
        tenant_name=payload.tenant_name,
        owner_email=payload.owner_email,
        owner_password=payload.owner_password,
        website=payload.website,
    )
    return {
        "ok": True,
        "tenant": serialize_tenant(tenant),
        "owner": {
            "id": str(owner.id),
            "email": owner.email,
            "role": owner.role,
        },
        "tokens": {
            "access_token": create_access_token(user_id=owner.id, tenant_id=tenant.id),
            "refresh_token": create_refresh_token(user_id=owner.id, tenant_id=tenant.id),
            "token_type": "bearer",
        },
    }
