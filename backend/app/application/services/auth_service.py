import re
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.application.services.billing_service import plan_feature_flags
from app.core.config import settings
from app.core.errors import InvalidInputError, InvalidStateError
from app.core.security import hash_password, verify_password
from app.domain.models.tenant import BillingStatus, Tenant
from app.domain.models.user import User, UserRole


class AuthService:
    @staticmethod
    def authenticate(db: Session, *, tenant_id: UUID, email: str, password: str) -> User | None:
        normalized_email = email.strip().lower()
        user = db.execute(
            select(User).where(User.tenant_id == tenant_id, User.email == normalized_email)
        ).scalar_one_or_none()
        if not user:
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user

    @staticmethod
    def signup_tenant(
        db: Session,
        *,
        tenant_name: str,
        owner_email: str,
        owner_password: str,
        website: str | None = None,
    ) -> tuple[Tenant, User]:
        slug_base = re.sub(r"[^a-z0-9]+", "-", tenant_name.strip().lower()).strip("-") or "tenant"
        slug = slug_base
        counter = 1
        while db.execute(select(Tenant.id).where(Tenant.slug == slug)).scalar_one_or_none() is not None:
            counter += 1
            slug = f"{slug_base}-{counter}"

        try:
            tenant = Tenant(
                name=tenant_name.strip(),
                slug=slug,
                website=website,
                plan=settings.default_plan,
                billing_status=BillingStatus.ACTIVE.value,
                feature_flags=plan_feature_flags(settings.default_plan),
                is_active=True,
            )
            db.add(tenant)
            db.flush()

            owner = User(
                tenant_id=tenant.id,
                email=owner_email.strip().lower(),
                password_hash=hash_password(owner_password),
                role=UserRole.OWNER.value,
            )
            db.add(owner)
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(tenant)
        db.refresh(owner)
        return tenant, owner

    @staticmethod
    def add_member(db: Session, *, tenant_id: UUID, email: str, password: str, role: str) -> User:
        try:
            normalized_role = UserRole(role.strip().lower())
        except ValueError as exc:
            raise InvalidInputError(f"Unknown role: {role}") from exc
        if normalized_role == UserRole.OWNER:
            raise InvalidInputError("A tenant has exactly one owner")

        normalized_email = email.strip().lower()
        existing = db.execute(
            select(User.id).where(User.tenant_id == tenant_id, User.email == normalized_email)
        ).scalar_one_or_none()
        if existing is not None:
            raise InvalidStateError(f"User {normalized_email} already belongs to this tenant")

        user = User(
            tenant_id=tenant_id,
            email=normalized_email,
            password_hash=hash_password(password),
            role=normalized_role.value,
        )
        db.add(user)
        db.flush()
        return user
