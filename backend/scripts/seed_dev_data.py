from sqlalchemy import select

from app.application.services.auth_service import AuthService
from app.application.services.billing_service import apply_plan
from app.application.services.blueprint_service import save_blueprint
from app.application.services.magazine_service import create_magazine
from app.domain.models.tenant import Tenant
from app.infrastructure.db.session import SessionLocal


DEFAULT_TENANT_NAME = "Magazinify Dev"
DEFAULT_OWNER_EMAIL = "owner@magazinify.local"
DEFAULT_OWNER_PASSWORD = "devpassword123"


def seed_dev_data() -> None:
    with SessionLocal() as db:
        existing_tenant = db.execute(select(Tenant).where(Tenant.slug == "magazinify-dev")).scalar_one_or_none()
        if existing_tenant is not None:
            print(f"Seed exists: tenant_id={existing_tenant.id}")
            return

        tenant, owner = AuthService.signup_tenant(
            db,
            tenant_name=DEFAULT_TENANT_NAME,
            owner_email=DEFAULT_OWNER_EMAIL,
            owner_password=DEFAULT_OWNER_PASSWORD,
            website="https://magazinify.local",
        )
        apply_plan(tenant, plan="pro")

        magazine = create_magazine(
            db,
            tenant=tenant,
            title="Growth Monthly",
            description="Seed magazine for local generation runs",
        )
        save_blueprint(
            db,
            tenant=tenant,
            magazine_id=magazine.id,
            structure={
                "pages": 16,
                "sections": ["cover", "toc", "feature", "spotlight", "news", "tips", "ads", "closing"],
                "adSlots": ["p4", "p10", "p14"],
            },
            voice={"tone": "friendly, practical", "readingLevel": "8-10"},
            niche={"topics": ["marketing", "small business"], "geo": ["PL", "EU"], "keywords": ["growth"]},
            sources={"rss": []},
            cadence="monthly",
            approval_mode="semi_auto",
        )
        db.commit()

        print("Created dev seed data:")
        print(f"- tenant_id: {tenant.id}")
        print(f"- tenant_slug: {tenant.slug}")
        print(f"- owner_id: {owner.id}")
        print(f"- owner_email: {owner.email}")
        print(f"- plan: {tenant.plan}")
        print(f"- magazine_slug: {magazine.slug}")


if __name__ == "__main__":
    seed_dev_data()
