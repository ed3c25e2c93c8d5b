from fastapi import APIRouter

from app.interfaces.api.analytics import router as analytics_router
from app.interfaces.api.auth import router as auth_router
from app.interfaces.api.billing import router as billing_router
from app.interfaces.api.blueprints import router as blueprints_router
from app.interfaces.api.health import router as health_router
from app.interfaces.api.issues import router as issues_router
from app.interfaces.api.jobs import router as jobs_router
from app.interfaces.api.magazines import router as magazines_router
from app.interfaces.api.public import router as public_router
from app.interfaces.api.signup import router as signup_router
from app.interfaces.api.stripe_webhooks import router as stripe_webhooks_router
from app.interfaces.api.tenant import router as tenant_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router)
api_router.include_router(signup_router)
api_router.include_router(tenant_router)
api_router.include_router(billing_router)
api_router.include_router(magazines_router)
api_router.include_router(blueprints_router)
api_router.include_router(issues_router)
api_router.include_router(jobs_router)
api_router.include_router(analytics_router)
api_router.include_router(public_router)
api_router.include_router(stripe_webhooks_router)
