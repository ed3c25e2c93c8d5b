from app.domain.models.activation_run import ActivationRun
from app.domain.models.ad_slot import AdSlot
from app.domain.models.analytics_event import AnalyticsEvent
from app.domain.models.article import Article
from app.domain.models.audit_log import AuditLog
from app.domain.models.blueprint import Blueprint
from app.domain.models.failed_job import FailedJob
from app.domain.models.generation_job import GenerationJob
from app.domain.models.issue import Issue
from app.domain.models.magazine import Magazine
from app.domain.models.stripe_event import StripeEvent
from app.domain.models.tenant import Tenant
from app.domain.models.user import User

__all__ = [
    "Tenant",
    "User",
    "Magazine",
    "Blueprint",
    "Issue",
    "Article",
    "AdSlot",
    "AnalyticsEvent",
    "GenerationJob",
    "ActivationRun",
    "AuditLog",
    "FailedJob",
    "StripeEvent",
]
