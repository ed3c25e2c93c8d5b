from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.config import PLAN_CATALOG, settings
from app.core.errors import BillingRequiredError, InvalidInputError, PlanLimitError
from app.domain.models.issue import Issue, IssueStatus
from app.domain.models.magazine import Magazine
from app.domain.models.tenant import BillingStatus, Tenant

UNLIMITED = -1


def plan_feature_flags(plan: str) -> dict:
    entry = PLAN_CATALOG.get(plan)
    if entry is None:
        raise InvalidInputError(f"Unknown plan: {plan}")
    limits = entry["limits"]
    return {
        "maxPages": limits["max_pages"],
        "maxIssuesPerMonth": limits["max_issues_per_month"],
        "maxMagazines": limits["max_magazines"],
        "customDomain": limits["custom_domain"],
    }


def apply_plan(tenant: Tenant, *, plan: str) -> None:
    flags = {**(tenant.feature_flags or {}), **plan_feature_flags(plan)}
    tenant.plan = plan
    tenant.feature_flags = flags


def tenant_limit(tenant: Tenant, flag: str) -> int:
    flags = tenant.feature_flags or {}
    if flag in flags:
        return int(flags[flag])
    return int(plan_feature_flags(tenant.plan or settings.default_plan)[flag])


def assert_plan_limit(requested: int, maximum: int, limit_name: str) -> None:
    if maximum != UNLIMITED and requested > maximum:
        raise PlanLimitError(f"{limit_name} limit exceeded. Requested: {requested}, Max: {maximum}")


def enforce_active_billing(tenant: Tenant) -> None:
    if tenant.billing_status != BillingStatus.ACTIVE.value:
        raise BillingRequiredError("Active billing status required for this operation")


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def count_issues_this_month(db: Session, *, tenant_id: UUID, now: datetime | None = None) -> int:
    period_start = _month_start(now or datetime.now(UTC))
    total = db.execute(
        select(func.count(Issue.id)).where(
            Issue.tenant_id == tenant_id,
            Issue.created_at >= period_start,
            Issue.status != IssueStatus.CANCELED.value,
        )
    ).scalar_one()
    return int(total or 0)


def enforce_issue_quota(db: Session, *, tenant: Tenant) -> None:
    used = count_issues_this_month(db, tenant_id=tenant.id)
    assert_plan_limit(used + 1, tenant_limit(tenant, "maxIssuesPerMonth"), "Issues per month")


def enforce_magazine_limit(db: Session, *, tenant: Tenant) -> None:
    current = db.execute(select(func.count(Magazine.id)).where(Magazine.tenant_id == tenant.id)).scalar_one()
    assert_plan_limit(int(current or 0) + 1, tenant_limit(tenant, "maxMagazines"), "Magazines")


def check_activation_eligibility(db: Session, *, tenant: Tenant) -> tuple[bool, str]:
    if not tenant.is_active:
        return False, "Tenant is inactive"
    if tenant.billing_status != BillingStatus.ACTIVE.value:
        return False, "Active billing status required"
    if tenant.current_period_end is not None:
        period_end = tenant.current_period_end
        if period_end.tzinfo is None:
            period_end = period_end.replace(tzinfo=UTC)
        if period_end < datetime.now(UTC):
            return False, "Subscription period has expired"
    limit = tenant_limit(tenant, "maxIssuesPerMonth")
    if limit != UNLIMITED and count_issues_this_month(db, tenant_id=tenant.id) >= limit:
        return False, "Monthly issue quota reached"
    return True, "Tenant is eligible for magazine creation"


def get_billing_status_payload(db: Session, *, tenant: Tenant) -> dict:
    entry = PLAN_CATALOG.get(tenant.plan) or PLAN_CATALOG[settings.default_plan]
    return {
        "plan": {
            "code": tenant.plan,
            "name": entry["name"],
            "monthly_price": entry["monthly_price"],
        },
        "billing_status": tenant.billing_status,
        "current_period_end": tenant.current_period_end.isoformat() if tenant.current_period_end else None,
        "feature_flags": tenant.feature_flags or {},
        "usage": {
            "issues_this_month": count_issues_this_month(db, tenant_id=tenant.id),
        },
    }
