from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.application.services.access_policy import Permission
from app.application.services.generation_service import get_job, serialize_job
from app.core.errors import NotFoundError
from app.domain.models.user import User
from app.infrastructure.db.session import get_db
from app.interfaces.api.deps import require_permission, require_tenant_id

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.get("/{job_id}")
def job_detail(
    job_id: str,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(require_tenant_id),
    _: User = Depends(require_permission(Permission.ISSUE_READ)),
) -> dict:
    try:
        parsed_job_id = UUID(job_id)
    except ValueError as exc:
        raise NotFoundError("Job not found") from exc
    job = get_job(db, tenant_id=tenant_id, job_id=parsed_job_id)
    return {"ok": True, "job": serialize_job(job)}
