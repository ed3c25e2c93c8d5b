import copy
import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.application.services.billing_service import assert_plan_limit, tenant_limit
from app.core.errors import InvalidInputError
from app.domain.models.blueprint import Blueprint
from app.domain.models.tenant import Tenant

logger = logging.getLogger(__name__)

MIN_PAGES = 8
REQUIRED_SECTIONS = ("cover", "closing")
CADENCE_VALUES = {"weekly", "biweekly", "monthly", "quarterly"}
APPROVAL_MODES = {"manual", "semi_auto", "auto"}

DEFAULT_BLUEPRINT: dict = {
    "structure": {
        "pages": 12,
        "sections": ["cover", "toc", "feature", "spotlight", "tips", "ads", "closing"],
        "adSlots": ["p4", "p10"],
    },
    "voice": {"tone": "professional, informative", "readingLevel": "8-10"},
    "niche": {
        "topics": ["business", "technology", "innovation"],
        "geo": ["global"],
        "keywords": ["productivity", "growth", "insights"],
    },
    "sources": {"rss": [], "uploadsAllowed": True},
    "cadence": "monthly",
    "approval_mode": "semi_auto",
}


def default_blueprint_payload() -> dict:
    return copy.deepcopy(DEFAULT_BLUEPRINT)


def get_blueprint(db: Session, *, magazine_id: UUID) -> Blueprint | None:
    return db.execute(select(Blueprint).where(Blueprint.magazine_id == magazine_id)).scalar_one_or_none()


def create_default_blueprint(db: Session, *, tenant_id: UUID, magazine_id: UUID) -> Blueprint:
    payload = default_blueprint_payload()
    blueprint = Blueprint(tenant_id=tenant_id, magazine_id=magazine_id, **payload)
    db.add(blueprint)
    db.flush()
    return blueprint


def serialize_blueprint(blueprint: Blueprint | None) -> dict:
    if blueprint is None:
        return {**default_blueprint_payload(), "is_default": True}
    return {
        "structure": blueprint.structure or {},
        "voice": blueprint.voice or {},
        "niche": blueprint.niche or {},
        "sources": blueprint.sources or {},
        "cadence": blueprint.cadence,
        "approval_mode": blueprint.approval_mode,
        "is_default": False,
    }


def get_blueprint_or_default(db: Session, *, magazine_id: UUID) -> dict:
    return serialize_blueprint(get_blueprint(db, magazine_id=magazine_id))


def _string_list(value, field_name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise InvalidInputError(f"{field_name} must be a list of strings")
    return [item.strip() for item in value if item.strip()]


def normalize_blueprint(
    tenant: Tenant,
    *,
    structure: dict,
    voice: dict,
    niche: dict,
    sources: dict,
    cadence: str,
    approval_mode: str,
) -> dict:
    """Validate a submitted blueprint against the tenant plan and return the stored shape.

    Checks run in a fixed order: the plan page limit, the minimum page count,
    then the required cover and closing sections.
    """
    pages = structure.get("pages")
    if isinstance(pages, bool) or not isinstance(pages, int):
        raise InvalidInputError("structure.pages must be an integer")

    assert_plan_limit(pages, tenant_limit(tenant, "maxPages"), "Pages")
    if pages < MIN_PAGES:
        raise InvalidInputError(f"Minimum page count is {MIN_PAGES}")

    sections = _string_list(structure.get("sections"), "structure.sections")
    for required in REQUIRED_SECTIONS:
        if required not in sections:
            raise InvalidInputError(f"Blueprint must include a {required} section")

    if cadence not in CADENCE_VALUES:
        raise InvalidInputError(f"Unsupported cadence: {cadence}")
    if approval_mode not in APPROVAL_MODES:
        raise InvalidInputError(f"Unsupported approval mode: {approval_mode}")

    return {
        "structure": {
            "pages": pages,
            "sections": sections,
            "adSlots": _string_list(structure.get("adSlots"), "structure.adSlots"),
        },
        "voice": {
            "tone": str(voice.get("tone") or DEFAULT_BLUEPRINT["voice"]["tone"]),
            "readingLevel": str(voice.get("readingLevel") or DEFAULT_BLUEPRINT["voice"]["readingLevel"]),
        },
        "niche": {
            "topics": _string_list(niche.get("topics"), "niche.topics"),
            "geo": _string_list(niche.get("geo"), "niche.geo"),
            "keywords": _string_list(niche.get("keywords"), "niche.keywords"),
        },
        "sources": {
            "rss": _string_list(sources.get("rss"), "sources.rss"),
            "uploadsAllowed": sources.get("uploadsAllowed") is not False,
        },
        "cadence": cadence,
        "approval_mode": approval_mode,
    }


def save_blueprint(db: Session, *, tenant: Tenant, magazine_id: UUID, **fields) -> Blueprint:
    payload = normalize_blueprint(tenant, **fields)
    blueprint = get_blueprint(db, magazine_id=magazine_id)
    if blueprint is None:
        blueprint = Blueprint(tenant_id=tenant.id, magazine_id=magazine_id)
        db.add(blueprint)
    for key, value in payload.items():
        setattr(blueprint, key, value)
    db.flush()
    logger.info(
        "blueprint_saved tenant_id=%s magazine_id=%s pages=%s",
        tenant.id,
        magazine_id,
        payload["structure"]["pages"],
    )
    return blueprint
