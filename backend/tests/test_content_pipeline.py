import asyncio
from datetime import UTC, datetime

import pytest

from app.application.services.ai_provider import AIProviderError, AIProviderValidationError, BaseAIProvider
from app.application.services.blueprint_service import default_blueprint_payload
from app.application.services.content_pipeline import (
    OUTCOME_DEGRADED,
    OUTCOME_FAILED,
    OUTCOME_SUCCESS,
    TOPICS_SCHEMA,
    generate_issue_draft,
    regenerate_article,
    split_topic_lines,
    validate_outline,
)
from app.core.errors import UpstreamServiceError
from conftest import FakeAIProvider

NOW = datetime(2026, 10, 1, tzinfo=UTC)


class PlainTextTopicsProvider(FakeAIProvider):
    async def complete_json(self, request):
        if request.output_schema is TOPICS_SCHEMA:
            raise AIProviderValidationError(
                "Invalid JSON returned",
                raw_content="1. Remote Work\n- AI Tools\n\n* Supply Chains",
            )
        return await super().complete_json(request)


class NonJsonProvider(BaseAIProvider):
    async def complete_json(self, request):
        raise AIProviderValidationError("Invalid JSON returned", raw_content="<p>Rewritten plain article</p>")


class OfflineProvider(BaseAIProvider):
    async def complete_json(self, request):
        raise AIProviderError("provider offline")


def _draft(provider):
    return asyncio.run(
        generate_issue_draft(provider, blueprint=default_blueprint_payload(), issue_slug="2026-10", now=NOW)
    )


def test_full_model_draft_is_success():
    draft = _draft(FakeAIProvider())

    assert draft.outcome == OUTCOME_SUCCESS
    assert draft.fallback_steps == []
    assert draft.title == "October 2026"
    section_types = [section["type"] for section in draft.outline["sections"]]
    assert {"cover", "toc", "spotlight", "ads", "closing"} <= set(section_types)
    assert all(article.section_type not in {"cover", "ads"} for article in draft.articles)
    assert all(article.hero_url for article in draft.articles)
    assert draft.outline["totalPages"] <= 12


def test_plain_text_topics_reply_is_degraded():
    draft = _draft(PlainTextTopicsProvider())

    assert draft.outcome == OUTCOME_DEGRADED
    assert draft.fallback_steps == ["topics"]


def test_offline_provider_fails_draft():
    draft = _draft(OfflineProvider())

    assert draft.outcome == OUTCOME_FAILED
    assert "outline" in draft.fallback_steps
    assert all(article.is_fallback for article in draft.articles)


def test_split_topic_lines_strips_bullets():
    assert split_topic_lines('1. Remote Work\n- "AI Tools"\n\n') == ["Remote Work", "AI Tools"]


def test_validate_outline_adds_required_sections_and_scales_pages():
    outline = {
        "title": "October 2026",
        "sections": [
            {"type": "feature", "title": "Feature", "pages": 10},
            {"type": "tips", "title": "Tips", "pages": 10},
        ],
    }

    validated = validate_outline(outline, required_sections=["cover", "feature", "closing"], max_pages=12)

    types = [section["type"] for section in validated["sections"]]
    assert types == ["feature", "tips", "cover", "closing"]
    assert validated["totalPages"] <= 12
    assert all(section["pages"] >= 1 for section in validated["sections"])


def test_regenerate_keeps_raw_text_on_non_json_reply():
    updated, degraded = asyncio.run(
        regenerate_article(
            NonJsonProvider(),
            article={"title": "Deep Dive", "html": "<p>old</p>"},
            prompt_override="Shorter please",
            voice={},
            niche={},
        )
    )

    assert degraded is True
    assert updated == {"html": "<p>Rewritten plain article</p>", "title": "Deep Dive (Updated)"}


def test_regenerate_surfaces_provider_outage():
    with pytest.raises(UpstreamServiceError):
        asyncio.run(
            regenerate_article(
                OfflineProvider(),
                article={"title": "Deep Dive", "html": "<p>old</p>"},
                prompt_override=None,
                voice={},
                niche={},
            )
        )
