"""AI content pipeline that turns a blueprint into an issue draft.

The pipeline runs four steps: topic discovery, outline, articles and images.
Each model-backed step has a deterministic fallback. A step that falls back
is recorded on the draft, and :func:`generate_issue_draft` classifies the
whole draft as ``success``, ``degraded`` or ``failed`` from those records.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from app.application.services.ai_provider import (
    AICompletionRequest,
    AIProviderError,
    AIProviderValidationError,
    BaseAIProvider,
)
from app.application.services.issue_service import build_issue_title
from app.application.services.magazine_service import build_slug_base
from app.core.errors import UpstreamServiceError

logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_DEGRADED = "degraded"
OUTCOME_FAILED = "failed"

DEFAULT_TOPICS = ["Business", "Technology", "Innovation"]
MAX_DISCOVERED_TOPICS = 8
NO_ARTICLE_SECTIONS = {"cover", "ads"}

SECTION_PAGE_TABLE: dict[str, dict[str, Any]] = {
    "cover": {"pages": 1, "description": "Magazine cover with title and featured story"},
    "toc": {"pages": 1, "description": "Table of contents and editorial note"},
    "feature": {"pages": 3, "description": "Main feature article"},
    "spotlight": {"pages": 2, "description": "Spotlight on industry trends"},
    "news": {"pages": 1, "description": "Industry news and updates"},
    "tips": {"pages": 2, "description": "Practical tips and insights"},
    "ads": {"pages": 1, "description": "Advertisement placement"},
    "closing": {"pages": 1, "description": "Closing thoughts and next issue preview"},
}

SECTION_TITLE_TEMPLATES = {
    "cover": "{topic} Magazine",
    "toc": "In This Issue",
    "feature": "The Future of {topic}",
    "spotlight": "Spotlight: {topic} Trends",
    "news": "{topic} News & Updates",
    "tips": "{topic} Tips & Best Practices",
    "ads": "Advertisement",
    "closing": "Looking Ahead",
}

TOPICS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["topics"],
    "properties": {
        "topics": {
            "type": "array",
            "items": {"type": "string", "minLength": 2, "maxLength": 160},
            "minItems": 1,
            "maxItems": 12,
        },
    },
}

OUTLINE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["title", "sections"],
    "properties": {
        "title": {"type": "string", "minLength": 3, "maxLength": 200},
        "sections": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["type", "title", "pages"],
                "properties": {
                    "type": {"type": "string", "minLength": 2},
                    "title": {"type": "string", "minLength": 2},
                    "description": {"type": "string"},
                    "pages": {"type": "integer", "minimum": 1},
                    "keyPoints": {"type": "array", "items": {"type": "string"}},
                },
            },
        },
    },
}

ARTICLE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["title", "html"],
    "properties": {
        "title": {"type": "string", "minLength": 3, "maxLength": 255},
        "slug": {"type": "string"},
        "html": {"type": "string", "minLength": 50},
        "summary": {"type": "string"},
        "tags": {"type": "array", "items": {"type": "string"}, "maxItems": 12},
        "readingTime": {"type": "integer", "minimum": 1},
        "wordCount": {"type": "integer", "minimum": 1},
    },
}

TOPICS_PROMPT = (
    "Generate 5-8 relevant magazine article topics for a publication focused on:\n"
    "Primary Topics: {{ topics }}\n"
    "Keywords: {{ keywords }}\n"
    "Geographic Focus: {{ geo }}\n"
    "Source feeds: {{ rss }}\n\n"
    "Topics must be current, engaging and suitable for a professional magazine, "
    "diverse in scope while staying within the niche. "
    'Return {"topics": ["..."]}.'
)

OUTLINE_PROMPT = (
    'Create a detailed magazine outline for a {{ pages }}-page publication titled "{{ issue_title }} Issue".\n'
    "Available Topics: {{ topics }}\n"
    "Required Sections: {{ sections }}\n"
    "Voice/Tone: {{ voice.tone }}\n"
    "Reading Level: {{ voice.readingLevel }}\n"
    "Target Audience: {{ audience }} enthusiasts\n\n"
    "For each section provide its type (from the required sections), a headline, "
    "a 1-2 sentence description, the page count and the key points to cover. "
    "The total page count must not exceed {{ pages }}."
)

ARTICLE_PROMPT = (
    'Write a magazine article for the "{{ section.title }}" section.\n'
    "Section type: {{ section.type }}\n"
    "Description: {{ section.description }}\n"
    "Key Points: {{ key_points }}\n"
    "Tone: {{ voice.tone }}\n"
    "Reading Level: {{ voice.readingLevel }}\n"
    "Target Audience: {{ audience }} professionals\n"
    "Length: 300-600 words.\n\n"
    "Use an engaging headline, a compelling lead paragraph, subheadings and actionable takeaways. "
    "Return title, slug, html (an <article> element), summary, tags, readingTime and wordCount."
)

REGENERATE_PROMPT = (
    "Rewrite the following article with improvements.\n"
    "Original Title: {{ article.title }}\n"
    "Original Content: {{ article.html }}\n"
    "{{ instructions }}\n"
    "Tone: {{ voice.tone }}\n"
    "Reading Level: {{ voice.readingLevel }}\n"
    "Keep the same general topic but improve clarity, engagement and value. Length: 300-600 words."
)

BULLET_PREFIX_PATTERN = re.compile(r"^(\d+\.\s*|[-*]\s*)")


@dataclass
class TopicSet:
    discovered: list[str]
    combined: list[str]
    sources: list[str]
    used_fallback: bool = False


@dataclass
class ArticleDraft:
    title: str
    slug: str
    html: str
    summary: str | None = None
    tags: list[str] = field(default_factory=list)
    reading_time: int | None = None
    word_count: int | None = None
    hero_url: str | None = None
    section_type: str | None = None
    is_fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "slug": self.slug,
            "html": self.html,
            "summary": self.summary,
            "tags": list(self.tags),
            "readingTime": self.reading_time,
            "wordCount": self.word_count,
            "heroUrl": self.hero_url,
            "sectionType": self.section_type,
            "isFallback": self.is_fallback,
        }


@dataclass
class IssueDraft:
    issue_slug: str
    title: str
    outline: dict[str, Any]
    articles: list[ArticleDraft]
    outcome: str
    fallback_steps: list[str] = field(default_factory=list)


def section_title(section_type: str, topic: str) -> str:
    template = SECTION_TITLE_TEMPLATES.get(section_type)
    if template is None:
        return f"{section_type.capitalize()} Section"
    return template.format(topic=topic)


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for item in items:
        key = item.strip()
        if key and key.lower() not in seen:
            seen.add(key.lower())
            result.append(key)
    return result


def split_topic_lines(raw_content: str) -> list[str]:
    topics = []
    for line in raw_content.splitlines():
        cleaned = BULLET_PREFIX_PATTERN.sub("", line.strip()).strip().strip('"')
        if cleaned:
            topics.append(cleaned)
    return topics[:MAX_DISCOVERED_TOPICS]


def _is_json(raw_content: str | None) -> bool:
    if not raw_content:
        return False
    try:
        json.loads(raw_content)
    except json.JSONDecodeError:
        return False
    return True


async def discover_topics(provider: BaseAIProvider, *, niche: dict, sources: dict) -> TopicSet:
    base_topics = list(niche.get("topics") or [])
    rss = list(sources.get("rss") or [])
    request = AICompletionRequest(
        template=TOPICS_PROMPT,
        output_schema=TOPICS_SCHEMA,
        variables={
            "topics": base_topics,
            "keywords": niche.get("keywords") or [],
            "geo": niche.get("geo") or [],
            "rss": rss or ["none"],
        },
        temperature=0.7,
    )
    try:
        payload = await provider.complete_json(request)
        discovered = [str(topic) for topic in payload["topics"]][:MAX_DISCOVERED_TOPICS]
        return TopicSet(discovered=discovered, combined=_dedupe(base_topics + discovered), sources=rss)
    except AIProviderValidationError as exc:
        if exc.raw_content and not _is_json(exc.raw_content):
            discovered = split_topic_lines(exc.raw_content)
            if discovered:
                logger.warning("topic_discovery_degraded reason=non_json_reply topics=%s", len(discovered))
                return TopicSet(
                    discovered=discovered,
                    combined=_dedupe(base_topics + discovered),
                    sources=rss,
                    used_fallback=True,
                )
        logger.warning("topic_discovery_fallback error=%s", exc)
    except AIProviderError as exc:
        logger.warning("topic_discovery_fallback error=%s", exc)
    return TopicSet(discovered=[], combined=base_topics or list(DEFAULT_TOPICS), sources=rss, used_fallback=True)


def build_fallback_outline(sections: list[str], topics: list[str], title: str) -> dict[str, Any]:
    topic_pool = topics or list(DEFAULT_TOPICS)
    outline_sections = []
    for index, section_type in enumerate(sections):
        topic = topic_pool[index % len(topic_pool)]
        entry = SECTION_PAGE_TABLE.get(section_type, {})
        outline_sections.append(
            {
                "type": section_type,
                "title": section_title(section_type, topic),
                "description": entry.get("description", "Content section"),
                "pages": entry.get("pages", 1),
                "keyPoints": [f"Key insight about {topic}", "Actionable takeaways"],
            }
        )
    return {
        "title": title,
        "sections": outline_sections,
        "totalPages": sum(section["pages"] for section in outline_sections),
    }


def validate_outline(outline: dict[str, Any], *, required_sections: list[str], max_pages: int) -> dict[str, Any]:
    """Add missing required sections, then scale page counts down to ``max_pages``."""
    sections = [dict(section) for section in outline.get("sections", [])]
    present = {section.get("type") for section in sections}
    for section_type in required_sections:
        if section_type in present:
            continue
        sections.append(
            {
                "type": section_type,
                "title": section_title(section_type, "Business"),
                "description": f"{section_type} section",
                "pages": 1,
                "keyPoints": ["Key insight", "Important takeaway"],
            }
        )
        present.add(section_type)

    total_pages = sum(int(section.get("pages") or 1) for section in sections)
    if max_pages > 0 and total_pages > max_pages:
        ratio = max_pages / total_pages
        for section in sections:
            section["pages"] = max(1, int(int(section.get("pages") or 1) * ratio))

    return {
        **outline,
        "sections": sections,
        "totalPages": sum(int(section.get("pages") or 1) for section in sections),
    }


async def create_outline(
    provider: BaseAIProvider,
    *,
    topics: TopicSet,
    pages: int,
    sections: list[str],
    voice: dict,
    niche: dict,
    issue_title: str,
) -> tuple[dict[str, Any], bool]:
    request = AICompletionRequest(
        template=OUTLINE_PROMPT,
        output_schema=OUTLINE_SCHEMA,
        variables={
            "pages": pages,
            "issue_title": issue_title,
            "topics": topics.combined,
            "sections": sections,
            "voice": voice,
            "audience": niche.get("topics") or ["business"],
        },
        temperature=0.6,
    )
    try:
        outline = await provider.complete_json(request)
        used_fallback = False
    except AIProviderError as exc:
        logger.warning("outline_fallback error=%s", exc)
        outline = build_fallback_outline(sections, topics.combined, issue_title)
        used_fallback = True
    return validate_outline(outline, required_sections=sections, max_pages=pages), used_fallback


def build_fallback_article(section: dict[str, Any], position: int) -> ArticleDraft:
    section_type = str(section.get("type") or "article")
    title = section.get("title") or f"{section_type.capitalize()} Article"
    key_points = section.get("keyPoints") or ["Important insight", "Actionable advice"]
    description = section.get("description") or "Content will be generated based on your blueprint configuration."
    items = "".join(f"<li>{point}</li>" for point in key_points)
    html = (
        f"<article><h1>{title}</h1>"
        f'<p class="lead">This is a placeholder article for the {section_type} section.</p>'
        f"<h2>Key Insights</h2><p>{description}</p>"
        f"<h2>Takeaways</h2><ul>{items}</ul></article>"
    )
    return ArticleDraft(
        title=title,
        slug=build_slug_base(title, fallback=f"article-{position}"),
        html=html,
        summary=section.get("description") or "Article summary",
        tags=[section_type, "business", "insights"],
        reading_time=3,
        word_count=250,
        section_type=section_type,
        is_fallback=True,
    )


async def write_article(
    provider: BaseAIProvider,
    *,
    section: dict[str, Any],
    voice: dict,
    niche: dict,
    position: int,
) -> ArticleDraft:
    request = AICompletionRequest(
        template=ARTICLE_PROMPT,
        output_schema=ARTICLE_SCHEMA,
        variables={
            "section": section,
            "key_points": section.get("keyPoints") or ["N/A"],
            "voice": voice,
            "audience": niche.get("topics") or ["General business"],
        },
        temperature=0.7,
    )
    try:
        payload = await provider.complete_json(request)
    except AIProviderError as exc:
        logger.warning("article_fallback position=%s section=%s error=%s", position, section.get("type"), exc)
        return build_fallback_article(section, position)

    title = str(payload["title"])
    return ArticleDraft(
        title=title,
        slug=build_slug_base(str(payload.get("slug") or title), fallback=f"article-{position}"),
        html=str(payload["html"]),
        summary=payload.get("summary"),
        tags=[str(tag) for tag in payload.get("tags") or []],
        reading_time=payload.get("readingTime"),
        word_count=payload.get("wordCount"),
        section_type=section.get("type"),
    )


def select_images(section: dict[str, Any], article: ArticleDraft) -> dict[str, Any]:
    return {
        "heroUrl": f"https://picsum.photos/seed/{uuid4().hex[:12]}/800/600",
        "additionalImages": [],
        "prompt": f"{section.get('title')} - {article.title}",
        "source": "placeholder",
    }


def classify_outcome(*, outline_fallback: bool, model_articles: int, fallback_steps: list[str]) -> str:
    if outline_fallback and model_articles == 0:
        return OUTCOME_FAILED
    if fallback_steps:
        return OUTCOME_DEGRADED
    return OUTCOME_SUCCESS


async def generate_issue_draft(
    provider: BaseAIProvider,
    *,
    blueprint: dict,
    issue_slug: str,
    now: datetime | None = None,
) -> IssueDraft:
    structure = blueprint.get("structure") or {}
    voice = blueprint.get("voice") or {}
    niche = blueprint.get("niche") or {}
    sources = blueprint.get("sources") or {}
    pages = int(structure.get("pages") or 12)
    sections = list(structure.get("sections") or [])
    issue_title = build_issue_title(now or datetime.now(UTC))
    fallback_steps: list[str] = []

    topics = await discover_topics(provider, niche=niche, sources=sources)
    if topics.used_fallback:
        fallback_steps.append("topics")

    outline, outline_fallback = await create_outline(
        provider,
        topics=topics,
        pages=pages,
        sections=sections,
        voice=voice,
        niche=niche,
        issue_title=issue_title,
    )
    if outline_fallback:
        fallback_steps.append("outline")

    articles: list[ArticleDraft] = []
    for index, section in enumerate(outline["sections"], start=1):
        if section.get("type") in NO_ARTICLE_SECTIONS:
            continue
        article = await write_article(provider, section=section, voice=voice, niche=niche, position=index)
        if article.is_fallback:
            fallback_steps.append(f"article:{index}")
        article.hero_url = select_images(section, article)["heroUrl"]
        articles.append(article)

    model_articles = sum(1 for article in articles if not article.is_fallback)
    outcome = classify_outcome(
        outline_fallback=outline_fallback,
        model_articles=model_articles,
        fallback_steps=fallback_steps,
    )
    logger.info(
        "issue_draft_generated issue_slug=%s outcome=%s articles=%s fallback_steps=%s",
        issue_slug,
        outcome,
        len(articles),
        ",".join(fallback_steps) or "-",
    )
    return IssueDraft(
        issue_slug=issue_slug,
        title=str(outline.get("title") or issue_title),
        outline=outline,
        articles=articles,
        outcome=outcome,
        fallback_steps=fallback_steps,
    )


async def regenerate_article(
    provider: BaseAIProvider,
    *,
    article: dict[str, Any],
    prompt_override: str | None,
    voice: dict,
    niche: dict,
) -> tuple[dict[str, Any], bool]:
    """Return ``(updated_fields, degraded)`` for an existing article.

    A non-JSON reply keeps the raw text as the new html. Any other provider
    failure surfaces as :class:`UpstreamServiceError`.
    """
    request = AICompletionRequest(
        template=REGENERATE_PROMPT,
        output_schema=ARTICLE_SCHEMA,
        variables={
            "article": article,
            "instructions": f"Special Instructions: {prompt_override}" if prompt_override else "",
            "voice": voice,
            "audience": niche.get("topics") or [],
        },
        temperature=0.8,
    )
    try:
        payload = await provider.complete_json(request)
    except AIProviderValidationError as exc:
        if exc.raw_content and not _is_json(exc.raw_content):
            logger.warning("article_regeneration_degraded reason=non_json_reply")
            return {"html": exc.raw_content, "title": f"{article['title']} (Updated)"}, True
        raise UpstreamServiceError(f"Failed to regenerate article: {exc}") from exc
    except AIProviderError as exc:
        raise UpstreamServiceError(f"Failed to regenerate article: {exc}") from exc

    updated = {"title": str(payload["title"]), "html": str(payload["html"])}
    if payload.get("summary"):
        updated["summary"] = payload["summary"]
    if payload.get("tags"):
        updated["tags"] = [str(tag) for tag in payload["tags"]]
    if payload.get("readingTime"):
        updated["readingTime"] = payload["readingTime"]
    if payload.get("wordCount"):
        updated["wordCount"] = payload["wordCount"]
    return updated, False
