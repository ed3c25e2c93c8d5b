"""initial magazine platform schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 12:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _uuid(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), **kwargs)


def _jsonb(name: str, default: str) -> sa.Column:
    return sa.Column(
        name,
        postgresql.JSONB(astext_type=sa.Text()),
        nullable=False,
        server_default=sa.text(f"'{default}'::jsonb"),
    )


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def upgrade() -> None:
    op.create_table(
        "tenants",
        _uuid("id", nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("plan", sa.String(length=32), nullable=False, server_default="basic"),
        sa.Column("billing_status", sa.String(length=32), nullable=False, server_default="active"),
        _jsonb("feature_flags", "{}"),
        sa.Column("custom_domain", sa.String(length=255), nullable=True),
        sa.Column("website", sa.String(length=512), nullable=True),
        sa.Column("stripe_customer_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(length=255), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tenants_slug", "tenants", ["slug"], unique=True)
    op.create_index("ix_tenants_stripe_subscription_id", "tenants", ["stripe_subscription_id"], unique=False)

    op.create_table(
        "users",
        _uuid("id", nullable=False),
        _uuid("tenant_id", nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="viewer"),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
    )
    op.create_check_constraint("ck_users_role_values", "users", "role IN ('owner', 'admin', 'editor', 'viewer')")

    op.create_table(
        "magazines",
        _uuid("id", nullable=False),
        _uuid("tenant_id", nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _jsonb("theme", "{}"),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "slug", name="uq_magazines_tenant_slug"),
    )
    op.create_index("ix_magazines_tenant_id", "magazines", ["tenant_id"], unique=False)

    op.create_table(
        "blueprints",
        _uuid("id", nullable=False),
        _uuid("tenant_id", nullable=False),
        _uuid("magazine_id", nullable=False),
        _jsonb("structure", "{}"),
        _jsonb("voice", "{}"),
        _jsonb("niche", "{}"),
        _jsonb("sources", "{}"),
        sa.Column("cadence", sa.String(length=32), nullable=False, server_default="monthly"),
        sa.Column("approval_mode", sa.String(length=32), nullable=False, server_default="semi_auto"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["magazine_id"], ["magazines.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("magazine_id", name="uq_blueprints_magazine_id"),
    )
    op.create_index("ix_blueprints_tenant_id", "blueprints", ["tenant_id"], unique=False)

    op.create_table(
        "issues",
        _uuid("id", nullable=False),
        _uuid("tenant_id", nullable=False),
        _uuid("magazine_id", nullable=False),
        sa.Column("slug", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("cover_url", sa.String(length=1024), nullable=True),
        _jsonb("sprites", "[]"),
        _jsonb("meta", "{}"),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["magazine_id"], ["magazines.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("magazine_id", "slug", name="uq_issues_magazine_slug"),
        sa.CheckConstraint(
            "status IN ('pending', 'ready', 'retrying', 'scheduled', 'published', 'canceled', 'error')",
            name="ck_issues_status_values",
        ),
    )
    op.create_index("ix_issues_tenant_id", "issues", ["tenant_id"], unique=False)
    op.create_index("ix_issues_magazine_id", "issues", ["magazine_id"], unique=False)
    op.create_index("ix_issues_scheduled_at", "issues", ["scheduled_at"], unique=False)

    op.create_table(
        "articles",
        _uuid("id", nullable=False),
        _uuid("tenant_id", nullable=False),
        _uuid("issue_id", nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("html", sa.Text(), nullable=False, server_default=""),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("hero_url", sa.String(length=1024), nullable=True),
        _jsonb("tags", "[]"),
        sa.Column("reading_time", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("word_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_fallback", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["issue_id"], ["issues.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("issue_id", "slug", name="uq_articles_issue_slug"),
    )
    op.create_index("ix_articles_tenant_id", "articles", ["tenant_id"], unique=False)
    op.create_index("ix_articles_issue_id", "articles", ["issue_id"], unique=False)

    op.create_table(
        "ad_slots",
        _uuid("id", nullable=False),
        _uuid("tenant_id", nullable=False),
        _uuid("issue_id", nullable=False),
        sa.Column("slot_key", sa.String(length=64), nullable=False),
        sa.Column("creative_url", sa.String(length=1024), nullable=True),
        sa.Column("target_url", sa.String(length=1024), nullable=True),
        sa.Column("sponsor", sa.String(length=255), nullable=True),
        sa.Column("tracking_code", sa.String(length=2048), nullable=True),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["issue_id"], ["issues.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("issue_id", "slot_key", name="uq_ad_slots_issue_slot_key"),
    )
    op.create_index("ix_ad_slots_tenant_id", "ad_slots", ["tenant_id"], unique=False)
    op.create_index("ix_ad_slots_issue_id", "ad_slots", ["issue_id"], unique=False)

    op.create_table(
        "analytics_events",
        _uuid("id", nullable=False),
        _uuid("tenant_id", nullable=False),
        _uuid("magazine_id", nullable=False),
        _uuid("issue_id", nullable=False),
        sa.Column("issue_slug", sa.String(length=64), nullable=False),
        sa.Column("article_id", sa.String(length=64), nullable=True),
        sa.Column("event", sa.String(length=32), nullable=False),
        _jsonb("payload", "{}"),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["magazine_id"], ["magazines.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["issue_id"], ["issues.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_analytics_events_tenant_created", "analytics_events", ["tenant_id", "created_at"], unique=False)
    op.create_index("ix_analytics_events_magazine_id", "analytics_events", ["magazine_id"], unique=False)
    op.create_index("ix_analytics_events_issue_id", "analytics_events", ["issue_id"], unique=False)

    op.create_table(
        "generation_jobs",
        _uuid("id", nullable=False),
        _uuid("tenant_id", nullable=False),
        _uuid("issue_id", nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False, server_default="generate"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("requested_by", sa.String(length=255), nullable=True),
        _jsonb("result", "{}"),
        _jsonb("log", "[]"),
        sa.Column("error", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["issue_id"], ["issues.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_jobs_tenant_id", "generation_jobs", ["tenant_id"], unique=False)
    op.create_index("ix_generation_jobs_issue_id", "generation_jobs", ["issue_id"], unique=False)

    op.create_table(
        "activation_runs",
        _uuid("id", nullable=False),
        sa.Column("month", sa.String(length=7), nullable=False),
        sa.Column("total_tenants", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped_count", sa.Integer(), nullable=False, server_default="0"),
        _jsonb("details", "[]"),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_activation_runs_month", "activation_runs", ["month"], unique=False)

    op.create_table(
        "audit_logs",
        _uuid("id", nullable=False),
        _uuid("tenant_id", nullable=False),
        sa.Column("action", sa.String(length=128), nullable=False),
        _jsonb("metadata_json", "{}"),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"], unique=False)

    op.create_table(
        "failed_jobs",
        _uuid("id", nullable=False),
        sa.Column("job_type", sa.String(length=64), nullable=False),
        _jsonb("payload", "{}"),
        sa.Column("error_message", sa.Text(), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_failed_jobs_job_type", "failed_jobs", ["job_type"], unique=False)

    op.create_table(
        "stripe_events",
        _uuid("id", nullable=False),
        sa.Column("stripe_event_id", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="received"),
        sa.Column("error", sa.Text(), nullable=True),
        _timestamp("received_at"),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stripe_events_stripe_event_id", "stripe_events", ["stripe_event_id"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_stripe_events_stripe_event_id", table_name="stripe_events")
    op.drop_table("stripe_events")
    op.drop_index("ix_failed_jobs_job_type", table_name="failed_jobs")
    op.drop_table("failed_jobs")
    op.drop_index("ix_audit_logs_tenant_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_activation_runs_month", table_name="activation_runs")
    op.drop_table("activation_runs")
    op.drop_index("ix_generation_jobs_issue_id", table_name="generation_jobs")
    op.drop_index("ix_generation_jobs_tenant_id", table_name="generation_jobs")
    op.drop_table("generation_jobs")
    op.drop_index("ix_analytics_events_issue_id", table_name="analytics_events")
    op.drop_index("ix_analytics_events_magazine_id", table_name="analytics_events")
    op.drop_index("ix_analytics_events_tenant_created", table_name="analytics_events")
    op.drop_table("analytics_events")
    op.drop_index("ix_ad_slots_issue_id", table_name="ad_slots")
    op.drop_index("ix_ad_slots_tenant_id", table_name="ad_slots")
    op.drop_table("ad_slots")
    op.drop_index("ix_articles_issue_id", table_name="articles")
    op.drop_index("ix_articles_tenant_id", table_name="articles")
    op.drop_table("articles")
    op.drop_index("ix_issues_scheduled_at", table_name="issues")
    op.drop_index("ix_issues_magazine_id", table_name="issues")
    op.drop_index("ix_issues_tenant_id", table_name="issues")
    op.drop_table("issues")
    op.drop_index("ix_blueprints_tenant_id", table_name="blueprints")
    op.drop_table("blueprints")
    op.drop_index("ix_magazines_tenant_id", table_name="magazines")
    op.drop_table("magazines")
    op.drop_constraint("ck_users_role_values", "users", type_="check")
    op.drop_table("users")
    op.drop_index("ix_tenants_stripe_subscription_id", table_name="tenants")
    op.drop_index("ix_tenants_slug", table_name="tenants")
    op.drop_table("tenants")
