"""search performance foundation tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""
from alembic import op
import sqlalchemy as sa


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _metric_columns() -> list[sa.Column]:
    return [
        sa.Column("clicks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("impressions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ctr", sa.Float(), nullable=False, server_default="0"),
        sa.Column("position", sa.Float(), nullable=False, server_default="1"),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _metric_checks(table: str) -> list[sa.CheckConstraint]:
    return [
        sa.CheckConstraint("clicks >= 0", name=f"ck_{table}_clicks_non_negative"),
        sa.CheckConstraint("impressions >= clicks", name=f"ck_{table}_impressions_gte_clicks"),
        sa.CheckConstraint("ctr >= 0 AND ctr <= 1", name=f"ck_{table}_ctr_range"),
        sa.CheckConstraint("position >= 1", name=f"ck_{table}_position_min"),
    ]


def upgrade() -> None:
    op.create_table(
        "search_query_metrics",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("keyword", sa.String(length=500), nullable=False),
        *_metric_columns(),
        sa.UniqueConstraint("keyword", "date", name="uq_search_query_metrics_keyword_date"),
        *_metric_checks("search_query_metrics"),
    )
    op.create_index("ix_search_query_metrics_keyword", "search_query_metrics", ["keyword"])
    op.create_index("ix_search_query_metrics_date", "search_query_metrics", ["date"])
    op.create_index("ix_search_query_metrics_position", "search_query_metrics", ["position"])

    op.create_table(
        "search_page_metrics",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("url", sa.String(length=500), nullable=False),
        sa.Column("content_id", sa.String(length=64), nullable=True),
        *_metric_columns(),
        sa.UniqueConstraint("url", "date", name="uq_search_page_metrics_url_date"),
        *_metric_checks("search_page_metrics"),
    )
    op.create_index("ix_search_page_metrics_url", "search_page_metrics", ["url"])
    op.create_index("ix_search_page_metrics_content_id", "search_page_metrics", ["content_id"])
    op.create_index("ix_search_page_metrics_date", "search_page_metrics", ["date"])

    op.create_table(
        "search_opportunities",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("keyword", sa.String(length=500), nullable=False),
        sa.Column("page_url", sa.String(length=500), nullable=True),
        sa.Column("content_id", sa.String(length=64), nullable=True),
        sa.Column("opportunity_type", sa.String(length=40), nullable=False),
        sa.Column("score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("current_position", sa.Float(), nullable=True),
        sa.Column("current_ctr", sa.Float(), nullable=True),
        sa.Column("impressions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("clicks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("position_change", sa.Float(), nullable=True),
        sa.Column("suggested_action", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("keyword", "opportunity_type", name="uq_search_opportunities_keyword_type"),
    )
    op.create_index("ix_search_opportunities_opportunity_type", "search_opportunities", ["opportunity_type"])
    op.create_index(
        "ix_search_opportunities_status_type_score",
        "search_opportunities",
        ["status", "opportunity_type", "score"],
    )

    op.create_table(
        "search_sync_states",
        sa.Column("site_url", sa.String(length=500), primary_key=True, nullable=False),
        sa.Column("lock_owner", sa.String(length=64), nullable=True),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_status", sa.String(length=20), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "task_executions",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("site_url", sa.String(length=500), nullable=False),
        sa.Column("task_name", sa.String(length=255), nullable=False),
        sa.Column("trigger", sa.String(length=20), nullable=False, server_default="schedule"),
        sa.Column("status", sa.String(length=40), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("result_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_task_executions_site_url", "task_executions", ["site_url"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("site_url", sa.String(length=500), nullable=False),
        sa.Column("event_type", sa.String(length=120), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_site_url", "audit_logs", ["site_url"])
    op.create_index("ix_audit_logs_event_type", "audit_logs", ["event_type"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_created_at", table_name="audit_logs")
    op.drop_index("ix_audit_logs_event_type", table_name="audit_logs")
    op.drop_index("ix_audit_logs_site_url", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_task_executions_site_url", table_name="task_executions")
    op.drop_table("task_executions")
    op.drop_table("search_sync_states")
    op.drop_index("ix_search_opportunities_status_type_score", table_name="search_opportunities")
    op.drop_index("ix_search_opportunities_opportunity_type", table_name="search_opportunities")
    op.drop_table("search_opportunities")
    op.drop_index("ix_search_page_metrics_date", table_name="search_page_metrics")
    op.drop_index("ix_search_page_metrics_content_id", table_name="search_page_metrics")
    op.drop_index("ix_search_page_metrics_url", table_name="search_page_metrics")
    op.drop_table("search_page_metrics")
    op.drop_index("ix_search_query_metrics_position", table_name="search_query_metrics")
    op.drop_index("ix_search_query_metrics_date", table_name="search_query_metrics")
    op.drop_index("ix_search_query_metrics_keyword", table_name="search_query_metrics")
    op.drop_table("search_query_metrics")
