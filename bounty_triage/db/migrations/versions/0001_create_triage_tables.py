"""create issues, reporters and audit_log tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

ISSUE_STATUSES = ("unreviewed", "valid", "invalid", "closed")
REPORTER_ROLES = ("reporter", "reviewer")
AUDIT_ACTIONS = ("reviewed", "closed", "locked", "role_changed", "recomputed")


def upgrade() -> None:
    op.create_table(
        "issues",
        sa.Column("github_issue_id", sa.BigInteger, primary_key=True, autoincrement=False),
        sa.Column("github_number", sa.Integer, nullable=False),
        sa.Column("repo", sa.String(length=200), nullable=False),
        sa.Column("org", sa.String(length=200), nullable=False),
        sa.Column("title", sa.String(length=1024), nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column("reporter", sa.String(length=200), nullable=False),
        sa.Column("reporter_team", sa.String(length=200), nullable=False),
        sa.Column("labels", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "received_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "status",
            sa.Enum(*ISSUE_STATUSES, name="issue_status"),
            nullable=False,
            server_default="unreviewed",
        ),
        sa.Column("marked_by", sa.String(length=200), nullable=True),
        sa.Column("marked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("immutable", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
    )
    op.create_index("ix_issues_repo", "issues", ["repo"])
    op.create_index("ix_issues_reporter", "issues", ["reporter"])
    op.create_index("ix_issues_status", "issues", ["status"])
    op.create_index("ix_issues_reporter_status", "issues", ["reporter", "status"])
    op.create_index("ix_issues_created_at", "issues", ["created_at"])

    op.create_table(
        "reporters",
        sa.Column("github_username", sa.String(length=200), primary_key=True),
        sa.Column(
            "role",
            sa.Enum(*REPORTER_ROLES, name="reporter_role"),
            nullable=False,
            server_default="reporter",
        ),
        sa.Column("total_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_reporters_role", "reporters", ["role"])
    op.create_index("ix_reporters_total_points", "reporters", ["total_points"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "ts",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("actor_id", sa.String(length=200), nullable=False),
        sa.Column(
            "action",
            sa.Enum(*AUDIT_ACTIONS, name="audit_action"),
            nullable=False,
        ),
        sa.Column("entity_kind", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=200), nullable=False),
        sa.Column("before", sa.JSON, nullable=True),
        sa.Column("after", sa.JSON, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
    )
    op.create_index("ix_audit_log_ts", "audit_log", ["ts"])
    op.create_index("ix_audit_log_actor_id", "audit_log", ["actor_id"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])
    op.create_index("ix_audit_log_entity", "audit_log", ["entity_kind", "entity_id"])
    op.create_index(
        "ix_audit_log_entity_ts", "audit_log", ["entity_kind", "entity_id", "ts"]
    )


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("reporters")
    op.drop_table("issues")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name in ("audit_action", "reporter_role", "issue_status"):
            sa.Enum(name=name).drop(bind, checkfirst=True)
