"""Authorizations, audit log, rollbacks and consent history.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "proxy_authorizations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(256), index=True, nullable=False),
        sa.Column("action_class", sa.String(64), index=True, nullable=False),
        sa.Column("action_type", sa.String(32), nullable=False),
        sa.Column("scope", sa.String(32), index=True, nullable=False),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("grant_method", sa.String(32), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "scope IN ('single', 'session', 'standing', 'conditional')",
            name="proxy_authorizations_scope_check",
        ),
        sa.CheckConstraint(
            "grant_method IN ('explicit_consent', 'implicit_learning', 'bulk_grant')",
            name="proxy_authorizations_grant_method_check",
        ),
    )
    op.create_index(
        "proxy_authorizations_active_idx",
        "proxy_authorizations",
        ["user_id", "action_class", "revoked_at"],
    )

    op.create_table(
        "proxy_audit_log",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(256), index=True, nullable=False),
        sa.Column(
            "authorization_id",
            sa.String(36),
            sa.ForeignKey("proxy_authorizations.id", ondelete="SET NULL"),
            index=True,
            nullable=True,
        ),
        # What was attempted
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("action_class", sa.String(64), index=True, nullable=False),
        sa.Column("mode", sa.String(16), nullable=False),
        sa.Column("persona", sa.String(32), nullable=False),
        sa.Column("input", sa.JSON(), nullable=True),
        sa.Column("output", sa.JSON(), nullable=True),
        # Model telemetry
        sa.Column("model_used", sa.String(128), nullable=True),
        sa.Column("confidence", sa.Integer(), nullable=True),
        sa.Column("tokens_used", sa.Integer(), nullable=True),
        sa.Column("latency_ms", sa.Integer(), nullable=True),
        # Outcome
        sa.Column("success", sa.Boolean(), index=True, nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("user_confirmed", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), index=True, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("mode IN ('assistant', 'proxy')", name="proxy_audit_log_mode_check"),
        sa.CheckConstraint(
            "confidence >= 0 AND confidence <= 100", name="proxy_audit_log_confidence_check"
        ),
    )

    op.create_table(
        "proxy_rollbacks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "audit_entry_id",
            sa.String(36),
            sa.ForeignKey("proxy_audit_log.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        ),
        sa.Column("user_id", sa.String(256), index=True, nullable=False),
        sa.Column("strategy", sa.String(32), nullable=False),
        sa.Column("status", sa.String(32), index=True, nullable=False),
        sa.Column("rollback_data", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), index=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "proxy_rollbacks_active_entry_uq",
        "proxy_rollbacks",
        ["audit_entry_id"],
        unique=True,
        postgresql_where=sa.text("status != 'failed'"),
        sqlite_where=sa.text("status != 'failed'"),
    )

    op.create_table(
        "consent_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(256), index=True, nullable=False),
        sa.Column(
            "authorization_id",
            sa.String(36),
            sa.ForeignKey("proxy_authorizations.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        ),
        sa.Column("change_type", sa.String(16), index=True, nullable=False),
        sa.Column("previous_state", sa.JSON(), nullable=True),
        sa.Column("new_state", sa.JSON(), nullable=True),
        sa.Column("changed_by", sa.String(32), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), index=True, nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("consent_history")
    op.drop_index("proxy_rollbacks_active_entry_uq", table_name="proxy_rollbacks")
    op.drop_table("proxy_rollbacks")
    op.drop_table("proxy_audit_log")
    op.drop_index("proxy_authorizations_active_idx", table_name="proxy_authorizations")
    op.drop_table("proxy_authorizations")
