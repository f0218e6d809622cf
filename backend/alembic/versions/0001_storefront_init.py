"""storefront init: users, entitlements, checkout, webhook log, audit

Revision ID: 0001_storefront_init
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

revision = "0001_storefront_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # users (id is the identity provider subject)
    op.create_table(
        "users",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("purchase_seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
    )

    # user_entitlements (append-only purchase records)
    op.create_table(
        "user_entitlements",
        sa.Column("id", sa.Uuid(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", sa.Text(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("tier", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="completed"),
        sa.Column("external_session_id", sa.Text(), nullable=True, unique=True),
        sa.Column("amount_paid_cents", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("warning_48h_sent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("warning_24h_sent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("expired_sent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.CheckConstraint("tier IN ('rental','regular','boxset')", name="ck_user_entitlements_tier"),
        sa.CheckConstraint("status IN ('completed')", name="ck_user_entitlements_status"),
        sa.CheckConstraint(
            "(tier = 'rental' AND expires_at IS NOT NULL) OR (tier <> 'rental' AND expires_at IS NULL)",
            name="ck_user_entitlements_expiry",
        ),
    )
    op.create_index(
        "ix_user_entitlements_user_created",
        "user_entitlements",
        ["user_id", sa.text("created_at DESC"), sa.text("seq DESC")],
    )
    op.create_index("ix_user_entitlements_rental_expiry", "user_entitlements", ["tier", "expires_at"])

    op.create_table(
        "checkout_sessions",
        sa.Column("id", sa.Uuid(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", sa.Text(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("provider", sa.Text(), nullable=False),
        sa.Column("provider_session_id", sa.Text(), nullable=False),
        sa.Column("tier", sa.Text(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="created"),
        sa.Column("redirect_url", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("provider IN ('none','stripe','manual')", name="ck_checkout_sessions_provider"),
        sa.CheckConstraint("tier IN ('rental','regular','boxset')", name="ck_checkout_sessions_tier"),
        sa.CheckConstraint("status IN ('created','completed','expired')", name="ck_checkout_sessions_status"),
        sa.UniqueConstraint("provider", "provider_session_id", name="uq_checkout_sessions_provider_session"),
    )
    op.create_index("ix_checkout_sessions_user_created", "checkout_sessions", ["user_id", sa.text("created_at DESC")])

    op.create_table(
        "payment_webhook_events",
        sa.Column("id", sa.Uuid(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("provider", sa.Text(), nullable=False),
        sa.Column("event_id", sa.Text(), nullable=False),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("session_id", sa.Text(), nullable=True),
        sa.Column("user_id", sa.Text(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "status IN ('processed','duplicate','ignored','conflict')",
            name="ck_payment_webhook_events_status",
        ),
        sa.UniqueConstraint("provider", "event_id", name="uq_payment_webhook_events_provider_event_id"),
    )
    op.create_index(
        "ix_payment_webhook_events_status_received",
        "payment_webhook_events",
        ["status", sa.text("received_at DESC")],
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Uuid(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("actor_user_id", sa.Text(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("entity_type", sa.Text(), nullable=False),
        sa.Column("entity_id", sa.Text(), nullable=False),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_audit_entity", "audit_log", ["entity_type", "entity_id"])
    op.create_index("ix_audit_actor_created", "audit_log", ["actor_user_id", sa.text("created_at DESC")])


def downgrade():
    op.drop_index("ix_audit_actor_created", table_name="audit_log")
    op.drop_index("ix_audit_entity", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_index("ix_payment_webhook_events_status_received", table_name="payment_webhook_events")
    op.drop_table("payment_webhook_events")
    op.drop_index("ix_checkout_sessions_user_created", table_name="checkout_sessions")
    op.drop_table("checkout_sessions")
    op.drop_index("ix_user_entitlements_rental_expiry", table_name="user_entitlements")
    op.drop_index("ix_user_entitlements_user_created", table_name="user_entitlements")
    op.drop_table("user_entitlements")
    op.drop_table("users")
