import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class UserEntitlement(Base):
    __tablename__ = "user_entitlements"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(sa.Text, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    seq: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    tier: Mapped[str] = mapped_column(sa.Text, nullable=False)
    status: Mapped[str] = mapped_column(sa.Text, nullable=False, server_default="completed", default="completed")
    external_session_id: Mapped[str | None] = mapped_column(sa.Text, nullable=True, unique=True)
    amount_paid_cents: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    warning_48h_sent: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, server_default=sa.false(), default=False)
    warning_24h_sent: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, server_default=sa.false(), default=False)
    expired_sent: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, server_default=sa.false(), default=False)

    __table_args__ = (
        sa.CheckConstraint("tier IN ('rental','regular','boxset')", name="ck_user_entitlements_tier"),
        sa.CheckConstraint("status IN ('completed')", name="ck_user_entitlements_status"),
        sa.CheckConstraint(
            "(tier = 'rental' AND expires_at IS NOT NULL) OR (tier <> 'rental' AND expires_at IS NULL)",
            name="ck_user_entitlements_expiry",
        ),
        sa.Index("ix_user_entitlements_user_created", "user_id", sa.text("created_at DESC"), sa.text("seq DESC")),
        sa.Index("ix_user_entitlements_rental_expiry", "tier", "expires_at"),
    )
