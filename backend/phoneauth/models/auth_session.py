import uuid

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from phoneauth.core.security import now_utc
from phoneauth.db.base import Base


class AuthSession(Base):
    """One refresh-token lineage; rotation rewrites token_id/refresh_hash in place."""

    __tablename__ = "auth_sessions"

    id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    device_id: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    token_id: Mapped[str] = mapped_column(sa.Text, nullable=False, unique=True)
    refresh_hash: Mapped[str] = mapped_column(sa.Text, nullable=False)
    previous_token_id: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    issued_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=now_utc)
    last_seen_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=now_utc)
    revoked_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    revoked_reason: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    ip: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(sa.Text, nullable=True)

    __table_args__ = (
        sa.Index("ix_auth_sessions_user_active", "user_id", "revoked_at"),
        sa.Index("ix_auth_sessions_previous_token_id", "previous_token_id"),
    )
