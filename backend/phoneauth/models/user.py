import uuid

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from phoneauth.core.security import now_utc
from phoneauth.db.base import Base

VERIFICATION_STATUSES = ("pending", "verified", "failed", "expired")


class User(Base):
    __tablename__ = "users"

    id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    phone_e164: Mapped[str] = mapped_column(sa.Text, unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(sa.Text, nullable=False, default="Unknown")
    email: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    roles: Mapped[list] = mapped_column(sa.JSON, nullable=False, default=lambda: ["user"])
    status: Mapped[str] = mapped_column(sa.Text, nullable=False, default="active")
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=now_utc)
    last_login_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    # Verification record (one active attempt per user)
    verification_status: Mapped[str] = mapped_column(sa.Text, nullable=False, default="pending")
    verification_correlation_token: Mapped[str | None] = mapped_column(sa.Text, unique=True, nullable=True)
    verification_attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    verification_subject_phone: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    verification_check_url: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    verification_method: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    verification_started_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    verification_verified_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    verification_raw_response: Mapped[dict | None] = mapped_column(sa.JSON, nullable=True)

    __table_args__ = (
        sa.CheckConstraint("status in ('active','suspended','deleted')", name="ck_user_status"),
        sa.CheckConstraint(
            "verification_status in ('pending','verified','failed','expired')",
            name="ck_user_verification_status",
        ),
        sa.Index("ix_users_verification_pending", "verification_status", "verification_started_at"),
    )

    devices = relationship(
        "UserDevice",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="UserDevice.last_seen_at.desc()",
    )


class UserDevice(Base):
    __tablename__ = "user_devices"

    id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    device_id: Mapped[str] = mapped_column(sa.Text, nullable=False)
    platform: Mapped[str] = mapped_column(sa.Text, nullable=False, default="android")
    last_seen_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=now_utc)

    __table_args__ = (
        sa.CheckConstraint("platform in ('android','ios','web')", name="ck_user_device_platform"),
        sa.UniqueConstraint("user_id", "device_id", name="uq_user_devices_user_device"),
    )

    user = relationship("User", back_populates="devices")
