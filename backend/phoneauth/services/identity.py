from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from phoneauth.core.errors import ValidationError
from phoneauth.core.security import now_utc
from phoneauth.models.user import User, UserDevice
from phoneauth.schemas.auth import DeviceOut, UserPublicOut, VerificationOut


def normalize_phone(phone: str | None) -> str:
    raw = (phone or "").strip()
    if not raw:
        raise ValidationError("phone es obligatorio")
    digits = "".join(ch for ch in raw if ch.isdigit())
    if not digits:
        raise ValidationError("Telefono invalido")
    return "+" + digits


def get_user_by_phone(db: Session, phone_e164: str) -> User | None:
    return db.execute(sa.select(User).where(User.phone_e164 == phone_e164)).scalar_one_or_none()


def get_user_by_correlation_token(db: Session, token: str) -> User | None:
    return db.execute(
        sa.select(User).where(User.verification_correlation_token == token)
    ).scalar_one_or_none()


def get_or_create_user(db: Session, phone_e164: str, full_name: str | None = None) -> User:
    user = get_user_by_phone(db, phone_e164)
    if user:
        return user
    try:
        with db.begin_nested():
            user = User(phone_e164=phone_e164, full_name=(full_name or "").strip() or "Unknown")
            db.add(user)
    except IntegrityError:
        # Another request created the same phone first.
        user = get_user_by_phone(db, phone_e164)
        if not user:
            raise
    return user


def upsert_device(db: Session, user: User, device_id: str, platform: str | None = None) -> UserDevice:
    now = now_utc()
    device = db.execute(
        sa.select(UserDevice).where(UserDevice.user_id == user.id, UserDevice.device_id == device_id)
    ).scalar_one_or_none()
    if device is None:
        try:
            with db.begin_nested():
                device = UserDevice(user_id=user.id, device_id=device_id, platform=platform or "android", last_seen_at=now)
                db.add(device)
            return device
        except IntegrityError:
            device = db.execute(
                sa.select(UserDevice).where(UserDevice.user_id == user.id, UserDevice.device_id == device_id)
            ).scalar_one()
    device.last_seen_at = now
    return device


def to_public(user: User) -> UserPublicOut:
    """Public projection of an identity: no raw provider payload, no correlation token."""
    return UserPublicOut(
        id=user.id,
        full_name=user.full_name,
        phone=user.phone_e164,
        email=user.email,
        roles=list(user.roles or []),
        status=user.status,
        verification=VerificationOut(
            status=user.verification_status,
            attempts=user.verification_attempts or 0,
            subject_phone=user.verification_subject_phone,
            method=user.verification_method,
            verified_at=user.verification_verified_at,
        ),
        devices=[DeviceOut.model_validate(d) for d in user.devices],
        created_at=user.created_at,
        last_login_at=user.last_login_at,
    )
