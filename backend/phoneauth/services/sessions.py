"""Login, refresh-token rotation and logout.

A session row is one refresh-token lineage. Refresh rotates the row's
``token_id``/``refresh_hash`` in place, so every refresh token is single use.
A known ``token_id`` presented with the wrong secret revokes the lineage.
Logout needs only the ``token_id`` half: it is stored and sent in clear and
is treated as non-secret, so it is enough to end a session but never to
extend one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NoReturn

from sqlalchemy.orm import Session

from phoneauth.core.config import settings
from phoneauth.core.errors import NotFoundError, UnauthorizedError
from phoneauth.core.logging import get_logger
from phoneauth.core.security import (
    create_access_token,
    hash_refresh_secret,
    new_refresh_token,
    now_utc,
    parse_refresh_token,
    parse_refresh_token_id,
    verify_refresh_secret,
)
from phoneauth.models.user import User
from phoneauth.schemas.auth import UserPublicOut
from phoneauth.services import session_store
from phoneauth.services.audit import audit
from phoneauth.services.identity import get_user_by_phone, normalize_phone, to_public, upsert_device

logger = get_logger(__name__)

INVALID_REFRESH = "invalid_refresh"


@dataclass(frozen=True)
class IssuedTokens:
    access_token: str
    refresh_token: str
    expires_in: int


@dataclass(frozen=True)
class LoginResult:
    tokens: IssuedTokens
    user: UserPublicOut


def _access_token_for(user: User) -> str:
    return create_access_token(str(user.id), user.phone_e164, list(user.roles or []))


def login(
    db: Session,
    *,
    phone: str | None,
    device_id: str | None = None,
    platform: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
) -> LoginResult:
    phone_e164 = normalize_phone(phone)
    user = get_user_by_phone(db, phone_e164)
    if not user:
        raise NotFoundError("Usuario no encontrado", error_code="user_not_found")
    if user.verification_status != "verified":
        raise UnauthorizedError("phone_not_verified", "Telefono no verificado")
    if user.status != "active":
        raise UnauthorizedError("account_inactive", "Usuario bloqueado")

    pair = new_refresh_token()
    row = session_store.create_session(
        db,
        user_id=user.id,
        token_id=pair.token_id,
        refresh_hash=hash_refresh_secret(pair.secret),
        device_id=device_id,
        ip=ip,
        user_agent=user_agent,
    )
    if device_id:
        upsert_device(db, user, device_id, platform)
    user.last_login_at = now_utc()
    db.flush()
    db.refresh(user)

    audit(db, user.id, "auth_session", row.id, "login", {"device_id": device_id})
    logger.info("session_issued", user_id=str(user.id), session_id=str(row.id), device_id=device_id)
    tokens = IssuedTokens(
        access_token=_access_token_for(user),
        refresh_token=pair.encode(),
        expires_in=settings.JWT_ACCESS_TTL_SECONDS,
    )
    return LoginResult(tokens=tokens, user=to_public(user))


def _reject_unknown_token_id(db: Session, token_id: str) -> NoReturn:
    # A superseded token_id coming back means the old token leaked.
    if settings.REFRESH_REUSE_DETECTION:
        lineage = session_store.find_active_by_previous_token_id(db, token_id)
        if lineage and session_store.revoke(db, lineage.id, reason="reuse_detected"):
            audit(db, lineage.user_id, "auth_session", lineage.id, "refresh_reuse_detected", {})
            db.commit()
            logger.warning("refresh_reuse_detected", user_id=str(lineage.user_id), session_id=str(lineage.id))
    raise UnauthorizedError(INVALID_REFRESH, "Refresh token invalido")


def refresh(db: Session, *, refresh_token: str | None) -> IssuedTokens:
    presented = parse_refresh_token(refresh_token)

    row = session_store.find_active_by_token_id(db, presented.token_id)
    if not row:
        _reject_unknown_token_id(db, presented.token_id)

    if not verify_refresh_secret(presented.secret, row.refresh_hash):
        if session_store.revoke(db, row.id, reason="hash_mismatch"):
            audit(db, row.user_id, "auth_session", row.id, "refresh_hash_mismatch", {})
        db.commit()
        logger.warning("session_revoked", session_id=str(row.id), reason="hash_mismatch")
        raise UnauthorizedError(INVALID_REFRESH, "Refresh token invalido")

    user = db.get(User, row.user_id)
    if not user:
        raise NotFoundError("Usuario no encontrado", error_code="user_not_found")
    if user.status != "active":
        if session_store.revoke(db, row.id, reason="account_inactive"):
            audit(db, row.user_id, "auth_session", row.id, "refresh_account_inactive", {})
        db.commit()
        logger.warning("session_revoked", session_id=str(row.id), reason="account_inactive")
        raise UnauthorizedError("account_inactive", "Usuario bloqueado")

    pair = new_refresh_token()
    rotated = session_store.rotate(
        db,
        session_id=row.id,
        expected_token_id=row.token_id,
        expected_hash=row.refresh_hash,
        new_token_id=pair.token_id,
        new_hash=hash_refresh_secret(pair.secret),
    )
    if not rotated:
        logger.warning("session_rotation_lost_race", session_id=str(row.id))
        raise UnauthorizedError(INVALID_REFRESH, "Refresh token invalido")

    logger.info("session_rotated", user_id=str(user.id), session_id=str(row.id))
    return IssuedTokens(
        access_token=_access_token_for(user),
        refresh_token=pair.encode(),
        expires_in=settings.JWT_ACCESS_TTL_SECONDS,
    )


def logout(db: Session, *, refresh_token: str | None) -> None:
    token_id = parse_refresh_token_id(refresh_token)
    row = session_store.find_by_token_id(db, token_id)
    if not row:
        return
    if session_store.revoke(db, row.id, reason="logout"):
        audit(db, row.user_id, "auth_session", row.id, "logout", {})
        logger.info("session_revoked", session_id=str(row.id), reason="logout")
