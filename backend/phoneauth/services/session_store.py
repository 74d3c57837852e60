from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.orm import Session

from phoneauth.core.security import now_utc
from phoneauth.models.auth_session import AuthSession


def create_session(
    db: Session,
    *,
    user_id,
    token_id: str,
    refresh_hash: str,
    device_id: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
) -> AuthSession:
    now = now_utc()
    row = AuthSession(
        user_id=user_id,
        device_id=device_id,
        token_id=token_id,
        refresh_hash=refresh_hash,
        issued_at=now,
        last_seen_at=now,
        ip=ip,
        user_agent=user_agent or "",
    )
    db.add(row)
    db.flush()
    return row


def find_active_by_token_id(db: Session, token_id: str) -> AuthSession | None:
    return db.execute(
        sa.select(AuthSession).where(AuthSession.token_id == token_id, AuthSession.revoked_at.is_(None))
    ).scalar_one_or_none()


def find_by_token_id(db: Session, token_id: str) -> AuthSession | None:
    return db.execute(sa.select(AuthSession).where(AuthSession.token_id == token_id)).scalar_one_or_none()


def find_active_by_previous_token_id(db: Session, token_id: str) -> AuthSession | None:
    return db.execute(
        sa.select(AuthSession)
        .where(AuthSession.previous_token_id == token_id, AuthSession.revoked_at.is_(None))
        .limit(1)
    ).scalar_one_or_none()


def rotate(
    db: Session,
    *,
    session_id,
    expected_token_id: str,
    expected_hash: str,
    new_token_id: str,
    new_hash: str,
) -> bool:
    """Swap the token material only if the row still holds what the caller verified.

    Returns False when a concurrent refresh or a revocation got there first.
    """
    result = db.execute(
        sa.update(AuthSession)
        .where(
            AuthSession.id == session_id,
            AuthSession.token_id == expected_token_id,
            AuthSession.refresh_hash == expected_hash,
            AuthSession.revoked_at.is_(None),
        )
        .values(
            token_id=new_token_id,
            refresh_hash=new_hash,
            previous_token_id=expected_token_id,
            last_seen_at=now_utc(),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def revoke(db: Session, session_id, *, reason: str) -> bool:
    """Mark the session revoked; False if it already was."""
    result = db.execute(
        sa.update(AuthSession)
        .where(AuthSession.id == session_id, AuthSession.revoked_at.is_(None))
        .values(revoked_at=now_utc(), revoked_reason=reason)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
