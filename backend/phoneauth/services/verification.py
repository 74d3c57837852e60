"""Phone verification correlator.

A user's verification record moves ``pending -> verified | failed``; a new
init puts any record back to ``pending``. The correlation token handed to the
provider as ``state`` ties the redirect callback and the server-to-server
webhook back to the record. It is dropped only when the record becomes
``verified``; a failed result keeps it so the other confirmation path can
still land.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Session

from phoneauth.core.errors import ExchangeFailedError, NotFoundError, ProviderUnavailableError, ValidationError
from phoneauth.core.logging import get_logger
from phoneauth.core.security import new_correlation_token, now_utc
from phoneauth.models.user import User
from phoneauth.services.audit import audit
from phoneauth.services.identity import get_or_create_user, get_user_by_correlation_token, normalize_phone
from phoneauth.services.nac_provider import NacClient

logger = get_logger(__name__)

VERIFICATION_METHOD = "nac_number_verification"
INIT_MESSAGE = "Abre authorization_url en el navegador del dispositivo usando datos moviles."


@dataclass(frozen=True)
class InitResult:
    user_id: str
    authorization_url: str
    message: str


@dataclass(frozen=True)
class VerificationOutcome:
    user_id: str
    status: str

    @property
    def verified(self) -> bool:
        return self.status == "verified"


def init_verification(db: Session, client: NacClient, *, phone: str | None, full_name: str | None = None) -> InitResult:
    phone_e164 = normalize_phone(phone)
    state = new_correlation_token()
    # Provider first: nothing is written when discovery or credentials fail.
    authorization_url = client.build_authorization_url(phone=phone_e164, state=state)

    user = get_or_create_user(db, phone_e164, full_name)
    user.verification_status = "pending"
    user.verification_correlation_token = state
    user.verification_attempts = User.verification_attempts + 1
    user.verification_subject_phone = phone_e164
    user.verification_check_url = authorization_url
    user.verification_method = VERIFICATION_METHOD
    user.verification_started_at = now_utc()
    user.verification_raw_response = None
    db.flush()
    db.refresh(user)

    audit(db, user.id, "verification", user.id, "verification_initiated", {"attempt": user.verification_attempts})
    logger.info("verification_initiated", user_id=str(user.id), attempt=user.verification_attempts)
    return InitResult(user_id=str(user.id), authorization_url=authorization_url, message=INIT_MESSAGE)


def _settle(db: Session, user: User, token: str, *, verified: bool, raw, source: str) -> VerificationOutcome:
    """Apply a provider verdict to the record still bound to ``token``.

    Conditional update: a record that moved on (already verified, expired, or
    re-initialised with a new token) is left alone and its current state is reported.
    """
    now = now_utc()
    stmt = sa.update(User).where(
        User.id == user.id,
        User.verification_correlation_token == token,
        User.verification_status != "expired",
    )
    if verified:
        stmt = stmt.values(
            verification_status="verified",
            verification_verified_at=sa.func.coalesce(User.verification_verified_at, now),
            verification_correlation_token=None,
            verification_raw_response=raw,
        )
    else:
        stmt = stmt.where(User.verification_status != "verified").values(
            verification_status="failed",
            verification_raw_response=raw,
        )
    applied = db.execute(stmt.execution_options(synchronize_session=False)).rowcount
    db.refresh(user)

    if applied:
        audit(db, user.id, "verification", user.id, f"verification_{user.verification_status}", {"source": source})
        logger.info("verification_settled", user_id=str(user.id), status=user.verification_status, source=source)
    else:
        logger.info(
            "verification_settle_skipped",
            user_id=str(user.id),
            status=user.verification_status,
            requested="verified" if verified else "failed",
            source=source,
        )
    return VerificationOutcome(user_id=str(user.id), status=user.verification_status)


def handle_callback(db: Session, client: NacClient, *, code: str | None, state: str | None) -> VerificationOutcome:
    if not code or not state:
        raise ValidationError("code y state son obligatorios")

    user = get_user_by_correlation_token(db, state)
    if not user:
        logger.warning("verification_callback_unknown_state")
        raise NotFoundError("Usuario no encontrado para state")
    if user.verification_status == "expired":
        logger.info("verification_callback_expired", user_id=str(user.id))
        return VerificationOutcome(user_id=str(user.id), status=user.verification_status)

    try:
        exchange = client.exchange_code(code)
    except ProviderUnavailableError as exc:
        exchange_raw = {"error": exc.error_code, "message": exc.message}
        access_token = None
    else:
        exchange_raw = exchange.raw
        access_token = exchange.access_token

    if not access_token:
        _settle(db, user, state, verified=False, raw=exchange_raw, source="callback")
        db.commit()
        logger.warning("verification_exchange_failed", user_id=str(user.id))
        raise ExchangeFailedError(raw_response=exchange_raw)

    phone = user.verification_subject_phone or user.phone_e164
    result = client.verify_number(access_token=access_token, phone=phone)
    return _settle(db, user, state, verified=result.verified, raw=result.raw, source="callback")


def _first_present(payload: dict, *keys: str):
    for key in keys:
        value = payload.get(key)
        if value:
            return value
    return None


def handle_webhook(db: Session, payload: dict) -> VerificationOutcome:
    token = _first_present(payload, "state", "requestId", "nonce")
    if not token:
        logger.warning("verification_webhook_missing_state")
        raise ValidationError("missing_request_state")

    status = _first_present(payload, "status", "verificationStatus")
    if status is None:
        status = "verified" if payload.get("result") is True else "failed"
    verified = str(status).strip().lower() == "verified"

    user = get_user_by_correlation_token(db, str(token))
    if not user:
        logger.warning("verification_webhook_unknown_state")
        raise NotFoundError("Usuario no encontrado para state")

    return _settle(db, user, str(token), verified=verified, raw=payload, source="webhook")


def expire_stale_verifications(db: Session, *, older_than: datetime) -> int:
    """Mark pending records started before ``older_than`` as expired.

    The correlation token is kept; an expired record ignores late provider
    results until a new init. Run by an operator job; the request path never
    calls it.
    """
    result = db.execute(
        sa.update(User)
        .where(
            User.verification_status == "pending",
            User.verification_started_at.is_not(None),
            User.verification_started_at < older_than,
        )
        .values(verification_status="expired")
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info("verification_expired", count=result.rowcount)
    return result.rowcount
