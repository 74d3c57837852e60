import base64
import hashlib
import hmac
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from phoneauth.core.config import settings
from phoneauth.core.errors import BadFormatError, CredentialExpiredError, InvalidCredentialError

ALGO = "HS256"
REFRESH_TOKEN_DELIMITER = "."
TOKEN_ID_BYTES = 8
REFRESH_SECRET_BYTES = 48
CORRELATION_TOKEN_BYTES = 16


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def new_correlation_token() -> str:
    return secrets.token_hex(CORRELATION_TOKEN_BYTES)


# Access credentials

def create_access_token(sub: str, phone: str, roles: list[str]) -> str:
    issued = now_utc()
    payload = {
        "sub": sub,
        "phone": phone,
        "roles": list(roles or []),
        "type": "access",
        "iat": issued,
        "exp": issued + timedelta(seconds=settings.JWT_ACCESS_TTL_SECONDS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGO)


def decode_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGO])
    except ExpiredSignatureError:
        raise CredentialExpiredError()
    except JWTError:
        raise InvalidCredentialError()
    if payload.get("type") != "access" or not payload.get("sub"):
        raise InvalidCredentialError("Tipo de token invalido")
    return payload


# Refresh tokens: "<token_id hex>.<secret hex>"

@dataclass(frozen=True)
class RefreshTokenParts:
    token_id: str
    secret: str

    def encode(self) -> str:
        return f"{self.token_id}{REFRESH_TOKEN_DELIMITER}{self.secret}"


def new_refresh_token() -> RefreshTokenParts:
    return RefreshTokenParts(
        token_id=secrets.token_hex(TOKEN_ID_BYTES),
        secret=secrets.token_hex(REFRESH_SECRET_BYTES),
    )


def parse_refresh_token(value: str | None) -> RefreshTokenParts:
    parts = (value or "").strip().split(REFRESH_TOKEN_DELIMITER)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise BadFormatError("Formato de refresh token invalido")
    return RefreshTokenParts(token_id=parts[0], secret=parts[1])


def parse_refresh_token_id(value: str | None) -> str:
    token_id = (value or "").strip().split(REFRESH_TOKEN_DELIMITER)[0]
    if not token_id:
        raise BadFormatError("Formato de refresh token invalido")
    return token_id


def _prehash_secret(secret: str) -> bytes:
    # bcrypt only reads 72 bytes; the hex secret is 96 chars
    return base64.b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


def hash_refresh_secret(secret: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.REFRESH_HASH_ROUNDS)
    return bcrypt.hashpw(_prehash_secret(secret), salt).decode("utf-8")


def verify_refresh_secret(secret: str, refresh_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_prehash_secret(secret), refresh_hash.encode("utf-8"))
    except ValueError:
        return False


# Webhook signatures: "t=<unix>,v1=<hex>"

def _parse_sig_header(signature_header: str | None) -> tuple[int, list[str]]:
    if not signature_header:
        return (0, [])
    timestamp = 0
    signatures: list[str] = []
    for part in signature_header.split(","):
        if "=" not in part:
            continue
        k, v = part.split("=", 1)
        key = k.strip().lower()
        val = v.strip()
        if key == "t":
            try:
                timestamp = int(val)
            except ValueError:
                timestamp = 0
        elif key in {"v1", "sig"}:
            signatures.append(val)
    return (timestamp, signatures)


def verify_hmac_signature(raw_body: bytes, signature_header: str | None, secret: str, max_age_seconds: int) -> bool:
    timestamp, signatures = _parse_sig_header(signature_header)
    if timestamp <= 0 or not signatures:
        return False
    if abs(int(time.time()) - timestamp) > max_age_seconds:
        return False
    payload = f"{timestamp}.".encode("utf-8") + raw_body
    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return any(hmac.compare_digest(expected, s) for s in signatures)
