from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from phoneauth.core.errors import InvalidCredentialError, UnauthorizedError
from phoneauth.core.security import decode_access_token
from phoneauth.db.session import get_db
from phoneauth.models.user import User
from phoneauth.services.nac_provider import NacClient

bearer = HTTPBearer(auto_error=False)


def get_nac_client() -> NacClient:
    return NacClient()


def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if creds is None:
        raise InvalidCredentialError("Token ausente")
    payload = decode_access_token(creds.credentials)
    user = db.get(User, _parse_uuid(payload["sub"]))
    if not user:
        raise InvalidCredentialError("Usuario no encontrado")
    if user.status != "active":
        raise UnauthorizedError("account_inactive", "Usuario bloqueado")
    return user


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(str(value))
    except ValueError:
        raise InvalidCredentialError()
