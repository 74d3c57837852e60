from fastapi import APIRouter, Depends

from phoneauth.api.deps import get_current_user
from phoneauth.models.user import User
from phoneauth.schemas.auth import UserPublicOut
from phoneauth.services.identity import to_public

router = APIRouter()


@router.get("", response_model=UserPublicOut)
def me(current: User = Depends(get_current_user)):
    return to_public(current)
