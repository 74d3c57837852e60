from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class OnboardInitIn(BaseModel):
    phone: str = Field(..., min_length=1, max_length=32, examples=["+10000000001"])
    full_name: str | None = Field(default=None, max_length=160)


class OnboardInitOut(BaseModel):
    authorization_url: str
    message: str


class WebhookAckOut(BaseModel):
    ok: bool = True
    status: str


class DeviceInfoIn(BaseModel):
    platform: Literal["android", "ios", "web"] = "android"


class LoginIn(BaseModel):
    phone: str = Field(..., min_length=1, max_length=32)
    device_id: str | None = Field(default=None, max_length=128)
    device_info: DeviceInfoIn | None = None


class RefreshIn(BaseModel):
    refresh_token: str


class LogoutIn(BaseModel):
    refresh_token: str


class SimpleOKOut(BaseModel):
    ok: bool = True


class VerificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str
    attempts: int
    subject_phone: str | None = None
    method: str | None = None
    verified_at: datetime | None = None


class DeviceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    device_id: str
    platform: str
    last_seen_at: datetime


class UserPublicOut(BaseModel):
    id: UUID
    full_name: str
    phone: str
    email: str | None = None
    roles: list[str]
    status: str
    verification: VerificationOut
    devices: list[DeviceOut] = []
    created_at: datetime
    last_login_at: datetime | None = None


class TokenOut(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class LoginOut(TokenOut):
    user: UserPublicOut
