from __future__ import annotations

import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session

from phoneauth.models.user import User
from phoneauth.services import verification
from phoneauth.services.identity import get_user_by_phone
from phoneauth.services.nac_provider import NacClient

DISCOVERY = {
    "issuer": "https://nac.test",
    "authorization_endpoint": "https://nac.test/oauth2/v1/authorize",
    "token_endpoint": "https://nac.test/oauth2/v1/token",
}


def make_engine(url: str):
    # pysqlite needs explicit BEGIN for SAVEPOINT to behave.
    engine = create_engine(url, connect_args={"check_same_thread": False})

    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


class ApiError(RuntimeError):
    def __init__(self, status_code: int, payload):
        self.status_code = status_code
        self.payload = payload
        super().__init__(f"HTTP {status_code}: {payload}")


class ApiClient:
    """JSON calls against the in-process app; non-2xx answers raise ``ApiError``."""

    def __init__(self, client):
        self.client = client

    def call(self, method: str, path: str, *, token: str | None = None, body=None, headers=None):
        req_headers = {"Accept": "application/json", **(headers or {})}
        if token:
            req_headers["Authorization"] = f"Bearer {token}"
        resp = self.client.request(method.upper(), path, json=body, headers=req_headers)
        payload = _parse_payload(resp.text)
        if resp.status_code >= 400:
            raise ApiError(resp.status_code, payload)
        return payload


def _parse_payload(raw: str):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


@dataclass
class PhoneFactory:
    prefix: str = "+5730000"
    counter: int = 0

    def next_phone(self) -> str:
        self.counter += 1
        return f"{self.prefix}{self.counter:05d}"


class FakeNacTransport:
    """Canned provider answers; set an attribute to an exception to make that call raise."""

    def __init__(self):
        self.discovery = dict(DISCOVERY)
        self.token_response = {"access_token": "provider-access-token", "token_type": "Bearer"}
        self.verify_response = {"result": True}
        self.calls: list[tuple] = []

    @staticmethod
    def _answer(value):
        if isinstance(value, Exception):
            raise value
        return value

    def get_json(self, url, *, headers):
        self.calls.append(("GET", url, None, headers))
        return self._answer(self.discovery)

    def post_form(self, url, payload, *, headers):
        self.calls.append(("POST_FORM", url, payload, headers))
        return self._answer(self.token_response)

    def post_json(self, url, payload, *, headers):
        self.calls.append(("POST_JSON", url, payload, headers))
        return self._answer(self.verify_response)


def state_from_url(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


def onboard_verified_user(db: Session, client: NacClient, phone: str = "+10000000001") -> User:
    result = verification.init_verification(db, client, phone=phone, full_name="Test User")
    verification.handle_callback(db, client, code="abc", state=state_from_url(result.authorization_url))
    db.commit()
    return get_user_by_phone(db, phone)


def sign_webhook(body: bytes, secret: str, timestamp: int | None = None) -> str:
    ts = timestamp if timestamp is not None else int(time.time())
    sig = hmac.new(secret.encode("utf-8"), f"{ts}.".encode("utf-8") + body, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"
