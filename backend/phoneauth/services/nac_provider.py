"""Network-as-Code number verification adapter.

Everything that knows the provider's wire shapes lives here; the verification
state machine only sees ``TokenExchangeResult`` / ``NumberVerificationResult``.
"""

from __future__ import annotations

import http.client
import json
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Protocol
from urllib import error as urlerror
from urllib import parse as urlparse
from urllib import request as urlrequest

from phoneauth.core.config import settings
from phoneauth.core.errors import ProviderUnavailableError
from phoneauth.core.logging import get_logger
from phoneauth.core.security import verify_hmac_signature

logger = get_logger(__name__)

DISCOVERY_PATH = "/.well-known/openid-configuration"
_SUCCESS_FIELDS = ("result", "value", "success", "devicePhoneNumberVerified")


class ProviderHTTPError(Exception):
    """The provider answered with a non-2xx status."""

    def __init__(self, status_code: int, payload: Any):
        self.status_code = status_code
        self.payload = payload
        super().__init__(f"HTTP {status_code}: {payload}")


class ProviderTransport(Protocol):
    def get_json(self, url: str, *, headers: dict[str, str]) -> Any:
        ...

    def post_json(self, url: str, payload: dict, *, headers: dict[str, str]) -> Any:
        ...

    def post_form(self, url: str, payload: dict[str, str], *, headers: dict[str, str]) -> Any:
        ...


def _parse_payload(raw: str) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


class UrllibTransport:
    def __init__(self, timeout: float):
        self.timeout = timeout

    def _send(self, req: urlrequest.Request) -> Any:
        try:
            with urlrequest.urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read().decode("utf-8", "replace")
        except urlerror.HTTPError as exc:
            raise ProviderHTTPError(exc.code, _parse_payload(exc.read().decode("utf-8", "replace"))) from exc
        except (urlerror.URLError, http.client.HTTPException, OSError) as exc:
            raise ProviderUnavailableError(
                "Proveedor de verificacion no disponible",
                detail={"url": req.full_url, "error": str(exc)},
            ) from exc
        return _parse_payload(raw)

    def get_json(self, url: str, *, headers: dict[str, str]) -> Any:
        req = urlrequest.Request(url=url, method="GET", headers={"Accept": "application/json", **headers})
        return self._send(req)

    def post_json(self, url: str, payload: dict, *, headers: dict[str, str]) -> Any:
        req_headers = {"Content-Type": "application/json", "Accept": "application/json"}
        req_headers.update(headers)
        body = json.dumps(payload).encode("utf-8")
        return self._send(urlrequest.Request(url=url, method="POST", data=body, headers=req_headers))

    def post_form(self, url: str, payload: dict[str, str], *, headers: dict[str, str]) -> Any:
        req_headers = {"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"}
        req_headers.update(headers)
        body = urlparse.urlencode(payload).encode("utf-8")
        return self._send(urlrequest.Request(url=url, method="POST", data=body, headers=req_headers))


def _gateway_headers() -> dict[str, str]:
    if not settings.NAC_RAPIDAPI_KEY:
        return {}
    return {
        "X-RapidAPI-Host": settings.NAC_RAPIDAPI_HOST,
        "X-RapidAPI-Key": settings.NAC_RAPIDAPI_KEY,
    }


def _provider_url(path: str) -> str:
    return settings.NAC_BASE_URL.rstrip("/") + path


# Client credentials

@dataclass(frozen=True)
class ClientCredentials:
    client_id: str
    client_secret: str


class ClientCredentialsCache:
    """Resolve client credentials once and share the result.

    The first caller runs ``fetch``; callers arriving while it is in flight
    wait on the same future. A failed fetch is not cached, so the next call
    retries.
    """

    def __init__(self, fetch: Callable[[], ClientCredentials], *, wait_timeout: float | None = None):
        self._fetch = fetch
        self._wait_timeout = wait_timeout
        self._lock = threading.Lock()
        self._future: Future | None = None

    def get(self) -> ClientCredentials:
        with self._lock:
            future = self._future
            owner = future is None
            if owner:
                future = Future()
                self._future = future

        if not owner:
            try:
                return future.result(timeout=self._wait_timeout)
            except TimeoutError as exc:
                raise ProviderUnavailableError("Credenciales del proveedor no disponibles") from exc

        try:
            credentials = self._fetch()
        except Exception as exc:
            with self._lock:
                self._future = None
            future.set_exception(exc)
            raise
        future.set_result(credentials)
        return credentials


def fetch_client_credentials(transport: ProviderTransport | None = None) -> ClientCredentials:
    transport = transport or UrllibTransport(settings.NAC_HTTP_TIMEOUT_SECONDS)
    try:
        data = transport.get_json(_provider_url(settings.NAC_CREDENTIALS_PATH), headers=_gateway_headers())
    except ProviderHTTPError as exc:
        raise ProviderUnavailableError(
            "Credenciales del proveedor no disponibles",
            detail={"status": exc.status_code, "payload": exc.payload},
        ) from exc
    data = data if isinstance(data, dict) else {}
    client_id = data.get("client_id")
    client_secret = data.get("client_secret")
    if not client_id or not client_secret:
        raise ProviderUnavailableError("Credenciales del proveedor incompletas")
    logger.info("nac_client_credentials_fetched")
    return ClientCredentials(client_id=client_id, client_secret=client_secret)


_credentials_lock = threading.Lock()
_credentials_cache: ClientCredentialsCache | None = None


def get_client_credentials() -> ClientCredentials:
    global _credentials_cache
    with _credentials_lock:
        if _credentials_cache is None:
            if settings.NAC_CLIENT_ID and settings.NAC_CLIENT_SECRET:
                fixed = ClientCredentials(settings.NAC_CLIENT_ID, settings.NAC_CLIENT_SECRET)
                _credentials_cache = ClientCredentialsCache(lambda: fixed)
            else:
                _credentials_cache = ClientCredentialsCache(
                    fetch_client_credentials,
                    wait_timeout=settings.NAC_HTTP_TIMEOUT_SECONDS,
                )
        cache = _credentials_cache
    return cache.get()


def set_client_credentials(credentials: ClientCredentials | None) -> None:
    """Pin the process-wide credentials (``None`` goes back to settings/lazy fetch)."""
    global _credentials_cache
    with _credentials_lock:
        if credentials is None:
            _credentials_cache = None
        else:
            _credentials_cache = ClientCredentialsCache(lambda: credentials)


# Response shapes

def normalize_verification_result(payload: Any) -> bool:
    """Collapse the provider's success shapes into one boolean.

    Accepted: a bare ``true``, or an object with ``result``, ``value``,
    ``success`` or ``devicePhoneNumberVerified`` equal to ``true``.
    """
    if isinstance(payload, bool):
        return payload
    if isinstance(payload, dict):
        return any(payload.get(field) is True for field in _SUCCESS_FIELDS)
    return False


@dataclass(frozen=True)
class TokenExchangeResult:
    access_token: str | None
    raw: Any


@dataclass(frozen=True)
class NumberVerificationResult:
    verified: bool
    raw: Any


class NacClient:
    def __init__(
        self,
        transport: ProviderTransport | None = None,
        credentials: Callable[[], ClientCredentials] | None = None,
    ):
        self.transport = transport or UrllibTransport(settings.NAC_HTTP_TIMEOUT_SECONDS)
        self._credentials = credentials or get_client_credentials

    def discovery(self) -> dict:
        try:
            doc = self.transport.get_json(_provider_url(DISCOVERY_PATH), headers=_gateway_headers())
        except ProviderHTTPError as exc:
            raise ProviderUnavailableError(
                "Documento de descubrimiento no disponible",
                detail={"status": exc.status_code, "payload": exc.payload},
            ) from exc
        if not isinstance(doc, dict) or not doc.get("authorization_endpoint"):
            raise ProviderUnavailableError("Documento de descubrimiento invalido", detail={"payload": doc})
        return doc

    def build_authorization_url(self, *, phone: str, state: str) -> str:
        doc = self.discovery()
        credentials = self._credentials()
        params = {
            "response_type": "code",
            "client_id": credentials.client_id,
            "redirect_uri": settings.NAC_REDIRECT_URI,
            "scope": settings.NAC_SCOPE,
            "login_hint": phone,
            "state": state,
            "prompt": "consent",
        }
        endpoint = doc["authorization_endpoint"]
        sep = "&" if "?" in endpoint else "?"
        return f"{endpoint}{sep}{urlparse.urlencode(params)}"

    def exchange_code(self, code: str) -> TokenExchangeResult:
        doc = self.discovery()
        token_endpoint = doc.get("token_endpoint")
        if not token_endpoint:
            raise ProviderUnavailableError("token_endpoint ausente en el descubrimiento", detail={"payload": doc})
        credentials = self._credentials()
        form = {
            "grant_type": "authorization_code",
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "code": code,
            "redirect_uri": settings.NAC_REDIRECT_URI,
        }
        try:
            raw = self.transport.post_form(token_endpoint, form, headers=_gateway_headers())
        except ProviderHTTPError as exc:
            logger.warning("nac_token_exchange_rejected", status=exc.status_code)
            return TokenExchangeResult(access_token=None, raw=exc.payload)
        access_token = None
        if isinstance(raw, dict):
            access_token = raw.get("access_token") or raw.get("accessToken")
        return TokenExchangeResult(access_token=access_token, raw=raw)

    def verify_number(self, *, access_token: str, phone: str) -> NumberVerificationResult:
        headers = {"Authorization": f"Bearer {access_token}", **_gateway_headers()}
        try:
            raw = self.transport.post_json(
                _provider_url(settings.NAC_VERIFY_PATH),
                {"phoneNumber": phone},
                headers=headers,
            )
        except ProviderHTTPError as exc:
            logger.warning("nac_number_verification_rejected", status=exc.status_code)
            return NumberVerificationResult(verified=False, raw=exc.payload)
        return NumberVerificationResult(verified=normalize_verification_result(raw), raw=raw)


def verify_webhook_request(headers, raw_body: bytes) -> bool:
    secret = settings.NAC_WEBHOOK_SECRET
    if not secret:
        return not settings.NAC_REQUIRE_WEBHOOK_SIGNATURE
    sig = headers.get("x-nac-signature")
    return verify_hmac_signature(raw_body, sig, secret, settings.NAC_WEBHOOK_MAX_AGE_SECONDS)
