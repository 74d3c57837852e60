from __future__ import annotations

import json

import pytest

from phoneauth.core.config import settings
from phoneauth.services.identity import get_user_by_phone
from phoneauth.services.nac_provider import ProviderHTTPError

from tests.testkit import ApiError, sign_webhook, state_from_url


def _onboard(api, phone: str) -> str:
    out = api.call("POST", "/auth/onboard/init", body={"phone": phone, "full_name": "Ana Perez"})
    return state_from_url(out["authorization_url"])


def _login(api, phone: str, **extra):
    return api.call("POST", "/auth/login", body={"phone": phone, **extra})


def test_health(api):
    assert api.call("GET", "/health") == {"ok": True}


def test_full_onboarding_and_session_lifecycle(api, session_factory, phones):
    phone = phones.next_phone()

    state = _onboard(api, phone)
    page = api.call("GET", f"/auth/onboard/callback?code=abc&state={state}")
    assert "exitosa" in page

    with session_factory() as s:
        user = get_user_by_phone(s, phone)
        assert user.verification_status == "verified"
        assert user.verification_correlation_token is None

    t0 = _login(api, phone, device_id="dev-1", device_info={"platform": "android"})
    assert t0["token_type"] == "bearer"
    assert t0["expires_in"] == settings.JWT_ACCESS_TTL_SECONDS
    assert t0["user"]["phone"] == phone
    assert t0["user"]["verification"]["status"] == "verified"

    t1 = api.call("POST", "/auth/refresh", body={"refresh_token": t0["refresh_token"]})
    assert t1["refresh_token"] != t0["refresh_token"]

    with pytest.raises(ApiError) as exc:
        api.call("POST", "/auth/refresh", body={"refresh_token": t0["refresh_token"]})
    assert exc.value.status_code == 401
    assert exc.value.payload["error"] == "invalid_refresh"

    assert api.call("POST", "/auth/logout", body={"refresh_token": t1["refresh_token"]}) == {"ok": True}
    with pytest.raises(ApiError) as exc:
        api.call("POST", "/auth/refresh", body={"refresh_token": t1["refresh_token"]})
    assert exc.value.status_code == 401


def test_me_returns_public_identity(api, phones):
    phone = phones.next_phone()
    state = _onboard(api, phone)
    api.call("GET", f"/auth/onboard/callback?code=abc&state={state}")
    tokens = _login(api, phone, device_id="dev-9", device_info={"platform": "web"})

    me = api.call("GET", "/me", token=tokens["access_token"])
    assert me["phone"] == phone
    assert me["full_name"] == "Ana Perez"
    assert me["roles"] == ["user"]
    assert me["devices"][0]["device_id"] == "dev-9"
    assert me["devices"][0]["platform"] == "web"
    assert "raw_response" not in json.dumps(me)
    assert "password" not in json.dumps(me)


def test_me_requires_valid_access_token(api):
    with pytest.raises(ApiError) as exc:
        api.call("GET", "/me")
    assert exc.value.status_code == 401
    assert exc.value.payload["error"] == "invalid_token"

    with pytest.raises(ApiError) as exc:
        api.call("GET", "/me", token="not-a-jwt")
    assert exc.value.payload["error"] == "invalid_token"


def test_me_with_expired_access_token(api, phones, monkeypatch):
    phone = phones.next_phone()
    state = _onboard(api, phone)
    api.call("GET", f"/auth/onboard/callback?code=abc&state={state}")
    monkeypatch.setattr(settings, "JWT_ACCESS_TTL_SECONDS", -30)
    tokens = _login(api, phone)
    with pytest.raises(ApiError) as exc:
        api.call("GET", "/me", token=tokens["access_token"])
    assert exc.value.status_code == 401
    assert exc.value.payload["error"] == "token_expired"


def test_init_validation_errors(api):
    with pytest.raises(ApiError) as exc:
        api.call("POST", "/auth/onboard/init", body={})
    assert exc.value.status_code == 400
    assert exc.value.payload["error"] == "validation_error"

    with pytest.raises(ApiError) as exc:
        api.call("POST", "/auth/onboard/init", body={"phone": "no digits"})
    assert exc.value.status_code == 400


def test_init_provider_down_is_503(api, transport, phones):
    transport.discovery = ProviderHTTPError(502, None)
    with pytest.raises(ApiError) as exc:
        _onboard(api, phones.next_phone())
    assert exc.value.status_code == 503
    assert exc.value.payload["error"] == "provider_unavailable"


def test_callback_failures_render_html(api, transport, phones):
    with pytest.raises(ApiError) as exc:
        api.call("GET", "/auth/onboard/callback?code=abc")
    assert exc.value.status_code == 400
    assert "fallo" in exc.value.payload

    with pytest.raises(ApiError) as exc:
        api.call("GET", f"/auth/onboard/callback?code=abc&state={'0' * 32}")
    assert exc.value.status_code == 404

    transport.token_response = ProviderHTTPError(400, {"error": "invalid_grant"})
    state = _onboard(api, phones.next_phone())
    with pytest.raises(ApiError) as exc:
        api.call("GET", f"/auth/onboard/callback?code=bad&state={state}")
    assert exc.value.status_code == 502
    assert "fallo" in exc.value.payload


def test_callback_negative_result_renders_failure_page(api, transport, phones, session_factory):
    transport.verify_response = {"devicePhoneNumberVerified": False}
    phone = phones.next_phone()
    state = _onboard(api, phone)
    page = api.call("GET", f"/auth/onboard/callback?code=abc&state={state}")
    assert "fallo" in page
    with session_factory() as s:
        assert get_user_by_phone(s, phone).verification_status == "failed"


def test_login_before_verification_is_rejected(api, phones):
    phone = phones.next_phone()
    _onboard(api, phone)
    with pytest.raises(ApiError) as exc:
        _login(api, phone)
    assert exc.value.status_code == 401
    assert exc.value.payload["error"] == "phone_not_verified"

    with pytest.raises(ApiError) as exc:
        _login(api, phones.next_phone())
    assert exc.value.status_code == 404


def test_refresh_malformed_token_is_400(api):
    with pytest.raises(ApiError) as exc:
        api.call("POST", "/auth/refresh", body={"refresh_token": "garbage"})
    assert exc.value.status_code == 400
    assert exc.value.payload["error"] == "invalid_refresh_format"


def test_logout_unknown_token_is_ok(api):
    assert api.call("POST", "/auth/logout", body={"refresh_token": "abcd.efgh"}) == {"ok": True}


def test_webhook_verifies_user(api, phones, session_factory):
    phone = phones.next_phone()
    state = _onboard(api, phone)
    ack = api.call("POST", "/auth/onboard/webhook", body={"state": state, "status": "verified"})
    assert ack == {"ok": True, "status": "verified"}
    tokens = _login(api, phone)
    assert tokens["user"]["verification"]["status"] == "verified"


def test_webhook_after_callback_keeps_verified(api, transport, phones):
    phone = phones.next_phone()
    state = _onboard(api, phone)
    api.call("GET", f"/auth/onboard/callback?code=abc&state={state}")
    # The token is consumed once verified, so a late webhook no longer resolves.
    with pytest.raises(ApiError) as exc:
        api.call("POST", "/auth/onboard/webhook", body={"state": state, "status": "failed"})
    assert exc.value.status_code == 404
    assert _login(api, phone)["user"]["verification"]["status"] == "verified"


def test_webhook_signature_enforced_with_secret(api, phones, monkeypatch):
    monkeypatch.setattr(settings, "NAC_WEBHOOK_SECRET", "whsec")
    state = _onboard(api, phones.next_phone())
    body = json.dumps({"state": state, "status": "verified"})

    with pytest.raises(ApiError) as exc:
        api.call("POST", "/auth/onboard/webhook", body={"state": state, "status": "verified"})
    assert exc.value.status_code == 401
    assert exc.value.payload["error"] == "invalid_webhook_signature"

    resp = api.client.post(
        "/auth/onboard/webhook",
        content=body,
        headers={"Content-Type": "application/json", "x-nac-signature": sign_webhook(body.encode("utf-8"), "whsec")},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "verified"


def test_webhook_rejects_non_object_payload(api):
    with pytest.raises(ApiError) as exc:
        api.call("POST", "/auth/onboard/webhook", body=["not", "an", "object"])
    assert exc.value.status_code == 400


def test_responses_carry_request_id_and_security_headers(api):
    resp = api.client.get("/health", headers={"X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
