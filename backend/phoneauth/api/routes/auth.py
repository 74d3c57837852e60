import json

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session

from phoneauth.api.deps import get_nac_client
from phoneauth.core.errors import ServiceError, UnauthorizedError, ValidationError
from phoneauth.core.logging import get_logger
from phoneauth.db.session import get_db
from phoneauth.schemas.auth import (
    LoginIn,
    LoginOut,
    LogoutIn,
    OnboardInitIn,
    OnboardInitOut,
    RefreshIn,
    SimpleOKOut,
    TokenOut,
    WebhookAckOut,
)
from phoneauth.services import sessions, verification
from phoneauth.services.nac_provider import NacClient, verify_webhook_request

router = APIRouter()
logger = get_logger(__name__)

_SUCCESS_PAGE = (
    "<html><body><h3>Verificacion de telefono exitosa.</h3>"
    "<p>Puedes cerrar esta pagina y volver a la app.</p></body></html>"
)
_FAILURE_PAGE = (
    "<html><body><h3>La verificacion de telefono fallo.</h3>"
    "<p>Vuelve a intentar la verificacion desde la app.</p></body></html>"
)


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


@router.post("/onboard/init", response_model=OnboardInitOut)
def onboard_init(payload: OnboardInitIn, db: Session = Depends(get_db), client: NacClient = Depends(get_nac_client)):
    result = verification.init_verification(db, client, phone=payload.phone, full_name=payload.full_name)
    db.commit()
    return OnboardInitOut(authorization_url=result.authorization_url, message=result.message)


@router.get("/onboard/callback", response_class=HTMLResponse)
def onboard_callback(
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    db: Session = Depends(get_db),
    client: NacClient = Depends(get_nac_client),
):
    # The provider redirects a browser here: failures are rendered, not returned as JSON.
    try:
        outcome = verification.handle_callback(db, client, code=code, state=state)
    except ServiceError as exc:
        db.rollback()
        logger.warning(
            "verification_callback_failed",
            status_code=exc.status_code,
            error_code=exc.error_code,
            detail=exc.detail,
        )
        return HTMLResponse(_FAILURE_PAGE, status_code=exc.status_code)
    db.commit()
    return HTMLResponse(_SUCCESS_PAGE if outcome.verified else _FAILURE_PAGE)


@router.post("/onboard/webhook", response_model=WebhookAckOut)
async def onboard_webhook(request: Request, db: Session = Depends(get_db)):
    raw = await request.body()
    if not verify_webhook_request(request.headers, raw):
        raise UnauthorizedError("invalid_webhook_signature", "Firma de webhook invalida")

    try:
        payload = json.loads(raw or b"null")
    except ValueError:
        raise ValidationError("Payload JSON invalido")
    if not isinstance(payload, dict):
        raise ValidationError("Payload JSON invalido")

    outcome = verification.handle_webhook(db, payload)
    db.commit()
    return WebhookAckOut(ok=True, status=outcome.status)


@router.post("/login", response_model=LoginOut)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_db)):
    result = sessions.login(
        db,
        phone=payload.phone,
        device_id=payload.device_id,
        platform=(payload.device_info.platform if payload.device_info else None),
        ip=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    db.commit()
    return LoginOut(
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        expires_in=result.tokens.expires_in,
        user=result.user,
    )


@router.post("/refresh", response_model=TokenOut)
def refresh(payload: RefreshIn, db: Session = Depends(get_db)):
    tokens = sessions.refresh(db, refresh_token=payload.refresh_token)
    db.commit()
    return TokenOut(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
    )


@router.post("/logout", response_model=SimpleOKOut)
def logout(payload: LogoutIn, db: Session = Depends(get_db)):
    sessions.logout(db, refresh_token=payload.refresh_token)
    db.commit()
    return SimpleOKOut(ok=True)
