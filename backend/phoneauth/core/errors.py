from __future__ import annotations


class ServiceError(Exception):
    """Base class for service-layer failures mapped to HTTP responses.

    Each subclass carries the HTTP status and a stable machine-readable
    ``error_code``; ``detail`` is for operators and is logged, never returned.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        status_code: int | None = None,
        detail: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Missing or malformed caller input (400)."""
    status_code = 400
    error_code = "validation_error"


class BadFormatError(ValidationError):
    error_code = "invalid_refresh_format"


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "not_found"


class UnauthorizedError(ServiceError):
    """Credential mismatch or unmet precondition (401).

    The reason code is the ``error_code`` (``phone_not_verified``,
    ``invalid_refresh`` ...).
    """
    status_code = 401
    error_code = "unauthorized"

    def __init__(self, reason: str, message: str | None = None, **kwargs) -> None:
        super().__init__(message or reason, error_code=reason, **kwargs)

    @property
    def reason(self) -> str:
        return self.error_code


class CredentialExpiredError(UnauthorizedError):
    def __init__(self, message: str = "Token expirado") -> None:
        super().__init__("token_expired", message)


class InvalidCredentialError(UnauthorizedError):
    def __init__(self, message: str = "Token invalido") -> None:
        super().__init__("invalid_token", message)


class ProviderUnavailableError(ServiceError):
    """The verification provider could not be reached or configured (503)."""
    status_code = 503
    error_code = "provider_unavailable"


class ExchangeFailedError(ServiceError):
    """The provider refused the authorization code (502)."""
    status_code = 502
    error_code = "token_exchange_failed"

    def __init__(self, message: str = "No se pudo canjear el codigo de autorizacion", *, raw_response=None) -> None:
        super().__init__(message, detail={"raw_response": raw_response})
        self.raw_response = raw_response


class InternalError(ServiceError):
    status_code = 500
    error_code = "internal_error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "BadFormatError",
    "NotFoundError",
    "UnauthorizedError",
    "CredentialExpiredError",
    "InvalidCredentialError",
    "ProviderUnavailableError",
    "ExchangeFailedError",
    "InternalError",
]
