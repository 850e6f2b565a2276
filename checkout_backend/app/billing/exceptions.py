"""Errors surfaced by the checkout and upgrade flows."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from fastapi import status
from fastapi.responses import JSONResponse


@dataclass
class CheckoutError(Exception):
    """Represents an actionable checkout failure surfaced to API callers."""

    code: str
    message: str
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @property
    def payload(self) -> Dict[str, Any]:
        return {"ok": False, "message": self.message}

    def to_response(self) -> JSONResponse:
        """Convert the domain error into the ``{ok: false}`` JSON envelope."""

        return JSONResponse(status_code=self.status_code, content=self.payload)


class ValidationError(CheckoutError):
    def __init__(self, message: str) -> None:
        super().__init__(code="validation_error", message=message, status_code=status.HTTP_400_BAD_REQUEST)


class AuthError(CheckoutError):
    def __init__(self, message: str = "no auth, please sign-in") -> None:
        super().__init__(code="auth_required", message=message, status_code=status.HTTP_401_UNAUTHORIZED)


class ConflictError(CheckoutError):
    def __init__(self, message: str) -> None:
        super().__init__(code="conflict", message=message, status_code=status.HTTP_409_CONFLICT)


class ProviderRequestFailed(CheckoutError):
    """The charge-producing provider call failed; no charge was captured."""

    def __init__(self, message: str) -> None:
        super().__init__(code="provider_request_failed", message=message, status_code=status.HTTP_502_BAD_GATEWAY)


class CheckoutFailed(CheckoutError):
    def __init__(self, reason: str) -> None:
        super().__init__(
            code="checkout_failed",
            message=f"checkout failed: {reason}",
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class ConfigurationError(RuntimeError):
    """Raised when product/period mappings or provider settings are unusable."""

    def __init__(
        self,
        message: str,
        *,
        attempted_key: Optional[str] = None,
        configured_keys: Sequence[str] = (),
    ) -> None:
        super().__init__(message)
        self.attempted_key = attempted_key
        self.configured_keys = tuple(configured_keys)


class PaymentProviderError(RuntimeError):
    """Raised by provider clients when a remote call fails."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


__all__ = [
    "AuthError",
    "CheckoutError",
    "CheckoutFailed",
    "ConfigurationError",
    "ConflictError",
    "PaymentProviderError",
    "ProviderRequestFailed",
    "ValidationError",
]
