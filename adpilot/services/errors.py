from __future__ import annotations

from typing import Any, Optional


class LaunchError(RuntimeError):
    """Base for failures surfaced to the caller of a launch or campaign mutation."""

    status_code = 500

    def __init__(self, message: str, *, step: Optional[str] = None, **details: Any) -> None:
        super().__init__(message)
        self.step = step
        self.details = {key: value for key, value in details.items() if value is not None}

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": str(self)}
        if self.step:
            body["step"] = self.step
        body.update(self.details)
        return body


class ValidationError(LaunchError):
    status_code = 400


class AuthError(LaunchError):
    """Platform credential is missing or expired; the user has to reconnect the account."""

    status_code = 400

    def to_body(self) -> dict[str, Any]:
        body = super().to_body()
        body["reconnect_required"] = True
        return body


class OwnershipError(LaunchError):
    status_code = 403


class NotFoundError(LaunchError):
    status_code = 404


class InvalidStateError(LaunchError):
    status_code = 409


class PlatformRejection(LaunchError):
    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        step: str,
        meta_error: Any = None,
        error_code: Optional[str] = None,
        **details: Any,
    ) -> None:
        super().__init__(message, step=step, meta_error=meta_error, error_code=error_code, **details)


class ProvisioningTransportError(LaunchError):
    status_code = 502


class NoViableAd(LaunchError):
    status_code = 502


class PersistenceError(LaunchError):
    """Remote objects exist but the local record could not be written."""

    status_code = 500
