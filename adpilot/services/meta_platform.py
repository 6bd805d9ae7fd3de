from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from adpilot.config import settings

logger = logging.getLogger("meta.platform")


class PlatformTransportError(RuntimeError):
    """The request never produced an HTTP response (DNS, TLS, connect, timeout)."""

    def __init__(self, message: str, *, path: str) -> None:
        super().__init__(message)
        self.path = path


@dataclass
class PlatformResult:
    ok: bool
    external_id: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    status_code: Optional[int] = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def error_payload(self) -> Any:
        return self.payload.get("error") if isinstance(self.payload, dict) else None


def normalize_ad_account_id(ad_account_id: str) -> str:
    if ad_account_id.startswith("act_"):
        return ad_account_id
    return f"act_{ad_account_id}"


def _encode_payload(payload: dict[str, Any]) -> dict[str, Any]:
    encoded: dict[str, Any] = {}
    for key, value in payload.items():
        if value is None:
            continue
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
            continue
        if isinstance(value, (dict, list)):
            encoded[key] = json.dumps(value)
            continue
        encoded[key] = str(value)
    return encoded


def _normalize_response(response: httpx.Response) -> PlatformResult:
    try:
        body = response.json() if response.content else {}
    except ValueError:
        body = {"error": {"message": f"Non-JSON response: {response.text[:500]}", "code": -1}}
    if not isinstance(body, dict):
        body = {"data": body}

    error = body.get("error")
    if response.is_error or error:
        message = None
        code = None
        if isinstance(error, dict):
            message = error.get("message")
            code = error.get("code")
        return PlatformResult(
            ok=False,
            error_message=message or f"Meta returned {response.status_code}",
            error_code=str(code) if code is not None else None,
            status_code=response.status_code,
            payload=body,
        )

    external_id = body.get("id")
    return PlatformResult(
        ok=True,
        external_id=str(external_id) if external_id is not None else None,
        status_code=response.status_code,
        payload=body,
    )


class MetaPlatformClient:
    def __init__(
        self,
        *,
        api_version: str,
        base_url: str | None = None,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_version = api_version
        self.base_url = (base_url or "https://graph.facebook.com").rstrip("/")
        self.timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "MetaPlatformClient":
        return cls(
            api_version=settings.META_GRAPH_API_VERSION,
            base_url=settings.META_GRAPH_API_BASE_URL,
            timeout_seconds=settings.META_REQUEST_TIMEOUT_SECONDS,
        )

    def post(self, path: str, params: dict[str, Any], access_token: str) -> PlatformResult:
        """Issue one form-encoded POST. Remote errors come back as ``ok=False``; only transport failures raise."""
        url = f"{self.base_url}/{self.api_version}/{path.lstrip('/')}"
        data = {**_encode_payload(params), "access_token": access_token}
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(url, data=data)
        except httpx.TransportError as exc:
            logger.warning("Meta Graph API transport failure", extra={"path": path, "error": str(exc)})
            raise PlatformTransportError(f"Meta Graph API request failed: {exc}", path=path) from exc

        result = _normalize_response(response)
        if not result.ok:
            logger.warning(
                "Meta Graph API rejected request",
                extra={
                    "path": path,
                    "status": response.status_code,
                    "error_code": result.error_code,
                    "error": result.error_message,
                },
            )
        return result

    def create_campaign(self, *, ad_account_id: str, access_token: str, payload: dict[str, Any]) -> PlatformResult:
        return self.post(f"{normalize_ad_account_id(ad_account_id)}/campaigns", payload, access_token)

    def create_adset(self, *, ad_account_id: str, access_token: str, payload: dict[str, Any]) -> PlatformResult:
        return self.post(f"{normalize_ad_account_id(ad_account_id)}/adsets", payload, access_token)

    def create_adcreative(self, *, ad_account_id: str, access_token: str, payload: dict[str, Any]) -> PlatformResult:
        return self.post(f"{normalize_ad_account_id(ad_account_id)}/adcreatives", payload, access_token)

    def create_ad(self, *, ad_account_id: str, access_token: str, payload: dict[str, Any]) -> PlatformResult:
        return self.post(f"{normalize_ad_account_id(ad_account_id)}/ads", payload, access_token)

    def update_status(self, *, object_id: str, access_token: str, status: str) -> PlatformResult:
        return self.post(object_id, {"status": status}, access_token)

    def update_daily_budget(self, *, adset_id: str, access_token: str, daily_budget_cents: int) -> PlatformResult:
        return self.post(adset_id, {"daily_budget": int(round(daily_budget_cents))}, access_token)

    def send_events(self, *, pixel_id: str, access_token: str, events: list[dict[str, Any]]) -> PlatformResult:
        return self.post(f"{pixel_id}/events", {"data": events}, access_token)


def get_meta_client() -> MetaPlatformClient:
    return MetaPlatformClient.from_settings()
