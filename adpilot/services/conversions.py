"""Lead quality feedback to the Meta Conversions API.

The local quality record is the source of truth; the platform event is best
effort and never fails the caller. Personal fields are normalized and SHA-256
hashed before they are placed in ``user_data``.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from adpilot.config import settings
from adpilot.db.enums import LeadQualityEnum
from adpilot.db.models import Business, Lead
from adpilot.db.repositories.leads import LeadsRepository
from adpilot.services.meta_platform import MetaPlatformClient, PlatformTransportError

logger = logging.getLogger("meta.conversions")

_WHITESPACE = re.compile(r"\s+")


@dataclass
class ConversionResult:
    sent: bool
    quality: LeadQualityEnum
    events_received: Optional[int] = None
    reason: Optional[str] = None


def _sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_phone(phone: str, *, country_prefix: str) -> str:
    compact = _WHITESPACE.sub("", phone)
    if compact.startswith("0"):
        return country_prefix + compact[1:]
    return compact


def build_user_data(lead: Lead, *, country_prefix: str) -> dict[str, list[str]]:
    user: dict[str, list[str]] = {}
    if lead.email and lead.email.strip():
        user["em"] = [_sha256_hex(normalize_email(lead.email))]
    if lead.phone and lead.phone.strip():
        user["ph"] = [_sha256_hex(normalize_phone(lead.phone, country_prefix=country_prefix))]
    if lead.name and lead.name.strip():
        parts = lead.name.strip().lower().split()
        user["fn"] = [_sha256_hex(parts[0])]
        if len(parts) > 1:
            user["ln"] = [_sha256_hex(parts[-1])]
    return user


class ConversionFeedback:
    def __init__(
        self,
        *,
        client: MetaPlatformClient,
        leads: LeadsRepository,
        fallback_access_token: Optional[str] = None,
        fallback_pixel_id: Optional[str] = None,
        currency: str = "USD",
        good_lead_value: int = 100,
        phone_country_prefix: str = "+61",
    ) -> None:
        self.client = client
        self.leads = leads
        self.fallback_access_token = fallback_access_token
        self.fallback_pixel_id = fallback_pixel_id
        self.currency = currency
        self.good_lead_value = good_lead_value
        self.phone_country_prefix = phone_country_prefix

    @classmethod
    def from_settings(cls, *, client: MetaPlatformClient, leads: LeadsRepository) -> "ConversionFeedback":
        return cls(
            client=client,
            leads=leads,
            fallback_access_token=settings.META_SYSTEM_USER_TOKEN,
            fallback_pixel_id=settings.META_PIXEL_ID,
            currency=settings.CONVERSION_CURRENCY,
            good_lead_value=settings.CONVERSION_GOOD_LEAD_VALUE,
            phone_country_prefix=settings.CONVERSION_PHONE_COUNTRY_PREFIX,
        )

    def build_event(self, lead: Lead, quality: LeadQualityEnum, *, now: Optional[datetime] = None) -> dict[str, Any]:
        good = quality == LeadQualityEnum.good
        value = self.good_lead_value if good else 0
        event: dict[str, Any] = {
            "event_name": "Lead" if good else "Other",
            "event_time": int((now or datetime.now(timezone.utc)).timestamp()),
            "action_source": "system",
            "user_data": build_user_data(lead, country_prefix=self.phone_country_prefix),
            "custom_data": {
                "lead_quality": quality.value,
                "lead_id": lead.id,
                "campaign_id": lead.campaign_id,
                "value": value,
                "currency": self.currency,
            },
        }
        if lead.platform_lead_id:
            event["event_id"] = lead.platform_lead_id
        return event

    def report(self, lead: Lead, quality: LeadQualityEnum, *, business: Optional[Business] = None) -> ConversionResult:
        lead = self.leads.set_quality(lead, quality)

        access_token = (business.facebook_access_token if business else None) or self.fallback_access_token
        pixel_id = (business.facebook_pixel_id if business else None) or self.fallback_pixel_id
        if not access_token or not pixel_id:
            logger.info(
                "Conversion feedback skipped; no Meta credentials",
                extra={"lead_id": lead.id, "quality": quality.value},
            )
            return ConversionResult(sent=False, quality=quality, reason="Meta credentials not configured")

        event = self.build_event(lead, quality)
        try:
            result = self.client.send_events(pixel_id=pixel_id, access_token=access_token, events=[event])
        except PlatformTransportError as exc:
            logger.warning("Conversion event not delivered", extra={"lead_id": lead.id, "error": str(exc)})
            return ConversionResult(sent=False, quality=quality, reason=str(exc))

        if not result.ok:
            logger.warning(
                "Conversion event rejected",
                extra={"lead_id": lead.id, "error_code": result.error_code, "error": result.error_message},
            )
            return ConversionResult(sent=False, quality=quality, reason=result.error_message)

        received = result.payload.get("events_received")
        logger.info(
            "Conversion event sent",
            extra={"lead_id": lead.id, "quality": quality.value, "events_received": received},
        )
        return ConversionResult(sent=True, quality=quality, events_received=received)
