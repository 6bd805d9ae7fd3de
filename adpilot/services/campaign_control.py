from __future__ import annotations

import logging
from typing import Callable

from adpilot.db.enums import CampaignStatusEnum
from adpilot.db.models import Campaign
from adpilot.services.errors import InvalidStateError, PlatformRejection, ProvisioningTransportError, ValidationError
from adpilot.services.meta_platform import MetaPlatformClient, PlatformResult, PlatformTransportError
from adpilot.services.state_recorder import StateRecorder

logger = logging.getLogger("campaigns.control")

TOGGLEABLE_STATUSES = (CampaignStatusEnum.active, CampaignStatusEnum.paused)


class CampaignControl:
    """Status and budget changes on campaigns that are already live on Meta."""

    def __init__(self, *, client: MetaPlatformClient, recorder: StateRecorder, access_token: str) -> None:
        self.client = client
        self.recorder = recorder
        self.access_token = access_token

    def pause(self, campaign: Campaign) -> Campaign:
        return self._set_status(campaign, CampaignStatusEnum.paused)

    def resume(self, campaign: Campaign) -> Campaign:
        return self._set_status(campaign, CampaignStatusEnum.active)

    def update_daily_budget(self, campaign: Campaign, daily_budget_cents: int) -> Campaign:
        if daily_budget_cents <= 0:
            raise ValidationError("daily_budget_cents must be a positive integer")
        self._require_live(campaign)
        result = self._call(
            campaign,
            "budget",
            lambda: self.client.update_daily_budget(
                adset_id=campaign.platform_adset_id,
                access_token=self.access_token,
                daily_budget_cents=daily_budget_cents,
            ),
        )
        if not result.ok:
            raise PlatformRejection(
                result.error_message or "Failed to update the ad set budget",
                step="budget",
                meta_error=result.error_payload,
                error_code=result.error_code,
                campaign_id=campaign.id,
            )
        logger.info(
            "Campaign budget updated",
            extra={"campaign_id": campaign.id, "daily_budget_cents": daily_budget_cents},
        )
        return self.recorder.set_daily_budget(campaign, daily_budget_cents)

    def _set_status(self, campaign: Campaign, status: CampaignStatusEnum) -> Campaign:
        self._require_live(campaign)
        if campaign.status == status:
            return campaign
        remote_status = "ACTIVE" if status == CampaignStatusEnum.active else "PAUSED"
        result = self._call(
            campaign,
            status.value,
            lambda: self.client.update_status(
                object_id=campaign.platform_campaign_id,
                access_token=self.access_token,
                status=remote_status,
            ),
        )
        if not result.ok:
            raise PlatformRejection(
                result.error_message or f"Failed to set campaign status to {remote_status}",
                step=status.value,
                meta_error=result.error_payload,
                error_code=result.error_code,
                campaign_id=campaign.id,
            )
        logger.info("Campaign status changed", extra={"campaign_id": campaign.id, "status": status.value})
        return self.recorder.set_status(campaign, status)

    def _require_live(self, campaign: Campaign) -> None:
        if campaign.status not in TOGGLEABLE_STATUSES:
            raise InvalidStateError(
                f"Campaign in status {campaign.status.value} cannot be changed",
                campaign_id=campaign.id,
            )
        if not campaign.platform_campaign_id or not campaign.platform_adset_id:
            raise InvalidStateError("Campaign has no Meta objects", campaign_id=campaign.id)

    def _call(self, campaign: Campaign, step: str, call: Callable[[], PlatformResult]) -> PlatformResult:
        try:
            return call()
        except PlatformTransportError as exc:
            raise ProvisioningTransportError(
                f"Could not reach Meta: {exc}", step=step, campaign_id=campaign.id
            ) from exc
