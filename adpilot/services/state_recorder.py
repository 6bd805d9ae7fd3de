from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from adpilot.db.enums import CampaignStatusEnum, ProvisioningStepEnum, StepStatusEnum
from adpilot.db.models import Campaign, ProvisioningStep
from adpilot.db.repositories.campaigns import CampaignsRepository
from adpilot.services.errors import InvalidStateError, PersistenceError

logger = logging.getLogger("campaigns.state")

_ID_COLUMNS = {
    ProvisioningStepEnum.campaign: "platform_campaign_id",
    ProvisioningStepEnum.adset: "platform_adset_id",
}


def remote_ids(campaign: Campaign) -> dict[str, Any]:
    return {
        "platform_campaign_id": campaign.platform_campaign_id,
        "platform_adset_id": campaign.platform_adset_id,
        "platform_ad_ids": list(campaign.platform_ad_ids or []),
    }


class StateRecorder:
    """Sole writer of campaign lifecycle state and external identifiers."""

    def __init__(self, session: Session) -> None:
        self.repo = CampaignsRepository(session)

    def _commit(self, campaign: Campaign, *, action: str) -> Campaign:
        # Rollback expires the instance, so the in-flight ids are captured first.
        campaign_id = campaign.id
        ids = remote_ids(campaign)
        try:
            return self.repo.commit(campaign)
        except SQLAlchemyError as exc:
            self.repo.rollback()
            logger.exception(
                "Failed to persist campaign state",
                extra={"campaign_id": campaign_id, "action": action, **ids},
            )
            raise PersistenceError(
                "Campaign objects exist on Meta but could not be saved locally",
                step=ProvisioningStepEnum.persist.value,
                campaign_id=campaign_id,
                remote_ids=ids,
            ) from exc

    def begin(
        self,
        *,
        business_id: str,
        name: str,
        daily_budget_cents: int,
        targeting: dict[str, Any],
        creatives: list[dict[str, Any]],
    ) -> Campaign:
        campaign = Campaign(
            business_id=business_id,
            name=name,
            status=CampaignStatusEnum.provisioning,
            daily_budget_cents=daily_budget_cents,
            targeting=targeting,
            creatives=creatives,
            platform_ad_ids=[],
            warnings=[],
        )
        try:
            return self.repo.add(campaign)
        except SQLAlchemyError as exc:
            self.repo.rollback()
            logger.exception("Failed to create campaign record", extra={"business_id": business_id})
            raise PersistenceError("Could not create the campaign record", step="begin") from exc

    def restart(self, campaign: Campaign) -> Campaign:
        campaign.status = CampaignStatusEnum.provisioning
        campaign.failed_step = None
        campaign.error_message = None
        return self._commit(campaign, action="restart")

    def record_external_id(self, campaign: Campaign, step: ProvisioningStepEnum, external_id: str) -> Campaign:
        if step == ProvisioningStepEnum.ad:
            campaign.platform_ad_ids = [*(campaign.platform_ad_ids or []), external_id]
        else:
            column = _ID_COLUMNS[step]
            current = getattr(campaign, column)
            if current is not None and current != external_id:
                raise PersistenceError(
                    f"{column} is already set and cannot be overwritten",
                    step=step.value,
                    campaign_id=campaign.id,
                    remote_ids={**remote_ids(campaign), "rejected_id": external_id},
                )
            setattr(campaign, column, external_id)
        self.repo.append_step(
            campaign,
            ProvisioningStep(step=step.value, status=StepStatusEnum.succeeded, external_id=external_id),
        )
        return self._commit(campaign, action=f"record_{step.value}")

    def record_step_success(self, campaign: Campaign, step: ProvisioningStepEnum, external_id: str) -> Campaign:
        """Log a completed step that does not own an id column, such as an activation."""
        self.repo.append_step(
            campaign,
            ProvisioningStep(step=step.value, status=StepStatusEnum.succeeded, external_id=external_id),
        )
        return self._commit(campaign, action=f"done_{step.value}")

    def record_step_failure(
        self,
        campaign: Campaign,
        step: ProvisioningStepEnum,
        error: str,
        *,
        external_id: Optional[str] = None,
    ) -> Campaign:
        self.repo.append_step(
            campaign,
            ProvisioningStep(step=step.value, status=StepStatusEnum.failed, external_id=external_id, error=error),
        )
        return self._commit(campaign, action=f"fail_{step.value}")

    def mark_error(self, campaign: Campaign, step: ProvisioningStepEnum, message: str) -> Campaign:
        campaign.status = CampaignStatusEnum.error
        campaign.failed_step = step.value
        campaign.error_message = message
        self.repo.append_step(
            campaign,
            ProvisioningStep(step=step.value, status=StepStatusEnum.failed, error=message),
        )
        return self._commit(campaign, action="mark_error")

    def mark_active(
        self,
        campaign: Campaign,
        *,
        warnings: list[dict[str, Any]],
        launched_at: Optional[datetime] = None,
    ) -> Campaign:
        if not campaign.platform_campaign_id or not campaign.platform_adset_id or not campaign.platform_ad_ids:
            raise InvalidStateError(
                "An active campaign needs a campaign, an ad set and at least one ad",
                campaign_id=campaign.id,
                remote_ids=remote_ids(campaign),
            )
        now = launched_at or datetime.now(timezone.utc)
        campaign.status = CampaignStatusEnum.active
        campaign.failed_step = None
        campaign.error_message = None
        campaign.warnings = warnings
        campaign.launched_at = campaign.launched_at or now
        campaign.last_synced_at = now
        return self._commit(campaign, action="mark_active")

    def set_status(self, campaign: Campaign, status: CampaignStatusEnum) -> Campaign:
        campaign.status = status
        campaign.last_synced_at = datetime.now(timezone.utc)
        return self._commit(campaign, action=f"status_{status.value}")

    def set_daily_budget(self, campaign: Campaign, daily_budget_cents: int) -> Campaign:
        campaign.daily_budget_cents = daily_budget_cents
        campaign.last_synced_at = datetime.now(timezone.utc)
        return self._commit(campaign, action="daily_budget")
