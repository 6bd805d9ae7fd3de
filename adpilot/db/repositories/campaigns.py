from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from adpilot.db.enums import CampaignStatusEnum
from adpilot.db.models import Campaign, ProvisioningStep

ACTIVE_LIKE_STATUSES = (CampaignStatusEnum.active,)
STUCK_STATUSES = (CampaignStatusEnum.provisioning, CampaignStatusEnum.error)


class CampaignsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, campaign_id: str, business_id: Optional[str] = None) -> Optional[Campaign]:
        stmt = select(Campaign).where(Campaign.id == campaign_id)
        if business_id:
            stmt = stmt.where(Campaign.business_id == business_id)
        return self.session.scalars(stmt).first()

    def has_active_campaigns(self, business_id: str) -> bool:
        stmt = (
            select(Campaign.id)
            .where(Campaign.business_id == business_id, Campaign.status.in_(ACTIVE_LIKE_STATUSES))
            .limit(1)
        )
        return self.session.scalars(stmt).first() is not None

    def list_stuck(self, *, updated_before: datetime, statuses: Iterable[CampaignStatusEnum] = STUCK_STATUSES) -> list[Campaign]:
        stmt = (
            select(Campaign)
            .where(Campaign.status.in_(tuple(statuses)), Campaign.updated_at < updated_before)
            .order_by(Campaign.updated_at.asc())
        )
        return list(self.session.scalars(stmt).all())

    def add(self, campaign: Campaign) -> Campaign:
        self.session.add(campaign)
        self.session.commit()
        self.session.refresh(campaign)
        return campaign

    def commit(self, campaign: Campaign) -> Campaign:
        self.session.commit()
        self.session.refresh(campaign)
        return campaign

    def append_step(self, campaign: Campaign, step: ProvisioningStep) -> ProvisioningStep:
        current = self.session.scalar(
            select(func.max(ProvisioningStep.seq)).where(ProvisioningStep.campaign_id == campaign.id)
        )
        step.campaign_id = campaign.id
        step.seq = (current or 0) + 1
        self.session.add(step)
        return step

    def rollback(self) -> None:
        self.session.rollback()
