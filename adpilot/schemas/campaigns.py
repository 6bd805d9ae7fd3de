from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from adpilot.db.enums import CampaignStatusEnum, StepStatusEnum


class AdVariantInput(BaseModel):
    headline: Optional[str] = None
    body: Optional[str] = None
    cta: Optional[str] = None
    image_url: Optional[str] = None


class LaunchCampaignRequest(BaseModel):
    # Fields stay optional so missing values surface as a 400 with the launch error body.
    business_id: Optional[str] = None
    headline: Optional[str] = None
    body: Optional[str] = None
    cta: Optional[str] = None
    image_url: Optional[str] = None
    daily_budget_cents: Optional[int] = None
    radius_km: Optional[float] = None
    variants: Optional[list[AdVariantInput]] = None

    def missing_fields(self) -> list[str]:
        missing = [] if self.business_id else ["business_id"]
        if self.variants:
            return missing
        for name in ("headline", "body", "cta"):
            if not getattr(self, name):
                missing.append(name)
        return missing

    def resolved_variants(self) -> list[AdVariantInput]:
        if self.variants:
            return [v for v in self.variants if v.headline and v.body]
        if self.headline and self.body:
            return [AdVariantInput(headline=self.headline, body=self.body, cta=self.cta, image_url=self.image_url)]
        return []


class UpdateBudgetRequest(BaseModel):
    daily_budget_cents: int = Field(gt=0)


class ProvisioningStepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    seq: int
    step: str
    status: StepStatusEnum
    external_id: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime


class CampaignResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    business_id: str
    name: str
    status: CampaignStatusEnum
    daily_budget_cents: int
    targeting: dict[str, Any] = Field(default_factory=dict)
    creatives: list[dict[str, Any]] = Field(default_factory=list)
    platform_campaign_id: Optional[str] = None
    platform_adset_id: Optional[str] = None
    platform_ad_ids: list[str] = Field(default_factory=list)
    failed_step: Optional[str] = None
    error_message: Optional[str] = None
    warnings: list[dict[str, Any]] = Field(default_factory=list)
    launched_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    steps: list[ProvisioningStepResponse] = Field(default_factory=list)


class StuckCampaign(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    business_id: str
    name: str
    status: CampaignStatusEnum
    failed_step: Optional[str] = None
    error_message: Optional[str] = None
    platform_campaign_id: Optional[str] = None
    platform_adset_id: Optional[str] = None
    platform_ad_ids: list[str] = Field(default_factory=list)
    updated_at: datetime
