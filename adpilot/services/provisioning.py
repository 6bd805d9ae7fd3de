"""Campaign provisioning on Meta.

A launch creates campaign -> ad set -> (creative -> ad) per variant, then
activates children before parents. The platform has no multi-object
transactions, so every created object is recorded through the StateRecorder
before the next call is made; a failed launch leaves a campaign row in
``error`` whose recorded ids let a later ``launch(spec, campaign=...)`` resume
from the last completed step.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from adpilot.config import settings
from adpilot.db.enums import CampaignStatusEnum, ProvisioningStepEnum
from adpilot.db.models import Business, Campaign
from adpilot.schemas.campaigns import LaunchCampaignRequest
from adpilot.services.errors import (
    AuthError,
    InvalidStateError,
    NoViableAd,
    OwnershipError,
    PlatformRejection,
    ProvisioningTransportError,
    ValidationError,
)
from adpilot.services.meta_platform import MetaPlatformClient, PlatformResult, PlatformTransportError
from adpilot.services.state_recorder import StateRecorder, remote_ids

logger = logging.getLogger("provisioning")

CTA_TYPES = {
    "Get Quote": "GET_QUOTE",
    "Call Now": "CALL_NOW",
    "Learn More": "LEARN_MORE",
    "Sign Up": "SIGN_UP",
    "Book Now": "BOOK_NOW",
    "Contact Us": "CONTACT_US",
}
RESUMABLE_STATUSES = (CampaignStatusEnum.provisioning, CampaignStatusEnum.error)


def cta_type(label: Optional[str]) -> str:
    return CTA_TYPES.get((label or "").strip(), "LEARN_MORE")


@dataclass
class AdVariant:
    headline: str
    body: str
    cta: str = "Learn More"
    image_url: Optional[str] = None


@dataclass
class Targeting:
    radius_km: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    countries: list[str] = field(default_factory=list)
    age_min: Optional[int] = None
    age_max: Optional[int] = None


@dataclass
class LaunchSpec:
    business_id: str
    name: str
    access_token: str
    ad_account_id: str
    page_id: str
    variants: list[AdVariant]
    daily_budget_cents: Optional[int] = None
    targeting: Targeting = field(default_factory=Targeting)
    link_url: Optional[str] = None


@dataclass(frozen=True)
class LaunchDefaults:
    daily_budget_cents: int = 1500
    radius_km: float = 25.0
    age_min: int = 25
    age_max: int = 65
    country: str = "US"
    link_url: str = "https://example.com/"
    objective: str = "OUTCOME_LEADS"
    billing_event: str = "IMPRESSIONS"
    optimization_goal: str = "LEAD_GENERATION"

    @classmethod
    def from_settings(cls) -> "LaunchDefaults":
        return cls(
            daily_budget_cents=settings.LAUNCH_DEFAULT_DAILY_BUDGET_CENTS,
            radius_km=settings.LAUNCH_DEFAULT_RADIUS_KM,
            age_min=settings.LAUNCH_DEFAULT_AGE_MIN,
            age_max=settings.LAUNCH_DEFAULT_AGE_MAX,
            country=settings.LAUNCH_DEFAULT_COUNTRY,
            link_url=settings.LAUNCH_DEFAULT_LINK_URL,
            objective=settings.LAUNCH_OBJECTIVE,
            billing_event=settings.LAUNCH_BILLING_EVENT,
            optimization_goal=settings.LAUNCH_OPTIMIZATION_GOAL,
        )


@dataclass
class VariantOutcome:
    index: int
    ok: bool
    creative_id: Optional[str] = None
    ad_id: Optional[str] = None
    failed_step: Optional[str] = None
    error: Optional[str] = None

    def as_warning(self) -> dict[str, Any]:
        return {
            "variant_index": self.index,
            "step": self.failed_step,
            "error": self.error,
            "creative_id": self.creative_id,
        }


def build_targeting(targeting: Targeting, defaults: LaunchDefaults) -> dict[str, Any]:
    geo: dict[str, Any]
    if targeting.radius_km and targeting.latitude is not None and targeting.longitude is not None:
        geo = {
            "custom_locations": [
                {
                    "latitude": targeting.latitude,
                    "longitude": targeting.longitude,
                    "radius": targeting.radius_km,
                    "distance_unit": "kilometer",
                }
            ]
        }
    elif targeting.countries:
        geo = {"countries": list(targeting.countries)}
    else:
        geo = {"countries": [defaults.country]}

    return {
        "age_min": targeting.age_min or defaults.age_min,
        "age_max": targeting.age_max or defaults.age_max,
        "geo_locations": geo,
        "publisher_platforms": ["facebook", "instagram"],
        "facebook_positions": ["feed"],
        "instagram_positions": ["stream"],
    }


def build_story_spec(*, page_id: str, variant: AdVariant, link_url: str) -> dict[str, Any]:
    link_data: dict[str, Any] = {
        "message": variant.body,
        "name": variant.headline,
        "link": link_url,
        "call_to_action": {"type": cta_type(variant.cta), "value": {"link": link_url}},
    }
    if variant.image_url:
        link_data["picture"] = variant.image_url
    return {"page_id": page_id, "link_data": link_data}


def campaign_name(business: Business, *, today: Optional[datetime] = None) -> str:
    day = (today or datetime.now(timezone.utc)).date().isoformat()
    parts = [business.name, business.trade, day]
    return " - ".join(part for part in parts if part)


def check_business(business: Business, *, user_id: str) -> None:
    if business.user_id != user_id:
        logger.warning(
            "Launch ownership mismatch",
            extra={"business_id": business.id, "user_id": user_id},
        )
        raise OwnershipError("You do not own this business")
    if not business.facebook_access_token:
        raise AuthError("Please connect your Facebook account first")
    if not business.facebook_ad_account_id:
        raise ValidationError("No Facebook ad account linked. Please select an ad account in settings.")
    if not business.facebook_page_id:
        raise ValidationError("No Facebook page linked. A page is required to publish ads.")


def build_launch_spec(
    *,
    business: Business,
    request: LaunchCampaignRequest,
    user_id: str,
    defaults: LaunchDefaults,
) -> LaunchSpec:
    """Turn a launch request into a LaunchSpec, enforcing ownership and credentials."""
    check_business(business, user_id=user_id)
    if request.daily_budget_cents is not None and request.daily_budget_cents <= 0:
        raise ValidationError("daily_budget_cents must be a positive integer")
    if request.radius_km is not None and request.radius_km <= 0:
        raise ValidationError("radius_km must be positive")

    variants = [
        AdVariant(headline=v.headline, body=v.body, cta=v.cta or "Learn More", image_url=v.image_url)
        for v in request.resolved_variants()
    ]
    if not variants:
        raise ValidationError("Missing required fields: business_id, headline, body, cta")

    return LaunchSpec(
        business_id=business.id,
        name=campaign_name(business),
        access_token=business.facebook_access_token,
        ad_account_id=business.facebook_ad_account_id,
        page_id=business.facebook_page_id,
        variants=variants,
        daily_budget_cents=request.daily_budget_cents,
        targeting=Targeting(
            radius_km=request.radius_km or defaults.radius_km,
            latitude=business.latitude,
            longitude=business.longitude,
            countries=[business.country_code] if business.country_code else [],
        ),
        link_url=business.website_url,
    )


def targeting_from_stored(stored: dict[str, Any]) -> Targeting:
    geo = stored.get("geo_locations") or {}
    locations = geo.get("custom_locations") or []
    circle = locations[0] if locations else {}
    return Targeting(
        radius_km=circle.get("radius"),
        latitude=circle.get("latitude"),
        longitude=circle.get("longitude"),
        countries=list(geo.get("countries") or []),
        age_min=stored.get("age_min"),
        age_max=stored.get("age_max"),
    )


def resume_spec(*, business: Business, campaign: Campaign, user_id: str) -> LaunchSpec:
    """Rebuild the LaunchSpec of a stored campaign so a failed launch can pick up where it stopped."""
    check_business(business, user_id=user_id)
    variants = [
        AdVariant(
            headline=item.get("headline", ""),
            body=item.get("body", ""),
            cta=item.get("cta") or "Learn More",
            image_url=item.get("image_url"),
        )
        for item in campaign.creatives or []
    ]
    return LaunchSpec(
        business_id=business.id,
        name=campaign.name,
        access_token=business.facebook_access_token,
        ad_account_id=business.facebook_ad_account_id,
        page_id=business.facebook_page_id,
        variants=variants,
        daily_budget_cents=campaign.daily_budget_cents,
        targeting=targeting_from_stored(campaign.targeting or {}),
        link_url=business.website_url,
    )


def _attempt(call: Callable[[], PlatformResult]) -> PlatformResult:
    try:
        return call()
    except PlatformTransportError as exc:
        return PlatformResult(ok=False, error_message=str(exc), error_code="transport")


class ProvisioningPipeline:
    def __init__(
        self,
        *,
        client: MetaPlatformClient,
        recorder: StateRecorder,
        defaults: Optional[LaunchDefaults] = None,
    ) -> None:
        self.client = client
        self.recorder = recorder
        self.defaults = defaults or LaunchDefaults.from_settings()

    def launch(self, spec: LaunchSpec, *, campaign: Optional[Campaign] = None) -> Campaign:
        self._validate(spec)
        budget = spec.daily_budget_cents or self.defaults.daily_budget_cents
        targeting = build_targeting(spec.targeting, self.defaults)

        if campaign is None:
            campaign = self.recorder.begin(
                business_id=spec.business_id,
                name=spec.name,
                daily_budget_cents=budget,
                targeting=targeting,
                creatives=[asdict(variant) for variant in spec.variants],
            )
        else:
            if campaign.status not in RESUMABLE_STATUSES:
                raise InvalidStateError(
                    f"Campaign in status {campaign.status.value} cannot be provisioned again",
                    campaign_id=campaign.id,
                )
            campaign = self.recorder.restart(campaign)

        logger.info(
            "Provisioning campaign",
            extra={
                "campaign_id": campaign.id,
                "business_id": spec.business_id,
                "variants": len(spec.variants),
                "daily_budget_cents": budget,
                "resume": bool(campaign.platform_campaign_id),
            },
        )

        platform_campaign_id = campaign.platform_campaign_id or self._create_campaign(spec, campaign)
        platform_adset_id = campaign.platform_adset_id or self._create_adset(
            spec, campaign, platform_campaign_id=platform_campaign_id, budget=budget, targeting=targeting
        )

        outcomes: list[VariantOutcome] = []
        if campaign.platform_ad_ids:
            ad_ids = list(campaign.platform_ad_ids)
        else:
            outcomes = self._create_ads(spec, campaign, platform_adset_id=platform_adset_id)
            ad_ids = [outcome.ad_id for outcome in outcomes if outcome.ok and outcome.ad_id]

        if not ad_ids:
            failures = [outcome.as_warning() for outcome in outcomes]
            self.recorder.mark_error(campaign, ProvisioningStepEnum.ads, "No ads created")
            raise NoViableAd(
                "No ads created; every ad variant was rejected",
                step=ProvisioningStepEnum.ads.value,
                campaign_id=campaign.id,
                failures=failures,
                remote_ids=remote_ids(campaign),
            )

        warnings = [outcome.as_warning() for outcome in outcomes if not outcome.ok]
        warnings.extend(
            self._activate(
                spec,
                campaign,
                ad_ids=ad_ids,
                platform_adset_id=platform_adset_id,
                platform_campaign_id=platform_campaign_id,
            )
        )
        if warnings:
            logger.warning(
                "Campaign launched with partial ad coverage",
                extra={"campaign_id": campaign.id, "failed_variants": len(warnings), "ads": len(ad_ids)},
            )

        campaign = self.recorder.mark_active(campaign, warnings=warnings)
        logger.info("Campaign active", extra={"campaign_id": campaign.id, **remote_ids(campaign)})
        return campaign

    def _validate(self, spec: LaunchSpec) -> None:
        if not spec.business_id:
            raise ValidationError("business_id is required")
        if not spec.page_id:
            raise ValidationError("A Facebook page id is required to create ad creatives")
        if not spec.ad_account_id:
            raise ValidationError("An ad account id is required")
        if not spec.access_token:
            raise AuthError("Please connect your Facebook account first")
        if not spec.variants:
            raise ValidationError("At least one ad variant is required")

    def _required_call(
        self, campaign: Campaign, step: ProvisioningStepEnum, call: Callable[[], PlatformResult]
    ) -> PlatformResult:
        try:
            return call()
        except PlatformTransportError as exc:
            self.recorder.mark_error(campaign, step, str(exc))
            raise ProvisioningTransportError(
                f"Could not reach Meta during {step.value}: {exc}",
                step=step.value,
                campaign_id=campaign.id,
                remote_ids=remote_ids(campaign),
            ) from exc

    def _reject(
        self, campaign: Campaign, step: ProvisioningStepEnum, result: PlatformResult, fallback: str
    ) -> PlatformRejection:
        message = result.error_message or fallback
        self.recorder.mark_error(campaign, step, message)
        return PlatformRejection(
            message,
            step=step.value,
            meta_error=result.error_payload,
            error_code=result.error_code,
            campaign_id=campaign.id,
            remote_ids=remote_ids(campaign),
        )

    def _create_campaign(self, spec: LaunchSpec, campaign: Campaign) -> str:
        step = ProvisioningStepEnum.campaign
        result = self._required_call(
            campaign,
            step,
            lambda: self.client.create_campaign(
                ad_account_id=spec.ad_account_id,
                access_token=spec.access_token,
                payload={
                    "name": spec.name,
                    "objective": self.defaults.objective,
                    "status": "PAUSED",
                    # Meta requires this param even when empty.
                    "special_ad_categories": [],
                },
            ),
        )
        if not result.ok or not result.external_id:
            raise self._reject(campaign, step, result, "Failed to create campaign on Meta")
        self.recorder.record_external_id(campaign, step, result.external_id)
        return result.external_id

    def _create_adset(
        self,
        spec: LaunchSpec,
        campaign: Campaign,
        *,
        platform_campaign_id: str,
        budget: int,
        targeting: dict[str, Any],
    ) -> str:
        step = ProvisioningStepEnum.adset
        result = self._required_call(
            campaign,
            step,
            lambda: self.client.create_adset(
                ad_account_id=spec.ad_account_id,
                access_token=spec.access_token,
                payload={
                    "name": f"{spec.name} - Ad Set",
                    "campaign_id": platform_campaign_id,
                    "daily_budget": int(budget),
                    "billing_event": self.defaults.billing_event,
                    "optimization_goal": self.defaults.optimization_goal,
                    "bid_strategy": "LOWEST_COST_WITHOUT_CAP",
                    "targeting": targeting,
                    "promoted_object": {"page_id": spec.page_id},
                    "status": "PAUSED",
                },
            ),
        )
        if not result.ok or not result.external_id:
            # The campaign stays on Meta; its id is disclosed for manual cleanup or resume.
            raise self._reject(campaign, step, result, "Failed to create ad set on Meta")
        self.recorder.record_external_id(campaign, step, result.external_id)
        return result.external_id

    def _create_ads(self, spec: LaunchSpec, campaign: Campaign, *, platform_adset_id: str) -> list[VariantOutcome]:
        link_url = spec.link_url or self.defaults.link_url
        outcomes: list[VariantOutcome] = []
        for index, variant in enumerate(spec.variants):
            label = f"{spec.name} - Variant {index + 1}"
            story_spec = build_story_spec(page_id=spec.page_id, variant=variant, link_url=link_url)
            creative = _attempt(
                lambda: self.client.create_adcreative(
                    ad_account_id=spec.ad_account_id,
                    access_token=spec.access_token,
                    payload={"name": f"{label} Creative", "object_story_spec": story_spec},
                )
            )
            if not creative.ok or not creative.external_id:
                error = creative.error_message or "Failed to create ad creative on Meta"
                self.recorder.record_step_failure(campaign, ProvisioningStepEnum.creative, error)
                outcomes.append(
                    VariantOutcome(index=index, ok=False, failed_step=ProvisioningStepEnum.creative.value, error=error)
                )
                continue

            ad = _attempt(
                lambda: self.client.create_ad(
                    ad_account_id=spec.ad_account_id,
                    access_token=spec.access_token,
                    payload={
                        "name": f"{label} Ad",
                        "adset_id": platform_adset_id,
                        "creative": {"creative_id": creative.external_id},
                        "status": "PAUSED",
                    },
                )
            )
            if not ad.ok or not ad.external_id:
                error = ad.error_message or "Failed to create ad on Meta"
                self.recorder.record_step_failure(
                    campaign, ProvisioningStepEnum.ad, error, external_id=creative.external_id
                )
                outcomes.append(
                    VariantOutcome(
                        index=index,
                        ok=False,
                        creative_id=creative.external_id,
                        failed_step=ProvisioningStepEnum.ad.value,
                        error=error,
                    )
                )
                continue

            self.recorder.record_external_id(campaign, ProvisioningStepEnum.ad, ad.external_id)
            outcomes.append(
                VariantOutcome(index=index, ok=True, creative_id=creative.external_id, ad_id=ad.external_id)
            )
        return outcomes

    def _activate(
        self,
        spec: LaunchSpec,
        campaign: Campaign,
        *,
        ad_ids: list[str],
        platform_adset_id: str,
        platform_campaign_id: str,
    ) -> list[dict[str, Any]]:
        warnings: list[dict[str, Any]] = []
        activated = 0
        for ad_id in ad_ids:
            result = _attempt(
                lambda: self.client.update_status(object_id=ad_id, access_token=spec.access_token, status="ACTIVE")
            )
            if result.ok:
                self.recorder.record_step_success(campaign, ProvisioningStepEnum.activate_ads, ad_id)
                activated += 1
                continue
            error = result.error_message or "Failed to activate ad"
            self.recorder.record_step_failure(campaign, ProvisioningStepEnum.activate_ads, error, external_id=ad_id)
            warnings.append({"ad_id": ad_id, "step": ProvisioningStepEnum.activate_ads.value, "error": error})

        if not activated:
            raise self._reject(
                campaign,
                ProvisioningStepEnum.activate_ads,
                PlatformResult(ok=False, error_message=warnings[-1]["error"] if warnings else None),
                "Failed to activate any ad",
            )

        # Parents go live only after their children.
        for step, object_id, fallback in (
            (ProvisioningStepEnum.activate_adset, platform_adset_id, "Failed to activate ad set"),
            (ProvisioningStepEnum.activate_campaign, platform_campaign_id, "Failed to activate campaign"),
        ):
            result = self._required_call(
                campaign,
                step,
                lambda: self.client.update_status(
                    object_id=object_id, access_token=spec.access_token, status="ACTIVE"
                ),
            )
            if not result.ok:
                raise self._reject(campaign, step, result, fallback)
            self.recorder.record_step_success(campaign, step, object_id)
        return warnings
