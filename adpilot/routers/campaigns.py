from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from adpilot.auth.dependencies import AuthContext, get_current_user
from adpilot.db.deps import get_session
from adpilot.db.models import Business, Campaign
from adpilot.db.repositories import BusinessesRepository, CampaignsRepository
from adpilot.schemas.campaigns import CampaignResponse, LaunchCampaignRequest, UpdateBudgetRequest
from adpilot.services.campaign_control import CampaignControl
from adpilot.services.errors import AuthError, NotFoundError, OwnershipError, ValidationError
from adpilot.services.meta_platform import MetaPlatformClient, get_meta_client
from adpilot.services.provisioning import (
    LaunchDefaults,
    ProvisioningPipeline,
    build_launch_spec,
    resume_spec,
)
from adpilot.services.state_recorder import StateRecorder

router = APIRouter(prefix="/campaigns", tags=["campaigns"])


def _serialize(campaign: Campaign) -> dict[str, Any]:
    return CampaignResponse.model_validate(campaign).model_dump(mode="json")


def _get_owned_campaign(session: Session, campaign_id: str, auth: AuthContext) -> tuple[Campaign, Business]:
    campaign = CampaignsRepository(session).get(campaign_id)
    if not campaign:
        raise NotFoundError("Campaign not found")
    business = BusinessesRepository(session).get(campaign.business_id)
    if not business or business.user_id != auth.user_id:
        raise OwnershipError("You do not own this campaign")
    return campaign, business


def _control(session: Session, business: Business, client: MetaPlatformClient) -> CampaignControl:
    if not business.facebook_access_token:
        raise AuthError("Please connect your Facebook account first")
    return CampaignControl(
        client=client,
        recorder=StateRecorder(session),
        access_token=business.facebook_access_token,
    )


@router.post("/launch", status_code=status.HTTP_201_CREATED)
def launch_campaign(
    payload: LaunchCampaignRequest,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
    client: MetaPlatformClient = Depends(get_meta_client),
) -> dict[str, Any]:
    missing = payload.missing_fields()
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    business = BusinessesRepository(session).get(payload.business_id)
    if not business:
        raise NotFoundError("Business not found")

    defaults = LaunchDefaults.from_settings()
    spec = build_launch_spec(business=business, request=payload, user_id=auth.user_id, defaults=defaults)
    pipeline = ProvisioningPipeline(client=client, recorder=StateRecorder(session), defaults=defaults)
    return _serialize(pipeline.launch(spec))


@router.get("/{campaign_id}")
def get_campaign(
    campaign_id: str,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    campaign, _ = _get_owned_campaign(session, campaign_id, auth)
    return _serialize(campaign)


@router.post("/{campaign_id}/retry")
def retry_campaign(
    campaign_id: str,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
    client: MetaPlatformClient = Depends(get_meta_client),
) -> dict[str, Any]:
    campaign, business = _get_owned_campaign(session, campaign_id, auth)
    spec = resume_spec(business=business, campaign=campaign, user_id=auth.user_id)
    pipeline = ProvisioningPipeline(client=client, recorder=StateRecorder(session))
    return _serialize(pipeline.launch(spec, campaign=campaign))


@router.post("/{campaign_id}/pause")
def pause_campaign(
    campaign_id: str,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
    client: MetaPlatformClient = Depends(get_meta_client),
) -> dict[str, Any]:
    campaign, business = _get_owned_campaign(session, campaign_id, auth)
    return _serialize(_control(session, business, client).pause(campaign))


@router.post("/{campaign_id}/resume")
def resume_campaign(
    campaign_id: str,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
    client: MetaPlatformClient = Depends(get_meta_client),
) -> dict[str, Any]:
    campaign, business = _get_owned_campaign(session, campaign_id, auth)
    return _serialize(_control(session, business, client).resume(campaign))


@router.post("/{campaign_id}/budget")
def update_campaign_budget(
    campaign_id: str,
    payload: UpdateBudgetRequest,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
    client: MetaPlatformClient = Depends(get_meta_client),
) -> dict[str, Any]:
    campaign, business = _get_owned_campaign(session, campaign_id, auth)
    control = _control(session, business, client)
    return _serialize(control.update_daily_budget(campaign, payload.daily_budget_cents))
