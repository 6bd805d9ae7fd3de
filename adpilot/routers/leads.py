from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from adpilot.auth.dependencies import AuthContext, get_current_user
from adpilot.db.deps import get_session
from adpilot.db.repositories import BusinessesRepository, LeadsRepository
from adpilot.schemas.leads import LeadQualityRequest, LeadQualityResponse
from adpilot.services.conversions import ConversionFeedback
from adpilot.services.errors import NotFoundError, OwnershipError
from adpilot.services.meta_platform import MetaPlatformClient, get_meta_client

router = APIRouter(prefix="/leads", tags=["leads"])


@router.post("/{lead_id}/quality", response_model=LeadQualityResponse)
def report_lead_quality(
    lead_id: str,
    payload: LeadQualityRequest,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
    client: MetaPlatformClient = Depends(get_meta_client),
):
    leads = LeadsRepository(session)
    lead = leads.get(lead_id)
    if not lead:
        raise NotFoundError("Lead not found")
    business = BusinessesRepository(session).get(lead.business_id)
    if not business or business.user_id != auth.user_id:
        raise OwnershipError("You do not own this lead")

    feedback = ConversionFeedback.from_settings(client=client, leads=leads)
    result = feedback.report(lead, payload.quality, business=business)
    return LeadQualityResponse(
        lead_id=lead.id,
        quality=result.quality,
        sent=result.sent,
        events_received=result.events_received,
        reason=result.reason,
    )
