from typing import Optional

from pydantic import BaseModel

from adpilot.db.enums import LeadQualityEnum


class LeadQualityRequest(BaseModel):
    quality: LeadQualityEnum


class LeadQualityResponse(BaseModel):
    lead_id: str
    quality: LeadQualityEnum
    sent: bool
    events_received: Optional[int] = None
    reason: Optional[str] = None
