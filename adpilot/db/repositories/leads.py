from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from adpilot.db.enums import LeadQualityEnum
from adpilot.db.models import Lead


class LeadsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, lead_id: str) -> Optional[Lead]:
        stmt = select(Lead).where(Lead.id == lead_id)
        return self.session.scalars(stmt).first()

    def set_quality(self, lead: Lead, quality: LeadQualityEnum) -> Lead:
        lead.quality = quality
        lead.quality_reported_at = datetime.now(timezone.utc)
        self.session.commit()
        self.session.refresh(lead)
        return lead
