from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from adpilot.db.models import Business


class BusinessesRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, business_id: str) -> Optional[Business]:
        stmt = select(Business).where(Business.id == business_id)
        return self.session.scalars(stmt).first()
