from sqlalchemy import select
from sqlalchemy.orm import Session

from adpilot.db.models import AutomationConfig


class AutomationConfigsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_enabled(self) -> list[AutomationConfig]:
        stmt = (
            select(AutomationConfig)
            .where(AutomationConfig.enabled.is_(True))
            .order_by(AutomationConfig.created_at.asc())
        )
        return list(self.session.scalars(stmt).unique().all())
