from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Optional

from adpilot.config import settings
from adpilot.db.enums import AgentTypeEnum
from adpilot.db.models import AutomationConfig

BASE_AGENTS = (
    AgentTypeEnum.competitor_analyst,
    AgentTypeEnum.review_scout,
    AgentTypeEnum.creative_director,
)
PERFORMANCE_AGENTS = (
    AgentTypeEnum.performance_monitor,
    AgentTypeEnum.campaign_optimizer,
)


@dataclass(frozen=True)
class AgentDecision:
    agent_type: AgentTypeEnum
    eligible: bool
    window_hours: int
    hours_since_last_run: Optional[float] = None
    reason: Optional[str] = None


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored timestamp is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AutomationScheduler:
    """Pure decision logic: which agent types are due for one business."""

    def __init__(self, frequencies: Mapping[str, int]) -> None:
        unknown = set(frequencies) - {agent.value for agent in AgentTypeEnum}
        if unknown:
            raise ValueError(f"Unknown agent types in frequency map: {sorted(unknown)}")
        missing = [agent.value for agent in AgentTypeEnum if agent.value not in frequencies]
        if missing:
            raise ValueError(f"Missing default frequency for agent types: {missing}")
        self.frequencies = {AgentTypeEnum(key): int(value) for key, value in frequencies.items()}

    @classmethod
    def from_settings(cls) -> "AutomationScheduler":
        return cls(settings.AGENT_FREQUENCY_HOURS)

    def window_hours(self, config: AutomationConfig, agent_type: AgentTypeEnum) -> int:
        overrides = config.frequency_overrides_hours or {}
        override = overrides.get(agent_type.value)
        # Zero, negative or blank overrides fall back to the default window.
        if override and int(override) > 0:
            return int(override)
        return self.frequencies[agent_type]

    def evaluate(
        self,
        config: AutomationConfig,
        run_history: Mapping[AgentTypeEnum, Optional[datetime]],
        *,
        has_active_campaigns: bool,
        now: Optional[datetime] = None,
    ) -> list[AgentDecision]:
        if not config.enabled:
            return []
        now = _as_utc(now or datetime.now(timezone.utc))
        disabled = set(config.disabled_agents or [])

        candidates = list(BASE_AGENTS)
        if has_active_campaigns:
            candidates.extend(PERFORMANCE_AGENTS)

        decisions: list[AgentDecision] = []
        for agent_type in candidates:
            window = self.window_hours(config, agent_type)
            if agent_type.value in disabled:
                decisions.append(
                    AgentDecision(agent_type=agent_type, eligible=False, window_hours=window, reason="Agent disabled")
                )
                continue
            last_run = run_history.get(agent_type)
            if last_run is None:
                decisions.append(AgentDecision(agent_type=agent_type, eligible=True, window_hours=window))
                continue
            hours_since = (now - _as_utc(last_run)).total_seconds() / 3600
            if hours_since >= window:
                decisions.append(
                    AgentDecision(
                        agent_type=agent_type,
                        eligible=True,
                        window_hours=window,
                        hours_since_last_run=hours_since,
                    )
                )
            else:
                decisions.append(
                    AgentDecision(
                        agent_type=agent_type,
                        eligible=False,
                        window_hours=window,
                        hours_since_last_run=hours_since,
                        reason=f"Last run within {window}h window",
                    )
                )
        return decisions

    def eligible_work(
        self,
        config: AutomationConfig,
        run_history: Mapping[AgentTypeEnum, Optional[datetime]],
        *,
        has_active_campaigns: bool,
        now: Optional[datetime] = None,
    ) -> list[AgentTypeEnum]:
        decisions = self.evaluate(config, run_history, has_active_campaigns=has_active_campaigns, now=now)
        return [decision.agent_type for decision in decisions if decision.eligible]


def get_automation_scheduler() -> AutomationScheduler:
    return AutomationScheduler.from_settings()
