"""
Tracking Domain Services
========================

Stateless business rules for field agents:
- StatusInferenceEngine: maps current facts to an operational status
- SLARiskCalculator: compares live ETA against the SLA deadline

Status is recomputed from facts on every update rather than driven by a
transition table. The previous status only matters for ``status_since``
bookkeeping, which the aggregate owns.
"""

from datetime import datetime, timedelta
from typing import Optional

from fieldtrack.config import AgentStatus, RiskLevel
from fieldtrack.tracking.domain.entities import FieldAgent, SlaRisk, StatusDecision
from fieldtrack.tracking.domain.value_objects import (
    AgentPosition,
    TrackingConfig,
    ensure_utc,
)


class StatusInferenceEngine:
    """
    Pure decision function over an agent snapshot.

    Rules are evaluated in priority order and the first match wins:
    offline, SLA at risk, off duty, in transit, in service, available.
    """

    def __init__(self, config: Optional[TrackingConfig] = None):
        self._config = config or TrackingConfig()

    @property
    def offline_threshold(self) -> timedelta:
        return timedelta(minutes=self._config.offline_threshold_minutes)

    def evaluate(
        self,
        agent: FieldAgent,
        now: datetime,
        current_position: Optional[AgentPosition] = None,
        has_active_route: Optional[bool] = None,
    ) -> StatusDecision:
        """
        Infer the status an agent should have right now.

        Args:
            agent: Agent snapshot
            now: Evaluation time
            current_position: Evaluate against this fix instead of the stored one
            has_active_route: Route state from the routing concern; defaults to
                whether the agent carries a route. A route is only considered
                active when the agent actually has one.

        Returns:
            StatusDecision with the status and the rule that fired
        """
        now = ensure_utc(now)
        position = current_position or agent.position
        speed = position.speed_kmh if position else 0.0
        if has_active_route is None:
            has_active_route = agent.current_route is not None
        route = agent.current_route if has_active_route else None

        last_ping = agent.device.last_ping_at
        if last_ping is None or now - ensure_utc(last_ping) > self.offline_threshold:
            return StatusDecision(AgentStatus.OFFLINE, "device_offline")

        if agent.sla_deadline_at is not None and route is not None:
            remaining_seconds = (agent.sla_deadline_at - now).total_seconds()
            if route.eta_seconds > remaining_seconds:
                return StatusDecision(AgentStatus.SLA_AT_RISK, "sla_eta_exceeds_deadline")

        if not agent.is_on_duty:
            return StatusDecision(AgentStatus.ON_BREAK, "off_duty")

        if speed > self._config.moving_speed_kmh and route is not None:
            return StatusDecision(AgentStatus.IN_TRANSIT, "moving_on_route")

        if (
            speed < self._config.stationary_speed_kmh
            and agent.assigned_ticket_id
            and agent.customer_site_id
        ):
            return StatusDecision(AgentStatus.IN_SERVICE, "stationary_at_assignment")

        return StatusDecision(AgentStatus.AVAILABLE, "default_available")

    def determine_agent_status(
        self,
        agent: FieldAgent,
        now: datetime,
        current_position: Optional[AgentPosition] = None,
        has_active_route: Optional[bool] = None,
    ) -> AgentStatus:
        """Status only; safe for dry-run and what-if evaluation."""
        return self.evaluate(agent, now, current_position, has_active_route).status

    @staticmethod
    def is_within_working_hours(agent: FieldAgent, now: datetime) -> bool:
        """
        Compare time of day against the agent's shift window.

        Shifts where the start is later than the end wrap past midnight.
        Agents without a shift window are always within working hours.
        """
        if agent.shift_start_at is None or agent.shift_end_at is None:
            return True

        tz = agent.shift_start_at.tzinfo
        if tz is not None:
            now = ensure_utc(now).astimezone(tz)

        current_total = now.hour * 60 + now.minute
        start_total = agent.shift_start_at.hour * 60 + agent.shift_start_at.minute
        end_total = agent.shift_end_at.hour * 60 + agent.shift_end_at.minute

        if start_total <= end_total:
            return start_total <= current_total <= end_total
        # Overnight shift
        return current_total >= start_total or current_total <= end_total


class SLARiskCalculator:
    """
    Pure functions for SLA risk scoring.

    Idempotent and side-effect free; callers decide whether to persist
    the classification.
    """

    def __init__(self, config: Optional[TrackingConfig] = None):
        self._config = config or TrackingConfig()

    def calculate(
        self,
        sla_deadline_at: Optional[datetime],
        eta_seconds: Optional[int],
        now: datetime,
    ) -> SlaRisk:
        """
        Classify the risk of missing an SLA deadline.

        Args:
            sla_deadline_at: Deadline for the assigned task
            eta_seconds: Remaining route ETA
            now: Evaluation time

        Returns:
            SlaRisk; ``risk_level`` is NONE whenever an input is missing
        """
        if sla_deadline_at is None or eta_seconds is None:
            return SlaRisk(is_at_risk=False, risk_level=RiskLevel.NONE)

        remaining = (ensure_utc(sla_deadline_at) - ensure_utc(now)).total_seconds() / 60
        minutes_remaining = max(0.0, remaining)
        eta_minutes = eta_seconds / 60

        is_at_risk = eta_minutes > minutes_remaining
        if not is_at_risk:
            return SlaRisk(
                is_at_risk=False,
                risk_level=RiskLevel.NONE,
                minutes_remaining=minutes_remaining,
                eta_minutes=eta_minutes,
            )

        overrun = eta_minutes - minutes_remaining
        if overrun > self._config.risk_high_overrun_minutes:
            level = RiskLevel.HIGH
        elif overrun > self._config.risk_medium_overrun_minutes:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.LOW

        return SlaRisk(
            is_at_risk=True,
            risk_level=level,
            minutes_remaining=minutes_remaining,
            eta_minutes=eta_minutes,
        )

    def calculate_for_agent(self, agent: FieldAgent, now: datetime) -> SlaRisk:
        """Risk for the agent's deadline against its active route ETA."""
        eta_seconds = agent.current_route.eta_seconds if agent.current_route else None
        return self.calculate(agent.sla_deadline_at, eta_seconds, now)
