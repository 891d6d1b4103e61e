"""
Sprint Health Check

Scores the active sprint and looks for engineers running out of work.
Underloaded engineers get a gap warning, and up to three of them get the
highest-priority unassigned ticket suggested.
"""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional
import math

from ....models.automation import (
    AssignTicketMetadata, CheckState, ProposedAction, SprintGapMetadata, TicketSnapshot,
)
from ....models.db_models import ActionType, TicketStatus
from ..registry import CheckModule


PRIORITY_ORDER = {"Highest": 1, "High": 2, "Medium": 3, "Low": 4, "Lowest": 5}

IN_PROGRESS_STATUSES = (TicketStatus.IN_PROGRESS, TicketStatus.IN_REVIEW)
MIN_REMAINING_TICKETS = 2
MAX_ASSIGNMENT_SUGGESTIONS = 3


@dataclass
class EngineerLoad:
    member_id: str
    name: str
    assigned: int
    completed: int
    in_progress: int

    @property
    def remaining(self) -> int:
        return self.assigned - self.completed

    @property
    def underloaded(self) -> bool:
        return self.remaining < MIN_REMAINING_TICKETS or self.in_progress == 0


def health_score(total: int, completed: int, in_progress: int, underloaded: int, team_size: int) -> int:
    """0-100. Completion weighs 60, overall progress 40; +5 with work in flight, -15 when most of the team is idle."""
    if total == 0:
        return 50

    score = round((completed / total) * 60 + ((completed + in_progress) / total) * 40)
    if in_progress > 0:
        score = min(100, score + 5)
    if underloaded > team_size / 2:
        score = max(0, score - 15)
    return score


def days_until(state: CheckState, end_date) -> Optional[int]:
    if end_date is None:
        return None
    seconds = (end_date - state.now).total_seconds()
    return max(0, math.ceil(seconds / 86400))


@dataclass
class SprintHealthReport:
    """Measured state of the active sprint. Stored once per run as a snapshot."""
    sprint_id: str
    sprint_name: str
    total: int
    completed: int
    in_progress: int
    todo: int
    health_score: int
    days_remaining: Optional[int] = None
    engineers: List[EngineerLoad] = field(default_factory=list)

    @property
    def underloaded(self) -> List[EngineerLoad]:
        return [load for load in self.engineers if load.underloaded]

    def per_engineer_data(self) -> List[Dict[str, Any]]:
        return [asdict(load) for load in self.engineers]


def _load_for(member_id: str, name: str, assigned: List[TicketSnapshot]) -> EngineerLoad:
    mine = [t for t in assigned if t.assignee_id == member_id]
    return EngineerLoad(
        member_id=member_id,
        name=name,
        assigned=len(mine),
        completed=sum(1 for t in mine if t.status == TicketStatus.DONE),
        in_progress=sum(1 for t in mine if t.status in IN_PROGRESS_STATUSES),
    )


def assess_sprint(state: CheckState) -> Optional[SprintHealthReport]:
    """Score the active sprint, or None when no sprint is active."""
    sprint = state.active_sprint
    if sprint is None:
        return None

    assigned = [t for t in state.tickets if t.assignee_id is not None]
    loads = [_load_for(member.id, member.name, assigned) for member in state.team_members]
    underloaded = sum(1 for load in loads if load.underloaded)

    completed = sum(1 for t in assigned if t.status == TicketStatus.DONE)
    in_progress = sum(1 for t in assigned if t.status in IN_PROGRESS_STATUSES)
    return SprintHealthReport(
        sprint_id=sprint.id,
        sprint_name=sprint.name,
        total=len(assigned),
        completed=completed,
        in_progress=in_progress,
        todo=len(assigned) - completed - in_progress,
        health_score=health_score(len(assigned), completed, in_progress, underloaded, len(loads)),
        days_remaining=days_until(state, sprint.end_date),
        engineers=loads,
    )


class SprintHealthCheck(CheckModule):
    name = "sprint_health_check"

    def run(self, state: CheckState) -> List[ProposedAction]:
        report = assess_sprint(state)
        if report is None:
            return []

        sprint = state.active_sprint
        underloaded = report.underloaded
        score = report.health_score
        days_remaining = report.days_remaining

        actions: List[ProposedAction] = []

        for load in underloaded:
            dedupe_key = f"sprint_gap_warning:{sprint.id}:{load.member_id}"
            if state.already_flagged(dedupe_key):
                continue
            actions.append(ProposedAction(
                type=ActionType.SPRINT_GAP_WARNING,
                title=f"Sprint gap: {load.name} has {load.remaining} remaining tickets",
                description=(
                    f"{load.name} has only {load.remaining} remaining tickets and {load.in_progress} "
                    f"in progress in {sprint.name}. Consider assigning more work to maintain sprint velocity."
                ),
                confidence=85 if load.remaining == 0 else 65,
                metadata=SprintGapMetadata(
                    team_member_id=load.member_id,
                    member_name=load.name,
                    remaining=load.remaining,
                    in_progress=load.in_progress,
                    days_remaining=days_remaining,
                    health_score=score,
                ),
                dedupe_key=dedupe_key,
            ))

        backlog = [
            t for t in self._unassigned_by_priority(state)
            if not state.already_flagged(f"assign_ticket:{t.id}")
        ]
        for load, ticket in zip(underloaded[:MAX_ASSIGNMENT_SUGGESTIONS], backlog):
            actions.append(ProposedAction(
                type=ActionType.ASSIGN_TICKET,
                title=f'Assign "{ticket.title}" to {load.name}',
                description=(
                    f"{load.name} is underloaded with {load.remaining} remaining tickets. "
                    f'Consider assigning "{ticket.title}" to balance sprint workload.'
                ),
                confidence=55,
                metadata=AssignTicketMetadata(
                    team_member_id=load.member_id,
                    member_name=load.name,
                    ticket_id=ticket.id,
                    jira_key=ticket.jira_key,
                    ticket_title=ticket.title,
                ),
                dedupe_key=f"assign_ticket:{ticket.id}",
            ))

        return actions

    @staticmethod
    def _unassigned_by_priority(state: CheckState) -> List[TicketSnapshot]:
        unassigned = [
            t for t in state.tickets
            if t.assignee_id is None and t.status in (TicketStatus.TODO, TicketStatus.BACKLOG)
        ]
        return sorted(unassigned, key=lambda t: PRIORITY_ORDER.get(t.priority or "", 999))
