"""
PM Check

Alerts the PM about engineers without work or without recent activity, and
suggests moving queued tickets from overloaded engineers to idle ones.
"""
from datetime import datetime
from typing import Dict, List, Optional

from ....models.automation import (
    CheckState, PMAlertMetadata, PMSuggestionMetadata, ProposedAction, TeamMemberSnapshot,
)
from ....models.db_models import ActionType, TicketStatus
from ..registry import CheckModule
from .sprint_health import PRIORITY_ORDER


INACTIVITY_WARNING_DAYS = 2
INACTIVITY_CRITICAL_DAYS = 5
OVERLOADED_OPEN_TICKETS = 5

SEVERITY_CONFIDENCE = {"critical": 90, "warning": 70}


class PMCheck(CheckModule):
    name = "pm_check"

    def run(self, state: CheckState) -> List[ProposedAction]:
        actions: List[ProposedAction] = []
        last_activity = self._last_activity(state)

        idle: List[TeamMemberSnapshot] = []
        for member in state.team_members:
            open_tickets = [t for t in state.tickets_for(member.id) if t.is_open]

            if not open_tickets:
                idle.append(member)
                actions += self._alert(
                    state, member, "no_assignment", "warning",
                    f"{member.name} has no open tickets assigned.",
                )
                continue

            last_seen = last_activity.get(member.id)
            idle_days = (state.now - last_seen).days if last_seen else None
            if idle_days is None or idle_days >= INACTIVITY_CRITICAL_DAYS:
                since = f"in {idle_days} days" if idle_days is not None else "on record"
                actions += self._alert(
                    state, member, "no_activity", "critical",
                    f"{member.name} has {len(open_tickets)} open tickets but no commits or status changes {since}.",
                )
            elif idle_days >= INACTIVITY_WARNING_DAYS:
                actions += self._alert(
                    state, member, "no_activity", "warning",
                    f"{member.name} has {len(open_tickets)} open tickets but no commits or status changes in {idle_days} days.",
                )

        actions += self._rebalance(state, idle)
        return actions

    @staticmethod
    def _last_activity(state: CheckState) -> Dict[str, datetime]:
        latest: Dict[str, datetime] = {}

        def touch(member_id: Optional[str], when: Optional[datetime]):
            if member_id and when and (member_id not in latest or when > latest[member_id]):
                latest[member_id] = when

        for commit in state.commits:
            touch(commit.team_member_id, commit.committed_at)
        for ticket in state.tickets:
            touch(ticket.assignee_id, ticket.status_changed_at)
        return latest

    @staticmethod
    def _alert(
        state: CheckState,
        member: TeamMemberSnapshot,
        alert_type: str,
        severity: str,
        message: str,
    ) -> List[ProposedAction]:
        dedupe_key = f"pm_alert:{member.id}:{alert_type}:{severity}"
        if state.already_flagged(dedupe_key):
            return []
        return [ProposedAction(
            type=ActionType.PM_ALERT,
            title=f"Alert: {alert_type} - {member.name}",
            description=message,
            confidence=SEVERITY_CONFIDENCE[severity],
            metadata=PMAlertMetadata(
                team_member_id=member.id,
                member_name=member.name,
                alert_type=alert_type,
                severity=severity,
            ),
            dedupe_key=dedupe_key,
        )]

    @staticmethod
    def _rebalance(state: CheckState, idle: List[TeamMemberSnapshot]) -> List[ProposedAction]:
        overloaded = []
        for member in state.team_members:
            open_tickets = [t for t in state.tickets_for(member.id) if t.is_open]
            if len(open_tickets) < OVERLOADED_OPEN_TICKETS:
                continue
            queued = sorted(
                [
                    t for t in open_tickets
                    if t.status in (TicketStatus.TODO, TicketStatus.BACKLOG)
                    and not state.already_flagged(f"pm_suggestion:{t.id}")
                ],
                key=lambda t: PRIORITY_ORDER.get(t.priority or "", 999),
            )
            if queued:
                overloaded.append((member, len(open_tickets), queued))

        # Most loaded first
        overloaded.sort(key=lambda entry: entry[1], reverse=True)

        actions = []
        for target, (source, open_count, queued) in zip(idle, overloaded):
            ticket = queued[0]
            actions.append(ProposedAction(
                type=ActionType.PM_SUGGESTION,
                title=f"Suggestion for {target.name}: take over {ticket.jira_key or ticket.title}",
                description=(
                    f'{source.name} has {open_count} open tickets while {target.name} has none. '
                    f'Moving "{ticket.title}" would balance the load.'
                ),
                confidence=50,
                metadata=PMSuggestionMetadata(
                    from_member_id=source.id,
                    to_member_id=target.id,
                    ticket_id=ticket.id,
                    jira_key=ticket.jira_key,
                    ticket_title=ticket.title,
                ),
                dedupe_key=f"pm_suggestion:{ticket.id}",
            ))
        return actions
