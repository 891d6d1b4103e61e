"""
Accountability Check

Flags assignees whose in-progress work shows no code activity, and members
carrying more open work than a sprint can absorb.
"""
from datetime import timedelta
from typing import List

from ....models.automation import AccountabilityMetadata, CheckState, ProposedAction
from ....models.db_models import ActionType, TicketStatus
from ..registry import CheckModule, drop_duplicate_conditions


NO_COMMIT_DAYS = 3
SPRINT_RISK_IN_PROGRESS = 3   # more than this many in progress...
SPRINT_RISK_OPEN_ASSIGNED = 5  # ...and more than this many open assigned

IN_PROGRESS_STATUSES = (TicketStatus.IN_PROGRESS, TicketStatus.IN_REVIEW)


class AccountabilityCheck(CheckModule):
    name = "accountability_check"

    def run(self, state: CheckState) -> List[ProposedAction]:
        actions = self._in_progress_without_commits(state) + self._sprint_risk(state)
        return drop_duplicate_conditions(actions)

    def _in_progress_without_commits(self, state: CheckState) -> List[ProposedAction]:
        since = state.now - timedelta(days=NO_COMMIT_DAYS)
        active_keys = {c.jira_key for c in state.commits_since(since) if c.jira_key}

        actions = []
        for ticket in state.tickets:
            if ticket.status != TicketStatus.IN_PROGRESS:
                continue
            if not ticket.jira_key or not ticket.assignee_id:
                continue
            if ticket.status_changed_at is None or ticket.status_changed_at >= since:
                continue
            if ticket.jira_key in active_keys:
                continue

            dedupe_key = f"accountability_flag:{ticket.assignee_id}:no_commits:{ticket.jira_key}"
            if state.already_flagged(dedupe_key):
                continue

            actions.append(ProposedAction(
                type=ActionType.ACCOUNTABILITY_FLAG,
                title=f"No commits for {ticket.jira_key} in {NO_COMMIT_DAYS}+ days",
                description=(
                    f'{ticket.jira_key} "{ticket.title}" has had no commit activity in the last '
                    f"{NO_COMMIT_DAYS} days despite being in progress."
                ),
                confidence=70,
                metadata=AccountabilityMetadata(
                    team_member_id=ticket.assignee_id,
                    flag_type="no_commits",
                    jira_key=ticket.jira_key,
                    evidence={"days_without_commits": NO_COMMIT_DAYS, "ticket_title": ticket.title},
                ),
                dedupe_key=dedupe_key,
            ))
        return actions

    def _sprint_risk(self, state: CheckState) -> List[ProposedAction]:
        actions = []
        for member in state.team_members:
            open_tickets = [t for t in state.tickets_for(member.id) if t.is_open]
            in_progress = [t for t in open_tickets if t.status in IN_PROGRESS_STATUSES]
            if len(in_progress) <= SPRINT_RISK_IN_PROGRESS or len(open_tickets) <= SPRINT_RISK_OPEN_ASSIGNED:
                continue

            dedupe_key = f"accountability_flag:{member.id}:sprint_risk"
            if state.already_flagged(dedupe_key):
                continue

            actions.append(ProposedAction(
                type=ActionType.ACCOUNTABILITY_FLAG,
                title=f"Sprint risk for {member.name}",
                description=(
                    f"{member.name} has {len(in_progress)} tickets in progress with "
                    f"{len(open_tickets)} open tickets assigned. Sprint completion may be at risk."
                ),
                confidence=60,
                metadata=AccountabilityMetadata(
                    team_member_id=member.id,
                    flag_type="sprint_risk",
                    evidence={"in_progress": len(in_progress), "open_assigned": len(open_tickets)},
                ),
                dedupe_key=dedupe_key,
            ))
        return actions
