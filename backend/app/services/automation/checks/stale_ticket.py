"""
Stale Ticket Check

Flags tickets whose Jira status disagrees with Bitbucket activity.

Detections:
- pr_merged_ticket_open:  PR merged, ticket not done
- commits_no_progress:    recent commits, ticket still todo/backlog
- ticket_stale_in_status: in progress > 5 days with no code activity
- pr_open_no_review:      PR open > 48h without an approval
- pipeline_failing:       failed build on a branch naming a Jira key
"""
from datetime import timedelta
from typing import Dict, List
import re

from ....models.automation import CheckState, ProposedAction, StaleTicketMetadata
from ....models.db_models import ActionType, TicketStatus, PullRequestState, PipelineState
from ..registry import CheckModule, drop_duplicate_conditions


JIRA_KEY_PATTERN = re.compile(r"([A-Z][A-Z0-9]+-\d+)")

COMMIT_WINDOW_DAYS = 3
STALE_IN_STATUS_DAYS = 5
REVIEW_WAIT_HOURS = 48
PIPELINE_WINDOW_DAYS = 3

STALE_BASE_CONFIDENCE = 60
STALE_CONFIDENCE_PER_DAY = 5
STALE_MAX_CONFIDENCE = 95


def stale_confidence(days_in_status: int) -> int:
    """60 at the threshold, +5 for each further day, capped at 95."""
    extra_days = max(0, days_in_status - STALE_IN_STATUS_DAYS)
    return min(STALE_MAX_CONFIDENCE, STALE_BASE_CONFIDENCE + STALE_CONFIDENCE_PER_DAY * extra_days)


class StaleTicketCheck(CheckModule):
    name = "stale_ticket_check"

    def run(self, state: CheckState) -> List[ProposedAction]:
        actions: List[ProposedAction] = []
        actions.extend(self._merged_but_open(state))
        actions.extend(self._commits_without_progress(state))
        actions.extend(self._stale_in_status(state))
        actions.extend(self._unreviewed_pull_requests(state))
        actions.extend(self._failing_pipelines(state))
        return drop_duplicate_conditions(actions)

    def _propose(
        self,
        state: CheckState,
        jira_key: str,
        detection_type: str,
        severity: str,
        title: str,
        description: str,
        confidence: int,
        evidence: Dict[str, object],
    ) -> List[ProposedAction]:
        dedupe_key = f"stale_ticket:{jira_key}:{detection_type}"
        if state.already_flagged(dedupe_key):
            return []
        return [ProposedAction(
            type=ActionType.STALE_TICKET,
            title=title,
            description=description,
            confidence=confidence,
            metadata=StaleTicketMetadata(
                jira_key=jira_key,
                detection_type=detection_type,
                severity=severity,
                evidence=evidence,
            ),
            dedupe_key=dedupe_key,
        )]

    def _merged_but_open(self, state: CheckState) -> List[ProposedAction]:
        actions = []
        for pr in state.pull_requests:
            if pr.state != PullRequestState.MERGED or not pr.jira_key:
                continue
            ticket = state.ticket_by_key(pr.jira_key)
            if ticket is None or ticket.status == TicketStatus.DONE:
                continue
            merged = pr.merged_at.isoformat() if pr.merged_at else "unknown date"
            actions += self._propose(
                state, pr.jira_key, "pr_merged_ticket_open", "high",
                title=f"PR merged but ticket {pr.jira_key} still {ticket.status.value}",
                description=(
                    f'PR #{pr.pr_number} "{pr.title}" was merged on {merged} '
                    f'but the ticket is still in "{ticket.status.value}" status.'
                ),
                confidence=85,
                evidence={
                    "pr_number": pr.pr_number,
                    "repo_slug": pr.repo_slug,
                    "merged_at": pr.merged_at.isoformat() if pr.merged_at else None,
                    "ticket_status": ticket.status.value,
                },
            )
        return actions

    def _commits_without_progress(self, state: CheckState) -> List[ProposedAction]:
        since = state.now - timedelta(days=COMMIT_WINDOW_DAYS)
        counts: Dict[str, int] = {}
        for commit in state.commits_since(since):
            if commit.jira_key:
                counts[commit.jira_key] = counts.get(commit.jira_key, 0) + 1

        actions = []
        for jira_key, count in counts.items():
            ticket = state.ticket_by_key(jira_key)
            if ticket is None or ticket.status not in (TicketStatus.BACKLOG, TicketStatus.TODO):
                continue
            actions += self._propose(
                state, jira_key, "commits_no_progress", "medium",
                title=f"{count} commits for {jira_key} but ticket still in {ticket.status.value}",
                description=(
                    f"{count} commits found in the last {COMMIT_WINDOW_DAYS} days for {jira_key}, "
                    f'but the ticket status is "{ticket.status.value}". '
                    f'The ticket should probably be moved to "In Progress".'
                ),
                confidence=70,
                evidence={"commit_count": count, "ticket_status": ticket.status.value},
            )
        return actions

    def _stale_in_status(self, state: CheckState) -> List[ProposedAction]:
        since = state.now - timedelta(days=STALE_IN_STATUS_DAYS)
        active_keys = {c.jira_key for c in state.commits_since(since) if c.jira_key}

        actions = []
        for ticket in state.tickets:
            if ticket.status != TicketStatus.IN_PROGRESS or not ticket.jira_key:
                continue
            if ticket.status_changed_at is None or ticket.status_changed_at >= since:
                continue
            if ticket.jira_key in active_keys:
                continue

            days = (state.now - ticket.status_changed_at).days
            actions += self._propose(
                state, ticket.jira_key, "ticket_stale_in_status", "medium",
                title=f'{ticket.jira_key} stale in "{ticket.status.value}" for {days} days',
                description=(
                    f'Ticket {ticket.jira_key} "{ticket.title}" has been in "{ticket.status.value}" '
                    f"since {ticket.status_changed_at.isoformat()} with no code activity."
                ),
                confidence=stale_confidence(days),
                evidence={"days_in_status": days, "last_status_change": ticket.status_changed_at.isoformat()},
            )
        return actions

    def _unreviewed_pull_requests(self, state: CheckState) -> List[ProposedAction]:
        cutoff = state.now - timedelta(hours=REVIEW_WAIT_HOURS)

        actions = []
        for pr in state.pull_requests:
            if pr.state != PullRequestState.OPEN or pr.created_at > cutoff or pr.approvals > 0:
                continue
            jira_key = pr.jira_key or f"PR-{pr.pr_number}"
            actions += self._propose(
                state, jira_key, "pr_open_no_review", "medium",
                title=f"PR #{pr.pr_number} open >{REVIEW_WAIT_HOURS}h with no review",
                description=(
                    f'PR "{pr.title}" in {pr.repo_slug} has been open since '
                    f"{pr.created_at.isoformat()} with no approved reviews."
                ),
                confidence=60,
                evidence={"pr_number": pr.pr_number, "repo_slug": pr.repo_slug},
            )
        return actions

    def _failing_pipelines(self, state: CheckState) -> List[ProposedAction]:
        since = state.now - timedelta(days=PIPELINE_WINDOW_DAYS)

        actions = []
        for pipeline in state.pipelines:
            if pipeline.state != PipelineState.FAILED:
                continue
            if pipeline.completed_at is None or pipeline.completed_at < since:
                continue
            match = JIRA_KEY_PATTERN.search(pipeline.branch)
            if not match:
                continue
            jira_key = match.group(1)
            actions += self._propose(
                state, jira_key, "pipeline_failing", "high",
                title=f"Pipeline failing for {jira_key} on branch {pipeline.branch}",
                description=(
                    f"Build #{pipeline.build_number} in {pipeline.repo_slug} failed for branch "
                    f"{pipeline.branch} (linked to {jira_key})."
                ),
                confidence=75,
                evidence={
                    "branch": pipeline.branch,
                    "build_number": pipeline.build_number,
                    "repo_slug": pipeline.repo_slug,
                },
            )
        return actions
