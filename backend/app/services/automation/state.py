"""
Check State Loader

Builds the read-only CheckState snapshot from the synced tables.
Loaded once per run so every check sees the same picture.
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...models.automation import (
    CheckState, TeamMemberSnapshot, TicketSnapshot, CommitSnapshot,
    PullRequestSnapshot, PipelineSnapshot, SprintSnapshot,
)
from ...models.db_models import (
    TeamMemberDB, TicketDB, CommitDB, PullRequestDB, PipelineDB, SprintDB,
)
from .lifecycle import AutomationLifecycle


# Older activity never influences a check
ACTIVITY_LOOKBACK_DAYS = 30


def load_check_state(db: Session, now: Optional[datetime] = None) -> CheckState:
    """Snapshot tickets, members, recent Bitbucket activity and the active sprint."""
    now = now or datetime.utcnow()
    since = now - timedelta(days=ACTIVITY_LOOKBACK_DAYS)

    members = [
        TeamMemberSnapshot(id=m.id, name=m.name)
        for m in db.query(TeamMemberDB).order_by(TeamMemberDB.name).all()
    ]

    tickets = [
        TicketSnapshot(
            id=t.id,
            jira_key=t.jira_key,
            title=t.title,
            status=t.status,
            priority=t.priority,
            assignee_id=t.assignee_id,
            status_changed_at=t.status_changed_at,
        )
        for t in db.query(TicketDB).order_by(TicketDB.created_at).all()
    ]

    commits = [
        CommitSnapshot(
            id=c.id,
            repo_slug=c.repo_slug,
            committed_at=c.committed_at,
            jira_key=c.jira_key,
            team_member_id=c.team_member_id,
        )
        for c in db.query(CommitDB).filter(CommitDB.committed_at >= since).all()
    ]

    pull_requests = [
        PullRequestSnapshot(
            id=pr.id,
            repo_slug=pr.repo_slug,
            pr_number=pr.pr_number,
            title=pr.title,
            state=pr.state,
            created_at=pr.created_at,
            jira_key=pr.jira_key,
            team_member_id=pr.team_member_id,
            approvals=pr.approvals or 0,
            merged_at=pr.merged_at,
        )
        for pr in db.query(PullRequestDB).order_by(PullRequestDB.created_at).all()
    ]

    pipelines = [
        PipelineSnapshot(
            id=p.id,
            repo_slug=p.repo_slug,
            build_number=p.build_number,
            branch=p.branch,
            state=p.state,
            completed_at=p.completed_at,
        )
        for p in db.query(PipelineDB).filter(
            (PipelineDB.completed_at.is_(None)) | (PipelineDB.completed_at >= since)
        ).all()
    ]

    sprint_row = db.query(SprintDB).filter(SprintDB.state == "active").first()
    active_sprint = None
    if sprint_row is not None:
        active_sprint = SprintSnapshot(
            id=sprint_row.id,
            name=sprint_row.name,
            start_date=sprint_row.start_date,
            end_date=sprint_row.end_date,
        )

    return CheckState(
        now=now,
        tickets=tickets,
        team_members=members,
        commits=commits,
        pull_requests=pull_requests,
        pipelines=pipelines,
        active_sprint=active_sprint,
        recent_action_keys=frozenset(AutomationLifecycle(db).recent_action_keys()),
    )
