"""
Tests for the built-in check modules.

Each check is exercised against a hand-built CheckState, no database:
1. StaleTicketCheck - Jira status vs Bitbucket activity
2. AccountabilityCheck - in-progress work without commits, sprint risk
3. SprintHealthCheck - gap warnings and assignment suggestions
4. PMCheck - idle / inactive engineers and load rebalancing
"""
from datetime import datetime, timedelta

import pytest

from app.models.automation import (
    CheckState, CommitSnapshot, PipelineSnapshot, PullRequestSnapshot,
    SprintSnapshot, TeamMemberSnapshot, TicketSnapshot,
)
from app.models.db_models import ActionType, PipelineState, PullRequestState, TicketStatus
from app.services.automation.checks import (
    AccountabilityCheck, PMCheck, SprintHealthCheck, StaleTicketCheck,
)
from app.services.automation.checks.sprint_health import days_until, health_score
from app.services.automation.checks.stale_ticket import stale_confidence


NOW = datetime(2026, 3, 10, 12, 0, 0)


def days_ago(n: float) -> datetime:
    return NOW - timedelta(days=n)


def ticket(id, status=TicketStatus.TODO, jira_key=None, assignee_id=None, changed=None, priority=None):
    return TicketSnapshot(
        id=id,
        jira_key=jira_key,
        title=f"Ticket {id}",
        status=status,
        priority=priority,
        assignee_id=assignee_id,
        status_changed_at=changed,
    )


def commit(id, jira_key=None, member=None, when=None):
    return CommitSnapshot(
        id=id,
        repo_slug="web-app",
        committed_at=when or days_ago(1),
        jira_key=jira_key,
        team_member_id=member,
    )


def by_type(actions, action_type):
    return [a for a in actions if a.type == action_type]


# =============================================================================
# TEST: STALE TICKET CHECK
# =============================================================================

class TestStaleTicketCheck:
    """Tests for StaleTicketCheck."""

    @pytest.mark.parametrize("days,expected", [(5, 60), (6, 65), (8, 75), (12, 95), (30, 95)])
    def test_stale_confidence(self, days, expected):
        assert stale_confidence(days) == expected

    def test_merged_pr_with_open_ticket(self):
        state = CheckState(
            now=NOW,
            tickets=[ticket("t1", TicketStatus.IN_REVIEW, jira_key="PROJ-1")],
            pull_requests=[PullRequestSnapshot(
                id="pr1", repo_slug="web-app", pr_number=42, title="PROJ-1 login",
                state=PullRequestState.MERGED, created_at=days_ago(2),
                jira_key="PROJ-1", merged_at=days_ago(1),
            )],
        )

        actions = StaleTicketCheck().run(state)

        assert len(actions) == 1
        action = actions[0]
        assert action.type == ActionType.STALE_TICKET
        assert action.confidence == 85
        assert action.dedupe_key == "stale_ticket:PROJ-1:pr_merged_ticket_open"
        assert action.metadata.severity == "high"
        assert action.metadata.evidence["pr_number"] == 42

    def test_merged_pr_with_done_ticket_ignored(self):
        state = CheckState(
            now=NOW,
            tickets=[ticket("t1", TicketStatus.DONE, jira_key="PROJ-1")],
            pull_requests=[PullRequestSnapshot(
                id="pr1", repo_slug="web-app", pr_number=42, title="PROJ-1 login",
                state=PullRequestState.MERGED, created_at=days_ago(2), jira_key="PROJ-1",
                approvals=1, merged_at=days_ago(1),
            )],
        )

        assert StaleTicketCheck().run(state) == []

    def test_commits_without_progress(self):
        state = CheckState(
            now=NOW,
            tickets=[ticket("t1", TicketStatus.TODO, jira_key="PROJ-2")],
            commits=[commit("c1", "PROJ-2"), commit("c2", "PROJ-2"), commit("c3", "PROJ-2", when=days_ago(10))],
        )

        actions = StaleTicketCheck().run(state)

        assert len(actions) == 1
        assert actions[0].confidence == 70
        assert actions[0].metadata.detection_type == "commits_no_progress"
        assert actions[0].metadata.evidence["commit_count"] == 2

    def test_stale_in_status_scales_with_age(self):
        state = CheckState(
            now=NOW,
            tickets=[ticket("t1", TicketStatus.IN_PROGRESS, jira_key="PROJ-3", changed=days_ago(8))],
        )

        actions = StaleTicketCheck().run(state)

        assert len(actions) == 1
        assert actions[0].metadata.detection_type == "ticket_stale_in_status"
        assert actions[0].confidence == 75

    def test_recent_commit_keeps_ticket_fresh(self):
        state = CheckState(
            now=NOW,
            tickets=[ticket("t1", TicketStatus.IN_PROGRESS, jira_key="PROJ-3", changed=days_ago(8))],
            commits=[commit("c1", "PROJ-3", when=days_ago(2))],
        )

        assert StaleTicketCheck().run(state) == []

    def test_open_pr_without_review(self):
        state = CheckState(
            now=NOW,
            pull_requests=[
                PullRequestSnapshot(
                    id="pr1", repo_slug="api", pr_number=7, title="Rate limits",
                    state=PullRequestState.OPEN, created_at=days_ago(3), jira_key="PROJ-4",
                ),
                PullRequestSnapshot(
                    id="pr2", repo_slug="api", pr_number=8, title="Too new",
                    state=PullRequestState.OPEN, created_at=days_ago(1),
                ),
                PullRequestSnapshot(
                    id="pr3", repo_slug="api", pr_number=9, title="Reviewed",
                    state=PullRequestState.OPEN, created_at=days_ago(3), approvals=2,
                ),
            ],
        )

        actions = StaleTicketCheck().run(state)

        assert [a.dedupe_key for a in actions] == ["stale_ticket:PROJ-4:pr_open_no_review"]
        assert actions[0].confidence == 60

    def test_failing_pipeline_on_ticket_branch(self):
        state = CheckState(
            now=NOW,
            pipelines=[
                PipelineSnapshot(
                    id="p1", repo_slug="web-app", build_number=311, branch="feature/PROJ-7-login",
                    state=PipelineState.FAILED, completed_at=days_ago(1),
                ),
                PipelineSnapshot(
                    id="p2", repo_slug="web-app", build_number=312, branch="main",
                    state=PipelineState.FAILED, completed_at=days_ago(1),
                ),
            ],
        )

        actions = StaleTicketCheck().run(state)

        assert len(actions) == 1
        assert actions[0].metadata.jira_key == "PROJ-7"
        assert actions[0].confidence == 75

    def test_same_condition_reported_once(self):
        build = dict(repo_slug="web-app", branch="bugfix/PROJ-9", state=PipelineState.FAILED,
                     completed_at=days_ago(1))
        state = CheckState(
            now=NOW,
            pipelines=[PipelineSnapshot(id="p1", build_number=1, **build),
                       PipelineSnapshot(id="p2", build_number=2, **build)],
        )

        assert len(StaleTicketCheck().run(state)) == 1

    def test_already_flagged_condition_skipped(self):
        state = CheckState(
            now=NOW,
            tickets=[ticket("t1", TicketStatus.IN_PROGRESS, jira_key="PROJ-3", changed=days_ago(8))],
            recent_action_keys=frozenset({"stale_ticket:PROJ-3:ticket_stale_in_status"}),
        )

        assert StaleTicketCheck().run(state) == []


# =============================================================================
# TEST: ACCOUNTABILITY CHECK
# =============================================================================

class TestAccountabilityCheck:
    """Tests for AccountabilityCheck."""

    def test_in_progress_without_commits(self):
        state = CheckState(
            now=NOW,
            team_members=[TeamMemberSnapshot(id="m1", name="Ana")],
            tickets=[ticket("t1", TicketStatus.IN_PROGRESS, jira_key="PROJ-1", assignee_id="m1", changed=days_ago(4))],
        )

        actions = AccountabilityCheck().run(state)

        assert len(actions) == 1
        assert actions[0].confidence == 70
        assert actions[0].metadata.flag_type == "no_commits"
        assert actions[0].dedupe_key == "accountability_flag:m1:no_commits:PROJ-1"

    def test_recently_started_ticket_not_flagged(self):
        state = CheckState(
            now=NOW,
            tickets=[ticket("t1", TicketStatus.IN_PROGRESS, jira_key="PROJ-1", assignee_id="m1", changed=days_ago(1))],
        )

        assert AccountabilityCheck().run(state) == []

    def test_sprint_risk(self):
        tickets = [
            ticket(f"ip{i}", TicketStatus.IN_PROGRESS, assignee_id="m1", changed=days_ago(1))
            for i in range(4)
        ] + [ticket(f"todo{i}", TicketStatus.TODO, assignee_id="m1") for i in range(2)]
        state = CheckState(now=NOW, team_members=[TeamMemberSnapshot(id="m1", name="Ana")], tickets=tickets)

        actions = AccountabilityCheck().run(state)

        assert len(actions) == 1
        assert actions[0].metadata.flag_type == "sprint_risk"
        assert actions[0].confidence == 60
        assert actions[0].metadata.evidence == {"in_progress": 4, "open_assigned": 6}


# =============================================================================
# TEST: SPRINT HEALTH CHECK
# =============================================================================

class TestSprintHealthCheck:
    """Tests for SprintHealthCheck."""

    @pytest.fixture
    def sprint(self):
        return SprintSnapshot(id="s1", name="Sprint 14", start_date=days_ago(5), end_date=NOW + timedelta(days=4))

    def test_no_active_sprint(self):
        state = CheckState(now=NOW, team_members=[TeamMemberSnapshot(id="m1", name="Ana")])

        assert SprintHealthCheck().run(state) == []

    def test_health_score(self):
        assert health_score(0, 0, 0, 0, 3) == 50
        assert health_score(10, 5, 2, 0, 4) == 63
        assert health_score(10, 10, 0, 0, 4) == 100
        assert health_score(10, 0, 0, 3, 4) == 0

    def test_days_until(self):
        state = CheckState(now=NOW)

        assert days_until(state, None) is None
        assert days_until(state, NOW + timedelta(days=3, hours=1)) == 4
        assert days_until(state, NOW - timedelta(days=2)) == 0

    def test_gap_warnings_and_assignments(self, sprint):
        state = CheckState(
            now=NOW,
            active_sprint=sprint,
            team_members=[
                TeamMemberSnapshot(id="m-empty", name="Ana"),
                TeamMemberSnapshot(id="m-light", name="Ben"),
                TeamMemberSnapshot(id="m-busy", name="Cy"),
            ],
            tickets=[
                ticket("t1", TicketStatus.TODO, assignee_id="m-light"),
                ticket("t2", TicketStatus.IN_PROGRESS, assignee_id="m-busy"),
                ticket("t3", TicketStatus.TODO, assignee_id="m-busy"),
                ticket("t4", TicketStatus.TODO, assignee_id="m-busy"),
                ticket("u-low", TicketStatus.BACKLOG, jira_key="PROJ-20", priority="Low"),
                ticket("u-high", TicketStatus.TODO, jira_key="PROJ-21", priority="High"),
            ],
        )

        actions = SprintHealthCheck().run(state)

        gaps = by_type(actions, ActionType.SPRINT_GAP_WARNING)
        assert [(a.metadata.team_member_id, a.confidence) for a in gaps] == [("m-empty", 85), ("m-light", 65)]
        assert gaps[0].metadata.days_remaining == 4
        assert gaps[0].dedupe_key == "sprint_gap_warning:s1:m-empty"

        assigns = by_type(actions, ActionType.ASSIGN_TICKET)
        assert [(a.metadata.team_member_id, a.metadata.ticket_id) for a in assigns] == [
            ("m-empty", "u-high"),
            ("m-light", "u-low"),
        ]
        assert all(a.confidence == 55 for a in assigns)

    def test_already_suggested_ticket_not_offered_again(self, sprint):
        state = CheckState(
            now=NOW,
            active_sprint=sprint,
            team_members=[TeamMemberSnapshot(id="m1", name="Ana")],
            tickets=[ticket("u1", TicketStatus.TODO, priority="Highest"), ticket("u2", TicketStatus.TODO)],
            recent_action_keys=frozenset({"assign_ticket:u1"}),
        )

        assigns = by_type(SprintHealthCheck().run(state), ActionType.ASSIGN_TICKET)

        assert [a.metadata.ticket_id for a in assigns] == ["u2"]


# =============================================================================
# TEST: PM CHECK
# =============================================================================

class TestPMCheck:
    """Tests for PMCheck."""

    def test_member_without_tickets(self):
        state = CheckState(now=NOW, team_members=[TeamMemberSnapshot(id="m1", name="Ana")])

        actions = PMCheck().run(state)

        assert len(actions) == 1
        assert actions[0].type == ActionType.PM_ALERT
        assert actions[0].metadata.alert_type == "no_assignment"
        assert actions[0].confidence == 70

    @pytest.mark.parametrize("last_commit_days,severity,confidence", [
        (3, "warning", 70),
        (6, "critical", 90),
        (None, "critical", 90),
    ])
    def test_inactivity_severity(self, last_commit_days, severity, confidence):
        commits = [] if last_commit_days is None else [commit("c1", member="m1", when=days_ago(last_commit_days))]
        state = CheckState(
            now=NOW,
            team_members=[TeamMemberSnapshot(id="m1", name="Ana")],
            tickets=[ticket("t1", TicketStatus.TODO, assignee_id="m1")],
            commits=commits,
        )

        actions = PMCheck().run(state)

        assert len(actions) == 1
        assert actions[0].metadata.alert_type == "no_activity"
        assert actions[0].metadata.severity == severity
        assert actions[0].confidence == confidence

    def test_warning_does_not_block_critical_escalation(self):
        state = CheckState(
            now=NOW,
            team_members=[TeamMemberSnapshot(id="m1", name="Ana")],
            tickets=[ticket("t1", TicketStatus.TODO, assignee_id="m1")],
            commits=[commit("c1", member="m1", when=days_ago(6))],
            recent_action_keys=frozenset({"pm_alert:m1:no_activity:warning"}),
        )

        actions = PMCheck().run(state)

        assert len(actions) == 1
        assert actions[0].metadata.severity == "critical"
        assert actions[0].dedupe_key == "pm_alert:m1:no_activity:critical"

    def test_same_severity_not_reflagged(self):
        state = CheckState(
            now=NOW,
            team_members=[TeamMemberSnapshot(id="m1", name="Ana")],
            recent_action_keys=frozenset({"pm_alert:m1:no_assignment:warning"}),
        )

        assert PMCheck().run(state) == []

    def test_recent_activity_no_alert(self):
        state = CheckState(
            now=NOW,
            team_members=[TeamMemberSnapshot(id="m1", name="Ana")],
            tickets=[ticket("t1", TicketStatus.IN_PROGRESS, assignee_id="m1", changed=days_ago(0.5))],
        )

        assert PMCheck().run(state) == []

    def test_rebalance_from_overloaded_to_idle(self):
        tickets = [
            ticket(f"t{i}", TicketStatus.TODO, jira_key=f"PROJ-{i}", assignee_id="m-busy",
                   priority="Highest" if i == 3 else "Medium")
            for i in range(5)
        ]
        state = CheckState(
            now=NOW,
            team_members=[
                TeamMemberSnapshot(id="m-idle", name="Ida"),
                TeamMemberSnapshot(id="m-busy", name="Ben"),
            ],
            tickets=tickets,
            commits=[commit("c1", member="m-busy", when=days_ago(0.2))],
        )

        suggestions = by_type(PMCheck().run(state), ActionType.PM_SUGGESTION)

        assert len(suggestions) == 1
        meta = suggestions[0].metadata
        assert (meta.from_member_id, meta.to_member_id, meta.ticket_id) == ("m-busy", "m-idle", "t3")
        assert suggestions[0].confidence == 50
        assert suggestions[0].dedupe_key == "pm_suggestion:t3"
