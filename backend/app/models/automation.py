"""
Jira Planner - Automation Domain Models

In-memory structures passed between the check registry and the action lifecycle.

- CheckState: read-only snapshot of synced state, built once per run
- ProposedAction: what a check returns; persisted by the lifecycle
- *Metadata: one payload shape per ActionType (tagged by the action type)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Type

from pydantic import BaseModel

from .db_models import ActionType, TicketStatus, PullRequestState, PipelineState


# =============================================================================
# ACTION METADATA (one model per action type)
# =============================================================================

class StaleTicketMetadata(BaseModel):
    jira_key: str
    detection_type: str  # pr_merged_ticket_open, commits_no_progress, ...
    severity: str
    evidence: Dict[str, Any] = {}


class AccountabilityMetadata(BaseModel):
    team_member_id: str
    flag_type: str  # no_commits | sprint_risk
    jira_key: Optional[str] = None
    evidence: Dict[str, Any] = {}


class SprintGapMetadata(BaseModel):
    team_member_id: str
    member_name: str
    remaining: int
    in_progress: int
    days_remaining: Optional[int] = None
    health_score: int


class AssignTicketMetadata(BaseModel):
    team_member_id: str
    member_name: str
    ticket_id: str
    jira_key: Optional[str] = None
    ticket_title: str


class PMAlertMetadata(BaseModel):
    team_member_id: str
    member_name: str
    alert_type: str  # no_assignment | no_activity
    severity: str  # warning | critical


class PMSuggestionMetadata(BaseModel):
    from_member_id: str
    to_member_id: str
    ticket_id: str
    jira_key: Optional[str] = None
    ticket_title: str


class SlackInsightMetadata(BaseModel):
    channel: str
    summary: str
    jira_key: Optional[str] = None


METADATA_MODELS: Dict[ActionType, Type[BaseModel]] = {
    ActionType.STALE_TICKET: StaleTicketMetadata,
    ActionType.ACCOUNTABILITY_FLAG: AccountabilityMetadata,
    ActionType.SPRINT_GAP_WARNING: SprintGapMetadata,
    ActionType.ASSIGN_TICKET: AssignTicketMetadata,
    ActionType.PM_ALERT: PMAlertMetadata,
    ActionType.PM_SUGGESTION: PMSuggestionMetadata,
    ActionType.SLACK_INSIGHT: SlackInsightMetadata,
}


# =============================================================================
# PROPOSED ACTION
# =============================================================================

@dataclass(frozen=True)
class ProposedAction:
    """
    A check's proposal. Validated on construction, so a check that builds an
    out-of-range confidence or a mismatched payload fails at the point of error.
    """
    type: ActionType
    title: str
    description: str
    confidence: int  # 0-100
    metadata: BaseModel
    dedupe_key: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.confidence, bool) or not isinstance(self.confidence, int):
            raise ValueError(f"confidence must be an int, got {self.confidence!r}")
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"confidence must be within 0-100, got {self.confidence}")
        expected = METADATA_MODELS[self.type]
        if not isinstance(self.metadata, expected):
            raise ValueError(
                f"{self.type.value} actions carry {expected.__name__}, "
                f"got {type(self.metadata).__name__}"
            )

    def metadata_dict(self) -> Dict[str, Any]:
        return self.metadata.model_dump(mode="json")


# =============================================================================
# CHECK STATE SNAPSHOT
# =============================================================================

@dataclass(frozen=True)
class TeamMemberSnapshot:
    id: str
    name: str


@dataclass(frozen=True)
class TicketSnapshot:
    id: str
    jira_key: Optional[str]
    title: str
    status: TicketStatus
    priority: Optional[str] = None
    assignee_id: Optional[str] = None
    status_changed_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status != TicketStatus.DONE


@dataclass(frozen=True)
class CommitSnapshot:
    id: str
    repo_slug: str
    committed_at: datetime
    jira_key: Optional[str] = None
    team_member_id: Optional[str] = None


@dataclass(frozen=True)
class PullRequestSnapshot:
    id: str
    repo_slug: str
    pr_number: int
    title: str
    state: PullRequestState
    created_at: datetime
    jira_key: Optional[str] = None
    team_member_id: Optional[str] = None
    approvals: int = 0
    merged_at: Optional[datetime] = None


@dataclass(frozen=True)
class PipelineSnapshot:
    id: str
    repo_slug: str
    build_number: int
    branch: str
    state: PipelineState
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class SprintSnapshot:
    id: str
    name: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


@dataclass(frozen=True)
class CheckState:
    """Everything a check may look at. Checks never query storage directly."""
    now: datetime
    tickets: List[TicketSnapshot] = field(default_factory=list)
    team_members: List[TeamMemberSnapshot] = field(default_factory=list)
    commits: List[CommitSnapshot] = field(default_factory=list)
    pull_requests: List[PullRequestSnapshot] = field(default_factory=list)
    pipelines: List[PipelineSnapshot] = field(default_factory=list)
    active_sprint: Optional[SprintSnapshot] = None
    recent_action_keys: FrozenSet[str] = frozenset()

    def ticket_by_key(self, jira_key: str) -> Optional[TicketSnapshot]:
        for ticket in self.tickets:
            if ticket.jira_key == jira_key:
                return ticket
        return None

    def tickets_for(self, member_id: str) -> List[TicketSnapshot]:
        return [t for t in self.tickets if t.assignee_id == member_id]

    def commits_since(self, since: datetime) -> List[CommitSnapshot]:
        return [c for c in self.commits if c.committed_at >= since]

    def already_flagged(self, dedupe_key: str) -> bool:
        """True when a recent action already covers this condition."""
        return dedupe_key in self.recent_action_keys
