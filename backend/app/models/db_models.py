"""
Jira Planner - SQLAlchemy ORM Models
Automation engine tables plus the synced Jira/Bitbucket state the checks read
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, ForeignKey, Enum as SQLEnum, Boolean, Index
from sqlalchemy.orm import relationship
from ..database import Base


def _value_enum(enum_cls):
    """Store enum values ('pending'), not member names ('PENDING')."""
    return SQLEnum(enum_cls, values_callable=lambda e: [m.value for m in e], native_enum=False)


# =============================================================================
# ENUMS FOR THE AUTOMATION ENGINE
# =============================================================================

class RunStatus(str, Enum):
    """Lifecycle of an automation run."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ActionStatus(str, Enum):
    """Lifecycle of a proposed action. APPROVED and REJECTED are terminal."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ActionType(str, Enum):
    """Kinds of intervention a check can propose."""
    STALE_TICKET = "stale_ticket"
    PM_ALERT = "pm_alert"
    SPRINT_GAP_WARNING = "sprint_gap_warning"
    ACCOUNTABILITY_FLAG = "accountability_flag"
    PM_SUGGESTION = "pm_suggestion"
    ASSIGN_TICKET = "assign_ticket"
    SLACK_INSIGHT = "slack_insight"


class TicketStatus(str, Enum):
    """Local ticket status, mapped from Jira status categories by the sync."""
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    DONE = "done"


class PullRequestState(str, Enum):
    OPEN = "OPEN"
    MERGED = "MERGED"
    DECLINED = "DECLINED"


class PipelineState(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESSFUL = "SUCCESSFUL"
    FAILED = "FAILED"


SYSTEM_RESOLVER = "system"
CONFIG_ROW_ID = "singleton"


# =============================================================================
# IDENTITY
# =============================================================================

class UserDB(Base):
    """Dashboard login. The username is recorded as resolved_by on human decisions."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="user")  # user | admin
    created_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# SYNCED STATE (written by the Jira/Bitbucket sync, read by checks)
# =============================================================================

class TeamMemberDB(Base):
    """Engineer on the team."""
    __tablename__ = "team_members"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    jira_account_id = Column(String(128), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    tickets = relationship("TicketDB", back_populates="assignee")


class TicketDB(Base):
    """Local copy of a Jira issue."""
    __tablename__ = "tickets"

    id = Column(String(36), primary_key=True)
    jira_key = Column(String(32), nullable=True, unique=True, index=True)
    title = Column(String(500), nullable=False)
    status = Column(_value_enum(TicketStatus), nullable=False, default=TicketStatus.TODO)
    priority = Column(String(20), nullable=True)  # Highest, High, Medium, Low, Lowest
    assignee_id = Column(String(36), ForeignKey("team_members.id", ondelete="SET NULL"), nullable=True, index=True)
    status_changed_at = Column(DateTime, nullable=True)  # Last Jira status transition
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    assignee = relationship("TeamMemberDB", back_populates="tickets")


class CommitDB(Base):
    """Bitbucket commit, linked to a ticket through the Jira key in its message."""
    __tablename__ = "bitbucket_commits"

    id = Column(String(64), primary_key=True)  # Commit hash
    repo_slug = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)
    jira_key = Column(String(32), nullable=True, index=True)
    team_member_id = Column(String(36), ForeignKey("team_members.id", ondelete="SET NULL"), nullable=True)
    committed_at = Column(DateTime, nullable=False)


class PullRequestDB(Base):
    """Bitbucket pull request."""
    __tablename__ = "bitbucket_pull_requests"

    id = Column(String(36), primary_key=True)
    repo_slug = Column(String(255), nullable=False)
    pr_number = Column(Integer, nullable=False)
    title = Column(String(500), nullable=False)
    jira_key = Column(String(32), nullable=True, index=True)
    team_member_id = Column(String(36), ForeignKey("team_members.id", ondelete="SET NULL"), nullable=True)
    state = Column(_value_enum(PullRequestState), nullable=False, default=PullRequestState.OPEN)
    approvals = Column(Integer, default=0)  # Reviewers who approved
    created_at = Column(DateTime, nullable=False)
    merged_at = Column(DateTime, nullable=True)


class PipelineDB(Base):
    """Bitbucket pipeline build."""
    __tablename__ = "bitbucket_pipelines"

    id = Column(String(36), primary_key=True)
    repo_slug = Column(String(255), nullable=False)
    build_number = Column(Integer, nullable=False)
    branch = Column(String(255), nullable=False)
    state = Column(_value_enum(PipelineState), nullable=False)
    completed_at = Column(DateTime, nullable=True)


class SprintDB(Base):
    """Jira sprint."""
    __tablename__ = "sprints"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    state = Column(String(20), nullable=False)  # active | future | closed
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)


# =============================================================================
# AUTOMATION ENGINE
# =============================================================================

class AutomationConfigDB(Base):
    """
    Engine configuration. Exactly one row, keyed by CONFIG_ROW_ID.
    Mutated only through AutomationLifecycle.update_config, never deleted.
    """
    __tablename__ = "automation_config"

    id = Column(String(36), primary_key=True, default=CONFIG_ROW_ID)
    enabled = Column(Boolean, nullable=False, default=False)
    check_interval_minutes = Column(Integer, nullable=False, default=15)
    auto_approve_threshold = Column(Integer, nullable=False, default=100)  # 0-100
    notify_on_new_actions = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AutomationRunDB(Base):
    """
    One execution of the check registry.
    Append-only history: written at start and once more at completion.
    """
    __tablename__ = "automation_runs"

    id = Column(String(36), primary_key=True)  # UUID
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    checks_run = Column(JSON, nullable=False, default=list)  # Ordered check names actually executed
    actions_proposed = Column(Integer, nullable=False, default=0)
    actions_auto_approved = Column(Integer, nullable=False, default=0)
    status = Column(_value_enum(RunStatus), nullable=False, default=RunStatus.RUNNING, index=True)
    error = Column(Text, nullable=True)

    actions = relationship("AutomationActionDB", back_populates="run", order_by="AutomationActionDB.created_at")


class AutomationActionDB(Base):
    """
    A single proposed intervention.
    resolved_at / resolved_by are both NULL exactly while status is PENDING.
    """
    __tablename__ = "automation_actions"

    id = Column(String(36), primary_key=True)  # UUID
    run_id = Column(String(36), ForeignKey("automation_runs.id"), nullable=False, index=True)
    type = Column(_value_enum(ActionType), nullable=False, index=True)
    check_module = Column(String(64), nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False)
    confidence = Column(Integer, nullable=False)  # 0-100
    status = Column(_value_enum(ActionStatus), nullable=False, default=ActionStatus.PENDING, index=True)
    action_metadata = Column("metadata", JSON, nullable=False, default=dict)  # Per-type payload
    dedupe_key = Column(String(255), nullable=True, index=True)  # Condition identity, used to avoid re-flagging
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(String(100), nullable=True)  # "system" or a username

    run = relationship("AutomationRunDB", back_populates="actions")


class SprintHealthSnapshotDB(Base):
    """
    Health of the active sprint as measured by one automation run.
    One row per run that executed the sprint health check; the history of
    rows for a sprint shows its trajectory.
    """
    __tablename__ = "sprint_health_snapshots"

    id = Column(String(36), primary_key=True)  # UUID
    run_id = Column(String(36), ForeignKey("automation_runs.id"), nullable=False, index=True)
    sprint_id = Column(String(36), nullable=False, index=True)
    sprint_name = Column(String(255), nullable=False)
    snapshot_date = Column(String(10), nullable=False)  # YYYY-MM-DD
    total_tickets = Column(Integer, nullable=False, default=0)
    completed_tickets = Column(Integer, nullable=False, default=0)
    in_progress_tickets = Column(Integer, nullable=False, default=0)
    todo_tickets = Column(Integer, nullable=False, default=0)
    per_engineer_data = Column(JSON, nullable=False, default=list)  # [{member_id, name, assigned, completed, in_progress}]
    health_score = Column(Integer, nullable=False)  # 0-100
    days_remaining = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


Index("ix_automation_runs_started_at", AutomationRunDB.started_at)
