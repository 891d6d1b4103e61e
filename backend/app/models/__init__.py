"""Jira Planner - Data Models"""
from .automation import (
    # Per-type action payloads
    StaleTicketMetadata, AccountabilityMetadata, SprintGapMetadata, AssignTicketMetadata,
    PMAlertMetadata, PMSuggestionMetadata, SlackInsightMetadata, METADATA_MODELS,
    # Check inputs/outputs
    ProposedAction, CheckState,
    TeamMemberSnapshot, TicketSnapshot, CommitSnapshot, PullRequestSnapshot,
    PipelineSnapshot, SprintSnapshot,
)

__all__ = [
    "StaleTicketMetadata", "AccountabilityMetadata", "SprintGapMetadata", "AssignTicketMetadata",
    "PMAlertMetadata", "PMSuggestionMetadata", "SlackInsightMetadata", "METADATA_MODELS",
    "ProposedAction", "CheckState",
    "TeamMemberSnapshot", "TicketSnapshot", "CommitSnapshot", "PullRequestSnapshot",
    "PipelineSnapshot", "SprintSnapshot",
]
