"""
Shared fixtures for the automation engine tests.

Every test gets a fresh in-memory SQLite database. StaticPool keeps the one
connection alive so the schema survives across sessions and threads.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models import db_models  # noqa: F401  (registers tables on Base.metadata)
from app.models.automation import PMAlertMetadata, ProposedAction
from app.models.db_models import ActionType


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_proposed():
    """Factory for valid ProposedActions; only confidence usually matters."""
    counter = {"n": 0}

    def _make(confidence: int = 50, dedupe_key: str = None, member_id: str = None) -> ProposedAction:
        counter["n"] += 1
        member = member_id or f"member-{counter['n']}"
        return ProposedAction(
            type=ActionType.PM_ALERT,
            title=f"Alert: no_activity - {member}",
            description=f"{member} has open tickets but no recent activity.",
            confidence=confidence,
            metadata=PMAlertMetadata(
                team_member_id=member,
                member_name=member,
                alert_type="no_activity",
                severity="warning",
            ),
            dedupe_key=dedupe_key,
        )

    return _make
