"""
Migration: Add automation engine tables.

Creates 4 tables for the PM automation engine:
1. automation_config       - singleton engine settings
2. automation_runs         - append-only run history
3. automation_actions      - proposed interventions and their resolution
4. sprint_health_snapshots - sprint health measured by each run

Fresh databases get these from init_db(); this is for databases created
before the engine existed. Safe to run more than once.
"""
from sqlalchemy import create_engine, inspect, text
import os

# Use same DB URL pattern as main app
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./jira_planner.db")


def table_exists(engine, table_name: str) -> bool:
    """Check if a table exists in the database."""
    return inspect(engine).has_table(table_name)


def run_migration():
    """Create all automation engine tables."""
    engine = create_engine(DATABASE_URL)

    with engine.begin() as conn:
        # =================================================================
        # TABLE 1: automation_config
        # =================================================================
        if table_exists(engine, "automation_config"):
            print("automation_config table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE automation_config (
                    id VARCHAR(36) PRIMARY KEY,
                    enabled BOOLEAN NOT NULL DEFAULT FALSE,
                    check_interval_minutes INTEGER NOT NULL DEFAULT 15,
                    auto_approve_threshold INTEGER NOT NULL DEFAULT 100,
                    notify_on_new_actions BOOLEAN NOT NULL DEFAULT TRUE,
                    updated_at TIMESTAMP
                )
            """))
            print("Created automation_config table")

        # =================================================================
        # TABLE 2: automation_runs
        # =================================================================
        if table_exists(engine, "automation_runs"):
            print("automation_runs table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE automation_runs (
                    id VARCHAR(36) PRIMARY KEY,
                    started_at TIMESTAMP NOT NULL,
                    completed_at TIMESTAMP,
                    checks_run JSON NOT NULL,
                    actions_proposed INTEGER NOT NULL DEFAULT 0,
                    actions_auto_approved INTEGER NOT NULL DEFAULT 0,
                    status VARCHAR(20) NOT NULL,
                    error TEXT
                )
            """))
            conn.execute(text("""
                CREATE INDEX ix_automation_runs_started_at ON automation_runs(started_at)
            """))
            conn.execute(text("""
                CREATE INDEX ix_automation_runs_status ON automation_runs(status)
            """))
            print("Created automation_runs table")

        # =================================================================
        # TABLE 3: automation_actions
        # =================================================================
        if table_exists(engine, "automation_actions"):
            print("automation_actions table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE automation_actions (
                    id VARCHAR(36) PRIMARY KEY,
                    run_id VARCHAR(36) NOT NULL REFERENCES automation_runs(id),
                    type VARCHAR(32) NOT NULL,
                    check_module VARCHAR(64) NOT NULL,
                    title VARCHAR(500) NOT NULL,
                    description TEXT NOT NULL,
                    confidence INTEGER NOT NULL,
                    status VARCHAR(20) NOT NULL,
                    metadata JSON NOT NULL,
                    dedupe_key VARCHAR(255),
                    created_at TIMESTAMP NOT NULL,
                    resolved_at TIMESTAMP,
                    resolved_by VARCHAR(100)
                )
            """))
            conn.execute(text("""
                CREATE INDEX ix_automation_actions_run_id ON automation_actions(run_id)
            """))
            conn.execute(text("""
                CREATE INDEX ix_automation_actions_status ON automation_actions(status)
            """))
            conn.execute(text("""
                CREATE INDEX ix_automation_actions_type ON automation_actions(type)
            """))
            conn.execute(text("""
                CREATE INDEX ix_automation_actions_dedupe_key ON automation_actions(dedupe_key)
            """))
            print("Created automation_actions table")

        # =================================================================
        # TABLE 4: sprint_health_snapshots
        # =================================================================
        if table_exists(engine, "sprint_health_snapshots"):
            print("sprint_health_snapshots table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE sprint_health_snapshots (
                    id VARCHAR(36) PRIMARY KEY,
                    run_id VARCHAR(36) NOT NULL REFERENCES automation_runs(id),
                    sprint_id VARCHAR(36) NOT NULL,
                    sprint_name VARCHAR(255) NOT NULL,
                    snapshot_date VARCHAR(10) NOT NULL,
                    total_tickets INTEGER NOT NULL DEFAULT 0,
                    completed_tickets INTEGER NOT NULL DEFAULT 0,
                    in_progress_tickets INTEGER NOT NULL DEFAULT 0,
                    todo_tickets INTEGER NOT NULL DEFAULT 0,
                    per_engineer_data JSON NOT NULL,
                    health_score INTEGER NOT NULL,
                    days_remaining INTEGER,
                    created_at TIMESTAMP NOT NULL
                )
            """))
            conn.execute(text("""
                CREATE INDEX ix_sprint_health_snapshots_run_id ON sprint_health_snapshots(run_id)
            """))
            conn.execute(text("""
                CREATE INDEX ix_sprint_health_snapshots_sprint_id ON sprint_health_snapshots(sprint_id)
            """))
            print("Created sprint_health_snapshots table")

    print("Automation engine migration complete")


if __name__ == "__main__":
    run_migration()
