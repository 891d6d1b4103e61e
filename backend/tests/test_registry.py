"""
Tests for the Check Registry & Runner.

1. Registration rules (unique, non-empty names; order preserved)
2. Sequential execution in registration order
3. Fail-fast: the failing check is recorded, later checks never run
4. ProposedAction validation at construction
"""
from datetime import datetime

import pytest

from app.models.automation import (
    CheckState, ProposedAction, PMAlertMetadata, StaleTicketMetadata,
)
from app.models.db_models import ActionType
from app.services.automation.errors import CheckExecutionError
from app.services.automation.registry import (
    CheckModule, CheckRegistry, CheckRunner, FunctionCheck, drop_duplicate_conditions,
)


NOW = datetime(2026, 3, 10, 12, 0, 0)


@pytest.fixture
def state():
    return CheckState(now=NOW)


# =============================================================================
# TEST: REGISTRATION
# =============================================================================

class TestCheckRegistry:
    """Tests for CheckRegistry."""

    def test_names_keep_registration_order(self):
        registry = CheckRegistry()
        for name in ("c", "a", "b"):
            registry.register(FunctionCheck(name, lambda s: []))

        assert registry.names() == ["c", "a", "b"]
        assert len(registry) == 3

    def test_duplicate_name_rejected(self):
        registry = CheckRegistry()
        registry.register(FunctionCheck("stale_ticket_check", lambda s: []))

        with pytest.raises(ValueError):
            registry.register(FunctionCheck("stale_ticket_check", lambda s: []))
        assert len(registry) == 1

    def test_unnamed_check_rejected(self):
        class Unnamed(CheckModule):
            def run(self, state):
                return []

        with pytest.raises(ValueError):
            CheckRegistry().register(Unnamed())

    def test_disabled_checks_excluded_from_enabled(self):
        registry = CheckRegistry()
        registry.register(FunctionCheck("on", lambda s: []))
        registry.register(FunctionCheck("off", lambda s: [], enabled=False))

        assert [c.name for c in registry.enabled_checks()] == ["on"]
        assert registry.names() == ["on", "off"]


# =============================================================================
# TEST: RUNNER
# =============================================================================

class TestCheckRunner:
    """Tests for CheckRunner.execute."""

    def test_all_checks_run_in_order(self, state, make_proposed):
        calls = []

        def check(name, count):
            def _run(s):
                calls.append(name)
                return [make_proposed() for _ in range(count)]
            return FunctionCheck(name, _run)

        registry = CheckRegistry()
        registry.register(check("first", 2))
        registry.register(check("second", 0))
        registry.register(check("third", 1))

        result = CheckRunner(registry).execute(state)

        assert calls == ["first", "second", "third"]
        assert result.checks_run == ["first", "second", "third"]
        assert not result.failed
        assert [name for name, _ in result.actions] == ["first", "first", "third"]

    def test_failing_check_stops_the_run(self, state, make_proposed):
        """Second of three checks raises: first's actions kept, third never invoked."""
        third_calls = {"count": 0}

        def boom(s):
            raise RuntimeError("jira sync table missing")

        def third(s):
            third_calls["count"] += 1
            return [make_proposed()]

        registry = CheckRegistry()
        registry.register(FunctionCheck("check_1", lambda s: [make_proposed(), make_proposed()]))
        registry.register(FunctionCheck("check_2", boom))
        registry.register(FunctionCheck("check_3", third))

        result = CheckRunner(registry).execute(state)

        assert result.failed
        assert result.checks_run == ["check_1", "check_2"]
        assert third_calls["count"] == 0
        assert len(result.actions) == 2
        assert all(name == "check_1" for name, _ in result.actions)
        assert isinstance(result.error, CheckExecutionError)
        assert result.error.check_name == "check_2"
        assert "jira sync table missing" in str(result.error)

    def test_partial_output_of_failing_check_discarded(self, state, make_proposed):
        def half_then_fail(s):
            yield make_proposed()
            raise ValueError("bad row")

        registry = CheckRegistry()
        registry.register(FunctionCheck("flaky", half_then_fail))

        result = CheckRunner(registry).execute(state)

        assert result.failed
        assert result.actions == []

    def test_non_action_return_value_is_a_failure(self, state):
        registry = CheckRegistry()
        registry.register(FunctionCheck("sloppy", lambda s: [{"title": "not an action"}]))

        result = CheckRunner(registry).execute(state)

        assert result.failed
        assert result.checks_run == ["sloppy"]
        assert "TypeError" in str(result.error)

    def test_disabled_check_not_recorded(self, state):
        registry = CheckRegistry()
        registry.register(FunctionCheck("off", lambda s: [], enabled=False))
        registry.register(FunctionCheck("on", lambda s: []))

        result = CheckRunner(registry).execute(state)

        assert result.checks_run == ["on"]

    def test_on_check_done_called_per_finished_check(self, state, make_proposed):
        def boom(s):
            raise RuntimeError("no sprint")

        registry = CheckRegistry()
        registry.register(FunctionCheck("first", lambda s: [make_proposed()]))
        registry.register(FunctionCheck("second", lambda s: []))
        registry.register(FunctionCheck("third", boom))
        done = []

        CheckRunner(registry).execute(state, on_check_done=lambda name, actions: done.append((name, len(actions))))

        assert done == [("first", 1), ("second", 0)]

    def test_on_check_done_error_propagates(self, state, make_proposed):
        later = {"called": False}

        def mark(s):
            later["called"] = True
            return []

        def fail(name, actions):
            raise KeyError("write failed")

        registry = CheckRegistry()
        registry.register(FunctionCheck("first", lambda s: [make_proposed()]))
        registry.register(FunctionCheck("second", mark))

        with pytest.raises(KeyError):
            CheckRunner(registry).execute(state, on_check_done=fail)

        assert later["called"] is False

    def test_empty_registry(self, state):
        result = CheckRunner(CheckRegistry()).execute(state)

        assert result.checks_run == []
        assert result.actions == []
        assert not result.failed


# =============================================================================
# TEST: PROPOSED ACTION VALIDATION
# =============================================================================

class TestProposedAction:
    """ProposedAction rejects bad confidence values and mismatched metadata."""

    @pytest.mark.parametrize("confidence", [-1, 101, 150])
    def test_confidence_out_of_range(self, make_proposed, confidence):
        with pytest.raises(ValueError):
            make_proposed(confidence=confidence)

    @pytest.mark.parametrize("confidence", [0.9, "80", True])
    def test_confidence_must_be_int(self, make_proposed, confidence):
        with pytest.raises(ValueError):
            make_proposed(confidence=confidence)

    @pytest.mark.parametrize("confidence", [0, 100])
    def test_confidence_bounds_inclusive(self, make_proposed, confidence):
        assert make_proposed(confidence=confidence).confidence == confidence

    def test_metadata_must_match_type(self):
        with pytest.raises(ValueError):
            ProposedAction(
                type=ActionType.STALE_TICKET,
                title="t",
                description="d",
                confidence=50,
                metadata=PMAlertMetadata(
                    team_member_id="m1", member_name="Ana", alert_type="no_activity", severity="warning",
                ),
            )

    def test_metadata_dict_is_json_ready(self):
        action = ProposedAction(
            type=ActionType.STALE_TICKET,
            title="t",
            description="d",
            confidence=85,
            metadata=StaleTicketMetadata(
                jira_key="PROJ-1", detection_type="pr_merged_ticket_open", severity="high",
                evidence={"pr_number": 12},
            ),
        )

        assert action.metadata_dict() == {
            "jira_key": "PROJ-1",
            "detection_type": "pr_merged_ticket_open",
            "severity": "high",
            "evidence": {"pr_number": 12},
        }


class TestDropDuplicateConditions:

    def test_first_action_per_key_wins(self, make_proposed):
        a = make_proposed(confidence=70, dedupe_key="k1")
        b = make_proposed(confidence=90, dedupe_key="k1")
        c = make_proposed(dedupe_key="k2")

        assert drop_duplicate_conditions([a, b, c]) == [a, c]

    def test_keyless_actions_always_kept(self, make_proposed):
        a = make_proposed()
        b = make_proposed()

        assert drop_duplicate_conditions([a, b]) == [a, b]


def test_check_execution_error_message():
    err = CheckExecutionError("pm_check", KeyError("member"))

    assert err.check_name == "pm_check"
    assert str(err) == "Check 'pm_check' failed: KeyError: 'member'"
