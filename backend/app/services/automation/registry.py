"""
Check Registry & Runner

Holds the named checks and executes them for one run.

Key behaviors:
- Checks run sequentially in registration order
- Each check name is recorded before the check is invoked
- Fail-fast: the first check that raises stops the run; actions returned by
  the checks that finished before it are still handed back
- The runner never writes to storage, persistence belongs to the lifecycle.
  An on_check_done callback receives each finished check's actions so the
  caller can persist them before the next check starts
"""
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple
import logging

from ...models.automation import CheckState, ProposedAction
from .errors import CheckExecutionError


logger = logging.getLogger(__name__)


# =============================================================================
# CHECK MODULES
# =============================================================================

class CheckModule:
    """
    A named heuristic over the current state.

    Subclasses set `name` and implement `run`. `run` must not touch storage;
    everything it needs is on the CheckState snapshot.
    """

    name: str = ""
    enabled: bool = True

    def run(self, state: CheckState) -> List[ProposedAction]:
        raise NotImplementedError


class FunctionCheck(CheckModule):
    """Adapts a plain function into a CheckModule."""

    def __init__(
        self,
        name: str,
        func: Callable[[CheckState], List[ProposedAction]],
        enabled: bool = True,
    ):
        self.name = name
        self.func = func
        self.enabled = enabled

    def run(self, state: CheckState) -> List[ProposedAction]:
        return list(self.func(state))


def drop_duplicate_conditions(actions: List[ProposedAction]) -> List[ProposedAction]:
    """Keep the first action for each dedupe key; keyless actions are always kept."""
    seen = set()
    unique = []
    for action in actions:
        if action.dedupe_key is not None:
            if action.dedupe_key in seen:
                continue
            seen.add(action.dedupe_key)
        unique.append(action)
    return unique


# =============================================================================
# REGISTRY
# =============================================================================

class CheckRegistry:
    """Ordered set of checks, keyed by unique name."""

    def __init__(self):
        self._checks: List[CheckModule] = []

    def register(self, check: CheckModule) -> CheckModule:
        if not check.name:
            raise ValueError("Check modules must have a name")
        if check.name in self.names():
            raise ValueError(f"Check '{check.name}' is already registered")

        self._checks.append(check)
        logger.info(f"Registered check module: {check.name}")
        return check

    def names(self) -> List[str]:
        return [c.name for c in self._checks]

    def enabled_checks(self) -> List[CheckModule]:
        return [c for c in self._checks if c.enabled]

    def __len__(self) -> int:
        return len(self._checks)


# =============================================================================
# RUNNER
# =============================================================================

@dataclass
class CheckRunResult:
    """What one pass over the registry produced."""
    checks_run: List[str] = field(default_factory=list)
    actions: List[Tuple[str, ProposedAction]] = field(default_factory=list)  # (check name, action)
    error: Optional[CheckExecutionError] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class CheckRunner:
    """Executes the enabled checks of a registry against one state snapshot."""

    def __init__(self, registry: CheckRegistry):
        self.registry = registry

    def execute(
        self,
        state: CheckState,
        on_check_done: Optional[Callable[[str, List[ProposedAction]], None]] = None,
    ) -> CheckRunResult:
        """
        Run every enabled check in order. Errors raised by on_check_done are
        not check failures and propagate to the caller.
        """
        result = CheckRunResult()

        for check in self.registry.enabled_checks():
            result.checks_run.append(check.name)
            try:
                proposed = list(check.run(state))
                for action in proposed:
                    if not isinstance(action, ProposedAction):
                        raise TypeError(f"expected ProposedAction, got {type(action).__name__}")
            except Exception as e:
                result.error = CheckExecutionError(check.name, e)
                logger.error(f"Check {check.name} failed, skipping remaining checks: {e}")
                break

            for action in proposed:
                result.actions.append((check.name, action))
            logger.info(f"Check {check.name} proposed {len(proposed)} actions")

            if on_check_done is not None:
                on_check_done(check.name, proposed)

        return result
