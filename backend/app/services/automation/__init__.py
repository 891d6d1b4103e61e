"""
Automation Engine Services

Check registry, action lifecycle and approval policy for the PM automation engine.

- CheckRegistry / CheckRunner: ordered, fail-fast execution of named checks
- AutomationLifecycle: runs, actions, config; auto-approval at creation
- AutomationEngine: one serialized run end to end
- AutomationScheduler: interval trigger driven by the config
"""

from .errors import (
    AutomationError,
    ConfigValidationError,
    InvalidStateError,
    ActionNotFoundError,
    RunNotFoundError,
    RunInProgressError,
    StorageError,
    CheckExecutionError,
)
from .registry import CheckModule, FunctionCheck, CheckRegistry, CheckRunner, CheckRunResult
from .lifecycle import AutomationLifecycle, ConfigSnapshot, should_auto_approve
from .state import load_check_state
from .engine import AutomationEngine, build_default_engine, get_automation_engine
from .scheduler import AutomationScheduler, get_automation_scheduler

__all__ = [
    # Errors
    'AutomationError',
    'ConfigValidationError',
    'InvalidStateError',
    'ActionNotFoundError',
    'RunNotFoundError',
    'RunInProgressError',
    'StorageError',
    'CheckExecutionError',
    # Registry & runner
    'CheckModule',
    'FunctionCheck',
    'CheckRegistry',
    'CheckRunner',
    'CheckRunResult',
    # Lifecycle
    'AutomationLifecycle',
    'ConfigSnapshot',
    'should_auto_approve',
    'load_check_state',
    # Engine
    'AutomationEngine',
    'build_default_engine',
    'get_automation_engine',
    'AutomationScheduler',
    'get_automation_scheduler',
]
