"""
Built-in Check Modules

Registered in this order by build_default_engine().
"""

from .stale_ticket import StaleTicketCheck
from .accountability import AccountabilityCheck
from .sprint_health import SprintHealthCheck
from .pm import PMCheck

DEFAULT_CHECKS = (PMCheck, StaleTicketCheck, AccountabilityCheck, SprintHealthCheck)

__all__ = [
    'StaleTicketCheck',
    'AccountabilityCheck',
    'SprintHealthCheck',
    'PMCheck',
    'DEFAULT_CHECKS',
]
