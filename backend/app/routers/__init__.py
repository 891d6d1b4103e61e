"""Jira Planner - API Routers"""
from .auth import router as auth_router
from .automation import router as automation_router
from .scheduler import router as scheduler_router

__all__ = [
    "auth_router",
    "automation_router",
    "scheduler_router",
]
