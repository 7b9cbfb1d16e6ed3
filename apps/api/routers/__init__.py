"""Routers package."""

from . import (
    health,
    auth,
    credits,
    notifications,
    documents,
    students,
    teachers,
    library,
    inventory,
    dashboard,
)
