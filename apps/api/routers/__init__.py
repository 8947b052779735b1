"""Routers package."""

from . import (
    health,
    auth,
    credits,
    content,
    billing,
    admin,
)
