"""
Command surface for learnstore.

A thin HTTP boundary that turns UI-initiated calls into repository
operations. It adds no semantics of its own.
"""

from .app import create_app, status_for
from .commands import router

__all__ = ["create_app", "router", "status_for"]
