# backend/therapy_booking/routes/__init__.py
"""
API v1 Routes

Versioned endpoints mounted under /api/v1 by main.py.
"""

from . import availability, health, payments, refunds, sessions

__all__ = [
    "availability",
    "health",
    "payments",
    "refunds",
    "sessions",
]
