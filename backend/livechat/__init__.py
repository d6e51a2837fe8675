"""
Support Chat Escalation Hub
"""

__version__ = "1.0.0"
__author__ = "Customer Support Platform Team"

# Application metadata
APP_NAME = "Support Chat Escalation Hub"
APP_DESCRIPTION = (
    "Bot-to-human chat escalation with real-time push delivery, "
    "polling fallback and admin presence tracking"
)

from .config import settings, get_settings

__all__ = [
    "settings",
    "get_settings",
    "APP_NAME",
    "APP_DESCRIPTION",
    "__version__",
]
