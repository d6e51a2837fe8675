"""
Admin presence package.
"""
from .tracker import PresenceTracker

__all__ = ['PresenceTracker']
