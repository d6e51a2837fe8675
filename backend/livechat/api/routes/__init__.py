"""
API routes module initialization.
"""
from . import admin, chatbot, health

__all__ = ["admin", "chatbot", "health"]
