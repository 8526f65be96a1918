"""
API routes module initialization.
"""
from . import calls, health

__all__ = ["calls", "health"]
