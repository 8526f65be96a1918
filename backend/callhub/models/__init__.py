"""
Database models package.
Exports all SQLAlchemy models for the application.

Version: 1.0.0
"""

from .call import CallRecord
from .user import UserAccount

__all__ = [
    'CallRecord',
    'UserAccount'
]
