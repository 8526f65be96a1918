"""
Application services.
"""
from .auth_service import AuthService, AuthenticationError, require_auth
from .user_directory import (
    UserRecord,
    UserDirectory,
    InMemoryUserDirectory,
    SqlUserDirectory,
    HttpUserDirectory,
)

__all__ = [
    'AuthService',
    'AuthenticationError',
    'require_auth',
    'UserRecord',
    'UserDirectory',
    'InMemoryUserDirectory',
    'SqlUserDirectory',
    'HttpUserDirectory',
]
