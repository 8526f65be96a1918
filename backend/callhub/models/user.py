"""
User account model backing the SQL user directory.
"""
from sqlalchemy import Column, DateTime, String
from datetime import datetime

from ..database import Base


class UserAccount(Base):
    """
    Minimal user profile used for caller display names.
    """
    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, unique=True)
    avatar = Column(String(1024), nullable=True)
    role = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<UserAccount(id={self.id}, name={self.name})>"
