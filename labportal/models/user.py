"""User model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from labportal.database import Base

ROLES = ("student", "faculty", "admin")


class User(Base):
    """A portal account, identified by its register number."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    rollno = Column(Integer, nullable=True)  # students only
    rgno = Column(Integer, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(String, nullable=False, default="student")  # student/faculty/admin
    department = Column(String, nullable=True)
    semester = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    is_active = Column(Boolean, default=True, nullable=False)
