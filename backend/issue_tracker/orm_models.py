from __future__ import annotations

import uuid
from datetime import datetime

from enum import Enum as PyEnum

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base


def generate_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class ProjectRole(str, PyEnum):
    OWNER = "OWNER"
    MAINTAINER = "MAINTAINER"
    REPORTER = "REPORTER"


class IssueStatus(str, PyEnum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    CLOSED = "CLOSED"


class IssuePriority(str, PyEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class UserORM(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: generate_id("user"))
    email = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False, default="")
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    memberships = relationship(
        "ProjectMemberORM",
        back_populates="user",
        cascade="all, delete-orphan",
    )


class ProjectORM(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=lambda: generate_id("project"))
    name = Column(String, nullable=False)
    owner_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    owner = relationship("UserORM", foreign_keys=[owner_id])
    members = relationship(
        "ProjectMemberORM",
        back_populates="project",
        cascade="all, delete-orphan",
    )
    issues = relationship(
        "IssueORM",
        back_populates="project",
        cascade="all, delete-orphan",
    )


class ProjectMemberORM(Base):
    __tablename__ = "project_members"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_members_project_user"),)

    id = Column(String, primary_key=True, default=lambda: generate_id("member"))
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String, nullable=False, default=ProjectRole.REPORTER.value)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    project = relationship("ProjectORM", back_populates="members")
    user = relationship("UserORM", back_populates="memberships")


class IssueORM(Base):
    __tablename__ = "issues"

    id = Column(String, primary_key=True, default=lambda: generate_id("issue"))
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=IssueStatus.OPEN.value, index=True)
    priority = Column(String, nullable=False, default=IssuePriority.MEDIUM.value, index=True)
    # Not a foreign key: assignment does not validate that the user exists.
    assignee_id = Column(String, nullable=True, index=True)
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    version = Column(Integer, nullable=False, default=0)

    project = relationship("ProjectORM", back_populates="issues")
