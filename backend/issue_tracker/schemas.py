from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .orm_models import IssuePriority, IssueStatus, ProjectRole

__all__ = [
    "AuthResponse",
    "HealthResponse",
    "Issue",
    "IssueCreate",
    "IssuePage",
    "IssuePriority",
    "IssueStatus",
    "IssueUpdate",
    "LoginRequest",
    "Project",
    "ProjectRequest",
    "ProjectRole",
    "SignupRequest",
]


def _strip(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    return value


class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=255)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return _strip(value)


class LoginRequest(BaseModel):
    email: str
    password: str


class AuthResponse(BaseModel):
    token: str
    userId: str
    email: str
    name: str


class ProjectRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return _strip(value)


class Project(BaseModel):
    id: str
    name: str
    ownerId: Optional[str] = None
    ownerName: Optional[str] = None
    createdAt: datetime


class IssueBase(BaseModel):
    description: Optional[str] = None
    status: Optional[IssueStatus] = None
    priority: Optional[IssuePriority] = None
    assigneeId: Optional[str] = None
    tags: Optional[List[str]] = None


class IssueCreate(IssueBase):
    projectId: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=500)

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: Any) -> Any:
        return _strip(value)


class IssueUpdate(IssueBase):
    model_config = ConfigDict(extra="ignore")

    # Unlike IssueCreate, blank is accepted: a present title replaces the
    # stored one verbatim, so "   " stores "" after stripping.
    title: Optional[str] = Field(default=None, max_length=500)
    # Expected version; a mismatch with the stored row is a conflict.
    version: Optional[int] = Field(default=None, ge=0)

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: Any) -> Any:
        return _strip(value)


class Issue(BaseModel):
    id: str
    projectId: str
    projectName: Optional[str] = None
    title: str
    description: Optional[str] = None
    status: IssueStatus
    priority: IssuePriority
    assigneeId: Optional[str] = None
    assigneeName: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    createdAt: datetime
    updatedAt: datetime
    version: int


class IssuePage(BaseModel):
    content: List[Issue]
    totalElements: int
    totalPages: int
    size: int
    number: int


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
