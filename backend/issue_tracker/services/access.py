"""Project access policy.

Every authorization decision of the project and issue workflows goes through
the ``require_*`` helpers below. Roles form a total order
REPORTER < MAINTAINER < OWNER.
"""
from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from ..orm_models import ProjectRole
from .errors import AccessDeniedError
from .memberships import get_membership, normalize_project_role

ROLE_PRIORITY = {
    ProjectRole.REPORTER: 0,
    ProjectRole.MAINTAINER: 1,
    ProjectRole.OWNER: 2,
}


def role_at_least(role: Optional[ProjectRole], minimum: ProjectRole) -> bool:
    if role is None:
        return False
    return ROLE_PRIORITY[role] >= ROLE_PRIORITY[minimum]


def role_of(session: Session, project_id: str, user_id: str) -> Optional[ProjectRole]:
    membership = get_membership(session, project_id=project_id, user_id=user_id)
    if membership is None:
        return None
    return normalize_project_role(membership.role)


def _require(session: Session, project_id: str, user_id: str, minimum: ProjectRole, message: str) -> ProjectRole:
    role = role_of(session, project_id, user_id)
    if not role_at_least(role, minimum):
        raise AccessDeniedError(message, details={"projectId": project_id})
    return role  # type: ignore[return-value]


def require_any_role(session: Session, project_id: str, user_id: str) -> ProjectRole:
    return _require(session, project_id, user_id, ProjectRole.REPORTER, "Access denied")


def require_elevated_role(session: Session, project_id: str, user_id: str) -> ProjectRole:
    return _require(
        session,
        project_id,
        user_id,
        ProjectRole.MAINTAINER,
        "Only owners and maintainers can perform this action",
    )


def require_owner(session: Session, project_id: str, user_id: str) -> ProjectRole:
    return _require(session, project_id, user_id, ProjectRole.OWNER, "Only the project owner can perform this action")
