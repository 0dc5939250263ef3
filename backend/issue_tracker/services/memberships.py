from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..orm_models import ProjectMemberORM, ProjectRole


def normalize_project_role(value: Optional[str | ProjectRole]) -> Optional[ProjectRole]:
    if isinstance(value, ProjectRole):
        return value
    if isinstance(value, str):
        normalized = value.strip().upper()
        for item in ProjectRole:
            if item.value == normalized:
                return item
    return None


def get_membership(session: Session, *, project_id: str, user_id: str) -> Optional[ProjectMemberORM]:
    return (
        session.execute(
            select(ProjectMemberORM)
            .where(ProjectMemberORM.project_id == project_id)
            .where(ProjectMemberORM.user_id == user_id)
        )
        .scalars()
        .first()
    )


def ensure_membership(
    session: Session,
    *,
    project_id: str,
    user_id: str,
    role: ProjectRole | str,
) -> ProjectMemberORM:
    """Create or re-role the single membership row of ``user_id`` on ``project_id``."""
    resolved = normalize_project_role(role)
    if resolved is None:
        raise ValueError(f"Unknown project role: {role!r}")

    membership = get_membership(session, project_id=project_id, user_id=user_id)
    if membership:
        if membership.role != resolved.value:
            membership.role = resolved.value
            session.flush()
        return membership

    membership = ProjectMemberORM(
        project_id=project_id,
        user_id=user_id,
        role=resolved.value,
    )
    session.add(membership)
    session.flush()
    return membership
