from __future__ import annotations

import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from .. import orm_models
from ..schemas import Project
from .access import require_any_role, require_owner
from .errors import NotFoundError, ValidationError
from .memberships import ensure_membership

logger = logging.getLogger(__name__)


def _map_project(session: Session, project: orm_models.ProjectORM) -> Project:
    owner = session.get(orm_models.UserORM, project.owner_id) if project.owner_id else None
    return Project(
        id=project.id,
        name=project.name,
        ownerId=project.owner_id,
        ownerName=owner.name if owner else None,
        createdAt=project.created_at,
    )


def _normalize_name(name: str) -> str:
    normalized = (name or "").strip()
    if not normalized:
        raise ValidationError("Project name is required")
    return normalized


def _get_project_or_404(session: Session, project_id: str) -> orm_models.ProjectORM:
    project = session.get(orm_models.ProjectORM, project_id)
    if project is None:
        raise NotFoundError("Project not found", details={"projectId": project_id})
    return project


def create_project(session: Session, name: str, owner_id: str) -> Project:
    """Create a project together with the OWNER membership of its creator.

    Both rows are flushed in the caller's transaction, so a rollback removes
    both of them.
    """
    project = orm_models.ProjectORM(name=_normalize_name(name), owner_id=owner_id)
    session.add(project)
    session.flush()

    ensure_membership(
        session,
        project_id=project.id,
        user_id=owner_id,
        role=orm_models.ProjectRole.OWNER,
    )
    logger.info("Created project %s for %s", project.id, owner_id)
    return _map_project(session, project)


def list_projects_for_user(session: Session, user_id: str) -> List[Project]:
    projects = (
        session.execute(
            select(orm_models.ProjectORM)
            .join(
                orm_models.ProjectMemberORM,
                orm_models.ProjectMemberORM.project_id == orm_models.ProjectORM.id,
            )
            .where(orm_models.ProjectMemberORM.user_id == user_id)
            .order_by(orm_models.ProjectORM.created_at, orm_models.ProjectORM.id)
        )
        .scalars()
        .all()
    )
    return [_map_project(session, project) for project in projects]


def get_project(session: Session, project_id: str, user_id: str) -> Project:
    project = _get_project_or_404(session, project_id)
    require_any_role(session, project_id, user_id)
    return _map_project(session, project)


def update_project(session: Session, project_id: str, name: str, user_id: str) -> Project:
    project = _get_project_or_404(session, project_id)
    require_owner(session, project_id, user_id)

    project.name = _normalize_name(name)
    session.flush()
    return _map_project(session, project)


def delete_project(session: Session, project_id: str, user_id: str) -> None:
    project = _get_project_or_404(session, project_id)
    require_owner(session, project_id, user_id)

    session.delete(project)
    session.flush()
    logger.info("Deleted project %s", project_id)
