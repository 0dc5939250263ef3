from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from math import ceil
from typing import Iterable, Optional, Type, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .. import orm_models
from ..broadcasting import publish_after_commit
from ..config import settings
from ..orm_models import IssueORM, IssuePriority, IssueStatus
from ..schemas import Issue, IssueCreate, IssuePage, IssueUpdate
from .access import require_any_role, require_elevated_role
from .errors import ConflictError, NotFoundError, ValidationError
from .notifications import Broadcaster, deleted_topic, issues_topic

logger = logging.getLogger(__name__)

SORT_FIELDS = {
    "id": IssueORM.id,
    "title": IssueORM.title,
    "status": IssueORM.status,
    "priority": IssueORM.priority,
    "createdAt": IssueORM.created_at,
    "updatedAt": IssueORM.updated_at,
}
DEFAULT_SORT_FIELD = "createdAt"
DEFAULT_SORT_DIRECTION = "DESC"

E = TypeVar("E", bound=Enum)


def _coerce_enum(enum_cls: Type[E], value: E | str | None, field: str) -> Optional[E]:
    if value is None or value == "":
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError as exc:
        raise ValidationError(f"Unknown {field}: {value}", details={"field": field}) from exc


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _resolve_names(
    session: Session,
    issues: Iterable[IssueORM],
) -> tuple[dict[str, str], dict[str, str]]:
    issues = list(issues)
    project_ids = {issue.project_id for issue in issues}
    assignee_ids = {issue.assignee_id for issue in issues if issue.assignee_id}

    project_names: dict[str, str] = {}
    if project_ids:
        rows = session.execute(
            select(orm_models.ProjectORM.id, orm_models.ProjectORM.name).where(
                orm_models.ProjectORM.id.in_(project_ids)
            )
        )
        project_names = {row.id: row.name for row in rows}

    user_names: dict[str, str] = {}
    if assignee_ids:
        rows = session.execute(
            select(orm_models.UserORM.id, orm_models.UserORM.name).where(
                orm_models.UserORM.id.in_(assignee_ids)
            )
        )
        user_names = {row.id: row.name for row in rows}

    return project_names, user_names


def _map_issue(
    issue: IssueORM,
    project_names: dict[str, str],
    user_names: dict[str, str],
) -> Issue:
    return Issue(
        id=issue.id,
        projectId=issue.project_id,
        projectName=project_names.get(issue.project_id),
        title=issue.title,
        description=issue.description,
        status=IssueStatus(issue.status),
        priority=IssuePriority(issue.priority),
        assigneeId=issue.assignee_id,
        assigneeName=user_names.get(issue.assignee_id) if issue.assignee_id else None,
        tags=list(issue.tags or []),
        createdAt=issue.created_at,
        updatedAt=issue.updated_at,
        version=issue.version,
    )


def enrich_issues(session: Session, issues: Iterable[IssueORM]) -> list[Issue]:
    issues = list(issues)
    project_names, user_names = _resolve_names(session, issues)
    return [_map_issue(issue, project_names, user_names) for issue in issues]


def enrich_issue(session: Session, issue: IssueORM) -> Issue:
    return enrich_issues(session, [issue])[0]


def serialize_issue(issue: Issue) -> dict:
    return issue.model_dump(mode="json", exclude_none=True)


def _get_issue_or_404(session: Session, issue_id: str) -> IssueORM:
    issue = session.get(IssueORM, issue_id)
    if issue is None:
        raise NotFoundError("Issue not found", details={"issueId": issue_id})
    return issue


def create_issue(
    session: Session,
    payload: IssueCreate,
    user_id: str,
    *,
    broadcaster: Broadcaster,
) -> Issue:
    project = session.get(orm_models.ProjectORM, payload.projectId)
    if project is None:
        raise NotFoundError("Project not found", details={"projectId": payload.projectId})
    require_any_role(session, project.id, user_id)

    now = datetime.utcnow()
    issue = IssueORM(
        project_id=project.id,
        title=payload.title,
        description=payload.description,
        status=(payload.status or IssueStatus.OPEN).value,
        priority=(payload.priority or IssuePriority.MEDIUM).value,
        assignee_id=payload.assigneeId,
        tags=list(payload.tags or []),
        created_at=now,
        updated_at=now,
        version=0,
    )
    session.add(issue)
    session.flush()

    response = enrich_issue(session, issue)
    publish_after_commit(session, broadcaster, issues_topic(project.id), serialize_issue(response))
    logger.info("Created issue %s in project %s", issue.id, project.id)
    return response


def list_issues(
    session: Session,
    project_id: str,
    user_id: str,
    *,
    status: IssueStatus | str | None = None,
    priority: IssuePriority | str | None = None,
    assignee_id: str | None = None,
    search: str | None = None,
    page: int = 0,
    size: int | None = None,
    sort_by: str | None = None,
    sort_dir: str | None = None,
) -> IssuePage:
    """Return one page of the project's issues.

    Every supplied filter narrows the result (logical AND); ``search`` matches
    a case-insensitive substring of the title. Pages are zero-based and the
    default order is newest first.
    """
    require_any_role(session, project_id, user_id)

    size = settings.issues_default_page_size if size is None else size
    if page < 0:
        raise ValidationError("Page index must not be negative", details={"field": "page"})
    if size < 1 or size > settings.issues_max_page_size:
        raise ValidationError(
            f"Page size must be between 1 and {settings.issues_max_page_size}",
            details={"field": "size"},
        )

    sort_key = sort_by or DEFAULT_SORT_FIELD
    sort_column = SORT_FIELDS.get(sort_key)
    if sort_column is None:
        raise ValidationError(f"Cannot sort by {sort_key}", details={"field": "sortBy"})
    direction = (sort_dir or DEFAULT_SORT_DIRECTION).strip().upper()
    if direction not in {"ASC", "DESC"}:
        raise ValidationError("Sort direction must be ASC or DESC", details={"field": "sortDir"})

    conditions = [IssueORM.project_id == project_id]
    status_value = _coerce_enum(IssueStatus, status, "status")
    if status_value is not None:
        conditions.append(IssueORM.status == status_value.value)
    priority_value = _coerce_enum(IssuePriority, priority, "priority")
    if priority_value is not None:
        conditions.append(IssueORM.priority == priority_value.value)
    if assignee_id:
        conditions.append(IssueORM.assignee_id == assignee_id)
    search_text = (search or "").strip()
    if search_text:
        pattern = f"%{_escape_like(search_text.lower())}%"
        conditions.append(func.lower(IssueORM.title).like(pattern, escape="\\"))

    total = session.execute(
        select(func.count()).select_from(IssueORM).where(*conditions)
    ).scalar_one()

    if direction == "ASC":
        ordering = (sort_column.asc(), IssueORM.id.asc())
    else:
        ordering = (sort_column.desc(), IssueORM.id.desc())

    rows = (
        session.execute(
            select(IssueORM)
            .where(*conditions)
            .order_by(*ordering)
            .offset(page * size)
            .limit(size)
        )
        .scalars()
        .all()
    )

    return IssuePage(
        content=enrich_issues(session, rows),
        totalElements=total,
        totalPages=ceil(total / size) if total > 0 else 0,
        size=size,
        number=page,
    )


def get_issue(session: Session, issue_id: str, user_id: str) -> Issue:
    issue = _get_issue_or_404(session, issue_id)
    require_any_role(session, issue.project_id, user_id)
    return enrich_issue(session, issue)


def update_issue(
    session: Session,
    issue_id: str,
    payload: IssueUpdate,
    user_id: str,
    *,
    broadcaster: Broadcaster,
) -> Issue:
    """Apply ``payload`` to the issue with a version compare-and-swap.

    Description is always replaced (absent means cleared) and a supplied
    title always replaces the stored one, even when empty. Status, priority
    and tags are replaced only when given; assigneeId is replaced whenever the
    field is present, so an explicit null unassigns.
    """
    issue = _get_issue_or_404(session, issue_id)
    require_any_role(session, issue.project_id, user_id)

    expected_version = issue.version
    if payload.version is not None and payload.version != expected_version:
        logger.warning(
            "Stale update of issue %s: expected version %s, stored %s",
            issue_id,
            payload.version,
            expected_version,
        )
        raise ConflictError(
            "Issue was modified by another request",
            details={"issueId": issue_id, "version": expected_version},
        )

    values: dict[str, object] = {
        "description": payload.description,
        "updated_at": datetime.utcnow(),
        "version": expected_version + 1,
    }
    if payload.title is not None:
        values["title"] = payload.title
    if payload.status is not None:
        values["status"] = payload.status.value
    if payload.priority is not None:
        values["priority"] = payload.priority.value
    if payload.tags is not None:
        values["tags"] = list(payload.tags)
    if "assigneeId" in payload.model_fields_set:
        values["assignee_id"] = payload.assigneeId

    result = session.execute(
        update(IssueORM)
        .where(IssueORM.id == issue_id)
        .where(IssueORM.version == expected_version)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Lost update race on issue %s at version %s", issue_id, expected_version)
        raise ConflictError(
            "Issue was modified by another request",
            details={"issueId": issue_id, "version": expected_version},
        )

    session.refresh(issue)
    response = enrich_issue(session, issue)
    publish_after_commit(session, broadcaster, issues_topic(issue.project_id), serialize_issue(response))
    logger.info("Updated issue %s to version %s", issue_id, issue.version)
    return response


def delete_issue(
    session: Session,
    issue_id: str,
    user_id: str,
    *,
    broadcaster: Broadcaster,
) -> None:
    issue = _get_issue_or_404(session, issue_id)
    project_id = issue.project_id
    require_elevated_role(session, project_id, user_id)

    session.delete(issue)
    session.flush()

    publish_after_commit(session, broadcaster, deleted_topic(project_id), issue_id)
    logger.info("Deleted issue %s from project %s", issue_id, project_id)
