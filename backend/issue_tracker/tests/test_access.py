from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import make_user, project_members
from issue_tracker.orm_models import ProjectMemberORM, ProjectRole
from issue_tracker.services.access import (
    require_any_role,
    require_elevated_role,
    require_owner,
    role_at_least,
    role_of,
)
from issue_tracker.services.errors import AccessDeniedError
from issue_tracker.services.memberships import ensure_membership
from issue_tracker.services.projects import create_project


@pytest.fixture()
def project(session, owner):
    return create_project(session, "Roadmap", owner.id)


@pytest.fixture()
def members(session, project):
    maintainer = make_user(session, "maintainer@tracker.dev")
    reporter = make_user(session, "reporter@tracker.dev")
    ensure_membership(session, project_id=project.id, user_id=maintainer.id, role=ProjectRole.MAINTAINER)
    ensure_membership(session, project_id=project.id, user_id=reporter.id, role=ProjectRole.REPORTER)
    return {"maintainer": maintainer, "reporter": reporter}


def test_role_of_reports_membership_role(session, project, owner, outsider, members):
    assert role_of(session, project.id, owner.id) is ProjectRole.OWNER
    assert role_of(session, project.id, members["maintainer"].id) is ProjectRole.MAINTAINER
    assert role_of(session, project.id, members["reporter"].id) is ProjectRole.REPORTER
    assert role_of(session, project.id, outsider.id) is None


@pytest.mark.parametrize(
    ("role", "minimum", "expected"),
    [
        (ProjectRole.OWNER, ProjectRole.MAINTAINER, True),
        (ProjectRole.MAINTAINER, ProjectRole.MAINTAINER, True),
        (ProjectRole.REPORTER, ProjectRole.MAINTAINER, False),
        (ProjectRole.MAINTAINER, ProjectRole.OWNER, False),
        (None, ProjectRole.REPORTER, False),
    ],
)
def test_role_order(role, minimum, expected):
    assert role_at_least(role, minimum) is expected


def test_require_any_role_rejects_non_member(session, project, outsider, members):
    assert require_any_role(session, project.id, members["reporter"].id) is ProjectRole.REPORTER
    with pytest.raises(AccessDeniedError):
        require_any_role(session, project.id, outsider.id)


def test_require_elevated_role(session, project, owner, members):
    assert require_elevated_role(session, project.id, owner.id) is ProjectRole.OWNER
    assert require_elevated_role(session, project.id, members["maintainer"].id) is ProjectRole.MAINTAINER
    with pytest.raises(AccessDeniedError):
        require_elevated_role(session, project.id, members["reporter"].id)


def test_require_owner(session, project, owner, members):
    assert require_owner(session, project.id, owner.id) is ProjectRole.OWNER
    for user in members.values():
        with pytest.raises(AccessDeniedError):
            require_owner(session, project.id, user.id)


def test_ensure_membership_keeps_single_row(session, project, members):
    reporter = members["reporter"]

    ensure_membership(session, project_id=project.id, user_id=reporter.id, role="maintainer")

    rows = [m for m in project_members(session, project.id) if m.user_id == reporter.id]
    assert len(rows) == 1
    assert rows[0].role == ProjectRole.MAINTAINER.value


def test_ensure_membership_rejects_unknown_role(session, project, outsider):
    with pytest.raises(ValueError):
        ensure_membership(session, project_id=project.id, user_id=outsider.id, role="admin")


def test_duplicate_membership_row_violates_unique_constraint(session, project, owner):
    session.add(ProjectMemberORM(project_id=project.id, user_id=owner.id, role=ProjectRole.REPORTER.value))

    with pytest.raises(IntegrityError):
        session.flush()
