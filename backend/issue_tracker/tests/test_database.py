from __future__ import annotations

import pytest

from issue_tracker.database import resolve_engine_url


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("postgres://u:p@db/issues", "postgresql+psycopg://u:p@db/issues"),
        ("postgresql://u:p@db/issues", "postgresql+psycopg://u:p@db/issues"),
        ("postgresql+psycopg://u:p@db/issues", "postgresql+psycopg://u:p@db/issues"),
    ],
)
def test_postgres_urls_use_psycopg_driver(url, expected):
    assert resolve_engine_url(url) == (expected, {})


def test_sqlite_file_url_creates_parent_directory(tmp_path):
    target = tmp_path / "nested" / "issues.db"

    url, connect_args = resolve_engine_url(f"sqlite:///{target}")

    assert url == f"sqlite:///{target}"
    assert connect_args == {"check_same_thread": False}
    assert target.parent.is_dir()


def test_sqlite_memory_url_is_left_alone():
    assert resolve_engine_url("sqlite:///:memory:") == ("sqlite:///:memory:", {"check_same_thread": False})
