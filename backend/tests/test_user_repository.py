import pytest

from app.models import LocalUserRecord
from app.repositories import DbUserRepository, InMemoryUserRepository


@pytest.fixture(params=["memory", "db"])
def repo(request):
    if request.param == "memory":
        return InMemoryUserRepository()
    return DbUserRepository()


def test_upsert_creates_then_updates_by_xero_user_id(repo) -> None:
    created = repo.upsert(
        LocalUserRecord(xero_user_id="u1", email="old@x.com", first_name="A")
    )
    updated = repo.upsert(
        LocalUserRecord(xero_user_id="u1", email="new@x.com", first_name="A")
    )

    assert updated.email == "new@x.com"
    assert repo.get("u1").email == "new@x.com"
    assert updated.created_at == created.created_at


def test_get_unknown_user_returns_none(repo) -> None:
    assert repo.get("missing") is None


def test_delete_reports_whether_a_row_was_removed(repo) -> None:
    repo.upsert(LocalUserRecord(xero_user_id="u1", email="u@x.com"))
    assert repo.delete("u1") is True
    assert repo.delete("u1") is False
    assert repo.get("u1") is None
