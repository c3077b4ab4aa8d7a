"""Pytest fixtures for the reconciliation tests."""

from datetime import datetime, timedelta
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from db_models import Contact, ContactDraft, LinkPrecedence
from db_setup import ContactRepository, get_db_connection, init_db

START = datetime(2024, 1, 1, 9, 0, 0)


class TickingClock:
    """Clock that moves one second forward on every call."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def db_path(tmp_path):
    """Fresh SQLite database with the Contact table."""
    path = str(tmp_path / "contacts.db")
    init_db(path)
    return path


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def repo(db_path, clock):
    conn = get_db_connection(db_path)
    yield ContactRepository(conn, clock=clock)
    conn.close()


@pytest.fixture
def add_primary(repo):
    """Insert a primary contact directly."""

    def _add(email: Optional[str] = None, phone: Optional[str] = None) -> Contact:
        return repo.insert(ContactDraft(email=email, phoneNumber=phone))

    return _add


@pytest.fixture
def add_secondary(repo):
    """Insert a secondary contact linked to ``primary_id``."""

    def _add(primary_id: int, email: Optional[str] = None, phone: Optional[str] = None) -> Contact:
        return repo.insert(ContactDraft(
            email=email,
            phoneNumber=phone,
            linkedId=primary_id,
            linkPrecedence=LinkPrecedence.SECONDARY,
        ))

    return _add


@pytest.fixture
def count_rows(repo):
    def _count() -> int:
        return repo.conn.execute("SELECT COUNT(*) FROM Contact").fetchone()[0]

    return _count


@pytest.fixture
def make_contact():
    """Build an in-memory Contact for tests that need no database."""

    def _make(
        contact_id: int,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        linked_id: Optional[int] = None,
        created_at: Optional[datetime] = None,
    ) -> Contact:
        created = created_at or START + timedelta(minutes=contact_id)
        return Contact(
            id=contact_id,
            email=email,
            phoneNumber=phone,
            linkedId=linked_id,
            linkPrecedence=LinkPrecedence.SECONDARY if linked_id else LinkPrecedence.PRIMARY,
            createdAt=created,
            updatedAt=created,
        )

    return _make


@pytest.fixture
def client(db_path, clock):
    """TestClient whose requests use the temporary database."""
    from main import app, get_repository

    def _override():
        conn = get_db_connection(db_path)
        try:
            yield ContactRepository(conn, clock=clock)
        finally:
            conn.close()

    app.dependency_overrides[get_repository] = _override
    yield TestClient(app)
    app.dependency_overrides.clear()
