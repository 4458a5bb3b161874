"""
Test configuration and fixtures for the schedule cascade test suite.
"""
import uuid
from datetime import date

import pytest
from fastapi.testclient import TestClient

from api import app, get_uow, get_workflow
from application import ChangeRequestWorkflow, CommitFailure
from infrastructure import InMemoryDatabase, InMemoryUnitOfWork
from model import Project, Task, Trade


PROJECT_ID = uuid.UUID("00000000-0000-0000-0000-0000000000aa")


class FailingUnitOfWork(InMemoryUnitOfWork):
    """A unit of work whose store rejects every batch that writes tasks."""

    def _flush(self) -> None:
        if self.tasks.staged():
            raise CommitFailure("Store unavailable.")
        super()._flush()


@pytest.fixture
def make_task():
    """Build a Task of PROJECT_ID; dates may be given as ISO strings."""

    def _make(start="2024-01-01", end="2024-01-05", dependency=None, **kwargs):
        kwargs.setdefault("project_id", PROJECT_ID)
        return Task(
            start_date=date.fromisoformat(start),
            end_date=date.fromisoformat(end),
            dependency=dependency.id if isinstance(dependency, Task) else dependency,
            **kwargs,
        )

    return _make


@pytest.fixture
def db():
    """A fresh in-memory database per test."""
    return InMemoryDatabase()


@pytest.fixture
def uow(db):
    return InMemoryUnitOfWork(db)


@pytest.fixture
def failing_uow(db):
    return FailingUnitOfWork(db)


@pytest.fixture
def workflow():
    return ChangeRequestWorkflow()


@pytest.fixture
def framing_trade(db):
    trade = Trade(name="Framing", contact="Frame-Up Bros", phone="555-1002", email="contact@frameup.com")
    db.trades.put(trade)
    return trade


@pytest.fixture
def project(db):
    project = Project(id=PROJECT_ID, name="Maple St. Duplex", address="12 Maple St.", client="Ruiz", pm_id="pm-1")
    db.projects.put(project)
    return project


@pytest.fixture
def stored_task(db, project, framing_trade, make_task):
    """Create tasks directly in the database, bypassing use cases."""

    def _store(start="2024-01-01", end="2024-01-05", dependency=None, **kwargs):
        kwargs.setdefault("trade_id", framing_trade.id)
        task = make_task(start, end, dependency=dependency, **kwargs)
        db.tasks.put(task)
        return task

    return _store


@pytest.fixture
def client(db):
    """TestClient wired to an isolated database and workflow."""
    test_workflow = ChangeRequestWorkflow()
    app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork(db)
    app.dependency_overrides[get_workflow] = lambda: test_workflow
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
