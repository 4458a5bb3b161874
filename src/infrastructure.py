"""
infrastructure.py

In-memory implementation of all repository interfaces and the Unit of Work.

This is a self-contained backend that stores everything in plain Python
dicts keyed by UUID.  It is suitable for local development, demos, and
integration testing without needing a real database.

Unlike a naive dict store, writes are staged inside the Unit of Work and
only reach the shared database on commit().  A commit first checks the
version of every staged task against the database and then writes all
staged objects under one lock, so a batch lands completely or not at all.

To swap in a real database later, implement the same Abstract* interfaces
from application.py and override get_uow() in api.py:

    app.dependency_overrides[get_uow] = lambda: SqlUnitOfWork(session)

Nothing in service.py, application.py, or api.py needs to change.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from typing import Dict, List, Optional

from application import (
    AbstractProjectRepository,
    AbstractTaskRepository,
    AbstractTradeRepository,
    AbstractUnitOfWork,
    ConcurrencyConflict,
)
from model import Project, Task, Trade

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generic in-memory store
# ---------------------------------------------------------------------------

class _Store(dict):
    """A plain dict with typed get/save helpers."""

    def fetch(self, key: uuid.UUID):
        return self.get(key)

    def put(self, obj) -> None:
        self[obj.id] = obj

    def all(self) -> list:
        return list(self.values())


# ---------------------------------------------------------------------------
# Shared in-memory database (module-level singleton)
# Persists for the lifetime of the process — restarting uvicorn resets it.
# ---------------------------------------------------------------------------

class InMemoryDatabase:
    def __init__(self):
        self.projects: _Store = _Store()
        self.trades:   _Store = _Store()
        self.tasks:    _Store = _Store()
        self.lock = threading.RLock()


# Module-level singleton — shared across all requests
_db = InMemoryDatabase()


# ---------------------------------------------------------------------------
# Repository implementations
# ---------------------------------------------------------------------------

class _StagingRepository:
    """
    Reads see committed data overlaid with this unit of work's own staged
    writes.  Committed objects are handed out as copies so that edits never
    leak into the database before commit().
    """

    def __init__(self, store: _Store, lock: threading.RLock):
        self._s = store
        self._lock = lock
        self._staged: Dict[uuid.UUID, object] = {}

    def _fetch(self, key: uuid.UUID):
        if key in self._staged:
            return self._staged[key]
        with self._lock:
            obj = self._s.fetch(key)
            return copy.deepcopy(obj) if obj is not None else None

    def _all(self) -> list:
        with self._lock:
            merged = {o.id: copy.deepcopy(o) for o in self._s.all()}
        merged.update(self._staged)
        return list(merged.values())

    def _stage(self, obj) -> None:
        self._staged[obj.id] = obj

    def staged(self) -> list:
        return list(self._staged.values())

    def clear(self) -> None:
        self._staged.clear()


class InMemoryProjectRepository(_StagingRepository, AbstractProjectRepository):
    def get(self, project_id) -> Optional[Project]:  return self._fetch(project_id)
    def list_all(self) -> List[Project]:             return self._all()
    def save(self, project) -> None:                 self._stage(project)


class InMemoryTradeRepository(_StagingRepository, AbstractTradeRepository):
    def get(self, trade_id) -> Optional[Trade]:      return self._fetch(trade_id)
    def list_all(self) -> List[Trade]:               return self._all()
    def save(self, trade) -> None:                   self._stage(trade)


class InMemoryTaskRepository(_StagingRepository, AbstractTaskRepository):
    def get(self, task_id) -> Optional[Task]:        return self._fetch(task_id)
    def list_for_project(self, project_id) -> List[Task]:
        return [t for t in self._all() if t.project_id == project_id]
    def save(self, task) -> None:                    self._stage(task)


# ---------------------------------------------------------------------------
# Unit of Work
# ---------------------------------------------------------------------------

class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    Wraps all in-memory repositories.

    commit() is all-or-nothing: staged tasks carry the version they were
    read at, and if any of them no longer matches the database the whole
    commit is refused with ConcurrencyConflict.  Each committed task gets
    its version bumped.  rollback() drops everything staged.
    """

    def __init__(self, db: InMemoryDatabase = _db):
        self._db = db
        self.projects = InMemoryProjectRepository(db.projects, db.lock)
        self.trades   = InMemoryTradeRepository(db.trades, db.lock)
        self.tasks    = InMemoryTaskRepository(db.tasks, db.lock)

    def _repositories(self):
        return (
            (self.projects, self._db.projects),
            (self.trades, self._db.trades),
            (self.tasks, self._db.tasks),
        )

    def commit(self) -> None:
        with self._db.lock:
            for task in self.tasks.staged():
                current = self._db.tasks.fetch(task.id)
                if current is not None and current.version != task.version:
                    logger.warning(
                        "Commit refused: task %s is at version %d, staged from %d.",
                        task.id,
                        current.version,
                        task.version,
                    )
                    raise ConcurrencyConflict(
                        f"Task {task.id} was modified concurrently "
                        f"(expected version {task.version}, found {current.version})."
                    )
            self._flush()
        for repo, _ in self._repositories():
            repo.clear()

    def _flush(self) -> None:
        """Write every staged object.  Called with the database lock held."""
        for task in self.tasks.staged():
            task.version += 1
        for repo, store in self._repositories():
            for obj in repo.staged():
                store.put(copy.deepcopy(obj))

    def rollback(self) -> None:
        for repo, _ in self._repositories():
            repo.clear()
