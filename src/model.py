"""
model.py

Domain models for the Construction Schedule & Delay Cascade service.

Entities
--------
- Project
- Trade
- Task
- ChangeRequest (+ ProposedUpdate)

Value objects
-------------
- ScheduledDates
- TaskMutation
- DanglingDependency
- PhaseDefinition
- Milestone

All models use Python dataclasses for clean, framework-agnostic definitions.
UUID primary keys are used throughout for portability.
Schedule dates are calendar days (datetime.date); timestamps are UTC.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, Tuple


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class TaskStatus(str, Enum):
    """Lifecycle status of a single trade task on site."""
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    DELAYED = "Delayed"
    COMPLETED = "Completed"
    JOB_SITE_READY = "Job Site Ready"


class MilestoneStatus(str, Enum):
    """Aggregate status of a project phase, derived from its tasks."""
    COMPLETED = "Completed"
    IN_PROGRESS = "In Progress"
    NEXT = "Next"
    INCOMPLETE = "Incomplete"


# ---------------------------------------------------------------------------
# Core Project Entities
# ---------------------------------------------------------------------------


@dataclass
class Project:
    """
    A single build site.  A project owns its tasks; trades are shared
    across projects and only referenced.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    name: str = ""
    address: str = ""
    client: str = ""
    pm_id: str = ""          # Project manager user id (managed outside this service)

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Trade:
    """A subcontractor or inspector that performs tasks, e.g. "Framing"."""
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    name: str = ""           # Trade type; matched against phase definitions
    contact: str = ""
    phone: str = ""
    email: str = ""


@dataclass
class Task:
    """
    The unit of schedulable work.

    `dependency` references at most one other task of the same project
    (Finish-to-Start).  Tasks therefore form a forest: a task may gate
    several children but waits on a single parent.

    `version` is bumped by the store on every committed write and is used
    as the optimistic concurrency token for batch updates.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    project_id: uuid.UUID = field(default_factory=uuid.uuid4)   # FK → Project.id
    trade_id: uuid.UUID = field(default_factory=uuid.uuid4)     # FK → Trade.id (not owned)
    status: TaskStatus = TaskStatus.NOT_STARTED
    dependency: Optional[uuid.UUID] = None                      # FK → Task.id (same project)

    start_date: date = field(default_factory=date.today)
    end_date: date = field(default_factory=date.today)          # Never before start_date
    progress: int = 0                                           # 0 – 100

    notes: str = ""
    is_inspection: bool = False
    material_tracking_link: Optional[str] = None
    materials_delivered: bool = False

    version: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def duration_days(self) -> int:
        return (self.end_date - self.start_date).days


# ---------------------------------------------------------------------------
# Change Control Entities
# ---------------------------------------------------------------------------


@dataclass
class ProposedUpdate:
    """The field changes a change request will apply to its root task."""
    delay_duration_in_days: int = 0
    status: TaskStatus = TaskStatus.DELAYED
    notes: str = ""
    delay_reason: str = "No reason provided."


@dataclass
class ChangeRequest:
    """
    A pending, unapplied proposal to delay a task and everything that
    depends on it.

    Change requests are never edited in place: they are approved (cascade
    applied, request discarded), denied (discarded) or replaced by a newer
    proposal for the same task.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    project_id: uuid.UUID = field(default_factory=uuid.uuid4)   # FK → Project.id
    task_id: uuid.UUID = field(default_factory=uuid.uuid4)      # Root of the cascade
    trade_name: str = ""                                        # Denormalised for display
    proposed_update: ProposedUpdate = field(default_factory=ProposedUpdate)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Scheduling value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScheduledDates:
    """New position of a task produced by a cascade."""
    start_date: date
    end_date: date


@dataclass(frozen=True)
class DanglingDependency:
    """A task whose dependency points at a task missing from the project."""
    task_id: uuid.UUID
    missing_dependency_id: uuid.UUID


@dataclass
class TaskMutation:
    """
    Partial update for one task inside an atomic batch.

    Only fields that are not None are written.  `expected_version` is the
    task version observed when the mutation was computed; the store rejects
    the whole batch if any task has moved on since.
    """
    task_id: uuid.UUID
    expected_version: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[TaskStatus] = None
    progress: Optional[int] = None
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PhaseDefinition:
    """A named project phase and the trade names whose tasks make it up."""
    name: str
    trade_names: Tuple[str, ...] = ()


@dataclass
class Milestone:
    name: str
    status: MilestoneStatus = MilestoneStatus.INCOMPLETE
