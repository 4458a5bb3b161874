"""
service.py

Service layer for the Construction Schedule & Delay Cascade service.

Responsibilities
----------------
Each class encapsulates the business logic for its domain.  Services
receive and return domain model instances (from model.py).  No persistence
is handled here: callers read task snapshots from a repository, hand them
to these services, and commit the resulting mutations atomically.

Services
--------
- TaskGraph            – Child index and parent lookup over one project's tasks
- CascadeScheduler     – Delay propagation through the dependency forest
- ChangeControlService – Change request creation and approval mutation sets
- TaskService          – Task creation, detail edits, status/progress rules
- MilestoneEvaluator   – Phase status derived from the task list
- ProjectService       – Project creation and initial task seeding
- TradeService         – Trade registration and the default trade catalogue

Design notes
------------
- Business rule violations raise ValueError (or one of the SchedulingError
  subclasses below) with a descriptive message.
- The scheduler never mutates tasks; it produces new dates only.
- Dates are calendar days; a task's duration is end_date - start_date.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from datetime import date, datetime, timedelta, timezone
from typing import Deque, Dict, Iterable, List, Mapping, Optional, Sequence

from model import (
    ChangeRequest,
    DanglingDependency,
    Milestone,
    MilestoneStatus,
    PhaseDefinition,
    Project,
    ProposedUpdate,
    ScheduledDates,
    Task,
    TaskMutation,
    TaskStatus,
    Trade,
)

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class SchedulingError(ValueError):
    """Base class for failures of the scheduling computation."""


class InvalidDelayError(SchedulingError):
    """Raised when a delay is not a positive whole number of days."""

    def __init__(self, delay_days):
        self.delay_days = delay_days
        super().__init__(
            f"Delay must be a positive whole number of days, got {delay_days!r}."
        )


class CyclicDependencyError(SchedulingError):
    """
    Raised when dependency references loop.  `task_id` is the task whose
    dependency closes the cycle and `dependency_id` is what it points at.
    """

    def __init__(self, task_id: uuid.UUID, dependency_id: uuid.UUID):
        self.task_id = task_id
        self.dependency_id = dependency_id
        super().__init__(
            f"Task {task_id} closes a dependency cycle through task {dependency_id}."
        )


class UnknownTaskError(ValueError):
    """Raised when a task id is not part of the graph."""

    def __init__(self, task_id: uuid.UUID):
        self.task_id = task_id
        super().__init__(f"Task {task_id} is not part of this project.")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_dates(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise ValueError("end_date must not be before start_date.")


def _validate_progress(progress: int) -> None:
    if not (0 <= progress <= 100):
        raise ValueError("progress must be between 0 and 100.")


# ---------------------------------------------------------------------------
# TaskGraph
# ---------------------------------------------------------------------------

class TaskGraph:
    """
    Read-only view of one project's dependency forest.

    Tasks are held in a flat arena keyed by id; edges are id references.
    The children index is rebuilt from scratch for every snapshot and
    keeps children in input order.

    Dependencies pointing at tasks missing from the snapshot are recorded
    in `dangling` and the affected task is treated as having no parent.
    """

    def __init__(self, tasks: Iterable[Task]):
        self._tasks: Dict[uuid.UUID, Task] = {}
        self._children: Dict[uuid.UUID, List[uuid.UUID]] = {}
        self.dangling: List[DanglingDependency] = []
        self.project_id: Optional[uuid.UUID] = None

        ordered = list(tasks)
        for task in ordered:
            if self.project_id is None:
                self.project_id = task.project_id
            elif task.project_id != self.project_id:
                raise ValueError(
                    f"Task {task.id} belongs to project {task.project_id}, "
                    f"expected {self.project_id}."
                )
            if task.id in self._tasks:
                raise ValueError(f"Task {task.id} appears more than once.")
            self._tasks[task.id] = task

        for task in ordered:
            if task.dependency is None:
                continue
            if task.dependency not in self._tasks:
                self.dangling.append(DanglingDependency(task.id, task.dependency))
                logger.warning(
                    "Task %s depends on missing task %s; treating it as unparented.",
                    task.id,
                    task.dependency,
                )
                continue
            self._children.setdefault(task.dependency, []).append(task.id)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: uuid.UUID) -> bool:
        return task_id in self._tasks

    @property
    def tasks(self) -> List[Task]:
        return list(self._tasks.values())

    def get(self, task_id: uuid.UUID) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise UnknownTaskError(task_id) from None

    def children_of(self, task_id: uuid.UUID) -> List[Task]:
        """Tasks whose dependency is `task_id`; empty when there are none."""
        return [self._tasks[c] for c in self._children.get(task_id, [])]

    def parent_of(self, task_id: uuid.UUID) -> Optional[Task]:
        """The task `task_id` waits on, or None (no dependency or dangling)."""
        dependency = self.get(task_id).dependency
        if dependency is None:
            return None
        return self._tasks.get(dependency)

    def ancestors(self, task_id: uuid.UUID) -> List[Task]:
        """
        Walk dependencies upward, nearest first.

        The walk is bounded by the number of tasks in the project; looping
        back onto a visited task raises CyclicDependencyError.
        """
        seen = {task_id}
        chain: List[Task] = []
        current_id = task_id
        parent = self.parent_of(task_id)
        while parent is not None:
            if parent.id in seen or len(chain) >= len(self._tasks):
                raise CyclicDependencyError(current_id, parent.id)
            seen.add(parent.id)
            chain.append(parent)
            current_id = parent.id
            parent = self.parent_of(parent.id)
        return chain

    def validate_acyclic(self) -> None:
        """Raise CyclicDependencyError if any task's dependency chain loops."""
        for task_id in self._tasks:
            self.ancestors(task_id)

    def would_create_cycle(
        self, task_id: uuid.UUID, new_dependency_id: uuid.UUID
    ) -> bool:
        """
        True if pointing `task_id` at `new_dependency_id` would close a loop,
        i.e. `task_id` is already upstream of `new_dependency_id`.
        """
        if task_id == new_dependency_id:
            return True
        return any(a.id == task_id for a in self.ancestors(new_dependency_id))


# ---------------------------------------------------------------------------
# CascadeScheduler
# ---------------------------------------------------------------------------

class CascadeScheduler:
    """
    Propagates a delay from a root task to every task downstream of it.

    The root moves by the delay.  Every descendant is then placed on the
    day after its parent's (new) end date.  Each task keeps its original
    length, and tasks outside the root's subtree are left alone.
    """

    def compute(
        self,
        graph: TaskGraph,
        root_task_id: uuid.UUID,
        delay_days: int,
    ) -> Dict[uuid.UUID, ScheduledDates]:
        """
        Return {task_id: ScheduledDates} for the root and all of its
        transitive dependents.

        Raises InvalidDelayError for a non-positive delay, UnknownTaskError
        for an unknown root and CyclicDependencyError if the traversal
        reaches a task twice.
        """
        self.validate_delay(delay_days)
        root = graph.get(root_task_id)

        shift = timedelta(days=delay_days)
        plan: Dict[uuid.UUID, ScheduledDates] = {
            root.id: ScheduledDates(root.start_date + shift, root.end_date + shift)
        }

        visited = {root.id}
        queue: Deque[Task] = deque()
        self._enqueue_children(graph, root.id, visited, queue)

        while queue:
            task = queue.popleft()
            parent = graph.parent_of(task.id)
            if parent.id in plan:
                parent_end = plan[parent.id].end_date
            else:
                parent_end = parent.end_date

            new_start = parent_end + ONE_DAY
            new_end = new_start + timedelta(days=task.duration_days)
            plan[task.id] = ScheduledDates(new_start, new_end)

            self._enqueue_children(graph, task.id, visited, queue)

        logger.info(
            "Cascade from task %s (+%d days) reschedules %d task(s).",
            root.id,
            delay_days,
            len(plan),
        )
        return plan

    @staticmethod
    def validate_delay(delay_days) -> None:
        if isinstance(delay_days, bool) or not isinstance(delay_days, int) or delay_days <= 0:
            raise InvalidDelayError(delay_days)

    @staticmethod
    def _enqueue_children(
        graph: TaskGraph,
        parent_id: uuid.UUID,
        visited: set,
        queue: Deque[Task],
    ) -> None:
        for child in graph.children_of(parent_id):
            if child.id in visited:
                raise CyclicDependencyError(child.id, parent_id)
            visited.add(child.id)
            queue.append(child)


# ---------------------------------------------------------------------------
# ChangeControlService
# ---------------------------------------------------------------------------

class ChangeControlService:
    """
    Builds change requests for reported delays and turns an approved
    request plus its cascade into the mutation batch to commit.
    """

    UNKNOWN_TRADE = "Unknown Trade"
    NO_REASON = "No reason provided."

    @staticmethod
    def requires_approval(status: TaskStatus, delay_days: Optional[int]) -> bool:
        """Only a Delayed status carrying a positive delay goes through approval."""
        return (
            status == TaskStatus.DELAYED
            and isinstance(delay_days, int)
            and not isinstance(delay_days, bool)
            and delay_days > 0
        )

    def create_change_request(
        self,
        project_id: uuid.UUID,
        task_id: uuid.UUID,
        trade_name: Optional[str],
        delay_days: int,
        status: TaskStatus,
        notes: str = "",
        reason: Optional[str] = None,
    ) -> ChangeRequest:
        """Create and return a pending ChangeRequest (unsaved)."""
        CascadeScheduler.validate_delay(delay_days)
        if status != TaskStatus.DELAYED:
            raise ValueError(
                f"Only '{TaskStatus.DELAYED.value}' updates can be proposed as a "
                f"change request, got '{status.value}'."
            )
        return ChangeRequest(
            project_id=project_id,
            task_id=task_id,
            trade_name=trade_name or self.UNKNOWN_TRADE,
            proposed_update=ProposedUpdate(
                delay_duration_in_days=delay_days,
                status=status,
                notes=notes or "",
                delay_reason=reason or self.NO_REASON,
            ),
            created_at=_utcnow(),
        )

    @staticmethod
    def approval_notes(change_request: ChangeRequest) -> str:
        update = change_request.proposed_update
        return (
            f"Delay Approved. Reason: {update.delay_reason}\n"
            f"---\n"
            f"Original Note: {update.notes}"
        )

    def build_approval_mutations(
        self,
        change_request: ChangeRequest,
        graph: TaskGraph,
        plan: Mapping[uuid.UUID, ScheduledDates],
    ) -> List[TaskMutation]:
        """
        One mutation per rescheduled task, root first.  The root also
        receives the request's status and the approval notes.
        """
        root_id = change_request.task_id
        mutations: List[TaskMutation] = []
        for task_id, dates in plan.items():
            mutation = TaskMutation(
                task_id=task_id,
                expected_version=graph.get(task_id).version,
                start_date=dates.start_date,
                end_date=dates.end_date,
            )
            if task_id == root_id:
                mutation.status = change_request.proposed_update.status
                mutation.notes = self.approval_notes(change_request)
            mutations.append(mutation)
        mutations.sort(key=lambda m: m.task_id != root_id)
        return mutations


# ---------------------------------------------------------------------------
# TaskService
# ---------------------------------------------------------------------------

class TaskService:
    """
    Manages individual task lifecycle: creation, detail edits, dependency
    wiring and the status/progress rules applied to every write.
    """

    # --- CRUD ---------------------------------------------------------------

    def create_task(
        self,
        project_id: uuid.UUID,
        trade_id: uuid.UUID,
        start_date: date,
        end_date: date,
        status: TaskStatus = TaskStatus.NOT_STARTED,
        notes: str = "",
        progress: int = 0,
        is_inspection: bool = False,
        material_tracking_link: Optional[str] = None,
        materials_delivered: bool = False,
    ) -> Task:
        """Create and return a new Task (unsaved, without a dependency)."""
        _validate_dates(start_date, end_date)
        progress = self.normalise_progress(status, progress)
        _validate_progress(progress)
        return Task(
            project_id=project_id,
            trade_id=trade_id,
            status=status,
            start_date=start_date,
            end_date=end_date,
            progress=progress,
            notes=notes,
            is_inspection=is_inspection,
            material_tracking_link=material_tracking_link,
            materials_delivered=materials_delivered,
            created_at=_utcnow(),
            updated_at=_utcnow(),
        )

    def update_details(
        self,
        task: Task,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        notes: Optional[str] = None,
        is_inspection: Optional[bool] = None,
        material_tracking_link: Optional[str] = None,
        materials_delivered: Optional[bool] = None,
    ) -> Task:
        """Apply field-level edits that do not go through change control."""
        new_start = start_date if start_date is not None else task.start_date
        new_end = end_date if end_date is not None else task.end_date
        _validate_dates(new_start, new_end)
        task.start_date = new_start
        task.end_date = new_end
        if notes is not None:
            task.notes = notes
        if is_inspection is not None:
            task.is_inspection = is_inspection
        if material_tracking_link is not None:
            task.material_tracking_link = material_tracking_link
        if materials_delivered is not None:
            task.materials_delivered = materials_delivered
        task.updated_at = _utcnow()
        return task

    def set_dependency(
        self,
        task: Task,
        dependency_id: Optional[uuid.UUID],
        graph: TaskGraph,
    ) -> Task:
        """
        Point `task` at a new predecessor, or clear it with None.

        Raises ValueError if:
        - The task would depend on itself.
        - The predecessor is not part of the same project.
        - The new edge would close a dependency cycle.
        """
        if dependency_id is None:
            task.dependency = None
            task.updated_at = _utcnow()
            return task
        if dependency_id == task.id:
            raise ValueError("A task cannot depend on itself.")
        if dependency_id not in graph:
            raise UnknownTaskError(dependency_id)
        if graph.would_create_cycle(task.id, dependency_id):
            raise ValueError(
                "Setting this dependency would create a circular dependency chain."
            )
        task.dependency = dependency_id
        task.updated_at = _utcnow()
        return task

    # --- Status updates -----------------------------------------------------

    @staticmethod
    def normalise_progress(status: Optional[TaskStatus], progress: Optional[int]) -> Optional[int]:
        """Completed forces 100 and Not Started forces 0; anything else passes through."""
        if status == TaskStatus.COMPLETED:
            return 100
        if status == TaskStatus.NOT_STARTED:
            return 0
        return progress

    def build_status_mutation(
        self,
        task: Task,
        status: TaskStatus,
        notes: Optional[str] = None,
        progress: Optional[int] = None,
    ) -> TaskMutation:
        """Mutation for an update that is applied straight away (no approval)."""
        progress = self.normalise_progress(status, progress)
        if progress is not None:
            _validate_progress(progress)
        return TaskMutation(
            task_id=task.id,
            expected_version=task.version,
            status=status,
            notes=notes,
            progress=progress,
        )

    def apply_mutation(self, task: Task, mutation: TaskMutation) -> Task:
        """
        Write the non-None fields of `mutation` onto `task`.
        Validates the resulting task before returning it.
        """
        new_start = mutation.start_date or task.start_date
        new_end = mutation.end_date or task.end_date
        _validate_dates(new_start, new_end)

        new_status = mutation.status or task.status
        new_progress = task.progress if mutation.progress is None else mutation.progress
        new_progress = self.normalise_progress(new_status, new_progress)
        _validate_progress(new_progress)

        task.start_date = new_start
        task.end_date = new_end
        task.status = new_status
        task.progress = new_progress
        if mutation.notes is not None:
            task.notes = mutation.notes
        task.updated_at = _utcnow()
        return task


# ---------------------------------------------------------------------------
# MilestoneEvaluator
# ---------------------------------------------------------------------------

DEFAULT_PHASE_DEFINITIONS: Sequence[PhaseDefinition] = (
    PhaseDefinition("Foundation", ("Foundation",)),
    PhaseDefinition("Framing", ("Framing",)),
    PhaseDefinition(
        "Rough-ins",
        ("Plumbing (Rough-in)", "Electrical (Rough-in)", "HVAC (Rough-in)"),
    ),
    PhaseDefinition("Inspections", ("Municipal Inspector",)),
    PhaseDefinition("Exterior", ("Roofing",)),
    PhaseDefinition("Interior", ("Drywall", "Painting")),
    PhaseDefinition("Final", ()),
)


class MilestoneEvaluator:
    """
    Derives one status per phase from the current task list.

    Stateless: call evaluate() again after every task-list change.
    """

    def __init__(self, definitions: Sequence[PhaseDefinition] = DEFAULT_PHASE_DEFINITIONS):
        self.definitions = list(definitions)

    def evaluate(
        self,
        tasks: Sequence[Task],
        trade_name_lookup: Mapping[uuid.UUID, str],
    ) -> List[Milestone]:
        if not tasks or not trade_name_lookup:
            return [Milestone(d.name, MilestoneStatus.INCOMPLETE) for d in self.definitions]

        phase_tasks = [
            self._phase_tasks(d, tasks, trade_name_lookup) for d in self.definitions
        ]
        milestones = [
            Milestone(d.name, self._phase_status(matched))
            for d, matched in zip(self.definitions, phase_tasks)
        ]
        if not milestones:
            return milestones

        final = milestones[-1]
        preceding_complete = all(
            m.status == MilestoneStatus.COMPLETED for m in milestones[:-1]
        )
        any_in_progress = any(m.status == MilestoneStatus.IN_PROGRESS for m in milestones)

        if not any_in_progress:
            if preceding_complete:
                # A final phase with tasks of its own keeps its computed status
                if not phase_tasks[-1]:
                    final.status = MilestoneStatus.COMPLETED
            else:
                for m in milestones:
                    if m.status == MilestoneStatus.INCOMPLETE:
                        m.status = MilestoneStatus.NEXT
                        break

        if final.status == MilestoneStatus.INCOMPLETE and preceding_complete:
            final.status = MilestoneStatus.NEXT
        return milestones

    @staticmethod
    def _phase_tasks(
        definition: PhaseDefinition,
        tasks: Sequence[Task],
        trade_name_lookup: Mapping[uuid.UUID, str],
    ) -> List[Task]:
        return [
            t for t in tasks
            if trade_name_lookup.get(t.trade_id) in definition.trade_names
        ]

    @staticmethod
    def _phase_status(phase_tasks: Sequence[Task]) -> MilestoneStatus:
        if not phase_tasks:
            return MilestoneStatus.INCOMPLETE
        if all(t.status == TaskStatus.COMPLETED for t in phase_tasks):
            return MilestoneStatus.COMPLETED
        if any(t.status in (TaskStatus.IN_PROGRESS, TaskStatus.DELAYED) for t in phase_tasks):
            return MilestoneStatus.IN_PROGRESS
        return MilestoneStatus.INCOMPLETE


# ---------------------------------------------------------------------------
# ProjectService
# ---------------------------------------------------------------------------

class ProjectService:
    """
    Manages project creation and the tasks a new project starts with.
    """

    def create_project(
        self,
        name: str,
        address: str,
        client: str,
        pm_id: str,
    ) -> Project:
        """Create and return a new Project instance (unsaved)."""
        if not name.strip():
            raise ValueError("Project name must not be empty.")
        return Project(
            name=name,
            address=address,
            client=client,
            pm_id=pm_id,
            created_at=_utcnow(),
            updated_at=_utcnow(),
        )

    def create_initial_tasks(
        self,
        project: Project,
        trade_ids: Sequence[uuid.UUID],
        today: Optional[date] = None,
    ) -> List[Task]:
        """
        One unscheduled, Not Started task per trade, all starting and ending
        today with no dependencies.
        """
        today = today or date.today()
        return [
            Task(
                project_id=project.id,
                trade_id=trade_id,
                status=TaskStatus.NOT_STARTED,
                dependency=None,
                notes="Initial task created for this trade.",
                start_date=today,
                end_date=today,
                progress=0,
                created_at=_utcnow(),
                updated_at=_utcnow(),
            )
            for trade_id in trade_ids
        ]


# ---------------------------------------------------------------------------
# TradeService
# ---------------------------------------------------------------------------

DEFAULT_TRADES: Sequence[dict] = (
    {"name": "Foundation", "contact": "Frank's Concrete", "phone": "555-1001", "email": "frank@concrete.com"},
    {"name": "Framing", "contact": "Frame-Up Bros", "phone": "555-1002", "email": "contact@frameup.com"},
    {"name": "Plumbing (Rough-in)", "contact": "Pipeline Plumbing", "phone": "555-1003", "email": "service@pipeline.com"},
    {"name": "Electrical (Rough-in)", "contact": "Sparky Electric", "phone": "555-1004", "email": "office@sparky.com"},
    {"name": "HVAC (Rough-in)", "contact": "Cool Air Inc.", "phone": "555-1005", "email": "install@coolair.com"},
    {"name": "Roofing", "contact": "Top Tier Roofing", "phone": "555-1006", "email": "quotes@toptier.com"},
    {"name": "Drywall", "contact": "Smooth Finish Drywall", "phone": "555-1007", "email": "jobs@smoothfinish.com"},
    {"name": "Painting", "contact": "Perfect Painters", "phone": "555-1008", "email": "contact@perfectpainters.com"},
    {"name": "Municipal Inspector", "contact": "City Hall", "phone": "555-CITY", "email": "inspections@city.gov"},
)


class TradeService:
    """Manages trade registration."""

    def create_trade(
        self,
        name: str,
        contact: str,
        phone: str,
        email: str,
    ) -> Trade:
        """Create and return a new Trade (unsaved)."""
        if not name.strip():
            raise ValueError("Trade name must not be empty.")
        if email and "@" not in email:
            raise ValueError(f"'{email}' does not appear to be a valid email address.")
        return Trade(name=name, contact=contact, phone=phone, email=email)

    def default_trades(self) -> List[Trade]:
        return [self.create_trade(**spec) for spec in DEFAULT_TRADES]

    @staticmethod
    def name_lookup(trades: Iterable[Trade]) -> Dict[uuid.UUID, str]:
        return {t.id: t.name for t in trades}
