"""
application.py

Application layer for the Construction Schedule & Delay Cascade service.

Overview
--------
The application layer sits between the presentation layer (API) and the
domain / service layer.  It is responsible for:

  1. Defining clean output DTOs (dataclasses) that carry only the data the
     presentation layer needs.  No raw domain objects are leaked upward.
  2. Declaring abstract Repository interfaces so that the application layer
     remains fully persistence-agnostic (implementations live in
     infrastructure.py).
  3. Declaring the UnitOfWork abstraction.  A commit writes every staged
     change or none of them.
  4. Owning the two stateful collaborators of the scheduling engine:
     UpdateApplier (atomic batch commit of task mutations) and
     ChangeRequestWorkflow (pending delay proposals awaiting approval).
  5. Implementing Use Case handlers, one class per user-facing operation.

Structure
---------
DTOs
    ProjectDTO, TradeDTO, TaskDTO, ChangeRequestDTO, MilestoneDTO,
    ScheduledTaskDTO, CascadePreviewDTO, TaskUpdateOutcomeDTO,
    ApprovalResultDTO

Repository interfaces
    AbstractProjectRepository
    AbstractTradeRepository
    AbstractTaskRepository

Unit of Work
    AbstractUnitOfWork

Collaborators
    UpdateApplier
    ChangeRequestWorkflow

Use Cases
    --- Trades ---
    CreateTradeUseCase, ListTradesUseCase, GetTradeUseCase,
    SeedDefaultTradesUseCase

    --- Projects ---
    CreateProjectUseCase, ListProjectsUseCase, GetProjectUseCase

    --- Tasks ---
    AddTaskUseCase, ListTasksUseCase, GetTaskUseCase,
    UpdateTaskDetailsUseCase, SetTaskDependencyUseCase

    --- Scheduling & change control ---
    ProposeOrApplyUseCase
    PreviewCascadeUseCase
    ListChangeRequestsUseCase, GetChangeRequestUseCase
    ApproveChangeRequestUseCase, DenyChangeRequestUseCase

    --- Milestones ---
    ComputeMilestonesUseCase

Design notes
------------
- Errors bubble up as ApplicationError (business), NotFoundError,
  CyclicDependency (loop found while cascading),
  CommitFailure / ConcurrencyConflict (store) or ValueError (validation).
- A failed commit never consumes a change request: it stays pending and
  the error is raised to the caller.
- Overlapping approvals are serialised per project by the workflow and
  additionally guarded by the task version check performed on commit.
"""

from __future__ import annotations

import abc
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Sequence

from model import (
    ChangeRequest,
    DanglingDependency,
    Milestone,
    Project,
    ScheduledDates,
    Task,
    TaskMutation,
    TaskStatus,
    Trade,
)
from service import (
    CascadeScheduler,
    ChangeControlService,
    CyclicDependencyError,
    MilestoneEvaluator,
    ProjectService,
    TaskGraph,
    TaskService,
    TradeService,
    UnknownTaskError,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ApplicationError(Exception):
    """Raised when a use case cannot complete due to a business rule violation."""


class NotFoundError(ApplicationError):
    """Raised when a requested entity does not exist."""


class CyclicDependency(ApplicationError):
    """Raised when a cascade runs into a dependency loop in stored tasks."""

    def __init__(self, message: str, task_id: uuid.UUID, dependency_id: uuid.UUID):
        super().__init__(message)
        self.task_id = task_id
        self.dependency_id = dependency_id


class CommitFailure(ApplicationError):
    """Raised when the store rejects a batch; nothing from the batch was written."""


class ConcurrencyConflict(CommitFailure):
    """Raised when a task changed between the snapshot and the commit."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fmt(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO-8601 UTC string, or None."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _fmt_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


# ===========================================================================
# DTO DEFINITIONS
# ===========================================================================

@dataclass
class ProjectDTO:
    id: str
    name: str
    address: str
    client: str
    pm_id: str
    created_at: str
    updated_at: str


@dataclass
class TradeDTO:
    id: str
    name: str
    contact: str
    phone: str
    email: str


@dataclass
class TaskDTO:
    id: str
    project_id: str
    trade_id: str
    status: str
    dependency: Optional[str]
    start_date: str
    end_date: str
    duration_days: int
    progress: int
    notes: str
    is_inspection: bool
    material_tracking_link: Optional[str]
    materials_delivered: bool
    version: int
    updated_at: str


@dataclass
class ProposedUpdateDTO:
    delay_duration_in_days: int
    status: str
    notes: str
    delay_reason: str


@dataclass
class ChangeRequestDTO:
    id: str
    project_id: str
    task_id: str
    trade_name: str
    proposed_update: ProposedUpdateDTO
    created_at: str


@dataclass
class MilestoneDTO:
    name: str
    status: str


@dataclass
class ScheduledTaskDTO:
    task_id: str
    start_date: str
    end_date: str


@dataclass
class DanglingDependencyDTO:
    task_id: str
    missing_dependency_id: str


@dataclass
class CascadePreviewDTO:
    """Dates a delay would produce, without anything being written."""
    project_id: str
    root_task_id: str
    delay_days: int
    tasks: List[ScheduledTaskDTO]
    dangling_dependencies: List[DanglingDependencyDTO]


@dataclass
class TaskUpdateOutcomeDTO:
    """
    Result of proposeOrApply: either the task was updated straight away
    (`outcome == "applied"`) or a change request now awaits approval.
    """
    outcome: str
    task: Optional[TaskDTO] = None
    change_request: Optional[ChangeRequestDTO] = None


@dataclass
class ApprovalResultDTO:
    change_request: ChangeRequestDTO
    rescheduled: List[ScheduledTaskDTO]
    tasks: List[TaskDTO]
    dangling_dependencies: List[DanglingDependencyDTO]


# ===========================================================================
# DTO ASSEMBLERS
# ===========================================================================

class _Assembler:
    """Converts domain model instances into DTOs."""

    @staticmethod
    def project(p: Project) -> ProjectDTO:
        return ProjectDTO(
            id=str(p.id),
            name=p.name,
            address=p.address,
            client=p.client,
            pm_id=p.pm_id,
            created_at=_fmt(p.created_at),
            updated_at=_fmt(p.updated_at),
        )

    @staticmethod
    def trade(t: Trade) -> TradeDTO:
        return TradeDTO(
            id=str(t.id),
            name=t.name,
            contact=t.contact,
            phone=t.phone,
            email=t.email,
        )

    @staticmethod
    def task(t: Task) -> TaskDTO:
        return TaskDTO(
            id=str(t.id),
            project_id=str(t.project_id),
            trade_id=str(t.trade_id),
            status=t.status.value,
            dependency=str(t.dependency) if t.dependency else None,
            start_date=_fmt_date(t.start_date),
            end_date=_fmt_date(t.end_date),
            duration_days=t.duration_days,
            progress=t.progress,
            notes=t.notes,
            is_inspection=t.is_inspection,
            material_tracking_link=t.material_tracking_link,
            materials_delivered=t.materials_delivered,
            version=t.version,
            updated_at=_fmt(t.updated_at),
        )

    @staticmethod
    def change_request(cr: ChangeRequest) -> ChangeRequestDTO:
        update = cr.proposed_update
        return ChangeRequestDTO(
            id=str(cr.id),
            project_id=str(cr.project_id),
            task_id=str(cr.task_id),
            trade_name=cr.trade_name,
            proposed_update=ProposedUpdateDTO(
                delay_duration_in_days=update.delay_duration_in_days,
                status=update.status.value,
                notes=update.notes,
                delay_reason=update.delay_reason,
            ),
            created_at=_fmt(cr.created_at),
        )

    @staticmethod
    def milestone(m: Milestone) -> MilestoneDTO:
        return MilestoneDTO(name=m.name, status=m.status.value)

    @staticmethod
    def schedule(plan: Dict[uuid.UUID, ScheduledDates]) -> List[ScheduledTaskDTO]:
        return [
            ScheduledTaskDTO(
                task_id=str(task_id),
                start_date=_fmt_date(dates.start_date),
                end_date=_fmt_date(dates.end_date),
            )
            for task_id, dates in plan.items()
        ]

    @staticmethod
    def dangling(items: Sequence[DanglingDependency]) -> List[DanglingDependencyDTO]:
        return [
            DanglingDependencyDTO(
                task_id=str(d.task_id),
                missing_dependency_id=str(d.missing_dependency_id),
            )
            for d in items
        ]


# ===========================================================================
# REPOSITORY INTERFACES
# ===========================================================================

class AbstractProjectRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, project_id: uuid.UUID) -> Optional[Project]: ...
    @abc.abstractmethod
    def list_all(self) -> List[Project]: ...
    @abc.abstractmethod
    def save(self, project: Project) -> None: ...


class AbstractTradeRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, trade_id: uuid.UUID) -> Optional[Trade]: ...
    @abc.abstractmethod
    def list_all(self) -> List[Trade]: ...
    @abc.abstractmethod
    def save(self, trade: Trade) -> None: ...


class AbstractTaskRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, task_id: uuid.UUID) -> Optional[Task]: ...
    @abc.abstractmethod
    def list_for_project(self, project_id: uuid.UUID) -> List[Task]: ...
    @abc.abstractmethod
    def save(self, task: Task) -> None: ...


# ===========================================================================
# UNIT OF WORK
# ===========================================================================

class AbstractUnitOfWork(abc.ABC):
    """
    Groups all repositories under a single transactional boundary.
    Use as a context manager:

        with uow:
            uow.tasks.save(task)
            uow.commit()

    commit() must write every staged change or none of them, raising
    CommitFailure (or ConcurrencyConflict when a saved task's version no
    longer matches the store) in the latter case.
    """
    projects: AbstractProjectRepository
    trades: AbstractTradeRepository
    tasks: AbstractTaskRepository

    def __enter__(self) -> "AbstractUnitOfWork":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        else:
            self.commit()

    @abc.abstractmethod
    def commit(self) -> None: ...

    @abc.abstractmethod
    def rollback(self) -> None: ...


# ===========================================================================
# SERVICE SINGLETONS (shared across use cases)
# ===========================================================================

_project_svc = ProjectService()
_trade_svc = TradeService()
_task_svc = TaskService()
_change_svc = ChangeControlService()
_scheduler = CascadeScheduler()
_milestone_evaluator = MilestoneEvaluator()


# ===========================================================================
# USE CASE HELPERS
# ===========================================================================

def _get_project_or_raise(uow: AbstractUnitOfWork, project_id: uuid.UUID) -> Project:
    project = uow.projects.get(project_id)
    if project is None:
        raise NotFoundError(f"Project {project_id} not found.")
    return project


def _get_trade_or_raise(uow: AbstractUnitOfWork, trade_id: uuid.UUID) -> Trade:
    trade = uow.trades.get(trade_id)
    if trade is None:
        raise NotFoundError(f"Trade {trade_id} not found.")
    return trade


def _get_task_or_raise(
    uow: AbstractUnitOfWork, project_id: uuid.UUID, task_id: uuid.UUID
) -> Task:
    task = uow.tasks.get(task_id)
    if task is None or task.project_id != project_id:
        raise NotFoundError(f"Task {task_id} not found in project {project_id}.")
    return task


def _project_graph(uow: AbstractUnitOfWork, project_id: uuid.UUID) -> TaskGraph:
    try:
        return TaskGraph(uow.tasks.list_for_project(project_id))
    except ValueError as exc:
        raise ApplicationError(str(exc)) from exc


def _compute_cascade(
    graph: TaskGraph, root_task_id: uuid.UUID, delay_days: int
) -> Dict[uuid.UUID, ScheduledDates]:
    try:
        return _scheduler.compute(graph, root_task_id, delay_days)
    except UnknownTaskError as exc:
        raise NotFoundError(str(exc)) from exc
    except CyclicDependencyError as exc:
        raise CyclicDependency(str(exc), exc.task_id, exc.dependency_id) from exc
    except ValueError as exc:
        raise ApplicationError(str(exc)) from exc


# ===========================================================================
# UPDATE APPLIER
# ===========================================================================

class UpdateApplier:
    """
    Commits a batch of task mutations atomically, or rejects all of them.

    Every mutation is checked against the task's current version before it
    is applied; the unit of work checks versions again at commit time so a
    write that lands in between is also caught.
    """

    def __init__(self, uow: AbstractUnitOfWork):
        self.uow = uow

    def apply(
        self, project_id: uuid.UUID, mutations: Sequence[TaskMutation]
    ) -> List[Task]:
        with self.uow:
            updated: List[Task] = []
            for mutation in mutations:
                task = self.uow.tasks.get(mutation.task_id)
                if task is None or task.project_id != project_id:
                    raise CommitFailure(
                        f"Task {mutation.task_id} no longer exists in project {project_id}."
                    )
                if (
                    mutation.expected_version is not None
                    and task.version != mutation.expected_version
                ):
                    raise ConcurrencyConflict(
                        f"Task {task.id} was modified concurrently "
                        f"(expected version {mutation.expected_version}, found {task.version})."
                    )
                try:
                    _task_svc.apply_mutation(task, mutation)
                except ValueError as exc:
                    raise ApplicationError(str(exc)) from exc
                self.uow.tasks.save(task)
                updated.append(task)
            self.uow.commit()
        logger.info(
            "Committed %d task mutation(s) for project %s.", len(updated), project_id
        )
        return updated


# ===========================================================================
# CHANGE REQUEST WORKFLOW
# ===========================================================================

@dataclass
class ApprovalOutcome:
    change_request: ChangeRequest
    plan: Dict[uuid.UUID, ScheduledDates]
    tasks: List[Task]
    dangling: List[DanglingDependency] = field(default_factory=list)


class ChangeRequestWorkflow:
    """
    Holds delay proposals until a human approves or denies them.

    State machine:  Pending → Applied (request removed)
                    Pending → Denied  (request removed)

    Pending requests live on the instance, keyed by project, so separate
    workflows (per tenant, per test) never share state.  A newer proposal
    for the same task replaces the pending one.  All transitions for a
    project are serialised by a per-project lock.
    """

    def __init__(self, scheduler: Optional[CascadeScheduler] = None):
        self._scheduler = scheduler or _scheduler
        self._pending: Dict[uuid.UUID, Dict[uuid.UUID, ChangeRequest]] = {}
        self._locks: Dict[uuid.UUID, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, project_id: uuid.UUID) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(project_id, threading.Lock())

    def _discard(self, project_id: uuid.UUID, request_id: uuid.UUID) -> Optional[ChangeRequest]:
        """Remove a pending request.  Called with the project lock held."""
        pending = self._pending.get(project_id)
        if not pending:
            return None
        removed = pending.pop(request_id, None)
        if not pending:
            del self._pending[project_id]
        return removed

    # --- Queries ------------------------------------------------------------

    def list_pending(self, project_id: uuid.UUID) -> List[ChangeRequest]:
        with self._lock_for(project_id):
            requests = list(self._pending.get(project_id, {}).values())
        return sorted(requests, key=lambda cr: cr.created_at)

    def get(self, project_id: uuid.UUID, request_id: uuid.UUID) -> ChangeRequest:
        with self._lock_for(project_id):
            cr = self._pending.get(project_id, {}).get(request_id)
        if cr is None:
            raise NotFoundError(f"ChangeRequest {request_id} not found.")
        return cr

    # --- Transitions --------------------------------------------------------

    def propose(
        self,
        project_id: uuid.UUID,
        task_id: uuid.UUID,
        trade_name: Optional[str],
        delay_days: int,
        status: TaskStatus,
        notes: str = "",
        reason: Optional[str] = None,
    ) -> ChangeRequest:
        """
        Store a new pending request.  Anything other than a Delayed status
        with a positive delay is rejected; such updates are applied
        directly by the caller instead.
        """
        try:
            cr = _change_svc.create_change_request(
                project_id=project_id,
                task_id=task_id,
                trade_name=trade_name,
                delay_days=delay_days,
                status=status,
                notes=notes,
                reason=reason,
            )
        except ValueError as exc:
            raise ApplicationError(str(exc)) from exc

        with self._lock_for(project_id):
            pending = self._pending.setdefault(project_id, {})
            for existing in list(pending.values()):
                if existing.task_id == task_id:
                    del pending[existing.id]
                    logger.info(
                        "ChangeRequest %s for task %s replaced by %s.",
                        existing.id,
                        task_id,
                        cr.id,
                    )
            pending[cr.id] = cr

        logger.info(
            "ChangeRequest %s proposed: task %s delayed %d day(s).",
            cr.id,
            task_id,
            delay_days,
        )
        return cr

    def approve(self, request: ChangeRequest, uow: AbstractUnitOfWork) -> ApprovalOutcome:
        """
        Compute the cascade for `request` from a fresh snapshot and commit
        it in one batch.  The request is removed only after the commit
        succeeds; on any failure it stays pending and the error propagates.
        """
        project_id = request.project_id
        with self._lock_for(project_id):
            pending = self._pending.get(project_id, {})
            cr = pending.get(request.id)
            if cr is None:
                raise NotFoundError(f"ChangeRequest {request.id} is not pending.")

            with uow:
                graph = _project_graph(uow, project_id)
            plan = _compute_cascade(
                graph, cr.task_id, cr.proposed_update.delay_duration_in_days
            )
            mutations = _change_svc.build_approval_mutations(cr, graph, plan)

            try:
                tasks = UpdateApplier(uow).apply(project_id, mutations)
            except CommitFailure as exc:
                logger.warning(
                    "ChangeRequest %s could not be applied and stays pending: %s",
                    cr.id,
                    exc,
                )
                raise

            self._discard(project_id, cr.id)

        logger.info(
            "ChangeRequest %s approved; %d task(s) rescheduled.", cr.id, len(plan)
        )
        return ApprovalOutcome(
            change_request=cr, plan=plan, tasks=tasks, dangling=list(graph.dangling)
        )

    def deny(self, request_id: uuid.UUID, project_id: uuid.UUID) -> bool:
        """
        Discard a pending request.  Returns False, without raising, when the
        request is already gone (denied twice, or approved).
        """
        with self._lock_for(project_id):
            removed = self._discard(project_id, request_id)
        if removed is None:
            logger.debug("Deny of ChangeRequest %s ignored: not pending.", request_id)
            return False
        logger.info("ChangeRequest %s denied.", request_id)
        return True


# ===========================================================================
# USE CASES — TRADES
# ===========================================================================

@dataclass
class CreateTradeCommand:
    name: str
    contact: str
    phone: str
    email: str


class CreateTradeUseCase:
    def execute(self, cmd: CreateTradeCommand, uow: AbstractUnitOfWork) -> TradeDTO:
        with uow:
            try:
                trade = _trade_svc.create_trade(
                    name=cmd.name,
                    contact=cmd.contact,
                    phone=cmd.phone,
                    email=cmd.email,
                )
            except ValueError as exc:
                raise ApplicationError(str(exc)) from exc
            uow.trades.save(trade)
            uow.commit()
            return _Assembler.trade(trade)


class ListTradesUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> List[TradeDTO]:
        with uow:
            trades = sorted(uow.trades.list_all(), key=lambda t: t.name)
            return [_Assembler.trade(t) for t in trades]


class GetTradeUseCase:
    def execute(self, trade_id: uuid.UUID, uow: AbstractUnitOfWork) -> TradeDTO:
        with uow:
            return _Assembler.trade(_get_trade_or_raise(uow, trade_id))


class SeedDefaultTradesUseCase:
    """Register the standard trade catalogue if no trades exist yet."""

    def execute(self, uow: AbstractUnitOfWork) -> int:
        with uow:
            if uow.trades.list_all():
                return 0
            trades = _trade_svc.default_trades()
            for trade in trades:
                uow.trades.save(trade)
            uow.commit()
            logger.info("Seeded %d default trades.", len(trades))
            return len(trades)


# ===========================================================================
# USE CASES — PROJECTS
# ===========================================================================

@dataclass
class CreateProjectCommand:
    name: str
    address: str
    client: str
    pm_id: str
    trade_ids: List[uuid.UUID] = field(default_factory=list)


class CreateProjectUseCase:
    """
    Create a project together with one Not Started task per selected
    trade, in a single commit.
    """

    def execute(self, cmd: CreateProjectCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        with uow:
            for trade_id in cmd.trade_ids:
                _get_trade_or_raise(uow, trade_id)
            try:
                project = _project_svc.create_project(
                    name=cmd.name,
                    address=cmd.address,
                    client=cmd.client,
                    pm_id=cmd.pm_id,
                )
            except ValueError as exc:
                raise ApplicationError(str(exc)) from exc
            uow.projects.save(project)
            for task in _project_svc.create_initial_tasks(project, cmd.trade_ids):
                uow.tasks.save(task)
            uow.commit()
            return _Assembler.project(project)


class ListProjectsUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> List[ProjectDTO]:
        with uow:
            projects = sorted(uow.projects.list_all(), key=lambda p: p.created_at)
            return [_Assembler.project(p) for p in projects]


class GetProjectUseCase:
    def execute(self, project_id: uuid.UUID, uow: AbstractUnitOfWork) -> ProjectDTO:
        with uow:
            return _Assembler.project(_get_project_or_raise(uow, project_id))


# ===========================================================================
# USE CASES — TASKS
# ===========================================================================

@dataclass
class AddTaskCommand:
    project_id: uuid.UUID
    trade_id: uuid.UUID
    start_date: date
    end_date: date
    status: TaskStatus = TaskStatus.NOT_STARTED
    dependency: Optional[uuid.UUID] = None
    notes: str = ""
    progress: int = 0
    is_inspection: bool = False
    material_tracking_link: Optional[str] = None
    materials_delivered: bool = False


class AddTaskUseCase:
    def execute(self, cmd: AddTaskCommand, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            _get_project_or_raise(uow, cmd.project_id)
            _get_trade_or_raise(uow, cmd.trade_id)
            try:
                task = _task_svc.create_task(
                    project_id=cmd.project_id,
                    trade_id=cmd.trade_id,
                    start_date=cmd.start_date,
                    end_date=cmd.end_date,
                    status=cmd.status,
                    notes=cmd.notes,
                    progress=cmd.progress,
                    is_inspection=cmd.is_inspection,
                    material_tracking_link=cmd.material_tracking_link,
                    materials_delivered=cmd.materials_delivered,
                )
                if cmd.dependency is not None:
                    graph = _project_graph(uow, cmd.project_id)
                    _task_svc.set_dependency(task, cmd.dependency, graph)
            except UnknownTaskError as exc:
                raise NotFoundError(str(exc)) from exc
            except ValueError as exc:
                raise ApplicationError(str(exc)) from exc
            uow.tasks.save(task)
            uow.commit()
            return _Assembler.task(task)


class ListTasksUseCase:
    def execute(self, project_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[TaskDTO]:
        with uow:
            _get_project_or_raise(uow, project_id)
            tasks = sorted(
                uow.tasks.list_for_project(project_id),
                key=lambda t: (t.start_date, t.end_date),
            )
            return [_Assembler.task(t) for t in tasks]


class GetTaskUseCase:
    def execute(
        self, project_id: uuid.UUID, task_id: uuid.UUID, uow: AbstractUnitOfWork
    ) -> TaskDTO:
        with uow:
            return _Assembler.task(_get_task_or_raise(uow, project_id, task_id))


@dataclass
class UpdateTaskDetailsCommand:
    project_id: uuid.UUID
    task_id: uuid.UUID
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None
    is_inspection: Optional[bool] = None
    material_tracking_link: Optional[str] = None
    materials_delivered: Optional[bool] = None


class UpdateTaskDetailsUseCase:
    """Edit descriptive fields and dates of a task outside change control."""

    def execute(self, cmd: UpdateTaskDetailsCommand, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            task = _get_task_or_raise(uow, cmd.project_id, cmd.task_id)
            try:
                task = _task_svc.update_details(
                    task,
                    start_date=cmd.start_date,
                    end_date=cmd.end_date,
                    notes=cmd.notes,
                    is_inspection=cmd.is_inspection,
                    material_tracking_link=cmd.material_tracking_link,
                    materials_delivered=cmd.materials_delivered,
                )
            except ValueError as exc:
                raise ApplicationError(str(exc)) from exc
            uow.tasks.save(task)
            uow.commit()
            return _Assembler.task(task)


@dataclass
class SetTaskDependencyCommand:
    project_id: uuid.UUID
    task_id: uuid.UUID
    dependency_id: Optional[uuid.UUID]


class SetTaskDependencyUseCase:
    def execute(self, cmd: SetTaskDependencyCommand, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            task = _get_task_or_raise(uow, cmd.project_id, cmd.task_id)
            graph = _project_graph(uow, cmd.project_id)
            try:
                task = _task_svc.set_dependency(task, cmd.dependency_id, graph)
            except UnknownTaskError as exc:
                raise NotFoundError(str(exc)) from exc
            except ValueError as exc:
                raise ApplicationError(str(exc)) from exc
            uow.tasks.save(task)
            uow.commit()
            return _Assembler.task(task)


# ===========================================================================
# USE CASES — SCHEDULING & CHANGE CONTROL
# ===========================================================================

@dataclass
class TaskUpdateCommand:
    """A structured status update, e.g. from the dashboard or an SMS parser."""
    project_id: uuid.UUID
    task_id: uuid.UUID
    status: TaskStatus
    notes: Optional[str] = None
    progress: Optional[int] = None
    delay_duration_in_days: Optional[int] = None
    delay_reason: Optional[str] = None


class ProposeOrApplyUseCase:
    """
    Route an inbound update.  A Delayed status with a positive delay
    becomes a pending change request; everything else is applied at once.
    """

    def __init__(self, workflow: ChangeRequestWorkflow):
        self.workflow = workflow

    def execute(self, cmd: TaskUpdateCommand, uow: AbstractUnitOfWork) -> TaskUpdateOutcomeDTO:
        with uow:
            _get_project_or_raise(uow, cmd.project_id)
            task = _get_task_or_raise(uow, cmd.project_id, cmd.task_id)

            if _change_svc.requires_approval(cmd.status, cmd.delay_duration_in_days):
                trade = uow.trades.get(task.trade_id)
                cr = self.workflow.propose(
                    project_id=cmd.project_id,
                    task_id=cmd.task_id,
                    trade_name=trade.name if trade else None,
                    delay_days=cmd.delay_duration_in_days,
                    status=cmd.status,
                    notes=cmd.notes or "",
                    reason=cmd.delay_reason,
                )
                return TaskUpdateOutcomeDTO(
                    outcome="change_request_created",
                    change_request=_Assembler.change_request(cr),
                )

            try:
                mutation = _task_svc.build_status_mutation(
                    task, cmd.status, notes=cmd.notes, progress=cmd.progress
                )
            except ValueError as exc:
                raise ApplicationError(str(exc)) from exc

        updated = UpdateApplier(uow).apply(cmd.project_id, [mutation])
        return TaskUpdateOutcomeDTO(outcome="applied", task=_Assembler.task(updated[0]))


class PreviewCascadeUseCase:
    """Compute the dates a delay would produce, without committing anything."""

    def execute(
        self,
        project_id: uuid.UUID,
        task_id: uuid.UUID,
        delay_days: int,
        uow: AbstractUnitOfWork,
    ) -> CascadePreviewDTO:
        with uow:
            _get_project_or_raise(uow, project_id)
            graph = _project_graph(uow, project_id)
        plan = _compute_cascade(graph, task_id, delay_days)
        return CascadePreviewDTO(
            project_id=str(project_id),
            root_task_id=str(task_id),
            delay_days=delay_days,
            tasks=_Assembler.schedule(plan),
            dangling_dependencies=_Assembler.dangling(graph.dangling),
        )


class ListChangeRequestsUseCase:
    def __init__(self, workflow: ChangeRequestWorkflow):
        self.workflow = workflow

    def execute(self, project_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[ChangeRequestDTO]:
        with uow:
            _get_project_or_raise(uow, project_id)
        return [_Assembler.change_request(cr) for cr in self.workflow.list_pending(project_id)]


class GetChangeRequestUseCase:
    def __init__(self, workflow: ChangeRequestWorkflow):
        self.workflow = workflow

    def execute(self, project_id: uuid.UUID, cr_id: uuid.UUID) -> ChangeRequestDTO:
        return _Assembler.change_request(self.workflow.get(project_id, cr_id))


class ApproveChangeRequestUseCase:
    def __init__(self, workflow: ChangeRequestWorkflow):
        self.workflow = workflow

    def execute(
        self, project_id: uuid.UUID, cr_id: uuid.UUID, uow: AbstractUnitOfWork
    ) -> ApprovalResultDTO:
        cr = self.workflow.get(project_id, cr_id)
        outcome = self.workflow.approve(cr, uow)
        return ApprovalResultDTO(
            change_request=_Assembler.change_request(outcome.change_request),
            rescheduled=_Assembler.schedule(outcome.plan),
            tasks=[_Assembler.task(t) for t in outcome.tasks],
            dangling_dependencies=_Assembler.dangling(outcome.dangling),
        )


class DenyChangeRequestUseCase:
    def __init__(self, workflow: ChangeRequestWorkflow):
        self.workflow = workflow

    def execute(self, project_id: uuid.UUID, cr_id: uuid.UUID) -> bool:
        return self.workflow.deny(cr_id, project_id)


# ===========================================================================
# USE CASES — MILESTONES
# ===========================================================================

class ComputeMilestonesUseCase:
    def execute(self, project_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[MilestoneDTO]:
        with uow:
            _get_project_or_raise(uow, project_id)
            tasks = uow.tasks.list_for_project(project_id)
            lookup = _trade_svc.name_lookup(uow.trades.list_all())
        return [_Assembler.milestone(m) for m in _milestone_evaluator.evaluate(tasks, lookup)]
