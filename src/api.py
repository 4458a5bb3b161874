"""
api.py

REST API layer for the Construction Schedule & Delay Cascade service.

Framework : FastAPI
Auth      : none; user and role management live outside this service.

Structure
---------
  Routers (all prefixed under /api/v1)
  ├── /trades                              — trade catalogue
  └── /projects                            — project creation and lookup
      ├── /{project_id}/tasks              — task CRUD and dependency wiring
      │   ├── /{task_id}/updates           — inbound status updates (proposeOrApply)
      │   └── /{task_id}/cascade-preview   — dry-run of a delay cascade
      ├── /{project_id}/change-requests    — pending delays: approve / deny
      └── /{project_id}/milestones         — phase progress

Error handling
--------------
  NotFoundError       → 404
  ConcurrencyConflict → 409
  CommitFailure       → 503
  ApplicationError    → 422
  ValueError          → 422
  Unhandled           → 500 (FastAPI default)

Response envelope
-----------------
  Success  : { "data": <payload> }
  Error    : { "detail": "<message>" }

Running
-------
  uvicorn api:app --reload
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Path, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi_mcp import FastApiMCP
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, field_validator

import config
from application import (
    AbstractUnitOfWork,
    AddTaskCommand,
    AddTaskUseCase,
    ApplicationError,
    ApproveChangeRequestUseCase,
    ChangeRequestWorkflow,
    CommitFailure,
    ComputeMilestonesUseCase,
    ConcurrencyConflict,
    CreateProjectCommand,
    CreateProjectUseCase,
    CreateTradeCommand,
    CreateTradeUseCase,
    DenyChangeRequestUseCase,
    GetChangeRequestUseCase,
    GetProjectUseCase,
    GetTaskUseCase,
    GetTradeUseCase,
    ListChangeRequestsUseCase,
    ListProjectsUseCase,
    ListTasksUseCase,
    ListTradesUseCase,
    NotFoundError,
    PreviewCascadeUseCase,
    ProposeOrApplyUseCase,
    SeedDefaultTradesUseCase,
    SetTaskDependencyCommand,
    SetTaskDependencyUseCase,
    TaskUpdateCommand,
    UpdateTaskDetailsCommand,
    UpdateTaskDetailsUseCase,
)
from infrastructure import InMemoryUnitOfWork
from model import TaskStatus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# App bootstrap
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Construction Schedule & Delay Cascade API",
    version="1.0.0",
    description=(
        "REST API for construction project schedules: trades, tasks and their "
        "dependencies, delay change requests with cascading rescheduling, and "
        "phase milestones."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Pending change requests belong to this app instance
app.state.workflow = ChangeRequestWorkflow()


@app.on_event("startup")
def seed_default_trades():
    """
    Register the standard trade catalogue so projects can be created
    straight away against a fresh in-memory store.
    """
    if not config.SEED_DEFAULT_TRADES:
        return
    uow_factory = app.dependency_overrides.get(get_uow, get_uow)
    seeded = SeedDefaultTradesUseCase().execute(uow_factory())
    if seeded:
        logger.info("[startup] %d default trades seeded.", seeded)


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------

@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConcurrencyConflict)
async def conflict_handler(request, exc: ConcurrencyConflict):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(CommitFailure)
async def commit_failure_handler(request, exc: CommitFailure):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(ApplicationError)
async def application_error_handler(request, exc: ApplicationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_uow() -> AbstractUnitOfWork:
    """Returns the in-memory Unit of Work (no database required)."""
    return InMemoryUnitOfWork()


def get_workflow(request: Request) -> ChangeRequestWorkflow:
    return request.app.state.workflow


# ---------------------------------------------------------------------------
# Envelope helper
# ---------------------------------------------------------------------------

def _ok(data: Any) -> Dict:
    """Wrap a DTO or list of DTOs in the standard success envelope."""
    if dataclasses.is_dataclass(data):
        return {"data": dataclasses.asdict(data)}
    if isinstance(data, list):
        return {
            "data": [
                dataclasses.asdict(item) if dataclasses.is_dataclass(item) else item
                for item in data
            ]
        }
    return {"data": data}


def _validate_status(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    valid = {s.value for s in TaskStatus}
    if v not in valid:
        raise ValueError(f"status must be one of: {sorted(valid)}")
    return v


# ===========================================================================
# REQUEST BODY SCHEMAS  (Pydantic v2)
# ===========================================================================

class CreateTradeRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, description="Trade type, e.g. 'Framing'")
    contact: str = Field(default="", max_length=200)
    phone: str = Field(default="", max_length=50)
    email: EmailStr


class CreateProjectRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    address: str = Field(default="")
    client: str = Field(default="")
    pm_id: str = Field(default="unassigned")
    trade_ids: List[uuid.UUID] = Field(
        default_factory=list,
        description="One Not Started task is created for each trade.",
    )


class AddTaskRequest(BaseModel):
    trade_id: uuid.UUID
    start_date: date
    end_date: date
    status: str = Field(default=TaskStatus.NOT_STARTED.value)
    dependency: Optional[uuid.UUID] = None
    notes: str = Field(default="")
    progress: int = Field(default=0, ge=0, le=100)
    is_inspection: bool = False
    material_tracking_link: Optional[str] = None
    materials_delivered: bool = False

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        return _validate_status(v)


class UpdateTaskRequest(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = None
    is_inspection: Optional[bool] = None
    material_tracking_link: Optional[str] = None
    materials_delivered: Optional[bool] = None


class SetDependencyRequest(BaseModel):
    dependency_id: Optional[uuid.UUID] = Field(
        default=None, description="Predecessor task id, or null to clear."
    )


class TaskUpdateRequest(BaseModel):
    """Structured update as produced by the dashboard or a message parser."""
    status: str = Field(
        ...,
        description="One of: Not Started, In Progress, Delayed, Completed, Job Site Ready",
    )
    notes: Optional[str] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    delay_duration_in_days: Optional[int] = Field(
        default=None,
        description="With status 'Delayed' and a positive value, creates a change request.",
    )
    delay_reason: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        return _validate_status(v)


# ===========================================================================
# ROUTERS
# ===========================================================================

api_v1 = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Trades
# ---------------------------------------------------------------------------

trade_router = APIRouter(prefix="/trades", tags=["Trades"])


@trade_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Register a trade",
)
def create_trade(
    body: CreateTradeRequest,
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = CreateTradeCommand(
        name=body.name,
        contact=body.contact,
        phone=body.phone,
        email=str(body.email),
    )
    result = CreateTradeUseCase().execute(cmd, uow)
    return _ok(result)


@trade_router.get("", summary="List all trades")
def list_trades(uow: AbstractUnitOfWork = Depends(get_uow)):
    return _ok(ListTradesUseCase().execute(uow))


@trade_router.get("/{trade_id}", summary="Get a trade by ID")
def get_trade(
    trade_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetTradeUseCase().execute(trade_id, uow))


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

project_router = APIRouter(prefix="/projects", tags=["Projects"])


@project_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a project with one task per selected trade",
)
def create_project(
    body: CreateProjectRequest,
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = CreateProjectCommand(
        name=body.name,
        address=body.address,
        client=body.client,
        pm_id=body.pm_id,
        trade_ids=body.trade_ids,
    )
    result = CreateProjectUseCase().execute(cmd, uow)
    return _ok(result)


@project_router.get("", summary="List all projects")
def list_projects(uow: AbstractUnitOfWork = Depends(get_uow)):
    return _ok(ListProjectsUseCase().execute(uow))


@project_router.get("/{project_id}", summary="Get a project by ID")
def get_project(
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetProjectUseCase().execute(project_id, uow))


@project_router.get(
    "/{project_id}/milestones",
    tags=["Milestones"],
    summary="Phase progress derived from the current task list",
)
def get_milestones(
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(ComputeMilestonesUseCase().execute(project_id, uow))


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

task_router = APIRouter(
    prefix="/projects/{project_id}/tasks",
    tags=["Tasks"],
)


@task_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Add a task to a project",
)
def add_task(
    body: AddTaskRequest,
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AddTaskCommand(
        project_id=project_id,
        trade_id=body.trade_id,
        start_date=body.start_date,
        end_date=body.end_date,
        status=TaskStatus(body.status),
        dependency=body.dependency,
        notes=body.notes,
        progress=body.progress,
        is_inspection=body.is_inspection,
        material_tracking_link=body.material_tracking_link,
        materials_delivered=body.materials_delivered,
    )
    result = AddTaskUseCase().execute(cmd, uow)
    return _ok(result)


@task_router.get("", summary="List all tasks for a project")
def list_tasks(
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(ListTasksUseCase().execute(project_id, uow))


@task_router.get("/{task_id}", summary="Get a single task")
def get_task(
    project_id: uuid.UUID = Path(...),
    task_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetTaskUseCase().execute(project_id, task_id, uow))


@task_router.patch(
    "/{task_id}",
    summary="Edit task dates, notes, inspection flag or material tracking",
)
def update_task(
    body: UpdateTaskRequest,
    project_id: uuid.UUID = Path(...),
    task_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Direct edits do not cascade to dependent tasks.  Use a Delayed status
    update to shift a task together with everything downstream of it.
    """
    cmd = UpdateTaskDetailsCommand(
        project_id=project_id,
        task_id=task_id,
        start_date=body.start_date,
        end_date=body.end_date,
        notes=body.notes,
        is_inspection=body.is_inspection,
        material_tracking_link=body.material_tracking_link,
        materials_delivered=body.materials_delivered,
    )
    result = UpdateTaskDetailsUseCase().execute(cmd, uow)
    return _ok(result)


@task_router.put(
    "/{task_id}/dependency",
    summary="Set or clear the task this task waits on",
)
def set_task_dependency(
    body: SetDependencyRequest,
    project_id: uuid.UUID = Path(...),
    task_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = SetTaskDependencyCommand(
        project_id=project_id,
        task_id=task_id,
        dependency_id=body.dependency_id,
    )
    result = SetTaskDependencyUseCase().execute(cmd, uow)
    return _ok(result)


@task_router.post(
    "/{task_id}/updates",
    summary="Report a status update; delays are held for approval",
    responses={202: {"description": "A change request was created and awaits approval."}},
)
def submit_task_update(
    body: TaskUpdateRequest,
    response: Response,
    project_id: uuid.UUID = Path(...),
    task_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
    workflow: ChangeRequestWorkflow = Depends(get_workflow),
):
    """
    A `Delayed` status with a positive `delay_duration_in_days` creates a
    pending change request (202).  Any other update is applied to the task
    immediately (200); Completed forces progress to 100 and Not Started
    forces it to 0.
    """
    cmd = TaskUpdateCommand(
        project_id=project_id,
        task_id=task_id,
        status=TaskStatus(body.status),
        notes=body.notes,
        progress=body.progress,
        delay_duration_in_days=body.delay_duration_in_days,
        delay_reason=body.delay_reason,
    )
    result = ProposeOrApplyUseCase(workflow).execute(cmd, uow)
    if result.change_request is not None:
        response.status_code = status.HTTP_202_ACCEPTED
    return _ok(result)


@task_router.get(
    "/{task_id}/cascade-preview",
    summary="Show the dates a delay would produce without applying it",
)
def preview_cascade(
    project_id: uuid.UUID = Path(...),
    task_id: uuid.UUID = Path(...),
    delay_days: int = Query(..., description="Days to delay the task by (must be positive)"),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = PreviewCascadeUseCase().execute(project_id, task_id, delay_days, uow)
    return _ok(result)


# ---------------------------------------------------------------------------
# Change requests
# ---------------------------------------------------------------------------

change_request_router = APIRouter(
    prefix="/projects/{project_id}/change-requests",
    tags=["Change Requests"],
)


@change_request_router.get("", summary="List pending change requests for a project")
def list_change_requests(
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
    workflow: ChangeRequestWorkflow = Depends(get_workflow),
):
    return _ok(ListChangeRequestsUseCase(workflow).execute(project_id, uow))


@change_request_router.get("/{cr_id}", summary="Get a pending change request")
def get_change_request(
    project_id: uuid.UUID = Path(...),
    cr_id: uuid.UUID = Path(...),
    workflow: ChangeRequestWorkflow = Depends(get_workflow),
):
    return _ok(GetChangeRequestUseCase(workflow).execute(project_id, cr_id))


@change_request_router.post(
    "/{cr_id}/approve",
    summary="Approve a delay and reschedule every dependent task",
)
def approve_change_request(
    project_id: uuid.UUID = Path(...),
    cr_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
    workflow: ChangeRequestWorkflow = Depends(get_workflow),
):
    """
    The whole cascade is committed in one batch.  If the commit fails the
    request remains pending and can be approved again.
    """
    result = ApproveChangeRequestUseCase(workflow).execute(project_id, cr_id, uow)
    return _ok(result)


@change_request_router.post(
    "/{cr_id}/deny",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Discard a change request without touching the schedule",
)
def deny_change_request(
    project_id: uuid.UUID = Path(...),
    cr_id: uuid.UUID = Path(...),
    workflow: ChangeRequestWorkflow = Depends(get_workflow),
):
    DenyChangeRequestUseCase(workflow).execute(project_id, cr_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ===========================================================================
# REGISTER ROUTERS
# ===========================================================================

api_v1.include_router(trade_router)
api_v1.include_router(project_router)
api_v1.include_router(task_router)
api_v1.include_router(change_request_router)

app.include_router(api_v1)


# ===========================================================================
# HEALTH CHECK
# ===========================================================================

@app.get("/health", tags=["Health"], summary="Service health check")
def health():
    return {"status": "ok"}


# ===========================================================================
# OPENAPI CUSTOMISATION — tag order and descriptions
# ===========================================================================

tags_metadata = [
    {
        "name": "Health",
        "description": "Liveness probe.",
    },
    {
        "name": "Trades",
        "description": (
            "Subcontractors and inspectors.  A trade's name decides which "
            "milestone phase its tasks count towards."
        ),
    },
    {
        "name": "Projects",
        "description": (
            "Build sites.  Creating a project seeds one Not Started task for "
            "each selected trade."
        ),
    },
    {
        "name": "Tasks",
        "description": (
            "Scheduled trade work.  Each task may wait on one other task of the "
            "same project; circular chains are rejected.  Status updates that "
            "report a delay are held as change requests."
        ),
    },
    {
        "name": "Change Requests",
        "description": (
            "Pending delays.  Approval shifts the delayed task and every task "
            "downstream of it in a single atomic commit, keeping each task's "
            "duration.  Denial discards the request."
        ),
    },
    {
        "name": "Milestones",
        "description": "Phase status (Completed, In Progress, Next, Incomplete).",
    },
]

app.openapi_tags = tags_metadata


# ---------------------------------------------------------------------------
# MCP Server — exposes all API routes as MCP tools
# Mounted last so the tool list sees every route and tag.
# Accessible at: http://localhost:8000/mcp
# ---------------------------------------------------------------------------
mcp = FastApiMCP(app)
mcp.mount()
