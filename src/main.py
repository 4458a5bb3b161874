"""
main.py

Entry point for the Construction Schedule & Delay Cascade API.

Wires the in-memory infrastructure into the FastAPI app, configures logging
and starts uvicorn.

Usage
-----
    # Option 1 — run directly
    python main.py

    # Option 2 — run via uvicorn CLI (recommended for development)
    uvicorn main:app --reload --port 8000

Settings come from environment variables (see config.py): LOG_LEVEL,
CORS_ALLOW_ORIGINS, SEED_DEFAULT_TRADES, UVICORN_HOST, UVICORN_PORT and
UVICORN_RELOAD.

Once running, open your browser at:
    http://localhost:8000/docs      ← Swagger UI
    http://localhost:8000/health    ← liveness check
    http://localhost:8000/mcp       ← MCP endpoint

Quick-start walkthrough
-----------------------
1.  GET   /api/v1/trades                     — the seeded trade catalogue
2.  POST  /api/v1/projects                   — create a project with trade_ids;
                                               one task per trade is created
3.  PUT   /api/v1/projects/{id}/tasks/{tid}/dependency
                                             — chain tasks together
4.  PATCH /api/v1/projects/{id}/tasks/{tid}  — set real start and end dates
5.  POST  /api/v1/projects/{id}/tasks/{tid}/updates
        {"status": "Delayed", "delay_duration_in_days": 3, "delay_reason": "Rain"}
                                             — creates a change request (202)
6.  GET   /api/v1/projects/{id}/tasks/{tid}/cascade-preview?delay_days=3
                                             — see the resulting dates
7.  POST  /api/v1/projects/{id}/change-requests/{cr_id}/approve
                                             — reschedule the whole chain
8.  GET   /api/v1/projects/{id}/milestones   — phase progress
"""

import logging

import uvicorn

import config
from api import app, get_uow
from infrastructure import InMemoryUnitOfWork

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


# ---------------------------------------------------------------------------
# Wire the concrete Unit of Work into the FastAPI dependency system.
# To swap databases, replace InMemoryUnitOfWork with your SQL implementation.
# ---------------------------------------------------------------------------

app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.UVICORN_HOST,
        port=config.UVICORN_PORT,
        reload=config.UVICORN_RELOAD,
        log_level=config.LOG_LEVEL.lower(),
    )
