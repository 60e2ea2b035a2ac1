"""
api.py

REST API layer for the Workstream Scheduling & Gate-Status Engine.

Framework : FastAPI
Scope     : read-only.  Tasks, dependencies, workstreams, phases and gate
            criteria are written by the surrounding planning tool; this API
            only computes schedules and RAG rollups from them.

Structure
---------
  Routers (all prefixed under /api/v1)
  └── /strategies/{strategy_id}
      ├── /workstream-calculations  — taskRag / gate rollups / critical path
      ├── /schedule                 — full CPM detail per task
      └── /gates/readiness          — gate criteria readiness per gate
  /health                           — liveness check
  /mcp                              — MCP server exposing the routes as tools

Error handling
--------------
  NotFoundError      → 404
  CycleDetected      → 422  (code CYCLE_DETECTED, with the cycle's task ids)
  InconsistentFloat  → 500  (code INCONSISTENT_FLOAT)
  ApplicationError   → 422
  ValueError         → 422
  Unhandled          → 500 (FastAPI default)

Response envelope
-----------------
  workstream-calculations : the bare calculation object (the UI reads its
                            keys directly)
  other success           : { "data": <payload> }
  Error                   : { "detail": "<message>" }

Running
-------
  uvicorn api:app --reload

Dependencies (install via pip)
-------------------------------
  fastapi>=0.110
  uvicorn[standard]>=0.29
  pydantic>=2.0
  fastapi-mcp
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Path, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_mcp import FastApiMCP

from application import (
    # Exceptions
    ApplicationError,
    NotFoundError,
    # Use cases
    AbstractUnitOfWork,
    ComputeWorkstreamCalculationsUseCase,
    GetGateReadinessUseCase,
    GetScheduleUseCase,
    ScheduleQuery,
)
from config import Settings
from infrastructure import InMemoryUnitOfWork
from service import CycleDetected, InconsistentFloat, RagPolicy

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# App bootstrap
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Workstream Scheduling & Gate-Status API",
    version="1.0.0",
    description=(
        "Critical Path Method scheduling over workstream tasks with typed, "
        "lagged dependencies, and RED/AMBER/GREEN rollups from tasks to "
        "workstream gates and program gates."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    routes = sorted(p for p in (getattr(r, "path", "") for r in app.routes) if p.startswith("/api/"))
    logger.info("Workstream scheduling API ready: %s", ", ".join(routes))


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------

@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(CycleDetected)
async def cycle_detected_handler(request, exc: CycleDetected):
    return JSONResponse(
        status_code=422,
        content={
            "detail": str(exc),
            "code": "CYCLE_DETECTED",
            "taskIds": [str(t) for t in exc.task_ids],
        },
    )


@app.exception_handler(InconsistentFloat)
async def inconsistent_float_handler(request, exc: InconsistentFloat):
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc), "code": "INCONSISTENT_FLOAT"},
    )


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


def get_settings() -> Settings:
    return Settings.from_env()


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


def _query(
    strategy_id: uuid.UUID, as_of: Optional[date], settings: Settings
) -> ScheduleQuery:
    return ScheduleQuery(
        strategy_id=strategy_id,
        as_of=as_of or date.today(),
        policy=RagPolicy(
            amber_threshold_days=settings.amber_threshold_days,
            progress_lag_amber_pct=settings.progress_lag_amber_pct,
            unmet_criteria_amber=settings.unmet_criteria_amber,
        ),
        write_back=settings.write_back,
    )


api_v1 = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Strategy schedule
# ---------------------------------------------------------------------------

strategy_router = APIRouter(
    prefix="/strategies/{strategy_id}",
    tags=["Workstream Schedule"],
)


@strategy_router.get(
    "/workstream-calculations",
    summary="Compute task RAGs, gate rollups and the critical path for a strategy",
)
def get_workstream_calculations(
    strategy_id: uuid.UUID = Path(...),
    as_of: Optional[date] = Query(
        default=None, description="Reference date for overdue checks (defaults to today)"
    ),
    uow: AbstractUnitOfWork = Depends(get_uow),
    settings: Settings = Depends(get_settings),
):
    """
    Returns `taskRag`, `workstreamGateRag` (workstream → phase),
    `programGateRag` (phase) and `criticalPath` (task → isCritical /
    totalFloat).  A dependency cycle yields 422 with code CYCLE_DETECTED;
    no partial result is returned.
    """
    query = _query(strategy_id, as_of, settings)
    return ComputeWorkstreamCalculationsUseCase().execute(query, uow)


@strategy_router.get(
    "/schedule",
    summary="Retrieve early/late dates, float and criticality for every task",
)
def get_schedule(
    strategy_id: uuid.UUID = Path(...),
    as_of: Optional[date] = Query(default=None),
    uow: AbstractUnitOfWork = Depends(get_uow),
    settings: Settings = Depends(get_settings),
):
    query = _query(strategy_id, as_of, settings)
    result = GetScheduleUseCase().execute(query, uow)
    return _ok(result)


@strategy_router.get(
    "/gates/readiness",
    summary="Gate criteria readiness for every workstream and program gate",
)
def get_gate_readiness(
    strategy_id: uuid.UUID = Path(...),
    as_of: Optional[date] = Query(default=None),
    uow: AbstractUnitOfWork = Depends(get_uow),
    settings: Settings = Depends(get_settings),
):
    query = _query(strategy_id, as_of, settings)
    result = GetGateReadinessUseCase().execute(query, uow)
    return _ok(result)


# ===========================================================================
# REGISTER ROUTERS
# ===========================================================================

api_v1.include_router(strategy_router)

app.include_router(api_v1)


# ===========================================================================
# HEALTH CHECK
# ===========================================================================

@app.get("/health", tags=["Health"], summary="Service health check")
def health():
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# MCP Server — exposes all API routes as MCP tools
# Accessible at: http://localhost:8000/mcp
# ---------------------------------------------------------------------------
mcp = FastApiMCP(app)
mcp.mount()


# ===========================================================================
# OPENAPI CUSTOMISATION — tag order and descriptions
# ===========================================================================

tags_metadata = [
    {
        "name": "Health",
        "description": "Liveness probe.",
    },
    {
        "name": "Workstream Schedule",
        "description": (
            "Critical Path Method over a strategy's workstream tasks.  FS, SS, FF "
            "and SF dependencies with positive or negative lag are honoured.  "
            "Task RAGs roll up worst-first into workstream gates (per workstream "
            "and phase) and program gates (per phase).  Cyclic dependency graphs "
            "are rejected as a configuration error."
        ),
    },
]

app.openapi_tags = tags_metadata
