"""
main.py

Entry point for the Workstream Scheduling & Gate-Status API.

Loads settings from WORKSTREAM_* environment variables, configures logging,
wires the in-memory infrastructure into the FastAPI app and starts uvicorn.

Usage
-----
    # Option 1 — run directly
    python main.py

    # Option 2 — run via uvicorn CLI (recommended for development)
    uvicorn main:app --reload --port 8000

    # Option 3 — seed a demo strategy and listen on all interfaces
    WORKSTREAM_SEED_DEMO=1 WORKSTREAM_HOST=0.0.0.0 python main.py

Once running, open your browser at:
    http://localhost:8000/docs      ← Swagger UI  (try every endpoint interactively)
    http://localhost:8000/redoc     ← ReDoc
    http://localhost:8000/health    ← liveness check

Quick-start walkthrough (use Swagger UI or curl)
-------------------------------------------------
1.  Start with WORKSTREAM_SEED_DEMO=1 — the demo strategy id is logged
2.  GET  /api/v1/strategies/{id}/workstream-calculations  — RAGs and critical path
3.  GET  /api/v1/strategies/{id}/schedule                 — early/late dates per task
4.  GET  /api/v1/strategies/{id}/gates/readiness          — gate criteria readiness

Pass ?as_of=YYYY-MM-DD to evaluate overdue tasks against another date.
"""

import logging

import uvicorn

from api import app, get_settings, get_uow
from config import Settings, configure_logging
from infrastructure import InMemoryUnitOfWork, seed_demo_strategy

logger = logging.getLogger(__name__)

settings = Settings.from_env()
configure_logging(settings.log_level)


# ---------------------------------------------------------------------------
# Wire the concrete Unit of Work into the FastAPI dependency system.
# To swap databases, replace InMemoryUnitOfWork with your SQL implementation.
# ---------------------------------------------------------------------------

app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork()
app.dependency_overrides[get_settings] = lambda: settings


if settings.seed_demo:
    demo = seed_demo_strategy(InMemoryUnitOfWork())
    logger.info("Seeded demo strategy %s (%s)", demo.id, demo.title)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
