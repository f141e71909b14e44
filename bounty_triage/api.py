"""
Bounty Triage HTTP API.

Thin layer over the services: every route resolves the caller, opens a
session and delegates. Caller identity comes from the ``X-Actor-Id`` and
``X-Actor-Role`` headers set by the auth gateway in front of the service.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import __version__
from .config import get_settings
from .db.audit_service import AuditService
from .db.base import Database, get_db
from .enums import AuditAction, IssueStatus
from .errors import AuthenticationRequiredError, ForbiddenError, TriageError
from .logging_config import configure_logging
from .schemas import Actor, RoleUpdate, StatusUpdate
from .services import IssueService, ReporterService, ReviewService, ScoreService
from .sync import SyncEngine
from .worker import SyncWorker, build_engine

logger = structlog.get_logger()

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    State already placed on ``app.state`` (a Database, a SyncEngine) is used
    as is and left open at shutdown.
    """
    configure_logging(settings.log_level, settings.log_format)
    logger.info("Starting Bounty Triage", environment=settings.environment)

    owns_database = getattr(app.state, "database", None) is None
    if owns_database:
        app.state.database = Database.from_url(settings.database_url)
    database: Database = app.state.database
    database.create_all()
    logger.info("Database initialized")

    owns_engine = getattr(app.state, "sync_engine", None) is None
    if owns_engine:
        app.state.sync_engine = build_engine(settings, database)
    engine: SyncEngine = app.state.sync_engine

    worker: Optional[SyncWorker] = None
    if settings.sync_enabled and owns_engine:
        worker = SyncWorker(
            engine,
            interval=settings.sync_interval_seconds,
            sync_on_start=settings.sync_on_startup,
        )
        worker.start_in_thread()
        logger.info("Sync worker started", interval=settings.sync_interval_seconds)

    yield

    logger.info("Shutting down Bounty Triage")
    if worker:
        worker.stop()
        # A pass in flight still holds the source and the database
        if not worker.join(timeout=settings.sync_repo_timeout_seconds):
            logger.warning("Sync worker did not stop in time", worker_id=worker.worker_id)
    if owns_engine:
        engine.source.close()
    if owns_database:
        database.dispose()
    logger.info("Shutdown complete")


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Actor:
    """Dependency resolving the caller from the gateway headers."""
    if not x_actor_id:
        raise AuthenticationRequiredError()
    try:
        return Actor(id=x_actor_id, role=(x_actor_role or "reporter").lower())
    except ValidationError:
        raise AuthenticationRequiredError()


def require_reviewer(actor: Actor = Depends(get_actor)) -> Actor:
    """Dependency admitting reviewers only."""
    if not actor.is_reviewer:
        raise ForbiddenError(actor.id, "reviewer")
    return actor


def get_sync_engine(request: Request) -> SyncEngine:
    return request.app.state.sync_engine


system_router = APIRouter(tags=["system"])
issues_router = APIRouter(prefix="/issues", tags=["issues"])
scores_router = APIRouter(tags=["scores"])


@system_router.get("/health")
def health() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@system_router.get("/version")
def version() -> Dict[str, str]:
    """Return the version of the application."""
    return {"version": __version__}


# Issue endpoints
@issues_router.get("")
def list_issues(
    status: Optional[IssueStatus] = None,
    reporter: Optional[str] = None,
    repo: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """List issues with optional filtering."""
    issues = IssueService(db).list(
        status=status.value if status else None,
        reporter=reporter,
        repo=repo,
        limit=limit,
        offset=offset,
    )
    return [issue.to_dict() for issue in issues]


@issues_router.get("/mine")
def list_my_issues(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """List the issues reported by the caller."""
    issues = IssueService(db).list(reporter=actor.id, limit=limit, offset=offset)
    return [issue.to_dict() for issue in issues]


@issues_router.post("/sync")
def trigger_sync(
    actor: Actor = Depends(require_reviewer),
    engine: SyncEngine = Depends(get_sync_engine),
) -> Dict[str, Any]:
    """Run a sync pass now, even if a scheduled pass is in progress."""
    logger.info("Manual sync requested", actor=actor.id)
    result = engine.sync_all()
    return {"status": "success", "result": result.to_dict()}


@issues_router.patch("/{issue_id}/status")
def set_issue_status(
    issue_id: int,
    update: StatusUpdate,
    actor: Actor = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Mark an issue valid or invalid and adjust the reporter's points."""
    issue, reporter = ReviewService(
        db, max_retries=settings.review_max_retries
    ).set_status(issue_id, update.status, reviewer=actor.id)
    return {
        "status": "success",
        "issue": issue.to_dict(),
        "reporter": reporter.to_dict(),
    }


@issues_router.post("/{issue_id}/lock")
def lock_issue(
    issue_id: int,
    actor: Actor = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Permanently lock an issue against sync and review changes."""
    issue = IssueService(db).lock(issue_id, actor_id=actor.id)
    return {"status": "success", "issue": issue.to_dict()}


@issues_router.get("/{issue_id}/history")
def issue_history(
    issue_id: int,
    limit: int = Query(100, ge=1, le=1000),
    actor: Actor = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """Audit trail of an issue, newest first."""
    return [entry.to_dict() for entry in IssueService(db).history(issue_id, limit=limit)]


# Score endpoints
@scores_router.get("/leaderboard")
def leaderboard(
    limit: Optional[int] = Query(None, ge=1),
    exclude_reviewers: bool = False,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """Reporters ranked by total points."""
    limit = min(limit or settings.leaderboard_default_limit, settings.leaderboard_max_limit)
    reporters = ReporterService(db).leaderboard(
        limit=limit, exclude_reviewers=exclude_reviewers
    )
    return [
        {"rank": rank, **reporter.to_dict()}
        for rank, reporter in enumerate(reporters, start=1)
    ]


@scores_router.post("/admin/recompute")
def recompute_scores(
    actor: Actor = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Rebuild every reporter total from the issue records."""
    result = ScoreService(db).recompute_all_scores(actor_id=actor.id)
    return {"status": "success", "result": result.to_dict()}


@scores_router.get("/admin/audit")
def recent_activity(
    action: Optional[AuditAction] = None,
    limit: int = Query(50, ge=1, le=1000),
    actor: Actor = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """Most recent audit entries, optionally of one action."""
    entries = AuditService(db).query_recent(
        limit=limit, action=action.value if action else None
    )
    return [entry.to_dict() for entry in entries]


@scores_router.put("/reporters/{username}/role")
def set_reporter_role(
    username: str,
    update: RoleUpdate,
    actor: Actor = Depends(require_reviewer),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Promote or demote a reporter."""
    reporter = ReporterService(db).set_role(username, update.role, actor_id=actor.id)
    return {"status": "success", "reporter": reporter.to_dict()}


async def triage_error_handler(request: Request, exc: TriageError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Storage error", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "Internal storage error",
                "details": {},
            }
        },
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Bounty Triage",
        description="Mirrors GitHub issues for review and scores their reporters",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_exception_handler(TriageError, triage_error_handler)
    app.add_exception_handler(SQLAlchemyError, storage_error_handler)
    app.include_router(system_router)
    app.include_router(issues_router)
    app.include_router(scores_router)
    return app


app = create_app()
