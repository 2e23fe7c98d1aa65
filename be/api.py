"""FastAPI app serving releases, issues, milestones, labels and vulnerabilities.

The lifespan starts the synchronization scheduler that keeps the database in
sync with GitHub and Snyk.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from clients.github import GitHubClient
from clients.snyk import SnykClient

from . import models, queries
from .config import settings
from .db import AsyncSessionMaker, create_tables, engine, get_session
from .locking import SchedulerLock
from .logging_config import setup_logging
from .pipelines.sync import SyncReport, SystemDataSynchronizer
from .queries import IssueNode, NotFoundError
from .scheduler import build_scheduler

logger = logging.getLogger(__name__)


# Pydantic response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None


class OrmResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class BranchResponse(OrmResponse):
    id: str
    name: str


class ReleaseResponse(OrmResponse):
    """Release with the branch it was published from."""
    id: str
    tag_name: str
    name: str
    published_at: datetime | None = None
    last_scanned: datetime | None = None
    branch: BranchResponse | None = None


class MilestoneResponse(OrmResponse):
    id: str
    number: int
    title: str
    url: str | None = None
    state: str
    due_on: datetime | None = None
    open_issue_count: int
    closed_issue_count: int


class LabelResponse(OrmResponse):
    id: str
    name: str
    description: str | None = None
    color: str | None = None


class LabelHighlightResponse(LabelResponse):
    """Label with the number of release pull requests carrying it."""
    count: int


class OptionResponse(OrmResponse):
    """Issue type, priority or state."""
    id: str
    name: str
    description: str | None = None
    color: str | None = None


class IssueResponse(BaseModel):
    """Issue tree node."""
    id: str
    number: int
    title: str
    state: str
    closed_at: datetime | None = None
    url: str | None = None
    points: float
    milestone: MilestoneResponse | None = None
    issue_type: OptionResponse | None = None
    issue_priority: OptionResponse | None = None
    issue_state: OptionResponse | None = None
    labels: list[LabelResponse] = Field(default_factory=list)
    sub_issues: list[IssueResponse] = Field(default_factory=list)

    @classmethod
    def from_node(cls, node: IssueNode) -> IssueResponse:
        issue = node.issue
        return cls(
            id=issue.id,
            number=issue.number,
            title=issue.title,
            state=issue.state,
            closed_at=issue.closed_at,
            url=issue.url,
            points=node.points,
            milestone=MilestoneResponse.model_validate(issue.milestone) if issue.milestone else None,
            issue_type=OptionResponse.model_validate(issue.issue_type) if issue.issue_type else None,
            issue_priority=OptionResponse.model_validate(issue.issue_priority) if issue.issue_priority else None,
            issue_state=OptionResponse.model_validate(issue.issue_state) if issue.issue_state else None,
            labels=[LabelResponse.model_validate(label) for label in node.labels],
            sub_issues=[cls.from_node(sub) for sub in node.sub_issues],
        )


class VulnerabilityResponse(BaseModel):
    id: str
    title: str
    severity: str | None = None
    cvss_score: float | None = None
    cve_ids: list[str] = Field(default_factory=list)
    cwe_ids: list[str] = Field(default_factory=list)
    description: str | None = None
    url: str | None = None

    @classmethod
    def from_entity(cls, vulnerability: models.Vulnerability) -> VulnerabilityResponse:
        return cls(
            id=vulnerability.id,
            title=vulnerability.title,
            severity=vulnerability.severity,
            cvss_score=vulnerability.cvss_score,
            cve_ids=vulnerability.cve_ids.split(",") if vulnerability.cve_ids else [],
            cwe_ids=vulnerability.cwe_ids.split(",") if vulnerability.cwe_ids else [],
            description=vulnerability.description,
            url=vulnerability.url,
        )


class InjectionResultResponse(BaseModel):
    resource: str
    fetched: int
    saved: int
    skipped: bool
    failures: list[str]


class SyncReportResponse(BaseModel):
    trigger: str
    started_at: datetime
    finished_at: datetime | None = None
    status: str
    error: str | None = None
    results: list[InjectionResultResponse] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: SyncReport) -> SyncReportResponse:
        return cls(
            trigger=report.trigger,
            started_at=report.started_at,
            finished_at=report.finished_at,
            status=report.status,
            error=report.error,
            results=[InjectionResultResponse(**vars(result)) for result in report.results],
        )


class SyncStatusResponse(BaseModel):
    """Synchronization status."""
    enabled: bool
    running: bool
    last_run: SyncReportResponse | None = None


class SyncTriggerResponse(BaseModel):
    status: str
    message: str


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    # Startup
    setup_logging()
    logger.info("Application starting up")

    if settings.db.create_tables:
        await create_tables()
        logger.info("Database tables ensured")

    app.state.synchronizer = None
    scheduler = None
    github: GitHubClient | None = None
    snyk: SnykClient | None = None

    if settings.scheduler.enabled:
        github = GitHubClient()
        snyk = SnykClient() if settings.snyk.configured else None
        synchronizer = SystemDataSynchronizer(
            AsyncSessionMaker,
            github,
            snyk,
            SchedulerLock(AsyncSessionMaker, settings.scheduler.instance_name),
        )
        scheduler = build_scheduler(synchronizer)
        scheduler.start()
        app.state.synchronizer = synchronizer
        logger.info("Synchronization scheduler started")
    else:
        logger.info("Synchronization scheduler disabled")

    yield

    # Shutdown
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    if github is not None:
        await github.aclose()
    if snyk is not None:
        await snyk.aclose()
    await engine.dispose()
    logger.info("Application shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Release, issue and vulnerability insights synchronized from GitHub and Snyk",
    lifespan=lifespan,
)


def get_synchronizer(request: Request) -> SystemDataSynchronizer | None:
    return getattr(request.app.state, "synchronizer", None)


# Exception handlers
@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    """Handle lookups of unknown releases and milestones."""
    logger.info(f"Not found: {exc}")
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=ErrorResponse(
            error="not_found",
            detail=str(exc),
        ).model_dump(),
    )


def internal_error(action: str, e: Exception) -> HTTPException:
    logger.error(f"Unexpected error {action}: {e}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Internal server error: {str(e)}",
    )


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        version=settings.version,
    )


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.version,
        "endpoints": {
            "health": "/health",
            "releases": "/api/releases",
            "release": "/api/releases/{release_id}",
            "release_issues": "/api/issues/release/{release_id}",
            "milestone_issues": "/api/issues/milestone/{milestone_id}",
            "future_epics": "/api/issues/future",
            "milestones": "/api/milestones",
            "release_highlights": "/api/labels/release/{release_id}",
            "release_vulnerabilities": "/api/vulnerabilities/release/{release_id}",
            "sync": "/api/sync",
            "docs": "/docs",
        },
    }


@app.get("/api/releases", response_model=list[ReleaseResponse])
async def get_all_releases(session: AsyncSession = Depends(get_session)) -> list[ReleaseResponse]:
    """All final releases, oldest first."""
    try:
        releases = await queries.get_all_releases(session)
        return [ReleaseResponse.model_validate(release) for release in releases]
    except Exception as e:
        raise internal_error("listing releases", e)


@app.get("/api/releases/{release_id}", response_model=ReleaseResponse)
async def get_release(release_id: str, session: AsyncSession = Depends(get_session)) -> ReleaseResponse:
    try:
        return ReleaseResponse.model_validate(await queries.get_release(session, release_id))
    except NotFoundError:
        raise
    except Exception as e:
        raise internal_error(f"retrieving release {release_id}", e)


@app.get("/api/issues/release/{release_id}", response_model=list[IssueResponse])
async def get_issues_by_release(release_id: str, session: AsyncSession = Depends(get_session)) -> list[IssueResponse]:
    """Issue trees closed by the pull requests of a release.

    Only issues carrying an included label somewhere in their tree are returned.
    """
    logger.info(f"Retrieving issues for release {release_id}")
    try:
        nodes = await queries.get_issues_by_release(session, release_id)
        return [IssueResponse.from_node(node) for node in nodes]
    except NotFoundError:
        raise
    except Exception as e:
        raise internal_error(f"retrieving issues of release {release_id}", e)


@app.get("/api/issues/milestone/{milestone_id}", response_model=list[IssueResponse])
async def get_issues_by_milestone(
    milestone_id: str,
    session: AsyncSession = Depends(get_session),
) -> list[IssueResponse]:
    logger.info(f"Retrieving issues for milestone {milestone_id}")
    try:
        nodes = await queries.get_issues_by_milestone(session, milestone_id)
        return [IssueResponse.from_node(node) for node in nodes]
    except NotFoundError:
        raise
    except Exception as e:
        raise internal_error(f"retrieving issues of milestone {milestone_id}", e)


@app.get("/api/issues/future", response_model=list[IssueResponse])
async def get_future_epic_issues(session: AsyncSession = Depends(get_session)) -> list[IssueResponse]:
    """Epics without a milestone."""
    try:
        nodes = await queries.get_future_epic_issues(session)
        return [IssueResponse.from_node(node) for node in nodes]
    except Exception as e:
        raise internal_error("retrieving future epics", e)


@app.get("/api/milestones", response_model=list[MilestoneResponse])
async def get_open_milestones(session: AsyncSession = Depends(get_session)) -> list[MilestoneResponse]:
    try:
        milestones = await queries.get_open_milestones(session)
        return [MilestoneResponse.model_validate(milestone) for milestone in milestones]
    except Exception as e:
        raise internal_error("listing milestones", e)


@app.get("/api/labels/release/{release_id}", response_model=list[LabelHighlightResponse])
async def get_release_highlights(
    release_id: str,
    session: AsyncSession = Depends(get_session),
) -> list[LabelHighlightResponse]:
    """Most frequent included labels of a release's pull requests."""
    try:
        highlights = await queries.get_release_highlights(session, release_id)
        return [
            LabelHighlightResponse(
                id=h.label.id,
                name=h.label.name,
                description=h.label.description,
                color=h.label.color,
                count=h.count,
            )
            for h in highlights
        ]
    except NotFoundError:
        raise
    except Exception as e:
        raise internal_error(f"retrieving highlights of release {release_id}", e)


@app.get("/api/vulnerabilities/release/{release_id}", response_model=list[VulnerabilityResponse])
async def get_release_vulnerabilities(
    release_id: str,
    session: AsyncSession = Depends(get_session),
) -> list[VulnerabilityResponse]:
    try:
        vulnerabilities = await queries.get_release_vulnerabilities(session, release_id)
        return [VulnerabilityResponse.from_entity(v) for v in vulnerabilities]
    except NotFoundError:
        raise
    except Exception as e:
        raise internal_error(f"retrieving vulnerabilities of release {release_id}", e)


@app.get("/api/sync/status", response_model=SyncStatusResponse)
async def sync_status(
    synchronizer: SystemDataSynchronizer | None = Depends(get_synchronizer),
) -> SyncStatusResponse:
    if synchronizer is None:
        return SyncStatusResponse(enabled=False, running=False)
    report = synchronizer.last_report
    return SyncStatusResponse(
        enabled=True,
        running=synchronizer.is_running,
        last_run=SyncReportResponse.from_report(report) if report else None,
    )


@app.post("/api/sync", response_model=SyncTriggerResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_sync(
    background_tasks: BackgroundTasks,
    synchronizer: SystemDataSynchronizer | None = Depends(get_synchronizer),
) -> SyncTriggerResponse:
    """Start a synchronization in the background."""
    if synchronizer is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Synchronization is disabled",
        )
    if synchronizer.is_running:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A synchronization is already running",
        )

    background_tasks.add_task(synchronizer.run_manual)
    logger.info("Manual synchronization requested")
    return SyncTriggerResponse(status="accepted", message="Synchronization started")
