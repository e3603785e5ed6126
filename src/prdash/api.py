"""HTTP JSON API for the PR dashboard frontend."""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Literal, Optional, Union

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .activity import build_activity_page
from .config import Config
from .errors import (
    ApiError,
    AuthenticationError,
    ConfigurationError,
    DashboardError,
    QueryError,
    RateLimitError,
    ResolutionError,
    ValidationError,
)
from .gh_client import GitHubClient
from .models import to_payload
from .org_stats import compute_org_stats
from .pulls import aggregate_pull_requests
from .reviewers import compute_reviewer_stats
from .windows import compute_since, format_timestamp, utc_now

logger = logging.getLogger(__name__)

Window = Literal["24h", "7d", "30d"]

# Most specific first.
_STATUS_CODES = (
    (RateLimitError, 429),
    (ResolutionError, 400),
    (QueryError, 500),
    (AuthenticationError, 401),
    (ValidationError, 400),
    (ConfigurationError, 500),
    (ApiError, 502),
)


class PullRequestsBody(BaseModel):
    org: str = Field(min_length=1)
    repos: List[str] = Field(min_length=1)
    states: Optional[List[Literal["open", "merged"]]] = None
    window: Window = "7d"


class ReviewersBody(BaseModel):
    org: str = Field(min_length=1)
    window: Window = "7d"
    users: List[str] = Field(default_factory=list)


class OrgStatsBody(BaseModel):
    window: Window = "7d"


class ActivityBody(BaseModel):
    types: Optional[List[str]] = None
    repo: Optional[str] = None
    username: Optional[str] = None
    fullname: Optional[str] = None
    cursor: Optional[Union[int, str]] = None
    pageSize: Optional[int] = None


def _status_for(exc: DashboardError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def _dashboard_error_handler(request: Request, exc: DashboardError) -> JSONResponse:
    status_code = _status_for(exc)
    body: Dict[str, Any] = {"error": str(exc)}
    headers: Dict[str, str] = {}

    if isinstance(exc, RateLimitError):
        body["retryAfterMs"] = exc.retry_after_ms
        if exc.retry_after_ms:
            headers["Retry-After"] = str(math.ceil(exc.retry_after_ms / 1000))

    log = logger.warning if status_code < 500 else logger.error
    log("Request failed", extra={"path": request.url.path, "status_code": status_code, "error": str(exc)})
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()) if part != 'body')}: {error.get('msg')}"
        for error in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {details}"})


def get_client(request: Request) -> GitHubClient:
    return request.app.state.gh_client


def get_config(request: Request) -> Config:
    return request.app.state.config


router = APIRouter(prefix="/api")


@router.get("/health")
def health() -> Dict[str, bool]:
    return {"ok": True}


@router.get("/orgs/{org}/repos")
def list_repos(org: str, client: GitHubClient = Depends(get_client)) -> Dict[str, Any]:
    """List an organization's repositories."""
    return {"repos": to_payload(client.list_repositories(org))}


@router.post("/prs")
def list_pull_requests(
    body: PullRequestsBody,
    client: GitHubClient = Depends(get_client),
    config: Config = Depends(get_config),
) -> Dict[str, Any]:
    """Enriched pull requests across repositories for a window."""
    prs = aggregate_pull_requests(
        client,
        org=body.org,
        repos=body.repos,
        states=body.states,
        window=body.window,
        batch_size=config.repo_batch_size,
        per_repo_limit=config.prs_per_repo,
        max_concurrency=config.max_concurrency,
    )
    return {"prs": to_payload(prs)}


@router.post("/reviewers/top")
def top_reviewers(
    body: ReviewersBody,
    client: GitHubClient = Depends(get_client),
    config: Config = Depends(get_config),
) -> Dict[str, Any]:
    """Review and commit stats for an explicit user list."""
    now = utc_now()
    reviewers = compute_reviewer_stats(
        client,
        org=body.org,
        users=body.users,
        window=body.window,
        now=now,
        batch_size=config.user_batch_size,
    )
    return {
        "since": format_timestamp(compute_since(body.window, now)),
        "reviewers": to_payload(reviewers),
    }


@router.get("/orgs/{org}/teams")
def list_teams(org: str, client: GitHubClient = Depends(get_client)) -> Dict[str, Any]:
    return {"teams": to_payload(client.list_teams(org))}


@router.get("/orgs/{org}/members")
def list_members(org: str, client: GitHubClient = Depends(get_client)) -> Dict[str, Any]:
    return {"members": to_payload(client.list_members(org))}


@router.get("/viewer")
def viewer(client: GitHubClient = Depends(get_client)) -> Dict[str, Any]:
    """The authenticated user and their organizations."""
    return {"viewer": to_payload(client.get_viewer())}


@router.post("/orgs/{org}/stats")
def org_stats(
    org: str,
    body: OrgStatsBody,
    client: GitHubClient = Depends(get_client),
    config: Config = Depends(get_config),
) -> Dict[str, Any]:
    """Organization totals and leaderboards."""
    stats = compute_org_stats(
        client,
        org=org,
        window=body.window,
        stale_days=config.stale_days,
        top_n=config.top_n,
        member_page_size=config.member_page_size,
    )
    return {"stats": to_payload(stats)}


@router.post("/orgs/{org}/activity")
def activity(
    org: str,
    body: ActivityBody,
    client: GitHubClient = Depends(get_client),
    config: Config = Depends(get_config),
) -> Dict[str, Any]:
    """One page of the organization activity feed."""
    page = build_activity_page(
        client,
        org=org,
        types=body.types,
        repo=body.repo,
        username=body.username,
        fullname=body.fullname,
        cursor=None if body.cursor is None else str(body.cursor),
        page_size=body.pageSize,
        max_age_days=config.activity_max_age_days,
    )
    return to_payload(page)


def create_app(config: Config, client: Optional[GitHubClient] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Validated runtime configuration.
        client: GitHub gateway; one is built from ``config`` when omitted.
    """
    app = FastAPI(title="PR Dashboard API", version="0.1.0")
    app.state.config = config
    app.state.gh_client = client or GitHubClient(config=config)

    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.add_exception_handler(DashboardError, _dashboard_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.include_router(router)
    return app
