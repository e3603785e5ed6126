"""Domain models for the PR dashboard JSON contracts.

These dataclasses model only the subset of GitHub payload fields that the
dashboard renders. Field names follow the camelCase JSON contract consumed by
the frontend so that ``dataclasses.asdict`` yields the response body directly.
Timestamps are kept as the ISO-8601 strings GitHub returns.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


def to_payload(value: Any) -> Any:
    """Convert a model (or a list of models) into JSON-ready primitives."""
    if isinstance(value, list):
        return [to_payload(item) for item in value]
    return asdict(value)


@dataclass(slots=True)
class Repository:
    """Represents a repository listed for an organization."""

    name: str
    fullName: str
    description: Optional[str] = None
    isPrivate: bool = False
    updatedAt: Optional[str] = None
    pushedAt: Optional[str] = None


@dataclass(slots=True)
class PullRequest:
    """Represents a pull request flattened with its review data."""

    id: str
    number: int
    repo: str
    title: str
    url: str
    author: str
    createdAt: str
    updatedAt: str
    isDraft: bool
    baseRefName: str
    headRefName: str
    requestedReviewers: List[str]
    approvals: int
    state: str
    additions: Optional[int] = None
    deletions: Optional[int] = None
    changedFiles: Optional[int] = None
    lastReviewedAt: Optional[str] = None
    mergedAt: Optional[str] = None
    closedAt: Optional[str] = None


@dataclass(slots=True)
class ReviewerStat:
    """Per-user review and commit aggregate for a time window."""

    user: str
    displayName: Optional[str] = None
    total: int = 0
    approvals: int = 0
    changesRequested: int = 0
    comments: int = 0
    commented: int = 0
    lastReviewAt: Optional[str] = None
    repos: List[str] = field(default_factory=list)
    commitTotal: int = 0
    commitRepos: List[str] = field(default_factory=list)


@dataclass(slots=True)
class UserRank:
    """One leaderboard entry for an organization member."""

    login: str
    count: int
    name: Optional[str] = None
    avatarUrl: Optional[str] = None


@dataclass(slots=True)
class RepoRank:
    """One leaderboard entry for a repository."""

    nameWithOwner: str
    count: int


@dataclass(slots=True)
class OrgTotals:
    """Organization-wide scalar counts for a window."""

    openPRs: int = 0
    stalePRs: int = 0
    prsOpened: int = 0
    prsMerged: int = 0
    prsClosed: int = 0
    commits: int = 0
    commitRepos: int = 0
    reviews: int = 0
    reviewRepos: int = 0


@dataclass(slots=True)
class TopUsers:
    reviewer: List[UserRank] = field(default_factory=list)
    committer: List[UserRank] = field(default_factory=list)
    prOpener: List[UserRank] = field(default_factory=list)


@dataclass(slots=True)
class TopRepos:
    reviews: List[RepoRank] = field(default_factory=list)
    commits: List[RepoRank] = field(default_factory=list)
    prsOpened: List[RepoRank] = field(default_factory=list)


@dataclass(slots=True)
class OrgStats:
    """Organization statistics: scalar totals plus top-N leaderboards."""

    since: str
    staleSince: str
    totals: OrgTotals
    topUsers: TopUsers
    topRepos: TopRepos


@dataclass(slots=True)
class Actor:
    login: str
    name: Optional[str] = None


@dataclass(slots=True)
class ActivityItem:
    """One feed event. ``type`` selects the shape of ``data``."""

    id: str
    type: str
    occurredAt: str
    repo: str
    actor: Actor
    data: Dict[str, Any]


@dataclass(slots=True)
class ActivityPage:
    items: List[ActivityItem]
    nextCursor: Optional[str]


@dataclass(slots=True)
class TeamMember:
    login: str
    name: Optional[str] = None


@dataclass(slots=True)
class OrgTeam:
    slug: str
    name: str
    members: List[TeamMember] = field(default_factory=list)


@dataclass(slots=True)
class OrgMember:
    login: str
    name: Optional[str] = None
    avatarUrl: Optional[str] = None


@dataclass(slots=True)
class OrgSummary:
    login: str
    name: Optional[str] = None
    avatarUrl: Optional[str] = None


@dataclass(slots=True)
class ViewerInfo:
    """The authenticated GitHub user and the organizations they belong to."""

    login: str
    name: Optional[str] = None
    avatarUrl: Optional[str] = None
    organizations: List[OrgSummary] = field(default_factory=list)
