"""Organization-wide statistics and leaderboards.

Scalar pull-request counts come from one aliased, count-only search request.
Commit and review totals plus the leaderboards come from walking every
member's contribution collection page by page.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set, Tuple

from .gh_client import GitHubClient, dig
from .models import OrgStats, OrgTotals, RepoRank, TopRepos, TopUsers, UserRank
from .ranking import top_entries
from .windows import compute_since, format_timestamp, utc_now

logger = logging.getLogger(__name__)

_BY_REPOSITORY_FIELDS = "repository { nameWithOwner owner { login } } contributions { totalCount }"

MEMBER_CONTRIBUTIONS_QUERY = f"""
query($org: String!, $orgId: ID!, $from: DateTime!, $to: DateTime!, $first: Int!, $after: String) {{
  organization(login: $org) {{
    membersWithRole(first: $first, after: $after) {{
      pageInfo {{ hasNextPage endCursor }}
      nodes {{
        login
        name
        avatarUrl
        contributionsCollection(from: $from, to: $to, organizationID: $orgId) {{
          totalCommitContributions
          totalPullRequestReviewContributions
          totalPullRequestContributions
          commitContributionsByRepository(maxRepositories: 100) {{ {_BY_REPOSITORY_FIELDS} }}
          pullRequestReviewContributionsByRepository(maxRepositories: 100) {{ {_BY_REPOSITORY_FIELDS} }}
          pullRequestContributionsByRepository(maxRepositories: 100) {{ {_BY_REPOSITORY_FIELDS} }}
        }}
      }}
    }}
  }}
}}
"""

# Leaderboard name -> (total field, per-repository field)
_DIMENSIONS: Dict[str, Tuple[str, str]] = {
    "reviewer": ("totalPullRequestReviewContributions", "pullRequestReviewContributionsByRepository"),
    "committer": ("totalCommitContributions", "commitContributionsByRepository"),
    "prOpener": ("totalPullRequestContributions", "pullRequestContributionsByRepository"),
}


def build_count_queries(org: str, since: datetime, stale_since: datetime) -> List[Tuple[str, str]]:
    """Search queries for the scalar pull-request totals."""
    since_value = format_timestamp(since)
    stale_value = format_timestamp(stale_since)
    return [
        ("openPRs", f"org:{org} is:pr is:open"),
        ("stalePRs", f"org:{org} is:pr is:open updated:<{stale_value}"),
        ("prsOpened", f"org:{org} is:pr created:>={since_value}"),
        ("prsMerged", f"org:{org} is:pr is:merged merged:>={since_value}"),
        ("prsClosed", f"org:{org} is:pr is:closed is:unmerged closed:>={since_value}"),
    ]


@dataclass
class _Accumulator:
    """Running state for the member walk."""

    org: str
    commits: int = 0
    reviews: int = 0
    users: Dict[str, Dict[str, UserRank]] = field(
        default_factory=lambda: {name: {} for name in _DIMENSIONS}
    )
    repos: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: {name: {} for name in _DIMENSIONS}
    )
    seen_logins: Set[str] = field(default_factory=set)

    def add_member(self, member: Dict[str, Any]) -> None:
        login = member.get("login")
        if not login:
            return
        collection = member.get("contributionsCollection") or {}
        repeated = login in self.seen_logins
        self.seen_logins.add(login)

        # Totals and repository counts take each member once.
        if not repeated:
            self.commits += int(collection.get("totalCommitContributions") or 0)
            self.reviews += int(collection.get("totalPullRequestReviewContributions") or 0)

        for name, (total_field, by_repo_field) in _DIMENSIONS.items():
            count = int(collection.get(total_field) or 0)
            board = self.users[name]
            existing = board.get(login)
            # Duplicate member records only ever raise a count.
            if existing is None or count > existing.count:
                board[login] = UserRank(
                    login=str(login),
                    count=count,
                    name=member.get("name"),
                    avatarUrl=member.get("avatarUrl"),
                )
            if not repeated:
                self._add_repositories(name, collection.get(by_repo_field) or [])

    def _add_repositories(self, name: str, entries: List[Dict[str, Any]]) -> None:
        counts = self.repos[name]
        for entry in entries:
            owner = dig(entry, ("repository", "owner", "login")) or ""
            slug = dig(entry, ("repository", "nameWithOwner"))
            if not slug or owner.lower() != self.org.lower():
                continue
            counts[slug] = counts.get(slug, 0) + int(dig(entry, ("contributions", "totalCount")) or 0)

    def repo_count(self, name: str) -> int:
        return sum(1 for count in self.repos[name].values() if count > 0)

    def top_users(self, name: str, n: int) -> List[UserRank]:
        return top_entries(self.users[name].values(), n)

    def top_repos(self, name: str, n: int) -> List[RepoRank]:
        ranks = [RepoRank(nameWithOwner=slug, count=count) for slug, count in self.repos[name].items()]
        return top_entries(ranks, n)


def compute_org_stats(
    client: GitHubClient,
    org: str,
    window: str = "7d",
    now: Optional[datetime] = None,
    stale_days: int = 14,
    top_n: int = 3,
    member_page_size: int = 20,
) -> OrgStats:
    """Compute organization totals and top-N leaderboards for a window.

    Args:
        client: GitHub gateway.
        org: Organization login.
        window: ``24h``, ``7d`` or ``30d``.
        now: Reference time; defaults to the current time.
        stale_days: Open pull requests not updated for this many days are stale.
        top_n: Leaderboard length.
        member_page_size: Members fetched per page of the member walk.

    Raises:
        ValidationError: On an invalid window.
        ResolutionError: If the organization cannot be resolved.
        ApiError: If any request fails.
    """
    reference = now or utc_now()
    since = compute_since(window, reference)
    stale_since = reference - timedelta(days=stale_days)

    counts = client.search_counts(build_count_queries(org, since, stale_since))

    org_id = client.resolve_org_id(org)
    accumulator = _Accumulator(org=org)
    members_seen = 0
    variables = {
        "org": org,
        "orgId": org_id,
        "from": format_timestamp(since),
        "to": format_timestamp(reference),
        "first": member_page_size,
    }
    for page in client.paginate(MEMBER_CONTRIBUTIONS_QUERY, variables, ("organization", "membersWithRole")):
        for member in dig(page, ("organization", "membersWithRole", "nodes")) or []:
            if member:
                members_seen += 1
                accumulator.add_member(member)

    totals = OrgTotals(
        openPRs=counts.get("openPRs", 0),
        stalePRs=counts.get("stalePRs", 0),
        prsOpened=counts.get("prsOpened", 0),
        prsMerged=counts.get("prsMerged", 0),
        prsClosed=counts.get("prsClosed", 0),
        commits=accumulator.commits,
        commitRepos=accumulator.repo_count("committer"),
        reviews=accumulator.reviews,
        reviewRepos=accumulator.repo_count("reviewer"),
    )

    stats = OrgStats(
        since=format_timestamp(since),
        staleSince=format_timestamp(stale_since),
        totals=totals,
        topUsers=TopUsers(
            reviewer=accumulator.top_users("reviewer", top_n),
            committer=accumulator.top_users("committer", top_n),
            prOpener=accumulator.top_users("prOpener", top_n),
        ),
        topRepos=TopRepos(
            reviews=accumulator.top_repos("reviewer", top_n),
            commits=accumulator.top_repos("committer", top_n),
            prsOpened=accumulator.top_repos("prOpener", top_n),
        ),
    )

    logger.info(
        "Computed organization stats",
        extra={"org": org, "window": window, "members": members_seen, "commits": totals.commits},
    )
    return stats
