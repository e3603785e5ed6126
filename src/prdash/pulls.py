"""Pull-request aggregation across repositories.

One GraphQL query is issued per batch of repositories. Each repository in the
batch is addressed by a positional alias (``r0``, ``r1``, ...) and the
response is demultiplexed by walking the same alias list in order. Review
data nested under each pull request is flattened into a single record, and
the recency window is applied after the fetch.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import ValidationError
from .gh_client import GitHubClient, batched
from .models import PullRequest
from .windows import compute_since, parse_timestamp

logger = logging.getLogger(__name__)

PR_STATES = ("open", "merged")

_GRAPHQL_STATES = {"open": "OPEN", "merged": "MERGED"}

_PULL_REQUEST_FIELDS = """
      nameWithOwner
      pullRequests(first: $first, states: $states, orderBy: {field: UPDATED_AT, direction: DESC}) {
        nodes {
          number
          title
          url
          isDraft
          createdAt
          updatedAt
          mergedAt
          closedAt
          baseRefName
          headRefName
          additions
          deletions
          changedFiles
          author { login }
          reviewRequests(first: 20) {
            nodes {
              requestedReviewer {
                ... on User { login }
                ... on Team { slug }
                ... on Mannequin { login }
              }
            }
          }
          reviews(first: 100) {
            nodes { state submittedAt updatedAt }
          }
        }
      }
"""


def normalize_states(states: Optional[Iterable[str]]) -> List[str]:
    """Validate a state filter; an empty or missing filter means ``["open"]``."""
    requested: List[str] = []
    for state in states or ():
        if state not in PR_STATES:
            raise ValidationError(f"Invalid pull request state {state!r}: expected 'open' or 'merged'.")
        if state not in requested:
            requested.append(state)
    return requested or ["open"]


def build_batch_query(repo_count: int) -> str:
    """Build a document fetching pull requests for ``repo_count`` aliased repositories."""
    declarations = ["$owner: String!", "$first: Int!", "$states: [PullRequestState!]"]
    declarations.extend(f"$r{index}: String!" for index in range(repo_count))
    fields = "\n".join(
        f"  r{index}: repository(owner: $owner, name: $r{index}) {{{_PULL_REQUEST_FIELDS}  }}"
        for index in range(repo_count)
    )
    return f"query({', '.join(declarations)}) {{\n{fields}\n}}"


def _requested_reviewers(node: Dict[str, Any]) -> List[str]:
    reviewers: List[str] = []
    for request in (node.get("reviewRequests") or {}).get("nodes") or []:
        reviewer = (request or {}).get("requestedReviewer") or {}
        if reviewer.get("login"):
            reviewers.append(str(reviewer["login"]))
        elif reviewer.get("slug"):
            reviewers.append(f"team:{reviewer['slug']}")
    return reviewers


def _last_reviewed_at(reviews: Sequence[Dict[str, Any]]) -> Optional[str]:
    latest: Optional[Tuple[datetime, str]] = None
    for review in reviews:
        raw = review.get("submittedAt") or review.get("updatedAt")
        parsed = parse_timestamp(raw)
        if parsed is None:
            continue
        if latest is None or parsed > latest[0]:
            latest = (parsed, raw)
    return latest[1] if latest else None


def flatten_pull_request(repo_slug: str, node: Dict[str, Any]) -> PullRequest:
    """Flatten one GraphQL pull request node into a ``PullRequest``."""
    reviews = [review for review in (node.get("reviews") or {}).get("nodes") or [] if review]
    merged_at = node.get("mergedAt")
    number = int(node["number"])

    return PullRequest(
        id=f"{repo_slug}#{number}",
        number=number,
        repo=repo_slug,
        title=str(node.get("title") or ""),
        url=str(node.get("url") or ""),
        author=str((node.get("author") or {}).get("login") or "unknown"),
        createdAt=str(node.get("createdAt") or ""),
        updatedAt=str(node.get("updatedAt") or ""),
        isDraft=bool(node.get("isDraft")),
        baseRefName=str(node.get("baseRefName") or ""),
        headRefName=str(node.get("headRefName") or ""),
        requestedReviewers=_requested_reviewers(node),
        approvals=sum(1 for review in reviews if review.get("state") == "APPROVED"),
        state="merged" if merged_at else "open",
        additions=node.get("additions"),
        deletions=node.get("deletions"),
        changedFiles=node.get("changedFiles"),
        lastReviewedAt=_last_reviewed_at(reviews),
        mergedAt=merged_at,
        closedAt=node.get("closedAt"),
    )


def flatten_batch(org: str, repos: Sequence[str], data: Dict[str, Any]) -> List[PullRequest]:
    """Demultiplex one batch response by alias, in input order."""
    pull_requests: List[PullRequest] = []
    for index, repo in enumerate(repos):
        repository = data.get(f"r{index}") or {}
        repo_slug = str(repository.get("nameWithOwner") or f"{org}/{repo}")
        for node in (repository.get("pullRequests") or {}).get("nodes") or []:
            if node and node.get("number") is not None:
                pull_requests.append(flatten_pull_request(repo_slug, node))
    return pull_requests


def in_window(pr: PullRequest, since: datetime, states: Sequence[str]) -> bool:
    """Apply the post-fetch recency filter.

    Merged pull requests stay visible when merged or touched inside the
    window; open ones only when updated inside it.
    """
    updated_at = parse_timestamp(pr.updatedAt)
    updated_recently = updated_at is not None and updated_at >= since

    if pr.state == "merged":
        if "merged" not in states:
            return False
        merged_at = parse_timestamp(pr.mergedAt)
        return (merged_at is not None and merged_at >= since) or updated_recently

    return "open" in states and updated_recently


def aggregate_pull_requests(
    client: GitHubClient,
    org: str,
    repos: Sequence[str],
    states: Optional[Iterable[str]] = None,
    window: str = "7d",
    now: Optional[datetime] = None,
    batch_size: int = 8,
    per_repo_limit: int = 50,
    max_concurrency: int = 6,
) -> List[PullRequest]:
    """Fetch, flatten and window-filter pull requests across repositories.

    Args:
        client: GitHub gateway.
        org: Organization (repository owner) login.
        repos: Repository names (without owner).
        states: Subset of ``open``/``merged``; defaults to ``["open"]``.
        window: ``24h``, ``7d`` or ``30d``.
        now: Reference time for the window; defaults to the current time.
        batch_size: Repositories per GraphQL query.
        per_repo_limit: Most recently updated pull requests fetched per repository.
        max_concurrency: Batches in flight at once.

    Returns:
        Pull requests sorted by ``updatedAt`` descending.

    Raises:
        ValidationError: On an empty repository list or invalid state/window.
        ApiError: If any batch fails; no partial results are returned.
    """
    requested_states = normalize_states(states)
    since = compute_since(window, now)
    repo_names = [repo.strip() for repo in repos if repo and repo.strip()]
    if not repo_names:
        raise ValidationError("At least one repository is required.")

    variables_base = {
        "owner": org,
        "first": per_repo_limit,
        "states": [_GRAPHQL_STATES[state] for state in requested_states],
    }
    batches = list(batched(repo_names, batch_size))

    def _fetch(batch: List[str]) -> List[PullRequest]:
        variables = dict(variables_base)
        variables.update({f"r{index}": repo for index, repo in enumerate(batch)})
        data = client.run_query(build_batch_query(len(batch)), variables)
        return flatten_batch(org, batch, data)

    with ThreadPoolExecutor(max_workers=max(1, min(max_concurrency, len(batches)))) as executor:
        results = list(executor.map(_fetch, batches))

    fetched = [pr for batch_prs in results for pr in batch_prs]
    kept = [pr for pr in fetched if in_window(pr, since, requested_states)]

    kept.sort(key=lambda pr: pr.id)
    kept.sort(key=lambda pr: parse_timestamp(pr.updatedAt) or since, reverse=True)

    logger.info(
        "Aggregated pull requests",
        extra={
            "org": org,
            "repos": len(repo_names),
            "batches": len(batches),
            "states": requested_states,
            "window": window,
            "prs_fetched": len(fetched),
            "prs_kept": len(kept),
        },
    )
    return kept
