"""Reviewer and committer statistics from per-user contribution collections.

Business logic per user:
- Suppress exact duplicate review events by review database id.
- Ignore reviews whose effective timestamp is missing or before ``since``.
- Count ``APPROVED`` and ``CHANGES_REQUESTED`` reviews directly.
- Count ``COMMENTED`` reviews in time order, collapsing ones on the same pull
  request that land within five minutes of the previous one (GitHub emits an
  edited comment-review as a fresh event).
- Sum inline review comments regardless of collapsing.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from .gh_client import GitHubClient, batched, dig
from .models import ReviewerStat
from .ranking import dedupe_logins, sort_reviewer_stats
from .windows import compute_since, format_timestamp, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

COMMENT_COLLAPSE_WINDOW = timedelta(minutes=5)

_USER_FIELDS = """
    login
    name
    contributionsCollection(from: $from, to: $to, organizationID: $org) {
      totalCommitContributions
      commitContributionsByRepository(maxRepositories: 100) {
        repository { nameWithOwner }
        contributions { totalCount }
      }
      pullRequestReviewContributions(first: 100) {
        nodes {
          occurredAt
          pullRequestReview {
            databaseId
            state
            submittedAt
            updatedAt
            author { login }
            comments { totalCount }
          }
          pullRequest {
            number
            repository { nameWithOwner }
          }
        }
      }
    }
"""


def build_users_query(user_count: int) -> str:
    """Build a document fetching contribution collections for aliased users."""
    declarations = ["$org: ID!", "$from: DateTime!", "$to: DateTime!"]
    declarations.extend(f"$u{index}: String!" for index in range(user_count))
    fields = "\n".join(
        f"  u{index}: user(login: $u{index}) {{{_USER_FIELDS}  }}" for index in range(user_count)
    )
    return f"query({', '.join(declarations)}) {{\n{fields}\n}}"


def _append_unique(values: List[str], value: Optional[str]) -> None:
    if value and value not in values:
        values.append(value)


def tally_user(login: str, node: Optional[Dict[str, Any]], since: datetime) -> ReviewerStat:
    """Build one ``ReviewerStat`` from a GraphQL user node.

    A missing node (unknown user) yields an all-zero entry keyed by ``login``.
    """
    if not node:
        return ReviewerStat(user=login)

    stat = ReviewerStat(user=str(node.get("login") or login), displayName=node.get("name"))
    collection = node.get("contributionsCollection") or {}

    seen_review_ids: Set[Any] = set()
    events: List[Tuple[datetime, Dict[str, Any], Dict[str, Any]]] = []

    for contribution in dig(collection, ("pullRequestReviewContributions", "nodes")) or []:
        if not contribution:
            continue
        review = contribution.get("pullRequestReview") or {}

        review_id = review.get("databaseId")
        if review_id is not None:
            if review_id in seen_review_ids:
                continue
            seen_review_ids.add(review_id)

        occurred_at = parse_timestamp(
            review.get("submittedAt") or review.get("updatedAt") or contribution.get("occurredAt")
        )
        if occurred_at is None or occurred_at < since:
            continue
        events.append((occurred_at, contribution, review))

    # Oldest first; the comment collapse compares each review with the previous
    # one on the same pull request.
    events.sort(key=lambda event: event[0])

    last_comment_at: Dict[str, datetime] = {}
    latest_review: Optional[datetime] = None

    for occurred_at, contribution, review in events:
        pull_request = contribution.get("pullRequest") or {}
        repo_slug = dig(pull_request, ("repository", "nameWithOwner"))
        pr_key = f"{repo_slug}#{pull_request.get('number')}"

        state = review.get("state")
        if state == "APPROVED":
            stat.approvals += 1
        elif state == "CHANGES_REQUESTED":
            stat.changesRequested += 1
        elif state == "COMMENTED":
            previous = last_comment_at.get(pr_key)
            if previous is None or occurred_at - previous > COMMENT_COLLAPSE_WINDOW:
                stat.commented += 1
            last_comment_at[pr_key] = occurred_at
        else:
            logger.debug("Skipping review with unhandled state", extra={"user": login, "state": state})
            continue

        stat.comments += int(dig(review, ("comments", "totalCount")) or 0)
        _append_unique(stat.repos, repo_slug)
        latest_review = occurred_at

    if latest_review is not None:
        stat.lastReviewAt = format_timestamp(latest_review)

    by_repository = collection.get("commitContributionsByRepository") or []
    by_repository_total = 0
    for entry in by_repository:
        count = int(dig(entry, ("contributions", "totalCount")) or 0)
        by_repository_total += count
        if count > 0:
            _append_unique(stat.commitRepos, dig(entry, ("repository", "nameWithOwner")))

    if by_repository_total > 0:
        stat.commitTotal = by_repository_total
    else:
        stat.commitTotal = int(collection.get("totalCommitContributions") or 0)
        stat.commitRepos = []

    stat.total = stat.approvals + stat.changesRequested + stat.commented
    return stat


def compute_reviewer_stats(
    client: GitHubClient,
    org: str,
    users: Sequence[str],
    window: str = "7d",
    now: Optional[datetime] = None,
    batch_size: int = 8,
) -> List[ReviewerStat]:
    """Compute review/commit aggregates for an explicit list of users.

    An empty user list returns ``[]`` without touching the GitHub API.

    Returns:
        Stats sorted by ``total`` descending, then ``lastReviewAt`` descending.

    Raises:
        ValidationError: On an invalid window.
        ResolutionError: If the organization cannot be resolved.
        ApiError: If any batch fails.
    """
    reference = now or utc_now()
    since = compute_since(window, reference)
    logins = dedupe_logins(users)
    if not logins:
        return []

    org_id = client.resolve_org_id(org)
    stats: List[ReviewerStat] = []

    for batch in batched(logins, batch_size):
        variables: Dict[str, Any] = {
            "org": org_id,
            "from": format_timestamp(since),
            "to": format_timestamp(reference),
        }
        variables.update({f"u{index}": login for index, login in enumerate(batch)})

        data = client.run_query(build_users_query(len(batch)), variables, allow_not_found=True)
        for index, login in enumerate(batch):
            stats.append(tally_user(login, data.get(f"u{index}"), since))

    ranked = sort_reviewer_stats(stats)
    logger.info(
        "Computed reviewer stats",
        extra={
            "org": org,
            "window": window,
            "users": len(logins),
            "active_users": sum(1 for stat in ranked if stat.total or stat.commitTotal),
        },
    )
    return ranked
