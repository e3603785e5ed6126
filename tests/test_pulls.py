"""Tests for pull request aggregation, flattening and window filtering."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from prdash.errors import QueryError, ValidationError
from prdash.models import to_payload
from prdash.pulls import aggregate_pull_requests, build_batch_query, flatten_pull_request

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def _ago(**kwargs) -> str:
    return (NOW - timedelta(**kwargs)).isoformat().replace("+00:00", "Z")


def _pr_node(number: int, updated: str, merged: str | None = None, reviews=None, requests=None) -> dict:
    return {
        "number": number,
        "title": f"PR {number}",
        "url": f"https://github.com/acme/core/pull/{number}",
        "isDraft": False,
        "createdAt": _ago(days=40),
        "updatedAt": updated,
        "mergedAt": merged,
        "closedAt": merged,
        "baseRefName": "main",
        "headRefName": f"feature-{number}",
        "additions": 10,
        "deletions": 2,
        "changedFiles": 1,
        "author": {"login": "alice"},
        "reviewRequests": {"nodes": requests or []},
        "reviews": {"nodes": reviews or []},
    }


def _client_for(repos_to_nodes: dict) -> Mock:
    """Fake gateway answering batch queries from a repo -> PR nodes map."""
    client = Mock()

    def _run_query(query, variables, allow_not_found=False):
        data = {}
        index = 0
        while f"r{index}" in variables:
            repo = variables[f"r{index}"]
            data[f"r{index}"] = {
                "nameWithOwner": f"{variables['owner']}/{repo}",
                "pullRequests": {"nodes": repos_to_nodes.get(repo, [])},
            }
            index += 1
        return data

    client.run_query.side_effect = _run_query
    return client


def test_open_prs_outside_window_are_dropped():
    """Verify a 7d window keeps a PR updated 3 days ago and drops one updated 10 days ago."""
    client = _client_for({"core": [_pr_node(1, _ago(days=3)), _pr_node(2, _ago(days=10))]})

    prs = aggregate_pull_requests(client, "acme", ["core"], states=["open"], window="7d", now=NOW)

    assert [pr.number for pr in prs] == [1]
    assert prs[0].id == "acme/core#1"
    assert prs[0].state == "open"


def test_merged_prs_kept_when_merged_or_updated_in_window():
    """Verify merged PRs survive when merged in-window or touched in-window."""
    nodes = [
        _pr_node(1, updated=_ago(days=1), merged=_ago(days=1)),
        _pr_node(2, updated=_ago(days=2), merged=_ago(days=20)),
        _pr_node(3, updated=_ago(days=20), merged=_ago(days=20)),
    ]
    client = _client_for({"core": nodes})

    prs = aggregate_pull_requests(client, "acme", ["core"], states=["merged"], window="7d", now=NOW)

    assert [pr.number for pr in prs] == [1, 2]
    assert all(pr.state == "merged" for pr in prs)


def test_state_is_merged_iff_merged_at_present():
    """Verify the state invariant holds for every returned pull request."""
    nodes = [_pr_node(1, _ago(hours=1)), _pr_node(2, _ago(hours=2), merged=_ago(hours=2))]
    client = _client_for({"core": nodes})

    prs = aggregate_pull_requests(client, "acme", ["core"], states=["open", "merged"], window="24h", now=NOW)

    assert len(prs) == 2
    for pr in prs:
        assert (pr.state == "merged") == (pr.mergedAt is not None)


def test_flatten_counts_approvals_reviewers_and_last_review():
    """Verify flattening derives approvals, requested reviewers and lastReviewedAt."""
    node = _pr_node(
        7,
        _ago(hours=1),
        reviews=[
            {"state": "APPROVED", "submittedAt": "2026-01-14T10:00:00Z", "updatedAt": None},
            {"state": "COMMENTED", "submittedAt": None, "updatedAt": "2026-01-15T09:00:00Z"},
            {"state": "APPROVED", "submittedAt": "2026-01-13T10:00:00Z", "updatedAt": None},
        ],
        requests=[
            {"requestedReviewer": {"login": "bob"}},
            {"requestedReviewer": {"slug": "platform"}},
            {"requestedReviewer": {}},
            {"requestedReviewer": None},
        ],
    )

    pr = flatten_pull_request("acme/core", node)

    assert pr.approvals == 2
    assert pr.requestedReviewers == ["bob", "team:platform"]
    assert pr.lastReviewedAt == "2026-01-15T09:00:00Z"
    assert pr.additions == 10


def test_flatten_without_reviews_has_no_last_review():
    """Verify lastReviewedAt is None when a PR has no reviews."""
    pr = flatten_pull_request("acme/core", _pr_node(1, _ago(hours=1)))

    assert pr.lastReviewedAt is None
    assert pr.approvals == 0


def test_repositories_are_batched_with_positional_aliases():
    """Verify ten repositories produce two queries of eight and two aliases."""
    repos = [f"repo{i}" for i in range(10)]
    client = _client_for({repo: [_pr_node(i + 1, _ago(hours=i + 1))] for i, repo in enumerate(repos)})

    prs = aggregate_pull_requests(client, "acme", repos, window="24h", now=NOW, batch_size=8)

    assert client.run_query.call_count == 2
    batch_sizes = sorted(
        sum(1 for key in call.args[1] if key.startswith("r")) for call in client.run_query.call_args_list
    )
    assert batch_sizes == [2, 8]
    assert [pr.repo for pr in prs] == [f"acme/{repo}" for repo in repos]


def test_aggregation_is_deterministic_for_a_fixed_snapshot():
    """Verify repeated aggregation of the same snapshot yields identical output."""
    nodes = [_pr_node(i, _ago(hours=3)) for i in range(1, 6)]
    client = _client_for({"core": nodes, "web": list(reversed(nodes))})

    first = to_payload(aggregate_pull_requests(client, "acme", ["core", "web"], window="7d", now=NOW))
    second = to_payload(aggregate_pull_requests(client, "acme", ["core", "web"], window="7d", now=NOW))

    assert first == second
    assert [pr["id"] for pr in first][:2] == ["acme/core#1", "acme/core#2"]


def test_batch_failure_aborts_whole_aggregation():
    """Verify an error in any batch propagates instead of returning partial results."""
    client = Mock()
    client.run_query.side_effect = QueryError("boom")

    with pytest.raises(QueryError):
        aggregate_pull_requests(client, "acme", ["core"], now=NOW)


def test_invalid_inputs_raise_validation_error():
    """Verify empty repository lists and unknown states are rejected."""
    client = Mock()

    with pytest.raises(ValidationError):
        aggregate_pull_requests(client, "acme", [], now=NOW)
    with pytest.raises(ValidationError):
        aggregate_pull_requests(client, "acme", ["core"], states=["closed"], now=NOW)
    with pytest.raises(ValidationError):
        aggregate_pull_requests(client, "acme", ["core"], window="1y", now=NOW)

    client.run_query.assert_not_called()


def test_build_batch_query_declares_one_variable_per_alias():
    """Verify the batch document declares and uses each repository alias."""
    document = build_batch_query(3)

    for index in range(3):
        assert f"$r{index}: String!" in document
        assert f"r{index}: repository(owner: $owner, name: $r{index})" in document
