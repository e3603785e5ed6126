"""GitHub GraphQL/REST client: the only channel to the platform."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, TypeVar

import requests

from .config import Config
from .errors import ApiError, AuthenticationError, QueryError, RateLimitError, ResolutionError
from .models import OrgMember, OrgSummary, OrgTeam, Repository, TeamMember, ViewerInfo

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Organization login (lower-case) -> GraphQL node id. The mapping never
# changes upstream, so entries live for the whole process.
_ORG_ID_CACHE: Dict[str, str] = {}

ORG_ID_QUERY = """
query($login: String!) {
  organization(login: $login) { id }
}
"""

REPOSITORIES_QUERY = """
query($org: String!, $after: String) {
  organization(login: $org) {
    repositories(first: 100, after: $after, orderBy: {field: PUSHED_AT, direction: DESC}) {
      pageInfo { hasNextPage endCursor }
      nodes { name nameWithOwner description isPrivate updatedAt pushedAt }
    }
  }
}
"""

TEAMS_QUERY = """
query($org: String!, $after: String) {
  organization(login: $org) {
    teams(first: 50, after: $after) {
      pageInfo { hasNextPage endCursor }
      nodes {
        slug
        name
        members(first: 100) {
          pageInfo { hasNextPage endCursor }
          nodes { login name }
        }
      }
    }
  }
}
"""

TEAM_MEMBERS_QUERY = """
query($org: String!, $slug: String!, $after: String) {
  organization(login: $org) {
    team(slug: $slug) {
      members(first: 100, after: $after) {
        pageInfo { hasNextPage endCursor }
        nodes { login name }
      }
    }
  }
}
"""

MEMBERS_QUERY = """
query($org: String!, $after: String) {
  organization(login: $org) {
    membersWithRole(first: 100, after: $after) {
      pageInfo { hasNextPage endCursor }
      nodes { login name avatarUrl }
    }
  }
}
"""

VIEWER_QUERY = """
query($after: String) {
  viewer {
    login
    name
    avatarUrl
    organizations(first: 100, after: $after) {
      pageInfo { hasNextPage endCursor }
      nodes { login name avatarUrl }
    }
  }
}
"""


def dig(data: Optional[Dict[str, Any]], path: Sequence[str]) -> Any:
    """Walk nested dictionaries along ``path``; ``None`` if any step is missing."""
    current: Any = data
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def batched(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Split ``items`` into consecutive groups of at most ``size`` elements."""
    if size <= 0:
        raise ValueError("Batch size must be greater than 0.")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def clear_org_id_cache() -> None:
    _ORG_ID_CACHE.clear()


class GitHubClient:
    """Small, typed client for the GitHub GraphQL API.

    Every call is a single HTTP request. Failures are never retried here;
    rate limits surface as ``RateLimitError`` carrying a retry hint.
    """

    _DEFAULT_RETRY_AFTER_MS = 60_000

    def __init__(self, config: Config) -> None:
        """Initialize an authenticated GitHub API client.

        Args:
            config: Validated runtime configuration including the token.
        """
        self._config = config
        self._timeout_seconds = config.timeout_seconds
        self._base_url = config.api_url.rstrip("/")

        self._session = requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {config.token}",
                "User-Agent": "prdash/0.1",
                "X-GitHub-Api-Version": "2022-11-28",
            }
        )

    def _build_url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _retry_after_ms(self, response: requests.Response) -> int:
        """Compute the retry hint, honoring Retry-After and X-RateLimit-Reset."""
        retry_after_header = response.headers.get("Retry-After")
        if retry_after_header:
            try:
                return max(1, int(retry_after_header)) * 1000
            except ValueError:
                pass

        reset_header = response.headers.get("X-RateLimit-Reset")
        if reset_header:
            try:
                delay_seconds = int(reset_header) - time.time()
                return max(1000, int(delay_seconds * 1000))
            except ValueError:
                pass

        return self._DEFAULT_RETRY_AFTER_MS

    def _is_rate_limited(self, response: requests.Response) -> bool:
        if response.status_code == 429:
            return True
        if response.status_code != 403:
            return False
        if response.headers.get("X-RateLimit-Remaining") == "0" or response.headers.get("Retry-After"):
            return True
        return "rate limit" in (response.text or "").lower()

    def _request_json(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        _, payload = self._request(method, path, **kwargs)
        return payload

    def _request(self, method: str, path: str, **kwargs: Any) -> Tuple[requests.Response, Dict[str, Any]]:
        """Execute one HTTP request and decode a JSON object.

        Returns:
            The raw response (for its headers) and the decoded payload.

        Raises:
            AuthenticationError: If GitHub rejects the credential (HTTP 401).
            RateLimitError: If GitHub throttles the request.
            ApiError: On transport failures, other HTTP errors or invalid JSON.
        """
        url = self._build_url(path)
        try:
            response = self._session.request(method, url, timeout=self._timeout_seconds, **kwargs)
        except requests.RequestException as exc:
            raise ApiError(f"GitHub request failed: {method} {url}") from exc

        status_code = response.status_code

        if self._is_rate_limited(response):
            retry_after_ms = self._retry_after_ms(response)
            logger.warning(
                "GitHub rate limit reached",
                extra={"url": url, "status_code": status_code, "retry_after_ms": retry_after_ms},
            )
            raise RateLimitError("GitHub API rate limit exceeded.", retry_after_ms=retry_after_ms)

        if status_code == 401:
            raise AuthenticationError("GitHub rejected the configured credentials (HTTP 401).")

        if status_code >= 400:
            raise ApiError(
                "GitHub API request failed: "
                f"{method} {url} returned {status_code} - {response.text[:200]}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ApiError(f"GitHub API returned invalid JSON: {method} {url}") from exc

        if not isinstance(payload, dict):
            raise ApiError(f"GitHub API returned unexpected payload shape: {method} {url}")

        return response, payload

    def _raise_for_errors(
        self,
        errors: List[Dict[str, Any]],
        allow_not_found: bool,
        response: requests.Response,
    ) -> None:
        """Translate a GraphQL ``errors`` array into the error taxonomy.

        GraphQL rate limits arrive with HTTP 200, so the retry hint comes from
        that response's rate-limit headers.
        """
        if any(error.get("type") == "RATE_LIMITED" for error in errors):
            raise RateLimitError(
                "GitHub GraphQL rate limit exceeded.",
                retry_after_ms=self._retry_after_ms(response),
            )

        not_found = [error for error in errors if error.get("type") == "NOT_FOUND"]
        others = [error for error in errors if error.get("type") != "NOT_FOUND"]

        if others:
            messages = "; ".join(str(error.get("message", "unknown error")) for error in others)
            raise QueryError(f"GitHub GraphQL query failed: {messages}")

        if not_found and not allow_not_found:
            messages = "; ".join(str(error.get("message", "not found")) for error in not_found)
            raise ResolutionError(messages)

        for error in not_found:
            logger.debug("Ignoring unresolved GraphQL node", extra={"path": error.get("path")})

    def run_query(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Dict[str, Any]:
        """Run one GraphQL document and return its ``data`` object.

        Args:
            query: GraphQL document, possibly with several aliased fields.
            variables: GraphQL variables.
            allow_not_found: Leave unresolvable nodes as ``None`` instead of
                raising ``ResolutionError``.

        Raises:
            RateLimitError, ResolutionError, QueryError, ApiError.
        """
        logger.debug("Running GraphQL query", extra={"variables": sorted((variables or {}).keys())})
        response, payload = self._request(
            "POST",
            "graphql",
            json={"query": query, "variables": variables or {}},
        )

        errors = payload.get("errors") or []
        if errors:
            self._raise_for_errors(errors, allow_not_found, response)

        data = payload.get("data")
        if not isinstance(data, dict):
            raise QueryError("GitHub GraphQL response did not include data.")
        return data

    def paginate(
        self,
        query: str,
        variables: Dict[str, Any],
        path: Sequence[str],
        after: Optional[str] = None,
    ) -> Iterator[Dict[str, Any]]:
        """Yield each page's ``data`` for the connection at ``path``.

        The query must accept an ``$after`` cursor variable. Paging continues
        until ``pageInfo.hasNextPage`` is false.
        """
        while True:
            data = self.run_query(query, {**variables, "after": after})
            yield data

            connection = dig(data, path)
            page_info = (connection or {}).get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break

            after = page_info.get("endCursor")
            if not after:
                break

    def collect_nodes(
        self,
        query: str,
        variables: Dict[str, Any],
        path: Sequence[str],
        after: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Page a connection to exhaustion and return all of its nodes."""
        nodes: List[Dict[str, Any]] = []
        for data in self.paginate(query, variables, path, after=after):
            connection = dig(data, path) or {}
            nodes.extend(node for node in connection.get("nodes") or [] if node)
        return nodes

    def resolve_org_id(self, org: str) -> str:
        """Resolve an organization login to its GraphQL node id (memoized).

        Raises:
            ResolutionError: If the organization is unknown or inaccessible.
        """
        key = org.strip().lower()
        cached = _ORG_ID_CACHE.get(key)
        if cached:
            return cached

        data = self.run_query(ORG_ID_QUERY, {"login": org.strip()})
        org_id = dig(data, ("organization", "id"))
        if not org_id:
            raise ResolutionError(f"Organization '{org}' was not found or is not accessible.")

        _ORG_ID_CACHE[key] = str(org_id)
        return str(org_id)

    def list_repositories(self, org: str) -> List[Repository]:
        """List all repositories of an organization, most recently pushed first."""
        nodes = self.collect_nodes(REPOSITORIES_QUERY, {"org": org}, ("organization", "repositories"))
        return [
            Repository(
                name=str(node["name"]),
                fullName=str(node.get("nameWithOwner") or f"{org}/{node['name']}"),
                description=node.get("description"),
                isPrivate=bool(node.get("isPrivate")),
                updatedAt=node.get("updatedAt"),
                pushedAt=node.get("pushedAt"),
            )
            for node in nodes
            if node.get("name")
        ]

    def list_teams(self, org: str) -> List[OrgTeam]:
        """List teams with their complete member lists."""
        teams: List[OrgTeam] = []
        for node in self.collect_nodes(TEAMS_QUERY, {"org": org}, ("organization", "teams")):
            members_connection = node.get("members") or {}
            member_nodes = [member for member in members_connection.get("nodes") or [] if member]

            page_info = members_connection.get("pageInfo") or {}
            if page_info.get("hasNextPage") and page_info.get("endCursor"):
                member_nodes.extend(
                    self.collect_nodes(
                        TEAM_MEMBERS_QUERY,
                        {"org": org, "slug": node["slug"]},
                        ("organization", "team", "members"),
                        after=page_info["endCursor"],
                    )
                )

            teams.append(
                OrgTeam(
                    slug=str(node["slug"]),
                    name=str(node.get("name") or node["slug"]),
                    members=[
                        TeamMember(login=str(member["login"]), name=member.get("name"))
                        for member in member_nodes
                        if member.get("login")
                    ],
                )
            )
        return teams

    def list_members(self, org: str) -> List[OrgMember]:
        nodes = self.collect_nodes(MEMBERS_QUERY, {"org": org}, ("organization", "membersWithRole"))
        return [
            OrgMember(login=str(node["login"]), name=node.get("name"), avatarUrl=node.get("avatarUrl"))
            for node in nodes
            if node.get("login")
        ]

    def get_viewer(self) -> ViewerInfo:
        """Return the authenticated user and every organization they belong to."""
        viewer: Optional[ViewerInfo] = None
        for data in self.paginate(VIEWER_QUERY, {}, ("viewer", "organizations")):
            node = data.get("viewer") or {}
            if viewer is None:
                if not node.get("login"):
                    raise ResolutionError("Could not resolve the authenticated GitHub user.")
                viewer = ViewerInfo(login=str(node["login"]), name=node.get("name"), avatarUrl=node.get("avatarUrl"))

            for org in dig(node, ("organizations", "nodes")) or []:
                if org and org.get("login"):
                    viewer.organizations.append(
                        OrgSummary(login=str(org["login"]), name=org.get("name"), avatarUrl=org.get("avatarUrl"))
                    )

        if viewer is None:
            raise ResolutionError("Could not resolve the authenticated GitHub user.")
        return viewer

    def search_counts(self, queries: Sequence[Tuple[str, str]]) -> Dict[str, int]:
        """Run several count-only issue searches in one request.

        Args:
            queries: ``(key, search_query)`` pairs.

        Returns:
            ``issueCount`` per key.
        """
        if not queries:
            return {}

        declarations = ", ".join(f"$q{index}: String!" for index in range(len(queries)))
        fields = "\n".join(
            f"  c{index}: search(query: $q{index}, type: ISSUE, first: 0) {{ issueCount }}"
            for index in range(len(queries))
        )
        document = f"query({declarations}) {{\n{fields}\n}}"
        variables = {f"q{index}": search for index, (_, search) in enumerate(queries)}

        data = self.run_query(document, variables)
        return {
            key: int(dig(data, (f"c{index}", "issueCount")) or 0)
            for index, (key, _) in enumerate(queries)
        }

    def search_commits(self, query: str, per_page: int) -> List[Dict[str, Any]]:
        """Search commits (REST), newest committer date first."""
        payload = self._request_json(
            "GET",
            "search/commits",
            params={
                "q": query,
                "sort": "committer-date",
                "order": "desc",
                "per_page": max(1, min(100, per_page)),
            },
        )
        return [item for item in payload.get("items") or [] if isinstance(item, dict)]
