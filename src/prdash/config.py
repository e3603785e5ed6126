"""Configuration parsing and validation for the PR dashboard backend."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional

from .errors import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_PORT = 5174


@dataclass(frozen=True)
class Config:
    """Validated runtime settings used by the dashboard backend."""

    token: str
    api_url: str = DEFAULT_API_URL
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    repo_batch_size: int = 8
    user_batch_size: int = 8
    prs_per_repo: int = 50
    max_concurrency: int = 6
    stale_days: int = 14
    activity_max_age_days: int = 90
    top_n: int = 3
    member_page_size: int = 20
    timeout_seconds: int = 30


def _positive_env_int(name: str, default: int) -> int:
    """Read a positive integer from the environment, falling back to ``default``."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return default

    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid value for '{name}': expected an integer, got {raw!r}.") from exc

    if value <= 0:
        raise ConfigurationError(f"Invalid value for '{name}': expected an integer greater than 0.")

    return value


def _token_from_gh_cli() -> Optional[str]:
    """Return the token of a logged-in GitHub CLI session, if there is one."""
    executable = shutil.which("gh")
    if executable is None:
        return None

    try:
        result = subprocess.run(
            [executable, "auth", "token"],
            capture_output=True,
            text=True,
            timeout=10,
            check=True,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as exc:
        logger.debug("GitHub CLI did not provide a token", extra={"error": str(exc)})
        return None

    token = result.stdout.strip()
    return token or None


def resolve_token() -> str:
    """Find the pre-established GitHub credential.

    Looks at ``GITHUB_TOKEN``, then ``GH_TOKEN``, then asks the GitHub CLI.

    Raises:
        AuthenticationError: If no credential is available.
    """
    for name in ("GITHUB_TOKEN", "GH_TOKEN"):
        token = os.getenv(name, "").strip()
        if token:
            return token

    token = _token_from_gh_cli()
    if token:
        return token

    raise AuthenticationError(
        "Missing GitHub credentials. Set 'GITHUB_TOKEN' (or 'GH_TOKEN') "
        "or log in with 'gh auth login' before starting the server."
    )


def load_config(host: str = "127.0.0.1", port: Optional[int] = None) -> Config:
    """Build and validate application configuration.

    Args:
        host: Interface the HTTP server binds to.
        port: TCP port; defaults to the ``PORT`` environment variable or 5174.

    Returns:
        A validated ``Config`` instance.

    Raises:
        ConfigurationError: If a numeric setting is not a positive integer.
        AuthenticationError: If no GitHub credential is configured.
    """
    if port is None:
        port = _positive_env_int("PORT", DEFAULT_PORT)
    elif port <= 0:
        raise ConfigurationError("Invalid value for 'port': expected an integer greater than 0.")

    api_url = os.getenv("PRDASH_API_URL", "").strip() or DEFAULT_API_URL

    return Config(
        token=resolve_token(),
        api_url=api_url.rstrip("/"),
        host=host,
        port=port,
        repo_batch_size=_positive_env_int("PRDASH_REPO_BATCH_SIZE", 8),
        user_batch_size=_positive_env_int("PRDASH_USER_BATCH_SIZE", 8),
        prs_per_repo=_positive_env_int("PRDASH_PRS_PER_REPO", 50),
        max_concurrency=_positive_env_int("PRDASH_MAX_CONCURRENCY", 6),
        stale_days=_positive_env_int("PRDASH_STALE_DAYS", 14),
        activity_max_age_days=_positive_env_int("PRDASH_ACTIVITY_MAX_AGE_DAYS", 90),
        top_n=_positive_env_int("PRDASH_TOP_N", 3),
        member_page_size=_positive_env_int("PRDASH_MEMBER_PAGE_SIZE", 20),
        timeout_seconds=_positive_env_int("PRDASH_TIMEOUT_SECONDS", 30),
    )
