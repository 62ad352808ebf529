import asyncio
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, NamedTuple
from urllib.parse import quote

import aiohttp

from contribclub.config import Settings, get_settings
from contribclub.core.models import Member, RepoSummary, UserProfile
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

ACCEPT_JSON = "application/vnd.github+json"
# Topics were a preview feature; the mercy media type keeps them in older API versions
ACCEPT_TOPICS = "application/vnd.github+json, application/vnd.github.mercy-preview+json"
RATE_LIMIT_STATUSES = frozenset({403, 429})
PER_PAGE = 100

# Transient network failures are retried with a short exponential backoff
NETWORK_RETRY = RetryPolicy.exponential(
    3, minimum=1, maximum=5, retry_on=(aiohttp.ClientError, asyncio.TimeoutError)
)


class GithubError(Exception):
    """Non-2xx response from the GitHub API."""

    def __init__(self, status: int, url: str, detail: str = ""):
        self.status = status
        self.url = url
        super().__init__(f"GitHub request {url} failed with {status}: {detail[:200]}")


class RateLimitError(GithubError):
    """403/429 from the GitHub API."""


class ApiResponse(NamedTuple):
    status: int
    data: Any
    headers: Mapping[str, str]


def has_next_page(headers: Mapping[str, str], count: int, per_page: int) -> bool:
    link = headers.get("Link") or headers.get("link")
    if link is not None:
        return 'rel="next"' in link
    return count >= per_page


def _commit_date(item: dict[str, Any]) -> datetime | None:
    commit = item.get("commit") or {}
    raw = (commit.get("committer") or {}).get("date") or (commit.get("author") or {}).get("date")
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


class GithubClient:
    """Minimal async wrapper around the GitHub REST API.

    Every 403/429 flips :attr:`rate_limited`, which the aggregation pass reads
    once at the end to decide between its fresh payload and the caches.
    """

    def __init__(
        self,
        token: str | None = None,
        *,
        settings: Settings | None = None,
        session: aiohttp.ClientSession | None = None,
        retry: RetryPolicy = NETWORK_RETRY,
    ):
        self._settings = settings or get_settings()
        self._base = self._settings.github_api_url.rstrip("/")
        self._raw_base = self._settings.github_raw_url.rstrip("/")
        self._public_headers = {
            "Accept": ACCEPT_TOPICS,
            "X-GitHub-Api-Version": self._settings.api_version,
            "User-Agent": self._settings.user_agent,
        }
        self._headers = dict(self._public_headers)
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        else:
            logger.warning("GITHUB_TOKEN not found; GitHub API requests will be rate-limited.")
        self._session = session
        self._owns_session = session is None
        self._retry = retry
        self.rate_limited = False
        self.calls = 0

    async def __aenter__(self):
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=30))
        return self

    async def __aexit__(self, *exc):
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    # --- transport ---

    def _headers_for(self, *, public: bool, accept: str | None) -> dict[str, str]:
        headers = dict(self._public_headers if public else self._headers)
        if accept:
            headers["Accept"] = accept
        return headers

    async def _send(
        self, url: str, params: dict[str, Any] | None, headers: dict[str, str], text: bool
    ) -> ApiResponse:
        self.calls += 1
        async with self._session.get(url, params=params, headers=headers) as resp:  # type: ignore[union-attr]
            if resp.status in RATE_LIMIT_STATUSES:
                self.rate_limited = True
                body = await resp.text()
                logger.error(f"GitHub rate limit hit for {url}: {resp.status}")
                raise RateLimitError(resp.status, url, body)
            if resp.status >= 300:
                body = await resp.text()
                raise GithubError(resp.status, url, body)
            if resp.status in (202, 204):
                return ApiResponse(resp.status, None, resp.headers)
            if text:
                return ApiResponse(resp.status, await resp.text(), resp.headers)
            try:
                data = await resp.json(content_type=None)
            except ValueError as exc:
                raise GithubError(resp.status, url, f"invalid JSON: {exc}") from exc
            return ApiResponse(resp.status, data, resp.headers)

    async def get(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        public: bool = False,
        accept: str | None = None,
        text: bool = False,
    ) -> ApiResponse:
        if not url.startswith("http"):
            url = f"{self._base}{url}"
        headers = self._headers_for(public=public, accept=accept)
        logger.debug(f"GET {url} params={params}")
        return await self._retry.call(self._send, url, params, headers, text)

    async def _get_list(self, path: str, **kwargs) -> list[dict[str, Any]]:
        resp = await self.get(path, **kwargs)
        return resp.data if isinstance(resp.data, list) else []

    # --- endpoints ---

    async def org_members(self, org: str) -> list[Member]:
        data = await self._get_list(f"/orgs/{org}/members", params={"per_page": PER_PAGE})
        return [m for m in map(Member.from_api, data) if m]

    async def public_members(self, org: str) -> list[Member]:
        data = await self._get_list(
            f"/orgs/{org}/public_members",
            params={"per_page": PER_PAGE},
            public=True,
            accept=ACCEPT_JSON,
        )
        return [m for m in map(Member.from_api, data) if m]

    async def org_repos(self, org: str) -> list[RepoSummary]:
        return await self._repo_listing(f"/orgs/{org}/repos")

    async def user_repos(self, login: str) -> list[RepoSummary]:
        return await self._repo_listing(f"/users/{login}/repos")

    async def _repo_listing(self, path: str) -> list[RepoSummary]:
        params = {"per_page": PER_PAGE, "type": "public", "sort": "updated"}
        data = await self._get_list(path, params=params)
        return [r for r in map(RepoSummary.from_api, data) if r]

    async def user(self, login: str) -> UserProfile:
        resp = await self.get(f"/users/{login}")
        return UserProfile.from_api(resp.data or {})

    async def repo(self, owner: str, repo: str) -> RepoSummary | None:
        resp = await self.get(f"/repos/{owner}/{repo}")
        return RepoSummary.from_api(resp.data) if isinstance(resp.data, dict) else None

    async def search_topic_repos(self, login: str, topic: str) -> list[RepoSummary]:
        params = {"q": f"user:{login} topic:{topic}", "per_page": PER_PAGE, "sort": "updated"}
        resp = await self.get("/search/repositories", params=params)
        items = (resp.data or {}).get("items") if isinstance(resp.data, dict) else None
        return [r for r in map(RepoSummary.from_api, items or []) if r]

    async def commit_activity(self, owner: str, repo: str) -> list[int] | None:
        """Daily commit counts for the last year, oldest first.

        Returns None while GitHub is still generating the statistic (202).
        """
        resp = await self.get(f"/repos/{owner}/{repo}/stats/commit_activity")
        if resp.status == 202:
            return None
        weeks = resp.data
        if not isinstance(weeks, list):
            return []
        return [int(d) for week in weeks if isinstance(week, dict) for d in week.get("days") or []]

    async def commit_dates(
        self, owner: str, repo: str, *, since: datetime, page: int = 1, per_page: int = PER_PAGE
    ) -> tuple[list[datetime], bool]:
        """One page of commit timestamps since ``since``, plus whether more pages exist."""
        params = {"since": since.isoformat(), "per_page": per_page, "page": page}
        resp = await self.get(f"/repos/{owner}/{repo}/commits", params=params)
        items = resp.data if isinstance(resp.data, list) else []
        dates = [d for d in map(_commit_date, items) if d]
        return dates, bool(items) and has_next_page(resp.headers, len(items), per_page)

    async def last_commit_date(self, owner: str, repo: str, path: str) -> datetime | None:
        params = {"path": path, "per_page": 1}
        items = await self._get_list(f"/repos/{owner}/{repo}/commits", params=params)
        return _commit_date(items[0]) if items else None

    async def contents(self, owner: str, repo: str) -> list[dict[str, Any]]:
        return await self._get_list(f"/repos/{owner}/{repo}/contents")

    def raw_url(self, owner: str, repo: str, path: str, ref: str = "master") -> str:
        return f"{self._raw_base}/{owner}/{repo}/{ref}/{quote(path)}"

    async def raw_file(self, url: str) -> str:
        resp = await self.get(url, text=True)
        return resp.data or ""
