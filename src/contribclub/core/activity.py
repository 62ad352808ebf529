import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import aiohttp
from sqlalchemy.exc import SQLAlchemyError

from contribclub.api import GithubClient, GithubError, RetryPolicy
from contribclub.config import Settings, get_settings
from contribclub.db import Store
from .models import ActivityCacheEntry
from .urls import RepoRef, parse_repo

logger = logging.getLogger(__name__)

# Trailing window kept from the weekly statistic (52 full weeks)
YEARLY_WINDOW_DAYS = 364

UPSTREAM_ERRORS = (GithubError, aiohttp.ClientError, asyncio.TimeoutError)


@dataclass(frozen=True)
class FreshnessPolicy:
    ttl: float
    retry_ttl: float
    max_age: float

    @classmethod
    def from_settings(cls, settings: Settings) -> "FreshnessPolicy":
        return cls(
            ttl=settings.activity_ttl,
            retry_ttl=settings.activity_retry_ttl,
            max_age=settings.activity_max_age,
        )

    def is_fresh(self, entry: ActivityCacheEntry | None, now: float) -> bool:
        if entry is None:
            return False
        age = now - entry.timestamp
        # An entry stamped in the future (clock skew) is never trusted
        if age < 0 or age > self.max_age:
            return False
        return age < (self.ttl if entry.activity else self.retry_ttl)


def bucket_by_day(dates: Iterable[datetime], now: datetime, days: int) -> list[int]:
    """Dense per-day commit counts for the ``days`` days ending today, oldest first."""
    today = now.astimezone(timezone.utc).date()
    counts = [0] * days
    for d in dates:
        if d.tzinfo is None:
            d = d.replace(tzinfo=timezone.utc)
        offset = (today - d.astimezone(timezone.utc).date()).days
        if 0 <= offset < days:
            counts[days - 1 - offset] += 1
    return counts


class ActivityFetcher:
    """Per-repository commit activity with a stale-while-unavailable cache.

    The weekly statistic is generated asynchronously by GitHub, so it is polled
    a fixed number of times. When it never arrives the last cached series is
    reused, and only repositories with nothing cached fall back to paging
    through recent commits.
    """

    def __init__(self, gh: GithubClient, store: Store | None = None, *, settings: Settings | None = None):
        self.gh = gh
        self.store = store
        self.settings = settings or get_settings()
        self.freshness = FreshnessPolicy.from_settings(self.settings)
        self.pending_retry = RetryPolicy.fixed(
            self.settings.activity_attempts,
            self.settings.activity_retry_delay,
            retry_if=lambda days: days is None,
        )
        self.semaphore = asyncio.Semaphore(self.settings.request_concurrency)

    def load_cached(self, repo_urls: Iterable[str]) -> dict[str, ActivityCacheEntry]:
        if self.store is None:
            return {}
        try:
            return self.store.load_activity(repo_urls)
        except SQLAlchemyError as e:
            logger.error(f"Failed to read cached activity: {e}")
            return {}

    def _persist(self, entry: ActivityCacheEntry) -> None:
        if self.store is None:
            return
        try:
            self.store.save_activity(entry)
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist activity for {entry.repo_url}: {e}")

    async def _primary(self, ref: RepoRef) -> list[int] | None:
        try:
            days = await self.pending_retry.call(self.gh.commit_activity, ref.owner, ref.repo)
        except UPSTREAM_ERRORS as e:
            logger.error(f"Commit activity fetch failed for {ref.owner}/{ref.repo}: {e}")
            return None
        if days is None:
            logger.warning(f"Commit activity still generating for {ref.owner}/{ref.repo}")
            return None
        return days[-YEARLY_WINDOW_DAYS:]

    async def _secondary(self, ref: RepoRef, now: float) -> list[int] | None:
        window = self.settings.activity_window_days
        current = datetime.fromtimestamp(now, timezone.utc)
        since = current - timedelta(days=window)
        dates: list[datetime] = []
        for page in range(1, self.settings.activity_max_pages + 1):
            try:
                batch, has_next = await self.gh.commit_dates(ref.owner, ref.repo, since=since, page=page)
            except UPSTREAM_ERRORS as e:
                # A truncated listing would undercount; report nothing instead
                logger.error(f"Commit listing failed for {ref.owner}/{ref.repo} page {page}: {e}")
                return None
            dates.extend(batch)
            if not batch or not has_next:
                break
        if not dates:
            return []
        return bucket_by_day(dates, current, window)

    async def fetch(self, repo_url: str, cached: ActivityCacheEntry | None, now: float) -> list[int] | None:
        """Activity series for one repository; None when nothing is known."""
        if self.freshness.is_fresh(cached, now):
            return cached.activity  # type: ignore[union-attr]
        fallback = cached.activity if cached else None
        ref = parse_repo(repo_url)
        if ref is None:
            return fallback

        series = await self._primary(ref)
        if series is None:
            if fallback:
                logger.info(f"Serving stale cached activity for {repo_url}")
                return fallback
            series = await self._secondary(ref, now)
        if series is None:
            return fallback

        self._persist(ActivityCacheEntry(repo_url=repo_url, activity=series, timestamp=now))
        return series

    async def _fetch_bounded(self, repo_url: str, cached: ActivityCacheEntry | None, now: float):
        async with self.semaphore:
            return await self.fetch(repo_url, cached, now)

    async def run(self, repo_urls: list[str], now: float) -> dict[str, list[int]]:
        cached = self.load_cached(repo_urls)
        results = await asyncio.gather(
            *(self._fetch_bounded(url, cached.get(url), now) for url in repo_urls)
        )
        return {url: series for url, series in zip(repo_urls, results) if series is not None}
