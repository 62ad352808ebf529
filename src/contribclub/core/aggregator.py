import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from time import time
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError

from contribclub.api import GithubClient
from contribclub.config import Settings, get_settings
from contribclub.db import Store
from contribclub.db.mappers import PersistedCache
from .activity import UPSTREAM_ERRORS, ActivityFetcher
from .blog import BlogEngine
from .cache import ProcessState, default_state, fallback_payload, load_fallback_urls, serve_from_tiers
from .models import CachedPayload, GithubStats, Member, MemberDetail, RepoStats, RepoSummary
from .urls import parse_repo

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Both spellings are in use on member repositories
PROJECT_TOPICS = ("contrib-club", "contrib.club")


def dedupe_by_url(repos: Iterable[RepoSummary]) -> list[RepoSummary]:
    """One entry per URL, first-seen order, last-seen value."""
    by_url: dict[str, RepoSummary] = {}
    for repo in repos:
        by_url[repo.url] = repo
    return list(by_url.values())


def merge_repo(existing: RepoSummary | None, incoming: RepoSummary) -> RepoSummary:
    """The later source wins, except that a placeholder never replaces live data."""
    if existing is not None and incoming.is_fallback and not existing.is_fallback:
        return existing
    return incoming


def merge_fallback(org_repos: list[RepoSummary], fallback: list[RepoSummary]) -> list[RepoSummary]:
    """Add fallback repositories the org listing lacks; upgrade its placeholders."""
    by_url = {r.url: r for r in dedupe_by_url(org_repos)}
    for repo in fallback:
        current = by_url.get(repo.url)
        if current is None or current.is_fallback:
            by_url[repo.url] = merge_repo(current, repo)
    return list(by_url.values())


def combine_repos(
    org_repos: list[RepoSummary], member_repos: list[RepoSummary]
) -> tuple[list[RepoSummary], list[RepoSummary]]:
    """Deduplicated union of org and member repositories; org entries take precedence.

    Returns ``(combined, member_only)``.
    """
    org = dedupe_by_url(org_repos)
    org_urls = {r.url for r in org}
    member_only = dedupe_by_url(r for r in member_repos if r.url not in org_urls)
    return org + member_only, member_only


def recompute_stats(repos: list[RepoSummary]) -> tuple[GithubStats, dict[str, RepoStats]]:
    """Authoritative totals over a deduplicated repository list."""
    repo_stats = {r.url: RepoStats(stars=r.stars, forks=r.forks) for r in repos}
    totals = GithubStats(
        stars=sum(s.stars for s in repo_stats.values()),
        forks=sum(s.forks for s in repo_stats.values()),
    )
    return totals, repo_stats


class Aggregator:
    """One aggregation pass: members, repositories, activity and blog posts.

    Nothing in a pass is fatal. Each upstream step degrades to an empty value,
    and if the pass as a whole fails the cache tiers answer instead.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        state: ProcessState | None = None,
        store: Store | None = None,
        client_factory: Callable[[], GithubClient] | None = None,
        clock: Callable[[], float] = time,
    ):
        self.settings = settings or get_settings()
        self.state = state or default_state()
        self.state.guard.cooldown = self.settings.rate_limit_cooldown
        self.store = store
        self.client_factory = client_factory or (
            lambda: GithubClient(self.settings.github_token, settings=self.settings)
        )
        self.clock = clock
        self.org = self.settings.github_org
        self.semaphore = asyncio.Semaphore(self.settings.request_concurrency)

    # --- helpers ---

    async def _attempt(self, call: Awaitable[T], default: T, what: str) -> T:
        async with self.semaphore:
            try:
                return await call
            except UPSTREAM_ERRORS as e:
                logger.error(f"Failed to load {what}: {e}")
                return default

    def _read_persisted(self) -> PersistedCache | None:
        if self.store is None:
            return None
        try:
            self.store.ensure_schema()
            return self.store.read_cache()
        except SQLAlchemyError as e:
            logger.error(f"Failed to read persisted cache: {e}")
            return None

    # --- steps ---

    async def fetch_members(self, gh: GithubClient) -> list[Member]:
        members = await self._attempt(gh.org_members(self.org), [], "org members")
        if not members:
            # Private membership is hidden without an org-scoped token
            members = await self._attempt(gh.public_members(self.org), [], "public org members")
        return members

    async def _member_detail(self, gh: GithubClient, member: Member) -> MemberDetail:
        profile, repos = await asyncio.gather(
            self._attempt(gh.user(member.login), None, f"profile for {member.login}"),
            self._attempt(gh.user_repos(member.login), [], f"repo stars for {member.login}"),
        )
        detail = MemberDetail(**member.model_dump(), star_count=sum(r.stars for r in repos))
        if profile is not None:
            detail = detail.model_copy(
                update={
                    "name": profile.name,
                    "public_repos": profile.public_repos,
                    "public_gists": profile.public_gists,
                    "followers": profile.followers,
                }
            )
        return detail

    async def fetch_member_details(self, gh: GithubClient, members: list[Member]) -> list[MemberDetail]:
        return list(await asyncio.gather(*(self._member_detail(gh, m) for m in members)))

    async def fetch_org_repos(self, gh: GithubClient, fallback_urls: list[str], now: float) -> list[RepoSummary]:
        # The org may be a user account; only try it once the org endpoint gave nothing
        for label, load in (("org", gh.org_repos), ("user", gh.user_repos)):
            repos = await self._attempt(load(self.org), [], f"{label} repositories for {self.org}")
            if repos:
                return dedupe_by_url(repos)
        return fallback_payload(fallback_urls, now).org_repos

    async def _hydrate_fallback(self, gh: GithubClient, url: str, placeholder: RepoSummary) -> RepoSummary:
        ref = parse_repo(url)
        if ref is None:
            return placeholder
        repo = await self._attempt(gh.repo(ref.owner, ref.repo), None, f"fallback repo {url}")
        return repo or placeholder

    async def merge_fallback_repos(
        self, gh: GithubClient, org_repos: list[RepoSummary], fallback_urls: list[str], now: float
    ) -> list[RepoSummary]:
        if not fallback_urls:
            return org_repos
        placeholders = fallback_payload(fallback_urls, now).org_repos
        hydrated = await asyncio.gather(
            *(self._hydrate_fallback(gh, p.url, p) for p in placeholders)
        )
        return merge_fallback(org_repos, list(hydrated))

    async def _topic_repos(self, gh: GithubClient, member: Member) -> list[RepoSummary]:
        found: list[RepoSummary] = []
        for topic in PROJECT_TOPICS:
            found += await self._attempt(
                gh.search_topic_repos(member.login, topic), [], f"{topic} repos for {member.login}"
            )
        return dedupe_by_url(found)

    async def fetch_member_repos(self, gh: GithubClient, members: list[Member]) -> list[RepoSummary]:
        per_member = await asyncio.gather(*(self._topic_repos(gh, m) for m in members))
        return [repo for repos in per_member for repo in repos]

    async def hydrate_homepages(self, gh: GithubClient, repos: list[RepoSummary]) -> dict[str, str]:
        """Homepage links for a bounded number of repositories lacking one."""
        targets = [
            (r.url, ref)
            for r in repos
            if not r.homepage and (ref := parse_repo(r.url)) is not None
        ][: self.settings.homepage_hydration_limit]
        details = await asyncio.gather(
            *(self._attempt(gh.repo(ref.owner, ref.repo), None, f"homepage for {url}") for url, ref in targets)
        )
        return {url: d.homepage for (url, _), d in zip(targets, details) if d and d.homepage}

    async def aggregate(self, gh: GithubClient, fallback_urls: list[str], now: float) -> CachedPayload:
        members = await self.fetch_members(gh)
        details = await self.fetch_member_details(gh, members)

        org_repos = await self.fetch_org_repos(gh, fallback_urls, now)
        org_repos = await self.merge_fallback_repos(gh, org_repos, fallback_urls, now)
        member_repos = await self.fetch_member_repos(gh, members)

        combined, member_repos = combine_repos(org_repos, member_repos)
        org_repos = combined[: len(combined) - len(member_repos)]
        totals, repo_stats = recompute_stats(combined)
        totals.contributors = len(members)

        homepages = await self.hydrate_homepages(gh, combined)
        if homepages:
            org_repos = [r.model_copy(update={"homepage": homepages.get(r.url, r.homepage)}) for r in org_repos]
            member_repos = [
                r.model_copy(update={"homepage": homepages.get(r.url, r.homepage)}) for r in member_repos
            ]

        activity = await ActivityFetcher(gh, self.store, settings=self.settings).run(list(repo_stats), now)
        for url, series in activity.items():
            repo_stats[url].activity = series

        blog_posts = await BlogEngine(gh, self.store, settings=self.settings).run()

        return CachedPayload(
            github_stats=totals,
            repo_stats=repo_stats,
            org_repos=org_repos,
            member_repos=member_repos,
            org_members=members,
            member_details=details,
            blog_posts=blog_posts,
        )

    # --- pass ---

    def _commit(
        self, payload: CachedPayload, rate_limited: bool, persisted: PersistedCache | None, started: float
    ) -> CachedPayload:
        now = self.clock()
        ttl = self.settings.cache_ttl
        persisted_until = persisted.rate_limit_until if persisted else 0.0

        if rate_limited:
            until = self.state.guard.trip(now)
            logger.warning("GitHub rate limit observed during this pass; cooling down.")
            self._persist_rate_limit(max(until, persisted_until))
            cached = self.state.memory.fresh(now, ttl)
            if cached is not None:
                logger.warning("Serving cached GitHub data due to rate limiting.")
                return cached
            if persisted and persisted.payload is not None and now - persisted.timestamp < ttl:
                logger.warning("Serving persisted GitHub data due to rate limiting.")
                return persisted.payload

        self.state.memory.store(payload, started)
        if self.store is not None:
            try:
                self.store.write_cache(
                    payload.to_json(),
                    timestamp=now,
                    rate_limit_until=max(self.state.guard.until, persisted_until),
                )
            except SQLAlchemyError as e:
                logger.error(f"Failed to persist cache: {e}")
        return payload

    def _persist_rate_limit(self, until: float) -> None:
        if self.store is None:
            return
        try:
            self.store.mark_rate_limited(until)
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist rate limit cooldown: {e}")

    async def run(self) -> CachedPayload:
        now = self.clock()
        cached = self.state.memory.fresh(now, self.settings.cache_ttl)
        if cached is not None:
            logger.info("Serving in-process cached payload.")
            return cached

        fallback_urls = load_fallback_urls(self.settings.fallback_path)
        persisted = self._read_persisted()
        if persisted is not None:
            self.state.guard.observe(persisted.rate_limit_until)

        if self.state.guard.is_cooling_down(now):
            logger.warning("Rate limit cooldown active; skipping GitHub.")
            return serve_from_tiers(self.state, persisted, fallback_urls, now, self.settings.cache_ttl)

        logger.info(f"Starting aggregation pass for {self.org}")
        try:
            async with self.client_factory() as gh:
                payload = await self.aggregate(gh, fallback_urls, now)
                rate_limited = gh.rate_limited
                calls = gh.calls
        except Exception as e:
            logger.error(f"Aggregation pass failed: {e}", exc_info=True)
            return serve_from_tiers(self.state, persisted, fallback_urls, self.clock(), self.settings.cache_ttl)

        logger.info(
            f"✔ Aggregated {len(payload.org_repos)} org repos, {len(payload.member_repos)} member repos, "
            f"{payload.github_stats.contributors} contributors in {calls} requests"
        )
        return self._commit(payload, rate_limited, persisted, now)
