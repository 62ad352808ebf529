import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from importlib import resources
from pathlib import Path

from contribclub.api import RateLimitGuard
from contribclub.db.mappers import PersistedCache
from .models import CachedPayload, RepoSummary
from .urls import normalize_repo_url

logger = logging.getLogger(__name__)

# Freshness window shared by the memory and persisted tiers
CACHE_TTL_SECONDS = 60 * 15


@dataclass
class MemoryCache:
    """Last good payload of this process; lost on restart."""

    timestamp: float = 0.0
    payload: CachedPayload | None = None

    def store(self, payload: CachedPayload, now: float) -> None:
        self.payload = payload
        self.timestamp = now

    def fresh(self, now: float, ttl: float = CACHE_TTL_SECONDS) -> CachedPayload | None:
        if self.payload is not None and now - self.timestamp < ttl:
            return self.payload
        return None


@dataclass
class ProcessState:
    """Mutable state shared by every pass in one process.

    Owned explicitly so tests (and multiple sites in one process) can run on
    isolated instances instead of module globals.
    """

    memory: MemoryCache = field(default_factory=MemoryCache)
    guard: RateLimitGuard = field(default_factory=RateLimitGuard)


_DEFAULT_STATE: ProcessState | None = None


def default_state() -> ProcessState:
    global _DEFAULT_STATE
    if _DEFAULT_STATE is None:
        _DEFAULT_STATE = ProcessState()
    return _DEFAULT_STATE


def parse_fallback_list(text: str) -> list[str]:
    """Normalized, de-duplicated repository URLs in file order."""
    urls: dict[str, None] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        url = normalize_repo_url(line)
        if url:
            urls.setdefault(url, None)
    return list(urls)


def load_fallback_urls(path: Path | None = None) -> list[str]:
    try:
        if path is not None:
            text = Path(path).read_text(encoding="utf-8")
        else:
            text = resources.files("contribclub").joinpath("data/fallback.txt").read_text(encoding="utf-8")
    except OSError as e:
        logger.error(f"Failed to load fallback repo list: {e}")
        return []
    return parse_fallback_list(text)


def fallback_payload(urls: list[str], now: float) -> CachedPayload:
    stamp = datetime.fromtimestamp(now, timezone.utc)
    return CachedPayload(org_repos=[RepoSummary.placeholder(url, stamp) for url in urls])


def serve_from_tiers(
    state: ProcessState,
    persisted: PersistedCache | None,
    fallback_urls: list[str],
    now: float,
    ttl: float = CACHE_TTL_SECONDS,
) -> CachedPayload:
    """First fresh tier wins: memory, then persisted, then the static list."""
    payload = state.memory.fresh(now, ttl)
    if payload is not None:
        logger.warning("Serving cached payload from memory.")
        return payload
    if persisted and persisted.payload is not None and now - persisted.timestamp < ttl:
        logger.warning("Serving persisted cache.")
        return persisted.payload
    logger.warning(f"Serving fallback repo list ({len(fallback_urls)} repos).")
    return fallback_payload(fallback_urls, now)
