"""High‑level, sync helpers around SQLAlchemy session.

These keep SQL in **one place**; callers get domain objects back through
:mod:`contribclub.db.mappers`. Writes are last-writer-wins, except the cooldown
deadline, which only moves forward.
"""
import json
import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, func, or_, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from contribclub.core.models import ActivityCacheEntry, BlogEntry, ReactionState, utcnow
from . import mappers
from .engine import engine as default_engine
from .engine import make_sessionmaker
from .models import Base, Blog, ContactRequest, GithubCache, RepoActivity

logger = logging.getLogger(__name__)

CACHE_KEY = "github-cache"

# Columns added after the first deployment; each may already exist
_MIGRATIONS = ("ALTER TABLE blogs ADD COLUMN author_url TEXT",)


class Store:
    """The persisted key-value store shared by every process."""

    def __init__(self, bind: Engine):
        self._engine = bind
        self._sessions = make_sessionmaker(bind)

    @classmethod
    def from_settings(cls) -> "Store":
        return cls(default_engine())

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""
        session = self._sessions()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ensure_schema(self) -> None:
        """Create missing tables, then apply add-column migrations if absent."""
        Base.metadata.create_all(bind=self._engine)
        for statement in _MIGRATIONS:
            try:
                with self._engine.begin() as conn:
                    conn.execute(text(statement))
            except SQLAlchemyError:
                logger.debug(f"Migration already applied: {statement}")

    # --- payload cache ---

    def read_cache(self, key: str = CACHE_KEY) -> mappers.PersistedCache | None:
        with self.session_scope() as s:
            return mappers.cache_from_row(s.get(GithubCache, key))

    def write_cache(
        self, payload_json: str, *, timestamp: float, rate_limit_until: float, key: str = CACHE_KEY
    ) -> None:
        """Replace the payload; the cooldown deadline only moves forward."""
        with self.session_scope() as s:
            row = s.get(GithubCache, key, with_for_update=True)
            if row is None:
                s.add(
                    GithubCache(
                        id=key,
                        payload=payload_json,
                        timestamp=timestamp,
                        rate_limit_until=rate_limit_until,
                    )
                )
                return
            row.payload = payload_json
            row.timestamp = timestamp
            row.rate_limit_until = max(row.rate_limit_until or 0.0, rate_limit_until)

    def mark_rate_limited(self, until: float, key: str = CACHE_KEY) -> None:
        """Advance the shared cooldown deadline without touching the payload."""
        with self.session_scope() as s:
            row = s.get(GithubCache, key, with_for_update=True)
            if row is None:
                s.add(GithubCache(id=key, payload=None, timestamp=0.0, rate_limit_until=until))
            else:
                row.rate_limit_until = max(row.rate_limit_until or 0.0, until)

    # --- commit activity ---

    def load_activity(self, repo_urls: Iterable[str]) -> dict[str, ActivityCacheEntry]:
        urls = list(repo_urls)
        if not urls:
            return {}
        with self.session_scope() as s:
            rows = s.scalars(select(RepoActivity).where(RepoActivity.repo_url.in_(urls))).all()
            entries = [mappers.activity_from_row(r) for r in rows]
        return {e.repo_url: e for e in entries if e}

    def save_activity(self, entry: ActivityCacheEntry) -> None:
        with self.session_scope() as s:
            s.merge(
                RepoActivity(
                    repo_url=entry.repo_url,
                    activity=json.dumps(entry.activity),
                    timestamp=entry.timestamp,
                )
            )

    # --- blogs ---

    def list_blogs(self) -> list[BlogEntry]:
        with self.session_scope() as s:
            rows = s.scalars(select(Blog)).all()
            entries = [mappers.blog_from_row(r) for r in rows]
        return [e for e in entries if e]

    def get_blog(self, slug: str) -> BlogEntry | None:
        with self.session_scope() as s:
            return mappers.blog_from_row(s.get(Blog, slug))

    def slug_exists(self, slug: str) -> bool:
        with self.session_scope() as s:
            return s.get(Blog, slug) is not None

    def insert_blog(self, entry: BlogEntry) -> None:
        with self.session_scope() as s:
            s.add(mappers.blog_to_row(entry))

    def load_reactions(self, slug: str) -> ReactionState | None:
        """Reaction state for a post, or None when the post does not exist."""
        with self.session_scope() as s:
            row = s.get(Blog, slug)
            if row is None:
                return None
            return mappers.parse_reaction_state(row.reactions)

    def save_reactions(self, slug: str, state: ReactionState) -> None:
        with self.session_scope() as s:
            row = s.get(Blog, slug)
            if row is None:
                return
            row.reactions = state.to_json()
            row.modified_at = utcnow().isoformat()

    # --- contact requests ---

    def contact_exists(self, email: str, github_url: str) -> bool:
        email, github_url = email.lower(), github_url.lower()
        stmt = (
            select(ContactRequest.id)
            .where(
                or_(
                    func.lower(ContactRequest.email) == email,
                    func.lower(ContactRequest.github_url) == github_url,
                    func.lower(ContactRequest.github_url) == f"{github_url}/",
                )
            )
            .limit(1)
        )
        with self.session_scope() as s:
            return s.execute(stmt).first() is not None

    def insert_contact(self, *, id: str, name: str, email: str, github_url: str, created_at: float) -> None:
        with self.session_scope() as s:
            s.add(
                ContactRequest(id=id, name=name, email=email, github_url=github_url, created_at=created_at)
            )
