import asyncio
import logging
import re
import secrets
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from contribclub.api import GithubClient
from contribclub.config import Settings, get_settings
from contribclub.db import Store
from .activity import UPSTREAM_ERRORS
from .models import BlogEntry, utcnow
from .urls import normalize_website

logger = logging.getLogger(__name__)

DEFAULT_EXCERPT = "Read more from the Contrib.Club wiki."


def slug_for(filename: str) -> str:
    stem = re.sub(r"\.md$", "", filename, flags=re.IGNORECASE)
    return re.sub(r"\s+", "-", stem.strip())


def synthesize_entry(
    filename: str, content: str, date: datetime | None, author: str
) -> BlogEntry:
    """Blog entry for a wiki page: titled by its first heading, else its file name."""
    lines = [line.strip() for line in content.splitlines() if line.strip()]
    heading = next((re.sub(r"^#+\s*", "", l) for l in lines if l.startswith("#")), "")
    body = next((l for l in lines if not l.startswith("#")), "")
    stem = re.sub(r"\.md$", "", filename, flags=re.IGNORECASE)
    created = date or utcnow()
    return BlogEntry(
        slug=slug_for(filename),
        title=heading or re.sub(r"[-_]", " ", stem) or "Blog post",
        description=body or heading or DEFAULT_EXCERPT,
        content=content,
        author=author,
        created_at=created,
        modified_at=created,
    )


class BlogEngine:
    """Reconciles the persisted blog table with pages from the org wiki.

    Persisted rows always win; wiki pages only fill in slugs the store does
    not know yet, and are written back so reactions have a row to live on.
    """

    def __init__(self, gh: GithubClient, store: Store | None = None, *, settings: Settings | None = None):
        self.gh = gh
        self.store = store
        self.settings = settings or get_settings()
        self.owner = self.settings.github_org
        self.wiki = self.settings.wiki_repo
        self.semaphore = asyncio.Semaphore(self.settings.request_concurrency)

    # --- sources ---

    def persisted_entries(self) -> list[BlogEntry]:
        if self.store is None:
            return []
        try:
            return self.store.list_blogs()
        except SQLAlchemyError as e:
            logger.error(f"Failed to read blogs from store: {e}")
            return []

    async def _wiki_page(self, filename: str, path: str, download_url: str | None) -> BlogEntry:
        async with self.semaphore:
            content = ""
            try:
                content = await self.gh.raw_file(download_url or self.gh.raw_url(self.owner, self.wiki, path))
            except UPSTREAM_ERRORS as e:
                logger.error(f"Failed to fetch wiki content for {path}: {e}")
            date = None
            try:
                date = await self.gh.last_commit_date(self.owner, self.wiki, path)
            except UPSTREAM_ERRORS as e:
                logger.error(f"Failed to load wiki commit date for {path}: {e}")
        return synthesize_entry(filename, content, date, self.owner)

    async def wiki_entries(self) -> list[BlogEntry]:
        try:
            files = await self.gh.contents(self.owner, self.wiki)
        except UPSTREAM_ERRORS as e:
            logger.error(f"Failed to load wiki pages: {e}")
            return []
        pages = [
            f for f in files
            if f.get("type") == "file" and str(f.get("name", "")).lower().endswith(".md")
        ]
        return list(
            await asyncio.gather(
                *(self._wiki_page(f["name"], f.get("path") or f["name"], f.get("download_url")) for f in pages)
            )
        )

    # --- merge ---

    def _slug_in_store(self, slug: str) -> bool:
        if self.store is None:
            return False
        try:
            return self.store.slug_exists(slug)
        except SQLAlchemyError as e:
            logger.error(f"Failed to check blog slug {slug}: {e}")
            return False

    def _free_slug(self, slug: str, taken: dict[str, BlogEntry]) -> str:
        candidate = slug
        while candidate in taken or self._slug_in_store(candidate):
            candidate = f"{slug}-{secrets.token_hex(2)}"
        return candidate

    def _insert(self, entry: BlogEntry) -> None:
        if self.store is None:
            return
        try:
            self.store.insert_blog(entry)
        except SQLAlchemyError as e:
            logger.error(f"Failed to seed blog {entry.slug}: {e}")

    def merge(self, persisted: list[BlogEntry], synthesized: list[BlogEntry]) -> list[BlogEntry]:
        entries = {e.slug: e for e in persisted}
        persisted_slugs = set(entries)
        for entry in synthesized:
            if entry.slug in persisted_slugs:
                continue
            if entry.slug not in entries and self._slug_in_store(entry.slug):
                # A row we could not read still owns this slug
                continue
            slug = self._free_slug(entry.slug, entries)
            if slug != entry.slug:
                entry = entry.model_copy(update={"slug": slug})
            entries[slug] = entry
            self._insert(entry)
        return sorted(entries.values(), key=lambda e: e.created_at, reverse=True)

    # --- authors ---

    async def _author_site(self, author: str) -> str | None:
        async with self.semaphore:
            try:
                profile = await self.gh.user(author)
            except UPSTREAM_ERRORS as e:
                logger.error(f"Failed to load profile for {author}: {e}")
                return None
        return normalize_website(profile.blog)

    async def resolve_author_sites(self, entries: list[BlogEntry]) -> list[BlogEntry]:
        authors = list(dict.fromkeys(e.author for e in entries if e.author))
        sites = dict(zip(authors, await asyncio.gather(*(self._author_site(a) for a in authors))))
        return [
            e.model_copy(update={"author_url": sites.get(e.author) or e.author_url})
            for e in entries
        ]

    async def run(self) -> list[BlogEntry]:
        persisted = self.persisted_entries()
        synthesized = await self.wiki_entries()
        merged = self.merge(persisted, synthesized)
        return await self.resolve_author_sites(merged)

    async def load(self, slug: str) -> BlogEntry | None:
        """One post by slug: the store first, then the wiki page of that name."""
        entry = None
        if self.store is not None:
            try:
                entry = self.store.get_blog(slug)
            except SQLAlchemyError as e:
                logger.error(f"Failed to fetch blog {slug} from store: {e}")
        if entry is None:
            entry = await self._wiki_fallback(slug)
        if entry is None:
            return None
        return (await self.resolve_author_sites([entry]))[0]

    async def _wiki_fallback(self, slug: str) -> BlogEntry | None:
        path = f"{slug}.md"
        try:
            content = await self.gh.raw_file(self.gh.raw_url(self.owner, self.wiki, path))
        except UPSTREAM_ERRORS as e:
            logger.info(f"No wiki page for {slug}: {e}")
            return None
        date = None
        try:
            date = await self.gh.last_commit_date(self.owner, self.wiki, path)
        except UPSTREAM_ERRORS as e:
            logger.error(f"Failed to load wiki commit date for {path}: {e}")
        entry = synthesize_entry(path, content, date, self.owner)
        return entry.model_copy(update={"slug": slug})
