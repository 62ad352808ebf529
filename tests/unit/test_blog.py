from datetime import datetime, timezone

import pytest

from contribclub.api import GithubClient, RetryPolicy
from contribclub.core.blog import DEFAULT_EXCERPT, BlogEngine, slug_for, synthesize_entry
from contribclub.core.models import BlogEntry
from tests.fixtures import FakeResponse, FakeSession, commit_json

WIKI = "/repos/contributor-club/contrib.club.wiki"
RAW = "/contributor-club/contrib.club.wiki/master"


def page(name: str) -> dict:
    return {
        "name": name,
        "path": name,
        "type": "file",
        "download_url": f"https://raw.githubusercontent.com/contributor-club/contrib.club.wiki/master/{name}",
    }


def engine(settings, store, session) -> BlogEngine:
    gh = GithubClient("t", settings=settings, session=session, retry=RetryPolicy.fixed(1, 0))
    return BlogEngine(gh, store, settings=settings)


def wiki_session(files: dict[str, str], **extra) -> FakeSession:
    routes = {
        f"{WIKI}/contents": FakeResponse(200, [page(n) for n in files] + [{"name": "img", "type": "dir"}]),
        f"{WIKI}/commits": FakeResponse(200, [commit_json("2025-05-01T00:00:00Z")]),
        "/users/contributor-club": FakeResponse(200, {"login": "contributor-club", "blog": "contrib.club"}),
    }
    for name, content in files.items():
        routes[f"{RAW}/{name}"] = FakeResponse(200, body=content)
    routes.update(extra)
    return FakeSession(routes)


def test_slug_for_strips_extension_and_spaces():
    assert slug_for("Hello World.md") == "Hello-World"
    assert slug_for("notes.MD") == "notes"


def test_synthesize_entry_uses_heading_and_first_line():
    date = datetime(2025, 5, 1, tzinfo=timezone.utc)
    entry = synthesize_entry("welcome.md", "# Welcome aboard\n\nWe build things.\nMore.", date, "contributor-club")
    assert entry.title == "Welcome aboard"
    assert entry.description == "We build things."
    assert entry.created_at == entry.modified_at == date


def test_synthesize_entry_without_heading_or_body():
    entry = synthesize_entry("getting_started.md", "", None, "contributor-club")
    assert entry.title == "getting started"
    assert entry.description == DEFAULT_EXCERPT


@pytest.mark.asyncio
async def test_persisted_entry_wins_and_keeps_reactions(settings, store):
    store.insert_blog(
        BlogEntry(slug="hello", title="Edited title", author="alice", reactions={"🎉": 3},
                  created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    )
    session = wiki_session(
        {"hello.md": "# Hello from the wiki", "news.md": "# News\nFresh"},
        **{"/users/alice": FakeResponse(200, {"login": "alice", "blog": ""})},
    )

    posts = await engine(settings, store, session).run()

    by_slug = {p.slug: p for p in posts}
    assert by_slug["hello"].title == "Edited title"
    assert by_slug["hello"].reactions == {"🎉": 3}
    assert by_slug["news"].title == "News"
    assert [p.slug for p in posts] == ["news", "hello"]
    assert store.slug_exists("news")


@pytest.mark.asyncio
async def test_colliding_wiki_slugs_get_suffixes(settings, store):
    session = wiki_session({"My Post.md": "# One", "My-Post.md": "# Two"})
    posts = await engine(settings, store, session).run()

    slugs = sorted(p.slug for p in posts)
    assert slugs[0] == "My-Post"
    assert slugs[1].startswith("My-Post-") and len(slugs[1]) == len("My-Post-") + 4
    assert all(store.slug_exists(s) for s in slugs)


@pytest.mark.asyncio
async def test_each_author_is_looked_up_once(settings, store):
    session = wiki_session({"a.md": "# A", "b.md": "# B"})
    posts = await engine(settings, store, session).run()

    assert session.paths().count("/users/contributor-club") == 1
    assert {p.author_url for p in posts} == {"https://contrib.club/"}


@pytest.mark.asyncio
async def test_wiki_outage_still_serves_store(settings, store):
    store.insert_blog(BlogEntry(slug="kept", title="Kept", author="contributor-club"))
    session = FakeSession({f"{WIKI}/contents": FakeResponse(500, {"message": "down"})})
    posts = await engine(settings, store, session).run()
    assert [p.slug for p in posts] == ["kept"]
    assert posts[0].author_url is None


@pytest.mark.asyncio
async def test_load_prefers_store_then_wiki(settings, store):
    store.insert_blog(BlogEntry(slug="stored", title="Stored", author="contributor-club"))
    session = wiki_session({"from-wiki.md": "# From wiki\nBody"})
    blog = engine(settings, store, session)

    assert (await blog.load("stored")).title == "Stored"
    wiki = await blog.load("from-wiki")
    assert wiki.title == "From wiki"
    assert wiki.slug == "from-wiki"
    assert await blog.load("missing") is None
