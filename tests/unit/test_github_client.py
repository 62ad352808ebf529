from datetime import datetime, timezone

import aiohttp
import pytest

from contribclub.api import GithubClient, GithubError, RateLimitError, RetryPolicy
from contribclub.api.github_client import has_next_page
from tests.fixtures import FakeResponse, FakeSession, commit_json, repo_json

NO_RETRY = RetryPolicy.fixed(1, 0)


def client(settings, session, token="test-token", retry=NO_RETRY):
    return GithubClient(token, settings=settings, session=session, retry=retry)


@pytest.mark.asyncio
async def test_headers_carry_token_version_and_agent(settings):
    session = FakeSession({"/orgs/contributor-club/members": FakeResponse(200, [])})
    async with client(settings, session) as gh:
        await gh.org_members("contributor-club")
    _, params, headers = session.calls[0]
    assert headers["Authorization"] == "Bearer test-token"
    assert headers["X-GitHub-Api-Version"] == "2022-11-28"
    assert "mercy-preview" in headers["Accept"]
    assert headers["User-Agent"].startswith("contrib-club-worker")
    assert params["per_page"] == 100


@pytest.mark.asyncio
async def test_public_calls_omit_authorization(settings):
    session = FakeSession({"/orgs/contributor-club/public_members": FakeResponse(200, [])})
    async with client(settings, session) as gh:
        await gh.public_members("contributor-club")
    headers = session.calls[0][2]
    assert "Authorization" not in headers
    assert headers["Accept"] == "application/vnd.github+json"


@pytest.mark.asyncio
async def test_unauthenticated_client_sends_no_token(settings):
    session = FakeSession({"/users/octo": FakeResponse(200, {"login": "octo"})})
    async with client(settings, session, token=None) as gh:
        await gh.user("octo")
    assert "Authorization" not in session.calls[0][2]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [403, 429])
async def test_rate_limit_statuses_flag_the_pass(settings, status):
    session = FakeSession({"/orgs/contributor-club/repos": FakeResponse(status, {"message": "limit"})})
    async with client(settings, session) as gh:
        with pytest.raises(RateLimitError):
            await gh.org_repos("contributor-club")
        assert gh.rate_limited


@pytest.mark.asyncio
async def test_other_errors_do_not_flag_rate_limit(settings):
    session = FakeSession()
    async with client(settings, session) as gh:
        with pytest.raises(GithubError) as exc:
            await gh.repo("octo", "missing")
        assert exc.value.status == 404
        assert not gh.rate_limited


@pytest.mark.asyncio
async def test_repo_listing_normalizes_urls(settings):
    data = [repo_json("Contributor-Club/Site", stars=3, forks=1), {"name": "broken"}]
    session = FakeSession({"/orgs/contributor-club/repos": FakeResponse(200, data)})
    async with client(settings, session) as gh:
        repos = await gh.org_repos("contributor-club")
    assert [r.url for r in repos] == ["https://github.com/contributor-club/site"]
    assert repos[0].stars == 3


@pytest.mark.asyncio
async def test_commit_activity_pending_and_flattened(settings):
    weeks = [{"days": [1, 0, 0, 0, 0, 0, 2]}, {"days": [0, 0, 3, 0, 0, 0, 0]}]
    session = FakeSession(
        {"/repos/octo/hello/stats/commit_activity": [FakeResponse(202, {}), FakeResponse(200, weeks)]}
    )
    async with client(settings, session) as gh:
        assert await gh.commit_activity("octo", "hello") is None
        days = await gh.commit_activity("octo", "hello")
    assert days == [1, 0, 0, 0, 0, 0, 2, 0, 0, 3, 0, 0, 0, 0]


@pytest.mark.asyncio
async def test_commit_dates_reports_next_page(settings):
    items = [commit_json("2025-06-10T12:00:00Z"), commit_json("2025-06-11T08:00:00Z")]
    session = FakeSession(
        {"/repos/octo/hello/commits": FakeResponse(200, items, headers={"Link": '<x?page=2>; rel="next"'})}
    )
    async with client(settings, session) as gh:
        dates, has_next = await gh.commit_dates(
            "octo", "hello", since=datetime(2025, 6, 1, tzinfo=timezone.utc), page=1
        )
    assert len(dates) == 2
    assert has_next
    assert session.calls[0][1]["page"] == 1


def test_has_next_page_without_link_header_uses_page_size():
    assert has_next_page({}, 100, 100)
    assert not has_next_page({}, 42, 100)
    assert not has_next_page({"Link": '<x>; rel="last"'}, 100, 100)


@pytest.mark.asyncio
async def test_transient_network_errors_are_retried(settings):
    session = FakeSession(
        {"/users/octo": [aiohttp.ClientConnectionError("reset"), FakeResponse(200, {"login": "octo", "blog": "octo.dev"})]}
    )
    retry = RetryPolicy.fixed(3, 0, retry_on=(aiohttp.ClientError,))
    async with client(settings, session, retry=retry) as gh:
        profile = await gh.user("octo")
    assert profile.blog == "octo.dev"
    assert gh.calls == 2


@pytest.mark.asyncio
async def test_raw_file_returns_text(settings):
    session = FakeSession(
        {"/contributor-club/contrib.club.wiki/master/Hello.md": FakeResponse(200, body="# Hello\nWorld")}
    )
    async with client(settings, session) as gh:
        text = await gh.raw_file(gh.raw_url("contributor-club", "contrib.club.wiki", "Hello.md"))
    assert text == "# Hello\nWorld"
