import pytest

from contribclub.api import GithubClient, RetryPolicy
from contribclub.config import Settings
from contribclub.core.cache import ProcessState
from contribclub.db import Store
from contribclub.db.engine import make_engine
from tests.fixtures import FakeSession


@pytest.fixture()
def settings(tmp_path):
    fallback = tmp_path / "fallback.txt"
    fallback.write_text("", encoding="utf-8")
    return Settings(
        _env_file=None,
        github_token="test-token",
        database_url=f"sqlite:///{tmp_path / 'contribclub.db'}",
        fallback_path=fallback,
        activity_retry_delay=0,
        request_concurrency=4,
        reaction_salt="pepper",
    )

@pytest.fixture()
def store(settings):
    """A fresh SQLite-backed store per test."""
    s = Store(make_engine(settings.db_url))
    s.ensure_schema()
    return s

@pytest.fixture()
def session():
    return FakeSession()

@pytest.fixture()
def client_factory(settings, session):
    no_wait = RetryPolicy.fixed(1, 0)
    return lambda: GithubClient(settings.github_token, settings=settings, session=session, retry=no_wait)

@pytest.fixture()
def state():
    return ProcessState()
