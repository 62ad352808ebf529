"""In-process stand-ins for the aiohttp session the GitHub client talks to."""
import json
from collections.abc import Callable
from typing import Any
from urllib.parse import urlsplit

NOW = 1_750_000_000.0


class FakeResponse:
    def __init__(self, status: int = 200, data: Any = None, *, body: str | None = None, headers=None):
        self.status = status
        self._data = data
        self._body = body
        self.headers = headers or {}

    async def json(self, content_type=None):
        if self._body is not None:
            return json.loads(self._body)
        return self._data

    async def text(self):
        if self._body is not None:
            return self._body
        return json.dumps(self._data)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


Handler = FakeResponse | list[FakeResponse] | Callable[[dict], FakeResponse] | BaseException


class FakeSession:
    """Routes requests by URL path and records every call made."""

    def __init__(self, routes: dict[str, Handler] | None = None):
        self.routes: dict[str, Handler] = dict(routes or {})
        self.calls: list[tuple[str, dict, dict]] = []

    def route(self, path: str, handler: Handler) -> None:
        self.routes[path] = handler

    def paths(self) -> list[str]:
        return [urlsplit(url).path for url, _, _ in self.calls]

    def get(self, url: str, params=None, headers=None):
        self.calls.append((url, dict(params or {}), dict(headers or {})))
        handler = self.routes.get(urlsplit(url).path)
        if handler is None:
            return FakeResponse(404, {"message": "Not Found"})
        if isinstance(handler, BaseException):
            raise handler
        if isinstance(handler, list):
            item = handler.pop(0) if len(handler) > 1 else handler[0]
            if isinstance(item, BaseException):
                raise item
            return item
        if callable(handler):
            return handler(dict(params or {}))
        return handler

    async def close(self):
        pass


def repo_json(full_name: str, stars: int = 0, forks: int = 0, **extra) -> dict:
    owner, name = full_name.split("/")
    data = {
        "name": name,
        "full_name": full_name,
        "html_url": f"https://github.com/{full_name}",
        "description": f"{name} description",
        "stargazers_count": stars,
        "forks_count": forks,
        "topics": [],
        "language": "Python",
        "homepage": None,
        "created_at": "2024-01-01T00:00:00Z",
        "updated_at": "2024-06-01T00:00:00Z",
    }
    data.update(extra)
    return data


def member_json(login: str) -> dict:
    return {
        "login": login,
        "avatar_url": f"https://avatars.example/{login}.png",
        "html_url": f"https://github.com/{login}",
    }


def commit_json(date: str) -> dict:
    return {"sha": "abc", "commit": {"committer": {"date": date}, "author": {"date": date}}}
