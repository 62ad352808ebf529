from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from pydantic.alias_generators import to_camel

from .urls import normalize_repo_url

FALLBACK_TOPIC = "fallback"
FALLBACK_DESCRIPTION = "Fallback repository (cached list)"
FALLBACK_LANGUAGE = "General"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PayloadModel(BaseModel):
    """Serialized with camelCase keys for the presentation layer."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RepoSummary(PayloadModel):
    name: str
    url: str
    description: str | None = None
    topics: list[str] = Field(default_factory=list)
    language: str | None = None
    homepage: str | None = None
    stars: int = 0
    forks: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    _placeholder: bool = PrivateAttr(default=False)

    @property
    def is_fallback(self) -> bool:
        """True only for entries built by :meth:`placeholder`; the topic is just a UI tag."""
        return self._placeholder

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "RepoSummary | None":
        """Build from a REST repository object; None when it has no GitHub URL."""
        url = normalize_repo_url(data.get("html_url") or data.get("full_name"))
        if url is None:
            return None
        return cls(
            name=data.get("name") or url.rsplit("/", 1)[-1],
            url=url,
            description=data.get("description"),
            topics=list(data.get("topics") or []),
            language=data.get("language"),
            homepage=data.get("homepage") or None,
            stars=int(data.get("stargazers_count") or 0),
            forks=int(data.get("forks_count") or 0),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )

    @classmethod
    def placeholder(cls, url: str, now: datetime | None = None) -> "RepoSummary":
        """Zero-valued entry for a repository known only from the fallback list."""
        now = now or utcnow()
        repo = cls(
            name=url.rstrip("/").rsplit("/", 1)[-1],
            url=url,
            description=FALLBACK_DESCRIPTION,
            topics=[FALLBACK_TOPIC],
            language=FALLBACK_LANGUAGE,
            created_at=now,
            updated_at=now,
        )
        repo._placeholder = True
        return repo


class RepoStats(PayloadModel):
    stars: int = 0
    forks: int = 0
    activity: list[int] | None = None


class GithubStats(PayloadModel):
    stars: int = 0
    forks: int = 0
    contributors: int = 0


class Member(PayloadModel):
    login: str
    avatar_url: str = ""
    html_url: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Member | None":
        login = data.get("login")
        if not login:
            return None
        return cls(
            login=login,
            avatar_url=data.get("avatar_url") or "",
            html_url=data.get("html_url") or f"https://github.com/{login}",
        )


class UserProfile(PayloadModel):
    login: str
    name: str | None = None
    blog: str | None = None
    public_repos: int | None = None
    public_gists: int | None = None
    followers: int | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "UserProfile":
        return cls(
            login=data.get("login") or "",
            name=data.get("name"),
            blog=data.get("blog"),
            public_repos=data.get("public_repos"),
            public_gists=data.get("public_gists"),
            followers=data.get("followers"),
        )


class MemberDetail(Member):
    name: str | None = None
    public_repos: int | None = None
    public_gists: int | None = None
    followers: int | None = None
    star_count: int = 0


class ActivityCacheEntry(BaseModel):
    repo_url: str
    activity: list[int] = Field(default_factory=list)
    timestamp: float = 0.0


class BlogEntry(PayloadModel):
    slug: str
    title: str
    description: str = ""
    content: str = ""
    author: str
    author_url: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    modified_at: datetime = Field(default_factory=utcnow)
    reactions: dict[str, int] = Field(default_factory=dict)


class CachedPayload(PayloadModel):
    github_stats: GithubStats = Field(default_factory=GithubStats)
    repo_stats: dict[str, RepoStats] = Field(default_factory=dict)
    org_repos: list[RepoSummary] = Field(default_factory=list)
    member_repos: list[RepoSummary] = Field(default_factory=list)
    org_members: list[Member] = Field(default_factory=list)
    member_details: list[MemberDetail] = Field(default_factory=list)
    blog_posts: list[BlogEntry] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ReactionRecord(PayloadModel):
    emoji: str
    ts: float = 0.0
    ip: str | None = None


class ReactionState(PayloadModel):
    counts: dict[str, int] = Field(default_factory=dict)
    actor_map: dict[str, ReactionRecord] = Field(default_factory=dict)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)
