from sqlalchemy import Float, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass  # shared metadata lives here


class GithubCache(Base):
    """The whole aggregated payload as one serialized blob."""

    __tablename__ = "github_cache"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    payload: Mapped[str | None] = mapped_column(Text)
    timestamp: Mapped[float | None] = mapped_column(Float)
    rate_limit_until: Mapped[float | None] = mapped_column(Float)


class Blog(Base):
    __tablename__ = "blogs"

    slug: Mapped[str] = mapped_column(Text, primary_key=True)
    title: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    content: Mapped[str | None] = mapped_column(Text)
    author: Mapped[str | None] = mapped_column(Text)
    author_url: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[str | None] = mapped_column(Text)
    modified_at: Mapped[str | None] = mapped_column(Text)
    reactions: Mapped[str | None] = mapped_column(Text)


class RepoActivity(Base):
    __tablename__ = "repo_activity"

    repo_url: Mapped[str] = mapped_column(Text, primary_key=True)
    activity: Mapped[str | None] = mapped_column(Text)
    timestamp: Mapped[float | None] = mapped_column(Float)


class ContactRequest(Base):
    __tablename__ = "contact_requests"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    github_url: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[float | None] = mapped_column(Float)
