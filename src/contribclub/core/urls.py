"""Canonical forms for repository, profile and website references.

The canonical repository URL, ``https://github.com/<owner>/<repo>``, is the join
key for every repository collection: org listings, member search results and
the static fallback list all pass through :func:`normalize_repo_url` before they
are compared or merged.
"""
import re
from typing import NamedTuple
from urllib.parse import urlsplit, urlunsplit

GITHUB_HOSTS = frozenset({"github.com", "www.github.com"})
CANONICAL_PREFIX = "https://github.com/"

_SEGMENT = re.compile(r"^[A-Za-z0-9_.-]+$")
_SCHEME = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)


class RepoRef(NamedTuple):
    owner: str
    repo: str


def _split_path(path: str) -> RepoRef | None:
    parts = [p for p in path.split("/") if p]
    if len(parts) < 2:
        return None
    owner, repo = parts[0], parts[1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    if not (_SEGMENT.match(owner) and _SEGMENT.match(repo)):
        return None
    return RepoRef(owner.lower(), repo.lower())


def parse_repo(value: str | None) -> RepoRef | None:
    """Return ``(owner, repo)`` for a free-form repository reference, or None."""
    if not value:
        return None
    trimmed = value.strip().strip("/")
    if not trimmed:
        return None

    if not _SCHEME.match(trimmed):
        head = trimmed.split("/", 1)[0].lower()
        if head in GITHUB_HOSTS:
            trimmed = f"https://{trimmed}"
        elif "." in head and ":" not in head:
            # some-other-host.tld/owner/repo
            return None

    if _SCHEME.match(trimmed):
        try:
            parts = urlsplit(trimmed)
        except ValueError:
            return None
        if parts.scheme.lower() not in ("http", "https"):
            return None
        if (parts.hostname or "").lower() not in GITHUB_HOSTS:
            return None
        return _split_path(parts.path)

    return _split_path(trimmed.split("?", 1)[0].split("#", 1)[0])


def normalize_repo_url(value: str | None) -> str | None:
    """Canonicalize ``owner/repo`` or a github.com URL.

    Query strings, fragments, trailing slashes, extra path segments and a
    ``.git`` suffix are dropped; owner and repo are lowercased.
    """
    ref = parse_repo(value)
    if ref is None:
        return None
    return f"{CANONICAL_PREFIX}{ref.owner}/{ref.repo}"


def normalize_website(value: str | None) -> str | None:
    """Turn a profile "blog" field into an absolute URL without a fragment."""
    if not value or not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    if not re.match(r"^https?://", trimmed, re.IGNORECASE):
        trimmed = "https://" + trimmed.lstrip("/")
    try:
        parts = urlsplit(trimmed)
    except ValueError:
        return None
    if not parts.hostname:
        return None
    path = parts.path or "/"
    return urlunsplit((parts.scheme.lower(), parts.netloc, path, parts.query, ""))


def normalize_github_user(value: str | None) -> tuple[str, str] | None:
    """Resolve ``@user``, ``user`` or a profile URL to ``(login, profile_url)``."""
    if not value:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    cleaned = re.sub(r"^https?://(www\.)?github\.com/", "", trimmed, flags=re.IGNORECASE)
    cleaned = cleaned.lstrip("@")
    username = re.split(r"[/?#]", cleaned, maxsplit=1)[0].strip().lower()
    if not username or not _SEGMENT.match(username):
        return None
    return username, f"{CANONICAL_PREFIX}{username}"
