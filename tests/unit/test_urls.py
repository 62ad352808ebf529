import pytest

from contribclub.core.urls import (
    normalize_github_user,
    normalize_repo_url,
    normalize_website,
    parse_repo,
)

CANONICAL = "https://github.com/contributor-club/contrib.club"


@pytest.mark.parametrize(
    "raw",
    [
        "contributor-club/contrib.club",
        "/contributor-club/contrib.club/",
        "https://github.com/contributor-club/contrib.club",
        "https://github.com/contributor-club/contrib.club/",
        "https://github.com/contributor-club/contrib.club?tab=readme#top",
        "http://www.github.com/contributor-club/contrib.club",
        "github.com/contributor-club/contrib.club",
        "https://GitHub.com/Contributor-Club/Contrib.Club",
        "https://github.com/contributor-club/contrib.club.git",
        "https://github.com/contributor-club/contrib.club/tree/main/src",
        "  contributor-club/contrib.club  ",
    ],
)
def test_equivalent_references_share_one_canonical_url(raw):
    assert normalize_repo_url(raw) == CANONICAL


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "   ",
        "contrib.club",
        "just-an-owner",
        "https://gitlab.com/contributor-club/contrib.club",
        "https://evilgithub.com/contributor-club/contrib.club",
        "gitlab.com/contributor-club/contrib.club",
        "ftp://github.com/contributor-club/contrib.club",
        "https://github.com/only-owner",
        "owner/re po",
    ],
)
def test_unresolvable_references_yield_none(raw):
    assert normalize_repo_url(raw) is None


def test_parse_repo_splits_owner_and_repo():
    ref = parse_repo("https://github.com/octo/hello-world")
    assert ref.owner == "octo"
    assert ref.repo == "hello-world"


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("example.com", "https://example.com/"),
        ("https://example.com/blog#about", "https://example.com/blog"),
        ("//example.org/me", "https://example.org/me"),
        ("", None),
        (None, None),
    ],
)
def test_normalize_website(raw, expected):
    assert normalize_website(raw) == expected


@pytest.mark.parametrize(
    "raw",
    ["octocat", "@OctoCat", "https://github.com/octocat", "https://www.github.com/OctoCat/repos?tab=1"],
)
def test_normalize_github_user(raw):
    assert normalize_github_user(raw) == ("octocat", "https://github.com/octocat")


def test_normalize_github_user_rejects_empty():
    assert normalize_github_user("  ") is None
    assert normalize_github_user("https://github.com/") is None
