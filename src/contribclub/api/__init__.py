from .github_client import GithubClient, GithubError, RateLimitError
from .rate_limiting import RateLimitGuard
from .retry import RetryPolicy

__all__ = ["GithubClient", "GithubError", "RateLimitError", "RateLimitGuard", "RetryPolicy"]
