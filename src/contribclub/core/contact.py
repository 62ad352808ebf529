import logging
import uuid
from dataclasses import dataclass, field
from time import time

from sqlalchemy.exc import SQLAlchemyError

from contribclub.db import Store
from .urls import normalize_github_user

logger = logging.getLogger(__name__)


@dataclass
class ContactResult:
    status_code: int
    body: dict = field(default_factory=dict)


def submit_contact(
    store: Store | None, name: str | None, email: str | None, github: str | None
) -> ContactResult:
    """Record a request to join, once per email address or GitHub account."""
    if store is None:
        return ContactResult(503, {"error": "Database unavailable. Please try again later."})

    name, email, github = (v.strip() if isinstance(v, str) else "" for v in (name, email, github))
    if not name or not email or not github:
        return ContactResult(400, {"error": "Name, email, and GitHub URL are required."})

    user = normalize_github_user(github)
    if user is None:
        return ContactResult(400, {"error": "The GitHub username is invalid."})
    _, github_url = user

    try:
        store.ensure_schema()
        if store.contact_exists(email, github_url):
            return ContactResult(
                409, {"error": "We already received your request. Hang tight, we will be in touch soon."}
            )
        store.insert_contact(
            id=str(uuid.uuid4()), name=name, email=email, github_url=github_url, created_at=time()
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to store contact request: {e}")
        return ContactResult(500, {"error": "Could not save request."})
    return ContactResult(200, {"ok": True})
