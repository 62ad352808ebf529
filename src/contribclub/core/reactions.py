"""Per-post emoji reactions keyed by an anonymous actor.

Actors are identified by a salted SHA-256 of their client address; the raw
address is never stored. Each actor holds at most one emoji per post.

Known gap: the store update is read-modify-write without a version check, so
two actors reacting to the same post at the same moment can lose one update.
"""
import hashlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from time import time

from sqlalchemy.exc import SQLAlchemyError

from contribclub.config import get_settings
from contribclub.db import Store
from .models import ReactionRecord, ReactionState

logger = logging.getLogger(__name__)

MAX_EMOJI_LENGTH = 8
COOLDOWN_SECONDS = 3.0
COOLDOWN_MESSAGE = "Please wait a moment before changing your reaction."

_FORWARDED_HEADERS = ("cf-connecting-ip", "x-forwarded-for", "x-real-ip")


class ReactionError(Exception):
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidReaction(ReactionError):
    status_code = 400


class PostNotFound(ReactionError):
    status_code = 404


class Transition(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    SWITCHED = "switched"
    LIMITED = "limited"


@dataclass
class ReactionResult:
    counts: dict[str, int]
    user_reaction: str | None
    limited: bool = False
    message: str | None = None

    @property
    def status_code(self) -> int:
        return 429 if self.limited else 200

    def to_dict(self) -> dict:
        body: dict = {"counts": self.counts, "userReaction": self.user_reaction}
        if self.limited:
            body["limited"] = True
            body["message"] = self.message
        return body


def emoji_length(emoji: str) -> int:
    """Length in UTF-16 code units, as browsers count it."""
    return len(emoji.encode("utf-16-le")) // 2


def actor_key(client_ip: str, salt: str = "") -> str:
    return hashlib.sha256(f"{salt}{client_ip}".encode("utf-8")).hexdigest()


def client_ip(peer: str | None, headers: Mapping[str, str] | None = None) -> str | None:
    """The peer address, else the first address from a proxy header."""
    if peer:
        return peer
    lowered = {k.lower(): v for k, v in (headers or {}).items()}
    for name in _FORWARDED_HEADERS:
        value = lowered.get(name)
        if value:
            first = value.split(",")[0].strip()
            if first:
                return first
    return None


def _decrement(counts: dict[str, int], emoji: str) -> None:
    remaining = max(0, counts.get(emoji, 1) - 1)
    if remaining:
        counts[emoji] = remaining
    else:
        counts.pop(emoji, None)


def apply_reaction(state: ReactionState, actor: str, emoji: str, now: float) -> Transition:
    """Apply one ``react(emoji)`` action in place.

    Same emoji again toggles it off; a different emoji switches, unless the
    actor changed their reaction less than ``COOLDOWN_SECONDS`` ago, in which
    case nothing is mutated.
    """
    existing = state.actor_map.get(actor)
    if existing is None:
        state.counts[emoji] = state.counts.get(emoji, 0) + 1
        state.actor_map[actor] = ReactionRecord(emoji=emoji, ts=now, ip=actor)
        return Transition.ADDED

    if existing.emoji == emoji:
        _decrement(state.counts, emoji)
        del state.actor_map[actor]
        return Transition.REMOVED

    if now - existing.ts < COOLDOWN_SECONDS:
        return Transition.LIMITED

    _decrement(state.counts, existing.emoji)
    state.counts[emoji] = state.counts.get(emoji, 0) + 1
    state.actor_map[actor] = ReactionRecord(emoji=emoji, ts=now, ip=actor)
    return Transition.SWITCHED


class ReactionService:
    def __init__(self, store: Store, *, salt: str | None = None):
        self.store = store
        self.salt = get_settings().reaction_salt if salt is None else salt

    def _load(self, slug: str) -> ReactionState:
        try:
            self.store.ensure_schema()
            state = self.store.load_reactions(slug)
        except SQLAlchemyError as e:
            logger.error(f"Failed to read reactions for {slug}: {e}")
            raise ReactionError("Reactions unavailable") from e
        if state is None:
            raise PostNotFound("Blog not found")
        return state

    def get(self, slug: str, ip: str | None) -> ReactionResult:
        state = self._load(slug)
        record = state.actor_map.get(actor_key(ip, self.salt)) if ip else None
        return ReactionResult(counts=state.counts, user_reaction=record.emoji if record else None)

    def react(self, slug: str, emoji: object, ip: str | None, now: float | None = None) -> ReactionResult:
        emoji = emoji.strip() if isinstance(emoji, str) else ""
        if not emoji or emoji_length(emoji) > MAX_EMOJI_LENGTH:
            raise InvalidReaction("Invalid reaction")
        if not ip:
            raise InvalidReaction("Could not determine client")

        actor = actor_key(ip, self.salt)
        state = self._load(slug)
        transition = apply_reaction(state, actor, emoji, time() if now is None else now)

        if transition is Transition.LIMITED:
            current = state.actor_map[actor].emoji
            return ReactionResult(state.counts, current, limited=True, message=COOLDOWN_MESSAGE)

        try:
            self.store.save_reactions(slug, state)
        except SQLAlchemyError as e:
            logger.error(f"Failed to update reactions for {slug}: {e}")
            raise ReactionError("Failed to record reaction") from e

        record = state.actor_map.get(actor)
        return ReactionResult(counts=state.counts, user_reaction=record.emoji if record else None)
