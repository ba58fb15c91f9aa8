from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional
import logging
import re
import secrets
import time

import config
from errors import InvalidUsername, UserNotFound

logger = logging.getLogger(__name__)


@dataclass
class User:
    user_id: str
    username: str
    last_seen: float = field(default_factory=time.time)

    def touch(self):
        self.last_seen = time.time()

    def to_dict(self) -> dict:
        return {"userId": self.user_id, "username": self.username}


def sanitize_username(raw: str) -> str:
    """Strip HTML tags and control characters, then validate length."""
    if not isinstance(raw, str):
        raise InvalidUsername()
    name = re.sub(r'<[^>]+>', '', raw)
    name = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', name).strip()
    if not (config.MIN_USERNAME_LENGTH <= len(name) <= config.MAX_USERNAME_LENGTH):
        raise InvalidUsername(
            f"Username must be {config.MIN_USERNAME_LENGTH}-{config.MAX_USERNAME_LENGTH} characters"
        )
    return name


class IdentityRegistry:
    """Anonymous identities, keyed by an opaque token handed to the client."""

    def __init__(self):
        self.users: Dict[str, User] = {}

    def authenticate_anonymous(self, existing_user_id: Optional[str] = None,
                               requested_username: Optional[str] = None) -> User:
        # Validate before touching anything so a bad name never mints a user
        username = sanitize_username(requested_username) if requested_username is not None else None

        user = self.users.get(existing_user_id) if existing_user_id else None
        if user:
            if username:
                user.username = username
            user.touch()
            return user

        user_id = secrets.token_urlsafe(16)
        while user_id in self.users:
            user_id = secrets.token_urlsafe(16)
        user = User(user_id=user_id, username=username or self._placeholder_name())
        self.users[user_id] = user
        logger.info("User created: %s ('%s')", user_id, user.username)
        return user

    def rename_user(self, user_id: str, new_username: str) -> User:
        user = self.get_user(user_id)
        user.username = sanitize_username(new_username)
        logger.info("User %s renamed to '%s'", user_id, user.username)
        return user

    def get_user(self, user_id: Optional[str]) -> User:
        user = self.users.get(user_id) if user_id else None
        if not user:
            raise UserNotFound()
        user.touch()
        return user

    def evict_idle(self, active_user_ids: Iterable[str] = ()) -> List[str]:
        """Drop users idle past the TTL unless they still sit in a live room."""
        now = time.time()
        keep = set(active_user_ids)
        expired = [
            uid for uid, user in self.users.items()
            if uid not in keep and now - user.last_seen > config.USER_TTL_SECONDS
        ]
        for uid in expired:
            del self.users[uid]
        if expired:
            logger.info("Evicted %d idle users", len(expired))
        return expired

    @staticmethod
    def _placeholder_name() -> str:
        return f"Player-{secrets.token_hex(2).upper()}"


identity_registry = IdentityRegistry()
