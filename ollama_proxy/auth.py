#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
AUTH - OLLAMA PROXY
===================

Bearer token authentication for proxy users.

Users live in a YAML file; only a SHA-256 digest of each token is
stored:

    users:
      alice:
        token_digest: 5e884898da28...
        active: true
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional
import hashlib
import hmac
import secrets
import logging

from .config import load_yaml, save_yaml
from .exceptions import AuthError

logger = logging.getLogger(__name__)

TOKEN_BYTES = 24


@dataclass(frozen=True)
class User:
    """An API user."""
    name: str
    token_digest: str
    active: bool = True


def digest_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def parse_bearer(header_value: Optional[str]) -> Optional[str]:
    """Extract the token from an 'Authorization: Bearer <token>' value."""
    if not header_value:
        return None
    scheme, _, token = header_value.strip().partition(" ")
    if scheme.lower() not in ("bearer", "token") or not token.strip():
        return None
    return token.strip()


class TokenAuthenticator:
    """
    Validates bearer tokens against the users file.

    Usage:
        auth = TokenAuthenticator.from_file(config.auth.users_file)
        user = auth.authenticate(token)  # None if rejected
    """

    def __init__(self, users: Dict[str, User], users_file: Optional[Path] = None):
        self._users = users
        self._users_file = users_file

    @classmethod
    def from_file(cls, users_file: Path) -> 'TokenAuthenticator':
        data = load_yaml(Path(users_file))
        users = {}
        for name, raw in (data.get("users") or {}).items():
            if not isinstance(raw, dict) or not raw.get("token_digest"):
                logger.warning(f"Ignoring user {name}: no token digest")
                continue
            users[str(name)] = User(
                name=str(name),
                token_digest=str(raw["token_digest"]),
                active=bool(raw.get("active", True)),
            )
        logger.info(f"Loaded {len(users)} users from {users_file}")
        return cls(users, Path(users_file))

    @property
    def users(self) -> Dict[str, User]:
        return dict(self._users)

    def authenticate(self, token: Optional[str]) -> Optional[User]:
        """Return the active user owning this token, or None."""
        if not token:
            return None
        digest = digest_token(token)
        for user in self._users.values():
            if user.active and hmac.compare_digest(user.token_digest, digest):
                return user
        return None

    def create_user(self, name: str) -> str:
        """
        Create (or rotate) a user's token and persist it.

        Returns:
            The clear-text token, shown once
        """
        if not self._users_file:
            raise AuthError("No users file configured")
        token = secrets.token_urlsafe(TOKEN_BYTES)
        self._users[name] = User(name=name, token_digest=digest_token(token))
        if not self._save():
            raise AuthError(f"Could not write {self._users_file}")
        return token

    def deactivate_user(self, name: str) -> bool:
        user = self._users.get(name)
        if user is None:
            return False
        self._users[name] = User(name=user.name, token_digest=user.token_digest, active=False)
        return self._save()

    def _save(self) -> bool:
        data = {
            "users": {
                u.name: {"token_digest": u.token_digest, "active": u.active}
                for u in self._users.values()
            }
        }
        return save_yaml(self._users_file, data)
