# ─────────────────────────────────────────────────────────────────────────────
# MemoryStore: process-local Store implementation
# ─────────────────────────────────────────────────────────────────────────────
# Used when DB_DSN is empty (local dev) and throughout the test suite.
# One asyncio.Lock serialises every operation, which is what makes
# redeem_activation_token single-winner: the lookup, removal, validation and
# user update all happen without an await in between.
#
# Records are copied on the way in and out so callers can't mutate state
# behind the lock.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import asyncio
import copy
import itertools
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import structlog

from greenlight.domain import Movie, Page, Scope, TokenRecord, User
from greenlight.exceptions import DuplicateEmailError, EditConflictError
from greenlight.store.base import bounded
from greenlight.store.protocol import TokenValidator

logger = structlog.get_logger(__name__)


class MemoryStore:
    """Dict-backed Store. Satisfies greenlight.store.protocol.Store."""

    def __init__(self, timeout: float = 3.0) -> None:
        self._timeout = timeout
        self._lock = asyncio.Lock()
        self._users: dict[int, User] = {}
        self._tokens: dict[str, TokenRecord] = {}
        self._permissions: dict[int, set[str]] = {}
        self._movies: dict[int, Movie] = {}
        self._user_ids = itertools.count(1)
        self._movie_ids = itertools.count(1)

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        return None

    def stats(self) -> dict[str, Any]:
        return {
            "backend": "memory",
            "users": len(self._users),
            "tokens": len(self._tokens),
            "movies": len(self._movies),
        }

    # ── Users ────────────────────────────────────────────────────────────────

    async def insert_user(self, user: User) -> User:
        async with bounded(self._timeout, "insert_user"), self._lock:
            email = user.email.lower()
            if any(u.email.lower() == email for u in self._users.values()):
                raise DuplicateEmailError()
            stored = copy.copy(user)
            stored.id = next(self._user_ids)
            stored.version = 1
            self._users[stored.id] = stored
            return copy.copy(stored)

    async def get_user(self, user_id: int) -> User | None:
        async with bounded(self._timeout, "get_user"), self._lock:
            user = self._users.get(user_id)
            return copy.copy(user) if user else None

    async def get_user_by_email(self, email: str) -> User | None:
        async with bounded(self._timeout, "get_user_by_email"), self._lock:
            email = email.lower()
            for user in self._users.values():
                if user.email.lower() == email:
                    return copy.copy(user)
            return None

    async def update_user(self, user: User) -> User:
        async with bounded(self._timeout, "update_user"), self._lock:
            current = self._users.get(user.id)
            if current is None or current.version != user.version:
                raise EditConflictError()
            email = user.email.lower()
            if any(
                u.email.lower() == email and u.id != user.id for u in self._users.values()
            ):
                raise DuplicateEmailError()
            stored = copy.copy(user)
            stored.version += 1
            self._users[user.id] = stored
            return copy.copy(stored)

    # ── Tokens ───────────────────────────────────────────────────────────────

    async def insert_token(self, token: TokenRecord) -> None:
        async with bounded(self._timeout, "insert_token"), self._lock:
            self._tokens[token.hash] = token

    async def get_token(self, token_hash: str, scope: Scope) -> TokenRecord | None:
        async with bounded(self._timeout, "get_token"), self._lock:
            token = self._tokens.get(token_hash)
            if token is None or token.scope != scope:
                return None
            return token

    async def delete_token(self, token_hash: str) -> None:
        async with bounded(self._timeout, "delete_token"), self._lock:
            self._tokens.pop(token_hash, None)

    async def delete_tokens_for_user(self, scope: Scope, user_id: int) -> None:
        async with bounded(self._timeout, "delete_tokens_for_user"), self._lock:
            self._drop_tokens(lambda t: t.scope == scope and t.user_id == user_id)

    async def delete_expired_tokens(self, now: datetime) -> int:
        async with bounded(self._timeout, "delete_expired_tokens"), self._lock:
            return self._drop_tokens(lambda t: t.is_expired(now))

    async def redeem_activation_token(
        self, token_hash: str, validate: TokenValidator
    ) -> User | None:
        async with bounded(self._timeout, "redeem_activation_token"), self._lock:
            token = self._tokens.get(token_hash)
            if token is None:
                return None
            # Raises before anything is mutated, so the record survives.
            validate(token)
            user = self._users.get(token.user_id)
            if user is None:
                del self._tokens[token_hash]
                return None
            user.activated = True
            user.version += 1
            self._drop_tokens(
                lambda t: t.scope == Scope.activation and t.user_id == user.id
            )
            return copy.copy(user)

    def _drop_tokens(self, predicate) -> int:  # noqa: ANN001
        doomed = [h for h, t in self._tokens.items() if predicate(t)]
        for token_hash in doomed:
            del self._tokens[token_hash]
        return len(doomed)

    # ── Permissions ──────────────────────────────────────────────────────────

    async def get_permissions_for_user(self, user_id: int) -> list[str]:
        async with bounded(self._timeout, "get_permissions_for_user"), self._lock:
            return sorted(self._permissions.get(user_id, ()))

    async def add_permissions_for_user(self, user_id: int, *codes: str) -> None:
        async with bounded(self._timeout, "add_permissions_for_user"), self._lock:
            self._permissions.setdefault(user_id, set()).update(codes)

    # ── Movies ───────────────────────────────────────────────────────────────

    async def insert_movie(self, movie: Movie) -> Movie:
        async with bounded(self._timeout, "insert_movie"), self._lock:
            stored = copy.deepcopy(movie)
            stored.id = next(self._movie_ids)
            stored.version = 1
            self._movies[stored.id] = stored
            return copy.deepcopy(stored)

    async def get_movie(self, movie_id: int) -> Movie | None:
        async with bounded(self._timeout, "get_movie"), self._lock:
            movie = self._movies.get(movie_id)
            return copy.deepcopy(movie) if movie else None

    async def update_movie(self, movie: Movie) -> Movie:
        async with bounded(self._timeout, "update_movie"), self._lock:
            current = self._movies.get(movie.id)
            if current is None or current.version != movie.version:
                raise EditConflictError()
            stored = copy.deepcopy(movie)
            stored.version += 1
            self._movies[movie.id] = stored
            return copy.deepcopy(stored)

    async def delete_movie(self, movie_id: int) -> bool:
        async with bounded(self._timeout, "delete_movie"), self._lock:
            return self._movies.pop(movie_id, None) is not None

    async def list_movies(
        self, title: str, genres: Sequence[str], page: Page
    ) -> tuple[list[Movie], int]:
        async with bounded(self._timeout, "list_movies"), self._lock:
            needle = title.lower()
            wanted = set(genres)
            matches = [
                m
                for m in self._movies.values()
                if needle in m.title.lower() and wanted.issubset(m.genres)
            ]
            # Secondary sort on id keeps pages stable when the sort key ties.
            matches.sort(key=lambda m: m.id)
            matches.sort(key=lambda m: getattr(m, page.sort_column), reverse=page.descending)
            window = matches[page.offset : page.offset + page.size]
            return [copy.deepcopy(m) for m in window], len(matches)
