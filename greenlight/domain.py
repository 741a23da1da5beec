# ─────────────────────────────────────────────────────────────────────────────
# Domain records: users, tokens, movies
# ─────────────────────────────────────────────────────────────────────────────
# Plain dataclasses shared by the store implementations and the services.
# Pydantic schemas in schemas.py are the wire format; these are not.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Scope(StrEnum):
    """What a token was issued for. Restricts where it is accepted."""

    authentication = "authentication"
    activation = "activation"


@dataclass
class User:
    id: int
    name: str
    email: str
    password_hash: bytes = field(repr=False)
    activated: bool = False
    created_at: datetime = field(default_factory=utcnow)
    version: int = 1

    @property
    def is_anonymous(self) -> bool:
        return self is ANONYMOUS_USER


# Identity for requests without an Authorization header. Compared by
# identity, never by value.
ANONYMOUS_USER = User(id=0, name="", email="", password_hash=b"")


@dataclass(frozen=True)
class TokenRecord:
    """Stored half of a token. The plaintext never lives here."""

    hash: str
    user_id: int
    expiry: datetime
    scope: Scope

    def is_expired(self, now: datetime) -> bool:
        return now > self.expiry


@dataclass
class Movie:
    id: int
    title: str
    year: int
    runtime: int
    genres: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    version: int = 1


@dataclass(frozen=True)
class Page:
    """Pagination request for list_movies."""

    number: int = 1
    size: int = 20
    sort: str = "id"

    @property
    def offset(self) -> int:
        return (self.number - 1) * self.size

    @property
    def sort_column(self) -> str:
        return self.sort.lstrip("-")

    @property
    def descending(self) -> bool:
        return self.sort.startswith("-")
