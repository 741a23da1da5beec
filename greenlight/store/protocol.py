# ─────────────────────────────────────────────────────────────────────────────
# Store Protocol: runtime_checkable interface for the persistence layer
# ─────────────────────────────────────────────────────────────────────────────
# The gatekeeper only consumes these operations; business rules (expiry,
# scope, single use) live in the services. Both MemoryStore and SQLStore
# satisfy this Protocol, so either can sit behind app.state.store.
#
# Every call is bounded by the store's configured deadline and raises
# StoreUnavailableError on timeout or driver failure.
# ─────────────────────────────────────────────────────────────────────────────

from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from greenlight.domain import Movie, Page, Scope, TokenRecord, User

# Called inside the redemption transaction with the record that was just
# removed. Raising aborts the transaction and leaves the record in place.
TokenValidator = Callable[[TokenRecord], None]


@runtime_checkable
class Store(Protocol):
    """Key-based CRUD over users, tokens, permissions and movies."""

    async def ping(self) -> None: ...

    async def close(self) -> None: ...

    def stats(self) -> dict[str, Any]:
        """Backend name and occupancy, for /debug/vars. No I/O."""
        ...

    # ── Users ────────────────────────────────────────────────────────────────

    async def insert_user(self, user: User) -> User: ...

    async def get_user(self, user_id: int) -> User | None: ...

    async def get_user_by_email(self, email: str) -> User | None: ...

    async def update_user(self, user: User) -> User: ...

    # ── Tokens ───────────────────────────────────────────────────────────────

    async def insert_token(self, token: TokenRecord) -> None: ...

    async def get_token(self, token_hash: str, scope: Scope) -> TokenRecord | None: ...

    async def delete_token(self, token_hash: str) -> None: ...

    async def delete_tokens_for_user(self, scope: Scope, user_id: int) -> None: ...

    async def delete_expired_tokens(self, now: datetime) -> int: ...

    async def redeem_activation_token(
        self, token_hash: str, validate: TokenValidator
    ) -> User | None: ...

    # ── Permissions ──────────────────────────────────────────────────────────

    async def get_permissions_for_user(self, user_id: int) -> list[str]: ...

    async def add_permissions_for_user(self, user_id: int, *codes: str) -> None: ...

    # ── Movies ───────────────────────────────────────────────────────────────

    async def insert_movie(self, movie: Movie) -> Movie: ...

    async def get_movie(self, movie_id: int) -> Movie | None: ...

    async def update_movie(self, movie: Movie) -> Movie: ...

    async def delete_movie(self, movie_id: int) -> bool: ...

    async def list_movies(
        self, title: str, genres: Sequence[str], page: Page
    ) -> tuple[list[Movie], int]: ...
