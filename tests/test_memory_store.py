# ─────────────────────────────────────────────────────────────────────────────
# Tests: MemoryStore
# ─────────────────────────────────────────────────────────────────────────────

from datetime import UTC, datetime, timedelta

import pytest

from greenlight.domain import Movie, Page, Scope, TokenRecord, User
from greenlight.exceptions import (
    DuplicateEmailError,
    EditConflictError,
    ExpiredTokenError,
    StoreUnavailableError,
)
from greenlight.store import MemoryStore, Store

NOW = datetime(2026, 1, 1, tzinfo=UTC)


def _user(email: str = "dana@example.com") -> User:
    return User(id=0, name="Dana", email=email, password_hash=b"hash")


def _token(user_id: int, scope: Scope = Scope.activation, suffix: str = "a") -> TokenRecord:
    return TokenRecord(
        hash=suffix * 64, user_id=user_id, expiry=NOW + timedelta(hours=1), scope=scope
    )


def test_satisfies_store_protocol(store):
    assert isinstance(store, Store)


async def test_stats_counts_records(store):
    assert store.stats() == {"backend": "memory", "users": 0, "tokens": 0, "movies": 0}
    user = await store.insert_user(_user())
    await store.insert_token(_token(user.id))
    assert store.stats() == {"backend": "memory", "users": 1, "tokens": 1, "movies": 0}


class TestUsers:
    async def test_insert_assigns_id_and_version(self, store):
        user = await store.insert_user(_user())
        assert user.id == 1
        assert user.version == 1
        assert (await store.get_user(1)).email == "dana@example.com"

    async def test_returned_records_are_copies(self, store):
        user = await store.insert_user(_user())
        user.name = "mutated"
        assert (await store.get_user(user.id)).name == "Dana"

    async def test_duplicate_email(self, store):
        await store.insert_user(_user("dana@example.com"))
        with pytest.raises(DuplicateEmailError):
            await store.insert_user(_user("DANA@example.com"))

    async def test_lookup_by_email_is_case_insensitive(self, store):
        await store.insert_user(_user())
        assert (await store.get_user_by_email("Dana@Example.COM")) is not None
        assert (await store.get_user_by_email("nobody@example.com")) is None

    async def test_update_checks_version(self, store):
        user = await store.insert_user(_user())
        user.name = "Dana S."
        updated = await store.update_user(user)
        assert updated.version == 2

        with pytest.raises(EditConflictError):
            await store.update_user(user)  # still version 1


class TestTokens:
    async def test_get_filters_by_scope(self, store):
        await store.insert_token(_token(1, Scope.activation))
        assert await store.get_token("a" * 64, Scope.activation) is not None
        assert await store.get_token("a" * 64, Scope.authentication) is None

    async def test_delete_tokens_for_user_respects_scope(self, store):
        await store.insert_token(_token(1, Scope.activation, "a"))
        await store.insert_token(_token(1, Scope.authentication, "b"))
        await store.insert_token(_token(2, Scope.activation, "c"))

        await store.delete_tokens_for_user(Scope.activation, 1)

        assert await store.get_token("a" * 64, Scope.activation) is None
        assert await store.get_token("b" * 64, Scope.authentication) is not None
        assert await store.get_token("c" * 64, Scope.activation) is not None

    async def test_delete_expired(self, store):
        await store.insert_token(_token(1, suffix="a"))
        assert await store.delete_expired_tokens(NOW) == 0
        assert await store.delete_expired_tokens(NOW + timedelta(hours=2)) == 1


class TestRedeemActivationToken:
    async def test_unknown_hash(self, store):
        assert await store.redeem_activation_token("f" * 64, lambda record: None) is None

    async def test_validator_failure_leaves_everything_untouched(self, store):
        user = await store.insert_user(_user())
        await store.insert_token(_token(user.id))

        def reject(record: TokenRecord) -> None:
            raise ExpiredTokenError()

        with pytest.raises(ExpiredTokenError):
            await store.redeem_activation_token("a" * 64, reject)
        assert await store.get_token("a" * 64, Scope.activation) is not None
        assert (await store.get_user(user.id)).activated is False

    async def test_token_for_missing_user_is_burned(self, store):
        await store.insert_token(_token(42))
        assert await store.redeem_activation_token("a" * 64, lambda record: None) is None
        assert await store.get_token("a" * 64, Scope.activation) is None


class TestPermissions:
    async def test_add_is_idempotent(self, store):
        await store.add_permissions_for_user(1, "movies:read")
        await store.add_permissions_for_user(1, "movies:read", "movies:write")
        assert await store.get_permissions_for_user(1) == ["movies:read", "movies:write"]

    async def test_unknown_user_has_none(self, store):
        assert await store.get_permissions_for_user(99) == []


class TestMovies:
    async def test_concurrent_update_conflicts(self, store):
        movie = await store.insert_movie(Movie(id=0, title="Up", year=2009, runtime=96))
        first = await store.get_movie(movie.id)
        second = await store.get_movie(movie.id)

        first.title = "Up!"
        await store.update_movie(first)

        second.runtime = 97
        with pytest.raises(EditConflictError):
            await store.update_movie(second)

    async def test_delete(self, store):
        movie = await store.insert_movie(Movie(id=0, title="Up", year=2009, runtime=96))
        assert await store.delete_movie(movie.id) is True
        assert await store.delete_movie(movie.id) is False

    async def test_list_pages_and_sorts(self, store):
        for title in ["b", "a", "c"]:
            await store.insert_movie(Movie(id=0, title=title, year=2000, runtime=90))

        movies, total = await store.list_movies("", [], Page(number=1, size=2, sort="title"))
        assert [m.title for m in movies] == ["a", "b"]
        assert total == 3


class TestDeadline:
    async def test_lock_held_past_deadline_is_store_unavailable(self):
        store = MemoryStore(timeout=0.01)
        async with store._lock:
            with pytest.raises(StoreUnavailableError):
                await store.get_user(1)
