# ─────────────────────────────────────────────────────────────────────────────
# SQLStore: PostgreSQL Store implementation (SQLAlchemy async Core + asyncpg)
# ─────────────────────────────────────────────────────────────────────────────
# Pool sizing mirrors the DB_MAX_* settings. Each public method opens its own
# connection (reads) or transaction (writes) and is bounded by the configured
# deadline; driver errors and timeouts surface as StoreUnavailableError.
#
# redeem_activation_token relies on DELETE ... RETURNING row locking: a
# second transaction deleting the same hash blocks until the first commits,
# then matches zero rows. That is the single-winner guarantee.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    MetaData,
    Table,
    Text,
    delete,
    func,
    insert,
    literal,
    select,
    text,
    update,
)
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.engine import Row
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from greenlight.config import Settings
from greenlight.domain import Movie, Page, Scope, TokenRecord, User
from greenlight.exceptions import DuplicateEmailError, EditConflictError
from greenlight.store.base import bounded
from greenlight.store.protocol import TokenValidator

logger = structlog.get_logger(__name__)

KNOWN_PERMISSIONS = ("movies:read", "movies:write", "metrics:view")

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", BigInteger, primary_key=True, autoincrement=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("name", Text, nullable=False),
    Column("email", Text, nullable=False, unique=True),
    Column("password_hash", LargeBinary, nullable=False),
    Column("activated", Boolean, nullable=False, server_default="false"),
    Column("version", Integer, nullable=False, server_default="1"),
)

tokens = Table(
    "tokens",
    metadata,
    Column("hash", Text, primary_key=True),
    Column("user_id", BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("expiry", DateTime(timezone=True), nullable=False, index=True),
    Column("scope", Text, nullable=False),
)

permissions = Table(
    "permissions",
    metadata,
    Column("id", BigInteger, primary_key=True, autoincrement=True),
    Column("code", Text, nullable=False, unique=True),
)

users_permissions = Table(
    "users_permissions",
    metadata,
    Column("user_id", BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column(
        "permission_id",
        BigInteger,
        ForeignKey("permissions.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)

movies = Table(
    "movies",
    metadata,
    Column("id", BigInteger, primary_key=True, autoincrement=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("title", Text, nullable=False),
    Column("year", Integer, nullable=False),
    Column("runtime", Integer, nullable=False),
    Column("genres", ARRAY(Text), nullable=False),
    Column("version", Integer, nullable=False, server_default="1"),
)


def _user(row: Row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=bytes(row.password_hash),
        activated=row.activated,
        created_at=row.created_at,
        version=row.version,
    )


def _token(row: Row) -> TokenRecord:
    return TokenRecord(
        hash=row.hash, user_id=row.user_id, expiry=row.expiry, scope=Scope(row.scope)
    )


def _movie(row: Row) -> Movie:
    return Movie(
        id=row.id,
        title=row.title,
        year=row.year,
        runtime=row.runtime,
        genres=list(row.genres),
        created_at=row.created_at,
        version=row.version,
    )


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Build the pooled async engine.

    DB_MAX_IDLE_CONNS connections are kept open; bursts may grow the pool
    up to DB_MAX_OPEN_CONNS. Idle connections are recycled after
    DB_MAX_IDLE_TIME_SECONDS.
    """
    pool_size = min(settings.db_max_idle_conns, settings.db_max_open_conns)
    return create_async_engine(
        settings.db_dsn.get_secret_value(),
        pool_size=pool_size,
        max_overflow=max(settings.db_max_open_conns - pool_size, 0),
        pool_recycle=settings.db_max_idle_time_seconds,
        pool_pre_ping=True,
    )


class SQLStore:
    """PostgreSQL-backed Store. Satisfies greenlight.store.protocol.Store."""

    def __init__(self, engine: AsyncEngine, timeout: float = 3.0) -> None:
        self._engine = engine
        self._timeout = timeout

    @classmethod
    async def connect(cls, settings: Settings) -> SQLStore:
        """Create the engine, verify connectivity within 5s, optionally create tables."""
        store = cls(create_engine_from_settings(settings), timeout=settings.db_timeout_seconds)
        async with bounded(5.0, "connect", (SQLAlchemyError, OSError)):
            await store.ping()
        if settings.db_create_tables:
            await store.create_tables()
        logger.info("database_connection_pool_established")
        return store

    def _bounded(self, operation: str):  # noqa: ANN202
        return bounded(self._timeout, operation, (SQLAlchemyError, OSError))

    async def ping(self) -> None:
        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def create_tables(self) -> None:
        async with self._bounded("create_tables"), self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
            await conn.execute(
                pg_insert(permissions)
                .values([{"code": code} for code in KNOWN_PERMISSIONS])
                .on_conflict_do_nothing(index_elements=["code"])
            )

    async def close(self) -> None:
        await self._engine.dispose()

    def stats(self) -> dict[str, Any]:
        pool = self._engine.pool
        return {"backend": "postgresql", "pool": pool.status()}

    # ── Users ────────────────────────────────────────────────────────────────

    async def insert_user(self, user: User) -> User:
        stmt = (
            insert(users)
            .values(
                name=user.name,
                email=user.email,
                password_hash=user.password_hash,
                activated=user.activated,
            )
            .returning(users)
        )
        async with self._bounded("insert_user"):
            try:
                async with self._engine.begin() as conn:
                    row = (await conn.execute(stmt)).one()
            except IntegrityError:
                raise DuplicateEmailError() from None
        return _user(row)

    async def get_user(self, user_id: int) -> User | None:
        async with self._bounded("get_user"), self._engine.connect() as conn:
            row = (await conn.execute(select(users).where(users.c.id == user_id))).first()
        return _user(row) if row else None

    async def get_user_by_email(self, email: str) -> User | None:
        stmt = select(users).where(func.lower(users.c.email) == email.lower())
        async with self._bounded("get_user_by_email"), self._engine.connect() as conn:
            row = (await conn.execute(stmt)).first()
        return _user(row) if row else None

    async def update_user(self, user: User) -> User:
        stmt = (
            update(users)
            .where(users.c.id == user.id, users.c.version == user.version)
            .values(
                name=user.name,
                email=user.email,
                password_hash=user.password_hash,
                activated=user.activated,
                version=users.c.version + 1,
            )
            .returning(users)
        )
        async with self._bounded("update_user"):
            try:
                async with self._engine.begin() as conn:
                    row = (await conn.execute(stmt)).first()
            except IntegrityError:
                raise DuplicateEmailError() from None
        if row is None:
            raise EditConflictError()
        return _user(row)

    # ── Tokens ───────────────────────────────────────────────────────────────

    async def insert_token(self, token: TokenRecord) -> None:
        stmt = insert(tokens).values(
            hash=token.hash, user_id=token.user_id, expiry=token.expiry, scope=str(token.scope)
        )
        async with self._bounded("insert_token"), self._engine.begin() as conn:
            await conn.execute(stmt)

    async def get_token(self, token_hash: str, scope: Scope) -> TokenRecord | None:
        stmt = select(tokens).where(tokens.c.hash == token_hash, tokens.c.scope == str(scope))
        async with self._bounded("get_token"), self._engine.connect() as conn:
            row = (await conn.execute(stmt)).first()
        return _token(row) if row else None

    async def delete_token(self, token_hash: str) -> None:
        async with self._bounded("delete_token"), self._engine.begin() as conn:
            await conn.execute(delete(tokens).where(tokens.c.hash == token_hash))

    async def delete_tokens_for_user(self, scope: Scope, user_id: int) -> None:
        stmt = delete(tokens).where(tokens.c.scope == str(scope), tokens.c.user_id == user_id)
        async with self._bounded("delete_tokens_for_user"), self._engine.begin() as conn:
            await conn.execute(stmt)

    async def delete_expired_tokens(self, now: datetime) -> int:
        async with self._bounded("delete_expired_tokens"), self._engine.begin() as conn:
            result = await conn.execute(delete(tokens).where(tokens.c.expiry < now))
        return result.rowcount

    async def redeem_activation_token(
        self, token_hash: str, validate: TokenValidator
    ) -> User | None:
        async with self._bounded("redeem_activation_token"), self._engine.begin() as conn:
            row = (
                await conn.execute(
                    delete(tokens).where(tokens.c.hash == token_hash).returning(tokens)
                )
            ).first()
            if row is None:
                return None
            record = _token(row)
            # Raising here rolls the delete back.
            validate(record)
            user_row = (
                await conn.execute(
                    update(users)
                    .where(users.c.id == record.user_id)
                    .values(activated=True, version=users.c.version + 1)
                    .returning(users)
                )
            ).first()
            if user_row is None:
                return None
            await conn.execute(
                delete(tokens).where(
                    tokens.c.scope == str(Scope.activation),
                    tokens.c.user_id == record.user_id,
                )
            )
        return _user(user_row)

    # ── Permissions ──────────────────────────────────────────────────────────

    async def get_permissions_for_user(self, user_id: int) -> list[str]:
        stmt = (
            select(permissions.c.code)
            .join(users_permissions, users_permissions.c.permission_id == permissions.c.id)
            .where(users_permissions.c.user_id == user_id)
            .order_by(permissions.c.code)
        )
        async with self._bounded("get_permissions_for_user"), self._engine.connect() as conn:
            return list((await conn.execute(stmt)).scalars())

    async def add_permissions_for_user(self, user_id: int, *codes: str) -> None:
        stmt = (
            pg_insert(users_permissions)
            .from_select(
                ["user_id", "permission_id"],
                select(literal(user_id, BigInteger), permissions.c.id).where(
                    permissions.c.code.in_(codes)
                ),
            )
            .on_conflict_do_nothing()
        )
        async with self._bounded("add_permissions_for_user"), self._engine.begin() as conn:
            await conn.execute(stmt)

    # ── Movies ───────────────────────────────────────────────────────────────

    async def insert_movie(self, movie: Movie) -> Movie:
        stmt = (
            insert(movies)
            .values(title=movie.title, year=movie.year, runtime=movie.runtime, genres=movie.genres)
            .returning(movies)
        )
        async with self._bounded("insert_movie"), self._engine.begin() as conn:
            row = (await conn.execute(stmt)).one()
        return _movie(row)

    async def get_movie(self, movie_id: int) -> Movie | None:
        async with self._bounded("get_movie"), self._engine.connect() as conn:
            row = (await conn.execute(select(movies).where(movies.c.id == movie_id))).first()
        return _movie(row) if row else None

    async def update_movie(self, movie: Movie) -> Movie:
        stmt = (
            update(movies)
            .where(movies.c.id == movie.id, movies.c.version == movie.version)
            .values(
                title=movie.title,
                year=movie.year,
                runtime=movie.runtime,
                genres=movie.genres,
                version=movies.c.version + 1,
            )
            .returning(movies)
        )
        async with self._bounded("update_movie"), self._engine.begin() as conn:
            row = (await conn.execute(stmt)).first()
        if row is None:
            raise EditConflictError()
        return _movie(row)

    async def delete_movie(self, movie_id: int) -> bool:
        async with self._bounded("delete_movie"), self._engine.begin() as conn:
            result = await conn.execute(delete(movies).where(movies.c.id == movie_id))
        return result.rowcount > 0

    async def list_movies(
        self, title: str, genres: Sequence[str], page: Page
    ) -> tuple[list[Movie], int]:
        column = movies.c[page.sort_column]
        stmt = select(movies, func.count().over().label("total"))
        if title:
            stmt = stmt.where(movies.c.title.icontains(title, autoescape=True))
        if genres:
            stmt = stmt.where(movies.c.genres.contains(list(genres)))
        stmt = (
            stmt.order_by(column.desc() if page.descending else column.asc(), movies.c.id)
            .limit(page.size)
            .offset(page.offset)
        )
        async with self._bounded("list_movies"), self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        total = rows[0].total if rows else 0
        return [_movie(row) for row in rows], total
