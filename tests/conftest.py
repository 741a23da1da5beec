# ─────────────────────────────────────────────────────────────────────────────
# Test Fixtures: shared across all tests
# ─────────────────────────────────────────────────────────────────────────────
# The app is built with create_app(test_settings) and its state is wired by
# hand: ASGITransport does not run the lifespan, so no sweeper task, no
# database and no SMTP are involved unless a test asks for them.
# ─────────────────────────────────────────────────────────────────────────────

import itertools
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime, timedelta

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from greenlight.config import Settings
from greenlight.domain import Scope, User
from greenlight.main import create_app
from greenlight.services.accounts import AccountService
from greenlight.services.background import BackgroundTasks
from greenlight.services.mailer import Mailer
from greenlight.services.tokens import TokenService
from greenlight.store import MemoryStore

MakeUser = Callable[..., Awaitable[tuple[User, str]]]


class FakeClock:
    """Monotonic seconds that only move when told to. Drives BucketStore."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUtcClock:
    """Aware UTC datetimes that only move when told to. Drives TokenService."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, tzinfo=UTC)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


@pytest.fixture
def test_settings() -> Settings:
    """Settings for testing: in-memory store, cheap bcrypt, no limiter."""
    return Settings(
        _env_file=None,
        env="testing",
        db_dsn="",
        smtp_host="",
        log_json=False,
        log_level="DEBUG",
        bcrypt_rounds=4,
        limiter_enabled=False,
        cors_trusted_origins="https://trusted.example",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def utc_clock() -> FakeUtcClock:
    return FakeUtcClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore(timeout=1.0)


@pytest.fixture
def token_service(store: MemoryStore, utc_clock: FakeUtcClock) -> TokenService:
    return TokenService(store, clock=utc_clock)


@pytest.fixture
def background() -> BackgroundTasks:
    return BackgroundTasks()


@pytest.fixture
def accounts(
    store: MemoryStore,
    token_service: TokenService,
    test_settings: Settings,
    background: BackgroundTasks,
) -> AccountService:
    mailer = Mailer("", 25, "", "", "Greenlight <no-reply@greenlight.test>")
    return AccountService(store, token_service, test_settings, mailer, background)


@pytest.fixture
def app_factory(
    test_settings: Settings,
    store: MemoryStore,
    token_service: TokenService,
    accounts: AccountService,
) -> Callable[..., FastAPI]:
    """create_app() plus the state the lifespan would normally provide.

    Keyword arguments override fields of test_settings.
    """

    def _build(**overrides: object) -> FastAPI:
        app = create_app(test_settings.model_copy(update=overrides))
        app.state.store = store
        app.state.token_service = token_service
        app.state.account_service = accounts
        return app

    return _build


@pytest.fixture
def app(app_factory: Callable[..., FastAPI]) -> FastAPI:
    return app_factory()


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_user(store: MemoryStore, token_service: TokenService) -> MakeUser:
    """Insert a user straight into the store and issue them a bearer token.

    Returns (user, plaintext_authentication_token).
    """
    ids = itertools.count(1)

    async def _make(
        *permissions: str, activated: bool = True, name: str = "Alice"
    ) -> tuple[User, str]:
        user = await store.insert_user(
            User(
                id=0,
                name=name,
                email=f"user{next(ids)}@example.com",
                password_hash=b"unused",
                activated=activated,
            )
        )
        if permissions:
            await store.add_permissions_for_user(user.id, *permissions)
        plaintext, _ = await token_service.issue(
            user.id, Scope.authentication, timedelta(hours=24)
        )
        return user, plaintext

    return _make
