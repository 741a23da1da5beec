# ─────────────────────────────────────────────────────────────────────────────
# Dependency Injection: FastAPI Depends() providers
# ─────────────────────────────────────────────────────────────────────────────
# State flows: lifespan creates → app.state stores → Depends() injects.
# No global variables. Every dependency is explicit in endpoint signatures.
# The only per-request value is the authenticated user on request.state.
# ─────────────────────────────────────────────────────────────────────────────

from fastapi import Request

from greenlight.config import Settings
from greenlight.domain import ANONYMOUS_USER, User
from greenlight.services.accounts import AccountService
from greenlight.services.metrics import RequestMetrics
from greenlight.services.tokens import TokenService
from greenlight.store.protocol import Store


def get_store(request: Request) -> Store:
    """Inject the Store into endpoints via Depends()."""
    return request.app.state.store  # type: ignore[no-any-return]


def get_token_service(request: Request) -> TokenService:
    """Inject TokenService into endpoints via Depends()."""
    return request.app.state.token_service  # type: ignore[no-any-return]


def get_account_service(request: Request) -> AccountService:
    """Inject AccountService into endpoints via Depends()."""
    return request.app.state.account_service  # type: ignore[no-any-return]


def get_settings_dep(request: Request) -> Settings:
    """Inject Settings into endpoints via Depends()."""
    return request.app.state.settings  # type: ignore[no-any-return]


def get_metrics(request: Request) -> RequestMetrics:
    """Inject RequestMetrics into endpoints via Depends()."""
    return request.app.state.metrics  # type: ignore[no-any-return]


def get_current_user(request: Request) -> User:
    """User resolved by BearerTokenMiddleware, anonymous if it never ran."""
    return getattr(request.state, "user", ANONYMOUS_USER)
