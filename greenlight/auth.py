# Bearer-token authentication middleware + per-route permission guards.
# The resolved user lives on request.state.user for the life of one request;
# nothing here touches module or thread-local state.


from collections.abc import Awaitable, Callable

import structlog
from fastapi import Depends
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from greenlight.dependencies import get_current_user, get_store, get_token_service
from greenlight.domain import ANONYMOUS_USER, User
from greenlight.exceptions import (
    AccountNotActivatedError,
    AuthenticationRequiredError,
    CredentialsError,
    GreenlightError,
    PermissionDeniedError,
    error_response,
    log_error,
)
from greenlight.services.tokens import parse_authorization_header
from greenlight.store.protocol import Store

logger = structlog.get_logger(__name__)


class BearerTokenMiddleware(BaseHTTPMiddleware):
    """Resolve ``Authorization: Bearer <token>`` into request.state.user.

    No header → anonymous user, request proceeds. Malformed header → 401
    before the token service is consulted. Unknown or expired token → 401.
    Store trouble → 500. Authorization is left to the per-route guards.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        header = request.headers.get("authorization")
        try:
            if header is None:
                user = ANONYMOUS_USER
            else:
                plaintext = parse_authorization_header(header)
                user = await get_token_service(request).authenticate(plaintext)
        except GreenlightError as exc:
            if isinstance(exc, CredentialsError):
                logger.info(
                    "token_rejected",
                    reason=type(exc).__name__,
                    path=request.url.path,
                    method=request.method,
                )
            else:
                log_error(request, exc)
            response = error_response(exc)
            response.headers.add_vary_header("Authorization")
            return response

        request.state.user = user
        response = await call_next(request)
        response.headers.add_vary_header("Authorization")
        return response


# ── Per-route guards (FastAPI dependencies) ──────────────────────────────────


async def require_authenticated_user(user: User = Depends(get_current_user)) -> User:
    if user.is_anonymous:
        raise AuthenticationRequiredError()
    return user


async def require_activated_user(user: User = Depends(require_authenticated_user)) -> User:
    if not user.activated:
        raise AccountNotActivatedError()
    return user


def require_permission(code: str) -> Callable[..., Awaitable[User]]:
    """Build a dependency that admits only activated users holding ``code``.

    Permissions are read through to the store on every call, so a grant takes
    effect on the very next request. The guard never mutates anything.

        @router.post("/v1/movies", dependencies=[Depends(require_permission("movies:write"))])
    """

    async def _guard(
        request: Request,
        user: User = Depends(require_activated_user),
        store: Store = Depends(get_store),
    ) -> User:
        codes = await store.get_permissions_for_user(user.id)
        if code not in codes:
            logger.info(
                "permission_denied",
                user_id=user.id,
                permission=code,
                path=request.url.path,
            )
            raise PermissionDeniedError()
        return user

    _guard.__name__ = f"require_permission[{code}]"
    return _guard
