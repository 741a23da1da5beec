# Registration, activation and login. Endpoints stay thin; the rules live here.

from __future__ import annotations

from datetime import timedelta

import structlog

from greenlight.config import Settings
from greenlight.domain import Scope, TokenRecord, User
from greenlight.exceptions import InvalidCredentialsError
from greenlight.services.background import BackgroundTasks
from greenlight.services.mailer import Mailer
from greenlight.services.passwords import hash_password_async, password_matches_async
from greenlight.services.tokens import TokenService
from greenlight.store.protocol import Store

logger = structlog.get_logger(__name__)

DEFAULT_PERMISSIONS = ("movies:read",)
MAX_EMAIL_LENGTH = 254


class AccountService:
    """User-facing account workflows built on the Store and TokenService."""

    def __init__(
        self,
        store: Store,
        tokens: TokenService,
        settings: Settings,
        mailer: Mailer,
        background: BackgroundTasks,
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._settings = settings
        self._mailer = mailer
        self._background = background
        # Compared against when the email is unknown so both failure paths
        # cost one bcrypt check.
        self._dummy_hash: bytes | None = None

    async def register(self, name: str, email: str, password: str) -> User:
        """Create an inactive user, grant the defaults and mail an activation token."""
        password_hash = await hash_password_async(password, self._settings.bcrypt_rounds)
        user = await self._store.insert_user(
            User(id=0, name=name, email=email.lower(), password_hash=password_hash)
        )
        await self._store.add_permissions_for_user(user.id, *DEFAULT_PERMISSIONS)

        ttl_hours = self._settings.activation_token_ttl_hours
        plaintext, _ = await self._tokens.issue(
            user.id, Scope.activation, timedelta(hours=ttl_hours)
        )
        self._background.spawn(
            self._mailer.send_welcome(user.email, user.name, plaintext, ttl_hours),
            name=f"welcome-email-{user.id}",
        )
        logger.info("user_registered", user_id=user.id)
        return user

    async def activate(self, plaintext: str) -> User:
        return await self._tokens.consume_activation(plaintext)

    async def login(self, email: str, password: str) -> tuple[str, TokenRecord]:
        """Exchange credentials for an authentication token.

        Unknown email and wrong password are indistinguishable to the caller.
        """
        if not email or not password or len(email) > MAX_EMAIL_LENGTH:
            logger.info("login_failed")
            raise InvalidCredentialsError()

        user = await self._store.get_user_by_email(email)
        if user is not None:
            candidate = user.password_hash
        else:
            if self._dummy_hash is None:
                self._dummy_hash = await hash_password_async(
                    "greenlight-dummy-password", self._settings.bcrypt_rounds
                )
            candidate = self._dummy_hash
        matches = await password_matches_async(password, candidate)
        if user is None or not matches:
            logger.info("login_failed")
            raise InvalidCredentialsError()

        return await self._tokens.issue(
            user.id,
            Scope.authentication,
            timedelta(hours=self._settings.authentication_token_ttl_hours),
        )
