# Token lifecycle: issue → authenticate → (activation) redeem once.
# Only SHA-256 hashes reach the store; plaintext is returned once and never logged.

from __future__ import annotations

import base64
import hashlib
import re
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from opentelemetry import trace

from greenlight.domain import Scope, TokenRecord, User, utcnow
from greenlight.exceptions import (
    ExpiredTokenError,
    InvalidTokenError,
    MalformedAuthHeaderError,
)
from greenlight.store.protocol import Store

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

TOKEN_BYTES = 16
# 16 bytes → 26 base32 characters once the padding is stripped.
_PLAINTEXT_RE = re.compile(r"^[A-Z2-7]{26}$")


def generate_plaintext() -> str:
    return base64.b32encode(secrets.token_bytes(TOKEN_BYTES)).decode("ascii").rstrip("=")


def hash_plaintext(plaintext: str) -> str:
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def parse_authorization_header(value: str) -> str:
    """Extract the token from ``Bearer <token>``.

    Exactly one space and one non-empty token; anything else is malformed.
    """
    parts = value.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise MalformedAuthHeaderError()
    return parts[1]


class TokenService:
    """Issues, authenticates and redeems opaque tokens.

    Persistence is delegated to the Store; expiry, scope and single-use rules
    are enforced here. ``clock`` returns an aware UTC datetime and exists so
    tests can step time.
    """

    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    async def issue(self, user_id: int, scope: Scope, ttl: timedelta) -> tuple[str, TokenRecord]:
        plaintext = generate_plaintext()
        record = TokenRecord(
            hash=hash_plaintext(plaintext),
            user_id=user_id,
            expiry=self._clock() + ttl,
            scope=scope,
        )
        await self._store.insert_token(record)
        logger.info("token_issued", user_id=user_id, scope=str(scope), expiry=record.expiry.isoformat())
        return plaintext, record

    async def authenticate(self, plaintext: str) -> User:
        with tracer.start_as_current_span("authenticate_token"):
            if not _PLAINTEXT_RE.match(plaintext):
                raise InvalidTokenError()

            token_hash = hash_plaintext(plaintext)
            record = await self._store.get_token(token_hash, Scope.authentication)
            if record is None:
                raise InvalidTokenError()

            if record.is_expired(self._clock()):
                await self._store.delete_token(token_hash)
                raise ExpiredTokenError()

            user = await self._store.get_user(record.user_id)
            if user is None:
                raise InvalidTokenError()
            return user

    async def consume_activation(self, plaintext: str) -> User:
        """Redeem an activation token: activate its owner and burn the token.

        The store removes the record, runs ``_validate_activation`` and flips
        the user in one atomic step, so of several concurrent attempts exactly
        one wins and the rest see InvalidTokenError.
        """
        with tracer.start_as_current_span("consume_activation"):
            if not _PLAINTEXT_RE.match(plaintext):
                raise InvalidTokenError()

            token_hash = hash_plaintext(plaintext)
            now = self._clock()

            def _validate_activation(record: TokenRecord) -> None:
                if record.scope != Scope.activation:
                    raise InvalidTokenError()
                if record.is_expired(now):
                    raise ExpiredTokenError()

            try:
                user = await self._store.redeem_activation_token(token_hash, _validate_activation)
            except ExpiredTokenError:
                # Validation rolled the removal back; dead records still go.
                await self._store.delete_token(token_hash)
                raise

            if user is None:
                raise InvalidTokenError()
            logger.info("user_activated", user_id=user.id)
            return user

    async def purge_expired(self) -> int:
        """Delete every expired token. Run periodically by the sweeper."""
        removed = await self._store.delete_expired_tokens(self._clock())
        if removed:
            logger.info("expired_tokens_purged", removed=removed)
        return removed
