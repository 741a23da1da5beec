# ─────────────────────────────────────────────────────────────────────────────
# Tests: Registration, activation and login over HTTP
# ─────────────────────────────────────────────────────────────────────────────
# The mailer is replaced with an AsyncMock so the welcome e-mail's token can
# be read back and redeemed, exactly as a user would from their inbox.
# ─────────────────────────────────────────────────────────────────────────────

from unittest.mock import AsyncMock

import pytest
from dirty_equals import IsDatetime, IsInt, IsStr

from greenlight.exceptions import InvalidCredentialsError
from greenlight.services.mailer import Mailer

_ALICE = {"name": "Alice Smith", "email": "Alice@Example.com", "password": "pa55word123"}


@pytest.fixture
def mailer(accounts) -> AsyncMock:
    mock = AsyncMock(spec=Mailer)
    accounts._mailer = mock
    return mock


async def _register(client, background, mailer, body=_ALICE) -> str:
    """Register and return the activation token from the welcome e-mail."""
    response = await client.post("/v1/users", json=body)
    assert response.status_code == 202, response.text
    await background.drain()
    return mailer.send_welcome.await_args.args[2]


class TestRegister:
    async def test_returns_202_with_inactive_user(self, client, mailer):
        response = await client.post("/v1/users", json=_ALICE)

        assert response.status_code == 202
        assert response.json() == {
            "user": {
                "id": IsInt(gt=0),
                "created_at": IsStr,
                "name": "Alice Smith",
                "email": "alice@example.com",
                "activated": False,
            }
        }
        assert "password" not in response.text

    async def test_welcome_email_carries_activation_token(self, client, background, mailer):
        token = await _register(client, background, mailer)

        recipient, name, _, ttl_hours = mailer.send_welcome.await_args.args
        assert recipient == "alice@example.com"
        assert name == "Alice Smith"
        assert token == IsStr(regex=r"[A-Z2-7]{26}")
        assert ttl_hours == 72

    async def test_grants_movies_read(self, client, store, mailer):
        response = await client.post("/v1/users", json=_ALICE)
        user_id = response.json()["user"]["id"]
        assert await store.get_permissions_for_user(user_id) == ["movies:read"]

    async def test_duplicate_email_is_case_insensitive(self, client, mailer):
        await client.post("/v1/users", json=_ALICE)
        response = await client.post("/v1/users", json={**_ALICE, "email": "ALICE@example.COM"})
        assert response.status_code == 422
        assert response.json() == {
            "error": "a user with this email address already exists",
            "type": "DuplicateEmailError",
        }

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("email", "not-an-email"),
            ("password", "short"),
            ("password", "x" * 73),
            ("name", ""),
        ],
    )
    async def test_validation(self, client, mailer, field, value):
        response = await client.post("/v1/users", json={**_ALICE, field: value})
        assert response.status_code == 422
        body = response.json()
        assert body["type"] == "ValidationError"
        assert field in body["error"]

    async def test_mail_failure_does_not_fail_registration(self, client, background, mailer):
        mailer.send_welcome.side_effect = OSError("smtp down")
        response = await client.post("/v1/users", json=_ALICE)
        await background.drain()
        assert response.status_code == 202


class TestActivate:
    async def test_activation_flow(self, client, background, mailer):
        token = await _register(client, background, mailer)

        response = await client.put("/v1/users/activated", json={"token": token})
        assert response.status_code == 200
        assert response.json()["user"]["activated"] is True

    async def test_token_is_single_use(self, client, background, mailer):
        token = await _register(client, background, mailer)
        await client.put("/v1/users/activated", json={"token": token})

        response = await client.put("/v1/users/activated", json={"token": token})
        assert response.status_code == 401
        assert response.json()["type"] == "InvalidTokenError"

    async def test_expired_token(self, client, background, mailer, utc_clock):
        token = await _register(client, background, mailer)
        utc_clock.advance(hours=72, seconds=1)

        response = await client.put("/v1/users/activated", json={"token": token})
        assert response.status_code == 401
        assert response.json()["type"] == "ExpiredTokenError"

    async def test_garbage_token(self, client):
        response = await client.put("/v1/users/activated", json={"token": "nope"})
        assert response.status_code == 401


class TestLogin:
    async def test_issues_authentication_token(self, client, background, mailer, utc_clock):
        await _register(client, background, mailer)

        response = await client.post(
            "/v1/tokens/authentication",
            json={"email": "alice@example.com", "password": "pa55word123"},
        )
        assert response.status_code == 201
        assert response.json() == {
            "authentication_token": {
                "token": IsStr(regex=r"[A-Z2-7]{26}"),
                "expiry": IsStr,
            }
        }

    async def test_token_authenticates_subsequent_requests(self, client, background, mailer):
        activation = await _register(client, background, mailer)
        await client.put("/v1/users/activated", json={"token": activation})
        login = await client.post(
            "/v1/tokens/authentication",
            json={"email": "alice@example.com", "password": "pa55word123"},
        )
        token = login.json()["authentication_token"]["token"]

        response = await client.get(
            "/v1/movies", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 200

    @pytest.mark.parametrize(
        "credentials",
        [
            {"email": "alice@example.com", "password": "wrong-password"},
            {"email": "nobody@example.com", "password": "pa55word123"},
        ],
    )
    async def test_bad_credentials_are_indistinguishable(
        self, client, background, mailer, credentials
    ):
        await _register(client, background, mailer)
        response = await client.post("/v1/tokens/authentication", json=credentials)
        assert response.status_code == 401
        assert response.json() == {
            "error": "invalid authentication credentials",
            "type": "InvalidCredentialsError",
        }

    @pytest.mark.parametrize(
        "body",
        [
            {"email": "alice@example.com", "password": ""},
            {"email": "alice@example.com", "password": "x" * 80},
            {"email": "x" * 300, "password": "pa55word123"},
            {"email": "alice@example.com"},
            {},
        ],
    )
    async def test_malformed_credentials_get_the_same_401(
        self, client, background, mailer, body
    ):
        await _register(client, background, mailer)
        response = await client.post("/v1/tokens/authentication", json=body)
        assert response.status_code == 401
        assert response.json() == {
            "error": "invalid authentication credentials",
            "type": "InvalidCredentialsError",
        }


class TestAccountService:
    async def test_register_lowercases_email(self, accounts, mailer, background):
        user = await accounts.register("Bob", "Bob@Example.com", "correct horse")
        await background.drain()
        assert user.email == "bob@example.com"
        assert user.password_hash.startswith(b"$2")
        assert user.created_at == IsDatetime

    async def test_login_returns_record_with_configured_ttl(
        self, accounts, mailer, background, utc_clock
    ):
        await accounts.register("Bob", "bob@example.com", "correct horse")
        _, record = await accounts.login("bob@example.com", "correct horse")
        assert (record.expiry - utc_clock.now).total_seconds() == 24 * 3600

    async def test_login_rejects_password_past_bcrypt_limit(self, accounts, mailer, background):
        await accounts.register("Bob", "bob@example.com", "x" * 72)
        with pytest.raises(InvalidCredentialsError):
            await accounts.login("bob@example.com", "x" * 73)
