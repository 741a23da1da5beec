# ─────────────────────────────────────────────────────────────────────────────
# Token Routes: credential exchange
# ─────────────────────────────────────────────────────────────────────────────
#   POST /v1/tokens/authentication  → 201, plaintext bearer token shown once
#
# Missing, empty or over-long credentials get the same generic 401 as a
# wrong password.
# ─────────────────────────────────────────────────────────────────────────────

from fastapi import APIRouter, Depends, status

from greenlight.dependencies import get_account_service
from greenlight.schemas import AuthenticationRequest, TokenResponse
from greenlight.services.accounts import AccountService

router = APIRouter(prefix="/v1/tokens")


@router.post("/authentication", status_code=status.HTTP_201_CREATED)
async def create_authentication_token(
    body: AuthenticationRequest,
    accounts: AccountService = Depends(get_account_service),
) -> dict[str, TokenResponse]:
    """Exchange email + password for a bearer token. The plaintext is shown once."""
    plaintext, record = await accounts.login(body.email, body.password)
    return {"authentication_token": TokenResponse(token=plaintext, expiry=record.expiry)}
