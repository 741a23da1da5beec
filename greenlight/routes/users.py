# ─────────────────────────────────────────────────────────────────────────────
# User Routes: registration and activation
# ─────────────────────────────────────────────────────────────────────────────
#   POST /v1/users            → 202, welcome e-mail goes out in the background
#   PUT  /v1/users/activated  → redeem a one-time activation token
# ─────────────────────────────────────────────────────────────────────────────

from fastapi import APIRouter, Depends, status

from greenlight.dependencies import get_account_service
from greenlight.schemas import ActivateUserRequest, RegisterUserRequest, UserResponse
from greenlight.services.accounts import AccountService

router = APIRouter(prefix="/v1/users")


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def register_user(
    body: RegisterUserRequest,
    accounts: AccountService = Depends(get_account_service),
) -> dict[str, UserResponse]:
    """Create an inactive account.

    202 rather than 201: the activation e-mail is still in flight when the
    response is written.
    """
    user = await accounts.register(body.name, body.email, body.password)
    return {"user": UserResponse.model_validate(user)}


@router.put("/activated")
async def activate_user(
    body: ActivateUserRequest,
    accounts: AccountService = Depends(get_account_service),
) -> dict[str, UserResponse]:
    user = await accounts.activate(body.token)
    return {"user": UserResponse.model_validate(user)}
