# ─────────────────────────────────────────────────────────────────────────────
# Health Check Route
# ─────────────────────────────────────────────────────────────────────────────
#   /v1/healthcheck → "Is the process alive?" No auth, no store I/O.
#                     Still rate limited like every other route.
# ─────────────────────────────────────────────────────────────────────────────

from fastapi import APIRouter, Depends

from greenlight import __version__
from greenlight.config import Settings
from greenlight.dependencies import get_settings_dep
from greenlight.schemas import HealthcheckResponse, SystemInfo

router = APIRouter()


@router.get("/v1/healthcheck", response_model=HealthcheckResponse)
async def healthcheck(settings: Settings = Depends(get_settings_dep)) -> HealthcheckResponse:
    """Report availability, environment and version."""
    return HealthcheckResponse(
        status="available",
        system_info=SystemInfo(environment=settings.env, version=__version__),
    )
