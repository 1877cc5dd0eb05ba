"""Guest API endpoints: requesting an upgrade to client status."""

from fastapi import APIRouter, Depends, status

from deps import CurrentUserDep, SessionDep, UpgradeServiceDep, get_current_user
from schemas import UpgradeEligibility, UpgradeRequest, UpgradeRequestCreate, UpgradeRequestSubmitted

router = APIRouter(
    prefix="/api/v1/guest/upgrade-request",
    tags=["guest"],
    dependencies=[Depends(get_current_user)]
)

@router.get("/eligibility", response_model=UpgradeEligibility)
async def get_upgrade_eligibility(db_session: SessionDep, upgrades: UpgradeServiceDep, current_user: CurrentUserDep):
    """Whether the current account may submit an upgrade request."""
    return await upgrades.check_eligibility(db_session, current_user.id)

@router.post("", response_model=UpgradeRequestSubmitted, status_code=status.HTTP_201_CREATED)
async def submit_upgrade_request(
    request: UpgradeRequestCreate,
    db_session: SessionDep,
    upgrades: UpgradeServiceDep,
    current_user: CurrentUserDep,
):
    """Submit KYC answers and ask to become a client."""
    return await upgrades.submit_request(db_session, current_user.id, request)

@router.get("", response_model=UpgradeRequest)
async def get_upgrade_request(db_session: SessionDep, upgrades: UpgradeServiceDep, current_user: CurrentUserDep):
    """Latest upgrade request of the current account."""
    return await upgrades.get_latest_request(db_session, current_user.id)

@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_upgrade_request(db_session: SessionDep, upgrades: UpgradeServiceDep, current_user: CurrentUserDep):
    """Withdraw the pending upgrade request."""
    await upgrades.cancel_request(db_session, current_user.id)
