"""
Reward API endpoints: claim, summary and system distribution.
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends

import structlog

from skrvault.api.dependencies import Services, get_services, require_admin, require_owner, require_owner_or_admin
from skrvault.api.schemas.rewards import (
    ClaimData,
    ClaimResponse,
    DistributionResponse,
    ReconcileData,
    ReconcileResponse,
    RewardSummaryData,
    RewardSummaryResponse,
)
from skrvault.core.exceptions import NotConfiguredError
from skrvault.services.account_service import SessionClaims


logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post(
    "/system/distribute",
    response_model=DistributionResponse,
    summary="Run reward distribution",
    description="Admin only. Distribute rewards to all creators now"
)
async def trigger_distribution(
    session: SessionClaims = Depends(require_admin),
    services: Services = Depends(get_services)
) -> DistributionResponse:
    if services.scheduler is None:
        raise NotConfiguredError("Reward scheduler not available")

    logger.info("Manual distribution requested", admin_id=session.account_id)
    stats = await services.scheduler.trigger_manual_run()
    return DistributionResponse(message="Distribution finished", data=stats.to_dict())


@router.get(
    "/system/scheduler",
    response_model=DistributionResponse,
    summary="Scheduler status"
)
async def scheduler_status(
    _: SessionClaims = Depends(require_admin),
    services: Services = Depends(get_services)
) -> DistributionResponse:
    if services.scheduler is None:
        raise NotConfiguredError("Reward scheduler not available")
    return DistributionResponse(data=services.scheduler.get_status())


@router.post(
    "/system/reconcile",
    response_model=ReconcileResponse,
    summary="Reconcile reward ledger",
    description="Admin only. Credit minted rewards and resolve uncertain mints"
)
async def reconcile(
    _: SessionClaims = Depends(require_admin),
    services: Services = Depends(get_services)
) -> ReconcileResponse:
    report = await services.reward_engine.reconcile()
    return ReconcileResponse(data=ReconcileData(**report.to_dict()))


@router.post(
    "/{account_id}/claim",
    response_model=ClaimResponse,
    summary="Claim rewards",
    description="Pay accrued creator rewards for the current period"
)
async def claim_rewards(
    account_id: str = Depends(require_owner),
    services: Services = Depends(get_services)
) -> ClaimResponse:
    result = await services.reward_engine.claim(account_id)
    return ClaimResponse(
        message="Rewards claimed",
        data=ClaimData(
            account_id=result.account_id,
            period=result.period,
            amount_paid=result.amount_paid,
            tx_signature=result.tx_signature,
            new_balance=result.new_balance
        )
    )


@router.get(
    "/{account_id}/summary",
    response_model=RewardSummaryResponse,
    summary="Reward summary"
)
async def reward_summary(
    account_id: str = Depends(require_owner_or_admin),
    services: Services = Depends(get_services)
) -> RewardSummaryResponse:
    summary = await services.reward_engine.get_summary(account_id)
    return RewardSummaryResponse(data=RewardSummaryData(**asdict(summary)))
