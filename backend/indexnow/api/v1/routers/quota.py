# backend/indexnow/api/v1/routers/quota.py
"""
Quota API Router.

Reports the tenant's usage for the current quota day and the remaining
quota of each of its service accounts.
"""

from uuid import UUID

from fastapi import APIRouter, Depends

from ....core.indexing.quota_manager import QuotaManager
from ....core.shared.database_service import DatabaseService
from ....dependencies import get_broadcaster, get_database_service, get_owner_id
from ..schemas import AccountQuotaResponse, QuotaResponse

router = APIRouter(prefix="/indexing/quota", tags=["quota"])


@router.get("", response_model=QuotaResponse, summary="Quota usage for today")
async def get_quota(
    owner_id: UUID = Depends(get_owner_id),
    db: DatabaseService = Depends(get_database_service),
    broadcaster=Depends(get_broadcaster),
) -> QuotaResponse:
    quota = QuotaManager(db=db, broadcaster=broadcaster)
    usage = await quota.get_tenant_usage(owner_id)
    accounts = await quota.account_summaries(owner_id)
    return QuotaResponse(
        **usage,
        accounts=[AccountQuotaResponse(**a) for a in accounts],
    )
