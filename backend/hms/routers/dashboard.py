from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from hms.auth import UserPrincipal, require_permission
from hms.database import get_db
from hms.schemas.common import envelope
from hms.services.dashboard_service import dashboard_service

router = APIRouter()


@router.get("/stats")
async def get_dashboard_stats(
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("can_view_reports")),
):
    return envelope(await dashboard_service.stats(db))
