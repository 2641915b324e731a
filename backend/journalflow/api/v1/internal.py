from fastapi import APIRouter, Depends

from journalflow.api.v1.deps import get_deadline_service
from journalflow.core.security import require_admin_key
from journalflow.services.deadline_service import DeadlineService

router = APIRouter(prefix="/internal", tags=["Internal"])


@router.post("/cron/check-overdue")
async def check_overdue(
    _admin: None = Depends(require_admin_key),
    service: DeadlineService = Depends(get_deadline_service),
):
    """
    触发逾期扫描（内部接口，由外部定时任务调用）
    """
    result = service.run_overdue_sweep()
    return {"success": True, **result}
