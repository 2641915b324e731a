from typing import Optional

from fastapi import APIRouter, Depends

from journalflow.api.v1.deps import get_deadline_service
from journalflow.core.roles import get_session
from journalflow.models.actor import Actor
from journalflow.models.deadline import DeadlineScope, DeadlineType
from journalflow.services.deadline_service import DeadlineService

router = APIRouter(prefix="/deadlines", tags=["Deadlines"])


@router.get("/summary")
async def get_deadline_summary(
    submission_id: Optional[str] = None,
    assigned_to: Optional[str] = None,
    type: Optional[DeadlineType] = None,
    actor: Actor = Depends(get_session),
    service: DeadlineService = Depends(get_deadline_service),
):
    """
    按 overdue / urgent / upcoming / completed 汇总（每次请求重新分类）
    """
    scope = DeadlineScope(submission_id=submission_id, assigned_to=assigned_to, type=type)
    summary = service.summary_for(actor, scope)
    return {"success": True, "data": summary.model_dump()}


@router.post("/{deadline_id}/complete")
async def complete_deadline(
    deadline_id: str,
    actor: Actor = Depends(get_session),
    service: DeadlineService = Depends(get_deadline_service),
):
    deadline = service.complete_deadline(deadline_id, actor)
    return {"success": True, "data": deadline.to_row()}
