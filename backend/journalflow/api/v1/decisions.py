from fastapi import APIRouter, Depends

from journalflow.api.v1.deps import get_decision_service
from journalflow.core.roles import get_session
from journalflow.models.actor import Actor
from journalflow.models.decision import DecisionRequest
from journalflow.services.decision_service import DecisionService

router = APIRouter(prefix="/submissions", tags=["Decisions"])


@router.post("/{submission_id}/decision")
async def record_decision(
    submission_id: str,
    body: DecisionRequest,
    actor: Actor = Depends(get_session),
    service: DecisionService = Depends(get_decision_service),
):
    """
    记录编辑决策并驱动状态机（同一轮重复决策返回 409 already_decided）
    """
    result = service.record_decision(submission_id, actor, body.decision, body.note)
    return {
        "success": True,
        "data": {
            "submission": result.submission.model_dump(mode="json", exclude={"version"}),
            "decision": body.decision.value,
        },
    }


@router.get("/{submission_id}/decision-eligibility")
async def get_decision_eligibility(
    submission_id: str,
    actor: Actor = Depends(get_session),
    service: DecisionService = Depends(get_decision_service),
):
    eligibility = service.decision_eligibility(submission_id, actor)
    return {"success": True, "data": eligibility.model_dump(mode="json")}
