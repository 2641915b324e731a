from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from journalflow.api.v1.deps import get_editorial_service, get_reviewer_service
from journalflow.core.roles import get_session
from journalflow.models.actor import Actor
from journalflow.models.review import AssignReviewerRequest
from journalflow.models.submission import SubmissionCreate
from journalflow.services.editorial_service import EditorialService, TransitionResult
from journalflow.services.reviewer_service import ReviewerService

router = APIRouter(prefix="/submissions", tags=["Submissions"])


class TransitionRequest(BaseModel):
    action: str = Field(..., min_length=1)


def _transition_payload(result: TransitionResult) -> dict[str, Any]:
    return {
        "submission": result.submission.model_dump(mode="json", exclude={"version"}),
        "created_deadlines": [d.to_row() for d in result.created_deadlines],
        "completed_deadlines": [d.id for d in result.completed_deadlines],
    }


@router.post("", status_code=201)
async def submit_manuscript(
    payload: SubmissionCreate,
    actor: Actor = Depends(get_session),
    service: EditorialService = Depends(get_editorial_service),
):
    """
    作者投稿（状态 NEW，第 1 轮）
    """
    created = service.submit_manuscript(actor, payload)
    return {"success": True, "data": created.model_dump(mode="json", exclude={"version"})}


@router.get("/{submission_id}")
async def get_submission(
    submission_id: str,
    actor: Actor = Depends(get_session),
    service: EditorialService = Depends(get_editorial_service),
):
    """
    按查看者身份返回稿件（审稿人在盲审模式下看不到作者身份）
    """
    view = service.view_submission(submission_id, actor)
    return {"success": True, "data": view.as_dict()}


@router.delete("/{submission_id}")
async def delete_submission(
    submission_id: str,
    actor: Actor = Depends(get_session),
    service: EditorialService = Depends(get_editorial_service),
):
    service.delete_submission(submission_id, actor)
    return {"success": True}


@router.post("/{submission_id}/transition")
async def transition_submission(
    submission_id: str,
    body: TransitionRequest,
    actor: Actor = Depends(get_session),
    service: EditorialService = Depends(get_editorial_service),
):
    result = service.transition_status(submission_id, actor, body.action)
    return {"success": True, "data": _transition_payload(result)}


@router.post("/{submission_id}/revision")
async def submit_revision(
    submission_id: str,
    actor: Actor = Depends(get_session),
    service: EditorialService = Depends(get_editorial_service),
):
    """
    作者提交修回稿（仅 REVISION 状态可用，进入下一轮审稿）
    """
    result = service.submit_revision(submission_id, actor)
    return {"success": True, "data": _transition_payload(result)}


@router.get("/{submission_id}/actions")
async def list_available_actions(
    submission_id: str,
    actor: Actor = Depends(get_session),
    service: EditorialService = Depends(get_editorial_service),
):
    submission = service.get_submission(submission_id)
    actions = service.available_actions(actor, submission)
    return {
        "success": True,
        "data": {"status": submission.status.value, "actions": [a.value for a in actions]},
    }


@router.get("/{submission_id}/timeline")
async def get_timeline(
    submission_id: str,
    actor: Actor = Depends(get_session),
    service: EditorialService = Depends(get_editorial_service),
):
    return {"success": True, "data": service.get_timeline(submission_id, actor)}


@router.get("/{submission_id}/reviews")
async def list_submission_reviews(
    submission_id: str,
    actor: Actor = Depends(get_session),
    service: ReviewerService = Depends(get_reviewer_service),
):
    """
    历史轮次评审也会返回；每条按查看者身份投影
    """
    views = service.list_reviews(submission_id, actor)
    return {"success": True, "data": [v.as_dict() for v in views]}


@router.post("/{submission_id}/reviewers", status_code=201)
async def assign_reviewer(
    submission_id: str,
    body: AssignReviewerRequest,
    actor: Actor = Depends(get_session),
    service: ReviewerService = Depends(get_reviewer_service),
):
    review = service.assign_reviewer(
        submission_id,
        body.reviewer_id,
        actor,
        round_no=body.round_no,
        reviewer_name=body.reviewer_name,
    )
    return {"success": True, "data": review.to_row()}
