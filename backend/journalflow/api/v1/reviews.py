from typing import Any

from fastapi import APIRouter, Body, Depends

from journalflow.api.v1.deps import get_reviewer_service
from journalflow.core.roles import get_session
from journalflow.models.actor import Actor
from journalflow.services.reviewer_service import ReviewerService

router = APIRouter(prefix="/reviews", tags=["Reviews"])


@router.get("/{review_id}")
async def get_review(
    review_id: str,
    actor: Actor = Depends(get_session),
    service: ReviewerService = Depends(get_reviewer_service),
):
    """
    作者视图永远不含机密意见；盲审模式下同时隐藏审稿人身份
    """
    view = service.view_review(review_id, actor)
    return {"success": True, "data": view.as_dict()}


@router.post("/{review_id}/submit")
async def submit_review(
    review_id: str,
    form: dict[str, Any] = Body(...),
    actor: Actor = Depends(get_session),
    service: ReviewerService = Depends(get_reviewer_service),
):
    # 表单在服务层校验，字段级错误以 422 返回
    review = service.submit_review(review_id, actor, form)
    return {"success": True, "data": review.to_row()}


@router.post("/{review_id}/decline")
async def decline_review(
    review_id: str,
    actor: Actor = Depends(get_session),
    service: ReviewerService = Depends(get_reviewer_service),
):
    review = service.decline_review(review_id, actor)
    return {"success": True, "data": review.to_row()}
