from fastapi import APIRouter, Depends

from journalflow.api.v1.deps import get_review_settings_service
from journalflow.core.roles import get_session
from journalflow.models.actor import Actor
from journalflow.models.review_settings import ReviewSettingsUpdate
from journalflow.services.review_settings_service import ReviewSettingsService

router = APIRouter(prefix="/review-settings", tags=["Review Settings"])


@router.get("")
async def get_review_settings(
    _actor: Actor = Depends(get_session),
    service: ReviewSettingsService = Depends(get_review_settings_service),
):
    return {"success": True, "data": service.load().model_dump(mode="json")}


@router.put("")
async def update_review_settings(
    body: ReviewSettingsUpdate,
    actor: Actor = Depends(get_session),
    service: ReviewSettingsService = Depends(get_review_settings_service),
):
    """
    保存审稿配置：两个可见性开关只由 blind_review_mode 推导，请求体里传入会被拒绝（422）
    """
    updated = service.save(actor, body)
    return {"success": True, "data": updated.model_dump(mode="json")}
