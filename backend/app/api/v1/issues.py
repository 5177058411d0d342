from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.v1.deps import get_publishing_service
from app.core.roles import Actor, get_current_actor
from app.models.issue import IssueCreate, IssueManuscriptRequest
from app.services.publishing_service import PublishingService

router = APIRouter(prefix="/issues", tags=["Issues"])


@router.post("", status_code=201)
async def create_issue(
    payload: IssueCreate,
    actor: Actor = Depends(get_current_actor),
    service: PublishingService = Depends(get_publishing_service),
):
    return {"success": True, "data": service.create_issue(actor, payload)}


@router.get("")
async def list_issues(
    published: Optional[bool] = Query(None),
    year: Optional[int] = Query(None),
    actor: Actor = Depends(get_current_actor),
    service: PublishingService = Depends(get_publishing_service),
):
    return {"success": True, "data": service.list_issues(is_published=published, year=year)}


@router.get("/{issue_id}")
async def get_issue(
    issue_id: str,
    actor: Actor = Depends(get_current_actor),
    service: PublishingService = Depends(get_publishing_service),
):
    return {"success": True, "data": service.get_issue(issue_id)}


@router.delete("/{issue_id}")
async def delete_issue(
    issue_id: str,
    actor: Actor = Depends(get_current_actor),
    service: PublishingService = Depends(get_publishing_service),
):
    service.delete_issue(issue_id, actor)
    return {"success": True, "data": {"id": issue_id, "deleted": True}}


@router.post("/{issue_id}/manuscripts")
async def assign_to_issue(
    issue_id: str,
    payload: IssueManuscriptRequest,
    actor: Actor = Depends(get_current_actor),
    service: PublishingService = Depends(get_publishing_service),
):
    return {"success": True, "data": service.assign_to_issue(issue_id, payload.manuscript_id, actor)}


@router.delete("/{issue_id}/manuscripts/{manuscript_id}")
async def remove_from_issue(
    issue_id: str,
    manuscript_id: str,
    actor: Actor = Depends(get_current_actor),
    service: PublishingService = Depends(get_publishing_service),
):
    return {"success": True, "data": service.remove_from_issue(issue_id, manuscript_id, actor)}


@router.post("/{issue_id}/publish")
async def publish_issue(
    issue_id: str,
    actor: Actor = Depends(get_current_actor),
    service: PublishingService = Depends(get_publishing_service),
):
    """
    发布整期：逐篇发布已接收稿件并触发 DOI 注册，返回每篇的 DOI 结果
    """
    result = await service.publish_issue(issue_id, actor)
    return {"success": True, "data": result}
