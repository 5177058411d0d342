from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.v1.deps import get_reviewer_service
from app.core.roles import Actor, get_current_actor
from app.models.reviews import InvitationResponse, ReviewAssignRequest, ReviewSubmitRequest
from app.services.reviewer_service import ReviewerService

router = APIRouter(tags=["Reviews"])


@router.post("/manuscripts/{manuscript_id}/reviews", status_code=201)
async def assign_reviewers(
    manuscript_id: str,
    payload: ReviewAssignRequest,
    actor: Actor = Depends(get_current_actor),
    service: ReviewerService = Depends(get_reviewer_service),
):
    """
    编辑指派审稿人（批量；同一稿件同一审稿人只能指派一次）
    """
    reviews = service.assign_reviewers(manuscript_id, actor, payload)
    return {"success": True, "data": reviews}


@router.get("/manuscripts/{manuscript_id}/reviews")
async def list_reviews(
    manuscript_id: str,
    actor: Actor = Depends(get_current_actor),
    service: ReviewerService = Depends(get_reviewer_service),
):
    return {"success": True, "data": service.list_reviews(manuscript_id, actor)}


@router.get("/manuscripts/{manuscript_id}/reviews/aggregate")
async def aggregate_reviews(
    manuscript_id: str,
    review_round: Optional[int] = Query(None, ge=1),
    all_rounds: bool = Query(False),
    actor: Actor = Depends(get_current_actor),
    service: ReviewerService = Depends(get_reviewer_service),
):
    aggregate = service.aggregate(
        manuscript_id, actor, review_round=review_round, all_rounds=all_rounds
    )
    return {"success": True, "data": aggregate}


@router.post("/reviews/{review_id}/respond")
async def respond_to_invitation(
    review_id: str,
    payload: InvitationResponse,
    actor: Actor = Depends(get_current_actor),
    service: ReviewerService = Depends(get_reviewer_service),
):
    return {"success": True, "data": service.respond_to_invitation(review_id, actor, payload)}


@router.post("/reviews/{review_id}/submit")
async def submit_review(
    review_id: str,
    payload: ReviewSubmitRequest,
    actor: Actor = Depends(get_current_actor),
    service: ReviewerService = Depends(get_reviewer_service),
):
    return {"success": True, "data": service.submit_review(review_id, actor, payload)}


@router.post("/reviews/{review_id}/remind")
async def send_reminder(
    review_id: str,
    actor: Actor = Depends(get_current_actor),
    service: ReviewerService = Depends(get_reviewer_service),
):
    return {"success": True, "data": service.send_reminder(review_id, actor)}
