from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Any, Optional

from app.core.config import WorkflowConfig
from app.core.errors import (
    ConflictError,
    InvalidStateError,
    PermissionDeniedError,
    ValidationError,
)
from app.core.roles import EDITORIAL_ROLES, Actor
from app.models.manuscript import Manuscript, ManuscriptStatus
from app.models.reviews import (
    InvitationResponse,
    Review,
    ReviewAggregate,
    ReviewAssignRequest,
    ReviewStatus,
    ReviewSubmitRequest,
)
from app.services.decision_service import aggregate_reviews
from app.services.editorial_service import EditorialService, transition_status
from app.services.manuscript_store import ManuscriptStore
from app.services.notification_service import (
    NOTIFY_REVIEW_COMPLETED,
    NOTIFY_REVIEW_INVITED,
    NOTIFY_REVIEW_REMINDER,
    NotificationService,
)

logger = logging.getLogger("journalflow.reviews")

COMMENTS_MAX_LENGTH = 5000

ASSIGNABLE_STATUSES = {ManuscriptStatus.SUBMITTED.value, ManuscriptStatus.UNDER_REVIEW.value}
REMINDABLE_STATUSES = {ReviewStatus.ACCEPTED, ReviewStatus.IN_PROGRESS}


def _advance(review: Review, to_status: ReviewStatus) -> None:
    current = review.status.value
    if to_status.value not in ReviewStatus.allowed_next(current):
        raise InvalidStateError(
            f"Invalid review transition: {current} -> {to_status.value}",
            extra={"review_id": review.id, "status": current},
        )
    review.status = to_status


class ReviewerService:
    """
    审稿指派、邀请响应、审稿提交、催办与汇总。

    中文注释:
    - (manuscript_id, reviewer_id) 唯一：应用层先查重，数据库唯一约束兜底（并发指派时只有一方成功）。
    - 指派是“先批量插入 reviews，再 CAS 更新稿件状态”；稿件写入失败时删除本次插入的 reviews（补偿）。
    """

    def __init__(
        self,
        store: Optional[ManuscriptStore] = None,
        notifications: Optional[NotificationService] = None,
        editorial: Optional[EditorialService] = None,
        config: Optional[WorkflowConfig] = None,
    ) -> None:
        self.store = store or ManuscriptStore(config=config)
        self.config = config or self.store.config
        self.notifications = notifications or NotificationService(self.store.client)
        self.editorial = editorial or EditorialService(
            self.store, self.notifications, config=self.config
        )

    # --- assignment ------------------------------------------------------

    def assign_reviewers(
        self, manuscript_id: str, actor: Actor, request: ReviewAssignRequest
    ) -> list[Review]:
        actor.require_any(*EDITORIAL_ROLES)

        reviewer_ids = [str(r or "").strip() for r in request.reviewer_ids]
        if not reviewer_ids or not all(reviewer_ids):
            raise ValidationError("At least one reviewer id is required")
        duplicates = sorted({r for r in reviewer_ids if reviewer_ids.count(r) > 1})
        if duplicates:
            raise ConflictError(
                "Duplicate reviewer ids in request", extra={"reviewer_ids": duplicates}
            )

        manuscript = self.store.get_manuscript(manuscript_id)
        if manuscript.status.value not in ASSIGNABLE_STATUSES:
            raise InvalidStateError(
                f"Reviewers cannot be assigned while {manuscript.status.value}",
                extra={"status": manuscript.status.value},
            )

        existing = {r.reviewer_id for r in self.store.list_reviews(manuscript_id)}
        already = sorted(existing.intersection(reviewer_ids))
        if already:
            raise ConflictError(
                "Reviewer already assigned to this manuscript",
                extra={"reviewer_ids": already},
            )

        now = self.store.now()
        default_due = request.due_date or (now + timedelta(days=self.config.review_period_days)).date()
        reviews: list[Review] = []
        for rid in reviewer_ids:
            due = request.deadlines.get(rid) or default_due
            if due < now.date():
                raise ValidationError("Review due date cannot be in the past", extra={"reviewer_id": rid})
            reviews.append(
                Review(
                    id=str(uuid.uuid4()),
                    manuscript_id=manuscript_id,
                    reviewer_id=rid,
                    assigned_by=actor.id,
                    status=ReviewStatus.PENDING_INVITATION,
                    review_round=manuscript.current_version,
                    due_date=due,
                    invited_at=now,
                )
            )

        self.store.insert_reviews(reviews)

        def mutate(m: Manuscript) -> None:
            if m.status.value not in ASSIGNABLE_STATUSES:
                raise InvalidStateError(
                    f"Reviewers cannot be assigned while {m.status.value}",
                    extra={"status": m.status.value},
                )
            if m.status == ManuscriptStatus.SUBMITTED:
                transition_status(m, ManuscriptStatus.UNDER_REVIEW.value)
            m.add_timeline_event(
                "Reviewers Assigned",
                now=self.store.now(),
                performed_by=actor.id,
                detail=f"{len(reviews)} reviewer(s), round {m.current_version}",
            )

        try:
            manuscript, _ = self.store.update_manuscript(manuscript_id, mutate)
        except Exception:
            # 补偿：稿件未能进入 under_review，撤销本次插入的审稿记录
            self.store.delete_reviews([r.id for r in reviews])
            raise

        logger.info(
            "[Reviews] %s reviewer(s) assigned to %s by %s",
            len(reviews),
            manuscript.manuscript_code,
            actor.id,
        )
        for review in reviews:
            self.notifications.notify(
                user_id=review.reviewer_id,
                type=NOTIFY_REVIEW_INVITED,
                title="Review invitation",
                content=(
                    f"You are invited to review {manuscript.manuscript_code} "
                    f"(due {review.due_date.isoformat()})."
                ),
                manuscript_id=manuscript_id,
            )
        return reviews

    # --- reviewer actions ------------------------------------------------

    def respond_to_invitation(
        self, review_id: str, actor: Actor, response: InvitationResponse
    ) -> Review:
        reason = (response.reason or "").strip() or None

        def mutate(r: Review) -> None:
            if r.reviewer_id != actor.id:
                raise PermissionDeniedError("Only the assigned reviewer can respond", extra={"review_id": r.id})
            now = self.store.now()
            if response.response == "accepted":
                _advance(r, ReviewStatus.ACCEPTED)
                r.accepted_at = now
                _advance(r, ReviewStatus.IN_PROGRESS)
            else:
                _advance(r, ReviewStatus.DECLINED)
                r.declined_at = now
                r.decline_reason = reason

        review, _ = self.store.update_review(review_id, mutate)
        logger.info("[Reviews] review %s %s by %s", review_id, response.response, actor.id)
        if review.status == ReviewStatus.DECLINED:
            # 拒审可能让本轮剩余审稿全部完成
            self.editorial.maybe_complete_review(review.manuscript_id, performed_by=actor.id)
        return review

    def _validate_submission(self, request: ReviewSubmitRequest) -> None:
        lo, hi = self.config.rating_min, self.config.rating_max
        for name, value in request.ratings.model_dump().items():
            if isinstance(value, bool) or not isinstance(value, int) or not (lo <= value <= hi):
                raise ValidationError(
                    f"Rating {name} must be an integer between {lo} and {hi}",
                    extra={"field": name},
                )
        for field_name in ("comments_for_author", "comments_for_editor"):
            text = (getattr(request, field_name) or "").strip()
            if not text:
                raise ValidationError(f"{field_name} is required", extra={"field": field_name})
            if len(text) > COMMENTS_MAX_LENGTH:
                raise ValidationError(
                    f"{field_name} cannot exceed {COMMENTS_MAX_LENGTH} characters",
                    extra={"field": field_name},
                )

    def submit_review(self, review_id: str, actor: Actor, request: ReviewSubmitRequest) -> Review:
        self._validate_submission(request)

        def mutate(r: Review) -> None:
            if r.reviewer_id != actor.id:
                raise PermissionDeniedError("Only the assigned reviewer can submit", extra={"review_id": r.id})
            if r.status != ReviewStatus.IN_PROGRESS:
                raise InvalidStateError(
                    f"Review must be in_progress to submit (current: {r.status.value})",
                    extra={"review_id": r.id, "status": r.status.value},
                )
            _advance(r, ReviewStatus.COMPLETED)
            r.completed_at = self.store.now()
            r.ratings = request.ratings
            r.recommendation = request.recommendation
            r.comments_for_author = request.comments_for_author.strip()
            r.comments_for_editor = request.comments_for_editor.strip()

        review, _ = self.store.update_review(review_id, mutate)

        def add_event(m: Manuscript) -> None:
            m.add_timeline_event(
                "Review Completed",
                now=self.store.now(),
                performed_by=actor.id,
                detail=f"round {review.review_round}: {review.recommendation.value}",
            )

        manuscript, _ = self.store.update_manuscript(review.manuscript_id, add_event)
        self.editorial.maybe_complete_review(review.manuscript_id, performed_by=actor.id)

        logger.info("[Reviews] review %s completed for %s", review_id, manuscript.manuscript_code)
        self.notifications.notify(
            user_id=manuscript.assigned_editor_id or review.assigned_by,
            type=NOTIFY_REVIEW_COMPLETED,
            title="Review completed",
            content=f"A review for {manuscript.manuscript_code} was submitted.",
            manuscript_id=manuscript.id,
        )
        return review

    # --- editor actions --------------------------------------------------

    def send_reminder(self, review_id: str, actor: Actor) -> Review:
        actor.require_any(*EDITORIAL_ROLES)

        def mutate(r: Review) -> None:
            if r.status not in REMINDABLE_STATUSES:
                raise InvalidStateError(
                    f"Reminders can only be sent for accepted or in-progress reviews (current: {r.status.value})",
                    extra={"review_id": r.id, "status": r.status.value},
                )
            r.reminders_sent.append(self.store.now())

        review, _ = self.store.update_review(review_id, mutate)
        self.notifications.notify(
            user_id=review.reviewer_id,
            type=NOTIFY_REVIEW_REMINDER,
            title="Review reminder",
            content=f"Your review is due on {review.due_date.isoformat()}.",
            manuscript_id=review.manuscript_id,
        )
        return review

    def list_reviews(self, manuscript_id: str, actor: Actor) -> list[dict[str, Any]]:
        manuscript = self.store.get_manuscript(manuscript_id)
        reviews = self.store.list_reviews(manuscript_id)
        if actor.has_any(*EDITORIAL_ROLES):
            return [r.model_dump(mode="json") for r in reviews]
        if manuscript.submitted_by == actor.id:
            # 作者只看到已完成审稿的公开部分
            return [r.author_view() for r in reviews if r.status == ReviewStatus.COMPLETED]
        own = [r.model_dump(mode="json") for r in reviews if r.reviewer_id == actor.id]
        if own:
            return own
        raise PermissionDeniedError("Not allowed to view these reviews", extra={"manuscript_id": manuscript_id})

    def aggregate(
        self,
        manuscript_id: str,
        actor: Actor,
        *,
        review_round: Optional[int] = None,
        all_rounds: bool = False,
    ) -> ReviewAggregate:
        """
        默认汇总当前轮次（review_round == current_version）；all_rounds=True 时汇总全部轮次。
        """
        actor.require_any(*EDITORIAL_ROLES)
        if all_rounds and review_round is not None:
            raise ValidationError("Use either review_round or all_rounds, not both")
        manuscript = self.store.get_manuscript(manuscript_id)
        round_no: Optional[int] = None
        if not all_rounds:
            round_no = review_round if review_round is not None else manuscript.current_version
        return aggregate_reviews(
            self.store.list_reviews(manuscript_id),
            manuscript_id=manuscript_id,
            min_reviewers=self.config.min_reviewers,
            now=self.store.now(),
            review_round=round_no,
        )
