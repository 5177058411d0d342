from __future__ import annotations

import logging
import uuid
from typing import Optional

from app.core.config import WorkflowConfig
from app.core.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    WorkflowError,
)
from app.core.roles import EDITORIAL_ROLES, Actor
from app.models.doi import DepositStatus, DoiMetadata
from app.models.issue import Issue, IssueCreate, IssuePublishItem, IssuePublishResult
from app.models.manuscript import Manuscript, ManuscriptStatus
from app.services.doi_service import DoiService
from app.services.editorial_service import transition_status
from app.services.manuscript_store import ManuscriptStore
from app.services.notification_service import NOTIFY_PUBLISHED, NotificationService

logger = logging.getLogger("journalflow.publishing")


class PublishingService:
    """
    卷期编排与发布（accepted -> published）。

    中文注释:
    1) 遵循章程：发布门控必须在代码中显性化：稿件必须 accepted 且已编入某一期。
    2) 发布时创建 DoiMetadata（not_assigned -> pending），随后立即执行一次 DOI 注册尝试；
       注册失败只体现在 DOI 状态上，不回滚发布。
    3) 稿件与卷期是两行记录：先写稿件，再写卷期；卷期写入失败时回滚稿件上的 issue_id。
    """

    def __init__(
        self,
        store: Optional[ManuscriptStore] = None,
        doi_service: Optional[DoiService] = None,
        notifications: Optional[NotificationService] = None,
        config: Optional[WorkflowConfig] = None,
    ) -> None:
        self.store = store or ManuscriptStore(config=config)
        self.config = config or self.store.config
        self.doi_service = doi_service or DoiService(self.store, config=self.config)
        self.notifications = notifications or NotificationService(self.store.client)

    def _public_url(self, manuscript_id: str) -> str:
        base = (self.config.public_base_url or "").rstrip("/")
        if base:
            return f"{base}/articles/{manuscript_id}"
        return f"/articles/{manuscript_id}"

    # --- issues ----------------------------------------------------------

    def create_issue(self, actor: Actor, payload: IssueCreate) -> Issue:
        actor.require_any(*EDITORIAL_ROLES)
        issue = Issue(
            id=str(uuid.uuid4()),
            volume=payload.volume,
            issue_number=payload.issue_number,
            year=payload.year,
            title=(payload.title or "").strip() or None,
            created_at=self.store.now(),
        )
        self.store.insert_issue(issue)
        logger.info("[Publishing] issue vol.%s no.%s created", issue.volume, issue.issue_number)
        return issue

    def get_issue(self, issue_id: str) -> Issue:
        return self.store.get_issue(issue_id)

    def list_issues(self, *, is_published: Optional[bool] = None, year: Optional[int] = None) -> list[Issue]:
        return self.store.list_issues(is_published=is_published, year=year)

    def delete_issue(self, issue_id: str, actor: Actor) -> None:
        actor.require_any(*EDITORIAL_ROLES)
        issue = self.store.get_issue(issue_id)
        if issue.is_published:
            raise InvalidStateError("Cannot delete a published issue")
        if issue.manuscript_ids:
            raise ConflictError(
                "Issue still contains manuscripts",
                extra={"manuscript_ids": issue.manuscript_ids},
            )
        if not self.store.delete_issue(issue_id, expected_version=issue.row_version):
            raise ConflictError("Issue was modified concurrently; retry the operation")

    def assign_to_issue(self, issue_id: str, manuscript_id: str, actor: Actor) -> Issue:
        actor.require_any(*EDITORIAL_ROLES)
        issue = self.store.get_issue(issue_id)
        if issue.is_published:
            raise InvalidStateError("Cannot modify a published issue")

        def link(m: Manuscript) -> bool:
            if m.status != ManuscriptStatus.ACCEPTED:
                raise InvalidStateError(
                    f"Only accepted manuscripts can be assigned to an issue (current: {m.status.value})",
                    extra={"status": m.status.value},
                )
            if m.issue_id == issue_id:
                return False
            if m.issue_id:
                raise ConflictError(
                    "Manuscript is already assigned to another issue",
                    extra={"issue_id": m.issue_id},
                )
            m.issue_id = issue_id
            m.add_timeline_event(
                "Assigned to Issue",
                now=self.store.now(),
                performed_by=actor.id,
                detail=f"Vol. {issue.volume}, No. {issue.issue_number}",
            )
            return True

        _, linked = self.store.update_manuscript(manuscript_id, link)

        def add(i: Issue) -> None:
            if i.is_published:
                raise InvalidStateError("Cannot modify a published issue")
            if manuscript_id not in i.manuscript_ids:
                i.manuscript_ids.append(manuscript_id)

        try:
            issue, _ = self.store.update_issue(issue_id, add)
        except Exception:
            if linked:
                self._unlink(manuscript_id, issue_id, actor)
            raise
        return issue

    def _unlink(self, manuscript_id: str, issue_id: str, actor: Actor) -> None:
        def unlink(m: Manuscript) -> None:
            if m.status == ManuscriptStatus.PUBLISHED:
                raise InvalidStateError("Published manuscripts cannot leave their issue")
            if m.issue_id != issue_id:
                return
            m.issue_id = None
            m.add_timeline_event("Removed from Issue", now=self.store.now(), performed_by=actor.id)

        self.store.update_manuscript(manuscript_id, unlink)

    def remove_from_issue(self, issue_id: str, manuscript_id: str, actor: Actor) -> Issue:
        actor.require_any(*EDITORIAL_ROLES)
        issue = self.store.get_issue(issue_id)
        if issue.is_published:
            raise InvalidStateError("Cannot modify a published issue")
        if manuscript_id not in issue.manuscript_ids:
            raise NotFoundError(
                "Manuscript is not part of this issue",
                extra={"issue_id": issue_id, "manuscript_id": manuscript_id},
            )

        self._unlink(manuscript_id, issue_id, actor)

        def remove(i: Issue) -> None:
            if i.is_published:
                raise InvalidStateError("Cannot modify a published issue")
            i.manuscript_ids = [mid for mid in i.manuscript_ids if mid != manuscript_id]

        issue, _ = self.store.update_issue(issue_id, remove)
        return issue

    # --- publication -----------------------------------------------------

    async def publish_manuscript(self, manuscript_id: str, actor: Actor) -> Manuscript:
        actor.require_any(*EDITORIAL_ROLES)

        def publish(m: Manuscript) -> None:
            if m.status == ManuscriptStatus.ACCEPTED and not m.issue_id:
                raise InvalidStateError(
                    "Manuscript must be assigned to an issue before publication",
                    extra={"status": m.status.value},
                )
            now = self.store.now()
            transition_status(m, ManuscriptStatus.PUBLISHED.value)
            m.published_at = now
            m.public_url = self._public_url(m.id)
            m.doi_metadata = DoiMetadata()
            m.doi_metadata.transition(DepositStatus.PENDING)
            m.add_timeline_event("Published", now=now, performed_by=actor.id)

        manuscript, _ = self.store.update_manuscript(manuscript_id, publish)
        logger.info("[Publishing] manuscript %s is now live", manuscript.manuscript_code)

        try:
            await self.doi_service.deposit(manuscript_id, actor)
        except WorkflowError as e:
            # 发布已生效；DOI 可之后由编辑重试
            logger.warning("[Publishing] initial DOI deposit for %s not run: %s", manuscript.manuscript_code, e)

        manuscript = self.store.get_manuscript(manuscript_id)
        self.notifications.notify(
            user_id=manuscript.submitted_by,
            type=NOTIFY_PUBLISHED,
            title="Manuscript published",
            content=f"{manuscript.manuscript_code} has been published.",
            manuscript_id=manuscript.id,
        )
        return manuscript

    async def publish_issue(self, issue_id: str, actor: Actor) -> IssuePublishResult:
        actor.require_any(*EDITORIAL_ROLES)
        issue = self.store.get_issue(issue_id)
        if issue.is_published:
            raise InvalidStateError("Issue is already published")
        if not issue.manuscript_ids:
            raise ValidationError("Cannot publish an empty issue")

        items: list[IssuePublishItem] = []
        for mid in issue.manuscript_ids:
            manuscript = self.store.find_manuscript(mid)
            if manuscript is None:
                items.append(IssuePublishItem(manuscript_id=mid, error="Manuscript not found"))
                continue
            if manuscript.status == ManuscriptStatus.ACCEPTED:
                try:
                    manuscript = await self.publish_manuscript(mid, actor)
                except WorkflowError as e:
                    items.append(
                        IssuePublishItem(
                            manuscript_id=mid,
                            manuscript_code=manuscript.manuscript_code,
                            status=manuscript.status.value,
                            error=e.message,
                        )
                    )
                    continue
            meta = manuscript.doi_metadata
            items.append(
                IssuePublishItem(
                    manuscript_id=mid,
                    manuscript_code=manuscript.manuscript_code,
                    status=manuscript.status.value,
                    deposit_status=meta.deposit_status.value if meta else None,
                    doi=manuscript.doi,
                    error=meta.deposit_error if meta else None,
                )
            )

        unpublished = [
            item.manuscript_id for item in items if item.status != ManuscriptStatus.PUBLISHED.value
        ]
        if unpublished:
            # 有稿件未能发布：期刊保持未发布，修复后可再次调用
            logger.warning(
                "[Publishing] issue vol.%s no.%s left unpublished; %d manuscript(s) not published: %s",
                issue.volume,
                issue.issue_number,
                len(unpublished),
                ", ".join(unpublished),
            )
            return IssuePublishResult(issue=self.store.get_issue(issue_id), items=items)

        def mark_published(i: Issue) -> None:
            if i.is_published:
                raise InvalidStateError("Issue is already published")
            i.is_published = True
            i.published_at = self.store.now()

        issue, _ = self.store.update_issue(issue_id, mark_published)
        logger.info("[Publishing] issue vol.%s no.%s published", issue.volume, issue.issue_number)
        return IssuePublishResult(issue=issue, items=items)
