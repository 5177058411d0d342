from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from app.core.config import WorkflowConfig
from app.core.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.core.roles import EDITORIAL_ROLES, ROLE_ADMIN, ROLE_AUTHOR, Actor
from app.models.decision import DecisionRecord, DecisionRequest
from app.models.manuscript import (
    Manuscript,
    ManuscriptStatus,
    ManuscriptSubmit,
    normalize_status,
)
from app.models.reviews import ReviewStatus
from app.models.revision import ManuscriptFile, Revision, RevisionSubmit
from app.services.manuscript_store import ManuscriptStore
from app.services.notification_service import (
    NOTIFY_DECISION_ISSUED,
    NOTIFY_REVISION_SUBMITTED,
    NotificationService,
)

logger = logging.getLogger("journalflow.workflow")

TITLE_MAX_LENGTH = 500
ABSTRACT_MAX_LENGTH = 5000
REVISION_NOTES_MAX_LENGTH = 2000

DECISION_TO_STATUS = {
    "accept": ManuscriptStatus.ACCEPTED.value,
    "reject": ManuscriptStatus.REJECTED.value,
    "minor_revision": ManuscriptStatus.REVISION_REQUIRED.value,
    "major_revision": ManuscriptStatus.REVISION_REQUIRED.value,
}


def transition_status(
    manuscript: Manuscript,
    to_status: str,
    *,
    allowed: Optional[set[str]] = None,
) -> str:
    """
    校验并执行一次稿件状态流转（仅修改内存对象）。

    allowed:
    - 缺省使用 ManuscriptStatus.allowed_next 的显式表；
    - 编辑越权决策时由调用方传入扩展后的来源集合。
    """
    from_status = manuscript.status.value
    permitted = ManuscriptStatus.allowed_next(from_status)
    if allowed is not None:
        permitted = permitted | allowed
    if to_status not in permitted:
        raise InvalidStateError(
            f"Invalid transition: {from_status} -> {to_status}. Allowed: {sorted(permitted)}",
            extra={"from_status": from_status, "to_status": to_status},
        )
    manuscript.status = ManuscriptStatus(to_status)
    return from_status


def validate_file_manifest(files: list[ManuscriptFile]) -> list[ManuscriptFile]:
    if not files:
        raise ValidationError("At least one manuscript file is required")
    seen: set[str] = set()
    for f in files:
        if not str(f.file_id or "").strip():
            raise ValidationError("Every file requires a file_id")
        if not str(f.original_name or "").strip():
            raise ValidationError("Every file requires an original_name", extra={"file_id": f.file_id})
        if f.size < 0:
            raise ValidationError("File size cannot be negative", extra={"file_id": f.file_id})
        if f.file_id in seen:
            raise ValidationError("Duplicate file_id in manifest", extra={"file_id": f.file_id})
        seen.add(f.file_id)
    return list(files)


def _dedupe_keywords(raw: list[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for kw in raw or []:
        text = str(kw or "").strip()
        key = text.lower()
        if text and key not in seen:
            seen.add(key)
            out.append(text)
    return out


class EditorialService:
    """
    稿件状态机：投稿、编辑决策、修回、删除与统计。

    中文注释:
    - 核心状态流转逻辑必须显性可见（transition_status + ManuscriptStatus.allowed_next），避免散落在 API 层。
    - 每个写操作都是 “加载 -> 校验 -> 内存修改 -> CAS 写回”，竞争失败由 ManuscriptStore 重新加载并重新校验。
    - 通知在写入成功之后发送，失败不影响状态流转。
    """

    def __init__(
        self,
        store: Optional[ManuscriptStore] = None,
        notifications: Optional[NotificationService] = None,
        config: Optional[WorkflowConfig] = None,
    ) -> None:
        self.store = store or ManuscriptStore(config=config)
        self.config = config or self.store.config
        self.notifications = notifications or NotificationService(self.store.client)

    # --- access helpers --------------------------------------------------

    def _ensure_can_view(self, manuscript: Manuscript, actor: Actor) -> None:
        if actor.has_any(*EDITORIAL_ROLES):
            return
        if manuscript.submitted_by == actor.id:
            return
        if any(r.reviewer_id == actor.id for r in self.store.list_reviews(manuscript.id)):
            return
        raise PermissionDeniedError(
            "Not allowed to view this manuscript", extra={"manuscript_id": manuscript.id}
        )

    @staticmethod
    def _visible_to(manuscript: Manuscript, actor: Actor) -> Manuscript:
        if actor.has_any(*EDITORIAL_ROLES):
            return manuscript
        return manuscript.without_internal_notes()

    def get_manuscript(self, manuscript_id: str, actor: Actor) -> Manuscript:
        manuscript = self.store.get_manuscript(manuscript_id)
        self._ensure_can_view(manuscript, actor)
        return self._visible_to(manuscript, actor)

    def list_manuscripts(self, actor: Actor, *, status: Optional[str] = None) -> list[Manuscript]:
        status_norm = None
        if status:
            status_norm = normalize_status(status)
            if status_norm is None:
                raise ValidationError(f"Unknown status: {status}")
        if actor.has_any(*EDITORIAL_ROLES):
            return self.store.list_manuscripts(status=status_norm)
        return [
            m.without_internal_notes()
            for m in self.store.list_manuscripts(status=status_norm, submitted_by=actor.id)
        ]

    def get_statistics(self, actor: Actor) -> dict[str, Any]:
        actor.require_any(*EDITORIAL_ROLES)
        counts = {s.value: 0 for s in ManuscriptStatus}
        manuscripts = self.store.list_manuscripts()
        for m in manuscripts:
            counts[m.status.value] = counts.get(m.status.value, 0) + 1
        return {"total": len(manuscripts), "by_status": counts}

    # --- submission ------------------------------------------------------

    def submit_manuscript(self, actor: Actor, payload: ManuscriptSubmit) -> Manuscript:
        actor.require_any(ROLE_AUTHOR, ROLE_ADMIN)

        title = (payload.title or "").strip()
        abstract = (payload.abstract or "").strip()
        if not title:
            raise ValidationError("Title is required")
        if len(title) > TITLE_MAX_LENGTH:
            raise ValidationError(f"Title cannot exceed {TITLE_MAX_LENGTH} characters")
        if not abstract:
            raise ValidationError("Abstract is required")
        if len(abstract) > ABSTRACT_MAX_LENGTH:
            raise ValidationError(f"Abstract cannot exceed {ABSTRACT_MAX_LENGTH} characters")

        if not payload.authors:
            raise ValidationError("At least one author is required")
        for author in payload.authors:
            if not (author.name or "").strip() or not (author.affiliation or "").strip():
                raise ValidationError("Every author requires a name and an affiliation")
        corresponding = [a for a in payload.authors if a.is_corresponding]
        if len(corresponding) != 1:
            raise ValidationError("Exactly one corresponding author is required")

        files = validate_file_manifest(payload.files)
        now = self.store.now()

        def build(code: str) -> Manuscript:
            manuscript = Manuscript(
                id=str(uuid.uuid4()),
                manuscript_code=code,
                title=title,
                abstract=abstract,
                keywords=_dedupe_keywords(payload.keywords),
                authors=list(payload.authors),
                submitted_by=actor.id,
                status=ManuscriptStatus.SUBMITTED,
                files=files,
                revisions=[
                    Revision(
                        version=1,
                        submitted_at=now,
                        submitted_by=actor.id,
                        files=files,
                        is_initial=True,
                    )
                ],
                current_version=1,
                created_at=now,
                updated_at=now,
            )
            manuscript.add_timeline_event("Manuscript Submitted", now=now, performed_by=actor.id)
            return manuscript

        manuscript = self.store.insert_manuscript(build)
        logger.info("[Workflow] manuscript %s submitted by %s", manuscript.manuscript_code, actor.id)
        return manuscript

    # --- editor assignment / deletion -----------------------------------

    def assign_editor(self, manuscript_id: str, editor_id: str, actor: Actor) -> Manuscript:
        actor.require_any(*EDITORIAL_ROLES)
        editor_id = (editor_id or "").strip()
        if not editor_id:
            raise ValidationError("editor_id is required")

        def mutate(m: Manuscript) -> None:
            if m.status.value in ManuscriptStatus.terminal():
                raise InvalidStateError(
                    f"Cannot assign an editor to a {m.status.value} manuscript",
                    extra={"status": m.status.value},
                )
            now = self.store.now()
            m.assigned_editor_id = editor_id
            m.add_timeline_event("Editor Assigned", now=now, performed_by=actor.id, detail=editor_id)

        manuscript, _ = self.store.update_manuscript(manuscript_id, mutate)
        return manuscript

    def delete_manuscript(self, manuscript_id: str, actor: Actor) -> None:
        manuscript = self.store.get_manuscript(manuscript_id)
        if not actor.is_admin:
            if manuscript.submitted_by != actor.id:
                raise PermissionDeniedError("Only the submitting author or an admin can delete")
            if manuscript.status != ManuscriptStatus.SUBMITTED:
                raise InvalidStateError(
                    "Authors can only withdraw manuscripts that are still submitted",
                    extra={"status": manuscript.status.value},
                )
        if manuscript.status == ManuscriptStatus.PUBLISHED:
            raise InvalidStateError("Published manuscripts cannot be deleted")
        if self.store.count_reviews(manuscript_id) > 0:
            raise ConflictError(
                "Manuscript has reviews and cannot be deleted",
                extra={"manuscript_id": manuscript_id},
            )
        if not self.store.delete_manuscript(manuscript_id, expected_version=manuscript.row_version):
            raise ConflictError("Manuscript was modified concurrently; retry the operation")
        logger.info("[Workflow] manuscript %s deleted by %s", manuscript.manuscript_code, actor.id)

    # --- decision --------------------------------------------------------

    def record_decision(self, manuscript_id: str, actor: Actor, request: DecisionRequest) -> Manuscript:
        actor.require_any(*EDITORIAL_ROLES)
        letter = (request.letter or "").strip()
        to_status = DECISION_TO_STATUS[request.decision]

        def mutate(m: Manuscript) -> str:
            # 已指定责任编辑时，只有该编辑或管理员可以决策
            if m.assigned_editor_id and m.assigned_editor_id != actor.id and not actor.is_admin:
                raise PermissionDeniedError(
                    "Not authorized to make a decision on this manuscript",
                    extra={"manuscript_id": m.id, "assigned_editor_id": m.assigned_editor_id},
                )
            extra_sources: Optional[set[str]] = None
            if m.status != ManuscriptStatus.REVIEW_COMPLETED:
                if not request.override:
                    raise InvalidStateError(
                        f"Decision requires review_completed (current: {m.status.value})",
                        extra={"status": m.status.value},
                    )
                if m.status.value not in ManuscriptStatus.decision_override_sources():
                    raise InvalidStateError(
                        f"Decision override not allowed from {m.status.value}",
                        extra={"status": m.status.value},
                    )
                extra_sources = {to_status}

            now = self.store.now()
            from_status = transition_status(m, to_status, allowed=extra_sources)
            m.decision = DecisionRecord(
                decision=request.decision,
                letter=letter,
                internal_notes=request.internal_notes,
                decided_by=actor.id,
                decided_at=now,
                override=extra_sources is not None,
            )
            detail = f"{request.decision} ({from_status} -> {to_status})"
            if extra_sources is not None:
                detail += " [editor override]"
            m.add_timeline_event("Decision Recorded", now=now, performed_by=actor.id, detail=detail)
            return from_status

        manuscript, _ = self.store.update_manuscript(manuscript_id, mutate)
        logger.info(
            "[Workflow] decision %s recorded for %s by %s",
            request.decision,
            manuscript.manuscript_code,
            actor.id,
        )
        self.notifications.notify(
            user_id=manuscript.submitted_by,
            type=NOTIFY_DECISION_ISSUED,
            title="Editorial decision",
            content=f"A decision ({request.decision}) was issued for {manuscript.manuscript_code}.",
            manuscript_id=manuscript.id,
        )
        return manuscript

    # --- revision --------------------------------------------------------

    def submit_revision(self, manuscript_id: str, actor: Actor, payload: RevisionSubmit) -> Manuscript:
        notes = (payload.revision_notes or "").strip() or None
        if notes and len(notes) > REVISION_NOTES_MAX_LENGTH:
            raise ValidationError(f"Revision notes cannot exceed {REVISION_NOTES_MAX_LENGTH} characters")
        files = validate_file_manifest(payload.files)

        def mutate(m: Manuscript) -> int:
            if m.submitted_by != actor.id and not actor.is_admin:
                raise PermissionDeniedError(
                    "Only the submitting author can submit a revision",
                    extra={"manuscript_id": m.id},
                )
            if m.status != ManuscriptStatus.REVISION_REQUIRED:
                raise InvalidStateError(
                    f"Revision requires revision_required (current: {m.status.value})",
                    extra={"status": m.status.value},
                )
            now = self.store.now()
            version = m.latest_version() + 1
            m.revisions.append(
                Revision(
                    version=version,
                    submitted_at=now,
                    submitted_by=actor.id,
                    files=files,
                    response_to_reviewers=payload.response_to_reviewers,
                    revision_notes=notes,
                    is_initial=False,
                )
            )
            m.files = files
            m.current_version = version
            transition_status(m, ManuscriptStatus.SUBMITTED.value)
            m.add_timeline_event(
                "Revision Submitted", now=now, performed_by=actor.id, detail=f"Version {version}"
            )
            return version

        manuscript, version = self.store.update_manuscript(manuscript_id, mutate)
        logger.info("[Workflow] revision v%s submitted for %s", version, manuscript.manuscript_code)
        if manuscript.assigned_editor_id:
            self.notifications.notify(
                user_id=manuscript.assigned_editor_id,
                type=NOTIFY_REVISION_SUBMITTED,
                title="Revision submitted",
                content=f"Version {version} of {manuscript.manuscript_code} was submitted.",
                manuscript_id=manuscript.id,
            )
        return self._visible_to(manuscript, actor)

    # --- review completion ----------------------------------------------

    def maybe_complete_review(self, manuscript_id: str, *, performed_by: Optional[str] = None) -> bool:
        """
        当前轮次（review_round == current_version）已完成审稿数 >= MIN_REVIEWERS 且无进行中的审稿时，
        under_review -> review_completed。返回是否发生了流转。
        """
        manuscript = self.store.find_manuscript(manuscript_id)
        if manuscript is None:
            raise NotFoundError("Manuscript not found", extra={"manuscript_id": manuscript_id})
        if manuscript.status != ManuscriptStatus.UNDER_REVIEW:
            return False

        def ready(m: Manuscript) -> bool:
            reviews = self.store.list_reviews(m.id, review_round=m.current_version)
            completed = [r for r in reviews if r.status == ReviewStatus.COMPLETED]
            active = [r for r in reviews if r.status in ReviewStatus.active()]
            return len(completed) >= self.config.min_reviewers and not active

        if not ready(manuscript):
            return False

        def mutate(m: Manuscript) -> None:
            if m.status != ManuscriptStatus.UNDER_REVIEW or not ready(m):
                raise InvalidStateError("Manuscript is no longer awaiting review completion")
            now = self.store.now()
            transition_status(m, ManuscriptStatus.REVIEW_COMPLETED.value)
            m.add_timeline_event("Reviews Completed", now=now, performed_by=performed_by)

        try:
            self.store.update_manuscript(manuscript_id, mutate)
        except InvalidStateError:
            return False
        logger.info("[Workflow] manuscript %s moved to review_completed", manuscript.manuscript_code)
        return True
