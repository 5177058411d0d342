"""
Manuscript / Review / Issue 持久化（PostgREST + 乐观并发）

中文注释:
- 所有状态变更都走 compare-and-swap：`update ... eq(id) eq(row_version)`，无返回行即视为竞争失败。
- 竞争失败会重新加载、重新校验（mutate 回调会再次执行），超过上限抛 ConflictError。
- 状态、时间线、修订、决策、DOI 元数据同在 manuscripts 一行，单次写入即原子。
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Type, TypeVar

from pydantic import BaseModel

from app.core.config import WorkflowConfig
from app.core.errors import ConflictError, NotFoundError
from app.models.issue import Issue
from app.models.manuscript import Manuscript
from app.models.reviews import Review

logger = logging.getLogger("journalflow.store")

MANUSCRIPTS_TABLE = "manuscripts"
REVIEWS_TABLE = "reviews"
ISSUES_TABLE = "issues"

M = TypeVar("M", bound=BaseModel)
R = TypeVar("R")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_unique_violation(exc: Exception) -> bool:
    """PostgREST 唯一约束冲突（Postgres 23505）"""
    code = str(getattr(exc, "code", "") or "")
    if code == "23505":
        return True
    lowered = str(exc).lower()
    return "duplicate key" in lowered or "unique constraint" in lowered


def format_manuscript_code(prefix: str, year: int, sequence: int) -> str:
    return f"{prefix}-{year}-{sequence:05d}"


def parse_code_sequence(code: Optional[str], code_prefix: str) -> int:
    if not code or not code.startswith(code_prefix):
        return 0
    try:
        return int(code[len(code_prefix):])
    except ValueError:
        return 0


def _rows(resp: Any) -> list[dict[str, Any]]:
    data = getattr(resp, "data", None)
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return list(data)


class ManuscriptStore:
    def __init__(
        self,
        client: Any = None,
        *,
        config: Optional[WorkflowConfig] = None,
        now_fn: Callable[[], datetime] = utc_now,
    ) -> None:
        if client is None:
            from app.lib.api_client import supabase_admin

            client = supabase_admin
        self.client = client
        self.config = config or WorkflowConfig.from_env()
        self.now = now_fn

    # --- generic helpers -------------------------------------------------

    def _load_one(self, table: str, model: Type[M], row_id: str) -> Optional[M]:
        resp = self.client.table(table).select("*").eq("id", row_id).limit(1).execute()
        rows = _rows(resp)
        if not rows:
            return None
        return model(**rows[0])

    def _cas_update(
        self,
        table: str,
        model: Type[M],
        row_id: str,
        mutate: Callable[[M], R],
        *,
        to_row: Callable[[M], dict[str, Any]],
        label: str,
    ) -> tuple[M, R]:
        attempts = max(1, int(self.config.cas_max_attempts))
        for attempt in range(1, attempts + 1):
            current = self._load_one(table, model, row_id)
            if current is None:
                raise NotFoundError(f"{label} not found", extra={"id": row_id})

            expected_version = int(getattr(current, "row_version", 1))
            # mutate 抛错即中止（ValidationError/InvalidStateError 等不会重试）
            result = mutate(current)
            current.row_version = expected_version + 1
            if hasattr(current, "updated_at"):
                current.updated_at = self.now()

            row = to_row(current)
            row.pop("id", None)
            resp = (
                self.client.table(table)
                .update(row)
                .eq("id", row_id)
                .eq("row_version", expected_version)
                .execute()
            )
            if _rows(resp):
                return current, result

            logger.info(
                "[Store] %s %s lost CAS race (attempt %s/%s, row_version=%s)",
                label,
                row_id,
                attempt,
                attempts,
                expected_version,
            )

        raise ConflictError(
            f"{label} was modified concurrently; retry the operation",
            extra={"id": row_id},
        )

    # --- manuscripts -----------------------------------------------------

    def find_manuscript(self, manuscript_id: str) -> Optional[Manuscript]:
        return self._load_one(MANUSCRIPTS_TABLE, Manuscript, manuscript_id)

    def get_manuscript(self, manuscript_id: str) -> Manuscript:
        manuscript = self.find_manuscript(manuscript_id)
        if manuscript is None:
            raise NotFoundError("Manuscript not found", extra={"manuscript_id": manuscript_id})
        return manuscript

    def list_manuscripts(
        self,
        *,
        status: Optional[str] = None,
        deposit_status: Optional[str] = None,
        issue_id: Optional[str] = None,
        submitted_by: Optional[str] = None,
        doi: Optional[str] = None,
    ) -> list[Manuscript]:
        query = self.client.table(MANUSCRIPTS_TABLE).select("*")
        if status:
            query = query.eq("status", status)
        if deposit_status:
            query = query.eq("deposit_status", deposit_status)
        if issue_id:
            query = query.eq("issue_id", issue_id)
        if submitted_by:
            query = query.eq("submitted_by", submitted_by)
        if doi:
            query = query.eq("doi", doi)
        resp = query.order("created_at", desc=True).execute()
        return [Manuscript.from_row(r) for r in _rows(resp)]

    def latest_code_sequence(self, code_prefix: str) -> int:
        """当年已用的最大序号（无则 0）；删除过的稿件不会让序号回退"""
        resp = (
            self.client.table(MANUSCRIPTS_TABLE)
            .select("manuscript_code")
            .like("manuscript_code", f"{code_prefix}%")
            .order("manuscript_code", desc=True)
            .limit(1)
            .execute()
        )
        rows = _rows(resp)
        if not rows:
            return 0
        return parse_code_sequence(rows[0].get("manuscript_code"), code_prefix)

    def insert_manuscript(self, build: Callable[[str], Manuscript]) -> Manuscript:
        """
        插入新稿件并生成编号 `<PREFIX>-<YEAR>-<NNNNN>`。

        中文注释: 序号 = 当年最大序号 + 1；并发提交撞号时（唯一约束冲突）重新读取最大序号并顺延重试。
        """
        year = self.now().year
        prefix = self.config.manuscript_code_prefix
        code_prefix = f"{prefix}-{year}-"
        attempts = max(1, int(self.config.cas_max_attempts))

        last_err: Optional[Exception] = None
        candidate = 0
        for _ in range(attempts):
            candidate = max(self.latest_code_sequence(code_prefix), candidate) + 1
            manuscript = build(format_manuscript_code(prefix, year, candidate))
            try:
                self.client.table(MANUSCRIPTS_TABLE).insert(manuscript.to_row()).execute()
                return manuscript
            except Exception as e:
                if not is_unique_violation(e):
                    raise
                last_err = e
                logger.info("[Store] manuscript code %s taken, retrying", manuscript.manuscript_code)

        raise ConflictError("Could not allocate a manuscript code; retry the submission") from last_err

    def update_manuscript(
        self, manuscript_id: str, mutate: Callable[[Manuscript], R]
    ) -> tuple[Manuscript, R]:
        return self._cas_update(
            MANUSCRIPTS_TABLE,
            Manuscript,
            manuscript_id,
            mutate,
            to_row=lambda m: m.to_row(),
            label="Manuscript",
        )

    def delete_manuscript(self, manuscript_id: str, *, expected_version: int) -> bool:
        resp = (
            self.client.table(MANUSCRIPTS_TABLE)
            .delete()
            .eq("id", manuscript_id)
            .eq("row_version", expected_version)
            .execute()
        )
        return bool(_rows(resp))

    # --- reviews ---------------------------------------------------------

    def find_review(self, review_id: str) -> Optional[Review]:
        return self._load_one(REVIEWS_TABLE, Review, review_id)

    def get_review(self, review_id: str) -> Review:
        review = self.find_review(review_id)
        if review is None:
            raise NotFoundError("Review not found", extra={"review_id": review_id})
        return review

    def list_reviews(self, manuscript_id: str, *, review_round: Optional[int] = None) -> list[Review]:
        query = self.client.table(REVIEWS_TABLE).select("*").eq("manuscript_id", manuscript_id)
        if review_round is not None:
            query = query.eq("review_round", review_round)
        resp = query.order("invited_at").execute()
        return [Review(**r) for r in _rows(resp)]

    def count_reviews(self, manuscript_id: str) -> int:
        resp = (
            self.client.table(REVIEWS_TABLE)
            .select("id", count="exact")
            .eq("manuscript_id", manuscript_id)
            .execute()
        )
        count = getattr(resp, "count", None)
        if count is None:
            return len(_rows(resp))
        return int(count)

    def insert_reviews(self, reviews: list[Review]) -> list[Review]:
        if not reviews:
            return []
        rows = [r.model_dump(mode="json") for r in reviews]
        try:
            self.client.table(REVIEWS_TABLE).insert(rows).execute()
        except Exception as e:
            if is_unique_violation(e):
                raise ConflictError(
                    "Reviewer already assigned to this manuscript",
                    extra={"manuscript_id": reviews[0].manuscript_id},
                ) from e
            raise
        return reviews

    def delete_reviews(self, review_ids: list[str]) -> None:
        if not review_ids:
            return
        self.client.table(REVIEWS_TABLE).delete().in_("id", review_ids).execute()

    def update_review(self, review_id: str, mutate: Callable[[Review], R]) -> tuple[Review, R]:
        return self._cas_update(
            REVIEWS_TABLE,
            Review,
            review_id,
            mutate,
            to_row=lambda r: r.model_dump(mode="json"),
            label="Review",
        )

    # --- issues ----------------------------------------------------------

    def get_issue(self, issue_id: str) -> Issue:
        issue = self._load_one(ISSUES_TABLE, Issue, issue_id)
        if issue is None:
            raise NotFoundError("Issue not found", extra={"issue_id": issue_id})
        return issue

    def insert_issue(self, issue: Issue) -> Issue:
        try:
            self.client.table(ISSUES_TABLE).insert(issue.to_row()).execute()
        except Exception as e:
            if is_unique_violation(e):
                raise ConflictError(
                    f"Issue volume {issue.volume} number {issue.issue_number} already exists",
                    extra={"volume": issue.volume, "issue_number": issue.issue_number},
                ) from e
            raise
        return issue

    def update_issue(self, issue_id: str, mutate: Callable[[Issue], R]) -> tuple[Issue, R]:
        return self._cas_update(
            ISSUES_TABLE,
            Issue,
            issue_id,
            mutate,
            to_row=lambda i: i.to_row(),
            label="Issue",
        )

    def list_issues(self, *, is_published: Optional[bool] = None, year: Optional[int] = None) -> list[Issue]:
        query = self.client.table(ISSUES_TABLE).select("*")
        if is_published is not None:
            query = query.eq("is_published", is_published)
        if year is not None:
            query = query.eq("year", year)
        resp = query.order("volume", desc=True).execute()
        return [Issue.from_row(r) for r in _rows(resp)]

    def delete_issue(self, issue_id: str, *, expected_version: int) -> bool:
        resp = (
            self.client.table(ISSUES_TABLE)
            .delete()
            .eq("id", issue_id)
            .eq("row_version", expected_version)
            .execute()
        )
        return bool(_rows(resp))
