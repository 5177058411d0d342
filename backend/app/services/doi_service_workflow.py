from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, Optional

from app.core.errors import (
    ConflictError,
    InvalidStateError,
    ValidationError,
    WorkflowError,
)
from app.core.roles import EDITORIAL_ROLES, ROLE_ADMIN, Actor
from app.models.doi import (
    BulkRetryItem,
    BulkRetryResult,
    DepositStatus,
    DoiMetadata,
    is_valid_doi,
)
from app.models.manuscript import Manuscript, ManuscriptStatus
from app.services.doi_service_common import (
    DEPOSITABLE_STATUSES,
    INTERRUPTED_ERROR,
    RETRYABLE_STATUSES,
    DuplicateAttempt,
    describe_error,
    json_safe_response,
    logger,
)
from app.services.manuscript_store import is_unique_violation


class DoiServiceWorkflowMixin:
    def _check_attempt_number(self, meta: DoiMetadata, attempt_number: Optional[int]) -> None:
        if attempt_number is None:
            return
        if attempt_number < 1:
            raise ValidationError("attempt_number must be >= 1")
        if attempt_number <= meta.deposit_attempts:
            raise DuplicateAttempt()
        if attempt_number > meta.deposit_attempts + 1:
            raise ValidationError(
                f"attempt_number {attempt_number} skips ahead; next attempt is {meta.deposit_attempts + 1}",
                extra={"deposit_attempts": meta.deposit_attempts},
            )

    def _claim(
        self,
        manuscript_id: str,
        *,
        attempt_number: Optional[int],
        allowed_from: set[str],
        operation: str,
    ) -> Manuscript:
        """
        原子地把记录推进到 processing（pending -> processing，必要时先 -> pending）。

        中文注释: 并发的第二个调用会看到 processing 并得到 InvalidStateError，保证同一时刻只有一个在途尝试。
        """

        def mutate(m: Manuscript) -> None:
            if m.status != ManuscriptStatus.PUBLISHED or m.doi_metadata is None:
                raise InvalidStateError(
                    f"DOI {operation} requires a published manuscript (current: {m.status.value})",
                    extra={"status": m.status.value},
                )
            meta = m.doi_metadata
            self._check_attempt_number(meta, attempt_number)
            current = meta.deposit_status.value
            if current not in allowed_from:
                raise InvalidStateError(
                    f"DOI {operation} not allowed while deposit is {current}",
                    extra={"deposit_status": current},
                )
            if meta.deposit_status != DepositStatus.PENDING:
                meta.transition(DepositStatus.PENDING)
            meta.transition(DepositStatus.PROCESSING)
            meta.last_deposit_attempt = self.store.now()

        manuscript, _ = self.store.update_manuscript(manuscript_id, mutate)
        return manuscript

    async def _call_registrar(self, manuscript: Manuscript) -> tuple[bool, Optional[str], Optional[str], Any]:
        timeout = self.workflow_config.registrar_timeout_seconds
        try:
            response = await asyncio.wait_for(self.registrar.submit_deposit(manuscript), timeout=timeout)
        except Exception as e:
            # 超时 / 网络错误 / 注册方拒绝：统一记为失败尝试
            return False, None, describe_error(e, timeout=timeout), None

        doi = str((response or {}).get("doi") or "").strip() if isinstance(response, dict) else ""
        if not is_valid_doi(doi):
            return False, None, "Registrar returned a malformed response", response
        try:
            self._ensure_doi_unused(doi, manuscript.id)
        except ConflictError as e:
            return False, None, e.message, response
        except Exception as e:
            # 查重本身失败（如 PostgREST 不可用）：同样记为失败尝试，不能把记录留在 processing
            logger.exception("[DOI] uniqueness check for %s failed", manuscript.manuscript_code)
            return False, None, f"DOI uniqueness check failed: {describe_error(e)}", response
        return True, doi, None, response

    async def _run_attempt(
        self,
        manuscript_id: str,
        actor: Actor,
        *,
        attempt_number: Optional[int],
        allowed_from: set[str],
        operation: str,
    ) -> DoiMetadata:
        try:
            manuscript = self._claim(
                manuscript_id,
                attempt_number=attempt_number,
                allowed_from=allowed_from,
                operation=operation,
            )
        except DuplicateAttempt:
            current = self.store.get_manuscript(manuscript_id)
            logger.info(
                "[DOI] duplicate %s attempt_number=%s for %s ignored",
                operation,
                attempt_number,
                current.manuscript_code,
            )
            return current.doi_metadata

        succeeded, doi, error, response = await self._call_registrar(manuscript)

        def record(m: Manuscript) -> None:
            meta = m.doi_metadata
            meta.record_attempt(
                succeeded=succeeded,
                now=self.store.now(),
                performed_by=actor.id,
                doi=doi,
                error=error,
                response=json_safe_response(response),
            )
            if meta.doi:
                m.doi = meta.doi

        manuscript, _ = self.store.update_manuscript(manuscript_id, record)
        meta = manuscript.doi_metadata
        if succeeded:
            logger.info("[DOI] %s %s succeeded: %s", operation, manuscript.manuscript_code, doi)
        else:
            logger.warning("[DOI] %s %s failed: %s", operation, manuscript.manuscript_code, error)
        return meta

    async def deposit(
        self, manuscript_id: str, actor: Actor, *, attempt_number: Optional[int] = None
    ) -> DoiMetadata:
        actor.require_any(*EDITORIAL_ROLES)
        return await self._run_attempt(
            manuscript_id,
            actor,
            attempt_number=attempt_number,
            allowed_from=DEPOSITABLE_STATUSES,
            operation="deposit",
        )

    async def retry(
        self, manuscript_id: str, actor: Actor, *, attempt_number: Optional[int] = None
    ) -> DoiMetadata:
        actor.require_any(*EDITORIAL_ROLES)
        return await self._run_attempt(
            manuscript_id,
            actor,
            attempt_number=attempt_number,
            allowed_from=RETRYABLE_STATUSES,
            operation="retry",
        )

    async def bulk_retry(self, actor: Actor) -> BulkRetryResult:
        """
        重试所有 deposit_status=failed 的记录（有界并发，单项失败不影响整批）。
        """
        actor.require_any(ROLE_ADMIN)
        candidates = self.store.list_manuscripts(deposit_status=DepositStatus.FAILED.value)
        semaphore = asyncio.Semaphore(max(1, self.workflow_config.bulk_retry_concurrency))

        async def _one(m: Manuscript) -> BulkRetryItem:
            async with semaphore:
                try:
                    meta = await self._run_attempt(
                        m.id,
                        actor,
                        attempt_number=None,
                        allowed_from=RETRYABLE_STATUSES,
                        operation="retry",
                    )
                    return BulkRetryItem(
                        manuscript_id=m.id,
                        manuscript_code=m.manuscript_code,
                        deposit_status=meta.deposit_status.value,
                        doi=meta.doi,
                        error=meta.deposit_error if meta.deposit_status != DepositStatus.SUCCESS else None,
                    )
                except Exception as e:
                    logger.warning("[DOI] bulk retry item %s errored: %s", m.id, e)
                    message = e.message if isinstance(e, WorkflowError) else describe_error(e)
                    return BulkRetryItem(
                        manuscript_id=m.id,
                        manuscript_code=m.manuscript_code,
                        deposit_status=m.doi_metadata.deposit_status.value if m.doi_metadata else None,
                        error=message,
                    )

        items = list(await asyncio.gather(*[_one(m) for m in candidates]))
        succeeded = sum(1 for i in items if i.deposit_status == DepositStatus.SUCCESS.value)
        result = BulkRetryResult(
            total=len(items),
            succeeded=succeeded,
            failed=len(items) - succeeded,
            items=items,
        )
        logger.info(
            "[DOI] bulk retry finished: total=%s succeeded=%s failed=%s",
            result.total,
            result.succeeded,
            result.failed,
        )
        return result

    def manual_assign(self, manuscript_id: str, doi: str, actor: Actor) -> DoiMetadata:
        actor.require_any(ROLE_ADMIN)
        doi = str(doi or "").strip()
        if not is_valid_doi(doi):
            raise ValidationError("Invalid DOI format (expected 10.<registrant>/<suffix>)", extra={"doi": doi})
        self._ensure_doi_unused(doi, manuscript_id)

        def mutate(m: Manuscript) -> None:
            if m.status != ManuscriptStatus.PUBLISHED:
                raise InvalidStateError(
                    f"Manual DOI requires a published manuscript (current: {m.status.value})",
                    extra={"status": m.status.value},
                )
            if m.doi_metadata is None:
                m.doi_metadata = DoiMetadata()
            m.doi_metadata.apply_manual_assignment(doi=doi, now=self.store.now(), performed_by=actor.id)
            m.doi = doi

        try:
            manuscript, _ = self.store.update_manuscript(manuscript_id, mutate)
        except WorkflowError:
            raise
        except Exception as e:
            if is_unique_violation(e):
                raise ConflictError("DOI already assigned to another manuscript", extra={"doi": doi}) from e
            raise
        logger.info("[DOI] manual DOI %s assigned to %s by %s", doi, manuscript.manuscript_code, actor.id)
        return manuscript.doi_metadata

    def recover_stale_deposits(
        self, *, older_than_minutes: Optional[int] = None, actor: Optional[Actor] = None
    ) -> list[str]:
        """
        把“卡在 processing 且超过阈值”的记录记为一次失败尝试（进程崩溃/重启后的恢复）。
        """
        if actor is not None:
            actor.require_any(ROLE_ADMIN)
        minutes = older_than_minutes or self.workflow_config.stale_deposit_minutes
        cutoff = self.store.now() - timedelta(minutes=minutes)
        performed_by = actor.id if actor else "system"

        def is_stale(m: Manuscript) -> bool:
            meta = m.doi_metadata
            if meta is None or meta.deposit_status != DepositStatus.PROCESSING:
                return False
            return meta.last_deposit_attempt is None or meta.last_deposit_attempt < cutoff

        recovered: list[str] = []
        for m in self.store.list_manuscripts(deposit_status=DepositStatus.PROCESSING.value):
            if not is_stale(m):
                continue

            def mutate(row: Manuscript) -> None:
                if not is_stale(row):
                    raise InvalidStateError("Deposit is no longer stale")
                row.doi_metadata.record_attempt(
                    succeeded=False,
                    now=self.store.now(),
                    performed_by=performed_by,
                    error=INTERRUPTED_ERROR,
                )

            try:
                self.store.update_manuscript(m.id, mutate)
            except InvalidStateError:
                continue
            recovered.append(m.id)
            logger.warning("[DOI] recovered stale processing deposit for %s", m.manuscript_code)
        return recovered
