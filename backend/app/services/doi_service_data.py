from __future__ import annotations

from typing import Any, Optional

from app.core.errors import ConflictError, ValidationError
from app.core.roles import EDITORIAL_ROLES, Actor
from app.models.doi import DepositStatus, DepositSummary
from app.models.manuscript import Manuscript, ManuscriptStatus


class DoiServiceDataMixin:
    def _to_summary(self, manuscript: Manuscript) -> DepositSummary:
        return DepositSummary(
            manuscript_id=manuscript.id,
            manuscript_code=manuscript.manuscript_code,
            title=manuscript.title,
            status=manuscript.status.value,
            doi=manuscript.doi,
            doi_metadata=manuscript.doi_metadata,
        )

    def _ensure_doi_unused(self, doi: str, manuscript_id: str) -> None:
        owners = [m for m in self.store.list_manuscripts(doi=doi) if m.id != manuscript_id]
        if owners:
            raise ConflictError(
                "DOI already assigned to another manuscript",
                extra={"doi": doi, "manuscript_id": owners[0].id},
            )

    def get_deposit(self, manuscript_id: str, actor: Actor) -> DepositSummary:
        actor.require_any(*EDITORIAL_ROLES)
        return self._to_summary(self.store.get_manuscript(manuscript_id))

    def list_deposits(self, actor: Actor, *, status: Optional[str] = None) -> list[DepositSummary]:
        actor.require_any(*EDITORIAL_ROLES)
        deposit_status = None
        if status:
            try:
                deposit_status = DepositStatus(str(status).strip().lower()).value
            except ValueError as e:
                raise ValidationError(f"Unknown deposit status: {status}") from e
        rows = self.store.list_manuscripts(
            status=ManuscriptStatus.PUBLISHED.value,
            deposit_status=deposit_status,
        )
        return [self._to_summary(m) for m in rows]

    def deposit_stats(self, actor: Actor) -> dict[str, Any]:
        actor.require_any(*EDITORIAL_ROLES)
        counts = {s.value: 0 for s in DepositStatus}
        published = self.store.list_manuscripts(status=ManuscriptStatus.PUBLISHED.value)
        for m in published:
            if m.doi_metadata is not None:
                counts[m.doi_metadata.deposit_status.value] += 1
        return {"total": len(published), "by_status": counts}
