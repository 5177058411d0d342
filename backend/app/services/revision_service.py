from __future__ import annotations

from typing import Optional

from app.core.errors import NotFoundError, ValidationError
from app.core.roles import Actor
from app.models.revision import (
    ChangeSummary,
    FileChange,
    ManuscriptFile,
    Revision,
    RevisionComparison,
)
from app.services.editorial_service import EditorialService
from app.services.manuscript_store import ManuscriptStore


def _is_modified(before: ManuscriptFile, after: ManuscriptFile) -> bool:
    if before.size != after.size:
        return True
    # 只有双方都带签名时才比较签名；同 id 同大小的改名不算修改
    if before.checksum and after.checksum and before.checksum != after.checksum:
        return True
    return False


def _change(f: ManuscriptFile, previous: Optional[ManuscriptFile] = None) -> FileChange:
    return FileChange(
        file_id=f.file_id,
        original_name=f.original_name,
        size=f.size,
        content_type=f.content_type,
        previous_name=previous.original_name if previous else None,
        previous_size=previous.size if previous else None,
    )


def diff_manifests(
    earlier: list[ManuscriptFile], later: list[ManuscriptFile]
) -> tuple[list[FileChange], list[FileChange], list[FileChange]]:
    """
    按 file_id 对比两个版本的文件清单，返回 (added, modified, removed)。
    顺序跟随清单中的出现顺序。
    """
    before = {f.file_id: f for f in earlier}
    after = {f.file_id: f for f in later}

    added = [_change(f) for f in later if f.file_id not in before]
    removed = [_change(f) for f in earlier if f.file_id not in after]
    modified = [
        _change(f, before[f.file_id])
        for f in later
        if f.file_id in before and _is_modified(before[f.file_id], f)
    ]
    return added, modified, removed


class RevisionService:
    """修订历史（只读）与版本对比"""

    def __init__(
        self,
        store: Optional[ManuscriptStore] = None,
        editorial: Optional[EditorialService] = None,
    ) -> None:
        self.store = store or ManuscriptStore()
        self.editorial = editorial or EditorialService(self.store)

    def get_history(self, manuscript_id: str, actor: Actor) -> list[Revision]:
        manuscript = self.editorial.get_manuscript(manuscript_id, actor)
        return sorted(manuscript.revisions, key=lambda r: r.version)

    def compare(
        self, manuscript_id: str, version_a: int, version_b: int, actor: Actor
    ) -> RevisionComparison:
        if version_a == version_b:
            raise ValidationError(
                "Cannot compare a version with itself", extra={"version": version_a}
            )
        manuscript = self.editorial.get_manuscript(manuscript_id, actor)

        from_version, to_version = sorted((version_a, version_b))
        earlier = manuscript.get_revision(from_version)
        later = manuscript.get_revision(to_version)
        missing = [v for v, rev in ((from_version, earlier), (to_version, later)) if rev is None]
        if missing:
            raise NotFoundError(
                f"Revision version(s) not found: {missing}",
                extra={"manuscript_id": manuscript_id, "versions": missing},
            )

        added, modified, removed = diff_manifests(earlier.files, later.files)
        return RevisionComparison(
            manuscript_id=manuscript_id,
            from_version=from_version,
            to_version=to_version,
            summary=ChangeSummary(added=len(added), modified=len(modified), removed=len(removed)),
            added=added,
            modified=modified,
            removed=removed,
        )
