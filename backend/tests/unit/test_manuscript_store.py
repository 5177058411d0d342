from __future__ import annotations

import pytest
from postgrest.exceptions import APIError

from app.core.errors import ConflictError, NotFoundError
from app.services.manuscript_store import (
    format_manuscript_code,
    is_unique_violation,
    parse_code_sequence,
)


def test_format_manuscript_code() -> None:
    assert format_manuscript_code("JF", 2026, 1) == "JF-2026-00001"
    assert format_manuscript_code("JF", 2026, 123456) == "JF-2026-123456"


def test_is_unique_violation() -> None:
    assert is_unique_violation(APIError({"code": "23505", "message": "dup", "details": None, "hint": None}))
    assert is_unique_violation(RuntimeError('duplicate key value violates unique constraint "x"'))
    assert not is_unique_violation(APIError({"code": "23503", "message": "fk", "details": None, "hint": None}))


def test_code_collision_moves_to_next_sequence(workflow, author, fake_db, monkeypatch) -> None:
    # 另一个进程抢先占用了下一个编号，但读取最大序号时尚不可见
    first = workflow.submit(author)
    fake_db.tables["manuscripts"].append({**fake_db.rows("manuscripts")[0], "id": "foreign", "manuscript_code": "JF-2026-00002", "doi": None})

    monkeypatch.setattr(workflow.store, "latest_code_sequence", lambda prefix: 1)
    second = workflow.submit(author)

    assert first.manuscript_code == "JF-2026-00001"
    assert second.manuscript_code == "JF-2026-00003"


def test_code_sequence_continues_after_withdrawals(workflow, author) -> None:
    submitted = [workflow.submit(author, title=f"Paper {i}") for i in range(6)]
    for manuscript in submitted[:3]:
        workflow.editorial.delete_manuscript(manuscript.id, author)

    later = workflow.submit(author, title="After withdrawals")
    assert later.manuscript_code == "JF-2026-00007"


def test_parse_code_sequence() -> None:
    assert parse_code_sequence("JF-2026-00042", "JF-2026-") == 42
    assert parse_code_sequence("JF-2025-00042", "JF-2026-") == 0
    assert parse_code_sequence("JF-2026-abc", "JF-2026-") == 0
    assert parse_code_sequence(None, "JF-2026-") == 0


def test_update_of_missing_row_is_not_found(store) -> None:
    with pytest.raises(NotFoundError):
        store.update_manuscript("missing", lambda m: None)


def test_mutation_errors_abort_without_writing(workflow, author, store, fake_db) -> None:
    manuscript = workflow.submit(author)
    calls_before = fake_db.update_calls

    def fail(m):
        raise ConflictError("nope")

    with pytest.raises(ConflictError):
        store.update_manuscript(manuscript.id, fail)
    assert fake_db.update_calls == calls_before
    assert store.get_manuscript(manuscript.id).row_version == manuscript.row_version


def test_deposit_status_column_mirrors_metadata(workflow, author, fake_db) -> None:
    manuscript = workflow.submit(author)
    row = next(r for r in fake_db.rows("manuscripts") if r["id"] == manuscript.id)
    assert row["deposit_status"] is None
