from __future__ import annotations

import pytest

from app.core.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.models.decision import DecisionRequest
from app.models.manuscript import Author, ManuscriptStatus
from app.models.revision import RevisionSubmit
from workflow_fixtures import sample_files


def test_submit_assigns_sequential_codes_and_initial_revision(workflow, author, clock) -> None:
    first = workflow.submit(author)
    second = workflow.submit(author, title="Another Paper")

    assert first.manuscript_code == "JF-2026-00001"
    assert second.manuscript_code == "JF-2026-00002"
    assert first.status == ManuscriptStatus.SUBMITTED
    assert first.current_version == 1
    assert [r.version for r in first.revisions] == [1]
    assert first.revisions[0].is_initial is True
    assert first.keywords == ["graphs", "citations"]
    assert first.timeline[-1].event == "Manuscript Submitted"
    assert first.timeline[-1].timestamp == clock()


@pytest.mark.parametrize(
    "overrides,message",
    [
        ({"title": "   "}, "Title is required"),
        ({"title": "x" * 501}, "Title cannot exceed"),
        ({"abstract": ""}, "Abstract is required"),
        ({"authors": []}, "At least one author"),
        ({"files": []}, "At least one manuscript file"),
        (
            {"authors": [Author(name="A", affiliation="X"), Author(name="B", affiliation="Y")]},
            "Exactly one corresponding author",
        ),
        (
            {"authors": [Author(name="A", affiliation="", is_corresponding=True)]},
            "name and an affiliation",
        ),
    ],
)
def test_submit_rejects_invalid_payloads(workflow, author, overrides, message) -> None:
    with pytest.raises(ValidationError) as exc:
        workflow.submit(author, **overrides)
    assert message in exc.value.message


def test_submit_rejects_duplicate_file_ids(workflow, author) -> None:
    files = sample_files("a.pdf", "b.pdf")
    files[1] = files[1].model_copy(update={"file_id": files[0].file_id})
    with pytest.raises(ValidationError):
        workflow.submit(author, files=files)


def test_reviewer_cannot_submit(workflow, reviewers) -> None:
    with pytest.raises(PermissionDeniedError):
        workflow.submit(reviewers[0])


def test_decision_requires_review_completed(workflow, author, editor) -> None:
    manuscript = workflow.submit(author)
    with pytest.raises(InvalidStateError):
        workflow.editorial.record_decision(
            manuscript.id, editor, DecisionRequest(decision="accept", letter="ok")
        )


def test_decision_override_from_submitted_is_recorded(workflow, author, editor) -> None:
    manuscript = workflow.submit(author)
    updated = workflow.editorial.record_decision(
        manuscript.id,
        editor,
        DecisionRequest(decision="reject", letter="Out of scope", override=True),
    )

    assert updated.status == ManuscriptStatus.REJECTED
    assert updated.decision.override is True
    assert "editor override" in updated.timeline[-1].detail


def test_decision_maps_to_status(workflow, author, editor, reviewers) -> None:
    manuscript = workflow.to_review_completed(author, editor, reviewers)
    assert manuscript.status == ManuscriptStatus.REVIEW_COMPLETED

    updated = workflow.editorial.record_decision(
        manuscript.id, editor, DecisionRequest(decision="minor_revision", letter="Fix typos")
    )
    assert updated.status == ManuscriptStatus.REVISION_REQUIRED
    assert updated.decision.decision == "minor_revision"
    assert updated.decision.decided_by == editor.id


def test_terminal_manuscripts_reject_further_decisions(workflow, author, editor, reviewers) -> None:
    manuscript = workflow.to_review_completed(author, editor, reviewers)
    workflow.editorial.record_decision(manuscript.id, editor, DecisionRequest(decision="reject"))

    with pytest.raises(InvalidStateError):
        workflow.editorial.record_decision(
            manuscript.id, editor, DecisionRequest(decision="accept", override=True)
        )


def test_author_cannot_record_decision(workflow, author, editor, reviewers) -> None:
    manuscript = workflow.to_review_completed(author, editor, reviewers)
    with pytest.raises(PermissionDeniedError):
        workflow.editorial.record_decision(manuscript.id, author, DecisionRequest(decision="accept"))


def test_only_assigned_editor_or_admin_can_decide(workflow, author, editor, admin, reviewers, store) -> None:
    manuscript = workflow.to_review_completed(author, editor, reviewers)
    workflow.editorial.assign_editor(manuscript.id, "editor-9", admin)

    with pytest.raises(PermissionDeniedError):
        workflow.editorial.record_decision(manuscript.id, editor, DecisionRequest(decision="accept"))
    assert store.get_manuscript(manuscript.id).status == ManuscriptStatus.REVIEW_COMPLETED

    assigned = editor.__class__(id="editor-9", roles=frozenset({"editor"}))
    decided = workflow.editorial.record_decision(
        manuscript.id, assigned, DecisionRequest(decision="minor_revision")
    )
    assert decided.status == ManuscriptStatus.REVISION_REQUIRED


def test_admin_can_decide_for_assigned_editor(workflow, author, editor, admin, reviewers) -> None:
    manuscript = workflow.to_review_completed(author, editor, reviewers)
    workflow.editorial.assign_editor(manuscript.id, "editor-9", admin)

    decided = workflow.editorial.record_decision(manuscript.id, admin, DecisionRequest(decision="reject"))
    assert decided.status == ManuscriptStatus.REJECTED


def test_internal_notes_hidden_from_author(workflow, author, editor, reviewers) -> None:
    manuscript = workflow.to_review_completed(author, editor, reviewers)
    workflow.editorial.record_decision(
        manuscript.id,
        editor,
        DecisionRequest(decision="major_revision", letter="Expand section 2.", internal_notes="Borderline"),
    )

    seen_by_author = workflow.editorial.get_manuscript(manuscript.id, author)
    assert seen_by_author.decision.letter == "Expand section 2."
    assert seen_by_author.decision.internal_notes is None
    assert [m.decision.internal_notes for m in workflow.editorial.list_manuscripts(author)] == [None]

    seen_by_reviewer = workflow.editorial.get_manuscript(manuscript.id, reviewers[0])
    assert seen_by_reviewer.decision.internal_notes is None

    assert workflow.editorial.get_manuscript(manuscript.id, editor).decision.internal_notes == "Borderline"
    assert workflow.store.get_manuscript(manuscript.id).decision.internal_notes == "Borderline"

    revised = workflow.editorial.submit_revision(manuscript.id, author, RevisionSubmit(files=sample_files("v2.pdf")))
    assert revised.decision.internal_notes is None


def test_revision_increments_version_and_resubmits(workflow, author, editor, reviewers) -> None:
    manuscript = workflow.to_review_completed(author, editor, reviewers)
    workflow.editorial.record_decision(
        manuscript.id, editor, DecisionRequest(decision="major_revision", letter="Rework section 3")
    )

    revised = workflow.editorial.submit_revision(
        manuscript.id,
        author,
        RevisionSubmit(files=sample_files("main-v2.pdf", "response.pdf"), revision_notes="Addressed comments"),
    )

    assert revised.status == ManuscriptStatus.SUBMITTED
    assert revised.current_version == 2
    assert [r.version for r in revised.revisions] == [1, 2]
    assert revised.revisions[1].is_initial is False
    assert revised.revisions[1].revision_notes == "Addressed comments"
    assert [f.original_name for f in revised.files] == ["main-v2.pdf", "response.pdf"]


def test_revision_only_from_revision_required(workflow, author) -> None:
    manuscript = workflow.submit(author)
    with pytest.raises(InvalidStateError):
        workflow.editorial.submit_revision(manuscript.id, author, RevisionSubmit(files=sample_files()))


def test_revision_by_other_author_is_forbidden(workflow, author, editor, reviewers) -> None:
    manuscript = workflow.to_review_completed(author, editor, reviewers)
    workflow.editorial.record_decision(manuscript.id, editor, DecisionRequest(decision="minor_revision"))
    stranger = author.__class__(id="author-2", roles=frozenset({"author"}))

    with pytest.raises(PermissionDeniedError):
        workflow.editorial.submit_revision(manuscript.id, stranger, RevisionSubmit(files=sample_files()))


def test_revision_notes_length_is_limited(workflow, author) -> None:
    manuscript = workflow.submit(author)
    with pytest.raises(ValidationError):
        workflow.editorial.submit_revision(
            manuscript.id, author, RevisionSubmit(files=sample_files(), revision_notes="n" * 2001)
        )


def test_author_can_withdraw_submitted_manuscript(workflow, author, store) -> None:
    manuscript = workflow.submit(author)
    workflow.editorial.delete_manuscript(manuscript.id, author)
    assert store.find_manuscript(manuscript.id) is None


def test_delete_with_reviews_is_conflict(workflow, author, editor, admin, reviewers) -> None:
    manuscript = workflow.submit(author)
    workflow.assign(manuscript.id, editor, reviewers[:1])

    with pytest.raises(ConflictError):
        workflow.editorial.delete_manuscript(manuscript.id, admin)


def test_author_cannot_delete_once_under_review(workflow, author, editor, reviewers) -> None:
    manuscript = workflow.submit(author)
    workflow.assign(manuscript.id, editor, reviewers[:1])

    with pytest.raises(InvalidStateError):
        workflow.editorial.delete_manuscript(manuscript.id, author)


def test_other_author_cannot_view_manuscript(workflow, author, reviewers) -> None:
    manuscript = workflow.submit(author)
    stranger = author.__class__(id="author-2", roles=frozenset({"author"}))

    with pytest.raises(PermissionDeniedError):
        workflow.editorial.get_manuscript(manuscript.id, stranger)
    with pytest.raises(NotFoundError):
        workflow.editorial.get_manuscript("missing", author)


def test_list_and_statistics(workflow, author, editor) -> None:
    workflow.submit(author)
    workflow.submit(author, title="Second")
    other = author.__class__(id="author-2", roles=frozenset({"author"}))
    workflow.submit(other, title="Third")

    assert len(workflow.editorial.list_manuscripts(author)) == 2
    assert len(workflow.editorial.list_manuscripts(editor, status="submitted")) == 3
    with pytest.raises(ValidationError):
        workflow.editorial.list_manuscripts(editor, status="bogus")

    stats = workflow.editorial.get_statistics(editor)
    assert stats["total"] == 3
    assert stats["by_status"]["submitted"] == 3
    assert stats["by_status"]["published"] == 0


def test_assign_editor_records_timeline(workflow, author, editor) -> None:
    manuscript = workflow.submit(author)
    updated = workflow.editorial.assign_editor(manuscript.id, "editor-9", editor)

    assert updated.assigned_editor_id == "editor-9"
    assert updated.timeline[-1].event == "Editor Assigned"
    assert updated.row_version == manuscript.row_version + 1


def test_lost_cas_race_is_retried_against_fresh_state(workflow, author, editor, fake_db, store) -> None:
    manuscript = workflow.submit(author)

    def concurrent_write() -> None:
        store.update_manuscript(manuscript.id, lambda m: m.keywords.append("concurrent"))

    # 第一次写入前插入一次并发修改：CAS 失败后重新加载再写
    fake_db.before_next_update("manuscripts", concurrent_write)
    updated = workflow.editorial.assign_editor(manuscript.id, "editor-9", editor)

    assert "concurrent" in updated.keywords
    assert updated.assigned_editor_id == "editor-9"
    assert updated.row_version == manuscript.row_version + 2


def test_persistent_contention_raises_conflict(workflow, author, editor, fake_db, store) -> None:
    manuscript = workflow.submit(author)

    def bump() -> None:
        rows = fake_db.tables["manuscripts"]
        for row in rows:
            if row["id"] == manuscript.id:
                row["row_version"] += 1

    for _ in range(store.config.cas_max_attempts):
        fake_db.before_next_update("manuscripts", bump)

    with pytest.raises(ConflictError):
        workflow.editorial.assign_editor(manuscript.id, "editor-9", editor)
