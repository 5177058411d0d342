from __future__ import annotations

import pytest

from app.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from app.models.decision import DecisionRequest
from app.models.revision import ManuscriptFile, RevisionSubmit
from app.services.revision_service import diff_manifests


def _file(file_id: str, name: str, size: int = 100, checksum: str | None = None) -> ManuscriptFile:
    return ManuscriptFile(file_id=file_id, original_name=name, size=size, checksum=checksum)


def test_diff_identifies_added_removed_and_modified() -> None:
    earlier = [_file("a", "main.pdf"), _file("b", "figures.zip"), _file("c", "data.csv")]
    later = [_file("a", "main.pdf", size=150), _file("c", "data.csv"), _file("d", "supplement.pdf")]

    added, modified, removed = diff_manifests(earlier, later)

    assert [c.file_id for c in added] == ["d"]
    assert [c.file_id for c in removed] == ["b"]
    assert [c.file_id for c in modified] == ["a"]
    assert modified[0].previous_size == 100
    assert modified[0].size == 150


def test_rename_with_same_size_is_not_a_modification() -> None:
    added, modified, removed = diff_manifests([_file("a", "draft.pdf")], [_file("a", "final.pdf")])
    assert (added, modified, removed) == ([], [], [])


def test_checksum_change_counts_when_both_sides_have_one() -> None:
    _, modified, _ = diff_manifests(
        [_file("a", "main.pdf", checksum="aaa")], [_file("a", "main.pdf", checksum="bbb")]
    )
    assert [c.file_id for c in modified] == ["a"]

    _, modified, _ = diff_manifests([_file("a", "main.pdf")], [_file("a", "main.pdf", checksum="bbb")])
    assert modified == []


def _revised_manuscript(workflow, author, editor, reviewers):
    manuscript = workflow.to_review_completed(author, editor, reviewers)
    workflow.editorial.record_decision(manuscript.id, editor, DecisionRequest(decision="major_revision"))
    files = [
        ManuscriptFile(file_id="file-0", original_name="main.pdf", size=2500, content_type="application/pdf"),
        ManuscriptFile(file_id="file-9", original_name="response.pdf", size=800, content_type="application/pdf"),
    ]
    workflow.editorial.submit_revision(manuscript.id, author, RevisionSubmit(files=files))
    return manuscript


def test_compare_orders_versions_and_summarizes(workflow, author, editor, reviewers) -> None:
    manuscript = _revised_manuscript(workflow, author, editor, reviewers)

    comparison = workflow.revisions.compare(manuscript.id, 2, 1, author)

    assert comparison.from_version == 1
    assert comparison.to_version == 2
    assert comparison.summary.added == 1
    assert comparison.summary.modified == 1
    assert comparison.summary.removed == 0
    assert comparison.added[0].original_name == "response.pdf"


def test_compare_same_version_is_invalid(workflow, author) -> None:
    manuscript = workflow.submit(author)
    with pytest.raises(ValidationError):
        workflow.revisions.compare(manuscript.id, 1, 1, author)


def test_compare_missing_version_is_not_found(workflow, author) -> None:
    manuscript = workflow.submit(author)
    with pytest.raises(NotFoundError) as exc:
        workflow.revisions.compare(manuscript.id, 1, 3, author)
    assert exc.value.extra["versions"] == [3]


def test_history_is_ordered_and_access_controlled(workflow, author, editor, reviewers) -> None:
    manuscript = _revised_manuscript(workflow, author, editor, reviewers)

    history = workflow.revisions.get_history(manuscript.id, editor)
    assert [r.version for r in history] == [1, 2]
    assert history[0].is_initial is True

    stranger = author.__class__(id="author-2", roles=frozenset({"author"}))
    with pytest.raises(PermissionDeniedError):
        workflow.revisions.get_history(manuscript.id, stranger)


def _revise(workflow, author, editor, reviewers, v1_files, v2_files):
    manuscript = workflow.submit(author, files=v1_files)
    assigned = workflow.assign(manuscript.id, editor, reviewers[:2])
    for review, reviewer in zip(assigned, reviewers[:2]):
        workflow.complete(review, reviewer)
    workflow.editorial.record_decision(manuscript.id, editor, DecisionRequest(decision="minor_revision"))
    workflow.editorial.submit_revision(manuscript.id, author, RevisionSubmit(files=v2_files))
    return manuscript


def test_carried_over_file_with_one_new_file(workflow, author, editor, reviewers) -> None:
    main = _file("main", "main.pdf", size=2000)
    manuscript = _revise(
        workflow, author, editor, reviewers, [main], [main, _file("cover", "cover-letter.pdf", size=300)]
    )

    comparison = workflow.revisions.compare(manuscript.id, 1, 2, editor)

    assert (comparison.summary.added, comparison.summary.removed, comparison.summary.modified) == (1, 0, 0)
    assert [c.file_id for c in comparison.added] == ["cover"]


def test_compare_is_independent_of_argument_order(workflow, author, editor, reviewers) -> None:
    main = _file("main", "main.pdf", size=2000)
    manuscript = _revise(
        workflow,
        author,
        editor,
        reviewers,
        [main, _file("G", "old-figures.zip", size=500)],
        [main, _file("F", "figures.zip", size=700)],
    )

    forward = workflow.revisions.compare(manuscript.id, 1, 2, editor)
    backward = workflow.revisions.compare(manuscript.id, 2, 1, editor)

    assert forward == backward
    assert [c.file_id for c in forward.added] == ["F"]
    assert [c.file_id for c in forward.removed] == ["G"]
    assert forward.modified == []
