from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.core.errors import InvalidStateError
from app.models.doi import DepositStatus, DoiMetadata, is_valid_doi
from app.models.manuscript import ManuscriptStatus, normalize_status
from app.models.reviews import ReviewStatus

NOW = datetime(2026, 3, 2, tzinfo=timezone.utc)


def test_manuscript_transition_table() -> None:
    assert ManuscriptStatus.allowed_next("submitted") == {"under_review"}
    assert ManuscriptStatus.allowed_next("under_review") == {"review_completed"}
    assert ManuscriptStatus.allowed_next("review_completed") == {
        "revision_required",
        "accepted",
        "rejected",
    }
    assert ManuscriptStatus.allowed_next("revision_required") == {"submitted"}
    assert ManuscriptStatus.allowed_next("accepted") == {"published"}


@pytest.mark.parametrize("status", ["rejected", "published"])
def test_terminal_states_have_no_successors(status: str) -> None:
    assert ManuscriptStatus.allowed_next(status) == set()
    assert status in ManuscriptStatus.terminal()


def test_normalize_status_handles_legacy_and_unknown_values() -> None:
    assert normalize_status(" Under Review ") == "under_review"
    assert normalize_status("revisions_required") == "revision_required"
    assert normalize_status("nope") is None
    assert normalize_status(None) is None


def test_review_status_is_monotonic() -> None:
    assert ReviewStatus.allowed_next("pending_invitation") == {"accepted", "declined"}
    assert ReviewStatus.allowed_next("accepted") == {"in_progress"}
    assert ReviewStatus.allowed_next("in_progress") == {"completed"}
    assert ReviewStatus.allowed_next("completed") == set()
    assert ReviewStatus.allowed_next("declined") == set()


def test_deposit_status_table() -> None:
    assert DepositStatus.allowed_next("not_assigned") == {"pending"}
    assert DepositStatus.allowed_next("pending") == {"processing"}
    assert DepositStatus.allowed_next("processing") == {"success", "failed"}
    assert DepositStatus.allowed_next("failed") == {"pending"}
    assert DepositStatus.allowed_next("success") == set()


def test_doi_metadata_rejects_skipping_states() -> None:
    meta = DoiMetadata()
    with pytest.raises(InvalidStateError):
        meta.transition(DepositStatus.PROCESSING)


def test_record_attempt_appends_exactly_one_entry() -> None:
    meta = DoiMetadata()
    meta.transition(DepositStatus.PENDING)
    meta.transition(DepositStatus.PROCESSING)
    meta.record_attempt(succeeded=False, now=NOW, performed_by="e1", error="boom")

    assert meta.deposit_status == DepositStatus.FAILED
    assert meta.deposit_error == "boom"
    assert meta.deposit_attempts == len(meta.deposit_history) == 1

    meta.transition(DepositStatus.PENDING)
    meta.transition(DepositStatus.PROCESSING)
    meta.record_attempt(succeeded=True, now=NOW, performed_by="e1", doi="10.12345/jf.2026.00001")

    assert meta.deposit_status == DepositStatus.SUCCESS
    assert meta.deposit_error is None
    assert meta.doi == "10.12345/jf.2026.00001"
    assert [h.attempt_number for h in meta.deposit_history] == [1, 2]


def test_record_attempt_requires_processing() -> None:
    meta = DoiMetadata()
    with pytest.raises(InvalidStateError):
        meta.record_attempt(succeeded=True, now=NOW, performed_by="e1", doi="10.1234/x")


def test_manual_assignment_is_flagged_and_counted() -> None:
    meta = DoiMetadata(deposit_status=DepositStatus.FAILED)
    entry = meta.apply_manual_assignment(doi="10.5555/manual.1", now=NOW, performed_by="admin")

    assert entry.manual is True
    assert meta.deposit_status == DepositStatus.SUCCESS
    assert meta.doi == "10.5555/manual.1"
    assert meta.deposit_attempts == len(meta.deposit_history) == 1


@pytest.mark.parametrize(
    "value,expected",
    [
        ("10.12345/jf.2026.00001", True),
        ("10.1000/182", True),
        ("10.123/short-registrant", False),
        ("11.12345/not-ten", False),
        ("10.12345/has space", False),
        ("", False),
    ],
)
def test_doi_format(value: str, expected: bool) -> None:
    assert is_valid_doi(value) is expected
