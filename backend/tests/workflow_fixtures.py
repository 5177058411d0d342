"""
测试辅助：可控时钟、假 DOI 注册方、JWT 头、以及把稿件推进到指定状态的流程捷径。
"""

from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import jwt

from app.core.roles import Actor
from app.models.decision import DecisionRequest
from app.models.issue import IssueCreate
from app.models.manuscript import Author, Manuscript, ManuscriptSubmit
from app.models.reviews import (
    InvitationResponse,
    Recommendation,
    Review,
    ReviewAssignRequest,
    ReviewRatings,
    ReviewSubmitRequest,
)
from app.models.revision import ManuscriptFile
from app.services.crossref_client import generate_doi
from app.services.doi_service import DoiService
from app.services.editorial_service import EditorialService
from app.services.manuscript_store import ManuscriptStore
from app.services.notification_service import NotificationService
from app.services.publishing_service import PublishingService
from app.services.revision_service import RevisionService
from app.services.reviewer_service import ReviewerService


class Clock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: Any) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class FakeRegistrar:
    """
    假 DOI 注册方：按队列 / 按稿件返回结果。

    outcome 取值：None（成功）、Exception 实例（抛出）、dict（原样返回）、"hang"（永不返回）。
    """

    def __init__(self, prefix: str = "10.12345", delay: float = 0.0) -> None:
        self.prefix = prefix
        self.delay = delay
        self.queue: list[Any] = []
        self.by_manuscript: dict[str, Any] = {}
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    def fail_next(self, exc: Optional[BaseException] = None) -> None:
        self.queue.append(exc or RuntimeError("registrar unavailable"))

    async def submit_deposit(self, manuscript: Manuscript) -> Any:
        self.calls.append(manuscript.id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if manuscript.id in self.by_manuscript:
                outcome = self.by_manuscript[manuscript.id]
            elif self.queue:
                outcome = self.queue.pop(0)
            else:
                outcome = None
            if outcome == "hang":
                await asyncio.sleep(3600)
            if isinstance(outcome, BaseException):
                raise outcome
            if isinstance(outcome, dict):
                return outcome
            return {
                "doi": generate_doi(self.prefix, manuscript.manuscript_code),
                "batch_id": f"batch-{len(self.calls)}",
                "status_code": 200,
            }
        finally:
            self.active -= 1


def generate_test_token(actor: Actor) -> str:
    """
    生成用于测试的 JWT（角色放在 app_metadata.roles）
    """
    secret = os.environ.get("SUPABASE_JWT_SECRET", "mock-secret-replace-later")
    now = datetime.now(timezone.utc)
    payload = {
        "sub": actor.id,
        "email": actor.email,
        "aud": "authenticated",
        "exp": int((now + timedelta(hours=1)).timestamp()),
        "iat": int(now.timestamp()),
        "role": "authenticated",
        "app_metadata": {"roles": sorted(actor.roles)},
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(actor: Actor) -> dict:
    return {"Authorization": f"Bearer {generate_test_token(actor)}"}


def sample_files(*names: str) -> list[ManuscriptFile]:
    names = names or ("main.pdf",)
    return [
        ManuscriptFile(
            file_id=f"file-{i}",
            original_name=name,
            size=1000 * (i + 1),
            content_type="application/pdf",
        )
        for i, name in enumerate(names)
    ]


def sample_submission(**overrides: Any) -> ManuscriptSubmit:
    data: dict[str, Any] = {
        "title": "Graph Methods for Citation Analysis",
        "abstract": "We study citation graphs.",
        "keywords": ["graphs", "citations", "Graphs"],
        "authors": [
            Author(name="Ada Lovelace", affiliation="Analytical Engines Ltd", is_corresponding=True),
            Author(name="Charles Babbage", affiliation="Cambridge"),
        ],
        "files": sample_files(),
    }
    data.update(overrides)
    return ManuscriptSubmit(**data)


def good_review(recommendation: Recommendation = Recommendation.ACCEPT, score: int = 4) -> ReviewSubmitRequest:
    return ReviewSubmitRequest(
        ratings=ReviewRatings(originality=score, methodology=score, clarity=score, significance=score),
        comments_for_author="Solid work with minor issues.",
        comments_for_editor="Recommend publication.",
        recommendation=recommendation,
    )


class Workflow:
    """把服务装配在同一个 store 上，并提供推进状态的捷径"""

    def __init__(self, store: ManuscriptStore, registrar: FakeRegistrar) -> None:
        self.store = store
        self.registrar = registrar
        self.notifications = NotificationService(store.client)
        self.editorial = EditorialService(store, self.notifications, config=store.config)
        self.reviews = ReviewerService(store, self.notifications, self.editorial, config=store.config)
        self.revisions = RevisionService(store, self.editorial)
        self.doi = DoiService(store, registrar=registrar, config=store.config)
        self.publishing = PublishingService(store, self.doi, self.notifications, config=store.config)

    def submit(self, author: Actor, **overrides: Any) -> Manuscript:
        return self.editorial.submit_manuscript(author, sample_submission(**overrides))

    def assign(self, manuscript_id: str, editor: Actor, reviewers: list[Actor]) -> list[Review]:
        return self.reviews.assign_reviewers(
            manuscript_id, editor, ReviewAssignRequest(reviewer_ids=[r.id for r in reviewers])
        )

    def complete(self, review: Review, reviewer: Actor, recommendation: Recommendation = Recommendation.ACCEPT) -> Review:
        self.reviews.respond_to_invitation(review.id, reviewer, InvitationResponse(response="accepted"))
        return self.reviews.submit_review(review.id, reviewer, good_review(recommendation))

    def to_review_completed(self, author: Actor, editor: Actor, reviewers: list[Actor]) -> Manuscript:
        manuscript = self.submit(author)
        assigned = self.assign(manuscript.id, editor, reviewers[:2])
        for review, reviewer in zip(assigned, reviewers[:2]):
            self.complete(review, reviewer)
        return self.store.get_manuscript(manuscript.id)

    def to_accepted(self, author: Actor, editor: Actor, reviewers: list[Actor]) -> Manuscript:
        manuscript = self.to_review_completed(author, editor, reviewers)
        return self.editorial.record_decision(
            manuscript.id, editor, DecisionRequest(decision="accept", letter="Congratulations")
        )

    async def to_published(
        self, author: Actor, editor: Actor, reviewers: list[Actor], *, issue_number: int = 1
    ) -> Manuscript:
        manuscript = self.to_accepted(author, editor, reviewers)
        issue = self.publishing.create_issue(
            editor, IssueCreate(volume=1, issue_number=issue_number, year=2026)
        )
        self.publishing.assign_to_issue(issue.id, manuscript.id, editor)
        return await self.publishing.publish_manuscript(manuscript.id, editor)
