"""
Decision Aggregator

中文注释:
- 纯函数：只根据审稿记录计算汇总，供编辑参考；永远不会自动做出决策。
- “是否可决策”的两条规则：已完成审稿数 >= min_reviewers，且没有“已逾期却从未催办”的进行中审稿。
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from app.models.reviews import (
    Recommendation,
    Review,
    ReviewAggregate,
    ReviewerScore,
    ReviewStatus,
)


def aggregate_reviews(
    reviews: Iterable[Review],
    *,
    manuscript_id: str,
    min_reviewers: int,
    now: datetime,
    review_round: Optional[int] = None,
) -> ReviewAggregate:
    items = list(reviews)
    if review_round is not None:
        items = [r for r in items if r.review_round == review_round]

    today = now.date()
    counts = {rec.value: 0 for rec in Recommendation}
    scores: list[ReviewerScore] = []
    blocking: list[str] = []

    for review in items:
        if review.status == ReviewStatus.COMPLETED and review.recommendation and review.ratings:
            counts[review.recommendation.value] += 1
            scores.append(
                ReviewerScore(
                    review_id=review.id,
                    reviewer_id=review.reviewer_id,
                    recommendation=review.recommendation,
                    average_rating=round(review.ratings.average(), 2),
                )
            )
        elif review.is_overdue(today) and not review.reminders_sent:
            blocking.append(review.id)

    mean_rating = None
    if scores:
        mean_rating = round(sum(s.average_rating for s in scores) / len(scores), 2)

    aggregate = ReviewAggregate(
        manuscript_id=manuscript_id,
        review_round=review_round,
        total_reviews=len(items),
        completed_count=len(scores),
        min_reviewers=min_reviewers,
        recommendation_counts=counts,
        mean_rating=mean_rating,
        reviewer_scores=scores,
        eligible_for_decision=len(scores) >= min_reviewers and not blocking,
        blocking_review_ids=blocking,
    )
    aggregate.summary = summarize_aggregate(aggregate)
    return aggregate


def summarize_aggregate(aggregate: ReviewAggregate) -> str:
    parts = [f"{aggregate.completed_count}/{aggregate.min_reviewers} required reviews completed"]
    if aggregate.completed_count:
        recs = ", ".join(
            f"{key}: {count}" for key, count in aggregate.recommendation_counts.items() if count
        )
        parts.append(recs)
        parts.append(f"mean rating {aggregate.mean_rating:.2f}")
    if aggregate.blocking_review_ids:
        parts.append(f"{len(aggregate.blocking_review_ids)} overdue without reminder")
    parts.append("eligible for decision" if aggregate.eligible_for_decision else "not yet eligible")
    return "; ".join(parts)
