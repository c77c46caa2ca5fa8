"""Admin dashboard figures derived from the review list."""

from typing import List, Sequence

from ..domain.models import Review, Sentiment, parse_iso


def review_stats(reviews: Sequence[Review]) -> dict:
    """Totals per sentiment, average score and share of positive reviews."""
    total = len(reviews)
    counts = {s.value: 0 for s in Sentiment}
    for review in reviews:
        counts[review.sentiment.value] += 1

    average = round(sum(r.sentiment_score for r in reviews) / total, 3) if total else 0.0
    positive = counts[Sentiment.POSITIVE.value]

    return {
        "total": total,
        "by_sentiment": counts,
        "average_score": average,
        "positive_rate": round(positive / total * 100, 1) if total else 0,
        "unanswered": sum(1 for r in reviews if not r.admin_reply),
    }


def recent_negative(reviews: Sequence[Review], limit: int = 5) -> List[Review]:
    """Newest negative reviews first - the ones an admin should answer."""
    negative = [r for r in reviews if r.sentiment == Sentiment.NEGATIVE]
    negative.sort(key=lambda r: parse_iso(r.created_at), reverse=True)
    return negative[:limit]
