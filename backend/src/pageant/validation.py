from __future__ import annotations

import math
from collections.abc import Mapping

from .domain import Category, Contestant, Judge, Score


class SubmissionError(ValueError):
    """採点の送信内容が不正。1 件でも不正なら何も保存しない。"""


def _to_number(value: object) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        # "1_000" は Python では数値だが送信値としては不正
        if "_" in value:
            return None
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def validate_and_normalize_submission(
    judge: Judge,
    contestant: Contestant,
    raw_scores: Mapping[str, object],
    categories: list[Category],
) -> list[Score]:
    if judge.is_placeholder:
        raise SubmissionError("judge has no credential and cannot submit scores")
    if contestant.event_id != judge.event_id:
        raise SubmissionError("contestant does not belong to the judge's event")
    if not raw_scores:
        raise SubmissionError("scores are required")

    by_id = {c.id: c for c in categories if c.event_id == judge.event_id}
    normalized: list[Score] = []
    for category_id, raw in raw_scores.items():
        category = by_id.get(category_id)
        if category is None:
            raise SubmissionError(f"invalid category: {category_id}")
        value = _to_number(raw)
        if value is None or value < 0 or value > category.max_score:
            raise SubmissionError(
                f"invalid score for {category.name}: must be between 0 and {category.max_score}"
            )
        normalized.append(
            Score(
                event_id=judge.event_id,
                contestant_id=contestant.id,
                category_id=category.id,
                judge_id=judge.id,
                score=value,
            )
        )
    return normalized
