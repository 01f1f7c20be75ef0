from __future__ import annotations

from datetime import datetime, timezone

from .domain import (
    AnonymousJudge,
    Category,
    CategoryBreakdown,
    Contestant,
    ContestantBreakdown,
    Event,
    EventReportResponse,
    EventStatistics,
    Judge,
    JudgeScoreCell,
    NumberedContestant,
    PublicResultsResponse,
    Score,
)
from .ranking import (
    assign_candidate_numbers,
    compute_category_score,
    compute_rankings,
    compute_totals,
    group_scores,
    round_half_up,
)


def anonymize_judges(judges: list[Judge]) -> list[AnonymousJudge]:
    """公開用に審査員名を "Judge 1".. に置き換える。キーは出さない。"""

    return [
        AnonymousJudge(id=j.id, name=f"Judge {i}", role=j.role)
        for i, j in enumerate(judges, start=1)
    ]


def number_contestants(contestants: list[Contestant]) -> list[NumberedContestant]:
    numbers = assign_candidate_numbers(contestants)
    return sorted(
        (NumberedContestant(**c.model_dump(), candidate_number=numbers[c.id]) for c in contestants),
        key=lambda c: c.candidate_number,
    )


def compute_event_statistics(
    contestants: list[Contestant],
    categories: list[Category],
    judges: list[Judge],
    scores: list[Score],
) -> EventStatistics:
    # total_possible_score は max_score の素点合計で、加重合計とは尺度が違う
    total_possible_score = sum(c.max_score for c in categories)
    total_possible_submissions = len(contestants) * len(categories) * len(judges)
    submitted = len(scores)

    if total_possible_submissions > 0:
        completion = int(round_half_up(100 * submitted / total_possible_submissions, 0))
    else:
        completion = 0

    totals = compute_totals(contestants, categories, scores)
    average_total = sum(totals.values()) / len(totals) if totals else 0.0

    return EventStatistics(
        total_contestants=len(contestants),
        total_judges=len(judges),
        total_categories=len(categories),
        total_possible_score=total_possible_score,
        average_total_score=round_half_up(average_total),
        total_scores_submitted=submitted,
        total_possible_submissions=total_possible_submissions,
        completion_percentage=completion,
        generated_at=datetime.now(timezone.utc),
    )


def compute_detailed_scores(
    contestants: list[Contestant],
    categories: list[Category],
    judges: list[Judge],
    scores: list[Score],
) -> list[ContestantBreakdown]:
    grouped = group_scores(scores)
    totals = compute_totals(contestants, categories, scores)
    numbers = assign_candidate_numbers(contestants)
    labels = {j.id: j.name for j in anonymize_judges(judges)}

    results: list[ContestantBreakdown] = []
    for contestant in contestants:
        rows: list[CategoryBreakdown] = []
        for category in categories:
            cell_scores = grouped.get((contestant.id, category.id), [])
            by_judge = {s.judge_id: s.score for s in cell_scores}
            cs = compute_category_score(cell_scores, category.weight, category.id)
            rows.append(
                CategoryBreakdown(
                    category_id=category.id,
                    category_name=category.name,
                    max_score=category.max_score,
                    weight=category.weight,
                    judge_scores=[
                        JudgeScoreCell(
                            judge_id=j.id, judge_name=labels[j.id], score=by_judge.get(j.id)
                        )
                        for j in judges
                    ],
                    average_score=cs.average_display,
                    weighted_score=cs.weighted_display,
                )
            )
        results.append(
            ContestantBreakdown(
                contestant=contestant,
                candidate_number=numbers[contestant.id],
                category_scores=rows,
                total_score=totals[contestant.id],
            )
        )
    return results


def build_public_results(
    event: Event,
    contestants: list[Contestant],
    categories: list[Category],
    judges: list[Judge],
    scores: list[Score],
) -> PublicResultsResponse:
    rankings = compute_rankings(contestants, categories, scores)
    return PublicResultsResponse(
        event=event,
        judges=anonymize_judges(judges),
        categories=categories,
        rankings=rankings,
        total_scores={r.contestant_id: r.total for r in rankings},
    )


def build_event_report(
    event: Event,
    contestants: list[Contestant],
    categories: list[Category],
    judges: list[Judge],
    scores: list[Score],
) -> EventReportResponse:
    return EventReportResponse(
        event=event,
        contestants=number_contestants(contestants),
        judges=anonymize_judges(judges),
        categories=categories,
        rankings=compute_rankings(contestants, categories, scores),
        detailed_scores=compute_detailed_scores(contestants, categories, judges, scores),
        statistics=compute_event_statistics(contestants, categories, judges, scores),
    )
