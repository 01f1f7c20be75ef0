from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal, localcontext

from .domain import Category, CategoryScore, Contestant, RankedEntry, Score

# float の最大値 (約 1.8e308) の整数部を丸めても桁あふれしない精度
_ROUNDING_PRECISION = 400


def round_half_up(value: float, places: int = 2) -> float:
    """表示用の四捨五入（round() の偶数丸めは使わない）。"""

    quantum = Decimal(1).scaleb(-places)
    with localcontext() as ctx:
        ctx.prec = _ROUNDING_PRECISION
        return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def compute_category_score(
    scores: Iterable[Score], weight: float, category_id: str = ""
) -> CategoryScore:
    """1 出場者 × 1 部門の審査員スコアを平均と加重点にまとめる。

    未採点なら平均・加重点ともに 0。丸めは *_display だけに適用し、
    合計点には丸める前の weighted を使う。
    """

    values = [s.score for s in scores]
    if not values:
        return CategoryScore(
            category_id=category_id,
            average=0.0,
            weighted=0.0,
            average_display=0.0,
            weighted_display=0.0,
        )

    average = sum(values) / len(values)
    weighted = average * weight
    return CategoryScore(
        category_id=category_id,
        average=average,
        weighted=weighted,
        average_display=round_half_up(average),
        weighted_display=round_half_up(weighted),
    )


def group_scores(scores: Iterable[Score]) -> dict[tuple[str, str], list[Score]]:
    grouped: dict[tuple[str, str], list[Score]] = defaultdict(list)
    for s in scores:
        grouped[(s.contestant_id, s.category_id)].append(s)
    return grouped


def compute_totals(
    contestants: list[Contestant],
    categories: list[Category],
    scores: Iterable[Score],
) -> dict[str, float]:
    grouped = group_scores(scores)
    totals: dict[str, float] = {}
    for contestant in contestants:
        total = 0.0
        for category in categories:
            cs = compute_category_score(
                grouped.get((contestant.id, category.id), []), category.weight, category.id
            )
            total += cs.weighted
        totals[contestant.id] = round_half_up(total)
    return totals


def assign_candidate_numbers(contestants: list[Contestant]) -> dict[str, int]:
    """名前のアルファベット順で 1 から振る出場番号。保存せず毎回計算する。"""

    ordered = sorted(contestants, key=lambda c: (c.name.casefold(), c.name))
    return {c.id: i for i, c in enumerate(ordered, start=1)}


def _ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def placement_label(rank: int) -> str:
    if rank < 1:
        raise ValueError("rank must be >= 1")
    if rank == 1:
        return "Winner"
    return f"{_ordinal(rank - 1)} Runner-Up"


def compute_rankings(
    contestants: list[Contestant],
    categories: list[Category],
    scores: Iterable[Score],
) -> list[RankedEntry]:
    """合計点の降順に並べ、並び順どおりに 1..N の順位を振る。

    同点でも同順位にはしない（安定ソートなので入力順が先のほうが上位）。
    """

    totals = compute_totals(contestants, categories, scores)
    numbers = assign_candidate_numbers(contestants)

    ordered = sorted(contestants, key=lambda c: -totals[c.id])
    return [
        RankedEntry(
            contestant_id=c.id,
            total=totals[c.id],
            rank=rank,
            candidate_number=numbers[c.id],
            label=placement_label(rank),
            contestant=c,
        )
        for rank, c in enumerate(ordered, start=1)
    ]
