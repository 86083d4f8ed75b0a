# -*- coding: utf-8 -*-
"""
Summary statistics over a comparison list.

Always recomputed from comparisons and their attached winners; never stored.
"""

from typing import Iterable

from reconciler.types import Comparison, ComparisonStatus, Summary, WinnerKind


def agreement_rate(matches: int, compared: int) -> int:
    """Percentage of agreeing emails, rounded half up; 0 when nothing was compared."""
    if compared <= 0:
        return 0
    return (200 * matches + compared) // (2 * compared)


def summarize(comparisons: Iterable[Comparison]) -> Summary:
    counts = {status: 0 for status in ComparisonStatus}
    winners_designated = 0
    excluded = 0

    for comparison in comparisons:
        counts[comparison.status] += 1
        winner = comparison.winner
        if winner is None:
            continue
        if winner.kind is WinnerKind.EXCLUDE:
            excluded += 1
        elif comparison.status is not ComparisonStatus.MATCH:
            winners_designated += 1

    matches = counts[ComparisonStatus.MATCH]
    compared = sum(counts.values())
    return Summary(
        total=compared,
        matches=matches,
        different=counts[ComparisonStatus.DIFFERENT],
        only_a=counts[ComparisonStatus.ONLY_A],
        only_b=counts[ComparisonStatus.ONLY_B],
        winners_designated=winners_designated,
        excluded=excluded,
        agreement_rate=agreement_rate(matches, compared),
    )
