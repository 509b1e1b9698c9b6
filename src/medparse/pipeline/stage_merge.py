"""Merge Stage - Combine per-page and per-strategy extraction results.

Level 1 folds the pages of one strategy into a document-level result.
Level 2 reconciles the three strategies with fixed precedence.
"""

import logging
from typing import Optional, Sequence

from medparse.models import (
    STRATEGY_PRECEDENCE,
    ExtractionStrategy,
    MergedHealthRecord,
    PageExtractionResult,
    PageProvenance,
    StrategyResult,
    TestResultEntry,
)

logger = logging.getLogger(__name__)


def _usable(entry: Optional[TestResultEntry]) -> bool:
    return entry is not None and entry.value is not None


def merge_pages(
    page_results: Sequence[PageExtractionResult],
    strategy: Optional[ExtractionStrategy] = None,
) -> StrategyResult:
    """Level-1 merge of one strategy's pages.

    Test results are first-wins: each key takes the entry from the lowest
    page index where it has a value. Name and date are last-wins over
    non-empty values.

    Args:
        page_results: Results for one strategy, any order.
        strategy: Strategy label (inferred from the results if omitted).

    Returns:
        StrategyResult with 1-indexed page provenance.
    """
    ordered = sorted(page_results, key=lambda result: result.page_index)
    if strategy is None:
        strategy = ordered[0].strategy if ordered else ExtractionStrategy.TOTAL

    test_result: dict[str, TestResultEntry] = {}
    pages: dict[str, PageProvenance] = {}
    for page in ordered:
        for key, entry in page.test_result.items():
            if key in test_result or not _usable(entry):
                continue
            test_result[key] = entry
            pages[key] = PageProvenance(page=page.page_index + 1)

    name, date = "", ""
    for page in ordered:
        if page.name:
            name = page.name
        if page.date:
            date = page.date

    logger.debug(
        "Merged %d page(s) for %s into %d test result(s)",
        len(ordered),
        strategy.value,
        len(test_result),
    )
    return StrategyResult(
        strategy=strategy,
        name=name,
        date=date,
        test_result=test_result,
        pages=pages,
    )


def reconcile(
    total: StrategyResult,
    text_only: StrategyResult,
    image_only: StrategyResult,
) -> tuple[MergedHealthRecord, dict[str, PageProvenance]]:
    """Level-2 merge across strategies.

    Each key takes the first strategy in TOTAL > TEXT_ONLY > IMAGE_ONLY order
    that has a value for it; keys without any value are dropped. Name and
    date always come from TOTAL.

    Returns:
        Final record and its page provenance map.
    """
    by_strategy = {
        ExtractionStrategy.TOTAL: total,
        ExtractionStrategy.TEXT_ONLY: text_only,
        ExtractionStrategy.IMAGE_ONLY: image_only,
    }

    keys: dict[str, None] = {}
    for strategy in STRATEGY_PRECEDENCE:
        keys.update(dict.fromkeys(by_strategy[strategy].test_result))

    test_result: dict[str, TestResultEntry] = {}
    pages: dict[str, PageProvenance] = {}
    for key in keys:
        for strategy in STRATEGY_PRECEDENCE:
            result = by_strategy[strategy]
            entry = result.test_result.get(key)
            if _usable(entry):
                test_result[key] = entry
                if key in result.pages:
                    pages[key] = result.pages[key]
                break

    record = MergedHealthRecord(name=total.name, date=total.date, test_result=test_result)
    logger.info(
        "Reconciled %d test result(s) (total=%d, text=%d, image=%d)",
        len(test_result),
        len(total.test_result),
        len(text_only.test_result),
        len(image_only.test_result),
    )
    return record, pages


def to_record(result: StrategyResult) -> tuple[MergedHealthRecord, dict[str, PageProvenance]]:
    """Final record from a single Level-1 result (vision-only fallback)."""
    test_result = {key: entry for key, entry in result.test_result.items() if _usable(entry)}
    pages = {key: page for key, page in result.pages.items() if key in test_result}
    return MergedHealthRecord(name=result.name, date=result.date, test_result=test_result), pages
