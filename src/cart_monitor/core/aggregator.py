"""Fold per-variant outcomes into a batch report."""

from __future__ import annotations

from typing import TYPE_CHECKING

from cart_monitor.models.results import CartAddAllResult, SkuAddResult


if TYPE_CHECKING:
    from collections.abc import Iterable


class ResultAggregator:
    """Accumulates results in encounter order; no I/O."""

    def __init__(self) -> None:
        self._results: list[SkuAddResult] = []

    def add(self, result: SkuAddResult) -> None:
        self._results.append(result)

    def extend(self, results: Iterable[SkuAddResult]) -> None:
        for result in results:
            self.add(result)

    def __len__(self) -> int:
        return len(self._results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self._results if r.success)

    def build(self) -> CartAddAllResult:
        results = list(self._results)
        success = sum(1 for r in results if r.success)
        return CartAddAllResult(
            total_skus=len(results),
            success_count=success,
            failed_count=len(results) - success,
            results=results,
        )


def aggregate_results(results: Iterable[SkuAddResult]) -> CartAddAllResult:
    aggregator = ResultAggregator()
    aggregator.extend(results)
    return aggregator.build()
