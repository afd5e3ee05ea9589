"""Confirm probabilistic hits against the authoritative source."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Mapping

logger = logging.getLogger(__name__)

Confirm = Callable[[list], Mapping[str, Mapping[str, Any]]]


@dataclass(frozen=True)
class ConfirmationResult:
    expected_count: int
    records: Dict[str, Mapping[str, Any]] = field(default_factory=dict)

    @property
    def authoritative_count(self) -> int:
        return len(self.records)

    @property
    def discrepancy(self) -> int:
        """Probabilistic hits the source could not confirm (may be negative)."""
        return self.expected_count - self.authoritative_count

    @property
    def has_discrepancy(self) -> bool:
        return self.discrepancy != 0


def reconcile(
    matched_values: Iterable[str],
    confirm: Confirm,
    aggregate_count: int,
) -> ConfirmationResult:
    """Look up the deduplicated ``matched_values`` once through ``confirm``.

    A count that differs from ``aggregate_count`` is expected with false
    positives or overlapping filters; it is logged, never raised. Errors from
    ``confirm`` propagate untouched.
    """
    values = sorted(set(matched_values))
    records: Dict[str, Mapping[str, Any]] = {}
    if values:
        records = dict(confirm(values))

    result = ConfirmationResult(expected_count=aggregate_count, records=records)
    if result.has_discrepancy:
        logger.warning(
            "Bloom filters matched %d values but Datalake confirmed %d (%d distinct values checked)",
            aggregate_count,
            result.authoritative_count,
            len(values),
        )
    else:
        logger.info("Datalake confirmed all %d matched values", result.authoritative_count)
    return result
