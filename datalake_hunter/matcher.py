"""Test an input batch against every loaded bloom filter."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from .bloom_filter import BloomFilter


@dataclass
class MatchReport:
    """Per-filter positives, in input order, duplicates kept."""

    matches: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def aggregate_count(self) -> int:
        # Not deduplicated: a value hitting several filters counts once per filter.
        return sum(len(values) for values in self.matches.values())

    def count(self, label: str) -> int:
        return len(self.matches.get(label, ()))

    def matched_values(self) -> Set[str]:
        """Union of every value that hit at least one filter."""
        union: Set[str] = set()
        for values in self.matches.values():
            union.update(values)
        return union

    def rows(self) -> Iterator[Tuple[str, str]]:
        """Yield ``(value, label)`` pairs for export."""
        for label, values in self.matches.items():
            for value in values:
                yield value, label

    def __bool__(self) -> bool:
        return self.aggregate_count > 0


def match_one(batch: Sequence[str], bloom: BloomFilter) -> List[str]:
    return [value for value in batch if value in bloom]


def match(
    batch: Sequence[str],
    filters: Mapping[str, BloomFilter],
    *,
    max_workers: Optional[int] = None,
) -> MatchReport:
    """Return a :class:`MatchReport` of ``batch`` against every filter.

    With ``max_workers`` above one, filters are tested on a thread pool. Each
    worker owns one label, filters are read-only, so no locking is needed.
    Never raises for empty input: no filters or no values give an empty report.
    """
    labels = list(filters)
    if max_workers and max_workers > 1 and len(labels) > 1:
        with ThreadPoolExecutor(max_workers=min(max_workers, len(labels))) as executor:
            results = executor.map(lambda label: match_one(batch, filters[label]), labels)
            return MatchReport(dict(zip(labels, results)))
    return MatchReport({label: match_one(batch, filters[label]) for label in labels})
