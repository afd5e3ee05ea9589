"""Build bloom filters from a corpus of values."""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from .bloom_filter import BloomFilter
from .errors import EmptyCorpusError

logger = logging.getLogger(__name__)


def build_from_corpus(
    values: Iterable[str],
    error_rate: float,
    *,
    source: Optional[str] = None,
) -> BloomFilter:
    """Build a filter holding every value of ``values``.

    The corpus is deduplicated first and its size is used as the filter
    capacity, so the configured ``error_rate`` holds once the filter is full.

    Raises:
        EmptyCorpusError: If ``values`` is empty.
        InvalidRateError: If ``error_rate`` is outside (0, 1).
    """
    corpus = list(dict.fromkeys(values))
    if not corpus:
        raise EmptyCorpusError(source)

    bloom = BloomFilter(capacity=len(corpus), error_rate=error_rate)
    bloom.update(corpus)
    # The corpus is already distinct, so its size is the exact insertion count.
    bloom.count = len(corpus)
    logger.debug(
        "Built bloom filter%s: %d values, %d bits, %d hashes",
        f" for {source}" if source else "",
        len(corpus),
        bloom.size,
        bloom.num_hashes,
    )
    return bloom
