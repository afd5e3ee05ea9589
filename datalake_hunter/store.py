"""Assemble the working set of named bloom filters.

Filters come either from blobs on disk (labelled by file stem) or are built on
demand from Datalake query hashes (labelled by the query hash itself).
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from . import files
from .bloom_filter import BloomFilter
from .builder import build_from_corpus
from .config import default_max_workers
from .errors import DecodeError, DuplicateLabelError, FileAccessError, HunterError

logger = logging.getLogger(__name__)

Fetch = Callable[[str], Sequence[str]]
ProgressCallback = Callable[[str, str], None]
LoadErrorCallback = Callable[[Path, HunterError], None]


def label_for_path(path: Union[str, Path]) -> str:
    return Path(path).stem


def load_filter(path: Union[str, Path]) -> BloomFilter:
    """Read and decode a single blob, tagging any failure with ``path``."""
    data = files.read_blob(path)
    try:
        return BloomFilter.from_bytes(data)
    except DecodeError as exc:
        raise DecodeError(exc.message, path=path) from exc


def load_from_blobs(
    paths: Iterable[Union[str, Path]],
    *,
    on_error: Optional[LoadErrorCallback] = None,
) -> Dict[str, BloomFilter]:
    """Load every blob in ``paths``, all or nothing by default.

    With ``on_error``, an unreadable or undecodable blob is reported to the
    callback and left out instead of aborting the load. Duplicate labels
    always raise.

    Raises:
        FileAccessError: A path could not be read.
        DecodeError: A path does not hold a valid filter.
        DuplicateLabelError: Two paths share the same stem.
    """
    filters: Dict[str, BloomFilter] = {}
    for path in paths:
        label = label_for_path(path)
        if label in filters:
            raise DuplicateLabelError(label)
        try:
            filters[label] = load_filter(path)
        except (FileAccessError, DecodeError) as exc:
            if on_error is None:
                raise
            on_error(Path(path), exc)
            continue
        logger.info("Loaded bloom filter %s from %s", label, path)
    return filters


@dataclass
class TokenBuildResult:
    """Outcome of :func:`build_from_tokens`: built filters plus per-token failures."""

    filters: Dict[str, BloomFilter] = field(default_factory=dict)
    errors: Dict[str, HunterError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def _build_one(token: str, fetch: Fetch, error_rate: float) -> BloomFilter:
    values = fetch(token)
    return build_from_corpus(values, error_rate, source=token)


def build_from_tokens(
    tokens: Sequence[str],
    error_rate: float,
    fetch: Fetch,
    *,
    max_workers: Optional[int] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> TokenBuildResult:
    """Fetch the corpus of each token and build one filter per token.

    Fetches run on a bounded thread pool. A failing token (empty corpus,
    remote error) is recorded in ``errors`` and does not affect the others;
    callers wanting all-or-nothing check :attr:`TokenBuildResult.ok`.
    ``on_progress`` receives ``(token, status)`` with status ``"started"``,
    ``"done"`` or ``"failed"``.
    """
    unique_tokens = list(dict.fromkeys(tokens))
    if len(unique_tokens) != len(tokens):
        duplicate = next(t for t in tokens if tokens.count(t) > 1)
        raise DuplicateLabelError(duplicate)

    result = TokenBuildResult()
    if not unique_tokens:
        return result

    notify = on_progress or (lambda token, status: None)
    workers = min(max_workers or default_max_workers(), len(unique_tokens))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="hunter-fetch") as executor:
        futures = {}
        for token in unique_tokens:
            notify(token, "started")
            futures[executor.submit(_build_one, token, fetch, error_rate)] = token

        for future in as_completed(futures):
            token = futures[future]
            try:
                result.filters[token] = future.result()
            except HunterError as exc:
                logger.error("Could not build bloom filter for %s: %s", token, exc)
                result.errors[token] = exc
                notify(token, "failed")
            else:
                notify(token, "done")
    return result


def save_filter(bloom: BloomFilter, path: Union[str, Path]) -> Path:
    path = Path(path)
    files.write_blob(path, bloom.to_bytes())
    logger.info("Saved bloom filter to %s", path)
    return path


def save_filters(
    filters: Mapping[str, BloomFilter],
    directory: Union[str, Path],
    suffix: str = ".bloom",
) -> List[Path]:
    """Persist each filter as ``<directory>/<label><suffix>``."""
    directory = Path(directory)
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise FileAccessError(directory, str(exc)) from exc
    return [save_filter(bloom, directory / f"{label}{suffix}") for label, bloom in filters.items()]


def merge_filters(*groups: Mapping[str, BloomFilter]) -> Dict[str, BloomFilter]:
    """Combine several label mappings, refusing to overwrite a label."""
    merged: Dict[str, BloomFilter] = {}
    for group in groups:
        for label, bloom in group.items():
            if label in merged:
                raise DuplicateLabelError(label)
            merged[label] = bloom
    return merged
