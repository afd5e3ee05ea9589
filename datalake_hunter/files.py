"""File helpers: input batches, CSV reports and filter blobs.

All OS-level failures are re-raised as :class:`FileAccessError` naming the
offending path.
"""
from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Sequence, Tuple, Union

from .errors import FileAccessError

PathLike = Union[str, Path]

MATCH_HEADER = ("matching_value", "bloom_filter")
LOOKUP_FIELDS = ("atom_value", "atom_type", "threat_found", "hashkey", "threat_types")


def read_input(path: PathLike) -> List[str]:
    """Read an input batch, one value per line.

    ``.csv`` files contribute the first column of each row. Values are
    stripped, blank entries are skipped, order and duplicates are kept.
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8-sig", newline="") as f:
            if path.suffix.lower() == ".csv":
                rows = (row[0] if row else "" for row in csv.reader(f))
            else:
                rows = iter(f)
            return [value for value in (row.strip() for row in rows) if value]
    except (OSError, UnicodeDecodeError, csv.Error) as exc:
        raise FileAccessError(path, str(exc)) from exc


def write_matches(path: PathLike, rows: Iterable[Tuple[str, str]]) -> int:
    """Write ``(value, label)`` rows as CSV. Returns the number of rows written."""
    path = Path(path)
    written = 0
    try:
        with open(path, "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(MATCH_HEADER)
            for value, label in rows:
                writer.writerow((value, label))
                written += 1
    except OSError as exc:
        raise FileAccessError(path, str(exc)) from exc
    return written


def write_records(
    path: PathLike,
    records: Iterable[Mapping[str, Any]],
    fields: Sequence[str] = LOOKUP_FIELDS,
) -> int:
    """Write authoritative lookup records as CSV, one column per field."""
    path = Path(path)
    written = 0
    try:
        with open(path, "w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=list(fields), extrasaction="ignore")
            writer.writeheader()
            for record in records:
                row = {}
                for field in fields:
                    value = record.get(field, "")
                    if isinstance(value, (list, tuple)):
                        value = "|".join(str(v) for v in value)
                    row[field] = value
                writer.writerow(row)
                written += 1
    except OSError as exc:
        raise FileAccessError(path, str(exc)) from exc
    return written


def read_blob(path: PathLike) -> bytes:
    path = Path(path)
    try:
        return path.read_bytes()
    except OSError as exc:
        raise FileAccessError(path, str(exc)) from exc


def write_blob(path: PathLike, data: bytes) -> None:
    path = Path(path)
    try:
        path.write_bytes(data)
    except OSError as exc:
        raise FileAccessError(path, str(exc)) from exc
