"""Bloom filter sized from a capacity and a target false positive rate.

Each value is hashed once with xxHash64; every one of the k bit positions is
then an independent MurmurHash3 (mmh3) hash of that digest under its own seed,
so positions never fall into the short cycles an arithmetic progression hits
on small bit arrays. Filters serialize to a small versioned binary blob
so they can be shared between runs and machines.
"""
from __future__ import annotations

import math
import struct
from typing import Iterable, Iterator

import mmh3
import xxhash

from .errors import DecodeError, InvalidRateError, ConfigError


MAGIC = b"DLHB"
FORMAT_VERSION = 2
MIN_BITS = 64
_SEED_MASK = 0xFFFFFFFF

# magic, version, num_bits, num_hashes, seed1, seed2, capacity, count, error_rate
_HEADER = struct.Struct(">4sBQIIIQQd")


def optimal_parameters(capacity: int, error_rate: float) -> tuple[int, int]:
    """Return ``(num_bits, num_hashes)`` for ``capacity`` items at ``error_rate``."""
    num_bits = math.ceil(-capacity * math.log(error_rate) / (math.log(2) ** 2))
    num_bits = max(MIN_BITS, num_bits)
    # Optimal k = (m / n) ln 2 = -log2(p), taken before the MIN_BITS floor.
    num_hashes = max(1, round(-math.log2(error_rate)))
    return num_bits, num_hashes


class BloomFilter:
    """Bloom filter backed by a bytearray bitset."""

    def __init__(
        self,
        capacity: int,
        error_rate: float,
        *,
        seed1: int = 0,
        seed2: int = 0,
    ) -> None:
        """Initialize an empty filter.

        Args:
            capacity: Number of values the filter is expected to hold.
            error_rate: Target false positive probability, in (0, 1).
            seed1: Seed for MurmurHash3 (default 0).
            seed2: Seed for xxHash64 (default 0).

        Raises:
            ConfigError: If capacity is not a positive integer.
            InvalidRateError: If error_rate is outside the open interval (0, 1).
        """
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise ConfigError("capacity must be a positive integer", details={"capacity": capacity})
        if not 0.0 < error_rate < 1.0:
            raise InvalidRateError(error_rate)

        self.capacity = capacity
        self.error_rate = float(error_rate)
        self.size, self.num_hashes = optimal_parameters(capacity, self.error_rate)
        self.seed1 = seed1
        self.seed2 = seed2
        self.count = 0
        self._bit_array = bytearray((self.size + 7) // 8)

    def add(self, item: str) -> bool:
        """Insert ``item`` into the filter.

        Returns True if the item was already (probably) present. Only items
        that set a new bit increase ``count``, so inserting twice is a no-op;
        a distinct value colliding with earlier ones is not counted either.
        """
        present = True
        for bit_index in self._hashes(item):
            byte_index = bit_index >> 3
            mask = 1 << (bit_index & 7)
            if not (self._bit_array[byte_index] & mask):
                present = False
                self._bit_array[byte_index] |= mask
        if not present:
            self.count += 1
        return present

    def update(self, items: Iterable[str]) -> None:
        """Insert all ``items`` into the filter."""
        for item in items:
            self.add(item)

    def __contains__(self, item: str) -> bool:
        for bit_index in self._hashes(item):
            byte_index = bit_index >> 3
            mask = 1 << (bit_index & 7)
            if not (self._bit_array[byte_index] & mask):
                return False
        return True

    def check(self, item: str) -> bool:
        """Return True if ``item`` may be present, False if definitely absent."""
        return item in self

    def __len__(self) -> int:
        return self.count

    def __repr__(self) -> str:
        return (
            f"BloomFilter(capacity={self.capacity}, error_rate={self.error_rate}, "
            f"size={self.size}, num_hashes={self.num_hashes}, count={self.count})"
        )

    def _hashes(self, item: str) -> Iterator[int]:
        data = item.encode("utf-8")
        digest = xxhash.xxh64(data, seed=self.seed2).digest()
        for i in range(self.num_hashes):
            seed = (self.seed1 + i) & _SEED_MASK
            yield mmh3.hash128(digest, seed, signed=False) % self.size

    def estimated_false_positive_rate(self) -> float:
        """Expected false positive rate at the current load."""
        if self.count == 0:
            return 0.0
        return (1.0 - math.exp(-self.num_hashes * self.count / self.size)) ** self.num_hashes

    @property
    def bit_array(self) -> bytearray:
        """Expose the underlying bit array (primarily for inspection)."""
        return self._bit_array

    def to_bytes(self) -> bytes:
        """Serialize the filter parameters and bit array to a versioned blob."""
        header = _HEADER.pack(
            MAGIC,
            FORMAT_VERSION,
            self.size,
            self.num_hashes,
            self.seed1,
            self.seed2,
            self.capacity,
            self.count,
            self.error_rate,
        )
        return header + bytes(self._bit_array)

    @classmethod
    def from_bytes(cls, data: bytes) -> "BloomFilter":
        """Rebuild a filter from a blob written by :meth:`to_bytes`.

        Raises:
            DecodeError: If ``data`` is not a complete, supported encoding.
        """
        if len(data) < _HEADER.size:
            raise DecodeError(f"blob too short: {len(data)} bytes, header needs {_HEADER.size}")

        magic, version, size, num_hashes, seed1, seed2, capacity, count, error_rate = (
            _HEADER.unpack_from(data, 0)
        )
        if magic != MAGIC:
            raise DecodeError(f"not a bloom filter blob (magic {magic!r})")
        if version != FORMAT_VERSION:
            raise DecodeError(f"unsupported blob version {version}, expected {FORMAT_VERSION}")
        if size == 0 or num_hashes == 0 or capacity == 0:
            raise DecodeError("blob declares an empty filter")
        if not 0.0 < error_rate < 1.0:
            raise DecodeError(f"blob declares invalid error rate {error_rate}")

        payload = data[_HEADER.size:]
        expected = (size + 7) // 8
        if len(payload) != expected:
            raise DecodeError(f"bit array is {len(payload)} bytes, header declares {expected}")

        bloom = cls.__new__(cls)
        bloom.capacity = capacity
        bloom.error_rate = error_rate
        bloom.size = size
        bloom.num_hashes = num_hashes
        bloom.seed1 = seed1
        bloom.seed2 = seed2
        bloom.count = count
        bloom._bit_array = bytearray(payload)
        return bloom
