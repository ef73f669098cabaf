"""
Identifier generation for primitives.

The interpreter takes any IdGenerator. SequentialIdGenerator is deterministic
and is what tests inject; RandomIdGenerator draws from uuid4 and still
guarantees that it never repeats an id within its own lifetime (one
session).
"""

from __future__ import annotations

import itertools
import uuid
from typing import Protocol

ID_PREFIX = "shape_"


class IdGenerator(Protocol):
    """Anything that hands out collision-free identifiers."""

    def next_id(self) -> str: ...


class SequentialIdGenerator:
    """shape_1, shape_2, ... Deterministic for a given start value."""

    def __init__(self, prefix: str = ID_PREFIX, start: int = 1):
        self._prefix = prefix
        self._counter = itertools.count(start)

    def next_id(self) -> str:
        return f"{self._prefix}{next(self._counter)}"


class RandomIdGenerator:
    """shape_<9 hex chars>, re-drawn on the rare collision."""

    def __init__(self, prefix: str = ID_PREFIX, length: int = 9):
        self._prefix = prefix
        self._length = length
        self._issued: set[str] = set()

    def next_id(self) -> str:
        while True:
            candidate = f"{self._prefix}{uuid.uuid4().hex[: self._length]}"
            if candidate not in self._issued:
                self._issued.add(candidate)
                return candidate
