"""
Node Id Allocators
==================

Cause-tree node ids are strings unique within one tree. The graph engine
asks an injected allocator for candidates and skips any id already taken,
so a generated tree ("node-1", "node-2", ...) can be edited by hand safely.
"""

import itertools
import uuid
from abc import ABC, abstractmethod


class IdAllocator(ABC):
    """Produces candidate node ids"""

    @abstractmethod
    def next_id(self) -> str:
        pass


class UuidIdAllocator(IdAllocator):
    """Random ids, e.g. node-3f2a9c1e7b4d (default for interactive use)"""

    def __init__(self, prefix: str = "node-", length: int = 12):
        self.prefix = prefix
        self.length = length

    def next_id(self) -> str:
        return f"{self.prefix}{uuid.uuid4().hex[:self.length]}"


class CounterIdAllocator(IdAllocator):
    """Deterministic monotonic ids, e.g. node-1, node-2 (tests, imports)"""

    def __init__(self, prefix: str = "node-", start: int = 1):
        self.prefix = prefix
        self._counter = itertools.count(start)

    def next_id(self) -> str:
        return f"{self.prefix}{next(self._counter)}"
