"""Identifier factories for builder entities.

Every factory is a callable taking an entity prefix ("module", "lesson",
"section", "q") and returning a fresh id. Sessions and trees take one as a
parameter so tests can assert exact ids.
"""

from __future__ import annotations

import itertools
import uuid
from typing import Callable


IdFactory = Callable[[str], str]


def uuid_ids(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class CounterIds:
    """Deterministic ids: ``module_1``, ``lesson_2``, ... (one shared counter)."""

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)

    def __call__(self, prefix: str) -> str:
        return f"{prefix}_{next(self._counter)}"
