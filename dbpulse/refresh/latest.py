"""Keep-the-newest bookkeeping for one-shot requests (plan analysis)."""

from __future__ import annotations

import itertools
from typing import Dict, Hashable


class LatestRequestTracker:
    """
    Hands out increasing tokens per key and remembers only the newest one.

    A result is delivered only if its token is still the latest for its key;
    results of superseded requests are dropped, never merged.
    """

    def __init__(self):
        self._tokens = itertools.count(1)
        self._latest: Dict[Hashable, int] = {}

    def begin(self, key: Hashable) -> int:
        token = next(self._tokens)
        self._latest[key] = token
        return token

    def is_current(self, key: Hashable, token: int) -> bool:
        return self._latest.get(key) == token

    def finish(self, key: Hashable, token: int) -> bool:
        """Close *token*.  Returns False if a newer request superseded it."""
        if not self.is_current(key, token):
            return False
        del self._latest[key]
        return True

    def forget(self, key: Hashable) -> None:
        self._latest.pop(key, None)

    def __len__(self):
        return len(self._latest)
