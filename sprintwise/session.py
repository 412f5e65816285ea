"""Per-config session store.

Holds the last fetched issue set for each project configuration so a
follow-up request that does not carry its own cached data can still use
analyze_cached_data. Process-lifetime only.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Protocol

from sprintwise.api.models import CachedData

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    def get(self, config_id: str) -> CachedData | None: ...

    def set(self, config_id: str, data: CachedData) -> None: ...

    def delete(self, config_id: str) -> None: ...


class InMemorySessionStore:
    """LRU-bounded dict keyed by config id. Entries are overwritten on refresh."""

    def __init__(self, max_sessions: int = 100) -> None:
        self._max = max_sessions
        self._data: OrderedDict[str, CachedData] = OrderedDict()

    def get(self, config_id: str) -> CachedData | None:
        data = self._data.get(config_id)
        if data is not None:
            self._data.move_to_end(config_id)
        return data

    def set(self, config_id: str, data: CachedData) -> None:
        self._data[config_id] = data
        self._data.move_to_end(config_id)
        while len(self._data) > self._max:
            evicted, _ = self._data.popitem(last=False)
            logger.debug("Evicted session %s", evicted)

    def delete(self, config_id: str) -> None:
        self._data.pop(config_id, None)

    def __len__(self) -> int:
        return len(self._data)
