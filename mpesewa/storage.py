"""
storage.py - Key-Value Persistence for Platform Collections

The platform keeps each collection (ledgers, blacklist, subscriptions, ...)
under a fixed key and rewrites the whole collection on every change.
Values are plain JSON-compatible structures produced by the modules'
to_dict() adapters.

Two implementations:
    MemoryStorage     in-process dict, used by tests and short-lived runs
    JsonFileStorage   one <key>.json file per collection in a directory
"""

from __future__ import annotations
import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union


LEDGERS_KEY = "mpesewa-ledgers"
BLACKLIST_KEY = "mpesewa-blacklist"
BLACKLISTED_USERS_KEY = "mpesewa-blacklisted-users"
SUBSCRIPTIONS_KEY = "mpesewa-subscriptions"
SUBSCRIPTION_TRANSACTIONS_KEY = "mpesewa-subscription-transactions"
LENDERS_KEY = "mpesewa-lenders"
COLLECTORS_KEY = "mpesewa-collectors"
COLLECTOR_REPORTS_KEY = "mpesewa-collector-reports"

ALL_KEYS = (
    LEDGERS_KEY, BLACKLIST_KEY, BLACKLISTED_USERS_KEY, SUBSCRIPTIONS_KEY,
    SUBSCRIPTION_TRANSACTIONS_KEY, LENDERS_KEY, COLLECTORS_KEY,
    COLLECTOR_REPORTS_KEY,
)


class KeyValueStorage(Protocol):
    """
    Protocol for collection storage.

    load() returns None for a key that was never saved.
    """

    def load(self, key: str) -> Optional[Any]:
        ...

    def save(self, key: str, value: Any) -> None:
        ...


class MemoryStorage:
    """
    Storage held in a dict.

    Values are deep-copied on the way in and out so callers can never alias
    stored state.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self.save_count = 0

    def load(self, key: str) -> Optional[Any]:
        if key not in self._data:
            return None
        return copy.deepcopy(self._data[key])

    def save(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)
        self.save_count += 1

    def keys(self):
        return sorted(self._data)


class JsonFileStorage:
    """
    Storage as one JSON file per key.

    Writes go to a temporary file that replaces the target, so a crash
    mid-write leaves the previous version intact.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not key or '/' in key or key.startswith('.'):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"

    def load(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def save(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path.with_suffix('.json.tmp')
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump(value, f, indent=2, sort_keys=True)
        os.replace(tmp, path)
