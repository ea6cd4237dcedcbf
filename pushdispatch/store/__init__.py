"""Subscription storage backends."""

from pathlib import Path

from pushdispatch import PROJECT_ROOT
from pushdispatch.store.base import SubscriptionStore
from pushdispatch.store.memory import InMemorySubscriptionStore
from pushdispatch.store.sqlite import SQLiteSubscriptionStore


def create_store(config) -> SubscriptionStore:
    """
    Build the backend named in ``config.store``.

    A relative ``sqlite_path`` is taken relative to the project root, not the
    working directory.
    """
    if config.store.backend == "memory":
        return InMemorySubscriptionStore()
    path = Path(config.store.sqlite_path)
    if not path.is_absolute():
        path = PROJECT_ROOT / path
    return SQLiteSubscriptionStore(path)


__all__ = [
    "InMemorySubscriptionStore",
    "SQLiteSubscriptionStore",
    "SubscriptionStore",
    "create_store",
]
