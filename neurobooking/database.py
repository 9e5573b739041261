import asyncio
import copy
from collections.abc import AsyncIterator, MutableMapping
from contextlib import asynccontextmanager
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class Transaction(Generic[K, V]):
    """
    Unit of work over an InMemoryKeyValueDatabase.

    Reads see the transaction's own staged writes first, then the committed
    store. Writes are staged until the owning `transaction()` block exits
    cleanly.
    """

    def __init__(self, store: MutableMapping[K, V]) -> None:
        self._store = store
        self.staged: dict[K, V] = {}

    def get(self, key: K) -> V | None:
        if key in self.staged:
            return copy.deepcopy(self.staged[key])
        value = self._store.get(key)
        return copy.deepcopy(value) if value is not None else None

    def put(self, key: K, value: V) -> None:
        self.staged[key] = copy.deepcopy(value)

    def all(self) -> list[V]:
        merged = {**self._store, **self.staged}
        return [copy.deepcopy(v) for v in merged.values()]


class InMemoryKeyValueDatabase(Generic[K, V]):
    """
    Simple in-memory key/value database with serialised units of work.

    Values are copied on the way in and out, so callers never share a
    mutable record with the store.
    """

    def __init__(self) -> None:
        self._store: MutableMapping[K, V] = {}
        self._write_lock = asyncio.Lock()

    def put(self, key: K, value: V) -> None:
        self._store[key] = copy.deepcopy(value)

    def get(self, key: K) -> V | None:
        value = self._store.get(key)
        return copy.deepcopy(value) if value is not None else None

    def all(self) -> list[V]:
        return [copy.deepcopy(v) for v in self._store.values()]

    def __len__(self) -> int:
        return len(self._store)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction[K, V]]:
        """
        Open a unit of work. Only one runs at a time.

        Staged writes are applied in a single step with no await in between,
        so a cancelled or failing block leaves the store exactly as it was.
        """
        async with self._write_lock:
            tx: Transaction[K, V] = Transaction(self._store)
            yield tx
            self._store.update(tx.staged)
