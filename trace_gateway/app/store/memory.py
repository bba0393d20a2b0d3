"""
store/memory.py - In-process document store.

Stores deep copies so callers can never mutate persisted state by
accident. Ordering follows the sort key, the same as the postgres backend.
"""
import copy
from typing import Optional

from .adapter import ConditionalCheckFailed, check_keys


class MemoryStore:
    def __init__(self):
        self._items: dict[tuple[str, str], dict] = {}

    async def init(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def get(self, pk: str, sk: str) -> Optional[dict]:
        item = self._items.get((pk, sk))
        return copy.deepcopy(item) if item is not None else None

    async def put(self, item: dict) -> dict:
        check_keys(item)
        self._items[(item["PK"], item["SK"])] = copy.deepcopy(item)
        return copy.deepcopy(item)

    async def update(self, pk: str, sk: str, changes: dict, must_exist: bool = True) -> dict:
        current = self._items.get((pk, sk))
        if current is None:
            if must_exist:
                raise ConditionalCheckFailed(pk, sk)
            current = {"PK": pk, "SK": sk}
        merged = {**current, **copy.deepcopy(changes)}
        self._items[(pk, sk)] = merged
        return copy.deepcopy(merged)

    async def delete(self, pk: str, sk: str, must_exist: bool = True) -> None:
        if (pk, sk) not in self._items:
            if must_exist:
                raise ConditionalCheckFailed(pk, sk)
            return
        del self._items[(pk, sk)]

    async def query(self, pk: str, sk_prefix: str = "", ascending: bool = True) -> list[dict]:
        rows = [v for (p, s), v in self._items.items() if p == pk and s.startswith(sk_prefix)]
        rows.sort(key=lambda r: r["SK"], reverse=not ascending)
        return copy.deepcopy(rows)

    async def query_index(self, gsi1pk: str, **equals) -> list[dict]:
        rows = [
            v for v in self._items.values()
            if v.get("GSI1PK") == gsi1pk and all(v.get(k) == want for k, want in equals.items())
        ]
        rows.sort(key=lambda r: r.get("GSI1SK") or "")
        return copy.deepcopy(rows)

    async def count(self, pk: str, sk_prefix: str = "") -> int:
        return sum(1 for (p, s) in self._items if p == pk and s.startswith(sk_prefix))
