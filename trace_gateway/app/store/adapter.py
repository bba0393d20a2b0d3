"""
store/adapter.py - Abstract document store interface.

Records are flat JSON documents addressed by (PK, SK) with one secondary
index (GSI1PK, GSI1SK). The rest of the service calls get_store() and
never knows which backend is behind it; STORE_BACKEND picks one:

  memory   - process-local dicts (dev, tests, single instance demos)
  postgres - one JSONB table via asyncpg

Capabilities every backend provides:
  get / put (idempotent upsert) / update (merge, optionally conditional)
  delete (conditional) / query (partition + sort-key prefix, ordered)
  query_index (secondary partition + equality filters) / count
"""
import logging
from typing import Optional, Protocol

from ..config import STORE_BACKEND

log = logging.getLogger("trace.store")

KEY_FIELDS = ("PK", "SK")


class ConditionalCheckFailed(Exception):
    """A write required the target record to exist and it did not."""

    def __init__(self, pk: str, sk: str):
        super().__init__(f"conditional check failed for {pk}/{sk}")
        self.pk = pk
        self.sk = sk


class DocumentStore(Protocol):
    async def init(self) -> None: ...
    async def close(self) -> None: ...
    async def get(self, pk: str, sk: str) -> Optional[dict]: ...
    async def put(self, item: dict) -> dict: ...
    async def update(self, pk: str, sk: str, changes: dict, must_exist: bool = True) -> dict: ...
    async def delete(self, pk: str, sk: str, must_exist: bool = True) -> None: ...
    async def query(self, pk: str, sk_prefix: str = "", ascending: bool = True) -> list[dict]: ...
    async def query_index(self, gsi1pk: str, **equals) -> list[dict]: ...
    async def count(self, pk: str, sk_prefix: str = "") -> int: ...


def check_keys(item: dict):
    missing = [k for k in KEY_FIELDS if not item.get(k)]
    if missing:
        raise ValueError(f"document is missing key fields: {missing}")


def create_store(backend: str = STORE_BACKEND) -> DocumentStore:
    if backend == "postgres":
        from .postgres import PostgresStore
        return PostgresStore()
    if backend != "memory":
        log.warning("unknown STORE_BACKEND=%s, using memory", backend)
    from .memory import MemoryStore
    return MemoryStore()


_store: Optional[DocumentStore] = None


def get_store() -> DocumentStore:
    global _store
    if _store is None:
        _store = create_store()
        log.info("document store backend=%s", STORE_BACKEND)
    return _store
