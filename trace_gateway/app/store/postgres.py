"""
store/postgres.py - PostgreSQL document store (asyncpg).

One table holds every record type. The key columns are copied out of the
document so they can be indexed; the document itself is JSONB.

  documents(pk, sk, gsi1pk, gsi1sk, doc)  PRIMARY KEY (pk, sk)

Writes are durable on commit and visible to every gateway instance that
shares the database, which is what the reconciliation layer relies on.
"""
import json
import logging
from typing import Optional

import asyncpg

from ..config import DATABASE_URL
from .adapter import ConditionalCheckFailed, check_keys

log = logging.getLogger("trace.store.postgres")

CREATE_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    pk      TEXT  NOT NULL,
    sk      TEXT  NOT NULL,
    gsi1pk  TEXT,
    gsi1sk  TEXT,
    doc     JSONB NOT NULL,
    PRIMARY KEY (pk, sk)
);

CREATE INDEX IF NOT EXISTS idx_documents_gsi1 ON documents (gsi1pk, gsi1sk);
"""


def _row_doc(row) -> dict:
    doc = row["doc"]
    return json.loads(doc) if isinstance(doc, str) else dict(doc)


class PostgresStore:
    def __init__(self, dsn: str = DATABASE_URL):
        self._dsn = dsn
        self._pool: Optional[asyncpg.Pool] = None

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(self._dsn, min_size=2, max_size=10)
        return self._pool

    async def init(self) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(CREATE_SCHEMA)
        log.info("document schema initialised")

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None

    async def get(self, pk: str, sk: str) -> Optional[dict]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow("SELECT doc FROM documents WHERE pk=$1 AND sk=$2", pk, sk)
        return _row_doc(row) if row else None

    async def put(self, item: dict) -> dict:
        check_keys(item)
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO documents (pk, sk, gsi1pk, gsi1sk, doc)
                VALUES ($1, $2, $3, $4, $5::jsonb)
                ON CONFLICT (pk, sk) DO UPDATE
                  SET gsi1pk = EXCLUDED.gsi1pk, gsi1sk = EXCLUDED.gsi1sk, doc = EXCLUDED.doc
            """,
                item["PK"], item["SK"], item.get("GSI1PK"), item.get("GSI1SK"),
                json.dumps(item),
            )
        return item

    async def update(self, pk: str, sk: str, changes: dict, must_exist: bool = True) -> dict:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            if must_exist:
                row = await conn.fetchrow("""
                    UPDATE documents SET doc = doc || $3::jsonb
                    WHERE pk=$1 AND sk=$2
                    RETURNING doc
                """, pk, sk, json.dumps(changes))
                if row is None:
                    raise ConditionalCheckFailed(pk, sk)
            else:
                row = await conn.fetchrow("""
                    INSERT INTO documents (pk, sk, doc)
                    VALUES ($1, $2, $3::jsonb)
                    ON CONFLICT (pk, sk) DO UPDATE SET doc = documents.doc || EXCLUDED.doc
                    RETURNING doc
                """, pk, sk, json.dumps({"PK": pk, "SK": sk, **changes}))
        return _row_doc(row)

    async def delete(self, pk: str, sk: str, must_exist: bool = True) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            status = await conn.execute("DELETE FROM documents WHERE pk=$1 AND sk=$2", pk, sk)
        if must_exist and status.endswith(" 0"):
            raise ConditionalCheckFailed(pk, sk)

    async def query(self, pk: str, sk_prefix: str = "", ascending: bool = True) -> list[dict]:
        order = "ASC" if ascending else "DESC"
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT doc FROM documents WHERE pk=$1 AND starts_with(sk, $2) ORDER BY sk {order}",
                pk, sk_prefix,
            )
        return [_row_doc(r) for r in rows]

    async def query_index(self, gsi1pk: str, **equals) -> list[dict]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT doc FROM documents
                WHERE gsi1pk=$1 AND doc @> $2::jsonb
                ORDER BY gsi1sk
            """, gsi1pk, json.dumps(equals))
        return [_row_doc(r) for r in rows]

    async def count(self, pk: str, sk_prefix: str = "") -> int:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT COUNT(*) FROM documents WHERE pk=$1 AND starts_with(sk, $2)",
                pk, sk_prefix,
            )
