from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import psycopg


def ensure_db_url(url: str | None) -> str | None:
    if not url:
        return None
    if "sslmode=" in url:
        return url
    if "localhost" in url or "127.0.0.1" in url:
        return url
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}sslmode=require"


@asynccontextmanager
async def connect(database_url: str) -> AsyncIterator[psycopg.AsyncConnection]:
    conn = await psycopg.AsyncConnection.connect(database_url, autocommit=False)
    try:
        yield conn
    finally:
        await conn.close()
