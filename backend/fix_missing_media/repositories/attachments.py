from __future__ import annotations

import logging

import psycopg
from psycopg import sql

from ..utils.remediation import MarkerState, MarkerStatus

logger = logging.getLogger(__name__)


class AttachmentRepository:
    """Attachment lookups and the per-attachment "processed" marker.

    ``find_unprocessed`` pages are memoised until :meth:`flush_cache` is called,
    so callers that mark records between pages must flush to see fresh pages.
    """

    def __init__(
        self,
        conn: psycopg.AsyncConnection,
        *,
        site_url: str,
        uploads_url_path: str = "/wp-content/uploads",
        schema: str = "public",
        marker_key: str = "fmm_processed",
        attached_file_key: str = "_wp_attached_file",
    ) -> None:
        self._conn = conn
        self._site_url = site_url.rstrip("/")
        self._uploads_url_path = "/" + uploads_url_path.strip("/")
        self._schema = schema.strip() or "public"
        self._marker_key = marker_key
        self._attached_file_key = attached_file_key
        self._page_cache: dict[tuple[int, int], list[int]] = {}

    @property
    def marker_key(self) -> str:
        return self._marker_key

    def _table(self, name: str) -> sql.Composed:
        return sql.SQL("{}.{}").format(sql.Identifier(self._schema), sql.Identifier(name))

    async def _get_meta(self, attachment_id: int, key: str) -> str | None:
        query = sql.SQL(
            """
            SELECT meta_value
            FROM {meta}
            WHERE attachment_id = %s AND meta_key = %s
            LIMIT 1
            """
        ).format(meta=self._table("media_attachment_meta"))
        async with self._conn.cursor() as cur:
            await cur.execute(query, (attachment_id, key))
            row = await cur.fetchone()
        if not row:
            return None
        return str(row[0]) if row[0] is not None else None

    async def get_attached_file(self, attachment_id: int) -> str | None:
        value = await self._get_meta(attachment_id, self._attached_file_key)
        normalized = (value or "").strip()
        return normalized or None

    async def get_local_url(self, attachment_id: int) -> str | None:
        attached_file = await self.get_attached_file(attachment_id)
        if not attached_file:
            return None
        if attached_file.startswith(("http://", "https://")):
            return attached_file
        return f"{self._site_url}{self._uploads_url_path}/{attached_file.lstrip('/')}"

    async def get_marker(self, attachment_id: int) -> MarkerState:
        return MarkerState.decode(await self._get_meta(attachment_id, self._marker_key))

    async def set_marker(self, attachment_id: int, marker: MarkerState) -> None:
        if marker.status == MarkerStatus.unprocessed:
            raise ValueError("an unprocessed marker is represented by the absence of a row")
        query = sql.SQL(
            """
            INSERT INTO {meta} (attachment_id, meta_key, meta_value)
            VALUES (%s, %s, %s)
            """
        ).format(meta=self._table("media_attachment_meta"))
        async with self._conn.cursor() as cur:
            await cur.execute(query, (attachment_id, self._marker_key, marker.encode()))
        await self._conn.commit()
        logger.debug(
            "Marked attachment %s as %s", attachment_id, marker.status.value
        )

    async def find_unprocessed(self, limit: int, page: int) -> list[int]:
        resolved_limit = max(1, int(limit))
        resolved_page = max(1, int(page))
        cache_key = (resolved_limit, resolved_page)
        cached = self._page_cache.get(cache_key)
        if cached is not None:
            return list(cached)

        query = sql.SQL(
            """
            SELECT a.id
            FROM {attachments} a
            WHERE a.post_type = 'attachment'
              AND NOT EXISTS (
                SELECT 1
                FROM {meta} m
                WHERE m.attachment_id = a.id AND m.meta_key = %s
              )
            ORDER BY a.id ASC
            LIMIT %s OFFSET %s
            """
        ).format(
            attachments=self._table("media_attachments"),
            meta=self._table("media_attachment_meta"),
        )
        offset = (resolved_page - 1) * resolved_limit
        async with self._conn.cursor() as cur:
            await cur.execute(query, (self._marker_key, resolved_limit, offset))
            rows = await cur.fetchall()
        ids = [int(row[0]) for row in rows]
        self._page_cache[cache_key] = ids
        return list(ids)

    def flush_cache(self) -> None:
        self._page_cache.clear()
