"""Read-only catalog service over a columnar store."""

from __future__ import annotations

from databox.catalog.search import Match, SearchResult, find_best_match, rank
from databox.core.interfaces import IColumnarStore
from databox.core.models import CatalogEntry, DownloadEntry
from databox.errors import NotFoundError
from databox.storage.tables import CATALOG_TABLE, DOWNLOADS_TABLE, TableSchema


class CatalogQueries:
    """Catalog lookups backing the discovery endpoints.

    Every call takes a fresh snapshot through `query_all`; nothing is cached
    between calls and nothing is written apart from create-if-absent.
    """

    def __init__(
        self,
        store: IColumnarStore,
        *,
        table: TableSchema = CATALOG_TABLE,
        downloads_table: TableSchema = DOWNLOADS_TABLE,
    ) -> None:
        self.store = store
        self.table = table
        self.downloads_table = downloads_table
        self._ready = False

    async def _ensure(self) -> None:
        if not self._ready:
            await self.store.ensure_table(self.table)
            await self.store.ensure_table(self.downloads_table)
            self._ready = True

    async def all_entries(self) -> list[CatalogEntry]:
        """Every listing, most recent block first."""
        await self._ensure()
        rows = await self.store.query_all(self.table.name)
        return [CatalogEntry.from_row(r) for r in rows]

    async def best_match(self, text: str) -> SearchResult:
        return find_best_match(text, await self.all_entries())

    async def ranked(self, text: str) -> list[Match]:
        return rank(text, await self.all_entries())

    async def get_entry(self, piece_cid: str) -> CatalogEntry:
        for entry in await self.all_entries():
            if entry.piece_cid == piece_cid:
                return entry
        raise NotFoundError(piece_cid)

    async def downloads(self, piece_cid: str | None = None) -> list[DownloadEntry]:
        await self._ensure()
        rows = await self.store.query_all(self.downloads_table.name)
        out = [DownloadEntry.from_row(r) for r in rows]
        if piece_cid is not None:
            out = [d for d in out if d.entry.piece_cid == piece_cid]
        return out
