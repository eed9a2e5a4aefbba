"""
Asset search.

Full-text prefix search over the asset index combined with structured
filters, with optional semantic matching on stored embeddings.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..embeddings.base import EmbeddingGenerator, is_valid_embedding, rank_by_similarity
from ..models.assets import Asset
from ..storage.assets import AssetIndexStore, row_to_asset
from ..storage.database import CatalogDatabase

logger = logging.getLogger(__name__)


class SearchMode:
    """Search mode constants"""
    TEXT = "text"
    HYBRID = "hybrid"


# Metadata filters that match exactly
_EXACT_METADATA_FILTERS = {
    "author_id": "authorId",
    "project": "project",
    "scene": "scene",
    "shot": "shot",
    "platform": "platform",
    "model": "model",
}


class SearchFilters(BaseModel):
    """Structured filters applied on top of the text query"""
    model_config = ConfigDict(populate_by_name=True)

    tag_ids: List[str] = Field(default_factory=list, alias="tagIds")
    ids: List[str] = Field(default_factory=list)
    type: Optional[str] = None
    status: Optional[str] = None
    date_from: Optional[int] = Field(default=None, alias="dateFrom")
    date_to: Optional[int] = Field(default=None, alias="dateTo")

    author_id: Optional[str] = Field(default=None, alias="authorId")
    project: Optional[str] = None
    scene: Optional[str] = None
    shot: Optional[str] = None
    platform: Optional[str] = None
    platform_url: Optional[str] = Field(default=None, alias="platformUrl")
    model: Optional[str] = None

    # Lineage (exact inputs match) or, with semantic, vector neighbours
    related_to_asset_id: Optional[str] = Field(default=None, alias="relatedToAssetId")
    semantic: bool = False

    limit: Optional[int] = Field(default=None, ge=1)


@dataclass
class SearchResult:
    """One matched asset; ``similarity`` is set for semantic matches"""
    asset: Asset
    similarity: Optional[float] = None

    @property
    def id(self) -> str:
        return self.asset.id


def build_match_query(query: str) -> str:
    """
    Turn free text into an FTS5 prefix query.

    Every whitespace-separated term becomes a quoted prefix term, so user
    input never reaches the FTS query parser as syntax.
    """
    terms = [
        term.replace('"', '""') for term in query.split()
        if any(ch.isalnum() for ch in term)
    ]
    return " ".join(f'"{term}"*' for term in terms)


class SearchService:
    """
    Searches live assets of the current root.

    Results are ordered by full-text rank, then newest first. With an
    embedding generator configured, text searches also append the closest
    assets by vector similarity.
    """

    def __init__(
        self,
        db: CatalogDatabase,
        store: AssetIndexStore,
        embedder: Optional[EmbeddingGenerator] = None,
        root_path: Optional[str] = None,
        vector_limit: int = 50
    ):
        self.db = db
        self.store = store
        self.embedder = embedder
        self.root_path = root_path
        self.vector_limit = vector_limit

    def set_root_path(self, root_path: str) -> None:
        self.root_path = root_path

    @property
    def mode(self) -> str:
        return SearchMode.HYBRID if self.embedder is not None else SearchMode.TEXT

    async def search_assets(self, query: str = "", filters: Optional[SearchFilters] = None) -> List[SearchResult]:
        """
        Search by text and filters.

        Args:
            query: Free text; each term is prefix-matched against path and metadata
            filters: Structured filters

        Returns:
            Ranked results with tags attached
        """
        if not self.root_path:
            return []

        filters = filters or SearchFilters()
        text = query.strip()
        match_query = build_match_query(text) if text else ""

        similarities: Dict[str, float] = {}
        conditions = ["a.root_path = ?", "a.deleted_at IS NULL"]
        params: List[Any] = [self.root_path]

        sql = "SELECT a.* FROM assets a"
        if match_query:
            sql += " JOIN assets_fts ON assets_fts.rowid = a.rowid"
            conditions.append("assets_fts MATCH ?")
            params.append(match_query)

        if filters.related_to_asset_id:
            if filters.semantic:
                similar = self.find_similar(filters.related_to_asset_id, limit=self.vector_limit)
                similarities = {result.asset.id: result.similarity or 0.0 for result in similar}
                if similarities:
                    conditions.append(f"a.id IN ({', '.join('?' for _ in similarities)})")
                    params.extend(similarities)
                else:
                    conditions.append("1 = 0")
            else:
                conditions.append(
                    "EXISTS (SELECT 1 FROM json_each(a.metadata, '$.inputs') WHERE json_each.value = ?)"
                )
                params.append(filters.related_to_asset_id)

        self._apply_filters(filters, conditions, params)

        sql += " WHERE " + " AND ".join(conditions)
        if match_query:
            sql += " ORDER BY assets_fts.rank, a.created_at DESC"
        else:
            sql += " ORDER BY a.created_at DESC"

        rows = self.db.fetchall(sql, params)
        results = [SearchResult(asset=row_to_asset(row)) for row in rows]

        if text and self.embedder is not None and not filters.related_to_asset_id:
            results.extend(await self._vector_matches(text, filters, {r.asset.id for r in results}))

        if filters.related_to_asset_id:
            if filters.semantic:
                for result in results:
                    result.similarity = similarities.get(result.asset.id)
                results.sort(key=lambda r: -(r.similarity or 0.0))
            source = self.store.get_asset(filters.related_to_asset_id)
            if source is not None:
                results = [r for r in results if r.asset.id != source.id]
                results.insert(0, SearchResult(asset=source, similarity=1.0 if filters.semantic else None))

        if filters.limit:
            results = results[:filters.limit]

        self._attach_tags(results)
        return results

    def _apply_filters(self, filters: SearchFilters, conditions: List[str], params: List[Any]) -> None:
        if filters.tag_ids:
            placeholders = ", ".join("?" for _ in filters.tag_ids)
            conditions.append(
                f"EXISTS (SELECT 1 FROM asset_tags at WHERE at.asset_id = a.id AND at.tag_id IN ({placeholders}))"
            )
            params.extend(filters.tag_ids)

        if filters.ids:
            conditions.append(f"a.id IN ({', '.join('?' for _ in filters.ids)})")
            params.extend(filters.ids)

        if filters.type:
            conditions.append("a.type = ?")
            params.append(filters.type)

        if filters.status and filters.status != "all":
            conditions.append("a.status = ?")
            params.append(filters.status)

        if filters.date_from is not None:
            conditions.append("a.created_at >= ?")
            params.append(filters.date_from)

        if filters.date_to is not None:
            conditions.append("a.created_at <= ?")
            params.append(filters.date_to)

        for field_name, key in _EXACT_METADATA_FILTERS.items():
            value = getattr(filters, field_name)
            if value:
                conditions.append(f"json_extract(a.metadata, '$.{key}') = ?")
                params.append(value)

        if filters.platform_url:
            conditions.append("json_extract(a.metadata, '$.platformUrl') LIKE ?")
            params.append(f"%{filters.platform_url}%")

    def _embedded_assets(self) -> List[Tuple[str, List[float]]]:
        rows = self.db.fetchall(
            "SELECT id, metadata FROM assets WHERE root_path = ? AND deleted_at IS NULL",
            (self.root_path,)
        )
        embedded = []
        for row in rows:
            try:
                vector = json.loads(row["metadata"] or "{}").get("embedding")
            except (ValueError, AttributeError):
                continue
            if vector and is_valid_embedding(vector, len(vector)):
                embedded.append((row["id"], vector))
        return embedded

    def _nearest(self, vector: List[float], exclude: Optional[str] = None, limit: int = 50) -> List[Tuple[str, float]]:
        candidates = [(asset_id, vec) for asset_id, vec in self._embedded_assets() if asset_id != exclude]
        scores = rank_by_similarity(vector, [vec for _, vec in candidates])
        ranked = sorted(zip((asset_id for asset_id, _ in candidates), scores), key=lambda item: -item[1])
        return ranked[:limit]

    async def _vector_matches(self, text: str, filters: SearchFilters, seen: set) -> List[SearchResult]:
        try:
            embedding = await self.embedder.generate_embedding(text)
        except Exception as e:
            logger.error(f"Query embedding failed, returning text matches only: {e}")
            return []
        if not embedding:
            return []

        matches = []
        for asset_id, similarity in self._nearest(embedding, limit=self.vector_limit):
            if asset_id in seen:
                continue
            asset = self.store.get_asset(asset_id)
            if asset is None:
                continue
            if filters.type and asset.type.value != filters.type:
                continue
            if filters.status and filters.status != "all" and asset.status != filters.status:
                continue
            matches.append(SearchResult(asset=asset, similarity=similarity))
            seen.add(asset_id)

        logger.debug(f"Vector search appended {len(matches)} matches for {text!r}")
        return matches

    def find_similar(self, asset_id: str, limit: int = 20) -> List[SearchResult]:
        """Assets closest to ``asset_id`` by embedding, most similar first"""
        source = self.store.get_asset(asset_id)
        if source is None:
            logger.debug(f"find_similar: source asset {asset_id} not found")
            return []
        if not source.metadata.embedding:
            logger.debug(f"find_similar: source asset {asset_id} has no embedding")
            return []

        results = []
        for other_id, similarity in self._nearest(source.metadata.embedding, exclude=asset_id, limit=limit):
            asset = self.store.get_asset(other_id)
            if asset is not None:
                results.append(SearchResult(asset=asset, similarity=similarity))
        return results

    def _attach_tags(self, results: List[SearchResult]) -> None:
        if not results:
            return
        tags = self.store.tags_by_asset(self.root_path)
        for result in results:
            result.asset.tags = tags.get(result.asset.id, [])
