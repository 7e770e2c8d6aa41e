"""In-memory passage index keyed by document."""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from docqa.embeddings import similarity
from docqa.ingest.models import EmbeddedPassage, Passage
from docqa.telemetry import emit_index_event

LOGGER = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


@dataclass(frozen=True, slots=True)
class SearchResult:
    """A retrieved passage with its cosine similarity to the query."""

    passage: Passage
    similarity: float


@dataclass(slots=True)
class IndexStats:
    total_passages: int
    total_documents: int
    passages_per_document: Dict[str, int] = field(default_factory=dict)


class PassageIndex:
    """Embedded passages grouped per document.

    Every mutation is a single synchronous step, so a coroutine never
    observes a document with only part of its passages indexed.
    """

    def __init__(self) -> None:
        self._documents: Dict[str, Dict[str, EmbeddedPassage]] = {}
        self._generations: Dict[str, int] = {}

    def add(self, embedded_passages: Iterable[EmbeddedPassage]) -> int:
        """Upsert passages by id; returns the number written."""

        count = 0
        for embedded in embedded_passages:
            # dict assignment keeps the original position of an existing key
            self._documents.setdefault(embedded.document_id, {})[embedded.id] = embedded
            count += 1
        return count

    def add_document(
        self,
        document_id: str,
        embedded_passages: Sequence[EmbeddedPassage],
        *,
        generation: Optional[int] = None,
    ) -> bool:
        """Register *document_id* with its full passage set.

        Returns ``False`` without touching the index when *generation* is
        older than the document's current generation, i.e. the document was
        removed while its passages were being produced.
        """

        if generation is not None and generation != self.generation(document_id):
            LOGGER.info(
                "Discarding stale passages for %s (generation %s, current %s)",
                document_id,
                generation,
                self.generation(document_id),
            )
            return False

        foreign = [item.id for item in embedded_passages if item.document_id != document_id]
        if foreign:
            raise ValueError(f"Passages {foreign[:3]} do not belong to document {document_id}")

        passages = self._documents.setdefault(document_id, {})
        for embedded in embedded_passages:
            passages[embedded.id] = embedded

        stats = self.stats()
        emit_index_event(
            "index.add",
            document_id=document_id,
            count=len(embedded_passages),
            total_passages=stats.total_passages,
            total_documents=stats.total_documents,
        )
        return True

    def remove_document(self, document_id: str) -> int:
        """Drop every passage of *document_id*; returns how many were removed."""

        removed = len(self._documents.pop(document_id, {}))
        self._generations[document_id] = self.generation(document_id) + 1

        stats = self.stats()
        emit_index_event(
            "index.remove",
            document_id=document_id,
            count=removed,
            total_passages=stats.total_passages,
            total_documents=stats.total_documents,
        )
        return removed

    def contains(self, document_id: str) -> bool:
        return document_id in self._documents

    def generation(self, document_id: str) -> int:
        return self._generations.get(document_id, 0)

    def document_ids(self) -> List[str]:
        return list(self._documents)

    def passages(self, document_id: str) -> List[EmbeddedPassage]:
        return list(self._documents.get(document_id, {}).values())

    def search(
        self,
        query_vector: Sequence[float],
        document_ids: Iterable[str],
        top_k: int = 5,
    ) -> List[SearchResult]:
        """Rank passages of the selected documents by cosine similarity.

        Ties keep candidate order: the order of *document_ids*, then each
        document's passage order.
        """

        if top_k < 1:
            raise ValueError("top_k must be at least 1")

        scored: List[SearchResult] = []
        for document_id in dict.fromkeys(document_ids):
            for embedded in self._documents.get(document_id, {}).values():
                scored.append(
                    SearchResult(
                        passage=embedded.passage,
                        similarity=similarity(query_vector, embedded.embedding),
                    )
                )

        scored.sort(key=lambda result: result.similarity, reverse=True)
        return scored[:top_k]

    def stats(self) -> IndexStats:
        per_document = {document_id: len(items) for document_id, items in self._documents.items()}
        return IndexStats(
            total_passages=sum(per_document.values()),
            total_documents=len(per_document),
            passages_per_document=per_document,
        )

    def clear(self) -> None:
        for document_id in self._documents:
            self._generations[document_id] = self.generation(document_id) + 1
        self._documents.clear()

    def to_snapshot(self) -> Dict[str, object]:
        documents: Dict[str, List[dict]] = {}
        for document_id, items in self._documents.items():
            documents[document_id] = [
                {
                    "passage": asdict(embedded.passage),
                    "embedding": list(map(float, embedded.embedding)),
                    "embedding_model": embedded.embedding_model,
                    "embedded_at": embedded.embedded_at.isoformat(),
                }
                for embedded in items.values()
            ]
        return {
            "version": SNAPSHOT_VERSION,
            "documents": documents,
            "generations": dict(self._generations),
        }

    def load_snapshot(self, payload: Dict[str, object]) -> None:
        version = payload.get("version")
        if version != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported snapshot version: {version!r}")

        documents: Dict[str, Dict[str, EmbeddedPassage]] = {}
        for document_id, records in dict(payload.get("documents") or {}).items():
            items: Dict[str, EmbeddedPassage] = {}
            for record in records:
                embedded = EmbeddedPassage(
                    passage=Passage(**record["passage"]),
                    embedding=[float(value) for value in record["embedding"]],
                    embedding_model=str(record.get("embedding_model", "")),
                    embedded_at=datetime.fromisoformat(record["embedded_at"]),
                )
                items[embedded.id] = embedded
            documents[str(document_id)] = items

        self._documents = documents
        self._generations = {
            str(key): int(value) for key, value in dict(payload.get("generations") or {}).items()
        }

    def save(self, path: Path | str) -> Path:
        data_path = Path(path)
        data_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = data_path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(self.to_snapshot(), ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(data_path)
        LOGGER.info("Saved passage index snapshot to %s", data_path)
        return data_path

    @classmethod
    def load(cls, path: Path | str) -> "PassageIndex":
        index = cls()
        index.load_snapshot(json.loads(Path(path).read_text(encoding="utf-8")))
        return index


__all__ = ["IndexStats", "PassageIndex", "SearchResult", "SNAPSHOT_VERSION"]
