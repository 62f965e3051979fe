"""
Hybrid retrieval over the vector collections.
Vector similarity fused with lexical overlap on an expanded query, followed by
an optional rerank that collapses near-duplicate passages.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from replyguard.vector.embeddings import EmbeddingService
from replyguard.vector.index import VectorDatabase, cosine_similarity
from replyguard.vector.types import RecordMetadata, TurnMetadata, VectorRecord
from .config import (
    LEXICAL_WEIGHT,
    NEAR_DUPLICATE_THRESHOLD,
    RECENT_COLLECTIONS,
    RETRIEVAL_COLLECTIONS,
    VECTOR_CANDIDATE_LIMIT,
    VECTOR_CANDIDATE_THRESHOLD,
    VECTOR_WEIGHT,
)
from .query_expansion import QueryExpansion, expand_query
from .text_utils import stemmed_terms


@dataclass
class RetrievedPassage:
    """A ranked retrieval candidate."""

    id: str
    text: str
    collection: str
    score: float
    vector_score: float = 0.0
    lexical_score: float = 0.0
    metadata: Optional[RecordMetadata] = None
    vector: Optional[object] = field(default=None, repr=False)


def lexical_score(expansion: QueryExpansion, text: str) -> float:
    """Fraction of expanded query terms found in ``text``, with a phrase bonus."""
    query_terms = expansion.term_set()
    if not query_terms:
        return 0.0

    overlap = len(query_terms & stemmed_terms(text)) / len(query_terms)
    original = expansion.original_query.strip().lower()
    if len(original.split()) >= 2 and original in text.lower():
        overlap += 0.2
    return min(1.0, overlap)


class HybridSearchService:
    """
    Retrieval entry point used by the retrieval agent.

    Candidate set is the union of vector hits above a loose threshold and any
    record sharing at least one expanded term with the query. Both scores are
    computed for every candidate before fusion.
    """

    def __init__(self, vector_db: VectorDatabase, embeddings: EmbeddingService,
                 collections: List[str] = None,
                 vector_weight: float = VECTOR_WEIGHT,
                 lexical_weight: float = LEXICAL_WEIGHT,
                 vector_threshold: float = VECTOR_CANDIDATE_THRESHOLD,
                 candidate_limit: int = VECTOR_CANDIDATE_LIMIT,
                 duplicate_threshold: float = NEAR_DUPLICATE_THRESHOLD):
        self.vector_db = vector_db
        self.embeddings = embeddings
        self.collections = list(collections or RETRIEVAL_COLLECTIONS)
        self.vector_weight = vector_weight
        self.lexical_weight = lexical_weight
        self.vector_threshold = vector_threshold
        self.candidate_limit = candidate_limit
        self.duplicate_threshold = duplicate_threshold

    def _candidates(self, query_vector, expansion: QueryExpansion, collections: List[str] = None,
                    accept: Callable[[VectorRecord], bool] = None) -> Dict[str, RetrievedPassage]:
        candidates: Dict[str, RetrievedPassage] = {}

        def add(collection_name: str, record: VectorRecord, vector_score: float):
            key = f"{collection_name}:{record.id}"
            if key in candidates or (accept is not None and not accept(record)):
                return
            lex = lexical_score(expansion, record.text)
            candidates[key] = RetrievedPassage(
                id=record.id,
                text=record.text,
                collection=collection_name,
                score=self.vector_weight * max(0.0, vector_score) + self.lexical_weight * lex,
                vector_score=vector_score,
                lexical_score=lex,
                metadata=record.metadata,
                vector=record.vector,
            )

        for name in (self.collections if collections is None else collections):
            if not self.vector_db.has_collection(name):
                continue
            collection = self.vector_db.collection(name)

            for hit in collection.find_similar(query_vector, self.vector_threshold, self.candidate_limit):
                add(name, hit.record, hit.score)

            query_terms = expansion.term_set()
            for record in collection.get_all():
                if query_terms & stemmed_terms(record.text):
                    add(name, record, cosine_similarity(query_vector, record.vector))

        return candidates

    def _passage_similarity(self, a: RetrievedPassage, b: RetrievedPassage) -> float:
        if a.vector is not None and b.vector is not None:
            return cosine_similarity(a.vector, b.vector)
        return 0.0

    def rerank(self, passages: List[RetrievedPassage]) -> List[RetrievedPassage]:
        """Boost important passages, then collapse near-duplicates to the best one."""
        for passage in passages:
            importance = passage.metadata.importance_value if passage.metadata is not None else 0.0
            passage.score = passage.score * (0.85 + 0.15 * importance)

        ranked = sorted(passages, key=lambda p: p.score, reverse=True)
        kept: List[RetrievedPassage] = []
        for passage in ranked:
            if any(self._passage_similarity(passage, other) > self.duplicate_threshold for other in kept):
                continue
            kept.append(passage)
        return kept

    async def retrieve(self, query: str, history: List[str] = None, limit: int = 3,
                       rerank: bool = True) -> List[RetrievedPassage]:
        """Return up to ``limit`` passages relevant to ``query``."""
        if not query or not query.strip() or limit <= 0:
            return []

        expansion = expand_query(query, context=(history or [])[-2:])
        query_vector = await self.embeddings.embed(query)

        passages = list(self._candidates(query_vector, expansion).values())
        if rerank:
            passages = self.rerank(passages)
        else:
            passages = sorted(passages, key=lambda p: p.score, reverse=True)
        return passages[:limit]

    async def recall_turns(self, query: str, session_id: str, limit: int = 3) -> List[RetrievedPassage]:
        """
        Earlier turns of one session that relate to ``query``.

        Only turns indexed under ``session_id`` are candidates, and the turn
        carrying ``query`` itself is skipped.
        """
        if not query or not query.strip() or not session_id or limit <= 0:
            return []

        current = query.strip()

        def accept(record: VectorRecord) -> bool:
            metadata = record.metadata
            return (isinstance(metadata, TurnMetadata) and metadata.session_id == session_id
                    and record.text != current)

        expansion = expand_query(query)
        query_vector = await self.embeddings.embed(query)
        passages = self._candidates(query_vector, expansion, RECENT_COLLECTIONS, accept).values()
        return sorted(passages, key=lambda p: p.score, reverse=True)[:limit]
