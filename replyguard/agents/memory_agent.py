"""
Retrieval Agent - retrieval-augmented responses.
Retrieves knowledge passages for the patient's message and weaves at most one
of them into the candidate response.
"""

from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field

from util.logging import logger
from replyguard.core.config import RAG_MIN_SCORE
from replyguard.core.search_service import HybridSearchService, RetrievedPassage
from replyguard.core.text_utils import content_words, simple_stem, split_sentences, stemmed_terms


@dataclass
class AugmentationResult:
    """Outcome of one augmentation attempt."""
    response: str
    applied: bool
    passages: List[RetrievedPassage] = field(default_factory=list)
    inserted: Optional[RetrievedPassage] = None
    recalled: List[RetrievedPassage] = field(default_factory=list)


def key_terms(text: str, count: int = 3) -> List[str]:
    """The longest distinct content words of ``text``, stemmed."""
    seen = []
    for word in sorted(content_words(text, 4), key=len, reverse=True):
        stem = simple_stem(word)
        if stem not in seen:
            seen.append(stem)
        if len(seen) == count:
            break
    return seen


def mentions(response: str, passage_text: str) -> bool:
    """True when the response already covers most of the passage's key terms."""
    terms = key_terms(passage_text)
    if not terms:
        return True
    present = stemmed_terms(response)
    return sum(1 for term in terms if term in present) * 2 >= len(terms)


def insert_passage(response: str, passage_text: str) -> str:
    """Prepend to short responses, otherwise splice in after the second sentence."""
    passage = passage_text.strip()
    if passage and passage[-1] not in ".!?":
        passage += "."

    sentences = split_sentences(response)
    if len(sentences) <= 2:
        return f"{passage} {response.strip()}".strip()
    return " ".join(sentences[:2] + [passage] + sentences[2:])


class RetrievalAgent:
    """
    Grounds responses in stored knowledge.

    Only the best passage is considered; when the response already mentions
    it the response is returned untouched, so augmenting twice is a no-op.
    """

    def __init__(self, search_service: HybridSearchService, min_score: float = RAG_MIN_SCORE):
        self.search_service = search_service
        self.min_score = min_score
        self._stats = {"retrievals": 0, "augmentations": 0, "skipped": 0}

    async def retrieve(self, query: str, history: List[str] = None, limit: int = 3,
                       rerank: bool = True) -> List[RetrievedPassage]:
        self._stats["retrievals"] += 1
        return await self.search_service.retrieve(query, history, limit=limit, rerank=rerank)

    async def recall(self, query: str, session_id: Optional[str], limit: int = 3) -> List[RetrievedPassage]:
        """Earlier turns of the session related to ``query``, above ``min_score``."""
        if not session_id:
            return []
        turns = await self.search_service.recall_turns(query, session_id, limit=limit)
        return [turn for turn in turns if turn.score >= self.min_score]

    def augment_response(self, response: str, passages: List[RetrievedPassage]) -> AugmentationResult:
        if not passages or passages[0].score < self.min_score:
            return AugmentationResult(response=response, applied=False, passages=passages)

        best = passages[0]
        if mentions(response, best.text):
            self._stats["skipped"] += 1
            return AugmentationResult(response=response, applied=False, passages=passages)

        self._stats["augmentations"] += 1
        return AugmentationResult(
            response=insert_passage(response, best.text),
            applied=True,
            passages=passages,
            inserted=best,
        )

    async def augment(self, response: str, user_input: str, history: List[str] = None,
                      limit: int = 3, rerank: bool = True, session_id: Optional[str] = None) -> AugmentationResult:
        """
        Retrieve for ``user_input`` and augment ``response`` with the top passage.
        Related earlier turns of ``session_id`` come back in ``recalled``; they are
        never inserted into the response.
        """
        passages = await self.retrieve(user_input, history, limit=limit, rerank=rerank)
        result = self.augment_response(response, passages)
        result.recalled = await self.recall(user_input, session_id, limit=limit)
        logger.debug(
            f"RAG retrieved {len(passages)} passages, recalled {len(result.recalled)} turns, applied={result.applied}"
        )
        return result

    def get_stats(self) -> Dict[str, Any]:
        return dict(self._stats)

    def health_check(self) -> bool:
        return self.search_service is not None
