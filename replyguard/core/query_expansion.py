"""
Query expansion for lexical recall.
Adds domain synonyms, stems and detected concepts to a retrieval query.
"""

from dataclasses import dataclass, field
from typing import Dict, List
import re

from .text_utils import STOP_WORDS, simple_stem, tokenize

MENTAL_HEALTH_SYNONYMS: Dict[str, List[str]] = {
    "sad": ["depressed", "unhappy", "melancholy", "blue", "down", "sorrowful"],
    "depressed": ["sad", "despondent", "hopeless", "dejected", "gloomy", "miserable"],
    "anxiety": ["worry", "nervousness", "unease", "fear", "apprehension", "stress"],
    "stressed": ["pressured", "tense", "overwhelmed", "strained", "taxed"],
    "angry": ["upset", "irritated", "frustrated", "furious", "enraged", "hostile"],
    "trauma": ["ptsd", "traumatic experience", "distressing event", "psychological injury"],
    "therapy": ["counseling", "treatment", "psychotherapy", "mental health support"],
    "suicidal": ["self-harm", "wanting to die", "ending life", "suicide"],
    "addiction": ["substance abuse", "dependency", "substance use disorder", "habit"],
    "alcohol": ["drinking", "alcoholism", "liquor", "booze"],
    "drug": ["narcotic", "substance", "medication", "pill"],
    "relationship": ["marriage", "partnership", "dating", "couple"],
}

CONCEPT_PATTERNS: Dict[str, List[str]] = {
    "depression": [r"depress(ed|ion|ive)?", r"feeling (sad|down|low|blue)", r"(lack|no) (energy|motivation)"],
    "anxiety": [r"anxi(ety|ous)", r"(nervous|worried|stress)", r"panic attack", r"(fear|afraid|scared)"],
    "trauma": [r"trauma", r"ptsd", r"(flash|night)mares?", r"bad (memory|experience)"],
    "self-esteem": [r"self(-|\s)?(esteem|worth|image|confidence)", r"hate (myself|my body)"],
    "grief": [r"grie(f|ving)", r"loss of", r"\b(lost|died|passed away|death)\b"],
    "sleep": [r"\b(insomnia|can't sleep|cannot sleep|sleeping|nightmares?)\b"],
    "relationship issues": [r"(relationship|marriage) (problem|issue|trouble)s?", r"(break(-|\s)?up|divorce)"],
}


@dataclass
class QueryExpansion:
    original_query: str
    topics: List[str] = field(default_factory=list)
    expanded_terms: List[str] = field(default_factory=list)
    concepts: List[str] = field(default_factory=list)

    @property
    def expanded_query(self) -> str:
        return " ".join(self.expanded_terms) or self.original_query

    def term_set(self) -> set:
        """Stemmed single-word terms for lexical matching."""
        terms = set()
        for term in self.expanded_terms:
            for word in tokenize(term):
                if word not in STOP_WORDS:
                    terms.add(simple_stem(word))
        return terms


def extract_terms(text: str, min_length: int = 4) -> List[str]:
    """Significant words of ``text`` in order, without duplicates."""
    seen = []
    for word in tokenize(text):
        if len(word) >= min_length and word not in STOP_WORDS and not word.isdigit() and word not in seen:
            seen.append(word)
    return seen


def find_synonyms(term: str) -> List[str]:
    if term in MENTAL_HEALTH_SYNONYMS:
        return MENTAL_HEALTH_SYNONYMS[term]

    stem = simple_stem(term)
    for key, synonyms in MENTAL_HEALTH_SYNONYMS.items():
        if simple_stem(key) == stem or key.startswith(term) or term.startswith(key):
            return synonyms
        if term in synonyms:
            return [key] + [s for s in synonyms if s != term]
    return []


def detect_concepts(text: str) -> List[str]:
    return [
        concept for concept, patterns in CONCEPT_PATTERNS.items()
        if any(re.search(pattern, text, re.IGNORECASE) for pattern in patterns)
    ]


def expand_query(query: str, context: List[str] = None, max_expanded_terms: int = 5,
                 min_term_length: int = 4) -> QueryExpansion:
    """Expand ``query`` with synonyms, concepts and a few context terms.

    At most ``max_expanded_terms`` terms are added on top of the query's own.
    """
    topics = extract_terms(query, min_term_length)
    additions: List[str] = []

    def add(term: str):
        if term not in topics and term not in additions:
            additions.append(term)

    for term in topics:
        for synonym in find_synonyms(term)[:2]:
            add(synonym)

    concepts = detect_concepts(query)
    for concept in concepts:
        add(concept)

    for line in context or []:
        for term in extract_terms(line, min_term_length)[:2]:
            add(term)

    return QueryExpansion(
        original_query=query,
        topics=topics,
        expanded_terms=topics + additions[:max_expanded_terms],
        concepts=concepts,
    )
