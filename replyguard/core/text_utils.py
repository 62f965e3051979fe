"""
Plain-text helpers shared by retrieval, detection and correction.
"""

import re
from collections import Counter
from typing import Iterable, List, Sequence, Set, Tuple

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]*")
_WORD_RE = re.compile(r"[a-z0-9']+")

STOP_WORDS = {
    "a", "about", "after", "again", "all", "also", "am", "an", "and", "any", "are", "as", "at",
    "be", "because", "been", "before", "being", "but", "by", "can", "could", "did", "do", "does",
    "doing", "for", "from", "had", "has", "have", "having", "he", "her", "here", "him", "his",
    "how", "i", "i'm", "if", "in", "into", "is", "it", "it's", "its", "just", "me", "more",
    "most", "my", "no", "not", "now", "of", "on", "or", "other", "our", "out", "over", "really",
    "she", "so", "some", "such", "than", "that", "the", "their", "them", "then", "there",
    "these", "they", "this", "those", "to", "too", "up", "very", "was", "we", "were", "what",
    "when", "where", "which", "while", "who", "why", "will", "with", "would", "you", "you're",
    "your", "yours", "yourself",
}


def split_sentences(text: str) -> List[str]:
    """Split into sentences, keeping each sentence's terminal punctuation."""
    return [s.strip() for s in _SENTENCE_RE.findall(text or "") if s.strip()]


def strip_terminal(sentence: str) -> str:
    return sentence.rstrip(" .!?")


def tokenize(text: str) -> List[str]:
    return _WORD_RE.findall((text or "").lower())


def content_words(text: str, min_length: int = 3) -> List[str]:
    """Tokens that are not stop words and at least ``min_length`` long."""
    return [t for t in tokenize(text) if len(t) >= min_length and t not in STOP_WORDS]


def simple_stem(word: str) -> str:
    """Crude suffix stripping, enough to match 'worried' with 'worry'."""
    for suffix, replacement in (("ies", "y"), ("ied", "y"), ("ing", ""), ("ness", ""),
                                ("ed", ""), ("ly", ""), ("es", ""), ("s", "")):
        if word.endswith(suffix) and len(word) - len(suffix) >= 3:
            return word[: len(word) - len(suffix)] + replacement
    return word


def stemmed_terms(text: str, min_length: int = 3) -> Set[str]:
    return {simple_stem(w) for w in content_words(text, min_length)}


def word_overlap_similarity(a: str, b: str) -> float:
    """Share of words longer than three characters that ``a`` and ``b`` have in common.

    Normalized by the longer sentence's word count so a short sentence
    contained in a long one does not score as a duplicate.
    """
    words_a = tokenize(a)
    words_b = tokenize(b)
    if not words_a or not words_b:
        return 0.0

    vocabulary_b = set(words_b)
    matches = sum(1 for word in words_a if len(word) > 3 and word in vocabulary_b)
    return matches / max(len(words_a), len(words_b))


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    set_a, set_b = set(a), set(b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def ngrams(tokens: Sequence[str], n: int) -> List[Tuple[str, ...]]:
    return [tuple(tokens[i:i + n]) for i in range(len(tokens) - n + 1)]


def repeated_ngrams(text: str, n: int = 4, min_chars: int = 10) -> List[str]:
    """Word n-grams occurring more than once, longer than ``min_chars``."""
    counts = Counter(ngrams(tokenize(text), n))
    phrases = []
    for gram, count in counts.items():
        phrase = " ".join(gram)
        if count > 1 and len(phrase) > min_chars:
            phrases.append(phrase)
    return phrases


def common_prefix_length(a: str, b: str) -> int:
    length = 0
    for char_a, char_b in zip(a.lower(), b.lower()):
        if char_a != char_b:
            break
        length += 1
    return length


def normalize_whitespace(text: str) -> str:
    """Collapse runs of spaces and tidy spacing around punctuation."""
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"\s+([.,!?;:])", r"\1", text)
    text = re.sub(r"([,;:])\s*([.!?])", r"\2", text)
    text = re.sub(r"^[\s,;:]+", "", text)
    text = re.sub(r"([.!?])\s*,\s*", r"\1 ", text)
    return text.strip()


def capitalize_first(text: str) -> str:
    for index, char in enumerate(text):
        if char.isalpha():
            return text[:index] + char.upper() + text[index + 1:]
    return text


def capitalize_sentences(text: str) -> str:
    return " ".join(capitalize_first(s) for s in split_sentences(text))
