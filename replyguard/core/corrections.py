"""
Correction generator for flagged responses.
Rewrites unsupported memory and continuity claims into present tense, removes
repetition and contradictions, and repairs safety gaps. Every rewrite is
idempotent: correcting already-corrected text returns it unchanged.
"""

from typing import Iterable, List
import re

from .detection_rules import CASUAL_RE, CRISIS_RE, polarity_key
from .schema import FlagType, HallucinationFlag
from .text_utils import (
    capitalize_sentences,
    normalize_whitespace,
    split_sentences,
    word_overlap_similarity,
)

NEUTRAL_FALLBACK = "Tell me more about what's on your mind right now."
CRISIS_RESOURCE_SENTENCE = (
    "If you are thinking about suicide or self-harm, please call or text 988 "
    "(Suicide & Crisis Lifeline) or contact emergency services right away."
)

_CLAIM_VERBS = (
    r"(?:I remember|you mentioned|you told me|you said|you shared|you(?:'ve| have) told me|"
    r"you brought up|earlier you said|previously you said|we(?:'ve| have)? discussed|"
    r"we(?:'ve| have)? talked about|I mentioned)"
)
# claims with no object, e.g. "Like you said, ..." or "..., as you told me."
BARE_LEAD_CLAIM_RE = re.compile(
    r"\b(?:(?:just )?(?:like|as) )?" + _CLAIM_VERBS + r"\b\s*,\s*", re.IGNORECASE
)
BARE_TRAILING_CLAIM_RE = re.compile(
    r",?\s*\b(?:(?:just )?(?:like|as) )?" + _CLAIM_VERBS + r"\b(?=\s*(?:[.;!?]|$))", re.IGNORECASE
)
MEMORY_REWRITE_RE = re.compile(
    r"\b(?:I remember|you mentioned|you told me|you said|you shared|you(?:'ve| have) told me|"
    r"you brought up|earlier you said|previously you said|we(?:'ve| have)? talked about|"
    r"we(?:'ve| have) been focusing on)\s+"
    r"(?:that\s+|how\s+|about\s+|having\s+|feeling\s+|experiencing\s+)?([\w\s']+)",
    re.IGNORECASE,
)
DISCUSSED_RE = re.compile(r"\bwe(?:'ve| have)? discussed\s+([\w\s']+)", re.IGNORECASE)
LEAD_IN_RE = re.compile(
    r"\b(?:as we(?:'ve| have)? (?:discussed|been discussing|talked about|been talking about)|"
    r"as you mentioned|as you said|as i mentioned|as we were (?:saying|discussing)|"
    r"(?:continuing|to continue) (?:our|from our) (?:conversation|discussion|session)|"
    r"picking up where we left off|like last time)\b\s*,?\s*",
    re.IGNORECASE,
)
PROGRESS_RE = re.compile(
    r"\byour ([\w\s']{1,30}?) (?:has|have) (?:improved|gotten better|gotten worse|changed)\b",
    re.IGNORECASE,
)
EFFORT_RE = re.compile(r"\byou(?:'ve| have) (?:made|been making) (?:good |great |real )?progress\b", re.IGNORECASE)
ONGOING_RE = re.compile(
    r"\bwe(?:'ve| have) been (?:working on|talking about|exploring)\b", re.IGNORECASE
)
TIMELINE_RE = re.compile(
    r"\s*\b(?:in our (?:previous|last|earlier) (?:sessions?|conversations?|discussions?)|"
    r"(?:since|unlike) our last (?:session|conversation)|last time we (?:talked|spoke|met)|"
    r"last time|previously|earlier)\b,?",
    re.IGNORECASE,
)


def rewrite_memory_claims(text: str) -> str:
    """Turn claims about past discussion into present-tense acknowledgments."""
    text = BARE_LEAD_CLAIM_RE.sub("", text)
    text = BARE_TRAILING_CLAIM_RE.sub("", text)
    text = " ".join(s for s in split_sentences(text) if re.search(r"\w", s))
    text = LEAD_IN_RE.sub("", text)
    text = MEMORY_REWRITE_RE.sub(lambda m: f"what you're sharing about {m.group(1).strip()}", text)
    text = DISCUSSED_RE.sub(lambda m: f"you're bringing up {m.group(1).strip()}", text)
    text = PROGRESS_RE.sub(lambda m: f"I'd like to hear how your {m.group(1).strip()} feels right now", text)
    text = EFFORT_RE.sub("you're putting effort into this", text)
    text = ONGOING_RE.sub("you're exploring", text)
    return text


def strip_timeline_references(text: str) -> str:
    return TIMELINE_RE.sub("", text)


def collapse_stutter(text: str, max_phrase: int = 8, min_phrase: int = 3) -> str:
    """Drop immediately repeated word sequences ('I hear you I hear you ...')."""
    words = text.split()

    def norm(word: str) -> str:
        return word.lower().strip(".,!?;:")

    changed = True
    while changed:
        changed = False
        for n in range(max_phrase, min_phrase - 1, -1):
            i = 0
            while i + 2 * n <= len(words):
                if [norm(w) for w in words[i:i + n]] == [norm(w) for w in words[i + n:i + 2 * n]]:
                    # keep the second copy's punctuation if it closes a sentence
                    tail = words[i + 2 * n - 1]
                    del words[i + n:i + 2 * n]
                    if tail[-1:] in ".!?" and words[i + n - 1][-1:] not in ".!?":
                        words[i + n - 1] = words[i + n - 1].rstrip(",;:") + tail[-1]
                    changed = True
                else:
                    i += 1
    return " ".join(words)


def fix_repeated_content(text: str, threshold: float = 0.7) -> str:
    """Keep the first of every group of near-identical sentences."""
    kept: List[str] = []
    for sentence in split_sentences(collapse_stutter(text)):
        if any(word_overlap_similarity(previous, sentence) > threshold for previous in kept):
            continue
        kept.append(sentence)
    return " ".join(kept)


def has_repeated_content(text: str, threshold: float = 0.7) -> bool:
    fixed = fix_repeated_content(text, threshold)
    return fixed.split() != " ".join(split_sentences(text)).split()


def remove_contradictions(text: str) -> str:
    """Drop any sentence that negates an earlier one."""
    kept: List[str] = []
    seen = {}
    for sentence in split_sentences(text):
        key, negated = polarity_key(sentence)
        if len(key) >= 3 and key in seen and seen[key] != negated:
            continue
        seen.setdefault(key, negated)
        kept.append(sentence)
    return " ".join(kept)


def separate_protocols(text: str) -> str:
    """Remove casual sentences from a reply that carries crisis content."""
    sentences = split_sentences(text)
    if not any(CRISIS_RE.search(s) for s in sentences):
        return text
    kept = [s for s in sentences if CRISIS_RE.search(s) or not CASUAL_RE.search(s)]
    return " ".join(kept) if kept else text


def add_crisis_resources(text: str) -> str:
    if "988" in text:
        return text
    return f"{text.rstrip()} {CRISIS_RESOURCE_SENTENCE}".strip()


def tidy(text: str) -> str:
    """Normalize spacing and sentence capitalization after rewrites."""
    text = normalize_whitespace(text)
    if not text:
        return text
    text = capitalize_sentences(text)
    if text[-1] not in ".!?\"')":
        text += "."
    return text


def generate_correction(text: str, flags: Iterable[HallucinationFlag]) -> str:
    """Apply the rewrites matching the flag types present."""
    types = {flag.type for flag in flags}
    corrected = text

    if types & {FlagType.FALSE_MEMORY, FlagType.FALSE_CONTINUITY}:
        corrected = rewrite_memory_claims(corrected)
        corrected = strip_timeline_references(corrected)
    if FlagType.LOGICAL_ERROR in types:
        corrected = remove_contradictions(corrected)
    if FlagType.REPETITION in types:
        corrected = fix_repeated_content(corrected)
    if FlagType.PROTOCOL_MIX in types:
        corrected = separate_protocols(corrected)

    corrected = tidy(corrected) if corrected != text else corrected
    if not corrected.strip():
        corrected = NEUTRAL_FALLBACK

    if FlagType.MISSING_CRISIS_RESOURCES in types:
        corrected = add_crisis_resources(corrected)
    return corrected
