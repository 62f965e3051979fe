"""
Hallucination scanners.
Each scanner is a plain predicate function ``(text, context) -> flags`` so new
scanners can be registered without touching the detector or the orchestrator.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Set, Tuple
import re

from .config import REPETITION_SIMILARITY_THRESHOLD
from .schema import FlagType, HallucinationFlag, MemoryTurn, Severity
from .text_utils import (
    content_words,
    repeated_ngrams,
    simple_stem,
    split_sentences,
    strip_terminal,
    tokenize,
    word_overlap_similarity,
)


@dataclass
class ScanContext:
    """Everything a scanner may check a response against."""

    user_input: str = ""
    history: List[str] = field(default_factory=list)
    memory_turns: List[MemoryTurn] = field(default_factory=list)
    token_threshold: float = 0.6

    @property
    def is_new_conversation(self) -> bool:
        return len(self.history) <= 2

    def ground_truth_terms(self) -> Set[str]:
        """Stemmed content words of everything the patient and agent actually said."""
        texts = list(self.history) + [turn.content for turn in self.memory_turns]
        if self.user_input:
            texts.append(self.user_input)
        terms = set()
        for text in texts:
            terms.update(simple_stem(w) for w in content_words(text))
        return terms


Scanner = Callable[[str, ScanContext], List[HallucinationFlag]]


MEMORY_CLAIM_RE = re.compile(
    r"\b(as we discussed|as you mentioned|as you said|as i mentioned|you mentioned|you told me|"
    r"you said|you shared|you(?:'ve| have) told me|you brought up|we(?:'ve| have)? discussed|"
    r"we(?:'ve| have)? talked about|i remember|earlier you said|previously you said)\b",
    re.IGNORECASE,
)

CONTINUITY_PATTERNS = [
    r"\bas we(?:'ve| have)? (?:discussed|been discussing|talked about|been talking about)\b",
    r"\b(?:continuing|to continue) (?:our|from our) (?:conversation|discussion|session)\b",
    r"\bas we were (?:saying|discussing)\b",
    r"\b(?:like|since|unlike) (?:last time|our last (?:session|conversation))\b",
    r"\bwe(?:'ve| have) been (?:working on|focusing on|talking about|exploring)\b",
    r"\bin our (?:previous|last|earlier) (?:sessions?|conversations?|discussions?)\b",
    r"\bpicking up where we left off\b",
    r"\byour [\w\s']{1,30}? (?:has|have) (?:improved|gotten better|gotten worse|changed)\b",
    r"\byou(?:'ve| have) (?:made|been making) (?:good |great |real )?progress\b",
]
CONTINUITY_RE = re.compile("|".join(CONTINUITY_PATTERNS), re.IGNORECASE)

CONTRADICTION_PATTERNS = [
    r"\bnot\b[^.!?]{1,40}\bbut\b[^.!?]{1,40}\bactually\b[^.!?]{1,40}\bis\b",
    r"\b(?:definitely|certainly)\b[^.!?]{1,40}\bbut\b[^.!?]{1,40}\b(?:definitely|certainly) not\b",
]

NEGATORS = {"not", "no", "never"}
CONTRACTIONS = {
    "can't": "can not", "cannot": "can not", "won't": "will not", "don't": "do not",
    "doesn't": "does not", "didn't": "did not", "isn't": "is not", "aren't": "are not",
    "wasn't": "was not", "weren't": "were not", "haven't": "have not", "hasn't": "has not",
    "shouldn't": "should not", "wouldn't": "would not", "couldn't": "could not",
}

TOKEN_TRIGGERS = {"remember", "remembered", "mentioned", "told", "said", "discussed"}
DATE_RE = re.compile(
    r"^(?:\d{1,2}/\d{1,2}(?:/\d{2,4})?|\d{4}-\d{2}-\d{2}|monday|tuesday|wednesday|thursday|friday|"
    r"saturday|sunday|january|february|march|april|june|july|august|september|october|"
    r"november|december|yesterday)$"
)

CRISIS_RE = re.compile(r"\b(eating disorder|suicid\w*|crisis|self-harm|mental health)\b", re.IGNORECASE)
CASUAL_RE = re.compile(
    r"\b(brewery|breweries|restaurant|pub|bar|craft beer|food|recipe|social gathering|concert)\b",
    re.IGNORECASE,
)
SUICIDE_INPUT_RE = re.compile(
    r"\b(suicid\w*|kill myself|end my life|want to die|self-harm|hurt myself)\b", re.IGNORECASE
)
CRISIS_RESOURCE_RE = re.compile(r"\b(988|crisis|professional|emergency|lifeline|hotline)\b", re.IGNORECASE)


def _unsupported(claim_text: str, context: ScanContext) -> bool:
    terms = {simple_stem(w) for w in content_words(claim_text)}
    if not terms:
        return False
    return not (terms & context.ground_truth_terms())


def _claim_remainder(text: str, match: re.Match) -> str:
    remainder = text[match.end():]
    return re.split(r"[.!?;]", remainder, maxsplit=1)[0].strip(" ,")


def scan_false_memory(text: str, context: ScanContext) -> List[HallucinationFlag]:
    """Flag references to prior discussion that history cannot back up."""
    flags = []
    for match in MEMORY_CLAIM_RE.finditer(text):
        phrase = match.group(0)
        topic = _claim_remainder(text, match)
        if context.is_new_conversation:
            flags.append(HallucinationFlag(
                type=FlagType.FALSE_MEMORY,
                severity=Severity.HIGH,
                description=f"Memory reference '{phrase}' in a new conversation",
                confidence=0.9,
                matched_text=phrase,
            ))
        elif _unsupported(topic, context):
            flags.append(HallucinationFlag(
                type=FlagType.FALSE_MEMORY,
                severity=Severity.HIGH,
                description=f"Memory reference '{phrase}' to a topic not found in history",
                confidence=0.75,
                matched_text=phrase,
            ))
    return flags


def scan_false_continuity(text: str, context: ScanContext) -> List[HallucinationFlag]:
    """Flag claims of an ongoing thread or progress that history does not support."""
    flags = []
    for sentence in split_sentences(text):
        match = CONTINUITY_RE.search(sentence)
        if not match:
            continue
        topic = CONTINUITY_RE.sub(" ", sentence)
        if context.is_new_conversation or _unsupported(topic, context):
            flags.append(HallucinationFlag(
                type=FlagType.FALSE_CONTINUITY,
                severity=Severity.HIGH,
                description=f"Continuity claim '{match.group(0)}' without supporting history",
                confidence=0.8,
                matched_text=match.group(0),
            ))
    return flags


def polarity_key(sentence: str) -> Tuple[Tuple[str, ...], bool]:
    words = []
    for token in tokenize(sentence):
        words.extend(CONTRACTIONS.get(token, token).split())
    negated = sum(1 for w in words if w in NEGATORS) % 2 == 1
    return tuple(w for w in words if w not in NEGATORS), negated


def scan_logical_errors(text: str, context: ScanContext) -> List[HallucinationFlag]:
    """Flag direct self-contradictions inside the response."""
    flags = []
    for pattern in CONTRADICTION_PATTERNS:
        match = re.search(pattern, text, re.IGNORECASE)
        if match:
            flags.append(HallucinationFlag(
                type=FlagType.LOGICAL_ERROR,
                severity=Severity.MEDIUM,
                description="Contradictory construction within a sentence",
                confidence=0.6,
                matched_text=match.group(0),
            ))

    seen = {}
    for sentence in split_sentences(text):
        key, negated = polarity_key(sentence)
        if len(key) < 3:
            continue
        if key in seen and seen[key] != negated:
            flags.append(HallucinationFlag(
                type=FlagType.LOGICAL_ERROR,
                severity=Severity.MEDIUM,
                description="Sentence contradicts an earlier statement",
                confidence=0.8,
                matched_text=strip_terminal(sentence),
            ))
        seen.setdefault(key, negated)
    return flags


def scan_repetition(text: str, context: ScanContext) -> List[HallucinationFlag]:
    """Flag near-duplicate sentences and repeated 4-word phrases."""
    flags = []
    sentences = split_sentences(text)
    for j in range(1, len(sentences)):
        if any(word_overlap_similarity(sentences[i], sentences[j]) > REPETITION_SIMILARITY_THRESHOLD
               for i in range(j)):
            flags.append(HallucinationFlag(
                type=FlagType.REPETITION,
                severity=Severity.HIGH,
                description="Repeated sentence",
                confidence=0.9,
                matched_text=strip_terminal(sentences[j]),
            ))

    phrases = repeated_ngrams(text, 4)
    if phrases:
        flags.append(HallucinationFlag(
            type=FlagType.REPETITION,
            severity=Severity.MEDIUM,
            description=f"Repeated phrase '{phrases[0]}'",
            confidence=0.7,
            matched_text=phrases[0],
        ))
    return flags


def score_tokens(text: str) -> List[Tuple[str, float]]:
    """Heuristic per-token confidence. Lower means riskier."""
    scored = []
    for token in re.findall(r"[A-Za-z0-9'/\-]+", text):
        lowered = token.lower()
        if DATE_RE.match(lowered):
            score = 0.55
        elif lowered in TOKEN_TRIGGERS:
            score = 0.5
        elif any(ch.isdigit() for ch in lowered):
            score = 0.6
        else:
            score = 1.0
        scored.append((token, score))
    return scored


def scan_token_level(text: str, context: ScanContext) -> List[HallucinationFlag]:
    """Flag responses dense in low-confidence tokens or cut off mid-sentence."""
    flags = []
    risky = [token for token, score in score_tokens(text) if score <= context.token_threshold]
    if len(risky) >= 2:
        flags.append(HallucinationFlag(
            type=FlagType.TOKEN_LEVEL,
            severity=Severity.MEDIUM if len(risky) >= 4 else Severity.LOW,
            description=f"{len(risky)} low-confidence tokens ({', '.join(risky[:4])})",
            confidence=0.5,
        ))

    stripped = text.strip()
    if len(stripped.split()) >= 3 and stripped[-1] not in ".!?\"')":
        flags.append(HallucinationFlag(
            type=FlagType.TOKEN_LEVEL,
            severity=Severity.LOW,
            description="Response ends mid-sentence",
            confidence=0.6,
        ))
    return flags


def scan_protocol_mix(text: str, context: ScanContext) -> List[HallucinationFlag]:
    """Flag crisis content mixed with casual content in the same reply."""
    crisis = CRISIS_RE.search(text)
    casual = CASUAL_RE.search(text)
    if crisis and casual:
        return [HallucinationFlag(
            type=FlagType.PROTOCOL_MIX,
            severity=Severity.CRITICAL,
            description=f"Crisis content '{crisis.group(0)}' mixed with casual content '{casual.group(0)}'",
            confidence=0.95,
        )]
    return []


def scan_crisis_resources(text: str, context: ScanContext) -> List[HallucinationFlag]:
    """Flag replies to suicide or self-harm disclosures that offer no resources."""
    if SUICIDE_INPUT_RE.search(context.user_input or "") and not CRISIS_RESOURCE_RE.search(text):
        return [HallucinationFlag(
            type=FlagType.MISSING_CRISIS_RESOURCES,
            severity=Severity.CRITICAL,
            description="Response to a crisis disclosure lacks crisis resources",
            confidence=0.95,
        )]
    return []


DEFAULT_SCANNERS: List[Tuple[str, Scanner]] = [
    ("false_memory", scan_false_memory),
    ("false_continuity", scan_false_continuity),
    ("logical_error", scan_logical_errors),
    ("repetition", scan_repetition),
    ("token_level", scan_token_level),
    ("protocol_mix", scan_protocol_mix),
    ("crisis_resources", scan_crisis_resources),
]
