"""
Reasoner Agent - lightweight consistency check.
Breaks a candidate response into claims about the patient, looks for evidence
of each claim in the current input and history, and hedges the claims that
lack support.
"""

from typing import Dict, List, Any
from dataclasses import dataclass, field
import re

from replyguard.core.text_utils import split_sentences, stemmed_terms, strip_terminal

CLAIM_RE = re.compile(
    r"\b(you|your|feel|feeling|experiencing|situation|issue|problem|concern|mentioned)\b", re.IGNORECASE
)
SAID_RE = re.compile(r"\byou (?:said|mentioned|told me|expressed|shared|indicated)\b[^\w]*([\w\s']+)", re.IGNORECASE)
FEELING_RE = re.compile(r"\byou(?:'re| are)? (?:feel|feeling|experiencing|are)\b[^\w]*([\w\s']+)", re.IGNORECASE)
FEELING_VERB_RE = re.compile(r"\byou(?:'re| are)? (feel|feeling|experiencing|are)\b", re.IGNORECASE)


def _soften(match: re.Match) -> str:
    verb = match.group(1).lower()
    if verb == "are":
        return "you might be"
    if verb == "experiencing":
        return "you might be experiencing"
    return "you might be feeling"


@dataclass
class ReasoningStep:
    """A claim extracted from the response and how well it is supported."""
    claim: str
    evidence: List[str] = field(default_factory=list)
    confidence: float = 1.0


@dataclass
class ReasoningResult:
    """Outcome of a consistency check."""
    verified_response: str
    steps: List[ReasoningStep]
    is_sound: bool

    def issues_below(self, threshold: float) -> List[str]:
        return [
            f"Reasoning issue: unsupported claim '{step.claim}' (confidence: {step.confidence:.2f})"
            for step in self.steps
            if step.confidence < threshold
        ]


class ReasonerAgent:
    """
    Checks each claim in a response against what the patient has actually said.

    Claims of the form "you said X" with no trace of X anywhere score 0.3;
    claims about feelings that are only inferred score 0.6; everything else
    scores 0.9. A response is sound when no step falls below
    ``soundness_threshold``.
    """

    def __init__(self, soundness_threshold: float = 0.7, min_claim_length: int = 15):
        self.soundness_threshold = soundness_threshold
        self.min_claim_length = min_claim_length
        self._stats = {"checks": 0, "revisions": 0}

    def extract_steps(self, response: str) -> List[ReasoningStep]:
        steps = []
        for sentence in split_sentences(response):
            if sentence.endswith("?"):
                continue
            claim = strip_terminal(sentence)
            if len(claim) < self.min_claim_length:
                continue
            if CLAIM_RE.search(claim):
                steps.append(ReasoningStep(claim=claim))
        return steps

    def _supported(self, statement: str, sources: List[str]) -> bool:
        terms = stemmed_terms(statement)
        if not terms:
            return True
        available = set()
        for source in sources:
            available |= stemmed_terms(source)
        # at least half of what is attributed to the patient must appear
        return len(terms & available) * 2 >= len(terms)

    def verify_step(self, step: ReasoningStep, user_input: str, history: List[str]) -> ReasoningStep:
        said = SAID_RE.search(step.claim)
        if said:
            statement = said.group(1).strip()
            if self._supported(statement, list(history)):
                return ReasoningStep(step.claim, [f"History supports: '{statement}'"], 0.9)
            return ReasoningStep(step.claim, ["No supporting evidence found in conversation history"], 0.3)

        feeling = FEELING_RE.search(step.claim)
        if feeling:
            statement = feeling.group(1).strip()
            if self._supported(statement, [user_input] + list(history)[-3:]):
                return ReasoningStep(step.claim, [f"Recent messages support: '{statement}'"], 0.9)
            return ReasoningStep(step.claim, ["No direct evidence, appears to be an inference"], 0.6)

        return ReasoningStep(step.claim, ["No contradicting evidence found"], 0.9)

    def revise(self, response: str, steps: List[ReasoningStep]) -> str:
        """Replace unsupported claims with hedged versions."""
        revised = response
        for step in steps:
            if step.confidence >= self.soundness_threshold:
                continue

            if re.search(r"\byou (?:said|mentioned|told me|expressed)\b", step.claim, re.IGNORECASE):
                replacement = re.sub(r"\byou (?:said|mentioned|told me|expressed)\b", "you may have indicated",
                                     step.claim, count=1, flags=re.IGNORECASE)
            elif FEELING_RE.search(step.claim):
                replacement = FEELING_VERB_RE.sub(_soften, step.claim, count=1)
            else:
                replacement = f"It seems like {step.claim[0].lower()}{step.claim[1:]}"

            revised = revised.replace(step.claim, replacement, 1)
        return revised

    def verify(self, response: str, user_input: str, history: List[str]) -> ReasoningResult:
        """Run the consistency check and revise the response when it is unsound."""
        self._stats["checks"] += 1
        steps = [self.verify_step(step, user_input, history) for step in self.extract_steps(response)]
        is_sound = all(step.confidence >= self.soundness_threshold for step in steps)

        verified = response
        if not is_sound:
            verified = self.revise(response, steps)
            self._stats["revisions"] += 1

        return ReasoningResult(verified_response=verified, steps=steps, is_sound=is_sound)

    def get_stats(self) -> Dict[str, Any]:
        return dict(self._stats)

    def health_check(self) -> bool:
        """Check the agent can process a trivial response."""
        try:
            result = self.verify("I hear that this week has been hard for you.", "This week has been hard", [])
            return result.is_sound
        except Exception:
            return False
