"""
Hallucination Detector Agent
Screens candidate responses for fabricated memories, unsupported continuity,
contradictions, repetition, risky tokens and unsafe protocol mixing.

The detector:
1. Runs a cheap quick check to decide whether a full scan is needed
2. Runs every registered scanner, isolating scanner failures
3. Scores confidence from per-type penalties and classifies the result
4. Generates a corrected response when the result is a hallucination
"""

import re
from typing import Dict, List, Any, Optional, Tuple

from util.logging import audit_event, logger
from replyguard.core import config
from replyguard.core.corrections import generate_correction
from replyguard.core.detection_rules import (
    CASUAL_RE,
    CONTINUITY_RE,
    CRISIS_RE,
    DEFAULT_SCANNERS,
    MEMORY_CLAIM_RE,
    SUICIDE_INPUT_RE,
    ScanContext,
    Scanner,
    score_tokens,
)
from replyguard.core.schema import (
    BLOCKING_SEVERITIES,
    HallucinationCheck,
    HallucinationFlag,
    MemoryTurn,
    QuickCheckResult,
    Severity,
)
from replyguard.core.text_utils import common_prefix_length, split_sentences, word_overlap_similarity


class HallucinationDetector:
    """
    Multi-signal hallucination detector with confidence scoring.

    Confidence starts at 1.0 and loses a fixed penalty per flag, looked up by
    flag type in ``penalty_weights``. A result is a hallucination when the
    confidence falls below ``sensitivity`` or any flag is high or critical.
    """

    def __init__(self, scanners: List[Tuple[str, Scanner]] = None,
                 penalty_weights: Dict[str, float] = None,
                 sensitivity: float = 0.6,
                 token_threshold: float = 0.6):
        self.scanners = list(scanners) if scanners is not None else list(DEFAULT_SCANNERS)
        self.penalty_weights = dict(penalty_weights or config.PENALTY_WEIGHTS)
        self.sensitivity = sensitivity
        self.token_threshold = token_threshold
        self._stats = {
            "quick_checks": 0,
            "full_scans": 0,
            "hallucinations": 0,
            "corrections": 0,
            "scanner_failures": 0,
            "critical_flags": 0,
        }

    def register_scanner(self, name: str, scanner: Scanner) -> None:
        self.scanners.append((name, scanner))

    def quick_check(self, response: str, history: List[str], user_input: str = "") -> QuickCheckResult:
        """Cheap surface screen. Trips on anything worth a full scan."""
        self._stats["quick_checks"] += 1

        if len(history) <= 2 and MEMORY_CLAIM_RE.search(response):
            return QuickCheckResult(True, "memory_claim_in_new_conversation")

        sentences = split_sentences(response)
        for i in range(len(sentences)):
            for j in range(i + 1, len(sentences)):
                if word_overlap_similarity(sentences[i], sentences[j]) > config.REPETITION_SIMILARITY_THRESHOLD:
                    return QuickCheckResult(True, "repeated_sentences", has_repeated_sentences=True)

        if len(sentences) >= 3:
            for i in range(len(sentences)):
                for j in range(i + 1, len(sentences)):
                    a, b = sentences[i], sentences[j]
                    if len(a) > 15 and len(b) > 15 and common_prefix_length(a, b) > 10:
                        return QuickCheckResult(True, "repeated_sentence_prefix")

        if len(re.findall(r"\bI remember\b", response, re.IGNORECASE)) > 1:
            return QuickCheckResult(True, "multiple_memory_claims")

        if MEMORY_CLAIM_RE.search(response) or CONTINUITY_RE.search(response):
            return QuickCheckResult(True, "memory_claim")

        if (CRISIS_RE.search(response) and CASUAL_RE.search(response)) or SUICIDE_INPUT_RE.search(user_input or ""):
            return QuickCheckResult(True, "safety_surface")

        return QuickCheckResult(False)

    def score(self, flags: List[HallucinationFlag]) -> float:
        confidence = 1.0
        for flag in flags:
            confidence -= self.penalty_weights.get(flag.type.value, 0.0)
        return max(0.0, min(1.0, confidence))

    def classify(self, confidence: float, flags: List[HallucinationFlag], sensitivity: float = None) -> bool:
        threshold = self.sensitivity if sensitivity is None else sensitivity
        return confidence < threshold or any(flag.severity in BLOCKING_SEVERITIES for flag in flags)

    def detect(self, response: str, user_input: str, history: List[str],
               memory_turns: Optional[List[MemoryTurn]] = None,
               sensitivity: float = None, token_threshold: float = None) -> HallucinationCheck:
        """Run every scanner and score the result."""
        self._stats["full_scans"] += 1
        context = ScanContext(
            user_input=user_input or "",
            history=list(history or []),
            memory_turns=list(memory_turns or []),
            token_threshold=self.token_threshold if token_threshold is None else token_threshold,
        )

        flags: List[HallucinationFlag] = []
        failed = []
        for name, scanner in self.scanners:
            try:
                flags.extend(scanner(response, context))
            except Exception as e:
                self._stats["scanner_failures"] += 1
                failed.append(name)
                logger.warning(f"Scanner '{name}' failed, continuing with partial flags: {e}")

        confidence = self.score(flags)
        is_hallucination = self.classify(confidence, flags, sensitivity)
        check = HallucinationCheck(
            is_hallucination=is_hallucination,
            confidence=confidence,
            flags=flags,
            token_scores=[score for _, score in score_tokens(response)],
            failed_scanners=failed,
        )

        for flag in flags:
            if flag.severity == Severity.CRITICAL:
                self._stats["critical_flags"] += 1
                audit_event(
                    "detection.critical_flag",
                    {"flag_type": flag.type.value},
                    {"description": flag.description, "response": response},
                )

        if is_hallucination:
            self._stats["hallucinations"] += 1
        logger.log_detection(len(flags), confidence, is_hallucination, {"types": check.flag_types()})
        return check

    def check_and_fix(self, response: str, user_input: str, history: List[str],
                      memory_turns: Optional[List[MemoryTurn]] = None,
                      sensitivity: float = None, token_threshold: float = None) -> HallucinationCheck:
        """Quick check, full scan when needed, and correction when flagged."""
        quick = self.quick_check(response, history, user_input)
        if not quick.potential_issue and len(history) > 2:
            return HallucinationCheck(is_hallucination=False, confidence=1.0)

        check = self.detect(response, user_input, history, memory_turns, sensitivity, token_threshold)
        if check.is_hallucination:
            check.corrected_response = generate_correction(response, check.flags)
            self._stats["corrections"] += 1
        return check

    def get_stats(self) -> Dict[str, Any]:
        return dict(self._stats)

    def health_check(self) -> bool:
        """Check the detector flags a known fabricated memory."""
        try:
            check = self.detect("You mentioned your sister yesterday.", "hello", [])
            return check.is_hallucination
        except Exception:
            return False
