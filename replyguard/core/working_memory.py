"""
Rolling conversational memory.
Fixed-capacity FIFO buffer of the most recent patient/agent turns, used as
ground truth for verification, plus the conversation-boundary detector that
decides when that ground truth must be discarded.
"""

from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional
import re
import time

from .config import MEMORY_CAPACITY, NEW_CONVERSATION_GAP_SEC
from .schema import MemoryTurn, Role
from .text_utils import content_words, jaccard, simple_stem


@dataclass
class BoundaryDecision:
    is_new: bool
    reason: Optional[str] = None


class ConversationBoundaryDetector:
    """Decides whether a user message opens a new conversation."""

    GREETING_PATTERNS = [
        r"^(hi|hello|hey|howdy|greetings)\b",
        r"^good (morning|afternoon|evening)\b",
        r"^nice to meet you\b",
        r"^my name is [a-z]+\b",
    ]
    # "I'm Sam" needs a capitalised name so "I'm exhausted" stays in the conversation
    SELF_INTRO_RE = re.compile(r"^(?:[Ii]'m|[Ii] am) [A-Z][a-z]+[.!]?$")

    RESET_PATTERNS = [
        r"\b(start over|new conversation|start fresh|let's start again|let us start again)\b",
        r"\b(reset|forget (everything|what i said|all that))\b",
    ]

    def __init__(self, gap_sec: float = NEW_CONVERSATION_GAP_SEC, min_topic_words: int = 5,
                 topic_overlap_threshold: float = 0.0, intro_min_turns: int = 3):
        self.gap_sec = gap_sec
        self.min_topic_words = min_topic_words
        self.topic_overlap_threshold = topic_overlap_threshold
        self.intro_min_turns = intro_min_turns

    def _matches(self, patterns: List[str], text: str) -> bool:
        return any(re.search(pattern, text, re.IGNORECASE) for pattern in patterns)

    def _topic_shift(self, user_input: str, recent: List[MemoryTurn]) -> bool:
        input_terms = {simple_stem(w) for w in content_words(user_input, 4)}
        recent_terms = set()
        for turn in recent:
            recent_terms.update(simple_stem(w) for w in content_words(turn.content, 4))

        # Too little text on either side to judge
        if len(input_terms) < self.min_topic_words or len(recent_terms) < self.min_topic_words:
            return False
        return jaccard(input_terms, recent_terms) <= self.topic_overlap_threshold

    def evaluate(self, user_input: str, turns: List[MemoryTurn], now: float = None) -> BoundaryDecision:
        if not turns:
            return BoundaryDecision(True, "empty_buffer")

        now = time.time() if now is None else now
        if now - turns[-1].created_at > self.gap_sec:
            return BoundaryDecision(True, "time_gap")

        text = user_input.strip()
        if self._matches(self.RESET_PATTERNS, text):
            return BoundaryDecision(True, "reset_phrase")
        if self._matches(self.GREETING_PATTERNS, text):
            return BoundaryDecision(True, "greeting")
        if len(turns) > self.intro_min_turns and self.SELF_INTRO_RE.match(text):
            return BoundaryDecision(True, "greeting")
        if self._topic_shift(text, turns[-2:]):
            return BoundaryDecision(True, "topic_shift")

        return BoundaryDecision(False)


class RollingMemory:
    """
    Ring buffer of the last ``capacity`` conversation turns.

    Turns are evicted oldest-first. Sequence numbers keep increasing until
    ``clear`` so evicted turns leave gaps at the front only.
    """

    def __init__(self, capacity: int = MEMORY_CAPACITY, detector: ConversationBoundaryDetector = None):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.detector = detector or ConversationBoundaryDetector()
        self._turns: Deque[MemoryTurn] = deque(maxlen=capacity)
        self._next_sequence = 0
        self._stats = {
            "turns_added": 0,
            "evictions": 0,
            "conversations_started": 0,
        }

    def add_turn(self, role, content: str) -> MemoryTurn:
        """Append a turn, evicting the oldest one when full."""
        role = Role(role)  # ValueError for unknown roles
        if len(self._turns) == self.capacity:
            self._stats["evictions"] += 1

        turn = MemoryTurn(role=role, content=content, sequence=self._next_sequence)
        self._turns.append(turn)
        self._next_sequence += 1
        self._stats["turns_added"] += 1
        return turn

    def add_patient_turn(self, content: str) -> MemoryTurn:
        return self.add_turn(Role.PATIENT, content)

    def add_agent_turn(self, content: str) -> MemoryTurn:
        return self.add_turn(Role.AGENT, content)

    def is_new_conversation(self, user_input: str, now: float = None) -> bool:
        return self.check_boundary(user_input, now).is_new

    def check_boundary(self, user_input: str, now: float = None) -> BoundaryDecision:
        return self.detector.evaluate(user_input, list(self._turns), now)

    def clear(self) -> None:
        """Forget every turn."""
        self._turns.clear()
        self._next_sequence = 0
        self._stats["conversations_started"] += 1

    def get_turns(self) -> List[MemoryTurn]:
        return list(self._turns)

    def last(self, count: int) -> List[MemoryTurn]:
        if count <= 0:
            return []
        return list(self._turns)[-count:]

    def contents(self, role: Optional[Role] = None) -> List[str]:
        return [t.content for t in self._turns if role is None or t.role == Role(role)]

    @property
    def next_sequence(self) -> int:
        return self._next_sequence

    def is_empty(self) -> bool:
        return not self._turns

    def __len__(self) -> int:
        return len(self._turns)

    def get_stats(self) -> Dict[str, Any]:
        return {**self._stats, "size": len(self._turns), "capacity": self.capacity}

    def debug_info(self) -> Dict[str, Any]:
        """Get detailed debug information about current memory state."""
        return {
            "stats": self.get_stats(),
            "turns": [
                {"role": t.role.value, "sequence": t.sequence, "length": len(t.content)}
                for t in self._turns
            ],
        }
