"""
Data records shared by the memory, detection and pipeline layers.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import time


class Role(str, Enum):
    PATIENT = "patient"
    AGENT = "agent"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FlagType(str, Enum):
    FALSE_MEMORY = "false_memory"
    FALSE_CONTINUITY = "false_continuity"
    LOGICAL_ERROR = "logical_error"
    REPETITION = "repetition"
    TOKEN_LEVEL = "token_level_error"
    PROTOCOL_MIX = "critical_protocol_mix"
    MISSING_CRISIS_RESOURCES = "missing_crisis_resources"


BLOCKING_SEVERITIES = {Severity.HIGH, Severity.CRITICAL}
SAFETY_FLAG_TYPES = {FlagType.PROTOCOL_MIX, FlagType.MISSING_CRISIS_RESOURCES}


@dataclass
class MemoryTurn:
    role: Role
    content: str
    sequence: int
    created_at: float = field(default_factory=time.time)


@dataclass
class HallucinationFlag:
    """A single typed finding produced by a scanner."""

    type: FlagType
    severity: Severity
    description: str
    confidence: Optional[float] = None
    matched_text: Optional[str] = None

    def to_issue(self) -> str:
        return f"Hallucination ({self.type.value}): {self.description} (severity: {self.severity.value})"


@dataclass
class HallucinationCheck:
    """Outcome of a full detector scan."""

    is_hallucination: bool
    confidence: float
    flags: List[HallucinationFlag] = field(default_factory=list)
    token_scores: List[float] = field(default_factory=list)
    corrected_response: Optional[str] = None
    failed_scanners: List[str] = field(default_factory=list)

    def flag_types(self) -> List[str]:
        return [flag.type.value for flag in self.flags]

    def has_critical(self) -> bool:
        return any(flag.severity == Severity.CRITICAL for flag in self.flags)


@dataclass
class QuickCheckResult:
    potential_issue: bool
    reason: Optional[str] = None
    has_repeated_sentences: bool = False


@dataclass
class StagesApplied:
    rag: bool = False
    reasoning: bool = False
    detection: bool = False


@dataclass
class PipelineResult:
    """What the orchestrator returns for one response."""

    processed_response: str
    was_revised: bool
    stages_applied: StagesApplied
    confidence: float
    processing_time_ms: float
    issue_details: List[str] = field(default_factory=list)
    retrieved_passages: List[str] = field(default_factory=list)
    degraded_embeddings: bool = False
    timed_out: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
