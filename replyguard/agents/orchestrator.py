"""
Pipeline Orchestrator - verification pipeline for candidate responses.
Sequences retrieval augmentation, the reasoning check, hallucination detection
with correction and the final repetition fix.

This is the main entry point for response verification. The orchestrator:

1. Augments the response with retrieved knowledge (RAG)
2. Hedges claims the reasoning check cannot support
3. Detects and corrects hallucinations
4. Removes any repeated content that remains

Every stage fails open: an internal error skips that stage and the pipeline
continues with the text it already had. A global timeout returns the best
text produced so far.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from util.logging import logger
from replyguard.core.config import PipelineOptions, get_pipeline_options
from replyguard.core.corrections import fix_repeated_content, has_repeated_content
from replyguard.core.schema import (
    SAFETY_FLAG_TYPES,
    MemoryTurn,
    PipelineResult,
    Role,
    Severity,
    StagesApplied,
)
from replyguard.core.search_service import HybridSearchService
from replyguard.core.working_memory import RollingMemory
from replyguard.vector.semantic_memory import SemanticMemoryService
from .detector import HallucinationDetector
from .memory_agent import RetrievalAgent
from .reasoner import ReasonerAgent

REPETITION_ISSUE = "Repetition detected: Fixed repeated content"


@dataclass
class _PipelineState:
    """Best result so far. Stages only write to it once they have finished."""
    text: str
    confidence: float = 1.0
    stages: StagesApplied = field(default_factory=StagesApplied)
    issues: List[str] = field(default_factory=list)
    passages: List[str] = field(default_factory=list)
    recalled: List[MemoryTurn] = field(default_factory=list)


class PipelineOrchestrator:
    """
    Runs the verification stages in a fixed order:
    RAG -> reasoning -> detection -> repetition fix.
    """

    def __init__(self, retrieval_agent: Optional[RetrievalAgent] = None,
                 reasoner: Optional[ReasonerAgent] = None,
                 detector: Optional[HallucinationDetector] = None,
                 options: Optional[PipelineOptions] = None):
        self.retrieval_agent = retrieval_agent
        self.reasoner = reasoner or ReasonerAgent()
        self.detector = detector or HallucinationDetector()
        self.options = options or get_pipeline_options()
        self._stats = {"runs": 0, "revised": 0, "timeouts": 0, "stage_failures": 0}

    async def process(self, response_text: str, user_input: str, history: List[str],
                      options: Optional[PipelineOptions] = None,
                      memory_turns: Optional[List[MemoryTurn]] = None,
                      session_id: Optional[str] = None) -> PipelineResult:
        """
        Verify ``response_text`` and return the final text with its result record.
        With a ``session_id`` earlier turns of that session recalled during
        retrieval count as extra ground truth for detection.
        """
        options = options or self.options
        history = list(history or [])
        start = time.perf_counter()
        state = _PipelineState(text=response_text)
        timed_out = False
        self._stats["runs"] += 1

        try:
            await asyncio.wait_for(
                self._run_stages(state, user_input, history, options, memory_turns or [], session_id),
                timeout=options.timeout_ms / 1000.0,
            )
        except asyncio.TimeoutError:
            timed_out = True
            self._stats["timeouts"] += 1
            logger.log_pipeline_stage("pipeline", "timeout", (time.perf_counter() - start) * 1000,
                                      {"timeout_ms": options.timeout_ms})

        was_revised = state.text != response_text
        if was_revised:
            self._stats["revised"] += 1

        degraded = False
        if self.retrieval_agent is not None:
            degraded = self.retrieval_agent.search_service.embeddings.degraded

        return PipelineResult(
            processed_response=state.text,
            was_revised=was_revised,
            stages_applied=state.stages,
            confidence=max(0.0, min(1.0, state.confidence)),
            processing_time_ms=(time.perf_counter() - start) * 1000,
            issue_details=state.issues,
            retrieved_passages=state.passages,
            degraded_embeddings=degraded,
            timed_out=timed_out,
        )

    async def _run_stages(self, state: _PipelineState, user_input: str, history: List[str],
                          options: PipelineOptions, memory_turns: List[MemoryTurn],
                          session_id: Optional[str] = None) -> None:
        if options.enable_rag and self.retrieval_agent is not None:
            await self._guarded("rag", self._rag_stage(state, user_input, history, options, session_id))

        if options.enable_reasoning:
            await self._guarded("reasoning", self._reasoning_stage(state, user_input, history, options))

        if options.enable_detection:
            ground_truth = memory_turns + state.recalled
            await self._guarded("detection", self._detection_stage(state, user_input, history, options, ground_truth))

        await self._guarded("repetition", self._repetition_stage(state))

    async def _guarded(self, stage: str, coro) -> None:
        started = time.perf_counter()
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats["stage_failures"] += 1
            logger.log_pipeline_stage(stage, "failed", (time.perf_counter() - started) * 1000, {"error": str(e)})
            return
        logger.log_pipeline_stage(stage, "success", (time.perf_counter() - started) * 1000)

    async def _rag_stage(self, state: _PipelineState, user_input: str, history: List[str],
                         options: PipelineOptions, session_id: Optional[str] = None) -> None:
        result = await self.retrieval_agent.augment(
            state.text, user_input, history, limit=options.rag_limit, rerank=options.enable_reranking,
            session_id=session_id,
        )
        state.passages = [p.text for p in result.passages]
        state.recalled = [
            MemoryTurn(role=Role(p.metadata.role), content=p.text, sequence=p.metadata.sequence)
            for p in result.recalled
        ]
        if result.applied and result.response != state.text:
            state.text = result.response
            state.stages.rag = True

    async def _reasoning_stage(self, state: _PipelineState, user_input: str, history: List[str],
                               options: PipelineOptions) -> None:
        result = self.reasoner.verify(state.text, user_input, history)
        issues = result.issues_below(options.reasoning_threshold)
        if not result.is_sound:
            state.text = result.verified_response
            state.confidence *= 0.8
            state.issues.extend(issues)
        state.stages.reasoning = True

    async def _detection_stage(self, state: _PipelineState, user_input: str, history: List[str],
                               options: PipelineOptions, memory_turns: List[MemoryTurn]) -> None:
        check = self.detector.check_and_fix(
            state.text, user_input, history, memory_turns,
            sensitivity=options.detection_sensitivity,
            token_threshold=options.token_threshold,
        )
        if check.is_hallucination:
            if check.corrected_response:
                state.text = check.corrected_response
            state.confidence *= check.confidence
            state.issues.extend(flag.to_issue() for flag in check.flags)
        else:
            # safety flags are reported even when the text stands
            state.issues.extend(
                flag.to_issue() for flag in check.flags
                if flag.type in SAFETY_FLAG_TYPES or flag.severity == Severity.CRITICAL
            )
        state.stages.detection = True

    async def _repetition_stage(self, state: _PipelineState) -> None:
        if has_repeated_content(state.text):
            state.text = fix_repeated_content(state.text)
            state.confidence *= 0.9
            state.issues.append(REPETITION_ISSUE)

    def get_stats(self) -> Dict[str, Any]:
        return dict(self._stats)

    async def health_check(self) -> Dict[str, Any]:
        """Check health of all agents."""
        return {
            "retrieval_agent": self.retrieval_agent.health_check() if self.retrieval_agent else False,
            "reasoner": self.reasoner.health_check(),
            "detector": self.detector.health_check(),
            "stats": self.get_stats(),
        }


def create_orchestrator(semantic_memory: SemanticMemoryService,
                        options: Optional[PipelineOptions] = None) -> PipelineOrchestrator:
    """Wire the agents around a shared semantic memory service."""
    options = options or get_pipeline_options()
    search_service = HybridSearchService(semantic_memory.vector_db, semantic_memory.embeddings)
    return PipelineOrchestrator(
        retrieval_agent=RetrievalAgent(search_service),
        reasoner=ReasonerAgent(soundness_threshold=0.7),
        detector=HallucinationDetector(
            sensitivity=options.detection_sensitivity,
            token_threshold=options.token_threshold,
        ),
        options=options,
    )


class ConversationSession:
    """
    Ingress for one conversation.

    Keeps the rolling memory for the session, resets it (and the recent
    vector partitions) at conversation boundaries, runs the pipeline and hands
    the result to an optional sink.
    """

    def __init__(self, orchestrator: PipelineOrchestrator,
                 semantic_memory: Optional[SemanticMemoryService] = None,
                 memory: Optional[RollingMemory] = None,
                 session_id: Optional[str] = None,
                 on_result: Optional[Callable[[str, PipelineResult], Any]] = None,
                 record_evaluations: bool = False):
        self.orchestrator = orchestrator
        self.semantic_memory = semantic_memory
        self.memory = memory or RollingMemory()
        self.session_id = session_id or f"session_{uuid.uuid4().hex[:8]}"
        self.on_result = on_result
        self.record_evaluations = record_evaluations

    def reset(self) -> None:
        self.memory.clear()
        if self.semantic_memory is not None:
            self.semantic_memory.clear_recent(self.session_id)

    async def _index_turn(self, role: str, content: str, sequence: int, quality: Optional[float] = None) -> None:
        if self.semantic_memory is None:
            return
        try:
            await self.semantic_memory.add_turn(role, content, sequence, self.session_id, quality)
        except Exception as e:
            logger.warning(f"Could not index {role} turn: {e}")

    async def process_response(self, candidate: str, user_input: str,
                               history: Optional[List[str]] = None,
                               options: Optional[PipelineOptions] = None) -> PipelineResult:
        """Verify ``candidate`` as the reply to ``user_input``."""
        start = time.perf_counter()
        try:
            boundary = self.memory.check_boundary(user_input)
            if boundary.is_new:
                logger.log_operation("conversation.boundary", "new", {
                    "session_id": self.session_id, "reason": boundary.reason
                })
                self.reset()

            if history is None:
                history = self.memory.contents()

            patient_turn = self.memory.add_patient_turn(user_input)
            await self._index_turn("patient", user_input, patient_turn.sequence)

            result = await self.orchestrator.process(
                candidate, user_input, history, options, memory_turns=self.memory.get_turns()
            )

            agent_turn = self.memory.add_agent_turn(result.processed_response)
            await self._index_turn("agent", result.processed_response, agent_turn.sequence, result.confidence)

            if self.record_evaluations and self.semantic_memory is not None:
                await self.semantic_memory.add_evaluation(
                    user_input, result.confidence, result.was_revised, len(result.issue_details)
                )
        except Exception as e:
            logger.error(f"Pipeline failed, returning original response: {e}")
            result = PipelineResult(
                processed_response=candidate,
                was_revised=False,
                stages_applied=StagesApplied(),
                confidence=1.0,
                processing_time_ms=(time.perf_counter() - start) * 1000,
                issue_details=[f"Pipeline error: {type(e).__name__}"],
            )

        if self.on_result is not None:
            try:
                self.on_result(self.session_id, result)
            except Exception as e:
                logger.warning(f"Result sink failed: {e}")
        return result

    async def load_knowledge(self, entries, collection_name: str = None) -> List[str]:
        """Bulk insert knowledge entries with embedding generation."""
        if self.semantic_memory is None:
            return []
        if collection_name is None:
            return await self.semantic_memory.load_knowledge(entries)
        return await self.semantic_memory.load_knowledge(entries, collection_name)
