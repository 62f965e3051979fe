"""
Tests for correction generation on flagged responses.
"""

import pytest

from replyguard.core.corrections import (
    CRISIS_RESOURCE_SENTENCE,
    NEUTRAL_FALLBACK,
    add_crisis_resources,
    collapse_stutter,
    fix_repeated_content,
    generate_correction,
    has_repeated_content,
    remove_contradictions,
    rewrite_memory_claims,
    separate_protocols,
)
from replyguard.core.schema import FlagType, HallucinationFlag, Severity


def flag(flag_type, severity=Severity.HIGH):
    return HallucinationFlag(type=flag_type, severity=severity, description="test")


class TestMemoryRewrites:

    def test_progress_claim_becomes_present_tense(self):
        corrected = generate_correction(
            "As we discussed, your anxiety has improved.",
            [flag(FlagType.FALSE_MEMORY), flag(FlagType.FALSE_CONTINUITY)],
        )
        assert corrected == "I'd like to hear how your anxiety feels right now."

    def test_correction_is_idempotent(self):
        flags = [flag(FlagType.FALSE_MEMORY), flag(FlagType.FALSE_CONTINUITY)]
        once = generate_correction("As we discussed, your anxiety has improved.", flags)
        assert generate_correction(once, flags) == once

    def test_you_mentioned_rewrite(self):
        rewritten = rewrite_memory_claims("You mentioned feeling lonely.")
        assert "what you're sharing about lonely" in rewritten

    def test_claims_without_an_object_are_stripped(self):
        flags = [flag(FlagType.FALSE_MEMORY)]
        assert generate_correction("Like you said, work has been exhausting.", flags) == "Work has been exhausting."
        assert generate_correction("You mentioned, the deadlines keep piling up.", flags) == \
            "The deadlines keep piling up."
        assert generate_correction("Work has been exhausting, as you told me.", flags) == "Work has been exhausting."

    def test_bare_claim_sentence_uses_fallback(self):
        assert generate_correction("You mentioned.", [flag(FlagType.FALSE_MEMORY)]) == NEUTRAL_FALLBACK

    def test_empty_result_uses_fallback(self):
        assert generate_correction("As we discussed,", [flag(FlagType.FALSE_CONTINUITY)]) == NEUTRAL_FALLBACK

    def test_no_flags_leaves_text_alone(self):
        assert generate_correction("that sounds hard", []) == "that sounds hard"


class TestRepetition:

    def test_duplicate_sentence_removed(self):
        text = "I hear you're dealing with stress. I hear you're dealing with stress."
        assert fix_repeated_content(text) == "I hear you're dealing with stress."
        assert has_repeated_content(text)

    def test_clean_text_has_no_repetition(self):
        assert not has_repeated_content("I feel calm. The weather is nice.")

    def test_phrase_stutter_collapsed(self):
        assert collapse_stutter("I hear you I hear you I hear you.") == "I hear you."


def test_remove_contradictions_keeps_first_statement():
    text = "I am sure you can do this. I am not sure you can do this."
    assert remove_contradictions(text) == "I am sure you can do this."


def test_separate_protocols_drops_casual_sentences():
    text = "If you're thinking about suicide, please call 988. Also check out the brewery downtown."
    assert separate_protocols(text) == "If you're thinking about suicide, please call 988."


def test_add_crisis_resources_once():
    text = add_crisis_resources("That sounds really hard.")
    assert text.endswith(CRISIS_RESOURCE_SENTENCE)
    assert add_crisis_resources(text) == text


def test_missing_resources_flag_appends_sentence():
    corrected = generate_correction(
        "That sounds really hard.", [flag(FlagType.MISSING_CRISIS_RESOURCES, Severity.CRITICAL)]
    )
    assert corrected.startswith("That sounds really hard.")
    assert "988" in corrected


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
