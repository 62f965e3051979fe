"""
Tests for the reasoner agent's claim extraction, support scoring and hedging.
"""

import pytest

from replyguard.agents.reasoner import ReasonerAgent


@pytest.fixture
def reasoner():
    return ReasonerAgent(soundness_threshold=0.7)


def test_supported_response_is_sound(reasoner):
    result = reasoner.verify("I hear that this week has been hard for you.", "This week has been hard", [])
    assert result.is_sound
    assert result.verified_response == "I hear that this week has been hard for you."


def test_unsupported_attribution_is_hedged(reasoner):
    result = reasoner.verify("You said your brother hates your job.", "I feel stuck", ["I feel stuck at work"])

    assert not result.is_sound
    assert result.steps[0].confidence == pytest.approx(0.3)
    assert "may have indicated" in result.verified_response
    issues = result.issues_below(0.7)
    assert len(issues) == 1
    assert "(confidence: 0.30)" in issues[0]


def test_supported_attribution(reasoner):
    history = ["My brother keeps criticizing my job"]
    result = reasoner.verify("You said your brother criticizes your job.", "He did it again", history)
    assert result.is_sound


def test_inferred_feeling_is_softened(reasoner):
    result = reasoner.verify("You are feeling hopeless about the future.", "Work was busy today", [])

    assert result.steps[0].confidence == pytest.approx(0.6)
    assert "might be feeling hopeless" in result.verified_response


def test_questions_are_not_claims(reasoner):
    result = reasoner.verify("Do you feel anxious about tomorrow?", "hm", [])
    assert result.steps == []
    assert result.is_sound


def test_stats_and_health(reasoner):
    reasoner.verify("You said your brother hates your job.", "hm", [])
    stats = reasoner.get_stats()
    assert stats["checks"] == 1
    assert stats["revisions"] == 1
    assert reasoner.health_check() is True


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
