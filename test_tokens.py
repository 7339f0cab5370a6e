"""
Tests for token estimation and stuck detection.
"""

from orchestrator.stuck import StuckDetector
from orchestrator.tokens import (
    DEFAULT_CONTEXT_LIMIT,
    chars_per_token,
    context_limit,
    estimate_tokens,
    max_context_usage,
)


def test_estimate_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd", "claude-x") == 2  # 4 / 3.5
    assert estimate_tokens("a" * 39) == 11


def test_estimate_over_list():
    assert estimate_tokens(["a" * 7, "a" * 7], "claude") == 4


def test_chars_per_token_by_family():
    assert chars_per_token("anthropic.claude-sonnet") == 3.5
    assert chars_per_token("gpt-4o") == 4.0
    assert chars_per_token("o3-mini") == 4.0
    assert chars_per_token("llama3-70b") == 4.0
    assert chars_per_token("something-else") == 3.8


def test_unknown_model_gets_conservative_limit():
    assert context_limit("scripted-model") == DEFAULT_CONTEXT_LIMIT == 32_000
    assert max_context_usage("scripted-model") == 24_000


def test_known_families():
    assert context_limit("gpt-4o-mini") == 128_000
    assert context_limit("claude-3-haiku-custom") == 200_000


def test_stuck_on_repeated_commands():
    detector = StuckDetector(window=3)
    for cmd in ("npm test", "npm test", "npm test"):
        detector.record(cmd)
    assert detector.is_stuck()


def test_not_stuck_on_varied_commands():
    detector = StuckDetector(window=3)
    assert not detector.is_stuck(["npm test", "ls -la", "git status"])


def test_not_stuck_until_window_full():
    detector = StuckDetector(window=3)
    detector.record("npm test")
    detector.record("npm test")
    assert not detector.is_stuck()


def test_similar_prefixes_count_as_stuck():
    detector = StuckDetector(window=3, similarity_threshold=0.7)
    assert detector.is_stuck(["pytest tests/a.py", "pytest tests/b.py", "pytest tests/c.py"])


def test_reset_clears_window():
    detector = StuckDetector(window=2)
    detector.record("make")
    detector.record("make")
    assert detector.is_stuck()
    detector.reset()
    assert not detector.is_stuck()
    assert detector.last_commands() == []
