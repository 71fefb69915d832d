"""Tests for trigger-phrase extraction.

These use a QualityScorer without an embedding engine, so scoring runs on
the point-additive heuristic (every candidate that survives quick
rejection starts at 0.5, above every default threshold).
"""

import pytest

from lore.heuristics import (
    HeuristicExtractor,
    clean_sentence,
    extract_heuristic_candidates,
    find_rationale,
    match_rule,
)
from lore.models import KnowledgeType
from lore.scorer import QualityScorer


@pytest.fixture
def scorer() -> QualityScorer:
    return QualityScorer(None)


class TestMatchRule:
    """Tests for the ordered trigger table."""

    def test_decision(self):
        rule, _ = match_rule("We decided to use SQLite for storage.")
        assert rule.type is KnowledgeType.DECISION

    def test_pattern_claims_before_task(self):
        """'always use' (pattern) is checked before 'should' (task)."""
        rule, _ = match_rule("We should always use pathlib for paths.")
        assert rule.type is KnowledgeType.PATTERN

    def test_insight(self):
        rule, _ = match_rule("Turns out the cache was never invalidated.")
        assert rule.type is KnowledgeType.INSIGHT

    def test_todo_is_case_sensitive(self):
        assert match_rule("the todo list got longer") is None
        rule, _ = match_rule("TODO wire up the retry logic")
        assert rule.type is KnowledgeType.TASK

    def test_no_match(self):
        assert match_rule("The weather is nice today.") is None


class TestCleanSentence:
    def test_strips_emphasis_and_numbering(self):
        assert clean_sentence("1. **We chose** `uv` for installs") == "We chose uv for installs"


class TestFindRationale:
    def test_clause_in_same_sentence(self):
        sentence = "We decided to use SQLite because it is embedded."
        trigger_end = sentence.index("decided to") + len("decided to")
        assert find_rationale(sentence, trigger_end, []) == "because it is embedded"

    def test_following_sentence(self):
        following = ["It is small.", "We need it since the tool runs offline."]
        assert find_rationale("We chose SQLite.", 9, following) == "We need it since the tool runs offline."

    def test_none_found(self):
        assert find_rationale("We chose SQLite.", 9, ["It is small."]) == ""


class TestHeuristicExtractor:
    """Tests for candidate extraction over whole texts."""

    def test_extracts_decision_with_rationale(self, scorer: QualityScorer):
        [candidate] = extract_heuristic_candidates("We decided to use SQLite because it is embedded.", scorer)
        assert candidate.type is KnowledgeType.DECISION
        assert candidate.origin == "heuristic"
        assert candidate.rationale == "because it is embedded"

    def test_rationale_from_next_sentence(self, scorer: QualityScorer):
        text = "We chose Postgres for the main store. It handles JSON well because of jsonb."
        candidates = extract_heuristic_candidates(text, scorer)
        assert candidates[0].rationale == "It handles JSON well because of jsonb."

    def test_wrapped_prose_lines_form_one_sentence(self, scorer: QualityScorer):
        [candidate] = extract_heuristic_candidates("We decided to use SQLite\nbecause it is embedded.", scorer)
        assert candidate.raw_text == "We decided to use SQLite because it is embedded."

    def test_bullets_are_scanned(self, scorer: QualityScorer):
        text = "Findings:\n- Turns out the cache was never invalidated on deploy."
        [candidate] = extract_heuristic_candidates(text, scorer)
        assert candidate.type is KnowledgeType.INSIGHT

    def test_headers_and_code_are_ignored(self, scorer: QualityScorer):
        text = "# We decided to use Redis for caching\n```\nWe decided to use Memcached because reasons.\n```"
        assert extract_heuristic_candidates(text, scorer) == []

    def test_outside_length_window_dropped(self, scorer: QualityScorer):
        assert extract_heuristic_candidates("We chose Go.", scorer) == []

    def test_dedup_across_feeds(self, scorer: QualityScorer):
        extractor = HeuristicExtractor(scorer)
        assert len(extractor.feed("We still need to add tests for the parser.")) == 1
        assert extractor.feed("We still  need to add tests for the PARSER.") == []

    def test_failed_scores_are_dropped(self, scorer: QualityScorer):
        strict = scorer.with_thresholds(decision=0.95)
        assert extract_heuristic_candidates("We decided to use SQLite because it is embedded.", strict) == []

    def test_find_candidates_does_not_score(self, scorer: QualityScorer):
        strict = HeuristicExtractor(scorer.with_thresholds(decision=0.95))
        found = strict.find_candidates("We decided to use SQLite because it is embedded.")
        assert len(found) == 1
