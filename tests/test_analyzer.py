# tests/test_analyzer.py
import json

import pytest

from pensive.analyzer import parse_analysis
from pensive.cache import ANALYSIS_TTL
from pensive.models import PRIORITIES

from conftest import llm_response

GOOD = {
    "summary": {"sentence": "One line.", "paragraph": "Longer text.", "isFullRead": True},
    "entities": [{"name": "Transformers", "type": "technology"}, {"name": ""}],
    "relationships": [{"from": "Transformers", "to": "Attention", "type": "requires"}],
    "tags": ["ML", "ml", "nlp"],
    "priority": "DEEP_DIVE",
    "confidence": "0.92",
}

def _assert_well_formed(outcome):
    data = outcome.to_dict()
    assert data["priority"] in PRIORITIES
    assert 0.0 <= data["confidence"] <= 1.0
    assert data["summary"]["sentence"]
    assert data["entities"]

def test_demo_mode_returns_mock_without_network(services):
    analyzer = services.analyzer
    assert analyzer.demo_mode
    outcome = analyzer.analyze("My Post", "text", "https://example.com/p")
    assert outcome.mode == "mock"
    assert outcome.cached is False
    assert outcome.payload.summary.sentence == 'Analysis of "My Post"'
    assert [e.name for e in outcome.payload.entities] == ["Technology", "Innovation"]
    _assert_well_formed(outcome)

def test_llm_result_is_normalised_and_cached(services, llm_client):
    llm_client.chat.completions.create.return_value = llm_response(json.dumps(GOOD))
    analyzer = services.analyzer

    first = analyzer.analyze("T", "text", "https://example.com/a")
    assert first.mode == "llm" and first.cached is False
    p = first.payload
    assert p.priority == "deep-dive"
    assert p.confidence == pytest.approx(0.92)
    assert p.tags == ["ml", "nlp"]
    assert [(e.name, e.type) for e in p.entities] == [("Transformers", "TECHNOLOGY")]
    assert p.relationships[0].type == "REQUIRES"
    assert p.summary.is_full_read is True

    second = analyzer.analyze("T", "text", "https://example.com/a")
    assert second.cached is True
    assert second.payload == p
    assert llm_client.chat.completions.create.call_count == 1

def test_cache_entry_expires_after_a_day(services, llm_client, clock):
    llm_client.chat.completions.create.return_value = llm_response(json.dumps(GOOD))
    services.analyzer.analyze("T", "text", "https://example.com/a")
    clock.advance(ANALYSIS_TTL)
    assert services.analyzer.analyze("T", "text", "https://example.com/a").cached is False
    assert llm_client.chat.completions.create.call_count == 2

def test_use_cache_false_forces_a_call(services, llm_client):
    llm_client.chat.completions.create.return_value = llm_response(json.dumps(GOOD))
    services.analyzer.analyze("T", "text", "https://example.com/a")
    services.analyzer.analyze("T", "text", "https://example.com/a", use_cache=False)
    assert llm_client.chat.completions.create.call_count == 2

def test_upstream_exception_falls_back(services, llm_client):
    llm_client.chat.completions.create.side_effect = RuntimeError("503 from upstream")
    outcome = services.analyzer.analyze("T", "text", "https://example.com/a")
    assert outcome.mode == "fallback"
    assert outcome.payload.tags == ["analyzed", "fallback"]
    assert outcome.payload.confidence == 0.5
    _assert_well_formed(outcome)

def test_non_json_reply_falls_back_and_is_not_cached(services, llm_client, cache):
    llm_client.chat.completions.create.return_value = llm_response("Sorry, I can't help with that.")
    outcome = services.analyzer.analyze("T", "text", "https://example.com/a")
    assert outcome.mode == "fallback"
    _assert_well_formed(outcome)
    assert len(cache) == 0

def test_input_is_truncated(services, llm_client):
    llm_client.chat.completions.create.return_value = llm_response(json.dumps(GOOD))
    services.analyzer.analyze("T", "x" * 50000, "https://example.com/a")
    user_msg = llm_client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
    assert "x" * 10000 in user_msg
    assert "x" * 10001 not in user_msg

def test_parse_analysis_tolerates_fences_and_chatter():
    fenced = "```json\n" + json.dumps(GOOD) + "\n```"
    assert parse_analysis(fenced).priority == "deep-dive"
    chatty = "Here you go: " + json.dumps(GOOD) + " Hope it helps!"
    assert parse_analysis(chatty).tags == ["ml", "nlp"]

def test_parse_analysis_defaults_odd_values():
    p = parse_analysis(json.dumps({"summary": "First. Second.", "priority": "urgent", "confidence": 7}))
    assert p.summary.sentence == "First"
    assert p.priority == "read"
    assert p.confidence == 1.0

def test_parse_analysis_rejects_non_objects():
    with pytest.raises(ValueError):
        parse_analysis("[1, 2, 3]")
    with pytest.raises(ValueError):
        parse_analysis("no json here")

def test_compose_digest_none_in_demo_mode(services):
    assert services.analyzer.compose_digest("weekly", [{"title": "T"}]) is None

def test_compose_digest_uses_llm(services, llm_client):
    llm_client.chat.completions.create.return_value = llm_response("<h2>Digest</h2>")
    html = services.analyzer.compose_digest("weekly", [{"title": "T", "summary": {"paragraph": "p"}}])
    assert html == "<h2>Digest</h2>"
    prompt = llm_client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
    assert "1. T (read)" in prompt
