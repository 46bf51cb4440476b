# tests/test_concepts.py
import pytest

from pensive.cache import CacheKeys
from pensive.errors import NotFoundError
from pensive.models import Concept

def _seed_frequencies(services, user_id, freqs):
    with services.get_session() as s:
        for i, f in enumerate(freqs):
            s.add(Concept(user_id=user_id, name=f"c{i}", type="CONCEPT", frequency=f))
        s.commit()

def _payload(*names, relationships=None):
    return {
        "entities": [{"name": n, "type": "CONCEPT"} for n in names],
        "relationships": relationships or [],
    }

def _record(services, user_id, url, *names, relationships=None):
    r = services.content.store_content(user_id, url, url, f"text for {url}")
    services.concepts.record_analysis(user_id, r.content_id, _payload(*names, relationships=relationships))
    return r.content_id

def test_level_50_keeps_concepts_at_half_the_max_frequency(services):
    _seed_frequencies(services, "u1", [1, 1, 1, 5, 10])
    graph = services.concepts.build_concept_map("u1", 50)
    assert sorted(n["frequency"] for n in graph["nodes"]) == [5, 10]

def test_node_count_never_grows_with_abstraction(services):
    _seed_frequencies(services, "u1", [1, 2, 3, 3, 4, 7, 8, 9, 10, 10])
    counts = [len(services.concepts.build_concept_map("u1", lvl)["nodes"]) for lvl in range(0, 101, 5)]
    assert counts == sorted(counts, reverse=True)
    assert counts[0] == 10

def test_abstraction_level_is_clamped(services):
    _seed_frequencies(services, "u1", [1, 10])
    assert len(services.concepts.build_concept_map("u1", -20)["nodes"]) == 2
    assert [n["frequency"] for n in services.concepts.build_concept_map("u1", 500)["nodes"]] == [10]

def test_density(services):
    _seed_frequencies(services, "u1", [1, 4, 10])
    nodes = {n["frequency"]: n["density"] for n in services.concepts.build_concept_map("u1", 0)["nodes"]}
    assert nodes == {10: 100.0, 4: 40.0, 1: 10.0}

def test_density_is_50_when_everything_is_seen_once(services):
    _seed_frequencies(services, "u1", [1, 1])
    assert {n["density"] for n in services.concepts.build_concept_map("u1", 0)["nodes"]} == {50}

def test_record_analysis_counts_and_links_by_cooccurrence(services):
    _record(services, "u1", "https://a.io/1", "Python", "Asyncio", "Python")
    _record(services, "u1", "https://a.io/2", "Python")

    graph = services.concepts.build_concept_map("u1", 0)
    freq = {n["label"]: n["frequency"] for n in graph["nodes"]}
    assert freq == {"Python": 2, "Asyncio": 1}
    assert len(graph["edges"]) == 1
    edge = graph["edges"][0]
    ids = {n["label"]: n["id"] for n in graph["nodes"]}
    assert (edge["source"], edge["target"]) == (ids["Python"], ids["Asyncio"])
    assert edge["type"] == "RELATES_TO"
    assert edge["weight"] == 0.5

def test_explicit_relationships_win_and_strengthen(services):
    rels = [{"from": "Kafka", "to": "Zookeeper", "type": "REQUIRES"}]
    content_id = _record(services, "u1", "https://a.io/k", "Kafka", "Zookeeper", "Java", relationships=rels)
    services.concepts.record_analysis("u1", content_id, _payload("Kafka", "Zookeeper", relationships=rels))

    edges = services.concepts.build_concept_map("u1", 0)["edges"]
    assert len(edges) == 1
    assert edges[0]["type"] == "REQUIRES"
    assert edges[0]["weight"] == pytest.approx(0.6)

def test_edges_only_connect_returned_nodes(services):
    _record(services, "u1", "https://a.io/1", "A", "B", "C")
    _record(services, "u1", "https://a.io/2", "A", "B")
    _record(services, "u1", "https://a.io/3", "A")
    for level in (0, 50, 70, 100):
        graph = services.concepts.build_concept_map("u1", level)
        node_ids = {n["id"] for n in graph["nodes"]}
        for e in graph["edges"]:
            assert e["source"] in node_ids and e["target"] in node_ids

def test_search_filters_names_and_skips_cache(services, cache):
    _record(services, "u1", "https://a.io/1", "Machine Learning", "Databases")
    graph = services.concepts.build_concept_map("u1", 0, search_query="learn")
    assert [n["label"] for n in graph["nodes"]] == ["Machine Learning"]
    assert graph["edges"] == []
    assert cache.get(CacheKeys.concept_map("u1", 0)) is None

def test_map_is_cached_and_invalidated_by_new_analysis(services, cache):
    _record(services, "u1", "https://a.io/1", "A")
    first = services.concepts.build_concept_map("u1", 0)
    assert cache.get(CacheKeys.concept_map("u1", 0)) == first

    _record(services, "u1", "https://a.io/2", "B")
    assert cache.get(CacheKeys.concept_map("u1", 0)) is None
    assert len(services.concepts.build_concept_map("u1", 0)["nodes"]) == 2

def test_retract_analysis_reverses_record(services):
    _record(services, "u1", "https://a.io/1", "A", "B")
    second = _record(services, "u1", "https://a.io/2", "A", "C")

    services.concepts.retract_analysis("u1", second, _payload("A", "C"))
    graph = services.concepts.build_concept_map("u1", 0)
    assert {n["label"]: n["frequency"] for n in graph["nodes"]} == {"A": 1, "B": 1}
    assert len(graph["edges"]) == 1

def test_users_do_not_share_concepts(services):
    _record(services, "u1", "https://a.io/1", "A")
    assert services.concepts.build_concept_map("u2", 0) == {"nodes": [], "edges": []}

def test_concept_details(services):
    content_id = _record(services, "u1", "https://a.io/1", "A", "B")
    nodes = {n["label"]: n["id"] for n in services.concepts.build_concept_map("u1", 0)["nodes"]}

    details = services.concepts.concept_details("u1", nodes["B"])
    assert details["concept"]["label"] == "B"
    assert details["related"] == [{
        "id": nodes["A"], "label": "A", "type": "CONCEPT",
        "relationship": "RELATES_TO", "strength": 0.5, "direction": "incoming",
    }]
    assert [c["id"] for c in details["content"]] == [content_id]

    with pytest.raises(NotFoundError):
        services.concepts.concept_details("u2", nodes["B"])
