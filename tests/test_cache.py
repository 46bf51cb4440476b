# tests/test_cache.py
import json

import redis

from pensive.cache import CacheKeys, MemoryCache, RedisCache

def test_memory_cache_honours_ttl(cache, clock):
    cache.set("k", {"a": 1}, ttl_seconds=10)
    assert cache.get("k") == {"a": 1}
    clock.advance(9.9)
    assert cache.get("k") == {"a": 1}
    clock.advance(0.1)
    assert cache.get("k") is None

def test_memory_cache_returns_copies(cache):
    value = {"tags": ["x"]}
    cache.set("k", value, 60)
    got = cache.get("k")
    got["tags"].append("y")
    assert cache.get("k") == {"tags": ["x"]}

def test_memory_cache_delete_many_and_cleanup(clock):
    c = MemoryCache(clock=clock)
    c.set("a", 1, 5)
    c.set("b", 2, 50)
    c.set("c", 3, 50)
    c.delete_many(["b", "missing"])
    assert c.get("b") is None
    clock.advance(10)
    assert c.cleanup() == 1
    assert len(c) == 1
    assert c.get("c") == 3

def test_non_positive_ttl_does_not_store(cache):
    cache.set("k", 1, 0)
    assert cache.get("k") is None

def test_concept_map_keys_cover_every_level():
    keys = CacheKeys.concept_maps("u1")
    assert len(keys) == 101
    assert CacheKeys.concept_map("u1", 0) in keys
    assert CacheKeys.concept_map("u1", 100) in keys

def test_rss_key_is_stable_and_url_safe():
    key = CacheKeys.rss_feed("https://example.com/feed?x=1")
    assert key == CacheKeys.rss_feed("https://example.com/feed?x=1")
    assert key.startswith("rss:feed:")
    assert "/" not in key[len("rss:feed:"):]

def test_redis_cache_round_trips_json(mocker):
    client = mocker.MagicMock()
    cache = RedisCache(client)
    cache.set("k", {"a": 1}, 30)
    client.setex.assert_called_once_with("k", 30, json.dumps({"a": 1}))

    client.get.return_value = json.dumps({"a": 1})
    assert cache.get("k") == {"a": 1}

def test_redis_errors_read_as_miss(mocker):
    client = mocker.MagicMock()
    client.get.side_effect = redis.ConnectionError("down")
    client.setex.side_effect = redis.ConnectionError("down")
    cache = RedisCache(client)
    assert cache.get("k") is None
    cache.set("k", 1, 10)  # logged, not raised

def test_redis_delete_many_uses_one_call(mocker):
    client = mocker.MagicMock()
    RedisCache(client).delete_many(["a", "b"])
    client.delete.assert_called_once_with("a", "b")
