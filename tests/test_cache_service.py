"""
Two-tier cache tests: memory in front of a fake Redis.
"""
import time

from playgram.services.cache_service import CacheService, social_cache_key


def make_cache(redis=None, **kwargs) -> CacheService:
    return CacheService(redis_client=redis, **kwargs)


async def test_memory_only_round_trip():
    cache = make_cache()
    await cache.set("k", {"a": 1}, 60)

    assert await cache.get("k") == {"a": 1}
    assert await cache.exists("k")
    assert (await cache.get_stats())["redis_enabled"] is False


async def test_set_writes_both_tiers(fake_redis):
    cache = make_cache(fake_redis)
    await cache.set("k", [1, 2], 120)

    assert fake_redis.values["k"] == "[1, 2]"
    assert await fake_redis.ttl("k") > 100


async def test_redis_hit_is_promoted_with_capped_ttl(fake_redis):
    cache = make_cache(fake_redis, memory_ttl_cap=300)
    await fake_redis.setex("k", 3600, '"value"')

    assert await cache.get("k") == "value"
    entry = cache._memory["k"]
    remaining = entry.expires_at - time.monotonic()
    assert 290 < remaining <= 300


async def test_promoted_value_survives_redis_outage(fake_redis):
    cache = make_cache(fake_redis, memory_ttl_cap=300)
    await fake_redis.setex("k", 3600, '{"posts": [1, 2]}')

    assert await cache.get("k") == {"posts": [1, 2]}
    fake_redis.fail = True

    assert await cache.get("k") == {"posts": [1, 2]}


async def test_promotion_uses_shorter_redis_ttl(fake_redis):
    cache = make_cache(fake_redis, memory_ttl_cap=300)
    await fake_redis.setex("k", 30, '"value"')

    await cache.get("k")
    remaining = cache._memory["k"].expires_at - time.monotonic()
    assert remaining <= 30


async def test_zero_ttl_is_never_returned(fake_redis):
    cache = make_cache(fake_redis)
    await fake_redis.setex("k", 60, '"stale"')

    await cache.set("k", "fresh", 0)

    assert await cache.get("k") is None
    assert "k" not in fake_redis.values


async def test_memory_copy_is_detached_from_caller(fake_redis):
    cache = make_cache(fake_redis)
    value = {"items": [1]}
    await cache.set("k", value, 60)
    value["items"].append(2)

    assert await cache.get("k") == {"items": [1]}


async def test_delete_removes_both_tiers(fake_redis):
    cache = make_cache(fake_redis)
    await cache.set("k", 1, 60)
    await cache.delete("k")

    assert await cache.get("k") is None
    assert not await cache.exists("k")


async def test_delete_pattern_glob_and_substring(fake_redis):
    cache = make_cache(fake_redis)
    await cache.set(social_cache_key("instagram", "posts", "nike"), [1], 60)
    await cache.set(social_cache_key("instagram", "reels", "nike"), [2], 60)
    await cache.set(social_cache_key("tiktok", "videos", "nike"), [3], 60)
    await cache.set(social_cache_key("instagram", "posts", "adidas"), [4], 60)

    assert await cache.delete_pattern("social:instagram:*:nike") == 2
    assert await cache.get("social:tiktok:videos:nike") == [3]

    assert await cache.delete_pattern("adidas") == 1
    assert await cache.get("social:instagram:posts:adidas") is None


async def test_redis_failure_degrades_to_memory(fake_redis):
    cache = make_cache(fake_redis)
    fake_redis.fail = True

    await cache.set("k", "v", 60)
    assert await cache.get("k") == "v"

    cache.clear_memory()
    assert await cache.get("k") is None
    assert await cache.exists("k") is False
    assert await cache.delete_pattern("k") == 0
    assert (await cache.get_stats())["redis_connected"] is False


async def test_sweep_evicts_expired_entries():
    cache = make_cache(memory_ttl_cap=300)
    await cache.set("live", 1, 60)
    await cache.set("dead", 2, 0)

    assert cache.sweep_expired() == 1
    assert (await cache.get_stats())["memory_keys"] == 1


async def test_start_and_shutdown(fake_redis):
    cache = make_cache(fake_redis, sweep_interval=3600)
    cache.start()
    assert cache._sweep_task is not None

    await cache.shutdown()
    assert cache._sweep_task is None
    assert fake_redis.closed


def test_social_cache_key_namespace():
    assert social_cache_key("google", "reviews", "place-1") == "social:google:reviews:place-1"
