import asyncio
import threading

from blur.storage.cache import MemoryCache, RedisCache


class TestMemoryCache:
    async def test_put_get_delete(self, cache):
        await cache.put("emailauth:a@x.com", "v1", 60)
        assert await cache.get("emailauth:a@x.com") == "v1"
        await cache.delete("emailauth:a@x.com")
        assert await cache.get("emailauth:a@x.com") is None

    async def test_entry_expires_at_ttl(self, cache, clock):
        await cache.put("k", "v", 10)
        clock.advance(9)
        assert await cache.get("k") == "v"
        clock.advance(1)
        assert await cache.get("k") is None
        assert len(cache) == 0

    async def test_keys_do_not_interfere(self, cache):
        await cache.put("emailauth:a@x.com", "email", 60)
        await cache.put("passwordAuth:a@x.com", "password", 60)
        await cache.delete("emailauth:a@x.com")
        assert await cache.get("passwordAuth:a@x.com") == "password"

    async def test_overwrite_resets_ttl(self, cache, clock):
        await cache.put("k", "old", 5)
        clock.advance(4)
        await cache.put("k", "new", 5)
        clock.advance(4)
        assert await cache.get("k") == "new"

    async def test_non_positive_ttl_still_stored_briefly(self, cache, clock):
        await cache.put("k", "v", 0)
        assert await cache.get("k") == "v"
        clock.advance(1)
        assert await cache.get("k") is None

    async def test_purge_expired(self, cache, clock):
        await cache.put("short", "v", 5)
        await cache.put("long", "v", 50)
        clock.advance(10)
        assert cache.purge_expired() == 1
        assert len(cache) == 1

    def test_concurrent_writers_on_distinct_keys(self, clock):
        cache = MemoryCache(clock=clock)

        def _writer(idx: int) -> None:
            for n in range(50):
                asyncio.run(cache.put(f"k{idx}:{n}", str(n), 60))

        threads = [threading.Thread(target=_writer, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(cache) == 8 * 50


class TestRedisCache:
    def test_ttl_clamped_to_one_second(self):
        assert RedisCache._ttl(0) == 1
        assert RedisCache._ttl(-5) == 1
        assert RedisCache._ttl(30) == 30

    async def test_commands_delegate_to_client(self):
        class FakeClient:
            def __init__(self):
                self.calls = []

            async def set(self, key, value, ex=None):
                self.calls.append(("set", key, value, ex))

            async def get(self, key):
                self.calls.append(("get", key))
                return "stored"

            async def delete(self, key):
                self.calls.append(("delete", key))

        cache = RedisCache.__new__(RedisCache)
        cache.client = FakeClient()

        await cache.put("refreshToken:1", "tok", 0)
        assert await cache.get("refreshToken:1") == "stored"
        await cache.delete("refreshToken:1")

        assert cache.client.calls == [
            ("set", "refreshToken:1", "tok", 1),
            ("get", "refreshToken:1"),
            ("delete", "refreshToken:1"),
        ]

    def test_verify_connection_uses_socket_timeouts(self, monkeypatch):
        from blur.storage import cache as cache_module

        seen = {}

        class FakeRedis:
            @classmethod
            def from_url(cls, url, **kwargs):
                seen["url"] = url
                seen.update(kwargs)
                return cls()

            def ping(self):
                seen["pinged"] = True

            def close(self):
                seen["closed"] = True

        monkeypatch.setattr(cache_module, "Redis", FakeRedis)
        cache = RedisCache("redis://unreachable:6379/0", socket_timeout=1.5)
        cache.verify_connection()

        assert seen["socket_timeout"] == 1.5
        assert seen["socket_connect_timeout"] == 1.5
        assert seen["pinged"] and seen["closed"]
