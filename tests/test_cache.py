import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from pydantic import BaseModel, ConfigDict
from redis.exceptions import ConnectionError as RedisConnectionError

from paginate.core.config import PaginatorConfig
from paginate.schemas.pagination import PaginationRequest, SortDirective
from paginate.services.cache import (
    CacheMiss,
    InMemoryCacheAdapter,
    NoOpCacheAdapter,
    RedisCacheAdapter,
    build_cache_adapter,
    build_cache_key,
)
from paginate.services.paginator import Paginator
from tests.base import Article, StatementCounter, build_engine, seed_articles, session_factory


class ArticleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str


class _LimitedClearAdapter(InMemoryCacheAdapter):
    """Refuses to clear more than a fixed number of times."""

    def __init__(self):
        super().__init__()
        self.clear_prefix_calls = 0
        self.clear_all_calls = 0

    def clear_prefix(self, prefix: str) -> None:
        if self.clear_prefix_calls > 2:
            raise RuntimeError("maximum clear")
        self.clear_prefix_calls += 1
        super().clear_prefix(prefix)

    def clear_all(self) -> None:
        if self.clear_all_calls > 0:
            raise RuntimeError("maximum clear")
        self.clear_all_calls += 1
        super().clear_all()


class _BrokenAdapter(InMemoryCacheAdapter):
    def __init__(self, *, fail_reads=False, fail_writes=False):
        super().__init__()
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes

    def is_valid(self, key: str) -> bool:
        if self.fail_reads:
            raise RedisConnectionError("down")
        return super().is_valid(key)

    def set(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise RedisConnectionError("down")
        super().set(key, value)


class CacheKeyTests(unittest.TestCase):
    def test_identical_requests_share_a_key(self):
        a = PaginationRequest(page=1, size=10, sorts=(SortDirective(column="id"),), raw_filters='[["id",">",1]]')
        b = PaginationRequest(page=1, size=10, sorts=(SortDirective(column="id"),), raw_filters='[["id",">",1]]')
        self.assertEqual(build_cache_key("articles", a), build_cache_key("articles", b))
        self.assertTrue(build_cache_key("articles", a).startswith("articles:"))

    def test_each_signature_part_changes_the_key(self):
        base = PaginationRequest(page=1, size=10, sorts=(SortDirective(column="id"),), raw_filters="")
        key = build_cache_key("p", base)
        variants = [
            PaginationRequest(page=2, size=10, sorts=base.sorts),
            PaginationRequest(page=1, size=11, sorts=base.sorts),
            PaginationRequest(page=1, size=10, sorts=(SortDirective(column="id", direction="DESC"),)),
            PaginationRequest(page=1, size=10, sorts=base.sorts, raw_filters='[["id",">",1]]'),
        ]
        for variant in variants:
            with self.subTest(variant=variant):
                self.assertNotEqual(build_cache_key("p", variant), key)
        self.assertNotEqual(build_cache_key("p", base, ["id"]), key)
        self.assertNotEqual(build_cache_key("q", base), key)


class InMemoryCacheAdapterTests(unittest.TestCase):
    def test_set_get_and_clear(self):
        cache = InMemoryCacheAdapter()
        cache.set("a:1", "one")
        cache.set("a:2", "two")
        cache.set("b:1", "three")
        self.assertTrue(cache.is_valid("a:1"))
        self.assertEqual(cache.get("a:1"), "one")

        cache.clear("a:1")
        self.assertFalse(cache.is_valid("a:1"))
        with self.assertRaises(CacheMiss):
            cache.get("a:1")

        cache.clear_prefix("a")
        self.assertEqual(len(cache), 1)
        cache.clear_all()
        self.assertEqual(len(cache), 0)

    def test_expired_entries_are_invalid(self):
        cache = InMemoryCacheAdapter(ttl_seconds=60)
        cache.set("k", "v")
        self.assertTrue(cache.is_valid("k"))
        cache._data["k"] = ("v", datetime.now(timezone.utc) - timedelta(seconds=1))
        self.assertFalse(cache.is_valid("k"))
        self.assertEqual(len(cache), 0)

    def test_noop_adapter_never_hits(self):
        cache = NoOpCacheAdapter()
        cache.set("k", "v")
        self.assertFalse(cache.is_valid("k"))
        with self.assertRaises(CacheMiss):
            cache.get("k")


class RedisCacheAdapterTests(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.cache = RedisCacheAdapter(self.client, ttl_seconds=60)

    def test_get_missing_key_raises_miss(self):
        self.client.get.return_value = None
        with self.assertRaises(CacheMiss):
            self.cache.get("k")

    def test_get_decodes_bytes(self):
        self.client.get.return_value = b"payload"
        self.assertEqual(self.cache.get("k"), "payload")

    def test_set_uses_ttl(self):
        self.cache.set("k", "v")
        self.client.set.assert_called_once_with("k", "v", ex=60)

        RedisCacheAdapter(self.client).set("k2", "v2")
        self.client.set.assert_called_with("k2", "v2", ex=None)

    def test_is_valid_checks_existence(self):
        self.client.exists.return_value = 1
        self.assertTrue(self.cache.is_valid("k"))
        self.client.exists.return_value = 0
        self.assertFalse(self.cache.is_valid("k"))

    def test_clear_prefix_deletes_scanned_keys(self):
        self.client.scan_iter.return_value = iter(["art*:1", "art*:2"])
        self.cache.clear_prefix("art*")
        self.client.scan_iter.assert_called_once_with(match="art\\**")
        self.client.delete.assert_called_once_with("art*:1", "art*:2")

    def test_clear_prefix_without_keys_skips_delete(self):
        self.client.scan_iter.return_value = iter([])
        self.cache.clear_prefix("none")
        self.client.delete.assert_not_called()

    def test_clear_all_flushes_db(self):
        self.cache.clear_all()
        self.client.flushdb.assert_called_once_with()

    def test_build_adapter_prefers_redis(self):
        with patch("paginate.services.cache.redis.Redis.from_url") as from_url:
            adapter = build_cache_adapter("redis://localhost:6379/0", ttl_seconds=30)
        self.assertIsInstance(adapter, RedisCacheAdapter)
        self.assertEqual(adapter.ttl_seconds, 30)
        from_url.return_value.ping.assert_called_once_with()

    def test_build_adapter_falls_back_to_memory(self):
        with patch("paginate.services.cache.redis.Redis.from_url") as from_url:
            from_url.return_value.ping.side_effect = RedisConnectionError("refused")
            with self.assertLogs("paginate.cache", level="WARNING"):
                adapter = build_cache_adapter("redis://localhost:6379/0")
        self.assertIsInstance(adapter, InMemoryCacheAdapter)


class PaginatorCacheTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.engine = build_engine()
        seed_articles(cls.engine, per_user=1)
        cls.SessionLocal = session_factory(cls.engine)
        cls.counter = StatementCounter(cls.engine)

    @classmethod
    def tearDownClass(cls):
        cls.engine.dispose()

    def setUp(self):
        self.db = self.SessionLocal()
        self.counter.reset()

    def tearDown(self):
        self.db.close()

    def test_second_identical_request_is_served_from_cache(self):
        adapter = InMemoryCacheAdapter()
        paginator = Paginator(PaginatorConfig(cache_adapter=adapter, field_selector_enabled=True))
        params = {"page": "0", "size": "10", "fields": "id"}

        page1 = (
            paginator.with_query(self.db.query(Article).join(Article.user))
            .request(params)
            .fields(["id"])
            .cache("cache_prefix")
            .response()
        )
        self.assertEqual(self.counter.count, 2)
        self.assertEqual(len(adapter), 1)

        cached: list = []
        page2 = (
            paginator.with_query(self.db.query(Article))
            .request(params)
            .cache("cache_prefix")
            .response(into=cached)
        )
        self.assertEqual(self.counter.count, 2)
        self.assertEqual(page1.total, page2.total)
        self.assertEqual(page1.items, page2.items)
        self.assertEqual(len(cached), 2)
        self.assertEqual(cached[0], {"id": 1})

    def test_cached_items_are_rehydrated_into_schema(self):
        paginator = Paginator(cache_adapter=InMemoryCacheAdapter())
        params = {"sort": "articles.id"}
        first = paginator.with_query(self.db.query(Article)).request(params).cache("a").response(ArticleOut)
        second = paginator.with_query(self.db.query(Article)).request(params).cache("a").response(ArticleOut)
        self.assertEqual(self.counter.count, 2)
        self.assertIsInstance(second.items[0], ArticleOut)
        self.assertEqual(first.items, second.items)

    def test_without_prefix_nothing_is_cached(self):
        adapter = InMemoryCacheAdapter()
        Paginator(cache_adapter=adapter).with_query(self.db.query(Article)).request({}).response()
        self.assertEqual(len(adapter), 0)

    def test_failed_pages_are_not_cached(self):
        adapter = InMemoryCacheAdapter()
        paginator = Paginator(cache_adapter=adapter, error_enabled=True)
        result = (
            paginator.with_query(self.db.query(Article))
            .request({"filters": '[["articles.nonexistent","=",1]]'})
            .cache("broken")
            .response()
        )
        self.assertTrue(result.error)
        self.assertEqual(len(adapter), 0)

    def test_cache_read_failure_falls_back_to_database(self):
        paginator = Paginator(cache_adapter=_BrokenAdapter(fail_reads=True))
        with self.assertLogs("paginate.paginator", level="WARNING"):
            result = paginator.with_query(self.db.query(Article)).request({}).cache("x").response()
        self.assertEqual(result.total, 2)
        self.assertEqual(self.counter.count, 2)

    def test_cache_write_failure_is_not_fatal(self):
        paginator = Paginator(cache_adapter=_BrokenAdapter(fail_writes=True))
        with self.assertLogs("paginate.paginator", level="WARNING"):
            result = paginator.with_query(self.db.query(Article)).request({}).cache("x").response()
        self.assertFalse(result.error)
        self.assertEqual(result.total, 2)

    def test_clear_cache_delegates_and_reports_adapter_failures(self):
        adapter = _LimitedClearAdapter()
        adapter.set("cache_prefix:abc", "{}")
        paginator = Paginator(cache_adapter=adapter)

        self.assertTrue(paginator.clear_cache("cache", "cache_"))
        self.assertEqual(len(adapter), 0)
        with self.assertLogs("paginate.paginator", level="WARNING"):
            self.assertFalse(paginator.clear_cache("cache", "cache_"))

        self.assertTrue(paginator.clear_all_cache())
        with self.assertLogs("paginate.paginator", level="WARNING"):
            self.assertFalse(paginator.clear_all_cache())

    def test_clear_without_adapter_is_a_no_op(self):
        paginator = Paginator()
        self.assertTrue(paginator.clear_cache("anything"))
        self.assertTrue(paginator.clear_all_cache())


if __name__ == "__main__":
    unittest.main()
