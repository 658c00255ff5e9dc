import asyncio
import unittest

import httpx

from pricelens.cache import VersionedCache
from pricelens.kv_store.memory import InMemoryKeyValueStore
from pricelens.models import ResolvedPrice
from pricelens.pipeline import (
    HttpPageFetcher,
    PriceResolutionPipeline,
    extract_listing_text,
    parse_lookup_price,
    parse_price_text,
)
from pricelens.proxy import ProxyResponse

LISTING_URL = "https://mirror.example/album/123"
LOOKUP_BASE = "https://lookup.example/item"
TAOBAO_LINK = "https://item.taobao.com/item.htm?id=111"
WEIDIAN_LINK = "https://shop7.v.weidian.com/item.html?itemID=222"


def listing_html(text: str) -> str:
    return (
        "<html><body><h1>Album</h1>"
        f'<div class="showalbumheader__gallerysubtitle htmlwrap__main">{text}</div>'
        "</body></html>"
    )


def lookup_html(price_text: str) -> str:
    return (
        '<html><body><div class="rounded-sm bg-muted p-1 text-right text-3xl">'
        f"<span>{price_text}</span><span>CNY</span></div></body></html>"
    )


BOTH_LINKS = listing_html(f"taobao: {TAOBAO_LINK} weidian: {WEIDIAN_LINK}")


class FakeFetcher:
    def __init__(self, html=BOTH_LINKS, error=None, gate=None):
        self.html = html
        self.error = error
        self.gate = gate
        self.calls = 0

    async def __call__(self, url):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.html


class FakeProxy:
    def __init__(self, responses=None, delays=None):
        self.responses = responses or {}
        self.delays = delays or {}
        self.calls = []

    async def fetch(self, url):
        self.calls.append(url)
        if url in self.delays:
            await asyncio.sleep(self.delays[url])
        response = self.responses.get(url)
        if isinstance(response, Exception):
            raise response
        return response or ProxyResponse(success=False, error="HTTP error! status: 404")


class FlakyFetcher:
    """Fails (by hanging or raising) on the first call, then serves `html`."""

    def __init__(self, first_failure, html=BOTH_LINKS):
        self.first_failure = first_failure
        self.html = html
        self.calls = 0

    async def __call__(self, url):
        self.calls += 1
        if self.calls == 1:
            if self.first_failure == "hang":
                await asyncio.sleep(5)
            else:
                raise self.first_failure
        return self.html


def priced(taobao="¥ 1,299.00", weidian="88.5"):
    out = {}
    if taobao is not None:
        out[f"{LOOKUP_BASE}/taobao/111"] = ProxyResponse(success=True, data=lookup_html(taobao))
    if weidian is not None:
        out[f"{LOOKUP_BASE}/weidian/222"] = ProxyResponse(success=True, data=lookup_html(weidian))
    return out


class TestExtraction(unittest.TestCase):
    def test_listing_text(self):
        self.assertIn(TAOBAO_LINK, extract_listing_text(BOTH_LINKS))

    def test_listing_text_missing_block(self):
        self.assertEqual(extract_listing_text("<html><body><p>item.taobao.com/x</p></body></html>"), "")
        self.assertEqual(extract_listing_text(""), "")

    def test_lookup_price(self):
        self.assertEqual(parse_lookup_price(lookup_html("¥ 1,299.00")), 1299.0)
        self.assertIsNone(parse_lookup_price("<html><body><span>12</span></body></html>"))
        self.assertIsNone(parse_lookup_price(lookup_html("sold out")))

    def test_price_text(self):
        self.assertEqual(parse_price_text("88.5"), 88.5)
        self.assertIsNone(parse_price_text(""))


class PipelineTestCase(unittest.IsolatedAsyncioTestCase):
    def make_pipeline(self, fetcher=None, proxy=None, timeout=1.0):
        self.cache = VersionedCache(
            InMemoryKeyValueStore(), schema_version="1.0.0", max_age_seconds=3600, max_items=100
        )
        self.fetcher = fetcher or FakeFetcher()
        self.proxy = proxy or FakeProxy(priced())
        return PriceResolutionPipeline(
            self.cache,
            self.proxy,
            self.fetcher,
            lookup_base_url=LOOKUP_BASE,
            fetch_timeout_seconds=timeout,
        )


class TestResolution(PipelineTestCase):
    async def test_highest_priority_platform_selected(self):
        pipeline = self.make_pipeline()
        result = await pipeline.resolve(LISTING_URL)
        self.assertEqual(result, ResolvedPrice(platform="taobao", price=1299.0, link=TAOBAO_LINK))
        self.assertEqual(sorted(self.proxy.calls), [f"{LOOKUP_BASE}/taobao/111", f"{LOOKUP_BASE}/weidian/222"])

    async def test_failed_branch_does_not_block_others(self):
        pipeline = self.make_pipeline(proxy=FakeProxy(priced(taobao=None)))
        result = await pipeline.resolve(LISTING_URL)
        self.assertEqual(result.platform, "weidian")
        self.assertEqual(result.price, 88.5)

    async def test_crashing_branch_is_isolated(self):
        responses = priced()
        responses[f"{LOOKUP_BASE}/taobao/111"] = RuntimeError("bad proxy")
        pipeline = self.make_pipeline(proxy=FakeProxy(responses))
        result = await pipeline.resolve(LISTING_URL)
        self.assertEqual(result.platform, "weidian")

    async def test_missing_price_block_keeps_link(self):
        pipeline = self.make_pipeline(proxy=FakeProxy({}))
        result = await pipeline.resolve(LISTING_URL)
        self.assertEqual(result.platform, "taobao")
        self.assertIsNone(result.price)
        self.assertEqual(result.link, TAOBAO_LINK)

    async def test_no_references_is_unavailable(self):
        pipeline = self.make_pipeline(fetcher=FakeFetcher(html=listing_html("nothing here")))
        result = await pipeline.resolve(LISTING_URL)
        self.assertFalse(result.is_available)
        self.assertIsNone(result.link)
        self.assertEqual(self.proxy.calls, [])

    async def test_fetch_timeout_is_unavailable(self):
        pipeline = self.make_pipeline(fetcher=FakeFetcher(gate=asyncio.Event()), timeout=0.05)
        result = await pipeline.resolve(LISTING_URL)
        self.assertEqual(result, ResolvedPrice.unavailable("taobao"))

    async def test_fetch_error_is_unavailable(self):
        error = httpx.ConnectError("refused")
        pipeline = self.make_pipeline(fetcher=FakeFetcher(error=error))
        result = await pipeline.resolve(LISTING_URL)
        self.assertFalse(result.is_available)

    async def test_fetch_timeout_is_not_cached_and_retried(self):
        pipeline = self.make_pipeline(fetcher=FlakyFetcher("hang"), timeout=0.05)
        first = await pipeline.resolve(LISTING_URL)
        self.assertFalse(first.is_available)
        self.assertIsNone(await self.cache.get(LISTING_URL))

        second = await pipeline.resolve(LISTING_URL)
        self.assertEqual(self.fetcher.calls, 2)
        self.assertEqual(second.price, 1299.0)
        self.assertIsNotNone(await self.cache.get(LISTING_URL))

    async def test_fetch_error_is_not_cached_and_retried(self):
        pipeline = self.make_pipeline(fetcher=FlakyFetcher(httpx.ConnectError("refused")))
        await pipeline.resolve(LISTING_URL)
        self.assertIsNone(await self.cache.get(LISTING_URL))

        second = await pipeline.resolve(LISTING_URL)
        self.assertEqual(self.fetcher.calls, 2)
        self.assertTrue(second.is_available)

    async def test_fetch_failure_log_names_listing_and_error(self):
        pipeline = self.make_pipeline(fetcher=FakeFetcher(error=httpx.ConnectError("refused")))
        with self.assertLogs("pricelens.pipeline", level="WARNING") as logs:
            await pipeline.resolve(LISTING_URL)
        output = "\n".join(logs.output)
        self.assertIn(LISTING_URL, output)
        self.assertIn("refused", output)

    async def test_slow_lookup_times_out_without_blocking_others(self):
        slow = f"{LOOKUP_BASE}/taobao/111"
        pipeline = self.make_pipeline(proxy=FakeProxy(priced(), delays={slow: 5}), timeout=0.1)
        loop = asyncio.get_running_loop()
        started = loop.time()
        result = await pipeline.resolve(LISTING_URL)
        self.assertLess(loop.time() - started, 1.0)
        self.assertEqual(result.platform, "weidian")
        self.assertEqual(result.price, 88.5)

    async def test_slow_lookup_keeps_link_when_nothing_priced(self):
        slow = f"{LOOKUP_BASE}/taobao/111"
        pipeline = self.make_pipeline(proxy=FakeProxy(priced(weidian=None), delays={slow: 5}), timeout=0.1)
        result = await pipeline.resolve(LISTING_URL)
        self.assertEqual(result, ResolvedPrice(platform="taobao", price=None, link=TAOBAO_LINK))


class TestCaching(PipelineTestCase):
    async def test_second_resolve_hits_cache(self):
        pipeline = self.make_pipeline()
        first = await pipeline.resolve(LISTING_URL)
        second = await pipeline.resolve(LISTING_URL)
        self.assertEqual(first, second)
        self.assertEqual(self.fetcher.calls, 1)

    async def test_unavailable_results_are_cached_too(self):
        pipeline = self.make_pipeline(fetcher=FakeFetcher(html=listing_html("")))
        await pipeline.resolve(LISTING_URL)
        self.assertEqual(await self.cache.get(LISTING_URL), ResolvedPrice.unavailable("taobao").model_dump())

    async def test_refresh_bypasses_cache(self):
        pipeline = self.make_pipeline()
        await pipeline.resolve(LISTING_URL)
        await pipeline.resolve(LISTING_URL, use_cache=False)
        self.assertEqual(self.fetcher.calls, 2)

    async def test_concurrent_resolutions_share_one_fetch(self):
        gate = asyncio.Event()
        pipeline = self.make_pipeline(fetcher=FakeFetcher(gate=gate))
        tasks = [asyncio.ensure_future(pipeline.resolve(LISTING_URL)) for _ in range(3)]
        await asyncio.sleep(0.01)
        gate.set()
        results = await asyncio.gather(*tasks)
        self.assertEqual(self.fetcher.calls, 1)
        self.assertTrue(all(r == results[0] for r in results))

    async def test_invalidated_resolution_is_not_persisted(self):
        gate = asyncio.Event()
        pipeline = self.make_pipeline(fetcher=FakeFetcher(gate=gate))
        task = asyncio.ensure_future(pipeline.resolve(LISTING_URL))
        await asyncio.sleep(0.01)

        pipeline.invalidate()
        await self.cache.clear()
        gate.set()

        result = await task
        self.assertTrue(result.is_available)
        self.assertIsNone(await self.cache.get(LISTING_URL))

    async def test_cache_toggle(self):
        pipeline = self.make_pipeline()
        await pipeline.handle_message({"type": "cacheToggled", "enabled": False})
        await pipeline.resolve(LISTING_URL)
        await pipeline.resolve(LISTING_URL)
        self.assertEqual(self.fetcher.calls, 2)
        self.assertIsNone(await self.cache.get(LISTING_URL))

        await pipeline.handle_message({"type": "cacheToggled", "enabled": True})
        await pipeline.resolve(LISTING_URL)
        await pipeline.resolve(LISTING_URL)
        self.assertEqual(self.fetcher.calls, 3)

    async def test_unrelated_messages_ignored(self):
        pipeline = self.make_pipeline()
        await pipeline.handle_message({"type": "preferencesUpdated", "preferences": {}})
        self.assertTrue(pipeline.cache_enabled)


class TestHttpPageFetcher(unittest.IsolatedAsyncioTestCase):
    async def test_returns_body_and_raises_on_error_status(self):
        def handler(request):
            if request.url.path == "/ok":
                return httpx.Response(200, text="<html>ok</html>")
            return httpx.Response(404, text="missing")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            fetcher = HttpPageFetcher(client)
            self.assertEqual(await fetcher("https://mirror.example/ok"), "<html>ok</html>")
            with self.assertRaises(httpx.HTTPStatusError):
                await fetcher("https://mirror.example/gone")


if __name__ == "__main__":
    unittest.main()
