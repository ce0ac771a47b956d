import unittest
from unittest import mock

import requests

from ingest_worker import collect_group, fetch_batch_items, ingest
from storyscout.config import Settings
from storyscout.ingestion.batch_api import ApifyIngestor
from storyscout.ingestion.post_types import RawItem, SourceTag
from storyscout.storage.post_store import InMemoryPostStore


STORY = "My father opened the first bakery on this street in 1952 and it is still there today."

DATASET = [
    {
        "postId": "1001",
        "postUrl": "https://www.facebook.com/groups/g1/posts/1001/",
        "text": STORY,
        "userUrl": "https://www.facebook.com/jane.doe",
        "userName": "Jane Doe",
    },
    {"url": "https://www.facebook.com/groups/g1/permalink/1002/", "text": "  ", "pageName": "Empty"},
    "not a dict",
]


def fake_response(payload):
    resp = mock.Mock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


class TestApifyIngestor(unittest.TestCase):
    @mock.patch("storyscout.ingestion.batch_api.requests.post")
    def test_fetch_maps_dataset_items(self, post):
        post.return_value = fake_response(DATASET)
        items = ApifyIngestor(token="tok").fetch("g1", limit=5)

        self.assertEqual(len(items), 1)
        item = items[0]
        self.assertEqual(item.source, SourceTag.BATCH_API)
        self.assertEqual(item.structured_id, "1001")
        self.assertEqual(item.fallback_id, "1001")
        self.assertEqual(item.author_href, "https://www.facebook.com/jane.doe")
        self.assertEqual(item.author_name, "Jane Doe")
        self.assertEqual(item.group_id, "g1")

        args, kwargs = post.call_args
        self.assertIn("apify~facebook-posts-scraper", args[0])
        self.assertEqual(kwargs["params"], {"token": "tok"})
        self.assertEqual(kwargs["json"]["startUrls"], [{"url": "https://www.facebook.com/groups/g1"}])
        self.assertEqual(kwargs["json"]["resultsLimit"], 5)

    @mock.patch("storyscout.ingestion.batch_api.requests.post")
    def test_unexpected_payload_is_empty(self, post):
        post.return_value = fake_response({"error": "nope"})
        self.assertEqual(ApifyIngestor(token="tok").fetch("g1"), [])


class TestIngestWorker(unittest.IsolatedAsyncioTestCase):
    def test_no_token_means_no_batch_items(self):
        self.assertEqual(fetch_batch_items(Settings(apify_token=""), "g1"), [])

    def test_http_errors_fall_back_to_empty(self):
        ingestor = mock.Mock()
        ingestor.fetch.side_effect = requests.ConnectionError("refused")
        self.assertEqual(fetch_batch_items(Settings(), "g1", ingestor), [])

    async def test_live_fallback_when_batch_is_empty(self):
        ingestor = mock.Mock()
        ingestor.fetch.return_value = []
        live = [RawItem(source=SourceTag.LIVE_DOM, text=STORY, group_id="g1")]
        with mock.patch("ingest_worker.scrape_live_group", mock.AsyncMock(return_value=live)) as scrape:
            items = await collect_group(Settings(), "g1", ingestor)
        self.assertEqual(items, live)
        scrape.assert_awaited_once()

    async def test_batch_items_skip_live_scrape(self):
        ingestor = mock.Mock()
        batch = [RawItem(source=SourceTag.BATCH_API, text=STORY, structured_id="1")]
        ingestor.fetch.return_value = batch
        with mock.patch("ingest_worker.scrape_live_group", mock.AsyncMock()) as scrape:
            items = await collect_group(Settings(), "g1", ingestor)
        self.assertEqual(items, batch)
        scrape.assert_not_awaited()

    async def test_ingest_normalizes_dedupes_and_logs(self):
        store = InMemoryPostStore()
        raw = [
            RawItem(source=SourceTag.BATCH_API, text=STORY, structured_id="1", group_id="g1"),
            RawItem(source=SourceTag.BATCH_API, text=STORY, structured_id="1", group_id="g1"),
            RawItem(source=SourceTag.BATCH_API, text="Like\nShare", structured_id="2", group_id="g1"),
        ]
        with mock.patch("ingest_worker.collect_group", mock.AsyncMock(return_value=raw)):
            inserted = await ingest(Settings(group_ids=["g1"]), store)
        self.assertEqual(inserted, 1)
        self.assertEqual(list(store.posts), ["1"])
        self.assertEqual([e["type"] for e in store.events], ["scrape"])

    async def test_ingest_without_groups(self):
        store = InMemoryPostStore()
        self.assertEqual(await ingest(Settings(), store), 0)
        self.assertEqual(store.events, [])


if __name__ == "__main__":
    unittest.main()
