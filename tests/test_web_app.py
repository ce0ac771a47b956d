import json
import unittest
from datetime import datetime, timezone

import psycopg

from storyscout.ai.contracts import ClassificationResult
from storyscout.concurrency.locks import InMemoryLockStore, LockManager
from storyscout.config import Settings
from storyscout.ingestion.post_types import CanonicalPost
from storyscout.storage.post_store import InMemoryPostStore
from web_app import create_app


STORY = "We used to queue for bread at dawn outside the cooperative, winter of 1957."


class FakeClient:
    async def complete(self, req):
        return json.dumps({"is_historic": True, "confidence": 88, "reason": "1950s memory"})


class BrokenStore(InMemoryPostStore):
    def stats(self):
        raise psycopg.OperationalError("connection refused")


def make_app(store=None, lock_manager=None, **overrides):
    params = dict(app_env="production", api_rate_max=100, trigger_rate_max=10)
    params.update(overrides)
    return create_app(
        settings=Settings(**params),
        store=store if store is not None else InMemoryPostStore(),
        lock_manager=lock_manager,
        client=FakeClient(),
    )


class TestReadEndpoints(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryPostStore()
        self.store.insert_posts([
            CanonicalPost(id="p1", fingerprint="f1", text=STORY, scraped_at=datetime(2025, 1, 1, tzinfo=timezone.utc)),
        ])
        self.store.create_classification(ClassificationResult("p1", True, 91, "Specific dates and places"))
        self.client = make_app(self.store).test_client()

    def test_health(self):
        r = self.client.get("/api/health")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.get_json()["status"], "healthy")
        self.assertEqual(r.headers["X-Content-Type-Options"], "nosniff")

    def test_posts_listing_and_detail(self):
        data = self.client.get("/api/posts?limit=5").get_json()
        self.assertTrue(data["success"])
        self.assertEqual([p["id"] for p in data["posts"]], ["p1"])
        self.assertEqual(data["posts"][0]["confidence"], 91)

        detail = self.client.get("/api/posts/p1").get_json()
        self.assertEqual(detail["classification"]["confidence"], 91)
        self.assertIsNone(detail["rating"])

    def test_missing_post_and_unknown_route(self):
        self.assertEqual(self.client.get("/api/posts/nope").status_code, 404)
        r = self.client.get("/api/does-not-exist")
        self.assertEqual(r.status_code, 404)
        self.assertFalse(r.get_json()["success"])

    def test_stats_and_quota(self):
        stats = self.client.get("/api/stats").get_json()
        self.assertEqual(stats["stats"]["historic"], 1)
        self.assertFalse(stats["jobs"]["classify"]["is_locked"])
        quota = self.client.get("/api/quota").get_json()["quota"]
        self.assertEqual(quota["remaining"], 20)

    def test_store_outage_is_503(self):
        client = make_app(BrokenStore()).test_client()
        r = client.get("/api/stats")
        self.assertEqual(r.status_code, 503)
        self.assertTrue(r.get_json()["retry"])


class TestRateLimiting(unittest.TestCase):
    def test_fourth_request_is_refused_with_retry_after(self):
        client = make_app(api_rate_max=3).test_client()
        codes = [client.get("/api/posts").status_code for _ in range(4)]
        self.assertEqual(codes, [200, 200, 200, 429])
        r = client.get("/api/posts")
        self.assertEqual(r.headers["Retry-After"], "60")
        self.assertFalse(r.get_json()["success"])
        self.assertEqual(r.get_json()["message"], "Too many requests, please try again later.")

    def test_health_is_never_limited(self):
        client = make_app(api_rate_max=1).test_client()
        client.get("/api/posts")
        self.assertEqual(client.get("/api/posts").status_code, 429)
        self.assertEqual(client.get("/api/health").status_code, 200)

    def test_loopback_exempt_in_development(self):
        client = make_app(app_env="development", api_rate_max=1).test_client()
        self.assertEqual([client.get("/api/posts").status_code for _ in range(3)], [200, 200, 200])

    def test_forwarded_for_only_with_trusted_proxy(self):
        trusted = make_app(api_rate_max=1, trust_proxy=True).test_client()
        self.assertEqual(trusted.get("/api/posts", headers={"X-Forwarded-For": "1.1.1.1"}).status_code, 200)
        self.assertEqual(trusted.get("/api/posts", headers={"X-Forwarded-For": "1.1.1.1"}).status_code, 429)
        self.assertEqual(trusted.get("/api/posts", headers={"X-Forwarded-For": "2.2.2.2, 10.0.0.1"}).status_code, 200)

        direct = make_app(api_rate_max=1).test_client()
        self.assertEqual(direct.get("/api/posts", headers={"X-Forwarded-For": "1.1.1.1"}).status_code, 200)
        self.assertEqual(direct.get("/api/posts", headers={"X-Forwarded-For": "2.2.2.2"}).status_code, 429)


class TestJobTriggers(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryPostStore()
        self.store.insert_posts([
            CanonicalPost(id="p1", fingerprint="f1", text=STORY, scraped_at=datetime(2025, 1, 1, tzinfo=timezone.utc)),
        ])
        self.locks = LockManager(InMemoryLockStore(), ttl_seconds=60)

    def test_classify_trigger_runs_batch(self):
        client = make_app(self.store, self.locks).test_client()
        r = client.post("/api/jobs/classify")
        self.assertEqual(r.status_code, 200)
        body = r.get_json()
        self.assertEqual(body["status"], "completed")
        self.assertEqual(body["report"]["succeeded"], 1)
        self.assertEqual(self.store.get_classification("p1").confidence, 88)
        self.assertFalse(self.locks.is_locked("classify"))

    def test_held_lock_is_409(self):
        self.locks.acquire("classify")
        client = make_app(self.store, self.locks).test_client()
        r = client.post("/api/jobs/classify")
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.get_json()["status"], "skipped")
        self.assertIsNone(self.store.get_classification("p1"))

    def test_unknown_job(self):
        client = make_app(self.store, self.locks).test_client()
        self.assertEqual(client.post("/api/jobs/reindex").status_code, 404)

    def test_trigger_limiter(self):
        client = make_app(self.store, self.locks, trigger_rate_max=1).test_client()
        self.assertEqual(client.post("/api/jobs/rate").status_code, 200)
        r = client.post("/api/jobs/rate")
        self.assertEqual(r.status_code, 429)
        self.assertIn("job triggers", r.get_json()["message"])

    def test_trigger_refusal_carries_its_own_retry_after(self):
        client = make_app(self.store, self.locks, trigger_rate_max=1, trigger_rate_window_ms=30_000).test_client()
        client.post("/api/jobs/rate")
        r = client.post("/api/jobs/rate")
        self.assertEqual(r.status_code, 429)
        self.assertEqual(r.headers["Retry-After"], "30")
        self.assertEqual(r.headers["X-Content-Type-Options"], "nosniff")


if __name__ == "__main__":
    unittest.main()
