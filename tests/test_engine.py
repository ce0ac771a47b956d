import json
import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from storyscout.ai.contracts import ClassificationResult
from storyscout.concurrency.locks import InMemoryLockStore, LockManager
from storyscout.ingestion.post_types import CanonicalPost
from storyscout.pipeline.batch import BatchJob
from storyscout.pipeline.classification import ClassificationJob
from storyscout.pipeline.jobs import JobStatus, run_job
from storyscout.pipeline.rating import RatingJob
from storyscout.ratelimit.limiter import FixedWindowLimiter
from storyscout.resilience.retry import RetryPolicy
from storyscout.storage.post_store import InMemoryPostStore


T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)
FACTORS = {"narrative": 4, "emotional": 3, "historical": 5, "uniqueness": 2}


def post(post_id, text, minutes=0):
    return CanonicalPost(id=post_id, fingerprint=f"fp-{post_id}", text=text, scraped_at=T0 + timedelta(minutes=minutes))


class ScriptedClient:
    """Answers by matching a marker in the prompt; exceptions are raised."""

    def __init__(self, script):
        self.script = script
        self.calls = []

    async def complete(self, req):
        for marker, outcome in self.script.items():
            if marker in req.user_content:
                self.calls.append(marker)
                if isinstance(outcome, BaseException):
                    raise outcome
                return outcome
        raise AssertionError(f"unexpected prompt: {req.user_content}")


async def no_sleep(_seconds):
    return None


def classification(is_historic=True, confidence=90, reason="Detailed 1960s memory"):
    return json.dumps({"is_historic": is_historic, "confidence": confidence, "reason": reason})


class TestClassificationJob(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = InMemoryPostStore()

    def job(self, client, **kwargs):
        kwargs.setdefault("policy", RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0))
        return ClassificationJob(self.store, client, model="test-model", sleep=no_sleep, **kwargs)

    async def test_mixed_outcomes_are_counted_and_logged_once(self):
        self.store.insert_posts([
            post("good", "GOOD story", 0),
            post("garbled", "GARBLED story", 1),
            post("invalid", "INVALID story", 2),
            post("down", "DOWN story", 3),
        ])
        client = ScriptedClient({
            "GOOD": classification(),
            "GARBLED": "Sure! Here is the JSON you asked for",
            "INVALID": json.dumps({"is_historic": True, "confidence": 80}),
            "DOWN": TimeoutError("upstream timeout"),
        })

        report = await self.job(client).run()

        self.assertEqual(report.selected, 4)
        self.assertEqual(report.succeeded, 1)
        self.assertEqual(report.failures, {"parse-failure": 1, "validation-failure": 1, "call-failure": 1})
        self.assertEqual(client.calls.count("DOWN"), 3)
        self.assertEqual(set(self.store.classifications), {"good"})
        self.assertEqual([e["type"] for e in self.store.events], ["classify"])

    async def test_confidence_is_clamped_before_storing(self):
        self.store.insert_posts([post("p1", "CLAMP story")])
        await self.job(ScriptedClient({"CLAMP": classification(confidence=150)})).run()
        self.assertEqual(self.store.get_classification("p1").confidence, 100)

    async def test_oldest_first_and_batch_bound(self):
        self.store.insert_posts([post("c", "THIRD", 2), post("a", "FIRST", 0), post("b", "SECOND", 1)])
        client = ScriptedClient({m: classification() for m in ("FIRST", "SECOND", "THIRD")})
        report = await self.job(client, batch_size=2).run()
        self.assertEqual(report.selected, 2)
        self.assertEqual(client.calls, ["FIRST", "SECOND"])

    async def test_classified_posts_are_not_selected_again(self):
        self.store.insert_posts([post("p1", "ONCE story")])
        client = ScriptedClient({"ONCE": classification()})
        await self.job(client).run()
        second = await self.job(client).run()
        self.assertEqual(second.selected, 0)
        self.assertEqual(len(client.calls), 1)

    async def test_no_event_when_nothing_succeeds(self):
        await self.job(ScriptedClient({})).run()
        self.store.insert_posts([post("p1", "BROKEN story")])
        report = await self.job(ScriptedClient({"BROKEN": "{not json"})).run()
        self.assertEqual(report.succeeded, 0)
        self.assertEqual(self.store.events, [])

    async def test_terminal_api_error_is_not_retried(self):
        self.store.insert_posts([post("p1", "REJECTED story")])
        client = ScriptedClient({"REJECTED": ValueError("bad request")})
        report = await self.job(client).run()
        self.assertEqual(report.failures, {"call-failure": 1})
        self.assertEqual(client.calls, ["REJECTED"])

    async def test_ai_limiter_stops_the_batch(self):
        self.store.insert_posts([post("a", "FIRST", 0), post("b", "SECOND", 1)])
        limiter = FixedWindowLimiter("ai", window_ms=60_000, max_requests=1)
        client = ScriptedClient({m: classification() for m in ("FIRST", "SECOND")})
        report = await self.job(client, limiter=limiter).run()
        self.assertTrue(report.throttled)
        self.assertEqual(report.succeeded, 1)
        self.assertEqual(client.calls, ["FIRST"])


class TestRatingJob(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = InMemoryPostStore()
        self.store.insert_posts([
            post("old", "OLD memory", 0),
            post("new", "NEW memory", 5),
            post("unsure", "UNSURE memory", 6),
            post("modern", "MODERN news", 7),
            post("pending", "PENDING memory", 8),
        ])
        for post_id, historic, confidence in (
            ("old", True, 80),
            ("new", True, 95),
            ("unsure", True, 60),
            ("modern", False, 99),
        ):
            self.store.create_classification(ClassificationResult(post_id, historic, confidence, "r"))

    def job(self, client):
        return RatingJob(
            self.store, client, model="test-model", min_confidence=75,
            policy=RetryPolicy(max_attempts=1), sleep=no_sleep,
        )

    async def test_only_confident_historic_posts_newest_first(self):
        rating = json.dumps({"rating": 4, "factors": FACTORS})
        client = ScriptedClient({"OLD": rating, "NEW": rating})
        report = await self.job(client).run()
        self.assertEqual(report.selected, 2)
        self.assertEqual(client.calls, ["NEW", "OLD"])
        self.assertEqual(self.store.get_rating("new").factors, FACTORS)
        self.assertEqual([e["type"] for e in self.store.events], ["rating"])

    async def test_out_of_range_factor_is_a_validation_failure(self):
        bad = json.dumps({"rating": 4, "factors": dict(FACTORS, narrative=6)})
        good = json.dumps({"rating": 2, "factors": FACTORS})
        report = await self.job(ScriptedClient({"NEW": bad, "OLD": good})).run()
        self.assertEqual(report.failures, {"validation-failure": 1})
        self.assertIsNone(self.store.get_rating("new"))
        self.assertEqual(self.store.get_rating("old").rating, 2)


class ExplodingJob(BatchJob):
    name = "explode"
    label = "Explode"

    def fetch_pending(self):
        raise RuntimeError("database went away")


class TestRunJob(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = InMemoryPostStore()
        self.locks = LockManager(InMemoryLockStore(), ttl_seconds=60)

    async def test_completed_run_releases_lock(self):
        job = ClassificationJob(self.store, ScriptedClient({}), model="m")
        run = await run_job(self.locks, "classify", job, self.store)
        self.assertEqual(run.status, JobStatus.COMPLETED)
        self.assertEqual(run.report.selected, 0)
        self.assertFalse(self.locks.is_locked("classify"))

    async def test_held_lock_skips(self):
        self.assertTrue(self.locks.acquire("classify"))
        client = ScriptedClient({})
        job = ClassificationJob(self.store, client, model="m")
        run = await run_job(self.locks, "classify", job, self.store)
        self.assertEqual(run.status, JobStatus.SKIPPED)
        self.assertTrue(self.locks.is_locked("classify"))

    async def test_failure_is_recorded_and_lock_released(self):
        job = ExplodingJob(self.store, ScriptedClient({}), model="m")
        run = await run_job(self.locks, "explode", job, self.store)
        self.assertEqual(run.status, JobStatus.FAILED)
        self.assertIn("database went away", run.error)
        self.assertEqual([e["type"] for e in self.store.events], ["error"])
        self.assertFalse(self.locks.is_locked("explode"))

    async def test_lock_store_outage_becomes_failed_run(self):
        store = InMemoryLockStore()
        store.get = mock.Mock(side_effect=RuntimeError("db down"))
        locks = LockManager(store, ttl_seconds=60)
        job = ClassificationJob(self.store, ScriptedClient({}), model="m")

        run = await run_job(locks, "classify", job, self.store)

        self.assertEqual(run.status, JobStatus.FAILED)
        self.assertIn("db down", run.error)
        self.assertEqual([e["type"] for e in self.store.events], ["error"])

    async def test_failed_release_does_not_escape(self):
        store = InMemoryLockStore()
        store.delete = mock.Mock(side_effect=RuntimeError("connection reset"))
        locks = LockManager(store, ttl_seconds=60)
        job = ClassificationJob(self.store, ScriptedClient({}), model="m")

        run = await run_job(locks, "classify", job, self.store)

        self.assertEqual(run.status, JobStatus.COMPLETED)
        store.delete.assert_called_once_with("classify")


if __name__ == "__main__":
    unittest.main()
