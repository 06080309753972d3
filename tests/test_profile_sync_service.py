import asyncio
import unittest
from datetime import datetime

import httpx

from profile_service_fakes import BASE_URL, FakeProfileService
from services.review.profile_client import ProfileClient
from services.review.profile_sync_service import (
    ProfileSyncEngine,
    merge_reason,
    merge_weak_points,
    normalize_candidate,
)
from services.review.review_assessment_service import assess_review
from services.review.review_models import RunResult, WeakKnowledgeCandidate, WeakKnowledgePoint
from services.review.round_idempotency import RoundIdempotencyCache

NOW = datetime(2026, 10, 19, 9, 30, 0)
NOW_TEXT = "2026-10-19 09:30:00"


def _candidate(knowledge_id="k_review_logic_null_guard", score=6, reason="未判空", name="空指针防护", category=None):
    return WeakKnowledgeCandidate(
        knowledge_id=knowledge_id,
        knowledge_name=name,
        knowledge_category=list(category or ["C语言", "程序调试"]),
        weak_reason=reason,
        weak_score=score,
    )


def _stored(**kwargs):
    base = dict(
        knowledge_id="k_review_logic_null_guard",
        knowledge_name="空指针防护",
        knowledge_category=["C语言"],
        weak_reason="旧原因",
        weak_score=4,
        first_weak_time="2026-10-01 08:00:00",
        last_review_time="2026-10-10 08:00:00",
        review_count=3,
    )
    base.update(kwargs)
    return base


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _engine(fake: FakeProfileService, clock=None) -> ProfileSyncEngine:
    return ProfileSyncEngine(fake.client(), RoundIdempotencyCache(clock=clock or _Clock()), now=lambda: NOW)


def _sync(engine, candidates, *, user="u1", round_id="round-1", run_result=None, mode="logic"):
    return asyncio.run(engine.sync(user, mode, round_id, "summary", run_result, candidates))


class MergeRuleTest(unittest.TestCase):
    def test_merge_reason_splits_both_separators(self):
        self.assertEqual(merge_reason("a；b", "b;c"), "a；b；c")
        self.assertEqual(len(merge_reason("x" * 300, "y")), 280)

    def test_merge_keeps_identity_and_resets_review(self):
        existing = WeakKnowledgePoint(**_stored())
        incoming = normalize_candidate(_candidate(score=8, category=["指针"]), NOW_TEXT)
        merged = merge_weak_points(existing, incoming, NOW_TEXT)
        self.assertEqual(merged.knowledge_id, existing.knowledge_id)
        self.assertEqual(merged.weak_score, 8)
        self.assertEqual(merged.knowledge_category, ["C语言", "指针"])
        self.assertEqual(merged.weak_reason, "旧原因；未判空")
        self.assertEqual(merged.first_weak_time, "2026-10-01 08:00:00")
        self.assertIsNone(merged.last_review_time)
        self.assertEqual(merged.review_count, 3)

    def test_merge_fills_missing_name_and_first_time(self):
        existing = WeakKnowledgePoint(**_stored(knowledge_name="", first_weak_time=""))
        incoming = normalize_candidate(_candidate(), NOW_TEXT)
        merged = merge_weak_points(existing, incoming, NOW_TEXT)
        self.assertEqual(merged.knowledge_name, "空指针防护")
        self.assertEqual(merged.first_weak_time, NOW_TEXT)

    def test_self_merge_is_idempotent_but_resets_last_review(self):
        point = WeakKnowledgePoint(**_stored())
        merged = merge_weak_points(point, point, NOW_TEXT)
        self.assertEqual(merged.weak_score, point.weak_score)
        self.assertEqual(merged.knowledge_category, point.knowledge_category)
        self.assertEqual(merged.weak_reason, point.weak_reason)
        self.assertIsNotNone(point.last_review_time)
        self.assertIsNone(merged.last_review_time)

    def test_normalize_drops_unactionable_candidates(self):
        self.assertIsNone(normalize_candidate(_candidate(knowledge_id=""), NOW_TEXT))
        self.assertIsNone(normalize_candidate(_candidate(name=""), NOW_TEXT))
        self.assertIsNone(normalize_candidate(_candidate(score=0.4), NOW_TEXT))
        point = normalize_candidate(_candidate(score=11, reason="  " + "r" * 300), NOW_TEXT)
        self.assertEqual(point.weak_score, 10)
        self.assertEqual(len(point.weak_reason), 280)
        self.assertEqual(point.first_weak_time, NOW_TEXT)
        self.assertEqual(point.review_count, 0)


class ProfileSyncEngineTest(unittest.TestCase):
    def test_empty_inputs_short_circuit_without_io(self):
        fake = FakeProfileService()
        engine = _engine(fake)
        self.assertEqual(_sync(engine, [], user="u1").to_dict(), {"added": 0, "updated": 0, "skipped": 0, "errors": []})
        self.assertEqual(_sync(engine, [_candidate()], user="").added, 0)
        self.assertEqual(_sync(engine, [_candidate(score=0)]).added, 0)
        self.assertEqual(fake.calls, [])

    def test_stdio_scenario_adds_one_point(self):
        fake = FakeProfileService({"u1": []})
        assessment = assess_review('int main(){printf("hi");return 0;}', "syntax", RunResult(success=True))
        self.assertEqual([c.weak_score for c in assessment.weak_candidates], [6])
        result = _sync(_engine(fake), assessment.weak_candidates, mode="syntax", round_id="fresh-round")
        self.assertEqual((result.added, result.updated, result.skipped, result.errors), (1, 0, 0, []))
        self.assertEqual(fake.profiles["u1"][0]["knowledge_id"], "k_review_syntax_stdio_header")
        self.assertEqual(fake.profiles["u1"][0]["first_weak_time"], NOW_TEXT)

    def test_existing_point_is_updated_with_merged_values(self):
        fake = FakeProfileService({"u1": [_stored()]})
        result = _sync(_engine(fake), [_candidate(score=7)])
        self.assertEqual((result.added, result.updated), (0, 1))
        self.assertEqual([m for m, _ in fake.calls], ["GET", "PUT"])
        self.assertEqual(fake.profiles["u1"][0]["weak_score"], 7)
        self.assertEqual(fake.profiles["u1"][0]["weak_reason"], "旧原因；未判空")

    def test_profile_404_creates_new_point(self):
        fake = FakeProfileService()
        result = _sync(_engine(fake), [_candidate()])
        self.assertEqual((result.added, result.updated, result.errors), (1, 0, []))
        self.assertEqual([m for m, _ in fake.calls], ["GET", "POST"])

    def test_failed_profile_load_falls_back_to_update_then_create(self):
        fake = FakeProfileService({"u1": [_stored(knowledge_id="k_known")]})
        fake.get_status = 500
        result = _sync(_engine(fake), [_candidate("k_known"), _candidate("k_new")])
        self.assertEqual((result.added, result.updated), (1, 1))
        self.assertEqual(len(result.errors), 1)
        self.assertTrue(result.errors[0].startswith("load_profile_failed:"))
        self.assertEqual([m for m, _ in fake.calls], ["GET", "PUT", "PUT", "POST"])

    def test_put_404_is_an_error_when_profile_was_loaded(self):
        fake = FakeProfileService({"u1": [_stored()]})
        engine = _engine(fake)
        fake.put_status = 404
        result = _sync(engine, [_candidate()])
        self.assertEqual((result.added, result.updated), (0, 0))
        self.assertEqual(len(result.errors), 1)
        self.assertTrue(result.errors[0].startswith("write_failed:k_review_logic_null_guard:"))
        self.assertEqual([m for m, _ in fake.calls], ["GET", "PUT"])

    def test_non_404_put_failure_does_not_fall_back(self):
        fake = FakeProfileService()
        fake.get_status = 502
        fake.put_status = 422
        result = _sync(_engine(fake), [_candidate()])
        self.assertEqual(result.added, 0)
        self.assertEqual(len(result.errors), 2)
        self.assertNotIn("POST", [m for m, _ in fake.calls])

    def test_write_failure_does_not_abort_batch(self):
        fake = FakeProfileService({"u1": []})
        fake.fail_ids = {"k_bad"}
        result = _sync(_engine(fake), [_candidate("k_bad"), _candidate("k_good")])
        self.assertEqual(result.added, 1)
        self.assertEqual(len(result.errors), 1)
        self.assertIn("write_failed:k_bad:", result.errors[0])
        self.assertIn("500", result.errors[0])

    def test_same_round_retry_is_skipped_without_network(self):
        fake = FakeProfileService({"u1": []})
        engine = _engine(fake)
        candidates = [_candidate("k_a"), _candidate("k_b")]
        first = _sync(engine, candidates, round_id="r-7")
        self.assertEqual(first.added, 2)
        calls_before = len(fake.calls)

        second = _sync(engine, candidates, round_id="r-7")
        self.assertEqual((second.added, second.updated, second.skipped), (0, 0, 2))
        # only the profile read; no writes
        self.assertEqual(fake.calls[calls_before:], [("GET", "/api/mongodb/user_profile/u1")])

    def test_new_round_updates_again(self):
        fake = FakeProfileService({"u1": []})
        engine = _engine(fake)
        _sync(engine, [_candidate()], round_id="r-1")
        result = _sync(engine, [_candidate()], round_id="r-2")
        self.assertEqual((result.added, result.updated, result.skipped), (0, 1, 0))

    def test_round_entries_expire(self):
        fake = FakeProfileService({"u1": []})
        clock = _Clock()
        engine = _engine(fake, clock)
        _sync(engine, [_candidate()], round_id="r-1")
        clock.now += 24 * 60 * 60 + 1
        result = _sync(engine, [_candidate()], round_id="r-1")
        self.assertEqual((result.updated, result.skipped), (1, 0))

    def test_without_round_id_nothing_is_skipped(self):
        fake = FakeProfileService({"u1": []})
        engine = _engine(fake)
        _sync(engine, [_candidate()], round_id=None)
        result = _sync(engine, [_candidate()], round_id=None)
        self.assertEqual((result.updated, result.skipped), (1, 0))

    def test_duplicate_candidates_in_one_batch_see_earlier_write(self):
        fake = FakeProfileService({"u1": []})
        result = _sync(_engine(fake), [_candidate(reason="一"), _candidate(reason="二")], round_id=None)
        self.assertEqual((result.added, result.updated), (1, 1))
        self.assertEqual(fake.profiles["u1"][0]["weak_reason"], "一；二")

    def test_cancelled_sync_records_errors(self):
        fake = FakeProfileService({"u1": []})
        engine = _engine(fake)

        async def run():
            cancel = asyncio.Event()
            cancel.set()
            return await engine.sync("u1", "logic", "r", "s", None, [_candidate()], cancel_event=cancel)

        result = asyncio.run(run())
        self.assertEqual(result.added, 0)
        self.assertTrue(result.errors[0].startswith("load_profile_failed:"))
        self.assertIn("request_cancelled", result.errors[1])
        self.assertEqual(fake.calls, [])

    def test_default_cache_is_owned_per_engine(self):
        client = ProfileClient(BASE_URL, 1.0, transport=httpx.MockTransport(lambda r: httpx.Response(404)))
        a = ProfileSyncEngine(client)
        b = ProfileSyncEngine(client)
        self.assertIsNot(a.idempotency, b.idempotency)

    def test_injected_cache_and_clock_are_used(self):
        fake = FakeProfileService({"u1": []})
        cache = RoundIdempotencyCache(clock=lambda: 0.0, ttl_sec=60)
        engine = ProfileSyncEngine(fake.client(), cache, now=lambda: NOW)
        self.assertIs(engine.idempotency, cache)
        _sync(engine, [_candidate()], round_id="r-1")
        self.assertEqual(len(cache), 1)


if __name__ == "__main__":
    unittest.main()
