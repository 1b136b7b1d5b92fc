# Author: Bradley R. Kinnard — prove the pipeline keeps answering

"""
End to end through the orchestrator with in-memory cache/store and a fake upstream.
Run with: pytest tests/integration/test_analysis_pipeline.py -v
"""

import asyncio

import pytest

from src.codeguard.adapters.analysis_store import MemoryAnalysisStore
from src.codeguard.config import Settings
from src.codeguard.core.cache import MemoryResultCache, RedisResultCache
from src.codeguard.core.circuit_breaker import CircuitBreaker
from src.codeguard.core.dedup import DedupGate
from src.codeguard.core.errors import (
    AnalysisNotFoundError,
    ErrorKind,
    InputError,
    PayloadTooLargeError,
    StorageError,
    UpstreamError,
    UpstreamRejectedError,
)
from src.codeguard.core.models import (
    AnalysisRequest,
    AnalysisResult,
    BatchItemError,
    RawAnalysis,
    RecordStatus,
    Severity,
    SuggestionFeedback,
    SuggestionStatus,
)
from src.codeguard.services.analyzer_service import AnalysisOrchestrator


class FakeAnalyzer:
    """Counts calls. fail_with raises on every call; content starting with BAD gets a 400."""

    def __init__(self, fail_with: Exception | None = None, delay: float = 0.0, score: int = 82):
        self.fail_with = fail_with
        self.delay = delay
        self.score = score
        self.calls = 0

    async def invoke(self, content, file_path, options):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        if content.startswith("BAD"):
            raise UpstreamError("request validation failed", status_code=400)
        return RawAnalysis.model_validate({
            "quality_score": self.score,
            "improvements": [
                {"category": "security", "priority": "high", "description": "Validate input", "confidence": 0.9},
                {"category": "style", "priority": "low", "description": "Use const", "confidence": 0.6},
            ],
            "patterns": ["early-return"],
        })


class RecordingNotifier:
    def __init__(self):
        self.events: list[tuple[str, str]] = []

    async def publish(self, user_id, event, payload):
        self.events.append((user_id, event))


class BrokenStore:
    async def find_recent(self, *args, **kwargs):
        raise ConnectionError("dynamo down")

    async def save(self, *args, **kwargs):
        raise ConnectionError("dynamo down")

    async def update_status(self, *args, **kwargs):
        raise ConnectionError("dynamo down")

    async def get(self, *args, **kwargs):
        raise ConnectionError("dynamo down")

    async def list_recent(self, *args, **kwargs):
        raise ConnectionError("dynamo down")


def _settings(**overrides) -> Settings:
    base = dict(
        cache_backend="memory",
        store_backend="memory",
        notifier_backend="none",
        upstream_timeout=1.0,
        storage_timeout=0.5,
        max_code_bytes=1000,
    )
    base.update(overrides)
    return Settings(**base)


def _orchestrator(analyzer, clock=None, cache=None, store=None, notifier=None, **settings_overrides):
    breaker = CircuitBreaker(clock=clock) if clock else CircuitBreaker()
    return AnalysisOrchestrator(
        settings=_settings(**settings_overrides),
        analyzer=analyzer,
        cache=cache if cache is not None else MemoryResultCache(),
        store=store if store is not None else MemoryAnalysisStore(),
        breaker=breaker,
        notifier=notifier,
    )


def _req(content="function f(){}", path="a.js", user="u1", **options) -> AnalysisRequest:
    return AnalysisRequest(code_content=content, file_path=path, user_id=user, options=options)


@pytest.mark.asyncio
async def test_second_call_is_served_from_cache():
    analyzer = FakeAnalyzer()
    orch = _orchestrator(analyzer)

    first = await orch.analyze(_req())
    second = await orch.analyze(_req())

    assert analyzer.calls == 1
    assert first.analyzed_by_upstream is True and first.from_cache is False
    assert second.from_cache is True and second.from_database is False
    assert second.quality_score == first.quality_score
    assert second.model_dump(exclude={"from_cache"}) == first.model_dump(exclude={"from_cache"})


@pytest.mark.asyncio
async def test_result_shape():
    orch = _orchestrator(FakeAnalyzer(score=82))
    result = await orch.analyze(_req())

    assert result.quality_score == 82
    assert [s.id for s in result.suggestions] == ["suggestion_1", "suggestion_2"]
    assert result.suggestions[0].severity.value == "high"
    assert result.patterns[0].name == "early-return"
    assert result.metrics.language == "javascript"
    assert result.metrics.lines_of_code == 1
    assert result.is_fallback is False
    assert len(result.fingerprint) == 64


@pytest.mark.asyncio
async def test_concurrent_identical_requests_make_one_upstream_call():
    analyzer = FakeAnalyzer(delay=0.05)
    orch = _orchestrator(analyzer)

    results = await asyncio.gather(*(orch.analyze(_req()) for _ in range(10)))

    assert analyzer.calls == 1
    assert len({r.analysis_id for r in results}) == 1
    assert orch.gate.in_flight() == 0


@pytest.mark.asyncio
async def test_different_requests_do_not_share_a_computation():
    analyzer = FakeAnalyzer(delay=0.02)
    orch = _orchestrator(analyzer)
    await asyncio.gather(orch.analyze(_req("a()")), orch.analyze(_req("b()")), orch.analyze(_req("a()", user="u2")))
    assert analyzer.calls == 3


@pytest.mark.asyncio
async def test_upstream_503_returns_fallback():
    analyzer = FakeAnalyzer(fail_with=UpstreamError("service unavailable", status_code=503))
    orch = _orchestrator(analyzer)

    result = await orch.analyze(_req())

    assert result.is_fallback is True
    assert result.analyzed_by_upstream is False
    assert result.quality_score == 70
    assert result.fallback_reason == "upstream unavailable"
    assert orch.breaker.failure_count("analysis") == 1


@pytest.mark.asyncio
async def test_fallback_is_cached_briefly():
    analyzer = FakeAnalyzer(fail_with=UpstreamError("unavailable", status_code=503))
    orch = _orchestrator(analyzer)

    await orch.analyze(_req())
    again = await orch.analyze(_req())

    assert analyzer.calls == 1
    assert again.from_cache is True and again.is_fallback is True


@pytest.mark.asyncio
async def test_upstream_timeout_returns_fallback():
    analyzer = FakeAnalyzer(delay=0.5)
    orch = _orchestrator(analyzer, upstream_timeout=0.05)

    result = await orch.analyze(_req())

    assert result.is_fallback is True
    assert result.fallback_reason == "upstream timeout"


@pytest.mark.asyncio
async def test_breaker_trips_then_recovers(clock):
    analyzer = FakeAnalyzer(fail_with=UpstreamError("bad gateway", status_code=502))
    orch = _orchestrator(analyzer, clock=clock)

    # distinct requests so cached fallbacks don't hide anything
    for i in range(5):
        await orch.analyze(_req(f"f{i}()"))
    assert analyzer.calls == 5
    assert orch.breaker.is_open("analysis")

    short = await orch.analyze(_req("f5()"))
    assert analyzer.calls == 5, "open breaker must not call upstream"
    assert short.is_fallback is True
    assert short.fallback_reason == "circuit breaker open"

    clock.advance(61)
    analyzer.fail_with = None
    recovered = await orch.analyze(_req("f6()"))
    assert analyzer.calls == 6
    assert recovered.analyzed_by_upstream is True
    assert orch.get_error_stats() == {}


@pytest.mark.asyncio
async def test_auth_failure_is_surfaced_and_never_trips():
    analyzer = FakeAnalyzer(fail_with=UpstreamError("invalid api key", status_code=401))
    orch = _orchestrator(analyzer)

    for _ in range(10):
        with pytest.raises(UpstreamRejectedError) as exc:
            await orch.analyze(_req())
        assert exc.value.kind == ErrorKind.AUTH_FAILURE

    # never cached, every call reached upstream, breaker untouched
    assert analyzer.calls == 10
    assert orch.breaker.is_open("analysis") is False
    assert orch.breaker.failure_count("analysis") == 0


@pytest.mark.asyncio
async def test_input_errors_never_reach_upstream():
    analyzer = FakeAnalyzer()
    orch = _orchestrator(analyzer, max_code_bytes=10)

    with pytest.raises(InputError):
        await orch.analyze(_req("   "))
    with pytest.raises(InputError):
        await orch.analyze(_req("x", path=""))
    with pytest.raises(PayloadTooLargeError):
        await orch.analyze(_req("x" * 11))
    assert analyzer.calls == 0


@pytest.mark.asyncio
async def test_persisted_store_is_second_tier():
    analyzer = FakeAnalyzer()
    cache = MemoryResultCache()
    orch = _orchestrator(analyzer, cache=cache)

    first = await orch.analyze(_req())
    await cache.invalidate_by_user("u1")

    from_db = await orch.analyze(_req())
    assert analyzer.calls == 1
    assert from_db.from_database is True and from_db.from_cache is False
    assert from_db.analysis_id == first.analysis_id

    # store hit repopulated the cache
    third = await orch.analyze(_req())
    assert third.from_cache is True


@pytest.mark.asyncio
async def test_records_are_persisted_with_status():
    store = MemoryAnalysisStore()
    orch = _orchestrator(FakeAnalyzer(), store=store)
    result = await orch.analyze(_req())

    record = await store.get(result.analysis_id, "u1")
    assert record.status == RecordStatus.COMPLETE
    assert record.result.quality_score == result.quality_score
    assert await store.get(result.analysis_id, "someone-else") is None


@pytest.mark.asyncio
async def test_failed_analysis_recorded_as_error_and_not_reused():
    store = MemoryAnalysisStore()
    analyzer = FakeAnalyzer(fail_with=UpstreamError("unavailable", status_code=503))
    cache = MemoryResultCache()
    orch = _orchestrator(analyzer, store=store, cache=cache)

    result = await orch.analyze(_req())
    record = await store.get(result.analysis_id, "u1")
    assert record.status == RecordStatus.ERROR
    assert record.error.kind == "unavailable"

    # fallback records never count as the second tier
    await cache.invalidate_by_user("u1")
    analyzer.fail_with = None
    fresh = await orch.analyze(_req())
    assert fresh.analyzed_by_upstream is True
    assert analyzer.calls == 2


@pytest.mark.asyncio
async def test_redis_down_does_not_break_analysis():
    async def redis_down():
        raise ConnectionError("redis down")

    analyzer = FakeAnalyzer()
    orch = _orchestrator(analyzer, cache=RedisResultCache(redis_factory=redis_down))

    result = await orch.analyze(_req())
    assert result.analyzed_by_upstream is True


@pytest.mark.asyncio
async def test_store_down_does_not_break_analysis():
    orch = _orchestrator(FakeAnalyzer(), store=BrokenStore())
    result = await orch.analyze(_req())
    assert result.analyzed_by_upstream is True


@pytest.mark.asyncio
async def test_batch_isolates_failures():
    analyzer = FakeAnalyzer(score=81)
    orch = _orchestrator(analyzer)

    batch = await orch.analyze_batch([
        _req("a()", path="a.js"),
        _req("BAD input", path="b.js"),
        _req("c()", path="c.js"),
        _req("", path="d.js"),
    ])

    assert [type(r) for r in batch.results] == [AnalysisResult, BatchItemError, AnalysisResult, BatchItemError]
    assert batch.results[1].file_path == "b.js"
    assert batch.results[1].error_kind == "validation_failure"
    assert batch.results[3].error_kind == "input"
    assert batch.summary.total_files == 4
    assert batch.summary.successful_analyses == 2
    assert batch.summary.failed_analyses == 2
    assert batch.summary.average_quality_score == 81
    assert batch.summary.total_suggestions == 4
    assert batch.batch_id.startswith("batch-")


@pytest.mark.asyncio
async def test_batch_with_duplicates_calls_upstream_once():
    analyzer = FakeAnalyzer(delay=0.05)
    orch = _orchestrator(analyzer)

    batch = await orch.analyze_batch([_req(), _req(), _req()])

    assert analyzer.calls == 1
    assert batch.summary.successful_analyses == 3


@pytest.mark.asyncio
async def test_empty_batch_rejected():
    with pytest.raises(InputError):
        await _orchestrator(FakeAnalyzer()).analyze_batch([])


@pytest.mark.asyncio
async def test_status_update_persists_and_invalidates_cache():
    cache = MemoryResultCache()
    orch = _orchestrator(FakeAnalyzer(), cache=cache)
    result = await orch.analyze(_req())
    assert len(cache) == 1

    updated = await orch.update_suggestion_status(
        result.analysis_id,
        "suggestion_1",
        "accepted",
        user_id="u1",
        feedback=SuggestionFeedback(rating="helpful"),
    )

    assert updated.status == SuggestionStatus.ACCEPTED
    assert updated.feedback.submitted_at_millis is not None
    assert len(cache) == 0

    # next read comes from the store and sees the new status
    again = await orch.analyze(_req())
    assert again.from_database is True
    assert again.suggestions[0].status == SuggestionStatus.ACCEPTED


@pytest.mark.asyncio
async def test_status_update_errors():
    orch = _orchestrator(FakeAnalyzer())
    result = await orch.analyze(_req())

    with pytest.raises(AnalysisNotFoundError):
        await orch.update_suggestion_status("an-missing", "suggestion_1", "accepted", user_id="u1")
    with pytest.raises(AnalysisNotFoundError):
        await orch.update_suggestion_status(result.analysis_id, "suggestion_99", "accepted", user_id="u1")
    with pytest.raises(AnalysisNotFoundError):
        await orch.update_suggestion_status(result.analysis_id, "suggestion_1", "accepted", user_id="u2")
    with pytest.raises(InputError):
        await orch.update_suggestion_status(result.analysis_id, "suggestion_1", "pending", user_id="u1")


@pytest.mark.asyncio
async def test_notifier_sees_lifecycle_events():
    notifier = RecordingNotifier()
    orch = _orchestrator(FakeAnalyzer(), notifier=notifier)

    await orch.analyze(_req())
    await orch.analyze(_req())  # cache hit, no events

    assert notifier.events == [("u1", "analysis_started"), ("u1", "analysis_complete")]


@pytest.mark.asyncio
async def test_broken_notifier_is_ignored():
    class Exploding:
        async def publish(self, user_id, event, payload):
            raise RuntimeError("socket gone")

    orch = _orchestrator(FakeAnalyzer(), notifier=Exploding())
    result = await orch.analyze(_req())
    assert result.analyzed_by_upstream is True


@pytest.mark.asyncio
async def test_manual_breaker_reset():
    orch = _orchestrator(FakeAnalyzer(fail_with=UpstreamError("unavailable", status_code=503)))
    for i in range(5):
        await orch.analyze(_req(f"g{i}()"))
    assert orch.get_error_stats()["analysis"].circuit_open is True

    orch.reset_circuit_breaker("analysis")
    assert orch.get_error_stats() == {}


@pytest.mark.asyncio
async def test_injected_empty_collaborators_are_kept():
    """an empty cache or store is still the one the caller asked for"""
    cache, store, gate = MemoryResultCache(), MemoryAnalysisStore(), DedupGate()
    orch = AnalysisOrchestrator(
        settings=_settings(),
        analyzer=FakeAnalyzer(),
        cache=cache,
        store=store,
        breaker=CircuitBreaker(),
        gate=gate,
    )
    assert orch.cache is cache
    assert orch.store is store
    assert orch.gate is gate

    helper = _orchestrator(FakeAnalyzer(), cache=cache, store=store)
    await helper.analyze(_req())
    assert len(cache) == 1
    assert len(store) == 1


@pytest.mark.asyncio
async def test_concurrent_status_updates_on_one_analysis_are_all_kept():
    class SlowStore(MemoryAnalysisStore):
        """widens the gap between reading a record and writing it back"""

        async def get(self, analysis_id, user_id):
            record = await super().get(analysis_id, user_id)
            await asyncio.sleep(0.01)
            return record

    store = SlowStore()
    orch = _orchestrator(FakeAnalyzer(), store=store)
    result = await orch.analyze(_req())

    await asyncio.gather(
        orch.update_suggestion_status(result.analysis_id, "suggestion_1", "accepted", user_id="u1"),
        orch.update_suggestion_status(result.analysis_id, "suggestion_2", "rejected", user_id="u1"),
    )

    record = await MemoryAnalysisStore.get(store, result.analysis_id, "u1")
    statuses = {s.id: s.status for s in record.result.suggestions}
    assert statuses == {"suggestion_1": SuggestionStatus.ACCEPTED, "suggestion_2": SuggestionStatus.REJECTED}
    assert orch._record_locks == {}


@pytest.mark.asyncio
async def test_status_update_store_down_is_storage_error():
    orch = _orchestrator(FakeAnalyzer(), store=BrokenStore())
    with pytest.raises(StorageError):
        await orch.update_suggestion_status("an-x", "suggestion_1", "accepted", user_id="u1")
    assert orch._record_locks == {}


@pytest.mark.asyncio
async def test_filtered_suggestions_for_latest_analysis():
    orch = _orchestrator(FakeAnalyzer())
    await orch.analyze(_req("old()"))
    await asyncio.sleep(0.005)
    latest = await orch.analyze(_req("new()"))
    await orch.update_suggestion_status(latest.analysis_id, "suggestion_2", "rejected", user_id="u1")

    high = await orch.get_filtered_suggestions("u1", "a.js", severity=[Severity.HIGH])
    assert high.analysis_id == latest.analysis_id
    assert high.quality_score == 82
    assert [s.id for s in high.suggestions] == ["suggestion_1"]
    assert high.total == 1 and high.has_more is False

    rejected = await orch.get_filtered_suggestions("u1", "a.js", status=[SuggestionStatus.REJECTED])
    assert [s.id for s in rejected.suggestions] == ["suggestion_2"]

    first_page = await orch.get_filtered_suggestions("u1", "a.js", limit=1)
    assert [s.id for s in first_page.suggestions] == ["suggestion_1"]
    assert first_page.total == 2 and first_page.has_more is True
    second_page = await orch.get_filtered_suggestions("u1", "a.js", limit=1, offset=1)
    assert [s.id for s in second_page.suggestions] == ["suggestion_2"]
    assert second_page.has_more is False


@pytest.mark.asyncio
async def test_filtered_suggestions_without_analysis_is_empty():
    page = await _orchestrator(FakeAnalyzer()).get_filtered_suggestions("u1", "nothing.js")
    assert page.analysis_id is None
    assert page.suggestions == []
    assert page.total == 0 and page.has_more is False


@pytest.mark.asyncio
async def test_history_is_newest_first_and_complete_only():
    analyzer = FakeAnalyzer()
    orch = _orchestrator(analyzer)
    first = await orch.analyze(_req("a()", path="a.js"))
    await asyncio.sleep(0.005)
    second = await orch.analyze(_req("b()", path="b.js"))
    await asyncio.sleep(0.005)
    await orch.analyze(_req("c()", path="c.js", user="u2"))

    # upstream failure leaves an error record, which is not history
    analyzer.fail_with = UpstreamError("unavailable", status_code=503)
    await orch.analyze(_req("d()", path="d.js"))

    history = await orch.get_history("u1")
    assert [h.analysis_id for h in history.history] == [second.analysis_id, first.analysis_id]
    assert history.history[0].suggestion_count == 2
    assert history.total == 2

    only_a = await orch.get_history("u1", file_path="a.js")
    assert [h.file_path for h in only_a.history] == ["a.js"]

    paged = await orch.get_history("u1", limit=1, offset=0)
    assert paged.total == 2 and paged.has_more is True
    assert [h.analysis_id for h in paged.history] == [second.analysis_id]


@pytest.mark.asyncio
async def test_history_store_down_is_storage_error():
    with pytest.raises(StorageError):
        await _orchestrator(FakeAnalyzer(), store=BrokenStore()).get_history("u1")
