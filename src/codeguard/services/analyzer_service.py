# Author: Bradley R. Kinnard — the orchestrator

"""
Main analysis pipeline. Validate, fingerprint, cache, store, dedup, breaker,
upstream, fallback, persist, cache. Every caller gets a usable result or a
well-typed error for input that was never going to work.

Two cache tiers in front of the upstream:
    1. result cache (redis, 5 min)
    2. persisted store, completed records for the same user younger than db_max_age_ms
Anything past that goes through the dedup gate, so N identical requests in
flight cost one upstream call.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from src.codeguard.adapters import metrics_client as metrics
from src.codeguard.adapters.analysis_store import AnalysisStore, build_store
from src.codeguard.adapters.llm_client import UpstreamAnalyzer, build_analyzer
from src.codeguard.adapters.notifier import Notifier, build_notifier
from src.codeguard.adapters.telemetry import emit
from src.codeguard.config import Settings
from src.codeguard.core.cache import MemoryResultCache, RedisResultCache, ResultCache
from src.codeguard.core.circuit_breaker import BreakerPolicy, CircuitBreaker
from src.codeguard.core.code_metrics import (
    calculate_complexity,
    calculate_maintainability,
    count_lines,
    detect_language,
)
from src.codeguard.core.dedup import DedupGate
from src.codeguard.core.errors import (
    AnalysisNotFoundError,
    ErrorKind,
    InputError,
    StorageError,
    UpstreamError,
    UpstreamRejectedError,
    classify_error,
)
from src.codeguard.core.fingerprint import fingerprint_request
from src.codeguard.core.models import (
    AnalysisHistory,
    AnalysisRecord,
    AnalysisRequest,
    AnalysisResult,
    BatchItemError,
    BatchResult,
    BatchSummary,
    CodeMetrics,
    ErrorInfo,
    FallbackPayload,
    FilteredSuggestions,
    HistoryEntry,
    PatternDescriptor,
    RawAnalysis,
    RecordStatus,
    ServiceErrorStats,
    Severity,
    Suggestion,
    SuggestionFeedback,
    SuggestionStatus,
    SuggestionType,
)
from src.codeguard.services.fallback import FallbackSynthesizer, category_for_service
from src.codeguard.services.suggestion_formatter import filter_suggestions, format_suggestions
from src.codeguard.utils.validation import validate_analysis_request, validate_suggestion_status

log = logging.getLogger(__name__)

CIRCUIT_OPEN_REASON = "circuit breaker open"


class AnalysisOrchestrator:
    """
    Owns the request lifecycle. Every collaborator comes in through the
    constructor; nothing here reaches for a global.
    """

    def __init__(
        self,
        settings: Settings,
        analyzer: UpstreamAnalyzer,
        cache: ResultCache,
        store: AnalysisStore,
        breaker: CircuitBreaker,
        gate: DedupGate | None = None,
        synthesizer: FallbackSynthesizer | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.analyzer = analyzer
        self.cache = cache
        self.store = store
        self.breaker = breaker
        self.gate = gate if gate is not None else DedupGate()
        self.synthesizer = synthesizer if synthesizer is not None else FallbackSynthesizer()
        self.notifier = notifier
        self._clock = clock
        # analysis_id -> [lock, holders]. status updates read-modify-write the whole record
        self._record_locks: dict[str, list] = {}

    @property
    def service(self) -> str:
        return self.settings.analysis_service_name

    def _now_millis(self) -> int:
        return int(self._clock() * 1000)

    # -- collaborators that must never take the request down --

    async def _store_call(self, op: str, coro) -> Any:
        """Persisted-store call, bounded and absorbed. None on any failure."""
        try:
            return await asyncio.wait_for(coro, timeout=self.settings.storage_timeout)
        except Exception as e:
            log.warning(f"store {op} failed: {e!r}")
            metrics.store_error_total.labels(op=op).inc()
            return None

    async def _notify(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        if self.notifier is None:
            return
        try:
            await asyncio.wait_for(
                self.notifier.publish(user_id, event, payload),
                timeout=self.settings.notify_timeout,
            )
        except Exception as e:
            log.debug(f"notifier dropped {event}: {e!r}")

    @asynccontextmanager
    async def _record_lock(self, analysis_id: str) -> AsyncIterator[None]:
        """Serialise read-modify-write on one record. Per process only."""
        entry = self._record_locks.setdefault(analysis_id, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._record_locks[analysis_id]

    async def _store_required(self, op: str, coro) -> Any:
        """Store call with no degraded answer. Failures surface as StorageError."""
        try:
            return await asyncio.wait_for(coro, timeout=self.settings.storage_timeout)
        except Exception as e:
            metrics.store_error_total.labels(op=op).inc()
            raise StorageError(f"store {op} failed: {e!r}") from e

    # -- public operations --

    async def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        start = time.perf_counter()
        validate_analysis_request(request, self.settings.max_code_bytes)
        fingerprint = fingerprint_request(request)

        cached = await self.cache.get(fingerprint)
        if cached is not None:
            log.info(f"cache hit for {fingerprint[:8]}")
            metrics.analyze_latency.labels(outcome="cache").observe(time.perf_counter() - start)
            return cached.model_copy(update={"from_cache": True, "from_database": False})

        record = await self._store_call(
            "find_recent",
            self.store.find_recent(fingerprint, request.user_id, self.settings.db_max_age_ms),
        )
        if record is not None and record.result is not None:
            log.info(f"store hit for {fingerprint[:8]}, analysis {record.analysis_id}")
            metrics.store_hit_total.inc()
            emit("store_hit", fingerprint=fingerprint[:12], analysis_id=record.analysis_id)
            await self.cache.put(fingerprint, record.result, ttl=self.settings.cache_ttl, user_id=request.user_id)
            metrics.analyze_latency.labels(outcome="database").observe(time.perf_counter() - start)
            return record.result.model_copy(update={"from_cache": False, "from_database": True})

        try:
            result = await self.gate.run_exclusive(fingerprint, lambda: self._compute(request, fingerprint))
        except UpstreamRejectedError:
            metrics.analyze_latency.labels(outcome="rejected").observe(time.perf_counter() - start)
            raise

        outcome = "fallback" if result.is_fallback else "upstream"
        metrics.analyze_latency.labels(outcome=outcome).observe(time.perf_counter() - start)
        # joiners share the task's result, hand each caller its own copy
        return result.model_copy(deep=True)

    async def _compute(self, request: AnalysisRequest, fingerprint: str) -> AnalysisResult:
        """What the dedup gate runs. At most one of these per fingerprint at a time."""
        analysis_id = f"an-{uuid.uuid4().hex[:12]}"

        if self.breaker.is_open(self.service):
            log.warning(f"breaker open for {self.service}, skipping upstream for {fingerprint[:8]}")
            return self._fallback_result(request, fingerprint, analysis_id, CIRCUIT_OPEN_REASON, "circuit_open")

        now = self._now_millis()
        await self._store_call("save", self.store.save(AnalysisRecord(
            analysis_id=analysis_id,
            user_id=request.user_id,
            file_path=request.file_path,
            fingerprint=fingerprint,
            status=RecordStatus.PENDING,
            created_at_millis=now,
            updated_at_millis=now,
        )))
        await self._notify(request.user_id, "analysis_started", {
            "analysis_id": analysis_id,
            "file_path": request.file_path,
        })

        try:
            raw = await self._invoke_upstream(request)
        except Exception as e:
            return await self._handle_failure(request, fingerprint, analysis_id, now, e)

        metrics.upstream_call_total.labels(service=self.service, outcome="ok").inc()
        result = self._build_result(request, fingerprint, analysis_id, raw)

        await self._store_call("save", self.store.save(AnalysisRecord(
            analysis_id=analysis_id,
            user_id=request.user_id,
            file_path=request.file_path,
            fingerprint=fingerprint,
            status=RecordStatus.COMPLETE,
            result=result,
            created_at_millis=now,
            updated_at_millis=self._now_millis(),
        )))
        await self.cache.put(fingerprint, result, ttl=self.settings.cache_ttl, user_id=request.user_id)
        await self._notify(request.user_id, "analysis_complete", {
            "analysis_id": analysis_id,
            "file_path": request.file_path,
            "quality_score": result.quality_score,
            "suggestion_count": len(result.suggestions),
        })
        log.info(f"analyzed {fingerprint[:8]} score={result.quality_score} suggestions={len(result.suggestions)}")
        return result

    async def _invoke_upstream(self, request: AnalysisRequest) -> RawAnalysis:
        try:
            return await asyncio.wait_for(
                self.analyzer.invoke(request.code_content, request.file_path, dict(request.options)),
                timeout=self.settings.upstream_timeout,
            )
        except asyncio.TimeoutError as e:
            raise UpstreamError(
                f"upstream call timed out after {self.settings.upstream_timeout}s",
                status_code=408,
                service=self.service,
            ) from e

    async def _handle_failure(
        self,
        request: AnalysisRequest,
        fingerprint: str,
        analysis_id: str,
        created_at: int,
        exc: Exception,
    ) -> AnalysisResult:
        """Classify, then either reject (auth/validation) or count it and fall back."""
        kind = classify_error(exc)
        message = str(getattr(exc, "message", None) or exc)
        status_code = getattr(exc, "status_code", None)
        error = ErrorInfo(kind=kind.value, message=message, status_code=status_code)
        metrics.upstream_call_total.labels(service=self.service, outcome=kind.value).inc()
        await self._notify(request.user_id, "analysis_error", {
            "analysis_id": analysis_id,
            "file_path": request.file_path,
            "error_kind": kind.value,
        })

        if kind in (ErrorKind.AUTH_FAILURE, ErrorKind.VALIDATION_FAILURE):
            log.warning(f"upstream rejected {fingerprint[:8]} ({kind.value}): {message}")
            await self._store_call("update_status", self.store.update_status(analysis_id, RecordStatus.ERROR, error))
            raise UpstreamRejectedError(kind, message, service=self.service) from exc

        log.error(f"upstream failed for {fingerprint[:8]} ({kind.value}): {message}")
        self.breaker.record_failure(self.service, kind)
        result = self._fallback_result(request, fingerprint, analysis_id, f"upstream {kind.value}", kind.value)

        await self._store_call("save", self.store.save(AnalysisRecord(
            analysis_id=analysis_id,
            user_id=request.user_id,
            file_path=request.file_path,
            fingerprint=fingerprint,
            status=RecordStatus.ERROR,
            result=result,
            error=error,
            created_at_millis=created_at,
            updated_at_millis=self._now_millis(),
        )))
        await self.cache.put(fingerprint, result, ttl=self.settings.fallback_cache_ttl, user_id=request.user_id)
        return result

    # -- result shaping --

    def _local_metrics(self, request: AnalysisRequest, quality_score: int, suggestion_count: int, positive: int) -> CodeMetrics:
        language = detect_language(request.file_path)
        return CodeMetrics(
            complexity=calculate_complexity(request.code_content, language),
            maintainability_index=calculate_maintainability(quality_score, suggestion_count, positive),
            lines_of_code=count_lines(request.code_content),
            language=language,
        )

    def _build_result(self, request: AnalysisRequest, fingerprint: str, analysis_id: str, raw: RawAnalysis) -> AnalysisResult:
        suggestions = format_suggestions(raw.improvements)
        patterns = [
            p if isinstance(p, PatternDescriptor) else PatternDescriptor(name=p, description=p)
            for p in raw.patterns
        ]
        positive = sum(1 for p in patterns if p.positive)
        return AnalysisResult(
            analysis_id=analysis_id,
            fingerprint=fingerprint,
            file_path=request.file_path,
            quality_score=raw.quality_score,
            suggestions=suggestions,
            patterns=patterns,
            security_issues=raw.vulnerabilities,
            metrics=self._local_metrics(request, raw.quality_score, len(suggestions), positive),
            analyzed_by_upstream=True,
            is_fallback=False,
            computed_at_millis=self._now_millis(),
        )

    def _fallback_result(
        self,
        request: AnalysisRequest,
        fingerprint: str,
        analysis_id: str,
        reason: str,
        reason_label: str,
    ) -> AnalysisResult:
        payload: FallbackPayload = self.synthesizer.synthesize(category_for_service(self.service), reason=reason)
        metrics.fallback_served_total.labels(service=self.service, reason=reason_label).inc()
        emit("fallback_served", service=self.service, reason=reason, fingerprint=fingerprint[:12])
        return AnalysisResult(
            analysis_id=analysis_id,
            fingerprint=fingerprint,
            file_path=request.file_path,
            quality_score=payload.quality_score,
            suggestions=payload.suggestions,
            patterns=payload.patterns,
            security_issues=payload.security_issues,
            metrics=self._local_metrics(request, payload.quality_score, len(payload.suggestions), 0),
            analyzed_by_upstream=False,
            is_fallback=True,
            fallback_reason=reason,
            computed_at_millis=self._now_millis(),
        )

    # -- batch --

    async def _analyze_captured(self, request: AnalysisRequest) -> AnalysisResult | BatchItemError:
        """One batch item. Whatever goes wrong stays in this item."""
        try:
            return await self.analyze(request)
        except UpstreamRejectedError as e:
            return BatchItemError(file_path=request.file_path, error=e.message, error_kind=e.kind.value)
        except InputError as e:
            return BatchItemError(file_path=request.file_path, error=str(e), error_kind="input")
        except Exception as e:
            log.exception(f"batch item {request.file_path} failed")
            return BatchItemError(file_path=request.file_path, error=str(e) or type(e).__name__)

    async def analyze_batch(self, requests: list[AnalysisRequest]) -> BatchResult:
        """
        Fan out, one task per file, results in input order. A failing item
        becomes a BatchItemError and never cancels its siblings.
        """
        if not requests:
            raise InputError("files list is required and must not be empty")

        batch_id = f"batch-{uuid.uuid4().hex[:12]}"
        users = {r.user_id for r in requests}
        for uid in users:
            await self._notify(uid, "batch_analysis_started", {"batch_id": batch_id, "total_files": len(requests)})

        results = await asyncio.gather(*(self._analyze_captured(r) for r in requests))
        summary = summarize_batch(list(results))
        log.info(
            f"batch {batch_id} done: {summary.successful_analyses}/{summary.total_files} ok, "
            f"avg score {summary.average_quality_score}"
        )

        for uid in users:
            await self._notify(uid, "batch_analysis_complete", {"batch_id": batch_id, **summary.model_dump()})
        return BatchResult(batch_id=batch_id, results=list(results), summary=summary)

    # -- breaker admin --

    def get_error_stats(self) -> dict[str, ServiceErrorStats]:
        return self.breaker.stats()

    def reset_circuit_breaker(self, service: str | None = None) -> None:
        self.breaker.reset(service)

    # -- suggestion lifecycle --

    async def update_suggestion_status(
        self,
        analysis_id: str,
        suggestion_id: str,
        status: str,
        user_id: str,
        feedback: SuggestionFeedback | None = None,
    ) -> Suggestion:
        """
        accepted / rejected / applied. The store is the source of truth here,
        so unlike analyze() a store failure surfaces as StorageError.
        Cached results for the user go stale, so they get dropped.
        """
        new_status = validate_suggestion_status(status)
        async with self._record_lock(analysis_id):
            record = await self._store_required("get", self.store.get(analysis_id, user_id))
            if record is None or record.result is None:
                raise AnalysisNotFoundError(f"analysis not found: {analysis_id}")

            current = next((s for s in record.result.suggestions if s.id == suggestion_id), None)
            if current is None:
                raise AnalysisNotFoundError(f"suggestion not found: {suggestion_id}")

            if feedback is not None and feedback.submitted_at_millis is None:
                feedback = feedback.model_copy(update={"submitted_at_millis": self._now_millis()})
            updated = current.model_copy(update={
                "status": new_status,
                "feedback": feedback if feedback is not None else current.feedback,
            })

            suggestions = [updated if s.id == suggestion_id else s for s in record.result.suggestions]
            record = record.model_copy(update={
                "result": record.result.model_copy(update={"suggestions": suggestions}),
                "updated_at_millis": self._now_millis(),
            })
            await self._store_required("save", self.store.save(record))

        await self.cache.invalidate_by_user(user_id)
        emit("suggestion_status_updated", analysis_id=analysis_id, suggestion_id=suggestion_id, status=new_status.value)
        log.info(f"suggestion {suggestion_id} on {analysis_id} -> {new_status.value}")
        return updated

    # -- reads over the store --

    async def get_filtered_suggestions(
        self,
        user_id: str,
        file_path: str,
        severity: list[Severity] | None = None,
        type: list[SuggestionType] | None = None,
        status: list[SuggestionStatus] | None = None,
        min_confidence: float | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> FilteredSuggestions:
        """Suggestions from the newest complete analysis of a file, filtered then paged."""
        records = await self._store_required("list", self.store.list_recent(user_id, file_path))
        if not records:
            return FilteredSuggestions(file_path=file_path, limit=limit, offset=offset)

        latest = records[0]
        matched = filter_suggestions(latest.result.suggestions, severity, type, status, min_confidence)
        return FilteredSuggestions(
            file_path=file_path,
            analysis_id=latest.analysis_id,
            quality_score=latest.result.quality_score,
            suggestions=matched[offset:offset + limit],
            total=len(matched),
            limit=limit,
            offset=offset,
            has_more=offset + limit < len(matched),
        )

    async def get_history(
        self,
        user_id: str,
        file_path: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> AnalysisHistory:
        records = await self._store_required("list", self.store.list_recent(user_id, file_path))
        page = [
            HistoryEntry(
                analysis_id=r.analysis_id,
                file_path=r.file_path,
                quality_score=r.result.quality_score,
                suggestion_count=len(r.result.suggestions),
                is_fallback=r.result.is_fallback,
                created_at_millis=r.created_at_millis,
            )
            for r in records[offset:offset + limit]
        ]
        return AnalysisHistory(
            history=page,
            total=len(records),
            limit=limit,
            offset=offset,
            has_more=offset + limit < len(records),
        )


def summarize_batch(results: list[AnalysisResult | BatchItemError]) -> BatchSummary:
    """Average and suggestion total count successful items only. Average rounds half up."""
    ok = [r for r in results if isinstance(r, AnalysisResult)]
    average = int(sum(r.quality_score for r in ok) / len(ok) + 0.5) if ok else 0
    return BatchSummary(
        total_files=len(results),
        successful_analyses=len(ok),
        failed_analyses=len(results) - len(ok),
        average_quality_score=average,
        total_suggestions=sum(len(r.suggestions) for r in ok),
    )


def build_orchestrator(settings: Settings) -> AnalysisOrchestrator:
    """Wire everything from settings. The API does this once per process."""
    if settings.cache_backend == "memory":
        cache: ResultCache = MemoryResultCache(default_ttl=settings.cache_ttl, timeout=settings.storage_timeout)
    else:
        cache = RedisResultCache(default_ttl=settings.cache_ttl, timeout=settings.storage_timeout)

    overrides = {
        service: BreakerPolicy(
            max_errors=int(cfg.get("max_errors", settings.breaker_max_errors)),
            reset_window=float(cfg.get("reset_window", settings.breaker_reset_window)),
        )
        for service, cfg in settings.breaker_overrides.items()
    }
    breaker = CircuitBreaker(
        default_policy=BreakerPolicy(max_errors=settings.breaker_max_errors, reset_window=settings.breaker_reset_window),
        overrides=overrides,
    )

    return AnalysisOrchestrator(
        settings=settings,
        analyzer=build_analyzer(),
        cache=cache,
        store=build_store(),
        breaker=breaker,
        notifier=build_notifier(settings.notifier_backend, settings.notify_timeout),
    )
