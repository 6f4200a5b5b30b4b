"""LLM-written explanations for mentee/mentor pairs.

Explanations are scoped to a cohort and cached per (cohort, mentee, mentor).
The orchestrator guarantees at most one provider call per pair, even when a
single request and a bulk run ask for the same pair at the same time.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from openai import AsyncOpenAI, OpenAIError

from .config import DEFAULT_EXPLANATION_MODEL, EngineSettings
from .data_models import Mentee, Mentor
from .errors import ExplanationsDisabledError, ProviderError
from .matching_models import ExplanationCacheEntry, MatchScore, pair_key

logger = logging.getLogger(__name__)

ExplanationRequest = Tuple[Mentee, Mentor, MatchScore]
ProgressCallback = Callable[[int, int], Any]
ResultCallback = Callable[[str, str], Any]


class ExplanationProvider(Protocol):
    model: str

    async def explain(self, mentee: Mentee, mentor: Mentor, score: MatchScore) -> str: ...


class ExplanationCache(Protocol):
    def get(self, cohort_id: str, mentee_id: str, mentor_id: str) -> Optional[ExplanationCacheEntry]: ...

    def set(self, entry: ExplanationCacheEntry) -> None: ...


class InMemoryExplanationCache:
    """Append-only explanation store. A second `set` for the same pair is ignored."""

    def __init__(self) -> None:
        self._entries: Dict[Tuple[str, str], ExplanationCacheEntry] = {}

    def get(self, cohort_id: str, mentee_id: str, mentor_id: str) -> Optional[ExplanationCacheEntry]:
        return self._entries.get((cohort_id, pair_key(mentee_id, mentor_id)))

    def set(self, entry: ExplanationCacheEntry) -> None:
        self._entries.setdefault((entry.cohort_id, entry.key), entry)

    def entries(self) -> List[ExplanationCacheEntry]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


class JsonFileExplanationCache(InMemoryExplanationCache):
    """In-memory cache persisted to a JSON list on every write.

    Writes may come from worker threads, so each flush runs under a lock.
    """

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        self._write_lock = threading.Lock()
        if self.path.exists():
            raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
            for item in raw:
                super().set(ExplanationCacheEntry.model_validate(item))
            logger.debug("Loaded %d cached explanations from %s", len(self), self.path)

    def set(self, entry: ExplanationCacheEntry) -> None:
        with self._write_lock:
            before = len(self)
            super().set(entry)
            if len(self) == before:
                return
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            payload = [e.model_dump(mode="json") for e in self.entries()]
            tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp.replace(self.path)


SYSTEM_PROMPT = (
    "You are a mentoring program coordinator. "
    "Given a mentee, a mentor, and the signals a matching engine computed for the pair, "
    "write 2-3 sentences explaining why this pairing could work and what to watch out for. "
    "Ground every claim in the provided profile evidence: topics, goals, seniority, timezone, cadence, style. "
    "Do NOT quote numeric scores and do NOT mention participant ids. "
    "Do not invent facts that are not in the profiles. "
    "Respond with plain prose only, no lists or headings."
)


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v not in (None, "", [], {})}


def build_explanation_payload(mentee: Mentee, mentor: Mentor, score: MatchScore) -> Dict[str, Any]:
    """PII-light view of a pair for the prompt: no ids, names only."""
    return {
        "mentee": _compact({
            "name": mentee.display_name,
            "role": mentee.role,
            "experience": mentee.experience_years or mentee.seniority_band,
            "timezone": mentee.location_timezone,
            "topics_to_learn": mentee.topics_to_learn,
            "goals": mentee.goals_text,
            "main_reason": mentee.main_reason,
            "desired_qualities": mentee.desired_qualities,
            "preferred_mentor_style": mentee.preferred_mentor_style,
            "feedback_preference": mentee.feedback_preference,
            "meeting_frequency": mentee.meeting_frequency,
        }),
        "mentor": _compact({
            "name": mentor.display_name,
            "role": mentor.role,
            "experience": mentor.experience_years or mentor.seniority_band,
            "timezone": mentor.location_timezone,
            "topics_to_mentor": mentor.topics_to_mentor,
            "bio": mentor.bio_text,
            "mentoring_style": mentor.mentoring_style,
            "feedback_style": mentor.feedback_style,
            "meeting_frequency": mentor.meeting_frequency,
        }),
        "match": _compact({
            "sub_scores": score.sub_scores,
            "reasons": score.reasons,
            "risks": score.risks,
            "shared_topics": score.shared_topics,
        }),
    }


class OpenAIExplanationProvider:
    """Writes pair explanations with the OpenAI Responses API."""

    def __init__(
        self,
        model: str = DEFAULT_EXPLANATION_MODEL,
        client: Optional[AsyncOpenAI] = None,
        api_key: Optional[str] = None,
    ):
        self.model = model
        self._client = client
        self._api_key = api_key

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            try:
                self._client = AsyncOpenAI(api_key=self._api_key) if self._api_key else AsyncOpenAI()
            except OpenAIError as e:
                raise ProviderError(f"OpenAI client init failed: {e}") from e
        return self._client

    async def explain(self, mentee: Mentee, mentor: Mentor, score: MatchScore) -> str:
        client = self._get_client()
        messages: Any = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": json.dumps(build_explanation_payload(mentee, mentor, score), ensure_ascii=False)},
        ]
        try:
            resp = await client.responses.create(model=self.model, input=messages)
        except OpenAIError as e:
            raise ProviderError(f"OpenAI explanation request failed: {e}") from e
        text = (getattr(resp, "output_text", None) or "").strip()
        if not text:
            raise ProviderError("OpenAI returned an empty explanation")
        return text


class CancellationToken:
    """Cancellation flag that may be set from any thread."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class BulkProgress:
    total: int = 0
    completed: int = 0
    succeeded: int = 0
    failed: int = 0


class BulkExplanationJob:
    """Handle on a running bulk generation: its task, cancellation token and live progress."""

    def __init__(self, task: "asyncio.Task[Dict[str, str]]", token: CancellationToken, progress: BulkProgress):
        self.task = task
        self.token = token
        self.progress = progress

    def cancel(self) -> None:
        """Stop starting new requests. In-flight requests still finish and get cached."""
        self.token.cancel()

    def done(self) -> bool:
        return self.task.done()

    async def wait(self) -> Dict[str, str]:
        return await self.task


def _notify(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        logger.exception("Explanation callback %r failed; continuing", callback)


class ExplanationOrchestrator:
    """
    Single and bulk explanation generation on top of a provider and a cache.

    Every generation for a pair holds that pair's lock across
    check-cache -> call provider -> write cache, so concurrent callers for the
    same pair share one provider call. Locks belong to the event loop that
    created them and are dropped once no caller holds or awaits them, so one
    orchestrator can serve several `asyncio.run` calls. Cache writes run in a
    worker thread. Failures are raised (single) or counted (bulk) and never
    cached.
    """

    def __init__(
        self,
        provider: ExplanationProvider,
        cache: Optional[ExplanationCache] = None,
        timeout: float = 30.0,
        max_concurrency: int = 3,
    ):
        self.provider = provider
        self.cache = cache if cache is not None else InMemoryExplanationCache()
        self.timeout = timeout
        self.max_concurrency = max(1, int(max_concurrency))
        # (loop, cohort_id, pair_key) -> [lock, number of holders and waiters]
        self._locks: Dict[Tuple[asyncio.AbstractEventLoop, str, str], List[Any]] = {}

    @contextlib.asynccontextmanager
    async def _pair_lock(self, cohort_id: str, key: str) -> AsyncIterator[None]:
        lock_key = (asyncio.get_running_loop(), cohort_id, key)
        slot = self._locks.get(lock_key)
        if slot is None:
            slot = [asyncio.Lock(), 0]
            self._locks[lock_key] = slot
        slot[1] += 1
        try:
            async with slot[0]:
                yield
        finally:
            slot[1] -= 1
            if slot[1] == 0:
                del self._locks[lock_key]

    async def get_or_generate_explanation(
        self, cohort_id: Optional[str], mentee: Mentee, mentor: Mentor, score: MatchScore
    ) -> str:
        """Cached explanation for the pair, generating and caching it on a miss.

        Raises:
            ExplanationsDisabledError: No cohort id to scope the cache.
            ProviderError: The provider failed, timed out or returned nothing.
        """
        if not cohort_id:
            raise ExplanationsDisabledError("Explanations require a cohort id")

        key = pair_key(mentee.id, mentor.id)
        async with self._pair_lock(cohort_id, key):
            cached = self.cache.get(cohort_id, mentee.id, mentor.id)
            if cached is not None:
                return cached.explanation

            try:
                text = await asyncio.wait_for(self.provider.explain(mentee, mentor, score), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                raise ProviderError(f"Explanation for {key} timed out after {self.timeout:g}s") from e
            except ProviderError:
                raise
            except Exception as e:
                raise ProviderError(f"Explanation for {key} failed: {e}") from e

            text = (text or "").strip()
            if not text:
                raise ProviderError(f"Empty explanation for {key}")

            entry = ExplanationCacheEntry(
                cohort_id=cohort_id,
                mentee_id=mentee.id,
                mentor_id=mentor.id,
                explanation=text,
                model=self.provider.model,
                total_score=score.total_score,
            )
            await asyncio.to_thread(self.cache.set, entry)
            return text

    async def generate_all_explanations(
        self,
        cohort_id: Optional[str],
        pairs: Iterable[ExplanationRequest],
        on_progress: Optional[ProgressCallback] = None,
        on_result: Optional[ResultCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
        progress: Optional[BulkProgress] = None,
    ) -> Dict[str, str]:
        """Explain many pairs with at most `max_concurrency` requests in flight.

        Args:
            cohort_id: Cache scope; required.
            pairs: (mentee, mentor, score) triples.
            on_progress: Called with (completed, total) after every pair, success or not.
            on_result: Called with (pair_key, explanation) after every success.
            cancel_token: When cancelled, workers stop taking new pairs.
            progress: Counters updated in place, for callers polling a running job.

        Returns:
            Mapping pair_key -> explanation for the pairs that succeeded.
        """
        if not cohort_id:
            raise ExplanationsDisabledError("Explanations require a cohort id")

        items = list(pairs)
        token = cancel_token or CancellationToken()
        progress = progress if progress is not None else BulkProgress()
        progress.total = len(items)

        queue: "asyncio.Queue[ExplanationRequest]" = asyncio.Queue()
        for item in items:
            queue.put_nowait(item)
        results: Dict[str, str] = {}

        async def worker() -> None:
            while not token.cancelled:
                try:
                    mentee, mentor, score = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                key = pair_key(mentee.id, mentor.id)
                try:
                    text = await self.get_or_generate_explanation(cohort_id, mentee, mentor, score)
                except ProviderError as e:
                    progress.failed += 1
                    logger.warning("Explanation for %s failed: %s", key, e)
                except Exception:
                    progress.failed += 1
                    logger.exception("Explanation for %s failed unexpectedly", key)
                else:
                    results[key] = text
                    progress.succeeded += 1
                    _notify(on_result, key, text)
                progress.completed += 1
                _notify(on_progress, progress.completed, progress.total)

        workers = [asyncio.create_task(worker()) for _ in range(min(self.max_concurrency, len(items)))]
        await asyncio.gather(*workers)

        if token.cancelled:
            logger.info("Bulk explanations cancelled after %d of %d pairs", progress.completed, progress.total)
        else:
            logger.info("Bulk explanations done: %d ok, %d failed", progress.succeeded, progress.failed)
        return results

    def start_bulk_generation(
        self,
        cohort_id: Optional[str],
        pairs: Iterable[ExplanationRequest],
        on_progress: Optional[ProgressCallback] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> BulkExplanationJob:
        """Schedule `generate_all_explanations` on the running loop and return its handle."""
        if not cohort_id:
            raise ExplanationsDisabledError("Explanations require a cohort id")
        items = list(pairs)
        token = CancellationToken()
        progress = BulkProgress(total=len(items))
        task = asyncio.create_task(
            self.generate_all_explanations(
                cohort_id, items, on_progress=on_progress, on_result=on_result, cancel_token=token, progress=progress
            )
        )
        return BulkExplanationJob(task, token, progress)


def build_explanation_orchestrator(
    settings: Optional[EngineSettings] = None,
    cache: Optional[ExplanationCache] = None,
    max_concurrency: Optional[int] = None,
) -> ExplanationOrchestrator:
    settings = settings or EngineSettings.from_env()
    provider = OpenAIExplanationProvider(model=settings.explanation_model, api_key=settings.openai_api_key)
    return ExplanationOrchestrator(
        provider,
        cache=cache,
        timeout=settings.explanation_timeout,
        max_concurrency=max_concurrency or settings.explanation_concurrency,
    )
