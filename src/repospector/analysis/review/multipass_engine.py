"""Multi-pass pull request review.

Pipeline of one ``execute()`` call:

    preparing    compact PR summary, static findings and RAG chunks per file
    grouping     files -> review units (FileGroupingStrategy)
    reviewing    one LLM call per unit, bounded concurrency, timeout + retry
    aggregating  one LLM call that synthesizes the final Markdown review
    complete

Per-unit failures are recorded in ``failed_files`` and never abort the
review. Only the aggregation call is fatal. An optional keepalive callable
is pinged periodically for the whole call so hosts with idle-timeout
termination keep the process alive; it is always stopped on exit.
"""

from __future__ import annotations

import asyncio
import inspect
import re
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

import orjson
from loguru import logger

from ...config.settings import MultiPassSettings
from ...core.batch_processor import BatchProcessor, BatchProgress
from ...core.exceptions import AggregationError
from ...core.llm_client import ChatClient
from .grouping import FileGroupingStrategy, RiskBasedGroupingStrategy
from .language_profiles import get_language_rules
from .models import (
    FallbackReview,
    LLMSettings,
    MultiPassResult,
    ParsedReview,
    PerFileReview,
    PRFile,
    PullRequestData,
    ReviewContext,
    ReviewOptions,
    ReviewPhase,
    ReviewProgress,
    ReviewUnit,
)
from .prompts import (
    AGGREGATION_SYSTEM_PROMPT,
    PER_FILE_REVIEW_SYSTEM_PROMPT,
    PRContextSummary,
    build_aggregation_prompt,
    build_per_file_review_prompt,
    build_pr_context_summary,
)

RAG_CHUNKS_PER_FILE = 3
RAG_CHUNKS_PER_UNIT = 3

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

ProgressCallback = Callable[[ReviewProgress], None]
KeepaliveCallback = Callable[[], Awaitable[Any] | Any]


class MultiPassReviewEngine:
    """Reviews a PR file group by file group, then synthesizes one review.

    Example:
        >>> engine = MultiPassReviewEngine(LLMClient())
        >>> result = await engine.execute(
        ...     PullRequestData.from_dict(pr_json),
        ...     ReviewContext(static_findings=findings),
        ...     LLMSettings(provider="openai", model="gpt-4o-mini"),
        ...     on_progress=print,
        ... )
        >>> print(result.analysis)
        >>> result.failed_files
        []
    """

    def __init__(
        self,
        llm_client: ChatClient,
        grouping_strategy: FileGroupingStrategy | None = None,
        settings: MultiPassSettings | None = None,
        keepalive: KeepaliveCallback | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            llm_client: Chat collaborator exposing ``stream_chat``
            grouping_strategy: Strategy used in the grouping phase
            settings: Concurrency, timeout, retry and keepalive settings
            keepalive: Called every ``keepalive_interval_seconds`` during
                ``execute()``; may be sync or async, failures are ignored
        """
        self.llm_client = llm_client
        self.grouping_strategy = grouping_strategy or RiskBasedGroupingStrategy()
        self.settings = settings or MultiPassSettings()
        self.keepalive = keepalive

    async def execute(
        self,
        pr: PullRequestData | Mapping[str, Any],
        context: ReviewContext | None = None,
        llm_settings: LLMSettings | None = None,
        options: ReviewOptions | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> MultiPassResult:
        """Run the full multi-pass review.

        Args:
            pr: Pull request, or its collaborator JSON
            context: RAG chunks and static findings
            llm_settings: Provider/model/key forwarded to every LLM call
            options: Per-call overrides of focus areas and limits
            on_progress: Receives a ReviewProgress at every phase transition
                and after each finished unit

        Returns:
            MultiPassResult; units that failed are listed in ``failed_files``

        Raises:
            AggregationError: If the final synthesis call fails
        """
        started = time.perf_counter()
        if not isinstance(pr, PullRequestData):
            pr = PullRequestData.from_dict(dict(pr))
        context = context or ReviewContext()
        llm_settings = llm_settings or LLMSettings()
        options = options or ReviewOptions()

        focus_areas = (
            options.focus_areas
            if options.focus_areas is not None
            else self.settings.focus_areas
        )
        max_concurrent = options.max_concurrent or self.settings.max_concurrent
        max_files = options.max_files_to_review or self.settings.max_files_to_review

        def emit(phase: ReviewPhase, message: str, **extra: Any) -> None:
            if on_progress is not None:
                on_progress(ReviewProgress(phase=phase, message=message, **extra))

        keepalive_task = self._start_keepalive()
        try:
            # Phase 1: prepare
            emit(ReviewPhase.PREPARING, "Preparing review data...")
            pr_context = build_pr_context_summary(pr)
            findings_by_file = self._group_findings_by_file(context.static_findings)
            rag_by_file = self._distribute_rag_context(context.rag_context, pr.files)

            # Phase 2: group
            emit(ReviewPhase.GROUPING, "Grouping files for review...")
            files_to_review = pr.files[:max_files]
            units = self.grouping_strategy.group(files_to_review, findings_by_file)
            total = len(units)
            logger.info(
                f"Multi-pass review: {total} review units from {len(files_to_review)} files"
            )

            # Phase 3: per-unit review
            emit(
                ReviewPhase.REVIEWING,
                f"Reviewing {total} file groups...",
                total_units=total,
                completed_units=0,
                percentage=0,
            )

            async def review_unit(unit: ReviewUnit) -> PerFileReview:
                return await self._review_unit(
                    unit,
                    pr_context,
                    focus_areas,
                    self._rag_chunks_for_unit(rag_by_file, unit),
                    self._static_findings_for_unit(findings_by_file, unit),
                    llm_settings,
                )

            def unit_progress(progress: BatchProgress) -> None:
                emit(
                    ReviewPhase.REVIEWING,
                    f"Reviewed {progress.completed}/{total} file groups...",
                    total_units=total,
                    completed_units=progress.completed,
                    percentage=progress.percentage,
                )

            processor = BatchProcessor(
                max_concurrent=max_concurrent,
                timeout=self.settings.unit_timeout_seconds,
                retry_attempts=self.settings.retry_attempts,
                retry_delay=self.settings.retry_delay_seconds,
            )
            batch = await processor.process(units, review_unit, unit_progress)

            per_file_findings = [item.data for item in batch.successful]
            failed_files = [
                units[item.index].primary_file
                if 0 <= item.index < total
                else f"unit-{item.index}"
                for item in batch.failed
            ]
            logger.info(
                f"Multi-pass review: {len(per_file_findings)} successful, "
                f"{len(failed_files)} failed"
            )

            # Phase 4: aggregate
            emit(ReviewPhase.AGGREGATING, "Synthesizing cross-file analysis...")
            analysis = await self._aggregate(
                per_file_findings, pr, failed_files, llm_settings
            )

            emit(ReviewPhase.COMPLETE, "Review complete.")
            return MultiPassResult(
                analysis=analysis,
                per_file_findings=per_file_findings,
                failed_files=failed_files,
                review_units=total,
                processing_time=(time.perf_counter() - started) * 1000,
            )
        finally:
            await self._stop_keepalive(keepalive_task)

    # ── LLM passes ──────────────────────────────────────────────────────

    async def _review_unit(
        self,
        unit: ReviewUnit,
        pr_context: PRContextSummary,
        focus_areas: Sequence[str],
        rag_chunks: list[dict[str, Any]],
        static_findings: list[dict[str, Any]],
        llm_settings: LLMSettings,
    ) -> PerFileReview:
        prompt = build_per_file_review_prompt(
            unit,
            pr_context,
            focus_areas=focus_areas,
            rag_chunks=rag_chunks,
            static_findings=static_findings,
            language_rules=get_language_rules(unit.language),
        )
        response = await self._chat(PER_FILE_REVIEW_SYSTEM_PROMPT, prompt, llm_settings)
        return self._parse_per_file_response(_response_text(response), unit)

    async def _aggregate(
        self,
        results: list[PerFileReview],
        pr: PullRequestData,
        failed_files: list[str],
        llm_settings: LLMSettings,
    ) -> str:
        prompt = build_aggregation_prompt(
            results,
            pr,
            failed_files=failed_files,
            commit_messages="\n".join(c.summary_line for c in pr.commits),
        )
        try:
            response = await self._chat(AGGREGATION_SYSTEM_PROMPT, prompt, llm_settings)
        except Exception as e:
            logger.error(f"Aggregation pass failed: {e}")
            raise AggregationError(
                f"Aggregation pass failed: {e}",
                {"reviewed_units": len(results), "failed_files": failed_files},
            ) from e
        return _response_text(response) or ""

    async def _chat(self, system_prompt: str, prompt: str, llm_settings: LLMSettings) -> Any:
        return await self.llm_client.stream_chat(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            provider=llm_settings.provider,
            model=llm_settings.model,
            api_key=llm_settings.api_key,
            stream=False,
        )

    # ── Response parsing ────────────────────────────────────────────────

    def _parse_per_file_response(self, response_text: Any, unit: ReviewUnit) -> PerFileReview:
        """Parse one per-file answer into a ParsedReview or a FallbackReview.

        Accepts bare JSON, JSON wrapped in a Markdown fence, or prose that
        contains a JSON object. An object without a ``findings`` list is
        not a review; such answers keep the full text as ``raw_analysis``.
        """
        if not response_text or not isinstance(response_text, str):
            return FallbackReview(
                file=unit.primary_file, language=unit.language, parse_error="Empty response"
            )

        cleaned = response_text.strip()
        if cleaned.startswith("```json"):
            cleaned = cleaned[7:]
        elif cleaned.startswith("```"):
            cleaned = cleaned[3:]
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3]
        cleaned = cleaned.strip()

        data = _loads(cleaned)
        if data is None:
            match = _JSON_OBJECT.search(cleaned)
            if match:
                data = _loads(match.group(0))

        if isinstance(data, dict) and isinstance(data.get("findings"), list):
            return ParsedReview.from_dict(data, unit)

        logger.debug(f"Unstructured review for {unit.primary_file}, keeping raw text")
        return FallbackReview(
            file=unit.primary_file, language=unit.language, raw_analysis=response_text
        )

    # ── Context distribution ────────────────────────────────────────────

    @staticmethod
    def _group_findings_by_file(
        findings: Sequence[Mapping[str, Any]] | None,
    ) -> dict[str, list[dict[str, Any]]]:
        grouped: dict[str, list[dict[str, Any]]] = {}
        for finding in findings or []:
            key = (
                finding.get("filePath")
                or finding.get("file_path")
                or finding.get("file")
                or "unknown"
            )
            grouped.setdefault(key, []).append(dict(finding))
        return grouped

    @classmethod
    def _distribute_rag_context(
        cls,
        rag_context: Sequence[Mapping[str, Any]] | Mapping[str, Any] | None,
        files: Sequence[PRFile],
    ) -> dict[str, list[dict[str, Any]]]:
        """Assign retrieved chunks to changed files, at most 3 per file.

        A chunk belongs to a file when either path contains the other or
        both live in the same non-root directory.
        """
        if not rag_context:
            return {}
        if isinstance(rag_context, Mapping):
            chunks = rag_context.get("chunks")
            if not isinstance(chunks, list):
                return {}
        else:
            chunks = list(rag_context)

        by_file: dict[str, list[dict[str, Any]]] = {}
        for chunk in chunks:
            if not isinstance(chunk, Mapping):
                continue
            chunk_file = (
                chunk.get("file_path") or chunk.get("filePath") or chunk.get("file") or ""
            )
            if not chunk_file:
                continue
            for file in files:
                name = file.filename
                if not name:
                    continue
                if chunk_file in name or name in chunk_file or cls._same_directory(
                    chunk_file, name
                ):
                    assigned = by_file.setdefault(name, [])
                    if len(assigned) < RAG_CHUNKS_PER_FILE:
                        assigned.append(dict(chunk))
        return by_file

    @staticmethod
    def _same_directory(path1: str, path2: str) -> bool:
        dir1 = path1.rsplit("/", 1)[0] if "/" in path1 else ""
        dir2 = path2.rsplit("/", 1)[0] if "/" in path2 else ""
        return bool(dir1) and dir1 == dir2

    @staticmethod
    def _rag_chunks_for_unit(
        rag_by_file: Mapping[str, list[dict[str, Any]]], unit: ReviewUnit
    ) -> list[dict[str, Any]]:
        chunks: list[dict[str, Any]] = []
        for file in unit.files:
            chunks.extend(rag_by_file.get(file.filename, []))
        return chunks[:RAG_CHUNKS_PER_UNIT]

    @staticmethod
    def _static_findings_for_unit(
        findings_by_file: Mapping[str, list[dict[str, Any]]], unit: ReviewUnit
    ) -> list[dict[str, Any]]:
        findings: list[dict[str, Any]] = []
        for file in unit.files:
            findings.extend(findings_by_file.get(file.filename, []))
        return findings

    # ── Keepalive ───────────────────────────────────────────────────────

    def _start_keepalive(self) -> asyncio.Task[None] | None:
        if self.keepalive is None or self.settings.keepalive_interval_seconds <= 0:
            return None
        return asyncio.create_task(self._keepalive_loop())

    async def _keepalive_loop(self) -> None:
        interval = self.settings.keepalive_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                outcome = self.keepalive()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.debug(f"Keepalive ping failed: {e}")

    @staticmethod
    async def _stop_keepalive(task: asyncio.Task[None] | None) -> None:
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


def _response_text(response: Any) -> str | None:
    """Extract the text of a chat response (``{"content": ...}`` or a bare string)."""
    if isinstance(response, str):
        return response
    if isinstance(response, Mapping):
        content = response.get("content")
        return content if isinstance(content, str) else None
    return None


def _loads(text: str) -> Any:
    try:
        return orjson.loads(text)
    except orjson.JSONDecodeError:
        return None
