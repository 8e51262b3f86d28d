from __future__ import annotations

import json
import time
import uuid
from datetime import datetime, timezone

from loguru import logger

from cryptoresearch.models.pipeline import PipelineInput, ResearchMode, Stage, StageResult
from cryptoresearch.models.schemas import ReportMetadata, ResearchReport, ResearchRequest, SourceOut
from cryptoresearch.models.search import SearchOptions, SearchSource
from cryptoresearch.services.container import ServiceContainer
from cryptoresearch.services.logger import log_research_step
from cryptoresearch.services.pipeline import with_final_report_retries
from cryptoresearch.services.prompt_store import render_prompt, report_template_key
from cryptoresearch.services.quality import (
    REPORT_STRUCTURE,
    compute_speculative_density,
    score_section_coverage,
    validate_strict_mode,
    word_count,
)
from cryptoresearch.services.query_builder import build_queries, rank_sources
from cryptoresearch.tools.web_utils import clean_url, sanitize_input


def format_web_context(sources: list[SearchSource]) -> str:
    return "\n\n---\n\n".join(
        f"Title: {s.title}\nURL: {s.url}\nContent: {s.content}" for s in sources
    )


def build_report_prompt(
    request: ResearchRequest,
    web_context: str,
    sources: list[SearchSource],
    no_sources: bool,
    min_words: int,
) -> str:
    """Assemble the report prompt: identity header, context, attribution, reflection, template."""
    parts = [
        render_prompt(
            "report.header",
            project_name=sanitize_input(request.project_name) or "Not provided",
            project_website=sanitize_input(clean_url(request.project_website)) or "Not provided",
            project_twitter=sanitize_input(clean_url(request.project_twitter)) or "Not provided",
            project_contract=sanitize_input(request.project_contract) or "Not provided",
        )
    ]
    if web_context:
        parts.append(render_prompt("report.web_context", web_context=web_context))
    if sources:
        parts.append(
            render_prompt(
                "report.attribution",
                sources_list="\n".join(f"- [{s.title}]({s.url})" for s in sources),
            )
        )
    if no_sources:
        parts.append(render_prompt("report.no_sources_reflection"))
    parts.append(
        render_prompt(
            report_template_key(request.mode, request.strict_mode),
            min_words=min_words,
            structure="\n".join(f"{i}. {name}" for i, name in enumerate(REPORT_STRUCTURE, 1)),
            json_keys=", ".join(f'"{name}"' for name in REPORT_STRUCTURE),
        )
    )
    return "\n\n".join(parts)


class ResearchOrchestrator:
    """Runs one research request end to end.

    Flow:
      1. Expand the project identity into search queries
      2. Resolve them through the staged search (failed queries degrade to errors)
      3. Rank and cap sources, build the report prompt
      4. Run the staged LLM pipeline
      5. Score the final report and re-run the final-report stage while it falls short
      6. Attach quality metadata, warnings and a confidence score
    """

    def __init__(self, services: ServiceContainer):
        self.services = services

    async def generate_report(self, request: ResearchRequest) -> ResearchReport:
        started = time.monotonic()
        request_id = uuid.uuid4().hex[:12]
        mode = ResearchMode(request.mode)
        evaluator = self.services.evaluator

        queries = build_queries(
            request.project_name,
            website=request.project_website,
            twitter=request.project_twitter,
            contract=request.project_contract,
            limit=self.services.max_generated_queries,
        )
        log_research_step(request_id, "search", "started", {"queries": len(queries)})

        searched = await self.services.search.search_enhanced(
            queries, SearchOptions(user_id="research")
        )
        sources = rank_sources(searched.results, request.project_name, self.services.max_sources)
        no_sources = not sources
        log_research_step(
            request_id,
            "search",
            "completed",
            {
                "sources": len(sources),
                "errors": len(searched.errors),
                "cache_hit_rate": searched.cache_hit_rate,
            },
        )
        if no_sources:
            logger.bind(request_id=request_id).warning(f"No usable sources for '{request.project_name}'")

        web_context = format_web_context(sources)
        min_words = evaluator.min_words(mode)
        base_prompt = build_report_prompt(request, web_context, sources, no_sources, min_words)

        pipeline_result = await self.services.pipeline.execute(
            PipelineInput(
                sources_json=json.dumps([s.to_dict() for s in sources]),
                report_prompt=base_prompt,
            ),
            mode,
        )
        log_research_step(
            request_id, "pipeline", "completed", pipeline_result.metadata.to_dict()
        )

        prior_output = (
            pipeline_result.output_of(Stage.SPECULATION)
            or pipeline_result.output_of(Stage.SYNTHESIS)
            or ""
        )

        retried: list[StageResult] = []

        async def regenerate(prompt: str) -> str:
            result = await self.services.pipeline.run_final_report(prior_output, prompt, mode)
            retried.append(result)
            return result.output

        outcome = await evaluator.generate_with_retry(
            base_prompt,
            mode,
            web_context,
            regenerate,
            first_attempt=pipeline_result.final_report,
        )
        pipeline_result = with_final_report_retries(pipeline_result, retried)
        report = outcome.report
        sections = outcome.sections
        evaluation = outcome.evaluation

        warnings: list[str] = []
        if request.strict_mode or not evaluation.acceptable:
            warnings = validate_strict_mode(report, sections, min_words)
        if outcome.warning:
            warnings.append(outcome.warning)

        confidence = min(95, max(50, len(sources) * 3 + evaluation.score))
        duration_ms = int((time.monotonic() - started) * 1000)
        log_research_step(
            request_id,
            "report",
            "completed",
            {"score": evaluation.score, "retries": outcome.retries_used, "duration_ms": duration_ms},
        )

        pipeline_meta = pipeline_result.metadata.to_dict()
        pipeline_meta["stages"] = [r.to_dict() for r in pipeline_result.results]
        pipeline_meta["search"] = {
            "request_id": searched.request_id,
            "total_queries": searched.total_queries,
            "successful_queries": searched.successful_queries,
            "cache_hit_rate": searched.cache_hit_rate,
            "errors": searched.errors,
            "stage_errors": searched.stage_errors,
        }

        return ResearchReport(
            report=report,
            sources=[SourceOut(**s.to_dict()) for s in sources],
            request_id=request_id,
            confidence_score=confidence,
            mode=mode,
            metadata=ReportMetadata(
                created_at=datetime.now(timezone.utc),
                request_id=request_id,
                word_count=word_count(report),
                query_terms=queries,
                retries=outcome.retries_used,
                duration_ms=duration_ms,
                confidence_reason=(
                    f"Quality score: {evaluation.score}/100, {len(sources)} sources, "
                    f"{outcome.retries_used} retries"
                ),
                strict_mode_warnings=warnings,
                speculative_density=compute_speculative_density(sections),
                section_coverage_score=score_section_coverage(sections),
                quality_score=evaluation.score,
                no_sources=no_sources,
                pipeline=pipeline_meta,
            ),
            json_sections=sections,
        )
