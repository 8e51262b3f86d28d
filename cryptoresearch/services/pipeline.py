"""Staged LLM pipeline: fixed stage order, per-stage model, token budget and quality gate."""
from __future__ import annotations

import time
from typing import Callable

from loguru import logger

from cryptoresearch.errors import StageFailed
from cryptoresearch.llm_client import LLMClient
from cryptoresearch.models.pipeline import (
    STAGE_ORDER,
    PipelineInput,
    PipelineMetadata,
    PipelineResult,
    QualityGate,
    ResearchMode,
    Stage,
    StageResult,
    StageSpec,
)
from cryptoresearch.services.prompt_store import stage_prompts
from cryptoresearch.services.retry import with_timeout

DEFAULT_LIGHT_MODEL = "openai/gpt-4o"
DEFAULT_REASONING_MODEL = "openai/o3-deep-research"

REASONING_STAGES = frozenset({Stage.SYNTHESIS, Stage.SPECULATION, Stage.FINAL_REPORT})

TOKEN_LIMITS: dict[Stage, int] = {
    Stage.SOURCE_GATHERING: 3000,
    Stage.CONTENT_EXTRACTION: 5000,
    Stage.SYNTHESIS: 10000,
    Stage.SPECULATION: 6000,
    Stage.FINAL_REPORT: 16000,
    Stage.VALIDATION: 2000,
}

# stage -> (default model, deep-dive model)
MODEL_REGISTRY: dict[Stage, tuple[str, str]] = {
    stage: (
        DEFAULT_LIGHT_MODEL,
        DEFAULT_REASONING_MODEL if stage in REASONING_STAGES else DEFAULT_LIGHT_MODEL,
    )
    for stage in STAGE_ORDER
}


def _gate(check: Callable[[str], bool], stage: Stage) -> Callable[[str], QualityGate]:
    def evaluate(output: str) -> QualityGate:
        passed = check((output or "").lower())
        return QualityGate(
            passed=passed,
            reason="Quality gate passed" if passed else f"Stage {stage.value} output failed validation",
        )

    return evaluate


QUALITY_GATES: dict[Stage, Callable[[str], QualityGate]] = {
    Stage.SOURCE_GATHERING: _gate(lambda o: len(o) > 500 and "source" in o, Stage.SOURCE_GATHERING),
    Stage.CONTENT_EXTRACTION: _gate(
        lambda o: len(o) > 300 and ("token" in o or "team" in o), Stage.CONTENT_EXTRACTION
    ),
    Stage.SYNTHESIS: _gate(lambda o: len(o) > 1000 and "analysis" in o, Stage.SYNTHESIS),
    Stage.SPECULATION: _gate(
        lambda o: len(o) > 500 and ("forecast" in o or "prediction" in o), Stage.SPECULATION
    ),
    Stage.FINAL_REPORT: _gate(lambda o: len(o) > 2000 and "#" in o, Stage.FINAL_REPORT),
    Stage.VALIDATION: _gate(lambda o: len(o) > 100, Stage.VALIDATION),
}


def stage_plan(mode: ResearchMode | str) -> list[Stage]:
    if ResearchMode(mode) == ResearchMode.DEEP_DIVE:
        return list(STAGE_ORDER)
    return [stage for stage in STAGE_ORDER if stage != Stage.SPECULATION]


def find_bottlenecks(results: list[StageResult]) -> list[str]:
    if not results:
        return []
    mean = sum(r.duration_ms for r in results) / len(results)
    return [
        f"{r.stage.value} took {r.duration_ms}ms (bottleneck)"
        for r in results
        if r.duration_ms > mean * 2
    ]


def performance_grade(results: list[StageResult]) -> str:
    if not results:
        return "D"
    pass_rate = sum(1 for r in results if r.quality_gate.passed) / len(results)
    avg_ms = sum(r.duration_ms for r in results) / len(results)

    if pass_rate >= 0.9 and avg_ms < 5000:
        return "A+"
    if pass_rate >= 0.8 and avg_ms < 10000:
        return "A"
    if pass_rate >= 0.7 and avg_ms < 15000:
        return "B"
    if pass_rate >= 0.6:
        return "C"
    return "D"


class PipelineService:
    def __init__(
        self,
        llm: LLMClient,
        *,
        light_model: str | None = None,
        reasoning_model: str | None = None,
        timeout_seconds: float = 300.0,
        temperature: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.llm = llm
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self._clock = clock
        self.specs: dict[Stage, StageSpec] = {
            stage: StageSpec(
                model=light_model or MODEL_REGISTRY[stage][0],
                reasoning_model=(reasoning_model or MODEL_REGISTRY[stage][1])
                if stage in REASONING_STAGES
                else (light_model or MODEL_REGISTRY[stage][1]),
                token_budget=TOKEN_LIMITS[stage],
                gate=QUALITY_GATES[stage],
            )
            for stage in STAGE_ORDER
        }

    def choose_model(self, stage: Stage, mode: ResearchMode | str) -> str:
        spec = self.specs[stage]
        if ResearchMode(mode) == ResearchMode.DEEP_DIVE and stage in REASONING_STAGES:
            return spec.reasoning_model
        return spec.model

    async def execute_stage(
        self,
        stage: Stage,
        user_prompt: str,
        mode: ResearchMode | str,
        system_prompt: str | None = None,
    ) -> StageResult:
        spec = self.specs[stage]
        model = self.choose_model(stage, mode)
        deep = ResearchMode(mode) == ResearchMode.DEEP_DIVE
        reasoning_effort = "high" if deep and stage in REASONING_STAGES else None
        started = self._clock()

        try:
            completion = await with_timeout(
                self.llm.complete(
                    model=model,
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    max_tokens=spec.token_budget,
                    temperature=self.temperature,
                    reasoning_effort=reasoning_effort,
                    caller=f"pipeline.{stage.value}",
                ),
                self.timeout_seconds,
            )
        except Exception as e:
            logger.error(f"Stage {stage.value} failed on {model}: {e}")
            raise StageFailed(stage.value, e) from e

        duration_ms = int((self._clock() - started) * 1000)
        gate = spec.gate(completion.content)
        logger.info(
            f"Stage {stage.value} completed on {model} in {duration_ms}ms "
            f"({completion.tokens_used} tokens, gate {'passed' if gate.passed else 'failed'})"
        )
        return StageResult(
            stage=stage,
            output=completion.content,
            model=model,
            tokens_used=completion.tokens_used,
            duration_ms=duration_ms,
            quality_gate=gate,
        )

    async def run_final_report(
        self, prior_output: str, report_prompt: str, mode: ResearchMode | str
    ) -> StageResult:
        system, user = stage_prompts(Stage.FINAL_REPORT, report_prompt=report_prompt, input=prior_output)
        return await self.execute_stage(Stage.FINAL_REPORT, user, mode, system)

    async def execute(self, pipeline_input: PipelineInput, mode: ResearchMode | str) -> PipelineResult:
        """Run every planned stage in order; the first failing stage aborts the run."""
        started = self._clock()
        results: list[StageResult] = []
        previous = pipeline_input.sources_json

        for stage in stage_plan(mode):
            if stage == Stage.FINAL_REPORT:
                result = await self.run_final_report(previous, pipeline_input.report_prompt, mode)
            else:
                system, user = stage_prompts(stage, input=previous)
                result = await self.execute_stage(stage, user, mode, system)
            results.append(result)
            previous = result.output

        return PipelineResult(
            results=results,
            metadata=summarize(
                results,
                total_tokens_used=sum(r.tokens_used for r in results),
                total_duration_ms=int((self._clock() - started) * 1000),
            ),
        )


def summarize(
    results: list[StageResult],
    *,
    total_tokens_used: int,
    total_duration_ms: int,
    final_report_retries: int = 0,
) -> PipelineMetadata:
    return PipelineMetadata(
        models_used=[r.model for r in results],
        processing_stages=[r.stage.value for r in results],
        bottlenecks=find_bottlenecks(results),
        quality_gates={r.stage.value: r.quality_gate.passed for r in results},
        total_tokens_used=total_tokens_used,
        total_duration_ms=total_duration_ms,
        performance_grade=performance_grade(results),
        final_report_retries=final_report_retries,
    )


def with_final_report_retries(result: PipelineResult, retries: list[StageResult]) -> PipelineResult:
    """Swap in the last regenerated final report and add every retry's tokens and time.

    Gates, bottlenecks and the grade describe the report actually returned;
    token and duration totals also include the rejected attempts.
    """
    if not retries:
        return result
    latest = retries[-1]
    results = [latest if r.stage == Stage.FINAL_REPORT else r for r in result.results]
    return PipelineResult(
        results=results,
        metadata=summarize(
            results,
            total_tokens_used=result.metadata.total_tokens_used + sum(r.tokens_used for r in retries),
            total_duration_ms=result.metadata.total_duration_ms + sum(r.duration_ms for r in retries),
            final_report_retries=len(retries),
        ),
    )
