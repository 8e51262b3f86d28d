from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Callable


class ResearchMode(StrEnum):
    DEEP_DIVE = "deep-dive"
    LITE = "lite"


class Stage(StrEnum):
    SOURCE_GATHERING = "sourceGathering"
    CONTENT_EXTRACTION = "contentExtraction"
    SYNTHESIS = "synthesis"
    SPECULATION = "speculation"
    FINAL_REPORT = "finalReport"
    VALIDATION = "validation"


STAGE_ORDER: tuple[Stage, ...] = (
    Stage.SOURCE_GATHERING,
    Stage.CONTENT_EXTRACTION,
    Stage.SYNTHESIS,
    Stage.SPECULATION,
    Stage.FINAL_REPORT,
    Stage.VALIDATION,
)


@dataclass(frozen=True, slots=True)
class PipelineInput:
    sources_json: str
    report_prompt: str


@dataclass(frozen=True, slots=True)
class QualityGate:
    passed: bool
    reason: str


@dataclass(frozen=True, slots=True)
class StageSpec:
    model: str
    reasoning_model: str
    token_budget: int
    gate: Callable[[str], QualityGate]


@dataclass(slots=True)
class StageResult:
    stage: Stage
    output: str
    model: str
    tokens_used: int
    duration_ms: int
    quality_gate: QualityGate

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "model": self.model,
            "tokens_used": self.tokens_used,
            "duration_ms": self.duration_ms,
            "quality_gate": {
                "passed": self.quality_gate.passed,
                "reason": self.quality_gate.reason,
            },
        }


@dataclass(slots=True)
class PipelineMetadata:
    models_used: list[str]
    processing_stages: list[str]
    bottlenecks: list[str]
    quality_gates: dict[str, bool]
    total_tokens_used: int
    total_duration_ms: int
    performance_grade: str
    final_report_retries: int = 0

    def to_dict(self) -> dict:
        return {
            "models_used": list(self.models_used),
            "processing_stages": list(self.processing_stages),
            "bottlenecks": list(self.bottlenecks),
            "quality_gates": dict(self.quality_gates),
            "total_tokens_used": self.total_tokens_used,
            "total_duration_ms": self.total_duration_ms,
            "performance_grade": self.performance_grade,
            "final_report_retries": self.final_report_retries,
        }


@dataclass(slots=True)
class PipelineResult:
    results: list[StageResult]
    metadata: PipelineMetadata

    def output_of(self, stage: Stage) -> str | None:
        for result in self.results:
            if result.stage == stage:
                return result.output
        return None

    @property
    def final_report(self) -> str:
        return self.output_of(Stage.FINAL_REPORT) or ""
