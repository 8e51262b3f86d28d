from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from cryptoresearch.models.pipeline import ResearchMode


# --- Requests ---


class ResearchRequest(BaseModel):
    project_name: str
    project_website: str | None = None
    project_twitter: str | None = None
    project_contract: str | None = None
    mode: ResearchMode = ResearchMode.DEEP_DIVE
    strict_mode: bool = False

    @field_validator("project_name")
    @classmethod
    def _require_name(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("project_name must not be blank")
        return value.strip()


# --- Responses ---


class SourceOut(BaseModel):
    title: str
    url: str
    content: str


class ReportMetadata(BaseModel):
    created_at: datetime
    request_id: str
    word_count: int
    query_terms: list[str]
    retries: int = 0
    duration_ms: int = 0
    confidence_reason: str = ""
    strict_mode_warnings: list[str] = Field(default_factory=list)
    speculative_density: float = 0.0
    section_coverage_score: float = 0.0
    quality_score: int = 0
    no_sources: bool = False
    pipeline: dict[str, Any] | None = None


class ResearchReport(BaseModel):
    report: str
    sources: list[SourceOut]
    request_id: str
    confidence_score: int
    mode: ResearchMode
    metadata: ReportMetadata
    json_sections: dict[str, str] | None = None


class StatsResponse(BaseModel):
    cost: dict[str, Any]
    cache: dict[str, Any]
    analytics: dict[str, Any]
    circuit_breaker: dict[str, Any]


class HealthResponse(BaseModel):
    status: str
    checks: dict[str, bool]
    circuit_breaker_state: str
