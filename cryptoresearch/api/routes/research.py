from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse

from cryptoresearch.agents.orchestrator import ResearchOrchestrator
from cryptoresearch.models.schemas import HealthResponse, ResearchReport, ResearchRequest, StatsResponse
from cryptoresearch.services.container import ServiceContainer

router = APIRouter(prefix="/api", tags=["research"])


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


@router.post("/research", response_model=ResearchReport)
async def create_report(
    body: ResearchRequest,
    services: ServiceContainer = Depends(get_services),
) -> ResearchReport:
    """Run the full research flow and return the finished report."""
    return await ResearchOrchestrator(services).generate_report(body)


@router.get("/health", response_model=HealthResponse)
async def health(services: ServiceContainer = Depends(get_services)) -> HealthResponse:
    result = await services.search.health_check()
    return HealthResponse(**result)


@router.get("/stats", response_model=StatsResponse)
async def stats(services: ServiceContainer = Depends(get_services)) -> StatsResponse:
    return StatsResponse(**services.search.stats())


@router.get("/stats/costs")
async def cost_history(
    days: int = Query(7, ge=1, le=90),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    """Per-day spend, oldest first."""
    return {"days": services.cost_tracker.history(days)}


@router.get("/stats/report", response_class=PlainTextResponse)
async def analytics_report(
    hours: float = Query(24, gt=0),
    services: ServiceContainer = Depends(get_services),
) -> str:
    return services.analytics.report_text(hours * 3600)
