from __future__ import annotations

import json
import os
from unittest.mock import AsyncMock

import pytest

# Settings() is built at import time and requires both keys.
os.environ.setdefault("OPENROUTER_API_KEY", "test")
os.environ.setdefault("TAVILY_API_KEY", "test")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("COST_LEDGER_PATH", "")

SOURCE_CONTENT = "Aave tokenomics, audit history and TVL growth across 2024 markets. " * 3

SECTION = "The protocol grew steadily. Speculative Angle: TVL could climb 40% next year."


@pytest.fixture
def good_report() -> str:
    from cryptoresearch.services.quality import REPORT_STRUCTURE

    sections = {key: SECTION for key in REPORT_STRUCTURE}
    body = " ".join(["DeFi liquidity grew 12% this quarter."] * 10)
    return f"# Report\n\n{body}\n\n```json\n{json.dumps(sections)}\n```\n"


@pytest.fixture
def fake_llm():
    """LLM double returning `final_report` for the final stage and filler elsewhere."""
    from cryptoresearch.llm_client import Completion

    llm = AsyncMock()
    llm.final_report = "short report"

    async def complete(**kwargs):
        stage = kwargs["caller"].split(".", 1)[1]
        content = llm.final_report if stage == "finalReport" else f"{stage} analysis output"
        return Completion(content=content, tokens_used=10)

    llm.complete.side_effect = complete
    return llm


@pytest.fixture
def fake_provider():
    async def provider(query: str, max_results: int):
        from cryptoresearch.models.search import SearchSource

        slug = query.replace(" ", "-").replace('"', "")
        return [SearchSource(title=f"Aave {query}", url=f"https://example.com/{slug}", content=SOURCE_CONTENT)]

    return AsyncMock(side_effect=provider)


@pytest.fixture
def make_services(fake_llm, fake_provider):
    from cryptoresearch.config import settings
    from cryptoresearch.services.container import ServiceContainer

    def build(provider=None, **overrides):
        overrides = {
            "enhanced_inter_query_delay_ms": 0,
            "report_retry_delay_ms": 0,
            "retry_base_delay_ms": 0,
            "max_report_retries": 1,
            "min_words_lite": 50,
            "min_words_deep": 50,
            "cost_ledger_path": "",
            **overrides,
        }
        test_settings = settings.model_copy(update=overrides)
        return ServiceContainer.from_settings(
            test_settings, llm=fake_llm, provider=provider or fake_provider
        )

    return build
