from __future__ import annotations

import pytest

from cryptoresearch.models.pipeline import ResearchMode, Stage
from cryptoresearch.services.prompt_store import (
    REPORT_TEMPLATE_KEYS,
    render_prompt,
    report_template_key,
    stage_prompts,
)


def test_render_prompt_substitutes_template_values():
    prompt = render_prompt(
        "report.header",
        project_name="Aave",
        project_website="aave.com",
        project_twitter="aave",
        project_contract="Not provided",
    )
    assert "Project name: `Aave`" in prompt
    assert "Smart contract: `Not provided`" in prompt


def test_render_prompt_raises_for_unknown_key():
    with pytest.raises(KeyError):
        render_prompt("missing.prompt.key")


def test_render_prompt_raises_for_missing_value():
    with pytest.raises(KeyError, match="web_context"):
        render_prompt("report.web_context")


def test_report_template_key_per_mode_and_strictness():
    assert report_template_key("deep-dive", False) == "report.deep_dive.standard"
    assert report_template_key(ResearchMode.LITE, True) == "report.lite.strict"


@pytest.mark.parametrize("key", sorted(REPORT_TEMPLATE_KEYS.values()))
def test_every_report_template_renders(key):
    prompt = render_prompt(key, min_words=1200, structure="1. TLDR", json_keys='"TLDR"')
    assert "1200" in prompt
    assert "1. TLDR" in prompt


@pytest.mark.parametrize("stage", list(Stage))
def test_every_stage_has_system_and_user_prompt(stage):
    system, user = stage_prompts(stage, input="INPUT", report_prompt="REPORT")
    assert system
    assert "INPUT" in user
