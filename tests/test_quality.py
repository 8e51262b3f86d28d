from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from cryptoresearch.models.pipeline import ResearchMode
from cryptoresearch.services.quality import (
    REPORT_STRUCTURE,
    ReportQualityEvaluator,
    compute_speculative_density,
    extract_json_sections,
    has_speculative_block,
    score_section_coverage,
    validate_strict_mode,
    word_count,
)

SECTION = "The protocol grew steadily. Speculative Angle: TVL could climb 40% next year."


def _sections(body: str = SECTION) -> dict[str, str]:
    return {key: body for key in REPORT_STRUCTURE}


def _report(sections: dict[str, str] | None = None, filler_words: int = 60) -> str:
    sections = _sections() if sections is None else sections
    body = " ".join(["DeFi liquidity grew 12% this quarter."] * (filler_words // 6))
    return f"# Report\n\n{body}\n\n```json\n{json.dumps(sections)}\n```\n"


def _evaluator(**kwargs) -> ReportQualityEvaluator:
    kwargs.setdefault("min_words_deep", 500)
    kwargs.setdefault("min_words_lite", 50)
    kwargs.setdefault("sleep", AsyncMock())
    return ReportQualityEvaluator(**kwargs)


def test_word_count_splits_on_whitespace():
    assert word_count("  one two\nthree\t four ") == 4
    assert word_count("") == 0


def test_extract_json_sections_prefers_fenced_block():
    sections = extract_json_sections(_report())
    assert sections == _sections()


def test_extract_json_sections_finds_bare_object():
    report = f"Intro text {{not json}} then {json.dumps(_sections())} trailing"
    assert extract_json_sections(report) == _sections()


@pytest.mark.parametrize(
    "report",
    [
        "",
        "no json here",
        "```json\n{broken\n```",
        "```json\n" + json.dumps({"TLDR": "only one key"}) + "\n```",
    ],
)
def test_extract_json_sections_returns_none_for_missing_or_malformed(report):
    assert extract_json_sections(report) is None


def test_speculative_block_requires_content_after_colon():
    assert has_speculative_block("Speculative Angle: prices may rise")
    assert not has_speculative_block("Speculative Angle:")
    assert not has_speculative_block("No forward view here.")


def test_coverage_is_seventy_percent_without_speculation():
    sections = _sections("Plain factual section with no forward view.")
    assert score_section_coverage(sections) == pytest.approx(0.7)
    assert score_section_coverage(_sections()) == pytest.approx(1.0)
    assert score_section_coverage(None) == 0.0


def test_speculative_density_counts_words_after_marker():
    density = compute_speculative_density(_sections())
    assert density == pytest.approx(6 / 12)
    assert compute_speculative_density(None) == 0.0


def test_validate_strict_mode_lists_each_problem():
    sections = _sections()
    sections["Tokenomics"] = ""
    sections["Conclusion"] = "No forward view."

    warnings = validate_strict_mode("too short", sections, min_words=100)

    assert warnings[0] == "Report word count (2) is below minimum required (100)"
    assert 'Missing or empty section: "Tokenomics"' in warnings
    assert "Section \"Conclusion\" missing non-empty 'Speculative Angle' subsection." in warnings
    assert len(warnings) == 3


def test_validate_strict_mode_without_sections():
    warnings = validate_strict_mode("word " * 200, None, min_words=100)
    assert warnings == ["No valid JSON sections extracted."]


def test_evaluate_full_marks_for_complete_report():
    report = _report()

    evaluation = _evaluator().evaluate(report, extract_json_sections(report), ResearchMode.LITE)

    assert evaluation.score == 100
    assert evaluation.acceptable
    assert evaluation.issues == []


def test_evaluate_uses_mode_specific_word_floor():
    report = _report()
    evaluation = _evaluator().evaluate(report, extract_json_sections(report), ResearchMode.DEEP_DIVE)

    assert evaluation.score == 70
    assert evaluation.acceptable
    assert evaluation.issues[0].startswith("Word count")


def test_evaluate_missing_sections_is_unacceptable():
    evaluation = _evaluator().evaluate("short text", None, "lite")

    assert evaluation.score == 0
    assert not evaluation.acceptable
    assert "No valid JSON sections found" in evaluation.issues


def test_amend_prompt_restates_requirements_and_truncates_context():
    evaluator = _evaluator(retry_context_chars=10)

    prompt = evaluator.amend_prompt("BASE", "lite", "abcdefghijklmnopqrstuvwxyz", attempt=2)

    assert prompt.startswith("BASE\n")
    assert "RETRY ATTEMPT #2" in prompt
    assert "MINIMUM 50 words" in prompt
    assert "abcdefghij" in prompt
    assert "abcdefghijk" not in prompt


@pytest.mark.asyncio
async def test_generate_with_retry_accepts_first_good_attempt():
    generate = AsyncMock()

    outcome = await _evaluator().generate_with_retry(
        "prompt", "lite", "ctx", generate, first_attempt=_report()
    )

    assert outcome.retries_used == 0
    assert outcome.warning is None
    assert outcome.sections == _sections()
    generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_generate_with_retry_regenerates_until_acceptable():
    generate = AsyncMock(side_effect=["still bad", _report()])

    outcome = await _evaluator().generate_with_retry("prompt", "lite", "ctx", generate)

    assert generate.await_count == 2
    assert outcome.retries_used == 1
    assert outcome.evaluation.acceptable
    assert "RETRY ATTEMPT #1" in generate.await_args.args[0]


@pytest.mark.asyncio
async def test_generate_with_retry_is_bounded_and_returns_last_attempt():
    generate = AsyncMock(side_effect=["bad 1", "bad 2"])
    sleep = AsyncMock()

    outcome = await _evaluator(max_retries=2, sleep=sleep).generate_with_retry(
        "prompt", "lite", "ctx", generate, first_attempt="bad 0"
    )

    assert outcome.report == "bad 2"
    assert outcome.retries_used == 2
    assert not outcome.evaluation.acceptable
    assert outcome.warning.startswith("Report quality insufficient after 2 retries")
    assert sleep.await_count == 2
