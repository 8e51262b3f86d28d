"""Report quality scoring and the bounded re-prompting loop.

A finished report is judged on its word count, its structured JSON sections,
how many of those sections carry a forward-looking "Speculative Angle" block,
and a crude crypto-domain data-density check. Reports that fall short are
regenerated with an amended prompt a bounded number of times; the last
attempt is returned either way.
"""
from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from cryptoresearch.errors import QualityInsufficient
from cryptoresearch.models.pipeline import ResearchMode
from cryptoresearch.services.prompt_store import render_prompt

REPORT_STRUCTURE: tuple[str, ...] = (
    "TLDR",
    "Project Information & Competition",
    "Team, Venture Funds, CEO and Key Members",
    "Tokenomics",
    "Airdrops and Incentive Programs",
    "Social Media & Community Analysis",
    "On-Chain Overview",
    "Conclusion",
)

SPECULATIVE_BLOCK_RE = re.compile(r"Speculative Angle[\s\S]*?:[\s\S]*?\S")
SPECULATIVE_BODY_RE = re.compile(r"Speculative Angle[\s\S]*?:([\s\S]*)", re.IGNORECASE)
FENCED_JSON_RE = re.compile(r"```json([\s\S]*?)```")
CRYPTO_TERMS_RE = re.compile(
    r"(DeFi|TVL|APY|tokenomics|governance|staking|yield|liquidity)", re.IGNORECASE
)


def word_count(text: str) -> int:
    return len((text or "").split())


def _candidate_objects(report: str):
    fenced = FENCED_JSON_RE.search(report)
    if fenced:
        yield fenced.group(1)
    decoder = json.JSONDecoder()
    for match in re.finditer(r"\{", report):
        try:
            obj, _ = decoder.raw_decode(report, match.start())
        except json.JSONDecodeError:
            continue
        yield obj


def extract_json_sections(report: str) -> dict[str, str] | None:
    """Pull the structured section map out of a report; `None` when absent or malformed."""
    if not report:
        return None
    for candidate in _candidate_objects(report):
        if isinstance(candidate, str):
            try:
                candidate = json.loads(candidate)
            except json.JSONDecodeError:
                continue
        if not isinstance(candidate, dict):
            continue
        if all(key in candidate for key in REPORT_STRUCTURE):
            return {key: "" if value is None else str(value) for key, value in candidate.items()}
    return None


def has_speculative_block(section: str) -> bool:
    return bool(SPECULATIVE_BLOCK_RE.search(section or ""))


def compute_speculative_density(sections: dict[str, str] | None) -> float:
    if not sections:
        return 0.0
    total = 0
    speculative = 0
    for key in REPORT_STRUCTURE:
        section = sections.get(key)
        if not section:
            continue
        total += word_count(section)
        match = SPECULATIVE_BODY_RE.search(section)
        if match and match.group(1):
            speculative += word_count(match.group(1))
    return speculative / total if total else 0.0


def score_section_coverage(sections: dict[str, str] | None) -> float:
    """0.7 weight on non-empty sections, 0.3 on sections with a speculative block."""
    if not sections:
        return 0.0
    present = 0
    with_speculation = 0
    for key in REPORT_STRUCTURE:
        section = sections.get(key)
        if section and section.strip():
            present += 1
            if has_speculative_block(section):
                with_speculation += 1
    count = len(REPORT_STRUCTURE)
    return present / count * 0.7 + with_speculation / count * 0.3


def validate_strict_mode(
    report: str, sections: dict[str, str] | None, min_words: int
) -> list[str]:
    warnings: list[str] = []
    words = word_count(report)
    if words < min_words:
        warnings.append(f"Report word count ({words}) is below minimum required ({min_words})")
    if sections is None:
        warnings.append("No valid JSON sections extracted.")
        return warnings
    for key in REPORT_STRUCTURE:
        section = sections.get(key)
        if not section or not section.strip():
            warnings.append(f'Missing or empty section: "{key}"')
        elif not has_speculative_block(section):
            warnings.append(f"Section \"{key}\" missing non-empty 'Speculative Angle' subsection.")
    return warnings


@dataclass(slots=True)
class QualityEvaluation:
    acceptable: bool
    score: int
    issues: list[str] = field(default_factory=list)


@dataclass(slots=True)
class GenerationOutcome:
    report: str
    retries_used: int
    evaluation: QualityEvaluation
    sections: dict[str, str] | None = None
    warning: str | None = None


class ReportQualityEvaluator:
    def __init__(
        self,
        min_words_deep: int = 5000,
        min_words_lite: int = 1200,
        min_speculative_density: float = 0.08,
        min_section_coverage: float = 0.85,
        max_retries: int = 3,
        retry_delay_ms: int = 1000,
        retry_context_chars: int = 3000,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.min_words_deep = min_words_deep
        self.min_words_lite = min_words_lite
        self.min_speculative_density = min_speculative_density
        self.min_section_coverage = min_section_coverage
        self.max_retries = max(int(max_retries), 0)
        self.retry_delay_ms = retry_delay_ms
        self.retry_context_chars = retry_context_chars
        self._sleep = sleep

    def min_words(self, mode: ResearchMode | str) -> int:
        return self.min_words_deep if ResearchMode(mode) == ResearchMode.DEEP_DIVE else self.min_words_lite

    def evaluate(
        self, report: str, sections: dict[str, str] | None, mode: ResearchMode | str
    ) -> QualityEvaluation:
        issues: list[str] = []
        score = 0

        words = word_count(report)
        minimum = self.min_words(mode)
        if words >= minimum:
            score += 30
        else:
            issues.append(f"Word count {words} below minimum {minimum}")

        if sections is not None:
            score += 20
            coverage = score_section_coverage(sections)
            if coverage >= self.min_section_coverage:
                score += 25
            else:
                issues.append(
                    f"Section coverage {coverage:.2f} below minimum {self.min_section_coverage}"
                )
        else:
            issues.append("No valid JSON sections found")

        density = compute_speculative_density(sections)
        if density >= self.min_speculative_density:
            score += 15
        else:
            issues.append(
                f"Speculative density {density:.3f} below minimum {self.min_speculative_density}"
            )

        text = report or ""
        if re.search(r"\d", text) and "%" in text and CRYPTO_TERMS_RE.search(text):
            score += 10
        else:
            issues.append("Report lacks sufficient data density and crypto-specific content")

        return QualityEvaluation(acceptable=score >= 70 and len(issues) <= 1, score=score, issues=issues)

    def amend_prompt(self, base_prompt: str, mode: ResearchMode | str, context: str, attempt: int) -> str:
        amendment = render_prompt(
            "report.retry_amendment",
            attempt=attempt,
            min_words=self.min_words(mode),
            min_density_pct=f"{self.min_speculative_density * 100:g}",
            context=(context or "")[: self.retry_context_chars],
        )
        return f"{base_prompt}\n{amendment}"

    async def generate_with_retry(
        self,
        prompt: str,
        mode: ResearchMode | str,
        context: str,
        generate: Callable[[str], Awaitable[str]],
        *,
        first_attempt: str | None = None,
    ) -> GenerationOutcome:
        """Generate until acceptable or out of retries; quality never raises.

        `first_attempt` lets a caller hand in an already-generated report so it
        counts as attempt zero instead of being regenerated.
        """
        report = first_attempt if first_attempt is not None else await generate(prompt)
        retries = 0

        while True:
            sections = extract_json_sections(report)
            evaluation = self.evaluate(report, sections, mode)
            if evaluation.acceptable:
                return GenerationOutcome(report, retries, evaluation, sections)
            if retries >= self.max_retries:
                warning = str(QualityInsufficient(evaluation.issues, evaluation.score, retries))
                logger.warning(warning)
                return GenerationOutcome(report, retries, evaluation, sections, warning)

            logger.info(
                f"Report quality insufficient (score: {evaluation.score}), retrying. "
                f"Issues: {evaluation.issues}"
            )
            await self._sleep(self.retry_delay_ms / 1000)
            retries += 1
            report = await generate(self.amend_prompt(prompt, mode, context, retries))
