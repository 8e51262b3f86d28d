"""Prompt catalog backed by ``prompts/prompts.json``.

Keys are dotted paths into the JSON object. A leaf is either a string or a
list of lines joined with newlines, rendered with ``string.Template``.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

from cryptoresearch.models.pipeline import ResearchMode, Stage

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"

REPORT_TEMPLATE_KEYS: dict[tuple[ResearchMode, bool], str] = {
    (mode, strict): f"report.{mode.name.lower()}.{'strict' if strict else 'standard'}"
    for mode in ResearchMode
    for strict in (False, True)
}

STAGE_PROMPT_KEYS: dict[Stage, str] = {stage: f"stages.{stage.name.lower()}" for stage in Stage}


class _Catalog:
    """Parsed catalog, re-read whenever the file's mtime changes."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._payload: dict[str, Any] | None = None
        self._mtime_ns: int | None = None

    def payload(self) -> dict[str, Any]:
        mtime_ns = self.path.stat().st_mtime_ns
        if self._payload is None or self._mtime_ns != mtime_ns:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError(f"Prompt catalog {self.path.name} must be a JSON object")
            self._payload, self._mtime_ns = data, mtime_ns
        return self._payload

    def lookup(self, key: str) -> str:
        node: Any = self.payload()
        for part in key.split("."):
            try:
                node = node[part]
            except (KeyError, TypeError):
                raise KeyError(f"Prompt key not found: {key}") from None
        if isinstance(node, list):
            return "\n".join(map(str, node))
        if isinstance(node, str):
            return node
        raise TypeError(f"Prompt key {key} does not resolve to text")

    def reset(self) -> None:
        self._payload = None
        self._mtime_ns = None


_catalog = _Catalog(PROMPTS_PATH)


def render_prompt(key: str, **values: Any) -> str:
    try:
        return Template(_catalog.lookup(key)).substitute(values)
    except KeyError as exc:
        if str(exc.args[0]).startswith("Prompt key not found"):
            raise
        raise KeyError(f"Prompt '{key}' needs a value for '{exc.args[0]}'") from exc


def report_template_key(mode: ResearchMode | str, strict: bool) -> str:
    return REPORT_TEMPLATE_KEYS[(ResearchMode(mode), bool(strict))]


def stage_prompts(stage: Stage, **values: Any) -> tuple[str, str]:
    """Return the (system, user) prompt pair for a pipeline stage."""
    base = STAGE_PROMPT_KEYS[stage]
    return render_prompt(f"{base}.system"), render_prompt(f"{base}.user", **values)


def clear_prompt_cache() -> None:
    _catalog.reset()
