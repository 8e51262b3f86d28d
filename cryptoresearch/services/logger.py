"""Loguru setup plus structured log helpers for searches, LLM calls and research steps.

Sinks are configured once at import from `settings`. Every record carries a
`request_id` extra (``-`` outside a research request); bind it with
``logger.bind(request_id=...)`` to correlate a report's search and pipeline lines.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from cryptoresearch.config import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<magenta>{extra[request_id]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[request_id]} | {name}:{function}:{line} - {message}"

NOISY_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "httpx",
    "httpcore",
    "openai._base_client",
    "asyncio",
)


def configure_logging(
    level: str = "INFO",
    log_to_file: bool = False,
    log_dir: str = "logs",
    noisy_level: str = "WARNING",
) -> None:
    logger.remove()
    logger.configure(extra={"request_id": "-"})
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level.upper(), colorize=True)

    if log_to_file:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        logger.add(
            directory / "cryptoresearch_{time:YYYY-MM-DD}.log",
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="00:00",
            retention="7 days",
            compression="zip",
        )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level.upper())


configure_logging(
    level=settings.app_log_level,
    log_to_file=settings.log_to_file,
    log_dir=settings.log_dir,
    noisy_level=settings.noisy_log_level,
)


def _stamp(payload: dict[str, Any]) -> dict[str, Any]:
    return {"timestamp": datetime.now(timezone.utc).isoformat(), **payload}


def log_llm_call(
    model: str,
    caller: str,
    *,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    error: Optional[str] = None,
) -> None:
    """One chat completion; `caller` is the pipeline stage (``pipeline.<stage>``)."""
    payload = _stamp(
        {
            "model": model,
            "caller": caller,
            "tokens": {"input": input_tokens, "output": output_tokens, "total": input_tokens + output_tokens},
            "duration_ms": duration_ms,
        }
    )
    if error:
        payload["error"] = error
        logger.error(f"LLM_CALL_FAILED: {payload}")
        return
    logger.info(f"LLM_CALL: {payload}")


def log_search(
    query: str,
    *,
    cached: bool,
    duration_ms: int,
    result_count: int = 0,
    cost: float = 0.0,
    error: Optional[str] = None,
) -> None:
    payload = _stamp(
        {
            "query": query,
            "source": "cache" if cached else "provider",
            "results": result_count,
            "cost": round(cost, 6),
            "duration_ms": duration_ms,
        }
    )
    if error:
        payload["error"] = error
        logger.warning(f"SEARCH_FAILED: {payload}")
        return
    logger.debug(f"SEARCH: {payload}")


def log_research_step(
    request_id: str,
    step_type: str,
    status: str,
    data: Optional[dict] = None,
) -> None:
    """Milestone of a report request (search, pipeline, report)."""
    logger.bind(request_id=request_id).info(
        f"RESEARCH_STEP: {_stamp({'step': step_type, 'status': status, 'data': data or {}})}"
    )


def log_event(event_type: str, message: str, **kwargs) -> None:
    logger.info(f"EVENT: {_stamp({'event_type': event_type, 'message': message, **kwargs})}")
