"""CryptoResearch - crypto project research reports

Simple CLI for running one research request.
"""

import argparse
import asyncio
import sys

from cryptoresearch.agents.orchestrator import ResearchOrchestrator
from cryptoresearch.config import settings
from cryptoresearch.errors import ResearchError
from cryptoresearch.models.pipeline import ResearchMode
from cryptoresearch.models.schemas import ResearchReport, ResearchRequest
from cryptoresearch.services.container import ServiceContainer


def print_report(report: ResearchReport) -> None:
    meta = report.metadata
    print(f"\n[*] Research Complete!")
    print(f"   Request: {report.request_id}")
    print(f"   Runtime: {meta.duration_ms}ms")
    print(f"   Sources: {len(report.sources)}")
    print(f"   Words: {meta.word_count}")
    print(f"   Confidence: {report.confidence_score} ({meta.confidence_reason})")
    if meta.pipeline:
        print(f"   Pipeline grade: {meta.pipeline.get('performance_grade')}")
    for warning in meta.strict_mode_warnings:
        print(f"   [!] {warning}")
    print(f"\n{'='*50}")
    print("REPORT:")
    print(f"{'='*50}")
    print(report.report)


async def run_research(request: ResearchRequest, as_json: bool = False) -> int:
    """Run research for one project and print the result."""
    print(f"Project: {request.project_name} ({request.mode})", file=sys.stderr)
    print("-" * 50, file=sys.stderr)

    services = ServiceContainer.from_settings(settings)
    try:
        report = await ResearchOrchestrator(services).generate_report(request)
    except ResearchError as e:
        print(f"\n[!] Error: {e}", file=sys.stderr)
        return 1
    finally:
        await services.close()

    if as_json:
        print(report.model_dump_json(indent=2))
    else:
        print_report(report)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Crypto project research reports")
    parser.add_argument("--project", "-p", required=True, help="Project name")
    parser.add_argument("--website", help="Project website")
    parser.add_argument("--twitter", help="Project twitter handle or URL")
    parser.add_argument("--contract", help="Smart contract address")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in ResearchMode],
        default=ResearchMode.DEEP_DIVE.value,
        help="Research depth (default: deep-dive)",
    )
    parser.add_argument("--strict", action="store_true", help="Report strict-mode warnings")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")

    args = parser.parse_args()

    request = ResearchRequest(
        project_name=args.project,
        project_website=args.website,
        project_twitter=args.twitter,
        project_contract=args.contract,
        mode=ResearchMode(args.mode),
        strict_mode=args.strict,
    )
    sys.exit(asyncio.run(run_research(request, as_json=args.json)))


if __name__ == "__main__":
    main()
