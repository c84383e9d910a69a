"""
Failure scenario runner.

Checks that the marketplace deployment is up, runs the selected scenarios
against it one after another, writes results/failure_results.json and
prints a Rich summary.  Exits non-zero when any scenario fails.

Usage:
    python -m failure_scenarios.runner [--base-url URL] [scenario ...]
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from types import ModuleType

import httpx
from rich.console import Console
from rich.table import Table

from failure_scenarios import FailureResult
from failure_scenarios.scenarios import (
    concurrent_webhook,
    duplicate_webhook,
    invalid_page_token,
    malformed_webhook,
    payment_retry,
    unmatched_credit,
)

SERVICE_NAME = "marketplace"

SCENARIOS: dict[str, ModuleType] = {
    module.SCENARIO_NAME: module
    for module in (
        duplicate_webhook,
        concurrent_webhook,
        malformed_webhook,
        unmatched_credit,
        payment_retry,
        invalid_page_token,
    )
}

RESULTS_PATH = Path(__file__).parent.parent / "results" / "failure_results.json"

console = Console()


async def wait_until_healthy(base_url: str, attempts: int = 10) -> bool:
    async with httpx.AsyncClient(timeout=2.0) as client:
        for _ in range(attempts):
            try:
                if (await client.get(f"{base_url}/health")).status_code == 200:
                    return True
            except httpx.HTTPError:
                pass
            await asyncio.sleep(1.0)
    return False


async def run_scenario(module: ModuleType, base_url: str) -> FailureResult:
    try:
        return await module.run(base_url=base_url, service_name=SERVICE_NAME)
    except Exception as exc:
        return FailureResult(
            scenario_name=module.SCENARIO_NAME,
            service=SERVICE_NAME,
            expected_outcome="scenario completes",
            actual_outcome="scenario raised",
            correct=False,
            error=repr(exc),
        )


def save_results(base_url: str, results: list[FailureResult]) -> Path:
    RESULTS_PATH.parent.mkdir(exist_ok=True)
    document = {
        "run_at": datetime.now(timezone.utc).isoformat(),
        "base_url": base_url,
        "passed": sum(r.correct for r in results),
        "failed": sum(not r.correct for r in results),
        "results": [asdict(r) for r in results],
    }
    RESULTS_PATH.write_text(json.dumps(document, indent=2, default=str))
    return RESULTS_PATH


def render(results: list[FailureResult]) -> None:
    table = Table(title=f"Failure scenarios ({SERVICE_NAME})", show_lines=True)
    table.add_column("Scenario", style="cyan", no_wrap=True)
    table.add_column("Expected")
    table.add_column("Observed")
    table.add_column("Result", justify="center")

    for r in results:
        table.add_row(
            r.scenario_name,
            r.expected_outcome,
            r.error or r.actual_outcome,
            "[green]PASS[/green]" if r.correct else "[red]FAIL[/red]",
        )
    console.print(table)


async def main(base_url: str, selected: list[str]) -> int:
    if not await wait_until_healthy(base_url):
        console.print(f"[red]{base_url}/health is not answering; is the API running?[/red]")
        return 2

    results = [await run_scenario(SCENARIOS[name], base_url) for name in selected]
    path = save_results(base_url, results)
    render(results)
    console.print(f"Results written to {path}")
    return 0 if all(r.correct for r in results) else 1


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument(
        "--base-url", default=os.getenv("MARKETPLACE_URL", "http://localhost:8000")
    )
    parser.add_argument("scenarios", nargs="*", metavar="scenario")
    args = parser.parse_args(argv)
    unknown = sorted(set(args.scenarios) - set(SCENARIOS))
    if unknown:
        parser.error(f"unknown scenario(s): {', '.join(unknown)}; choose from {', '.join(SCENARIOS)}")
    return args


if __name__ == "__main__":
    args = parse_args(sys.argv[1:])
    sys.exit(asyncio.run(main(args.base_url.rstrip("/"), args.scenarios or list(SCENARIOS))))
