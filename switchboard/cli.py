"""
Command-line interface for Switchboard.

Provides commands for:
- Inspecting live configuration and provider status
- Explaining model selection for a prompt
- Simulating traffic against mock providers
- Reporting archived budget periods
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from switchboard.catalog import get_default_catalog
from switchboard.classifier import ContextAnalyzer, estimate_tokens
from switchboard.config import OrchestratorConfig, ProviderSettings
from switchboard.context import OrchestrationContext
from switchboard.cost_ledger import BudgetConfig, CostReport
from switchboard.orchestrator import Orchestrator
from switchboard.providers import MockProvider, ProviderRegistry
from switchboard.schemas import Provider, TaskType, Urgency
from switchboard.selector import STRATEGIES, ModelSelector, NoEligibleModelError
from switchboard.storage import SQLiteLedgerStore


def _rule(title: str = "") -> None:
    print("-" * 60)
    if title:
        print(title)
        print("-" * 60)


def cmd_status(args):
    """Print configuration and provider status."""
    orchestrator = Orchestrator.from_env()
    status = orchestrator.get_status()

    if args.json:
        print(json.dumps(status, indent=2, default=str))
        return

    print("\n" + "=" * 60)
    print("SWITCHBOARD STATUS")
    print("=" * 60)
    config = status["config"]
    print(f"Provider order: {', '.join(config['provider_order'])}")
    print(f"Strategy: {config['default_strategy']} (optimization "
          f"{'on' if config['optimization_enabled'] else 'off'})")
    print()
    _rule("PROVIDERS")
    for name, health in status["providers"].items():
        configured = "configured" if health["configured"] else "no API key"
        print(f"  {name:10} {health['circuit_state']:10} {health['status']:10} {configured}")
    print()
    ledger = status["cost_ledger"]
    _rule("BUDGET")
    print(f"Spent: ${ledger['spent']:.4f} of ${ledger['budget']:.2f} "
          f"({ledger['utilization']:.1%})")
    print("=" * 60)


def cmd_select(args):
    """Explain which model would serve a prompt."""
    overrides = {}
    if args.task_type:
        overrides["task_type"] = TaskType(args.task_type)
    if args.urgency:
        overrides["urgency"] = Urgency(args.urgency)
    if args.language:
        overrides["language"] = args.language
    if args.budget_constrained:
        overrides["budget_constrained"] = True
    context = ContextAnalyzer().analyze(args.prompt, **overrides)

    selector = ModelSelector(get_default_catalog())
    if args.strategy:
        selector.set_default_strategy(args.strategy)

    candidates = list(selector.catalog)
    if args.provider:
        candidates = [m.model_id for m in selector.catalog.models_for(Provider(args.provider))]
    tokens = estimate_tokens(args.prompt) + args.output_tokens

    print("\n" + "=" * 60)
    print("SWITCHBOARD SELECTION")
    print("=" * 60)
    print(f"\nPrompt: {args.prompt[:100]}...")
    print(f"Context: {json.dumps(context.to_dict(), indent=None)}")
    print(f"Estimated tokens: {tokens:,}")
    print(f"Budget utilization: {args.utilization:.0%}")
    print()

    try:
        selection = selector.rank(context, candidates, tokens, args.utilization)
    except NoEligibleModelError as exc:
        print(f"No eligible model: {exc}")
        for model_id, reason in exc.filter_reasons.items():
            print(f"  {model_id}: {reason}")
        sys.exit(1)

    _rule("DECISION")
    print(f"Model: {selection.model_id}")
    print(f"Strategy: {selection.strategy.name}")
    print(f"\nWHY: {selection.why}")
    print()
    _rule("RANKING")
    for score in selection.scores:
        print(f"  {score.model_id:20} total {score.total:.3f}  "
              f"cost ${score.estimated_cost:.4f}  quality {score.quality_score:.2f}")

    if selection.filter_reasons:
        print()
        _rule("REJECTED MODELS")
        for model_id, reason in selection.filter_reasons.items():
            print(f"  {model_id}: {reason}")
    print("=" * 60)


async def _no_wait(_delay: float) -> None:
    return None


def _print_report(report: CostReport) -> None:
    _rule("COST REPORT")
    print(f"Spent: ${report.spent:.4f} of ${report.budget:.2f} ({report.utilization:.1%})")
    print(f"Requests: {report.requests}  avg ${report.average_cost_per_request:.6f}")
    print(f"Savings vs direct providers: ${report.savings:.4f} ({report.savings_rate:.0%})")
    print(f"Projected month: ${report.projections.monthly_projection:.2f}")
    for model_id, cost in report.top_models:
        print(f"  {model_id:20} ${cost:.4f}")
    if report.recommendations:
        print()
        _rule("RECOMMENDATIONS")
        for rec in report.recommendations:
            print(f"  [{rec.priority}] {rec.title}: {rec.action}")


def cmd_simulate(args):
    """Run synthetic traffic through mock providers."""
    registry = ProviderRegistry([
        MockProvider(p, failure_rate=args.failure_rate, seed=args.seed + i)
        for i, p in enumerate(Provider)
    ])
    config = OrchestratorConfig(
        budget=BudgetConfig(monthly_budget_usd=args.budget),
        default_provider_settings=ProviderSettings(max_attempts=args.attempts),
    )
    store = SQLiteLedgerStore(args.db) if args.db else None
    ctx = OrchestrationContext.create(config=config, registry=registry, sleep=_no_wait, store=store)
    orchestrator = Orchestrator(ctx)

    prompts = [
        "Prepare the board meeting strategy review for the executive team",
        "Summarize the sales pipeline and pricing objections from the demo call",
        "Debug the deployment architecture for the api database migration",
        "Give live transcription feedback on this call, right now",
    ]

    async def run():
        outcomes = {"ok": 0, "failed": 0}
        for i in range(args.count):
            try:
                await orchestrator.process(None, prompts[i % len(prompts)])
                outcomes["ok"] += 1
            except Exception as exc:
                outcomes["failed"] += 1
                if args.verbose:
                    print(f"  request {i}: {type(exc).__name__}: {exc}")
        return outcomes

    outcomes = asyncio.run(run())
    stats = ctx.metrics.get_stats()
    counters = stats["counters"]

    print("\n" + "=" * 60)
    print("SWITCHBOARD SIMULATION")
    print("=" * 60)
    print(f"Requests: {args.count}  failure rate per call: {args.failure_rate:.0%}")
    print(f"Served: {outcomes['ok']}  failed: {outcomes['failed']}")
    served = max(outcomes["ok"], 1)
    print(f"Fallback rate: {counters.get('outcomes_fallback', 0) / served:.1%}")
    print()
    _rule("PROVIDER DISTRIBUTION")
    for provider in Provider:
        count = counters.get(f"outcomes_by_provider_{provider.value}", 0)
        bar = "#" * int(count / served * 40)
        print(f"  {provider.value:10} {count:5} {bar}")
    print()
    _print_report(ctx.ledger.get_report())

    if store is not None:
        orchestrator.reset_period()
        print(f"\nPeriod archived to {args.db}")
    print("=" * 60)

    if args.output:
        Path(args.output).write_text(json.dumps(orchestrator.get_status(), indent=2, default=str))
        print(f"Status saved to {args.output}")


def cmd_report(args):
    """List archived budget periods."""
    store = SQLiteLedgerStore(args.db)
    try:
        periods = store.list_snapshots(limit=args.limit)
    finally:
        store.close()

    if not periods:
        print(f"No archived periods in {args.db}")
        return

    print("\n" + "=" * 60)
    print("ARCHIVED PERIODS")
    print("=" * 60)
    for period in periods:
        print(f"{period.period_start:%Y-%m-%d} .. {period.period_end:%Y-%m-%d}  "
              f"${period.total:.4f} / ${period.budget:.2f} ({period.utilization:.1%})  "
              f"{period.requests} requests")
        for provider, cost in sorted(period.by_provider.items(), key=lambda x: -x[1]):
            print(f"    {provider:10} ${cost:.4f}")
    print("=" * 60)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Switchboard: LLM provider orchestration CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show provider health and budget from the environment config
  switchboard status

  # Explain model selection for a prompt
  switchboard select "Prepare the quarterly board review" --budget-constrained

  # Simulate 200 requests with 20% provider failures
  switchboard simulate --count 200 --failure-rate 0.2 --db periods.db

  # List archived periods
  switchboard report --db periods.db
""",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    status_parser = subparsers.add_parser("status", help="Show configuration and provider status")
    status_parser.add_argument("--json", action="store_true", help="Print raw JSON")

    select_parser = subparsers.add_parser("select", help="Explain model selection for a prompt")
    select_parser.add_argument("prompt", help="The prompt to analyze")
    select_parser.add_argument("--task-type", "-t", choices=[t.value for t in TaskType])
    select_parser.add_argument("--urgency", "-u", choices=[u.value for u in Urgency])
    select_parser.add_argument("--language", help="ISO language code")
    select_parser.add_argument("--budget-constrained", action="store_true")
    select_parser.add_argument("--provider", "-p", choices=[p.value for p in Provider],
                               help="Only consider this provider's models")
    select_parser.add_argument("--strategy", "-s", choices=sorted(STRATEGIES),
                               help="Default strategy override")
    select_parser.add_argument("--utilization", type=float, default=0.0,
                               help="Budget utilization to assume (0-1)")
    select_parser.add_argument("--output-tokens", type=int, default=500,
                               help="Expected completion tokens")

    sim_parser = subparsers.add_parser("simulate", help="Run traffic against mock providers")
    sim_parser.add_argument("--count", "-n", type=int, default=100, help="Number of requests")
    sim_parser.add_argument("--failure-rate", "-f", type=float, default=0.1,
                            help="Per-call failure probability")
    sim_parser.add_argument("--attempts", type=int, default=2, help="Attempts per provider")
    sim_parser.add_argument("--budget", type=float, default=100.0, help="Monthly budget USD")
    sim_parser.add_argument("--seed", type=int, default=42)
    sim_parser.add_argument("--db", help="SQLite file to archive the period into")
    sim_parser.add_argument("--output", "-o", help="Path to save final status JSON")
    sim_parser.add_argument("--verbose", "-v", action="store_true")

    report_parser = subparsers.add_parser("report", help="List archived budget periods")
    report_parser.add_argument("--db", default="switchboard.db", help="SQLite file")
    report_parser.add_argument("--limit", type=int, default=12)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    commands = {
        "status": cmd_status,
        "select": cmd_select,
        "simulate": cmd_simulate,
        "report": cmd_report,
    }

    handler = commands.get(args.command)
    if handler:
        handler(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
