"""Command-line interface for DeepTicker.

Commands:
    quote SYMBOL...                      Fetch quotes through the fallback chain
    refresh SYMBOL:SHARES[@COST]...      Price a portfolio and report its health
    insight --kind KIND SYMBOL:SHARES... Request an AI insight for a portfolio
    providers                            List AI providers and credential status
    key set|delete ID                    Manage a stored API key
"""

import argparse
import asyncio
import getpass
import sys

import structlog

from deepticker.config import settings
from deepticker.credentials import (
    CREDENTIAL_ENV_VARS,
    CredentialStore,
    InMemoryCredentialStore,
    KeyringCredentialStore,
)
from deepticker.data.models import QuoteResult
from deepticker.errors import DeepTickerError, ResponseParseFailed
from deepticker.insights.models import InsightKind
from deepticker.observability.logging import setup_logging
from deepticker.orchestration.workflow import PortfolioWorkflow
from deepticker.portfolio.models import Holding

logger = structlog.get_logger(__name__)


def parse_holding(value: str) -> Holding:
    """Parse ``SYMBOL:SHARES`` or ``SYMBOL:SHARES@COST``."""
    symbol, sep, rest = value.partition(":")
    if not sep or not symbol.strip():
        raise argparse.ArgumentTypeError(f"expected SYMBOL:SHARES, got '{value}'")
    shares_text, _, cost_text = rest.partition("@")
    try:
        shares = float(shares_text)
        cost = float(cost_text) if cost_text else None
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid number in '{value}'") from e
    if shares < 0 or (cost is not None and cost < 0):
        raise argparse.ArgumentTypeError(f"negative value in '{value}'")
    return Holding(symbol=symbol, shares=shares, cost_basis=cost)


def build_credentials(source: str) -> CredentialStore:
    if source == "env":
        return InMemoryCredentialStore.from_env()
    return KeyringCredentialStore(settings.KEYRING_SERVICE)


def _format_result(result: QuoteResult) -> str:
    quote = result.quote
    flags = []
    if result.stale:
        flags.append("STALE")
    if result.fallback_used:
        flags.append("fallback")
    suffix = f" [{', '.join(flags)}]" if flags else ""
    return (
        f"{quote.symbol:<8} {quote.price:>12.2f} {quote.change:>+10.2f} "
        f"{quote.change_percent:>+8.2f}%  {result.source.value}{suffix}"
    )


async def run_quote_command(args: argparse.Namespace, workflow: PortfolioWorkflow) -> int:
    """Fetch and print quotes."""
    results = await workflow.fetcher.refresh(args.symbols)
    exit_code = 0
    for symbol, result in results.items():
        if isinstance(result, QuoteResult):
            print(_format_result(result))
        else:
            print(f"{symbol:<8} unavailable: {'; '.join(result.errors)}", file=sys.stderr)
            exit_code = 1
    return exit_code


async def run_refresh_command(args: argparse.Namespace, workflow: PortfolioWorkflow) -> int:
    """Refresh a portfolio and print totals and health."""
    outcome = await workflow.refresh(args.holdings)
    snapshot, stats = outcome.snapshot, outcome.stats

    for position in snapshot.positions:
        if position.quote is None:
            print(f"{position.symbol:<8} {position.holding.shares:>10g}  unavailable")
            continue
        stale = " [STALE]" if position.stale else ""
        health = position.health.value if position.health else "-"
        print(
            f"{position.symbol:<8} {position.holding.shares:>10g} "
            f"{position.quote.price:>12.2f} {position.market_value:>14.2f} "
            f"{position.quote.change_percent:>+8.2f}%  {health}{stale}"
        )

    print(f"\n{'='*50}")
    print(f"Total Value: {stats.total_value:.2f}")
    print(f"Daily Change: {stats.daily_change:+.2f} ({stats.daily_change_percent:+.2f}%)")
    if stats.total_return is not None:
        print(f"Total Return: {stats.total_return:+.2f} ({stats.total_return_percent or 0:+.2f}%)")
    print(
        f"Health: {stats.overall_health.value} "
        f"(healthy={stats.healthy_count}, warning={stats.warning_count}, "
        f"danger={stats.danger_count}, unpriced={stats.unpriced})"
    )
    print(f"{'='*50}")

    for symbol, errors in outcome.errors.items():
        print(f"{symbol}: {'; '.join(errors)}", file=sys.stderr)
    return 0 if not outcome.errors else 1


async def run_insight_command(args: argparse.Namespace, workflow: PortfolioWorkflow) -> int:
    """Refresh the portfolio, then request an insight."""
    outcome = await workflow.refresh(args.holdings)
    insight = await workflow.insight(
        InsightKind(args.kind),
        outcome.snapshot,
        provider=args.provider,
        prompt_override=args.prompt,
        symbol=args.symbol,
    )
    print(insight.model_dump_json(indent=2, exclude={"raw_text"}))
    return 0


def run_providers_command(workflow: PortfolioWorkflow) -> int:
    """List providers with credential status."""
    dispatcher = workflow.dispatcher
    active = dispatcher.resolve_provider()
    for config in dispatcher.provider_configs():
        marker = "*" if config.provider == active else " "
        status = "configured" if config.has_credential else "no key"
        default = " (default)" if config.is_default else ""
        print(f"{marker} {config.provider:<12} {config.display_name:<18} {status}{default}")
    return 0


def run_key_command(args: argparse.Namespace, credentials: CredentialStore) -> int:
    """Store or delete an API key."""
    if args.action == "delete":
        credentials.delete_secret(args.credential_id)
        print(f"Deleted key for {args.credential_id}")
        return 0

    value = args.value or getpass.getpass(f"API key for {args.credential_id}: ")
    if not value.strip():
        print("Error: empty key", file=sys.stderr)
        return 1
    credentials.set_secret(args.credential_id, value.strip())
    print(f"Stored key for {args.credential_id}")
    return 0


async def _run_async(args: argparse.Namespace, workflow: PortfolioWorkflow) -> int:
    try:
        if args.command == "quote":
            return await run_quote_command(args, workflow)
        if args.command == "refresh":
            return await run_refresh_command(args, workflow)
        if args.command == "insight":
            return await run_insight_command(args, workflow)
        return 1
    finally:
        await workflow.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deepticker",
        description="Portfolio quotes, health and AI insights",
    )
    parser.add_argument(
        "--credentials",
        choices=["keyring", "env"],
        default="keyring",
        help="Where API keys are read from (default: OS keyring)",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL)")
    parser.add_argument("--log-json", action="store_true", help="Emit JSON logs")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    quote_parser = subparsers.add_parser("quote", help="Fetch quotes")
    quote_parser.add_argument("symbols", nargs="+", help="Ticker symbols")

    refresh_parser = subparsers.add_parser("refresh", help="Price a portfolio")
    refresh_parser.add_argument(
        "holdings",
        nargs="+",
        type=parse_holding,
        help="Holdings as SYMBOL:SHARES or SYMBOL:SHARES@COST",
    )

    insight_parser = subparsers.add_parser("insight", help="Request an AI insight")
    insight_parser.add_argument(
        "--kind",
        choices=[kind.value for kind in InsightKind],
        default=InsightKind.SUMMARY.value,
        help="Insight kind",
    )
    insight_parser.add_argument("--provider", help="Provider id (default: selection policy)")
    insight_parser.add_argument("--prompt", help="Custom prompt used instead of the default")
    insight_parser.add_argument("--symbol", help="Target symbol for predictions")
    insight_parser.add_argument(
        "holdings",
        nargs="+",
        type=parse_holding,
        help="Holdings as SYMBOL:SHARES or SYMBOL:SHARES@COST",
    )

    subparsers.add_parser("providers", help="List AI providers")

    key_parser = subparsers.add_parser("key", help="Manage API keys")
    key_parser.add_argument("action", choices=["set", "delete"])
    key_parser.add_argument("credential_id", choices=sorted(CREDENTIAL_ENV_VARS))
    key_parser.add_argument("--value", help="Key value (prompted when omitted)")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.log_level, json_output=True if args.log_json else None)
    credentials = build_credentials(args.credentials)

    try:
        if args.command == "key":
            return run_key_command(args, credentials)

        workflow = PortfolioWorkflow.from_settings(credentials)
        if args.command == "providers":
            return run_providers_command(workflow)
        return asyncio.run(_run_async(args, workflow))
    except ResponseParseFailed as e:
        print(f"Error: {e.message}", file=sys.stderr)
        print(f"Raw response:\n{e.raw_text}", file=sys.stderr)
        return 1
    except DeepTickerError as e:
        logger.warning("command_failed", command=args.command, **e.to_dict())
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
