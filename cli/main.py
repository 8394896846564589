"""xero-reconcile command line.

Reconciles Xero bank transactions from a JSON array on stdin or a CSV file.
Dry-run by default; pass --execute to apply.

Usage:
    xero-reconcile < items.json
    xero-reconcile --from-csv suggestions.csv --execute
    xero-reconcile reconcile --execute --json < items.json
    xero-reconcile transactions --unreconciled --export suggestions.csv
    xero-reconcile status
"""

import argparse
import asyncio
import sys
from typing import BinaryIO, List, Mapping, Optional, TextIO

from cli import status, transactions
from cli.context import add_common_arguments, load_command_config, setup_logging
from cli.output import OutputContext, exit_code_for, write_error, write_success
from cli.progress import PROGRESS_MODES, ProgressDisplay
from connectors.xero.xero_auth import AccessProvider, EnvAccessProvider
from connectors.xero.xero_client import RetryInfo
from core.config import ReconcileConfig
from core.errors import ExitSignal, ReconcileError, exit_signal_for
from core.observability.events import EventEmitter
from core.observability.logging import get_logger
from reconciliation.engine import ReconcileCommand, run_reconcile
from reconciliation.inputs import ReconcileRequestItem, load_csv, parse_json_input, read_stdin_with_limit
from reconciliation.results import ReconcileResult

logger = get_logger(__name__)

# First argument -> command runner; anything else is a reconcile run
COMMANDS = {
    "transactions": transactions.run,
    "status": status.run,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xero-reconcile",
        description="Reconcile Xero bank transactions by account code or invoice payment",
    )
    parser.add_argument("--execute", action="store_true", help="Apply changes (default is a dry run)")
    parser.add_argument("--from-csv", metavar="PATH", help="Read items from a CSV file instead of stdin")
    parser.add_argument(
        "--progress",
        choices=PROGRESS_MODES,
        default=None,
        help="Progress display on stderr (default: animated on a TTY, else off)",
    )
    add_common_arguments(parser)
    return parser


def load_items(
    args: argparse.Namespace,
    config: ReconcileConfig,
    stdin: Optional[BinaryIO] = None,
) -> List[ReconcileRequestItem]:
    """Read and validate input from --from-csv or stdin."""
    if args.from_csv:
        return load_csv(args.from_csv)
    stream = stdin if stdin is not None else sys.stdin.buffer
    return parse_json_input(read_stdin_with_limit(stream, config.max_stdin_bytes))


def default_progress_mode(ctx: OutputContext) -> str:
    if not ctx.human:
        return "off"
    return "animated" if hasattr(ctx.err, "isatty") and ctx.err.isatty() else "off"


def main(
    argv: Optional[List[str]] = None,
    stdin: Optional[BinaryIO] = None,
    stdout: Optional[TextIO] = None,
    stderr: Optional[TextIO] = None,
    environ: Optional[Mapping[str, str]] = None,
    access_provider: Optional[AccessProvider] = None,
) -> int:
    """Run the CLI and return the process exit code."""
    argv = list(sys.argv[1:] if argv is None else argv)
    if argv and argv[0] in COMMANDS:
        return COMMANDS[argv[0]](
            argv[1:], stdout=stdout, stderr=stderr, environ=environ, access_provider=access_provider
        )
    if argv and argv[0] == "reconcile":
        argv = argv[1:]

    args = build_parser().parse_args(argv)
    ctx = OutputContext(json=args.json, quiet=args.quiet, stdout=stdout, stderr=stderr)

    try:
        config, env = load_command_config(args, environ)
    except (ValueError, OSError) as e:
        write_error(ctx, e)
        return exit_code_for(ExitSignal.USAGE_ERROR)

    setup_logging(args, config, ctx)

    try:
        items = load_items(args, config, stdin)
    except ReconcileError as e:
        write_error(ctx, e)
        return exit_code_for(exit_signal_for(e))
    except OSError as e:
        write_error(ctx, e)
        return exit_code_for(ExitSignal.RUNTIME_ERROR)

    progress = ProgressDisplay(args.progress or default_progress_mode(ctx), stream=ctx.err)

    def on_result(result: ReconcileResult, index: int, total: int) -> None:
        if ctx.human:
            ctx.out.write(result.describe() + "\n")
            ctx.out.flush()
        progress.update(index, total)

    def on_retry(info: RetryInfo) -> None:
        if ctx.human and info.reason == "rate-limit":
            seconds = max(1, round(info.backoff_ms / 1000))
            progress.pause(f"{seconds}s")

    provider = access_provider or EnvAccessProvider(config.tenant_config_path, environ=env)
    command = ReconcileCommand(execute=args.execute, from_csv=args.from_csv)

    async def _run():
        emitter = EventEmitter(config.events_url)
        try:
            return await run_reconcile(
                command,
                config,
                provider,
                items,
                on_result=on_result,
                on_retry=on_retry,
                emitter=emitter,
            )
        finally:
            await emitter.aclose()

    try:
        outcome = asyncio.run(_run())
    except KeyboardInterrupt:
        return exit_code_for(ExitSignal.INTERRUPTED)
    except Exception as e:
        logger.debug("Unhandled error", exc_info=True)
        write_error(ctx, e)
        return exit_code_for(ExitSignal.RUNTIME_ERROR)
    finally:
        progress.finish()

    if outcome.error is not None:
        write_error(ctx, outcome.error)
        return exit_code_for(outcome.signal)

    report = outcome.report
    write_success(ctx, report.to_dict(), report.human_lines(), str(report.summary.succeeded))
    return exit_code_for(outcome.signal)


if __name__ == "__main__":
    sys.exit(main())
