"""transactions command: list unreconciled bank transactions.

With --export the listing is also written as a CSV that --from-csv accepts,
one row per transaction with a SuggestedAccountCode column to review or fill.

Usage:
    xero-reconcile transactions --unreconciled
    xero-reconcile transactions --unreconciled --export review.csv
"""

import argparse
import asyncio
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from cli.context import add_common_arguments, load_command_config, setup_logging
from cli.output import OutputContext, exit_code_for, write_error, write_success
from connectors.xero.xero_auth import AccessProvider, EnvAccessProvider
from connectors.xero.xero_client import XeroApiClient, XeroApiConfig
from connectors.xero.xero_connector import XeroConnector
from connectors.xero.xero_models import BankTransaction
from core.errors import ExitSignal, ReconcileError, UsageError, exit_signal_for
from core.observability.events import EventEmitter
from core.observability.logging import get_logger, with_correlation
from core.security.files import create_private_file, ensure_private_dir
from reconciliation.inputs import validate_csv_path
from reconciliation.report import format_amount

logger = get_logger(__name__)

EXPORT_COLUMNS = [
    "BankTransactionID",
    "Date",
    "Total",
    "Type",
    "Contact",
    "Description",
    "SuggestedAccountCode",
]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xero-reconcile transactions",
        description="List unreconciled bank transactions",
    )
    parser.add_argument(
        "--unreconciled",
        action="store_true",
        required=True,
        help="List transactions not yet reconciled (the only supported listing)",
    )
    parser.add_argument("--export", metavar="PATH", help="Also write the listing as a reconcile CSV")
    parser.add_argument("--limit", type=int, default=None, help="Show at most this many rows")
    add_common_arguments(parser)
    return parser


# =============================================================================
# Rows and CSV
# =============================================================================

def transaction_row(txn: BankTransaction) -> Dict[str, str]:
    """Flatten a transaction into the export columns."""
    codes = txn.distinct_account_codes()
    description = txn.reference or ""
    if not description and txn.line_items:
        description = txn.line_items[0].description or ""
    return {
        "BankTransactionID": txn.bank_transaction_id or "",
        "Date": (txn.date_string or "")[:10],
        "Total": format_amount(txn.total) if txn.total is not None else "",
        "Type": txn.type or "",
        "Contact": (txn.contact.name or "") if txn.contact else "",
        "Description": description,
        # Carried over only when every line item already shares one code
        "SuggestedAccountCode": codes[0] if len(codes) == 1 and codes[0] else "",
    }


def escape_csv(value: str) -> str:
    if any(ch in value for ch in (",", '"', "\r", "\n")):
        return '"' + value.replace('"', '""') + '"'
    return value


def render_csv(rows: List[Dict[str, str]]) -> str:
    lines = [",".join(EXPORT_COLUMNS)]
    for row in rows:
        lines.append(",".join(escape_csv(row[column]) for column in EXPORT_COLUMNS))
    return "\n".join(lines) + "\n"


def export_csv(rows: List[Dict[str, str]], path: str) -> Path:
    """Write rows to a new owner-only CSV inside the working directory.

    Raises:
        PathSafetyError: If the path escapes the working directory
        UsageError: If the file already exists
    """
    resolved = validate_csv_path(path)
    ensure_private_dir(resolved.parent)
    try:
        create_private_file(resolved, render_csv(rows))
    except FileExistsError as e:
        raise UsageError(f"Export file already exists: {path}") from e
    logger.info(f"Exported {len(rows)} transaction(s)", extra_fields={"path": resolved.name})
    return resolved


# =============================================================================
# Command
# =============================================================================

def run(
    argv: List[str],
    stdout=None,
    stderr=None,
    environ: Optional[Mapping[str, str]] = None,
    access_provider: Optional[AccessProvider] = None,
) -> int:
    args = build_parser().parse_args(argv)
    ctx = OutputContext(json=args.json, quiet=args.quiet, stdout=stdout, stderr=stderr)

    try:
        config, env = load_command_config(args, environ)
    except (ValueError, OSError) as e:
        write_error(ctx, e)
        return exit_code_for(ExitSignal.USAGE_ERROR)
    setup_logging(args, config, ctx)

    if args.limit is not None and args.limit < 1:
        write_error(ctx, UsageError("--limit must be a positive integer"))
        return exit_code_for(ExitSignal.USAGE_ERROR)

    provider = access_provider or EnvAccessProvider(config.tenant_config_path, environ=env)

    async def _fetch() -> List[BankTransaction]:
        emitter = EventEmitter(config.events_url)
        try:
            await provider.get_access_context()
            async with XeroApiClient(provider, XeroApiConfig.from_config(config), emitter=emitter) as client:
                connector = XeroConnector(client, config.page_size, config.batch_chunk_size)
                return await connector.fetch_unreconciled()
        finally:
            await emitter.aclose()

    try:
        with with_correlation(command="transactions"):
            transactions = asyncio.run(_fetch())
            rows = [transaction_row(txn) for txn in transactions]
            exported = export_csv(rows, args.export) if args.export else None
    except ReconcileError as e:
        write_error(ctx, e)
        return exit_code_for(exit_signal_for(e))
    except KeyboardInterrupt:
        return exit_code_for(ExitSignal.INTERRUPTED)
    except Exception as e:
        logger.debug("Unhandled error", exc_info=True)
        write_error(ctx, e)
        return exit_code_for(ExitSignal.RUNTIME_ERROR)

    shown = rows[:args.limit] if args.limit else rows
    data: Dict[str, Any] = {
        "command": "transactions",
        "count": len(rows),
        "transactions": [
            dict(row, Total=float(txn.total) if txn.total is not None else None)
            for row, txn in zip(shown, transactions)
        ],
    }
    lines = [f"Found {len(rows)} unreconciled transactions"]
    lines += [
        f"{row['BankTransactionID']} {row['Date']} {row['Total']} {row['Type']} {row['Contact']}".rstrip()
        for row in shown
    ]
    if exported is not None:
        data["exportPath"] = str(exported)
        lines.append(f"Exported {len(rows)} rows to {exported}")

    write_success(ctx, data, lines, str(len(rows)))
    return exit_code_for(ExitSignal.OK)
