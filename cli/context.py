"""Options and setup shared by every command."""

import argparse
from pathlib import Path
from typing import Mapping, Optional, Tuple

from cli.output import OutputContext
from core.config import ReconcileConfig, load_environment
from core.observability.logging import LOG_LEVELS, configure_logging, resolve_log_level, should_use_json_logs


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--json", action="store_true", help="Write a JSON envelope to stdout")
    parser.add_argument("--quiet", action="store_true", help="Print only the headline count")
    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS),
        default="silent",
        help="Diagnostic log verbosity on stderr",
    )
    parser.add_argument("--events-url", metavar="URL", help="Observability server for run events")
    parser.add_argument("--work-dir", type=Path, default=None, help="Directory for state, lock and audit files")


def load_command_config(
    args: argparse.Namespace,
    environ: Optional[Mapping[str, str]] = None,
) -> Tuple[ReconcileConfig, Mapping[str, str]]:
    """Build the config from --work-dir, the environment and its .env file.

    Raises:
        ValueError: If an environment value cannot be parsed
        OSError: If the .env file cannot be read
    """
    work_dir = (args.work_dir or Path.cwd()).resolve()
    env = load_environment(work_dir, environ)
    config = ReconcileConfig.from_env(work_dir=work_dir, environ=env, events_url=args.events_url)
    return config, env


def setup_logging(args: argparse.Namespace, config: ReconcileConfig, ctx: OutputContext) -> None:
    configure_logging(
        level=resolve_log_level(args.log_level),
        json_format=should_use_json_logs(args.json, config.log_format, ctx.err),
        stream=ctx.err,
    )
