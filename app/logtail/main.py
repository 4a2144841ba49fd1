"""
logtail

Tail container logs from the local Docker daemon or a Kubernetes cluster and
print them normalized: known formats are reformatted with relative times,
noisy access logs are dropped, and embedded JSON is highlighted.

Configuration precedence (highest first):
  command-line flags, LOGTAIL_* / LOG_* environment variables, defaults.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

import shtab
from rich.console import Console

from common.config import TailConfig
from common.errors import classify_exception
from common.logging_config import setup_logging
from common.telemetry import setup_telemetry, shutdown_telemetry
from logparse.pipeline import make_console
from logtail.commands import Target, run_env, run_logs

__version__ = "1.0.0"

SERVICE_NAME = "logtail"
COMPLETION_SHELLS = ("bash", "zsh", "tcsh")

logger = logging.getLogger(__name__)


def _positive_hours(value: str) -> int:
    try:
        hours = int(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not a number of hours: {value!r}") from e
    if hours < 1:
        raise argparse.ArgumentTypeError("must be at least 1 hour")
    return hours


def _add_target_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "-c",
        "--container",
        help="Container or pod name, or a fuzzy query (prompts when ambiguous or omitted)",
    )
    p.add_argument(
        "-n",
        "--namespace",
        help="Kubernetes namespace or query; when given, the cluster is used instead of Docker",
    )


def build_parser() -> argparse.ArgumentParser:
    epilog = """\
Examples:
  logtail logs                      # pick a local container interactively
  logtail logs -c web -f            # follow the container matching 'web'
  logtail logs -n prod -c api --since 6
  logtail env -n staging            # print env of one or more pods
  logtail --generate bash > /etc/bash_completion.d/logtail

Environment:
  LOGTAIL_COLOR, LOGTAIL_STRICT_TIMESTAMPS, LOGTAIL_MAX_FRAME_SIZE,
  LOGTAIL_MAX_PENDING_BYTES, LOGTAIL_SINCE_HOURS, LOGTAIL_KUBE_CONTEXT,
  LOG_LEVEL, LOG_FORMAT
"""
    parser = argparse.ArgumentParser(
        prog="logtail",
        description="Tail and normalize container logs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=epilog,
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--generate",
        choices=COMPLETION_SHELLS,
        metavar="SHELL",
        help=f"Print a completion script for SHELL ({', '.join(COMPLETION_SHELLS)}) and exit",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Debug diagnostics on stderr"
    )
    color = parser.add_mutually_exclusive_group()
    color.add_argument(
        "--color",
        dest="color",
        action="store_const",
        const="always",
        help="Always colorize output (or LOGTAIL_COLOR)",
    )
    color.add_argument(
        "--no-color",
        dest="color",
        action="store_const",
        const="never",
        help="Never colorize output",
    )

    subparsers = parser.add_subparsers(dest="command", title="Commands", metavar="")

    p_logs = subparsers.add_parser("logs", help="Tail container logs")
    _add_target_arguments(p_logs)
    p_logs.add_argument(
        "--since",
        type=_positive_hours,
        help="Lookback window in hours (default: 1, or LOGTAIL_SINCE_HOURS)",
    )
    p_logs.add_argument(
        "-f", "--follow", action="store_true", help="Keep streaming new lines"
    )
    p_logs.add_argument(
        "--lenient-timestamps",
        action="store_true",
        help="Skip lines with malformed timestamps instead of aborting",
    )

    p_env = subparsers.add_parser("env", help="Print the environment of a container")
    _add_target_arguments(p_env)

    return parser


def _config_from_args(args: argparse.Namespace) -> TailConfig:
    cfg = TailConfig.from_env().with_overrides(
        color=args.color,
        since_hours=getattr(args, "since", None),
        log_level="DEBUG" if args.verbose else None,
        strict_timestamps=False if getattr(args, "lenient_timestamps", False) else None,
    )
    cfg.validate()
    return cfg


async def _dispatch(args: argparse.Namespace, cfg: TailConfig, console: Console) -> int:
    target = Target(container=args.container, namespace=args.namespace)
    if args.command == "logs":
        await run_logs(target, cfg, follow=bool(args.follow), console=console)
    elif args.command == "env":
        await run_env(target, cfg, console=console)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.generate:
        print(f"Generating completion file for {args.generate}...", file=sys.stderr)
        sys.stdout.write(shtab.complete(parser, shell=args.generate))
        return 0

    if not args.command:
        parser.print_help(sys.stderr)
        return 0

    err_console = Console(stderr=True, highlight=False)
    try:
        cfg = _config_from_args(args)
    except RuntimeError as e:
        info = classify_exception(e)
        err_console.print(f"error: {info.message}", style="red", markup=False)
        return info.exit_code

    setup_logging(SERVICE_NAME, cfg.log_level_value, log_format=cfg.log_format)
    setup_telemetry(service_name=SERVICE_NAME)

    try:
        return asyncio.run(_dispatch(args, cfg, make_console(cfg.color)))
    except (Exception, KeyboardInterrupt) as e:
        info = classify_exception(e)
        if info.log_traceback:
            logger.exception("Unexpected failure")
        err_console.print(f"error: {info.message}", style="red", markup=False)
        return info.exit_code
    finally:
        shutdown_telemetry()


if __name__ == "__main__":
    raise SystemExit(main())
