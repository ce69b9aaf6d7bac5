"""CLI entrypoint for docserve."""

from __future__ import annotations

import argparse
import shlex
import sys
import time
import webbrowser
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .config import ConfigError, DocServeConfig, load_config
from .executor import BuildExecutor
from .hub import NotificationHub
from .logging import configure_logging, get_logger
from .loop import WatchLoop
from .models import RebuildRequest
from .orchestrator import BuildOrchestrator
from .presets import PRESETS, BuildPlan, resolve_build_plan
from .service import build_server, create_app, stop_server
from .watch import ChangeDetector, Debouncer, WatchError, WatchRoot


CARGO_SUBCOMMAND = "docserve"


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError("must not be negative")
    return number


def _port(value: str) -> int:
    number = int(value)
    if not 0 <= number <= 65535:
        raise argparse.ArgumentTypeError("must be between 0 and 65535")
    return number


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docserve",
        description=(
            "Build API documentation, serve it locally and reload the browser when "
            "sources change. Arguments after `--` are passed to the documentation builder."
        ),
    )
    parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Path to the project root (defaults to current directory).",
    )
    parser.add_argument(
        "-p",
        "--port",
        type=_port,
        default=None,
        help="Port to serve the documentation on (default 8000).",
    )
    parser.add_argument(
        "-P",
        "--public",
        action="store_true",
        default=None,
        help="Listen on all interfaces, not just localhost.",
    )
    parser.add_argument(
        "-w",
        "--watch",
        dest="watch",
        action="store_const",
        const=True,
        default=None,
        help="Rebuild when sources change (the default).",
    )
    parser.add_argument(
        "--no-watch",
        dest="watch",
        action="store_const",
        const=False,
        help="Build once and serve without watching for changes.",
    )
    parser.add_argument(
        "--watch-extra",
        action="append",
        default=[],
        metavar="PATH",
        help="Add an extra file or directory to be watched (repeatable).",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="GLOB",
        help="Ignore changes to paths matching GLOB (repeatable).",
    )
    parser.add_argument(
        "--quiet-period",
        type=_non_negative_int,
        default=None,
        metavar="MS",
        help="Milliseconds without changes before a rebuild starts (default 300).",
    )
    parser.add_argument(
        "--preset",
        choices=sorted(PRESETS),
        default=None,
        help="Documentation builder preset (detected from the project when omitted).",
    )
    parser.add_argument(
        "--command",
        default=None,
        help="Custom documentation build command, e.g. \"make html\".",
    )
    parser.add_argument(
        "--output-dir",
        default=None,
        help="Directory the builder writes the generated documentation to.",
    )
    parser.add_argument(
        "--index",
        default=None,
        help="Page that / redirects to (e.g. /mycrate/index.html).",
    )
    parser.add_argument(
        "-m",
        "--manifest-path",
        default=None,
        help="Path to Cargo.toml for the cargo preset.",
    )
    parser.add_argument(
        "--open",
        action="store_true",
        help="Open the documentation in a browser once the server is up.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Increase log verbosity for troubleshooting.",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write a detailed log (including builder output) to this file.",
    )
    return parser


def _split_builder_args(argv: Sequence[str]) -> Tuple[List[str], List[str]]:
    """Separate docserve's own arguments from those after ``--``."""
    arguments = list(argv)
    if "--" in arguments:
        position = arguments.index("--")
        return arguments[:position], arguments[position + 1 :]
    return arguments, []


def _apply_overrides(config: DocServeConfig, args: argparse.Namespace) -> DocServeConfig:
    if args.port is not None:
        config.serve.port = args.port
    if args.public:
        config.serve.public = True
    if args.watch is not None:
        config.watch.enabled = args.watch
    if args.quiet_period is not None:
        config.watch.quiet_period_ms = args.quiet_period
    config.watch.extra.extend(args.watch_extra)
    config.watch.exclude.extend(args.exclude)
    return config


def _resolve_plan(config: DocServeConfig, args: argparse.Namespace, builder_args: Sequence[str]) -> BuildPlan:
    command = shlex.split(args.command) if args.command else None
    return resolve_build_plan(
        config,
        preset=args.preset,
        command=command,
        output_dir=args.output_dir,
        index=args.index,
        manifest_path=args.manifest_path,
        extra_args=builder_args,
    )


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for docserve."""
    own_args, builder_args = _split_builder_args(sys.argv[1:] if argv is None else argv)
    if own_args[:1] == [CARGO_SUBCOMMAND]:
        # `cargo docserve ...` runs `cargo-docserve docserve ...`.
        own_args = own_args[1:]
    parser = _build_parser()
    args = parser.parse_args(own_args)

    configure_logging(verbose=bool(args.verbose), log_file=args.log_file)
    logger = get_logger("cli")

    project = Path(args.path).expanduser()
    if not project.is_dir():
        parser.exit(1, f"docserve: project directory does not exist: {project}\n")

    try:
        config = _apply_overrides(load_config(project), args)
        plan = _resolve_plan(config, args, builder_args)
    except ConfigError as exc:
        parser.exit(1, f"docserve: {exc}\n")

    watch_root: Optional[WatchRoot] = None
    if config.watch.enabled:
        try:
            watch_root = WatchRoot.establish(
                config.root,
                output_dir=plan.output_dir,
                exclude=config.watch.exclude,
                ignore_dirs=plan.ignore_dirs,
                extra=config.watch.extra,
            )
        except WatchError as exc:
            parser.exit(1, f"docserve: {exc}\n")

    hub = NotificationHub()
    orchestrator = BuildOrchestrator(BuildExecutor(), plan.invocation, listeners=[hub.broadcast])
    app = create_app(plan.output_dir, hub, lambda: orchestrator.state, index=plan.index)
    host = config.serve.bind_host
    server = build_server(app, host, config.serve.port, verbose=bool(args.verbose))

    watch_loop: Optional[WatchLoop] = None
    if watch_root is not None:
        watch_loop = WatchLoop(
            ChangeDetector(watch_root),
            Debouncer(config.watch.quiet_period_ms / 1000.0),
            orchestrator.submit,
            on_fatal=lambda _exc: stop_server(server),
        )
        try:
            watch_loop.start()
        except WatchError as exc:
            watch_loop.stop()
            parser.exit(1, f"docserve: {exc}\n")

    orchestrator.submit(RebuildRequest(burst_end=time.time(), event_count=0))

    display_host = "localhost" if host in {"0.0.0.0", "127.0.0.1"} else host
    url = f"http://{display_host}:{config.serve.port}{plan.index}"
    logger.info("Serving %s on http://%s:%d", plan.output_dir, host, config.serve.port)
    logger.info("Open %s", url)
    if args.open:
        webbrowser.open(url)

    try:
        server.run()
    except KeyboardInterrupt:
        pass
    finally:
        if watch_loop is not None:
            watch_loop.stop()
        orchestrator.close()

    if watch_loop is not None and watch_loop.error is not None:
        parser.exit(1, f"docserve: {watch_loop.error}\n")


if __name__ == "__main__":
    main(sys.argv[1:])
