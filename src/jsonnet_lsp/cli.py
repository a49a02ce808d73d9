"""Command-line interface for jsonnet-lsp."""

from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

from jsonnet_lsp.config import (
    LOG_LEVELS,
    ConfigError,
    ServerConfig,
    load_all_configs,
    load_config,
    parse_log_level,
)

if TYPE_CHECKING:
    from argparse import Namespace

logger = logging.getLogger(__name__)

LOG_ENV_VAR = "JSONNET_LSP_LOG"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
FATAL_MESSAGE = "A fatal error has occurred and jsonnet-lsp will shut down."


def get_version() -> str:
    """Get the jsonnet-lsp version."""
    from jsonnet_lsp import __version__

    return __version__


# =============================================================================
# Logging
# =============================================================================


def resolve_log_level(cli_level: str | None, config: ServerConfig) -> str:
    """Pick the log level: CLI flag, then environment, then config."""
    if cli_level:
        return parse_log_level(cli_level)
    env_level = os.environ.get(LOG_ENV_VAR)
    if env_level:
        return parse_log_level(env_level)
    return config.log_level


def configure_logging(level: str, log_file: Path | None = None) -> None:
    """Send logs to ``log_file`` or stderr; stdout carries the protocol."""
    if log_file is not None:
        logging.basicConfig(level=level, format=LOG_FORMAT, filename=str(log_file), force=True)
    else:
        logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr, force=True)


def _log_uncaught(exc_type, exc_value, exc_traceback) -> None:
    logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))


def _log_uncaught_thread(args: threading.ExceptHookArgs) -> None:
    name = args.thread.name if args.thread is not None else "unknown"
    logger.critical(
        "Uncaught exception in thread %s",
        name,
        exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
    )


def install_exception_hooks() -> None:
    """Route uncaught exceptions from any thread through logging."""
    sys.excepthook = _log_uncaught
    threading.excepthook = _log_uncaught_thread


# =============================================================================
# Commands
# =============================================================================


def _load_config(args: Namespace) -> ServerConfig:
    if args.config:
        return load_config(Path(args.config))
    return load_all_configs(Path.cwd())


def cmd_serve(args: Namespace) -> int:
    """Run the language server over stdio."""
    from jsonnet_lsp.capabilities import initialize_result
    from jsonnet_lsp.session import EXIT_OK, Session
    from jsonnet_lsp.transport import Connection

    try:
        config = _load_config(args)
        level = resolve_log_level(args.log_level, config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    configure_logging(level, Path(args.log_file) if args.log_file else config.log_file)
    install_exception_hooks()
    logger.info("Starting jsonnet-lsp %s", get_version())

    try:
        connection, io_threads = Connection.stdio(shutdown_timeout=config.shutdown_timeout)
        connection.initialize(initialize_result())
        code = Session(connection, config).run()
        connection.close()
        if code == EXIT_OK:
            io_threads.join()
        else:
            # The reader may still be blocked on stdin
            io_threads.writer.join()
    except Exception as e:
        logger.error("Error: %s (%r)", e, e)
        logger.error(FATAL_MESSAGE)
        return 1
    return code


def cmd_check(args: Namespace) -> int:
    """Print diagnostics for Jsonnet files."""
    from jsonnet_lsp.diagnostics import DiagnosticsEngine

    try:
        config = _load_config(args)
        level = resolve_log_level(args.log_level, config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    configure_logging(level, Path(args.log_file) if args.log_file else config.log_file)

    if args.evaluate:
        config = replace(config, evaluate=True, publish_evaluation_errors=True)
    engine = DiagnosticsEngine.from_config(config)

    status = 0
    for name in args.files:
        path = Path(name)
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            print(f"Error: cannot read {path}: {e}", file=sys.stderr)
            status = 1
            continue

        for diagnostic in engine.analyze(text).diagnostics:
            start = diagnostic.range.start
            severity = diagnostic.severity.name.lower() if diagnostic.severity else "error"
            print(f"{path}:{start.line + 1}:{start.character + 1}: {severity}: {diagnostic.message}")
            status = 1
    return status


# =============================================================================
# Entry Point
# =============================================================================


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="jsonnet-lsp",
        description="Language server for Jsonnet",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {get_version()}")
    parser.add_argument("--config", "-c", help="Config file (default: discover user and project files)")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        help=f"Log level (default: ${LOG_ENV_VAR}, then config, then WARNING)",
    )
    parser.add_argument("--log-file", help="Write logs to this file instead of stderr")
    parser.set_defaults(func=cmd_serve)

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    serve_parser = subparsers.add_parser("serve", help="Run the language server over stdio (default)")
    serve_parser.set_defaults(func=cmd_serve)

    check_parser = subparsers.add_parser("check", help="Print diagnostics for files")
    check_parser.add_argument("files", nargs="+", help="Jsonnet files to check")
    check_parser.add_argument(
        "--evaluate",
        action="store_true",
        help="Also report errors found by evaluating files that parse",
    )
    check_parser.set_defaults(func=cmd_check)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
