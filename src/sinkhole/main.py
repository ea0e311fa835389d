from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from .blocklist import load_blocklist
from .config.config_parser import load_config
from .config.logging_config import init_logging
from .errors import UsageError
from .servers.recursive_resolver import IterativeResolver
from .servers.server import SinkholeServer

USAGE_EXIT_CODE = -1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sinkhole-server",
        description="Iterative DNS resolver that refuses queries for blocklisted names",
    )
    parser.add_argument(
        "--config", default=None, help="Path to optional YAML config file"
    )
    parser.add_argument(
        "blocklist",
        nargs="*",
        metavar="blocklist-file",
        help="File with one blocked domain per line",
    )
    return parser


def parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    """
    Brief: Parse CLI arguments, rejecting more than one blocklist file.

    Inputs:
      - argv: Argument list without the program name (None reads sys.argv).

    Outputs:
      - argparse.Namespace; blocklist is a path or None.

    Raises:
      - UsageError: when two or more positional arguments are given.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if len(args.blocklist) > 1:
        raise UsageError(
            f"expected at most one blocklist file, got {len(args.blocklist)}"
        )
    args.blocklist = args.blocklist[0] if args.blocklist else None
    return args


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for the sinkhole server.
    Parses arguments, loads configuration and the blocklist, and runs the
    UDP listener until a termination signal arrives.

    Args:
        argv: Command-line arguments.

    Returns:
        0 on clean shutdown, 1 on configuration or bind failure, -1 on usage error.

    Example use:
        CLI:
            sinkhole-server blocklist.txt
            sinkhole-server --config sinkhole.yaml
    """
    try:
        args = parse_args(argv)
    except UsageError as exc:
        build_parser().print_usage(sys.stderr)
        print(f"sinkhole-server: error: {exc}", file=sys.stderr)
        return USAGE_EXIT_CODE

    try:
        cfg = load_config(args.config)
    except (OSError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return 1

    init_logging(cfg.get("logging"))
    logger = logging.getLogger("sinkhole.main")
    if args.config:
        logger.info("Loaded config from %s", args.config)

    blocklist_path = args.blocklist if args.blocklist is not None else cfg.get("blocklist")
    blocklist = load_blocklist(blocklist_path)

    resolver = IterativeResolver(
        max_hops=int(cfg["max_hops"]), timeout_ms=int(cfg["timeout_ms"])
    )

    host = str(cfg["listen"]["host"])
    port = int(cfg["listen"]["port"])
    try:
        server = SinkholeServer(
            host,
            port,
            blocklist,
            resolver,
            threaded=bool(cfg["threaded"]),
            servfail_on_error=bool(cfg["servfail_on_error"]),
            blocked_authoritative=bool(cfg["blocked_authoritative"]),
        )
    except OSError:
        return 1

    shutdown_event = threading.Event()
    exit_code = 0
    udp_error: Exception | None = None

    def _request_shutdown(reason: str) -> None:
        if shutdown_event.is_set():
            return
        logger.info("Received %s, shutting down", reason)
        shutdown_event.set()

    def _sigterm_handler(_signum, _frame):
        _request_shutdown("SIGTERM")

    def _sigint_handler(_signum, _frame):
        _request_shutdown("SIGINT")

    try:
        signal.signal(signal.SIGTERM, _sigterm_handler)
        signal.signal(signal.SIGINT, _sigint_handler)
    except ValueError:
        # signal.signal only works from the main thread (tests run main() elsewhere).
        logger.debug("Signal handlers not installed; not running in main thread")

    def _run_udp() -> None:
        nonlocal udp_error
        try:
            server.serve_forever()
        except Exception as e:
            udp_error = e
        finally:
            shutdown_event.set()

    logger.info(
        "Starting UDP listener on %s:%d (%s, max_hops=%d, timeout=%dms)",
        host,
        port,
        "threaded" if cfg["threaded"] else "serial",
        resolver.max_hops,
        int(cfg["timeout_ms"]),
    )
    udp_thread = threading.Thread(target=_run_udp, name="sinkhole-udp", daemon=True)
    udp_thread.start()

    try:
        while not shutdown_event.wait(1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down")
    finally:
        server.stop()
        udp_thread.join(timeout=5.0)

    if udp_error is not None:
        logger.error("Unhandled exception during UDP server operation: %s", udp_error)
        exit_code = 1
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
