"""
Command-line interface for the echoguard server.

``cli_main`` is the console script entry point and the only place where a
startup failure becomes a process exit status.
"""

from __future__ import annotations

import argparse
import sys
import tomllib
from functools import lru_cache
from pathlib import Path

from loguru import logger

from .bootstrap import run_service
from .config import ConfigurationError, DefaultConfigError, create_config_from_args
from .errors import FatalStartupError
from .logging_utils import configure_logging

EXIT_OK = 0
EXIT_CONFIG_ERROR = 2


@lru_cache(maxsize=1)
def get_version() -> str:
    """
    Return the server version.
    Priority:
      1) importlib.metadata for 'echoguard-server' (when installed)
      2) parse nearest pyproject.toml (when running from source)
      3) 'unknown'
    """
    import importlib.metadata as im

    try:
        return im.version("echoguard-server")
    except im.PackageNotFoundError:
        pass

    for parent in Path(__file__).resolve().parents:
        toml_path = parent / "pyproject.toml"
        if toml_path.exists():
            data = tomllib.loads(toml_path.read_text(encoding="utf-8"))
            v = (data.get("project") or {}).get("version")
            if v:
                return v
            break

    return "unknown"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="echoguard-server",
        description="Single-instance WebSocket echo server",
    )
    parser.add_argument("--config", type=Path, help="Path to a TOML config file")
    parser.add_argument("--host", help="Interface to listen on (default: 0.0.0.0)")
    parser.add_argument(
        "--base-port", type=int, help="First candidate port (default: 8080)"
    )
    parser.add_argument(
        "--max-attempts", type=int, help="Number of candidate ports (default: 8)"
    )
    parser.add_argument("--server-tag", help="Tag placed in front of every reply")
    parser.add_argument(
        "--lock-file", help="Single-instance lock file (default: .server.lock)"
    )
    parser.add_argument("--log-dir", type=Path, help="Directory for log segments")
    parser.add_argument(
        "--no-log-file", action="store_true", help="Disable log segment files"
    )
    parser.add_argument(
        "--log-max-bytes", type=int, help="Log segment size ceiling in bytes"
    )
    parser.add_argument(
        "--log-level-console",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Console log level (default: INFO)",
    )
    parser.add_argument(
        "--log-json-console", action="store_true", help="Emit console logs as JSON"
    )
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {get_version()}",
        help="Show version and exit",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, configure logging and run the service.

    Returns:
        Exit status for configuration problems or a clean shutdown.

    Raises:
        FatalStartupError: A startup step failed.
    """
    args = build_parser().parse_args(argv)

    try:
        config, overrides = create_config_from_args(args)
    except (
        ConfigurationError,
        DefaultConfigError,
        FileNotFoundError,
        tomllib.TOMLDecodeError,
    ) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    log_dir = Path(config.log_dir) if config.log_dir else None
    configure_logging(
        log_dir=log_dir,
        console_level=config.log_level_console,
        console_json=config.log_json_console,
        max_bytes=config.log_max_bytes,
    )

    logger.info("=" * 60)
    logger.info("echoguard server starting")
    logger.info("=" * 60)
    logger.info(f"  Version: {get_version()}")
    logger.info(f"  Host: {config.host}")
    logger.info(f"  Candidate ports: {config.base_port}-{config.last_port}")
    logger.info(f"  Lock file: {config.lock_file}")
    logger.info(f"  Log directory: {log_dir if log_dir else 'disabled'}")
    for override in overrides:
        logger.info(
            f"  Config override: {override.key} = {override.new_value!r} "
            f"(default {override.default_value!r})"
        )
    logger.info("=" * 60)

    run_service(config)
    return EXIT_OK


def cli_main() -> None:
    """
    Main CLI entry point for the echoguard-server command.

    Maps a fatal startup error to its exit status. The error has already been
    logged by the component that raised it.
    """
    try:
        code = main()
    except FatalStartupError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(e.exit_code)
    except KeyboardInterrupt:
        print("\nServer interrupted by user")
        sys.exit(EXIT_OK)
    except SystemExit:
        raise
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    cli_main()
