#!/usr/bin/env python3
"""
Scenecast server entry point.

Loads the JSON configuration, applies command-line overrides, sets up
logging, picks a free port and runs the web server that hosts the live
scene/audio channel.
"""

import argparse
import json
import logging
import os
import socket
import sys
from pathlib import Path
from typing import Dict, Optional, Tuple

from scenecast.const import DEFAULT_WEB_PORT, MAX_PORT_RETRIES
from scenecast.paths import DATA_DIR, UPLOADS_DIR, get_log_file_path
from scenecast.utils.log_rotation import LogRotator
from scenecast.utils.logging_utils import create_app_time_formatter, set_app_start_time
from scenecast.web.api_server import run_server

logger = logging.getLogger(__name__)

PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
DEFAULT_CONFIG_PATH = os.path.join(PROJECT_ROOT, "config", "config.json")


class PortUnavailableError(Exception):
    """No usable port could be bound."""


def setup_logging(debug: bool = False, log_file: Optional[Path] = None) -> LogRotator:
    """Setup logging configuration with automatic rotation."""
    import time

    set_app_start_time(time.time())

    level = logging.DEBUG if debug else logging.INFO
    log_file = log_file or get_log_file_path()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    formatter = create_app_time_formatter()

    root_logger = logging.getLogger()
    root_logger.handlers = []

    # Console handler: WARNING+ only
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logging.WARNING)

    # File handler: full logging level, truncated on startup
    file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
    file_handler.setFormatter(formatter)

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    rotator = LogRotator(log_file, check_interval=300)
    if not rotator.start():
        logger.warning("Failed to start log rotation service")

    # Reduce noise from some modules
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("fastapi").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)

    return rotator


def load_config_file(config_path: Optional[str] = None) -> Dict:
    """Load configuration from JSON file."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config = {}
    if os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                loaded_config = json.load(f)
            # Filter out comments and null values
            config = {k: v for k, v in loaded_config.items() if k != "comments" and v is not None}
            logger.info(f"Loaded configuration from {config_path}")
        except (OSError, ValueError, AttributeError) as e:
            logger.warning(f"Failed to load config file {config_path}: {e}")
    else:
        logger.warning(f"Config file not found: {config_path}")
    return config


def parse_port(value) -> Optional[int]:
    """Port number from an int or numeric string; None when invalid or out of range."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value.isdigit():
            return None
    try:
        port = int(value)
    except (TypeError, ValueError):
        return None
    return port if 0 < port <= 65535 else None


def resolve_port(cli_port: Optional[str], env_port: Optional[str], config_port=None) -> Tuple[int, bool]:
    """
    Choose the listening port.

    Precedence is ``--port``, then ``$PORT``, then the config file, then the
    default. Invalid values are warned about and skipped.

    Returns:
        (port, explicit) where explicit means the user asked for that port
    """
    for value, source in ((cli_port, "--port"), (env_port, "PORT")):
        if value is None or value == "":
            continue
        port = parse_port(value)
        if port is None:
            logger.warning(f"Ignoring invalid port from {source}: {value!r}")
            continue
        return port, True

    if config_port is not None:
        port = parse_port(config_port)
        if port is not None:
            return port, False
        logger.warning(f"Ignoring invalid web_port in config: {config_port!r}")

    return DEFAULT_WEB_PORT, False


def is_port_available(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def select_port(host: str, port: int, explicit: bool, max_retries: int = MAX_PORT_RETRIES) -> int:
    """
    Find a port to listen on.

    An explicitly requested port must be free. Otherwise the following ports
    are tried, up to ``max_retries`` of them.

    Raises:
        PortUnavailableError: no candidate port could be bound
    """
    for attempt in range(max_retries + 1):
        candidate = port + attempt
        if candidate > 65535:
            break
        if is_port_available(host, candidate):
            return candidate
        if explicit:
            raise PortUnavailableError(f"Port {candidate} is already in use")
        logger.warning(f"Port {candidate} is in use, trying {candidate + 1}")

    raise PortUnavailableError(f"No free port found in {port}-{port + max_retries}")


def build_parser(config_path: str, file_config: Dict) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scenecast live scene broadcaster")
    parser.add_argument("--config", default=config_path, help="Path to configuration file")
    parser.add_argument("--host", default=file_config.get("web_host", "0.0.0.0"), help="Web server host")
    parser.add_argument("--port", default=None, help="Web server port (overrides $PORT and the config file)")
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=Path(file_config["data_dir"]) if "data_dir" in file_config else DATA_DIR,
        help="Directory holding library.json",
    )
    parser.add_argument(
        "--uploads-dir",
        type=Path,
        default=Path(file_config["uploads_dir"]) if "uploads_dir" in file_config else UPLOADS_DIR,
        help="Directory receiving uploaded assets",
    )
    parser.add_argument(
        "--debug", action="store_true", default=file_config.get("debug", False), help="Enable debug logging"
    )
    return parser


def main(argv=None):
    """Main entry point."""

    # Parse just the config argument first to know which config file to load
    parser_config = argparse.ArgumentParser(add_help=False)
    parser_config.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to configuration file")
    config_args, _ = parser_config.parse_known_args(argv)

    file_config = load_config_file(config_args.config)
    args = build_parser(config_args.config, file_config).parse_args(argv)

    rotator = setup_logging(args.debug)

    port, explicit = resolve_port(args.port, os.environ.get("PORT"), file_config.get("web_port"))
    try:
        port = select_port(args.host, port, explicit)
    except PortUnavailableError as e:
        logger.error(f"Cannot start web server: {e}")
        sys.exit(1)

    config = {
        "debug": args.debug,
        "web_host": args.host,
        "web_port": port,
        "data_dir": str(args.data_dir),
        "uploads_dir": str(args.uploads_dir),
    }

    # Merge in any additional configuration from the JSON file that isn't covered by command line args
    for key, value in file_config.items():
        if key not in config:
            config[key] = value

    logger.info("Starting Scenecast")
    logger.info(f"Configuration: {config}")
    logger.info(f"Web interface available at http://{args.host}:{port}")

    try:
        run_server(
            host=args.host,
            port=port,
            debug=args.debug,
            config=config,
            data_dir=args.data_dir,
            uploads_dir=args.uploads_dir,
        )
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as e:
        logger.error(f"Unhandled exception: {e}")
        sys.exit(1)
    finally:
        rotator.stop()


if __name__ == "__main__":
    main()
