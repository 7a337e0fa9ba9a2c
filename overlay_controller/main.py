"""Command line entry point for the overlay controller."""

from __future__ import annotations

import argparse
import logging
from typing import Optional, Sequence

from .api import create_app
from .config import ControllerConfig


def build_parser(defaults: ControllerConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the overlay network controller.")
    parser.add_argument("--host", default=defaults.host, help="Interface to bind (CONTROLLER_HOST)")
    parser.add_argument("--port", type=int, default=defaults.port, help="HTTP port (CONTROLLER_PORT)")
    parser.add_argument("--network", default=defaults.network, help="Overlay address block (OVERLAY_NETWORK)")
    parser.add_argument(
        "--first-host",
        type=int,
        default=defaults.first_host,
        help="Offset of the first assigned address inside the block (OVERLAY_FIRST_HOST)",
    )
    parser.add_argument("--log-level", default=defaults.log_level, help="Logging level (LOG_LEVEL)")
    return parser


def parse_config(argv: Optional[Sequence[str]] = None) -> ControllerConfig:
    args = build_parser(ControllerConfig.from_env()).parse_args(argv)
    return ControllerConfig(
        host=args.host,
        port=args.port,
        network=args.network,
        first_host=args.first_host,
        log_level=args.log_level.lower(),
    )


def main(argv: Optional[Sequence[str]] = None) -> None:  # pragma: no cover - starts a server
    import uvicorn

    config = parse_config(argv)
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(config=config)
    logging.getLogger(__name__).info("[controller] Listening on %s:%d", config.host, config.port)
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level)


if __name__ == "__main__":  # pragma: no cover
    main()
