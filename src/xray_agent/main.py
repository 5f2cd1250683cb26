from __future__ import annotations

import argparse
import logging

from .config import XraySettings
from .logging import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="X-Ray Agent - streaming frame analysis")
    parser.add_argument("--print-config", action="store_true", help="Print resolved configuration and exit.")
    parser.add_argument("--serve", action="store_true", help="Start the WebSocket/HTTP server.")
    return parser


def run(argv: list[str] | None = None, cfg: XraySettings | None = None) -> int:
    """
    X-Ray agent entrypoint.
    """
    try:
        args = build_parser().parse_args(argv)

        # Load settings from environment / .env
        cfg = cfg or XraySettings()

        # Setup logging using configured level
        configure_logging(cfg.log_level)

        logger.info("X-Ray agent starting")
        logger.info(
            "Resolved config: listen=%s:%s detector=%s pool=%s storage=%s",
            cfg.host, cfg.port, cfg.detector_backend, cfg.detector_pool_size, cfg.s3_endpoint or "disabled"
        )

        if args.print_config:
            print(cfg.model_dump(exclude={"s3_secret_key"}))
            return 0

        if args.serve:
            import uvicorn
            from .api import create_app

            app = create_app(cfg)

            logger.info("Listening on ws://%s:%s/", cfg.host, cfg.port)
            uvicorn.run(
                app,
                host=cfg.host,
                port=cfg.port,
                log_level=cfg.log_level.lower(),
            )
            return 0

        logger.info("Nothing to do. Use --print-config or --serve.")
        return 0

    except Exception:
        # Log unexpected exceptions so the agent is diagnosable.
        logger.exception("X-Ray agent crashed due to an unexpected error")
        if cfg is not None and (cfg.debug or cfg.log_level.upper() == "DEBUG"):
            raise
        return 1


if __name__ == "__main__":
    raise SystemExit(run())
