"""Main entry point - runs the relay API server."""

import logging
import sys

import uvicorn

from stakerelay import __version__
from stakerelay.api.app import create_app
from stakerelay.config import get_settings

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def main():
    """Main entry point."""
    settings = get_settings()
    configure_logging(settings.debug)

    logger.info(f"Starting stake relay {__version__}...")
    logger.info(f"Environment: {settings.environment}")

    missing = settings.missing_required()
    if missing:
        for name in missing:
            logger.error(f"Missing required environment variable: {name}")
        sys.exit(1)

    app = create_app(settings)
    if app.state.services.pipeline is None:
        logger.warning("RELAYER_PRIVATE_KEY not set - relay endpoint disabled")

    logger.info(f"Starting API server on {settings.api_host}:{settings.api_port}")
    try:
        uvicorn.run(
            app,
            host=settings.api_host,
            port=settings.api_port,
            log_level="debug" if settings.debug else "info",
        )
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")


if __name__ == "__main__":
    main()
