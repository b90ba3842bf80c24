"""Server entry point: ``chronometry-server``."""

import logging

import uvicorn

from ..config import ServerSettings, setup_logging
from .app import create_app
from .context import ServerContext

logger = logging.getLogger(__name__)


def main() -> None:
    settings = ServerSettings.from_env()
    setup_logging(settings.debug, log_file=settings.db_path.parent / "server.log")

    context = ServerContext.from_settings(settings)
    context.db.seed_defaults()
    app = create_app(context)

    logger.info(f"Chronometry server on {settings.host}:{settings.port}, database {settings.db_path}")
    try:
        uvicorn.run(
            app,
            host=settings.host,
            port=settings.port,
            log_level="debug" if settings.debug else "info",
        )
    finally:
        context.close()


if __name__ == "__main__":
    main()
