import logging

import uvicorn

from .app import create_app
from .config import Settings
from .gateway import TaskGateway
from .logging_setup import setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings.log_level)

    gateway = TaskGateway.from_url(settings.database_url, connect_args=settings.connect_args(), pool_pre_ping=True)
    app = create_app(gateway)

    logger.info("Server initialized at port: %s", settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
