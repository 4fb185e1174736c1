import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from pydantic import ValidationError

from sqlgate.api.router import api_router
from sqlgate.core.config import Settings
from sqlgate.core.pipeline.executor import build_pipeline

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    # Open the database before serving and close it once everything is done
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_settings = settings if settings is not None else Settings()
        logger.debug(f"Loaded settings: {app_settings!r}")

        app.state.pipeline = await build_pipeline(app_settings)
        logger.info(f"Serving {app_settings.db_path}")

        yield
        await app.state.pipeline.close()

    app = FastAPI(title="SQLite Query Gateway", lifespan=lifespan)

    # Include the master router containing all our endpoints
    app.include_router(api_router)
    return app


app = create_app()


def run():
    """Console entry point: settings from flags, environment and .env."""
    try:
        settings = Settings(_cli_parse_args=True, _cli_prog_name="sqlgate")
    except ValidationError as error:
        print(f"Invalid configuration:\n{error}", file=sys.stderr)
        sys.exit(2)

    logging.basicConfig(level=settings.log_level.upper())
    logger.debug(f"Parsed settings: {settings!r}")

    # A StartupError raised in the lifespan makes uvicorn exit before serving
    uvicorn.run(
        create_app(settings),
        host=settings.bind_host,
        port=settings.bind_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
