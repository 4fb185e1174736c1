import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from sqlgate.core.config import Settings
from sqlgate.core.exceptions import StartupError
from sqlgate.core.pipeline.marshal import decode_text

logger = logging.getLogger(__name__)


# Models registered on Base are created at startup when auditing is enabled
class Base(DeclarativeBase):
    pass


def create_db_engine(settings: Settings) -> AsyncEngine:
    # StaticPool: the whole process shares exactly one SQLite connection
    return create_async_engine(
        f"sqlite+aiosqlite:///{settings.db_path}", poolclass=StaticPool
    )


async def open_connection(engine: AsyncEngine, settings: Settings) -> AsyncConnection:
    """
    Open the single connection to the data file and prepare it for serving.

    Applies the journal, encoding and foreign-key pragmas, loads extensions and
    creates the audit table when auditing is enabled, then installs the text
    decoder used for result columns. Any failure is fatal.
    """
    try:
        connection = await engine.connect()
    except SQLAlchemyError as error:
        logger.error(f"Couldn't open DB connection to {settings.db_path}: {error}")
        raise StartupError(f"cannot open {settings.db_path}") from error

    try:
        await _apply_pragmas(connection, settings)
        await _load_extensions(connection, settings.extensions)

        if settings.collect_metadata:
            logger.debug("Metadata collection enabled")
            # Import registers the audit model on Base
            from sqlgate.core import models  # noqa: F401

            await connection.run_sync(Base.metadata.create_all)

        await connection.commit()
        await _install_text_factory(connection)
    except StartupError:
        await connection.close()
        raise
    except Exception as error:
        await connection.close()
        logger.error(f"Could not prepare the database: {error}")
        raise StartupError("cannot prepare the database") from error

    return connection


async def _driver_connection(connection: AsyncConnection):
    raw_connection = await connection.get_raw_connection()
    # aiosqlite.Connection underneath the SQLAlchemy adapter
    return raw_connection.driver_connection


# Invalid UTF-8 in a TEXT column must fail that column only, not the fetch
async def _install_text_factory(connection: AsyncConnection):
    driver = await _driver_connection(connection)
    driver.text_factory = decode_text


async def _apply_pragmas(connection: AsyncConnection, settings: Settings):
    if settings.wal:
        await connection.exec_driver_sql("PRAGMA journal_mode=WAL")
    await connection.exec_driver_sql('PRAGMA encoding = "UTF-8"')
    if settings.foreign_keys:
        await connection.exec_driver_sql("PRAGMA foreign_keys=ON")


async def _load_extensions(connection: AsyncConnection, paths):
    if not paths:
        return

    driver = await _driver_connection(connection)
    await driver.enable_load_extension(True)
    try:
        for path in paths:
            try:
                await driver.load_extension(path)
            except Exception as error:
                logger.error(f"Could not load extension {path}: {error}")
                raise StartupError(f"cannot load extension {path}") from error
            logger.info(f"Loaded extension {path}")
    finally:
        await driver.enable_load_extension(False)
